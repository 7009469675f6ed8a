from __future__ import annotations

import json
import re
from dataclasses import dataclass

from aws_cdk import (
    aws_ec2 as ec2,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment
from stacks.network import Network
from stacks.parameter_store import component_parameter_name, read_parameter, write_parameter

COMPONENT = "Database"

PARAMETER_ENDPOINT_ADDRESS = "endpointAddress"
PARAMETER_ENDPOINT_PORT = "endpointPort"
PARAMETER_DATABASE_NAME = "databaseName"
PARAMETER_SECURITY_GROUP_ID = "securityGroupId"
PARAMETER_SECRET_ARN = "secretArn"
PARAMETER_INSTANCE_ID = "instanceId"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class DatabaseInputParameters:
    storage_in_gb: int = 20
    instance_class: str = "db.t3.micro"
    postgres_version: str = "16"


@dataclass(frozen=True)
class DatabaseOutputParameters:
    endpoint_address: str
    endpoint_port: str
    db_name: str
    database_secret_arn: str
    database_security_group_id: str
    instance_id: str


class PostgresDatabase(Construct):
    """
    PostgreSQL RDS instance placed in the isolated subnets of the environment's
    network. Credentials live in a generated Secrets Manager secret with the
    keys "username" and "password".
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        application_environment: ApplicationEnvironment,
        database_input_parameters: DatabaseInputParameters | None = None,
    ) -> None:
        super().__init__(scope, construct_id)

        self.application_environment = application_environment
        params = database_input_parameters or DatabaseInputParameters()
        network = Network.get_output_parameters_from_parameter_store(
            self,
            application_environment.environment_name,
            lookup_https_listener=False,
        )

        username = _sanitize_db_parameter_name(application_environment.prefix("dbUser"))
        self.db_name = _sanitize_db_parameter_name(application_environment.prefix("database"))

        self.database_security_group = ec2.CfnSecurityGroup(
            self,
            "databaseSecurityGroup",
            vpc_id=network.vpc_id,
            group_description="Security Group for the database instance",
            group_name=application_environment.prefix("dbSecurityGroup"),
        )

        self.database_secret = secretsmanager.Secret(
            self,
            "databaseSecret",
            secret_name=application_environment.prefix("DatabaseSecret"),
            description="Credentials to the RDS instance",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": username}),
                generate_string_key="password",
                password_length=32,
                exclude_characters="@/\\\" ",
            ),
        )

        subnet_group = rds.CfnDBSubnetGroup(
            self,
            "dbSubnetGroup",
            db_subnet_group_description="Subnet group for the RDS instance",
            db_subnet_group_name=application_environment.prefix("dbSubnetGroup"),
            subnet_ids=network.isolated_subnets,
        )

        self.db_instance = rds.CfnDBInstance(
            self,
            "postgresInstance",
            db_instance_identifier=application_environment.prefix("database", 63),
            allocated_storage=str(params.storage_in_gb),
            availability_zone=network.availability_zones[0],
            db_instance_class=params.instance_class,
            db_name=self.db_name,
            db_subnet_group_name=subnet_group.ref,
            engine="postgres",
            engine_version=params.postgres_version,
            master_username=username,
            master_user_password=self.database_secret.secret_value_from_json("password").unsafe_unwrap(),
            publicly_accessible=False,
            vpc_security_groups=[self.database_security_group.attr_group_id],
        )

        secretsmanager.CfnSecretTargetAttachment(
            self,
            "secretTargetAttachment",
            secret_id=self.database_secret.secret_arn,
            target_id=self.db_instance.ref,
            target_type="AWS::RDS::DBInstance",
        )

        self._write_output_parameters()

    def _write_output_parameters(self) -> None:
        values = {
            PARAMETER_ENDPOINT_ADDRESS: self.db_instance.attr_endpoint_address,
            PARAMETER_ENDPOINT_PORT: self.db_instance.attr_endpoint_port,
            PARAMETER_DATABASE_NAME: self.db_name,
            PARAMETER_SECURITY_GROUP_ID: self.database_security_group.attr_group_id,
            PARAMETER_SECRET_ARN: self.database_secret.secret_arn,
            PARAMETER_INSTANCE_ID: self.db_instance.ref,
        }
        for key, value in values.items():
            write_parameter(
                self,
                key,
                name=component_parameter_name(self.application_environment, COMPONENT, key),
                value=value,
            )

    @staticmethod
    def get_output_parameters_from_parameter_store(
        scope: Construct, application_environment: ApplicationEnvironment
    ) -> DatabaseOutputParameters:
        def read(key: str) -> str:
            return read_parameter(scope, component_parameter_name(application_environment, COMPONENT, key))

        return DatabaseOutputParameters(
            endpoint_address=read(PARAMETER_ENDPOINT_ADDRESS),
            endpoint_port=read(PARAMETER_ENDPOINT_PORT),
            db_name=read(PARAMETER_DATABASE_NAME),
            database_secret_arn=read(PARAMETER_SECRET_ARN),
            database_security_group_id=read(PARAMETER_SECURITY_GROUP_ID),
            instance_id=read(PARAMETER_INSTANCE_ID),
        )


def _sanitize_db_parameter_name(name: str) -> str:
    # RDS database and user names must be alphanumeric and start with a letter.
    value = _NON_ALNUM.sub("", name)
    if not value[:1].isalpha():
        value = f"db{value}"
    return value[:63]
