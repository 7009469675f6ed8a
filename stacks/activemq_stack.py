from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import (
    Fn,
    Stack,
    aws_amazonmq as amazonmq,
    aws_ec2 as ec2,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment
from stacks.network import Network
from stacks.parameter_store import component_parameter_name, read_parameter, write_parameter

COMPONENT = "ActiveMq"

PARAMETER_USERNAME = "activeMqUsername"
PARAMETER_PASSWORD = "activeMqPassword"
PARAMETER_AMQP_ENDPOINT = "amqpEndpoint"
PARAMETER_STOMP_ENDPOINT = "stompEndpoint"
PARAMETER_SECURITY_GROUP_ID = "activeMqSecurityGroupId"

ACTIVEMQ_ENGINE_VERSION = "5.18"
ACTIVEMQ_INSTANCE_TYPE = "mq.t3.micro"


@dataclass(frozen=True)
class ActiveMqOutputParameters:
    active_mq_username: str
    active_mq_password: str
    amqp_endpoint: str
    stomp_endpoint: str
    active_mq_security_group_id: str


class ActiveMqStack(Stack):
    """
    Single-instance ActiveMQ broker used as the STOMP relay for the
    application's web socket messages.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        application_environment: ApplicationEnvironment,
        username: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        username = (username or "").strip()
        if not username:
            raise ValueError("username is required for the ActiveMQ broker.")

        self.application_environment = application_environment
        self.username = username
        network = Network.get_output_parameters_from_parameter_store(
            self,
            application_environment.environment_name,
            lookup_https_listener=False,
        )

        # ActiveMQ passwords must be at least 12 characters without commas, colons or equals signs.
        self.password_secret = secretsmanager.Secret(
            self,
            "activeMqPasswordSecret",
            secret_name=application_environment.prefix("ActiveMqPassword"),
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=32,
                exclude_punctuation=True,
                include_space=False,
            ),
        )
        self.password = self.password_secret.secret_value.unsafe_unwrap()

        self.security_group = ec2.CfnSecurityGroup(
            self,
            "amqSecurityGroup",
            vpc_id=network.vpc_id,
            group_description="Security Group for the ActiveMQ broker",
            group_name=application_environment.prefix("amqSecurityGroup"),
        )

        self.broker = amazonmq.CfnBroker(
            self,
            "broker",
            broker_name=application_environment.prefix("stompBroker", 50),
            engine_type="ACTIVEMQ",
            engine_version=ACTIVEMQ_ENGINE_VERSION,
            host_instance_type=ACTIVEMQ_INSTANCE_TYPE,
            deployment_mode="SINGLE_INSTANCE",
            auto_minor_version_upgrade=True,
            publicly_accessible=False,
            security_groups=[self.security_group.attr_group_id],
            subnet_ids=[network.isolated_subnets[0]],
            logs=amazonmq.CfnBroker.LogListProperty(general=True),
            users=[
                amazonmq.CfnBroker.UserProperty(
                    username=self.username,
                    password=self.password,
                    console_access=True,
                )
            ],
        )

        application_environment.tag(self)
        self._write_output_parameters()

    def _write_output_parameters(self) -> None:
        values = {
            PARAMETER_USERNAME: self.username,
            PARAMETER_PASSWORD: self.password,
            PARAMETER_AMQP_ENDPOINT: Fn.select(0, self.broker.attr_amqp_endpoints),
            PARAMETER_STOMP_ENDPOINT: Fn.select(0, self.broker.attr_stomp_endpoints),
            PARAMETER_SECURITY_GROUP_ID: self.security_group.attr_group_id,
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
    ) -> ActiveMqOutputParameters:
        def read(key: str) -> str:
            return read_parameter(scope, component_parameter_name(application_environment, COMPONENT, key))

        return ActiveMqOutputParameters(
            active_mq_username=read(PARAMETER_USERNAME),
            active_mq_password=read(PARAMETER_PASSWORD),
            amqp_endpoint=read(PARAMETER_AMQP_ENDPOINT),
            stomp_endpoint=read(PARAMETER_STOMP_ENDPOINT),
            active_mq_security_group_id=read(PARAMETER_SECURITY_GROUP_ID),
        )
