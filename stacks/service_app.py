from __future__ import annotations

import time

from aws_cdk import App, Environment, Stack, aws_iam as iam, aws_secretsmanager as secretsmanager
from constructs import Construct

from stacks.activemq_stack import ActiveMqOutputParameters, ActiveMqStack
from stacks.application_environment import ApplicationEnvironment
from stacks.cognito_stack import CognitoOutputParameters, CognitoStack
from stacks.messaging_stack import MessagingOutputParameters, MessagingStack
from stacks.network import Network
from stacks.postgres_database import DatabaseOutputParameters, PostgresDatabase
from stacks.service import DockerImageSource, Service, ServiceInputParameters
from stacks.validation import required_context

SQS_ACTIONS = [
    "sqs:DeleteMessage",
    "sqs:GetQueueUrl",
    "sqs:ListDeadLetterSourceQueues",
    "sqs:ListQueues",
    "sqs:ListQueueTags",
    "sqs:ReceiveMessage",
    "sqs:SendMessage",
    "sqs:ChangeMessageVisibility",
    "sqs:GetQueueAttributes",
]

# Seconds between target group health checks of the service containers.
HEALTH_CHECK_INTERVAL_SECONDS = 30


def make_env(account: str, region: str) -> Environment:
    return Environment(account=account, region=region)


def jdbc_url(host: str, port: str, db_name: str) -> str:
    return f"jdbc:postgresql://{host}:{port}/{db_name}"


def environment_variables(
    scope: Construct,
    database_output_parameters: DatabaseOutputParameters,
    cognito_output_parameters: CognitoOutputParameters,
    messaging_output_parameters: MessagingOutputParameters,
    active_mq_output_parameters: ActiveMqOutputParameters,
    spring_profile: str,
) -> dict[str, str]:
    database_secret = secretsmanager.Secret.from_secret_complete_arn(
        scope, "databaseSecret", database_output_parameters.database_secret_arn
    )

    return {
        "SPRING_PROFILES_ACTIVE": spring_profile,
        "SPRING_DATASOURCE_URL": jdbc_url(
            database_output_parameters.endpoint_address,
            database_output_parameters.endpoint_port,
            database_output_parameters.db_name,
        ),
        "SPRING_DATASOURCE_USERNAME": database_secret.secret_value_from_json("username").unsafe_unwrap(),
        "SPRING_DATASOURCE_PASSWORD": database_secret.secret_value_from_json("password").unsafe_unwrap(),
        "COGNITO_CLIENT_ID": cognito_output_parameters.user_pool_client_id,
        "COGNITO_CLIENT_SECRET": cognito_output_parameters.user_pool_client_secret,
        "COGNITO_USER_POOL_ID": cognito_output_parameters.user_pool_id,
        "COGNITO_LOGOUT_URL": cognito_output_parameters.logout_url,
        "COGNITO_PROVIDER_URL": cognito_output_parameters.provider_url,
        "TODO_SHARING_QUEUE_NAME": messaging_output_parameters.todo_sharing_queue_name,
        "WEB_SOCKET_RELAY_ENDPOINT": active_mq_output_parameters.stomp_endpoint,
        "WEB_SOCKET_RELAY_USERNAME": active_mq_output_parameters.active_mq_username,
        "WEB_SOCKET_RELAY_PASSWORD": active_mq_output_parameters.active_mq_password,
    }


def task_role_policy_statements() -> list[iam.PolicyStatement]:
    return [
        iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            resources=["*"],
            actions=list(SQS_ACTIONS),
        ),
        iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            resources=["*"],
            actions=["cognito-idp:*"],
        ),
        iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            resources=["*"],
            actions=["ses:*"],
        ),
    ]


def build_service_app(app: App, *, timestamp_millis: int | None = None) -> Stack:
    environment_name = required_context(app, "environmentName")
    application_name = required_context(app, "applicationName")
    account_id = required_context(app, "accountId")
    spring_profile = required_context(app, "springProfile")
    docker_repository_name = required_context(app, "dockerRepositoryName")
    docker_image_tag = required_context(app, "dockerImageTag")
    region = required_context(app, "region")

    aws_environment = make_env(account_id, region)
    application_environment = ApplicationEnvironment(application_name, environment_name)

    # Parameters may still be referenced by the running service stack, so an
    # in-place update of this stack would fail. Each deployment gets a fresh
    # parameters stack; old ones have to be deleted manually.
    timestamp = int(time.time() * 1000) if timestamp_millis is None else timestamp_millis
    parameters_stack = Stack(
        app,
        f"ServiceParameters-{timestamp}",
        stack_name=application_environment.prefix(f"Service-Parameters-{timestamp}"),
        env=aws_environment,
    )

    service_stack = Stack(
        app,
        "ServiceStack",
        stack_name=application_environment.prefix("Service"),
        env=aws_environment,
    )

    database_output_parameters = PostgresDatabase.get_output_parameters_from_parameter_store(
        parameters_stack, application_environment
    )
    cognito_output_parameters = CognitoStack.get_output_parameters_from_parameter_store(
        parameters_stack, application_environment
    )
    messaging_output_parameters = MessagingStack.get_output_parameters_from_parameter_store(
        parameters_stack, application_environment
    )
    active_mq_output_parameters = ActiveMqStack.get_output_parameters_from_parameter_store(
        parameters_stack, application_environment
    )

    security_group_ids_to_grant_ingress_from_ecs = [
        database_output_parameters.database_security_group_id,
        active_mq_output_parameters.active_mq_security_group_id,
    ]

    Service(
        service_stack,
        "Service",
        aws_environment=aws_environment,
        application_environment=application_environment,
        service_input_parameters=ServiceInputParameters(
            docker_image_source=DockerImageSource(
                repository_name=docker_repository_name,
                tag=docker_image_tag,
            ),
            security_group_ids_to_grant_ingress_from_ecs=security_group_ids_to_grant_ingress_from_ecs,
            environment_variables=environment_variables(
                service_stack,
                database_output_parameters,
                cognito_output_parameters,
                messaging_output_parameters,
                active_mq_output_parameters,
                spring_profile,
            ),
            task_role_policy_statements=task_role_policy_statements(),
            sticky_sessions_enabled=True,
            health_check_interval_seconds=HEALTH_CHECK_INTERVAL_SECONDS,
        ),
        network_output_parameters=Network.get_output_parameters_from_parameter_store(
            service_stack, application_environment.environment_name
        ),
    )

    return service_stack
