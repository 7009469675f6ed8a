from __future__ import annotations

from typing import Callable

from aws_cdk import App, Stack

from stacks.activemq_stack import ActiveMqStack
from stacks.application_environment import ApplicationEnvironment
from stacks.cognito_stack import CognitoInputParameters, CognitoStack
from stacks.messaging_stack import MessagingStack
from stacks.network import Network, NetworkInputParameters
from stacks.postgres_database import PostgresDatabase
from stacks.service_app import build_service_app, make_env
from stacks.validation import required_context


def _application_environment(app: App) -> ApplicationEnvironment:
    return ApplicationEnvironment(
        required_context(app, "applicationName"),
        required_context(app, "environmentName"),
    )


def build_network_app(app: App) -> Stack:
    environment_name = required_context(app, "environmentName")
    account_id = required_context(app, "accountId")
    region = required_context(app, "region")
    ssl_certificate_arn = str(app.node.try_get_context("sslCertificateArn") or "").strip() or None

    stack = Stack(
        app,
        "NetworkStack",
        stack_name=f"{environment_name}-Network",
        env=make_env(account_id, region),
    )
    Network(
        stack,
        "Network",
        environment_name=environment_name,
        network_input_parameters=NetworkInputParameters(ssl_certificate_arn=ssl_certificate_arn),
    )
    return stack


def build_database_app(app: App) -> Stack:
    application_environment = _application_environment(app)
    account_id = required_context(app, "accountId")
    region = required_context(app, "region")

    stack = Stack(
        app,
        "DatabaseStack",
        stack_name=application_environment.prefix("Database"),
        env=make_env(account_id, region),
    )
    PostgresDatabase(stack, "Database", application_environment=application_environment)
    application_environment.tag(stack)
    return stack


def build_cognito_app(app: App) -> Stack:
    application_environment = _application_environment(app)
    account_id = required_context(app, "accountId")
    region = required_context(app, "region")
    application_url = required_context(app, "applicationUrl")
    login_page_domain_prefix = required_context(app, "loginPageDomainPrefix")

    return CognitoStack(
        app,
        "CognitoStack",
        stack_name=application_environment.prefix("Cognito"),
        env=make_env(account_id, region),
        application_environment=application_environment,
        input_parameters=CognitoInputParameters(
            application_name=application_environment.application_name,
            application_url=application_url,
            login_page_domain_prefix=login_page_domain_prefix,
        ),
    )


def build_messaging_app(app: App) -> Stack:
    application_environment = _application_environment(app)
    account_id = required_context(app, "accountId")
    region = required_context(app, "region")

    return MessagingStack(
        app,
        "MessagingStack",
        stack_name=application_environment.prefix("Messaging"),
        env=make_env(account_id, region),
        application_environment=application_environment,
    )


def build_activemq_app(app: App) -> Stack:
    application_environment = _application_environment(app)
    account_id = required_context(app, "accountId")
    region = required_context(app, "region")
    username = required_context(app, "activeMqUsername")

    return ActiveMqStack(
        app,
        "ActiveMqStack",
        stack_name=application_environment.prefix("ActiveMq"),
        env=make_env(account_id, region),
        application_environment=application_environment,
        username=username,
    )


APPS: dict[str, Callable[[App], Stack]] = {
    "network": build_network_app,
    "database": build_database_app,
    "cognito": build_cognito_app,
    "messaging": build_messaging_app,
    "activemq": build_activemq_app,
    "service": build_service_app,
}


def build_app(app: App) -> Stack:
    name = str(app.node.try_get_context("app") or "service").strip().lower()
    builder = APPS.get(name)
    if builder is None:
        raise ValueError(
            f"context variable 'app' must be one of {', '.join(sorted(APPS))} (got {name!r})"
        )
    return builder(app)
