import json
import sys
from pathlib import Path

import pytest
from aws_cdk import App, Stack, Token
from aws_cdk import assertions

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stacks.activemq_stack import ActiveMqOutputParameters
from stacks.cognito_stack import CognitoOutputParameters
from stacks.messaging_stack import MessagingOutputParameters
from stacks.postgres_database import DatabaseOutputParameters
from stacks.service_app import (
    SQS_ACTIONS,
    build_service_app,
    environment_variables,
    jdbc_url,
    task_role_policy_statements,
)

CONTEXT = {
    "environmentName": "staging",
    "applicationName": "todo-app",
    "accountId": "111122223333",
    "springProfile": "aws",
    "dockerRepositoryName": "todo-app",
    "dockerImageTag": "42",
    "region": "eu-central-1",
}

EXPECTED_ENV_KEYS = {
    "SPRING_PROFILES_ACTIVE",
    "SPRING_DATASOURCE_URL",
    "SPRING_DATASOURCE_USERNAME",
    "SPRING_DATASOURCE_PASSWORD",
    "COGNITO_CLIENT_ID",
    "COGNITO_CLIENT_SECRET",
    "COGNITO_USER_POOL_ID",
    "COGNITO_LOGOUT_URL",
    "COGNITO_PROVIDER_URL",
    "TODO_SHARING_QUEUE_NAME",
    "WEB_SOCKET_RELAY_ENDPOINT",
    "WEB_SOCKET_RELAY_USERNAME",
    "WEB_SOCKET_RELAY_PASSWORD",
}

TIMESTAMP = 1700000000000


def _synth_service_template(context: dict | None = None) -> dict:
    app = App(context=dict(CONTEXT if context is None else context))
    stack = build_service_app(app, timestamp_millis=TIMESTAMP)
    return assertions.Template.from_stack(stack).to_json()


def _find_resource(template: dict, resource_type: str, logical_id_contains: str = "") -> dict:
    for logical_id, resource in template["Resources"].items():
        if resource.get("Type") == resource_type and logical_id_contains in logical_id:
            return resource
    raise AssertionError(f"{resource_type} containing {logical_id_contains} not found")


def _statement_actions(stmt: dict) -> list[str]:
    actions = stmt.get("Action", [])
    if isinstance(actions, str):
        return [actions]
    return actions


@pytest.mark.parametrize("missing", sorted(CONTEXT))
def test_missing_context_variable_fails_before_any_stack_is_created(missing):
    context = {k: v for k, v in CONTEXT.items() if k != missing}
    app = App(context=context)

    with pytest.raises(ValueError, match=f"context variable '{missing}' must not be null"):
        build_service_app(app, timestamp_millis=TIMESTAMP)

    assert not [c for c in app.node.children if isinstance(c, Stack)]


@pytest.mark.parametrize("missing", ["environmentName", "dockerImageTag"])
def test_blank_context_variable_is_rejected(missing):
    context = dict(CONTEXT)
    context[missing] = "   "
    app = App(context=context)

    with pytest.raises(ValueError, match=missing):
        build_service_app(app, timestamp_millis=TIMESTAMP)


def test_jdbc_url_format():
    assert jdbc_url("db.example.internal", "5432", "todo") == "jdbc:postgresql://db.example.internal:5432/todo"


def test_environment_variables_contains_exactly_documented_keys():
    app = App()
    stack = Stack(app, "EnvVarsStack")
    env_vars = environment_variables(
        stack,
        DatabaseOutputParameters(
            endpoint_address="db.example.internal",
            endpoint_port="5432",
            db_name="stagingtodoappdatabase",
            database_secret_arn="arn:aws:secretsmanager:eu-central-1:111122223333:secret:db-AbCdEf",
            database_security_group_id="sg-db",
            instance_id="db-1",
        ),
        CognitoOutputParameters(
            user_pool_id="pool-1",
            user_pool_client_id="client-1",
            user_pool_client_secret="client-secret",
            logout_url="https://login.example.com/logout",
            provider_url="https://cognito-idp.eu-central-1.amazonaws.com/pool-1",
        ),
        MessagingOutputParameters(todo_sharing_queue_name="staging-todo-app-todo-sharing-queue"),
        ActiveMqOutputParameters(
            active_mq_username="relay",
            active_mq_password="relay-password",
            amqp_endpoint="amqps://broker:5671",
            stomp_endpoint="stomp+ssl://broker:61614",
            active_mq_security_group_id="sg-mq",
        ),
        "aws",
    )

    assert set(env_vars) == EXPECTED_ENV_KEYS
    assert env_vars["SPRING_PROFILES_ACTIVE"] == "aws"
    assert env_vars["SPRING_DATASOURCE_URL"] == "jdbc:postgresql://db.example.internal:5432/stagingtodoappdatabase"
    assert env_vars["COGNITO_CLIENT_SECRET"] == "client-secret"
    assert env_vars["TODO_SHARING_QUEUE_NAME"] == "staging-todo-app-todo-sharing-queue"
    assert env_vars["WEB_SOCKET_RELAY_ENDPOINT"] == "stomp+ssl://broker:61614"
    assert env_vars["WEB_SOCKET_RELAY_USERNAME"] == "relay"
    # Database credentials are resolved from the secret at deploy time.
    assert Token.is_unresolved(env_vars["SPRING_DATASOURCE_USERNAME"])
    assert Token.is_unresolved(env_vars["SPRING_DATASOURCE_PASSWORD"])


def test_task_role_policy_statements():
    statements = [s.to_statement_json() for s in task_role_policy_statements()]

    assert len(statements) == 3
    assert all(s["Effect"] == "Allow" and s["Resource"] == "*" for s in statements)
    assert sorted(_statement_actions(statements[0])) == sorted(SQS_ACTIONS)
    assert _statement_actions(statements[1]) == ["cognito-idp:*"]
    assert _statement_actions(statements[2]) == ["ses:*"]


def test_service_stack_names_and_parameters_stack():
    app = App(context=dict(CONTEXT))
    service_stack = build_service_app(app, timestamp_millis=TIMESTAMP)

    assert service_stack.stack_name == "staging-todo-app-Service"
    parameters_stack = app.node.find_child(f"ServiceParameters-{TIMESTAMP}")
    assert isinstance(parameters_stack, Stack)
    assert parameters_stack.stack_name == f"staging-todo-app-Service-Parameters-{TIMESTAMP}"
    assert service_stack.account == "111122223333"
    assert service_stack.region == "eu-central-1"


def test_task_definition_carries_environment_and_image():
    template = _synth_service_template()
    task_def = _find_resource(template, "AWS::ECS::TaskDefinition")
    container = task_def["Properties"]["ContainerDefinitions"][0]

    names = [e["Name"] for e in container["Environment"]]
    assert set(names) == EXPECTED_ENV_KEYS
    assert len(names) == len(EXPECTED_ENV_KEYS)
    profile = next(e for e in container["Environment"] if e["Name"] == "SPRING_PROFILES_ACTIVE")
    assert profile["Value"] == "aws"
    assert "/todo-app:42" in json.dumps(container["Image"])
    assert task_def["Properties"]["RequiresCompatibilities"] == ["FARGATE"]


def test_task_role_grants_sqs_cognito_and_ses():
    template = _synth_service_template()
    role = _find_resource(template, "AWS::IAM::Role", "ecsTaskRole")
    statements = []
    for policy in role["Properties"]["Policies"]:
        statements.extend(policy["PolicyDocument"]["Statement"])

    actions = {a for s in statements for a in _statement_actions(s)}
    assert set(SQS_ACTIONS) <= actions
    assert "cognito-idp:*" in actions
    assert "ses:*" in actions


def test_target_group_uses_sticky_sessions_and_slow_health_checks():
    template = _synth_service_template()
    tg = _find_resource(template, "AWS::ElasticLoadBalancingV2::TargetGroup")
    props = tg["Properties"]

    assert props["HealthCheckIntervalSeconds"] == 30
    assert props["HealthCheckPath"] == "/actuator/health"
    attrs = {a["Key"]: a["Value"] for a in props["TargetGroupAttributes"]}
    assert attrs["stickiness.enabled"] == "true"
    assert attrs["stickiness.type"] == "lb_cookie"


def test_database_and_activemq_security_groups_get_ingress_from_ecs():
    template = _synth_service_template()
    ingress_ids = [
        logical_id
        for logical_id, resource in template["Resources"].items()
        if resource.get("Type") == "AWS::EC2::SecurityGroupIngress"
    ]

    # self + load balancer + database + ActiveMQ
    assert len(ingress_ids) == 4
    assert len([i for i in ingress_ids if "securityGroupIngress" in i]) == 2


HTTPS_LOOKUP_KEY = (
    "ssm:account=111122223333"
    ":parameterName=staging-Network-httpsListenerArn"
    ":region=eu-central-1"
)


def _listener_rule_arn(context: dict) -> object:
    template = _synth_service_template(context)
    rule = _find_resource(template, "AWS::ElasticLoadBalancingV2::ListenerRule")
    arn = rule["Properties"]["ListenerArn"]
    if isinstance(arn, dict) and "Ref" in arn:
        # Deploy-time SSM references surface as template parameters named by their default.
        return template["Parameters"][arn["Ref"]]["Default"]
    return arn


def test_listener_rule_uses_https_listener_from_lookup():
    https_arn = "arn:aws:elasticloadbalancing:eu-central-1:111122223333:listener/app/lb/1/https"
    arn = _listener_rule_arn({**CONTEXT, HTTPS_LOOKUP_KEY: https_arn})

    assert arn == https_arn


@pytest.mark.parametrize("looked_up", ["null", "dummy-value-for-staging-Network-httpsListenerArn"])
def test_listener_rule_falls_back_to_http_listener(looked_up):
    arn = _listener_rule_arn({**CONTEXT, HTTPS_LOOKUP_KEY: looked_up})

    assert arn == "staging-Network-httpListenerArn"
