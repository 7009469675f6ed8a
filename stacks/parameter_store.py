from __future__ import annotations

from aws_cdk import aws_ssm as ssm
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment


def network_parameter_name(environment_name: str, parameter: str) -> str:
    return f"{environment_name}-Network-{parameter}"


def component_parameter_name(
    application_environment: ApplicationEnvironment, component: str, parameter: str
) -> str:
    return (
        f"{application_environment.environment_name}-"
        f"{application_environment.application_name}-{component}-{parameter}"
    )


def write_parameter(scope: Construct, construct_id: str, *, name: str, value: str) -> ssm.StringParameter:
    return ssm.StringParameter(
        scope,
        construct_id,
        parameter_name=name,
        string_value=value,
    )


def read_parameter(scope: Construct, name: str) -> str:
    # Resolved by CloudFormation at deploy time, not at synth time.
    return ssm.StringParameter.value_for_string_parameter(scope, name)
