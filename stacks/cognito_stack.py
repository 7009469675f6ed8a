from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import (
    Duration,
    RemovalPolicy,
    Stack,
    aws_cognito as cognito,
    custom_resources as cr,
)
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment
from stacks.parameter_store import component_parameter_name, read_parameter, write_parameter

COMPONENT = "Cognito"

PARAMETER_USER_POOL_ID = "userPoolId"
PARAMETER_USER_POOL_CLIENT_ID = "userPoolClientId"
PARAMETER_USER_POOL_CLIENT_SECRET = "userPoolClientSecret"
PARAMETER_USER_POOL_LOGOUT_URL = "userPoolLogoutUrl"
PARAMETER_USER_POOL_PROVIDER_URL = "userPoolProviderUrl"


@dataclass(frozen=True)
class CognitoInputParameters:
    application_name: str
    application_url: str
    login_page_domain_prefix: str


@dataclass(frozen=True)
class CognitoOutputParameters:
    user_pool_id: str
    user_pool_client_id: str
    user_pool_client_secret: str
    logout_url: str
    provider_url: str


class CognitoStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        application_environment: ApplicationEnvironment,
        input_parameters: CognitoInputParameters,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.application_environment = application_environment
        application_url = input_parameters.application_url.rstrip("/")
        self.logout_url = (
            f"https://{input_parameters.login_page_domain_prefix}.auth.{self.region}"
            ".amazoncognito.com/logout"
        )

        self.user_pool = cognito.UserPool(
            self,
            "userPool",
            user_pool_name=f"{input_parameters.application_name}-user-pool",
            self_sign_up_enabled=True,
            account_recovery=cognito.AccountRecovery.EMAIL_ONLY,
            auto_verify=cognito.AutoVerifiedAttrs(email=True, phone=False),
            sign_in_aliases=cognito.SignInAliases(username=True, email=True),
            sign_in_case_sensitive=True,
            standard_attributes=cognito.StandardAttributes(
                email=cognito.StandardAttribute(required=True, mutable=False),
            ),
            mfa=cognito.Mfa.OFF,
            password_policy=cognito.PasswordPolicy(
                min_length=12,
                require_digits=True,
                require_lowercase=True,
                require_uppercase=True,
                require_symbols=True,
            ),
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.user_pool_client = self.user_pool.add_client(
            "userPoolClient",
            user_pool_client_name=f"{input_parameters.application_name}-client",
            generate_secret=True,
            auth_flows=cognito.AuthFlow(user_password=True, user_srp=True),
            refresh_token_validity=Duration.days(1),
            o_auth=cognito.OAuthSettings(
                callback_urls=[
                    f"{application_url}/login/oauth2/code/cognito",
                    "http://localhost:8080/login/oauth2/code/cognito",
                ],
                logout_urls=[application_url, "http://localhost:8080"],
                flows=cognito.OAuthFlows(authorization_code_grant=True),
                scopes=[
                    cognito.OAuthScope.EMAIL,
                    cognito.OAuthScope.OPENID,
                    cognito.OAuthScope.PROFILE,
                ],
            ),
            supported_identity_providers=[cognito.UserPoolClientIdentityProvider.COGNITO],
            prevent_user_existence_errors=True,
        )

        self.user_pool.add_domain(
            "userPoolDomain",
            cognito_domain=cognito.CognitoDomainOptions(
                domain_prefix=input_parameters.login_page_domain_prefix,
            ),
        )

        # The generated client secret is not exposed as a CloudFormation
        # attribute; read it back through the Cognito API.
        describe_client = cr.AwsCustomResource(
            self,
            "describeUserPoolClient",
            resource_type="Custom::DescribeCognitoUserPoolClient",
            install_latest_aws_sdk=False,
            on_create=cr.AwsSdkCall(
                service="CognitoIdentityServiceProvider",
                action="describeUserPoolClient",
                parameters={
                    "UserPoolId": self.user_pool.user_pool_id,
                    "ClientId": self.user_pool_client.user_pool_client_id,
                },
                region=self.region,
                physical_resource_id=cr.PhysicalResourceId.of(
                    self.user_pool_client.user_pool_client_id
                ),
            ),
            policy=cr.AwsCustomResourcePolicy.from_sdk_calls(
                resources=cr.AwsCustomResourcePolicy.ANY_RESOURCE
            ),
        )
        self.user_pool_client_secret = describe_client.get_response_field(
            "UserPoolClient.ClientSecret"
        )

        application_environment.tag(self)
        self._write_output_parameters()

    def _write_output_parameters(self) -> None:
        values = {
            PARAMETER_USER_POOL_ID: self.user_pool.user_pool_id,
            PARAMETER_USER_POOL_CLIENT_ID: self.user_pool_client.user_pool_client_id,
            PARAMETER_USER_POOL_CLIENT_SECRET: self.user_pool_client_secret,
            PARAMETER_USER_POOL_LOGOUT_URL: self.logout_url,
            PARAMETER_USER_POOL_PROVIDER_URL: self.user_pool.user_pool_provider_url,
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
    ) -> CognitoOutputParameters:
        def read(key: str) -> str:
            return read_parameter(scope, component_parameter_name(application_environment, COMPONENT, key))

        return CognitoOutputParameters(
            user_pool_id=read(PARAMETER_USER_POOL_ID),
            user_pool_client_id=read(PARAMETER_USER_POOL_CLIENT_ID),
            user_pool_client_secret=read(PARAMETER_USER_POOL_CLIENT_SECRET),
            logout_url=read(PARAMETER_USER_POOL_LOGOUT_URL),
            provider_url=read(PARAMETER_USER_POOL_PROVIDER_URL),
        )
