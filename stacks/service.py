from __future__ import annotations

from dataclasses import dataclass, field

from aws_cdk import (
    Environment,
    RemovalPolicy,
    Stack,
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
)
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment
from stacks.network import NetworkOutputParameters


@dataclass(frozen=True)
class DockerImageSource:
    """Either an ECR repository name plus tag, or a complete image URL."""

    repository_name: str | None = None
    tag: str | None = None
    image_url: str | None = None

    def __post_init__(self) -> None:
        has_repository = bool((self.repository_name or "").strip())
        has_url = bool((self.image_url or "").strip())
        if has_repository == has_url:
            raise ValueError("provide either repository_name and tag, or image_url")
        if has_repository and not (self.tag or "").strip():
            raise ValueError("tag is required when the image comes from an ECR repository")

    @property
    def is_ecr_source(self) -> bool:
        return bool((self.repository_name or "").strip())


@dataclass(frozen=True)
class ServiceInputParameters:
    docker_image_source: DockerImageSource
    security_group_ids_to_grant_ingress_from_ecs: list[str]
    environment_variables: dict[str, str]
    task_role_policy_statements: list[iam.PolicyStatement] = field(default_factory=list)
    health_check_path: str = "/actuator/health"
    container_port: int = 8080
    container_protocol: str = "HTTP"
    health_check_interval_seconds: int = 15
    health_check_timeout_seconds: int = 5
    healthy_threshold_count: int = 2
    unhealthy_threshold_count: int = 8
    log_retention: logs.RetentionDays = logs.RetentionDays.ONE_WEEK
    cpu: int = 256
    memory: int = 512
    desired_instances_count: int = 2
    maximum_instances_percent: int = 200
    minimum_healthy_instances_percent: int = 50
    sticky_sessions_enabled: bool = False
    sticky_sessions_cookie_duration_seconds: int = 3600
    listener_rule_priority: int = 2
    awslogs_date_time_format: str = "%Y-%m-%dT%H:%M:%S.%f%z"


class Service(Construct):
    """
    Fargate service behind the environment's load balancer.

    All network resources (VPC, subnets, cluster, listeners) come from
    NetworkOutputParameters, so the service stack can be deployed and
    replaced independently of the network stack.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        aws_environment: Environment,
        application_environment: ApplicationEnvironment,
        service_input_parameters: ServiceInputParameters,
        network_output_parameters: NetworkOutputParameters,
    ) -> None:
        super().__init__(scope, construct_id)

        params = service_input_parameters
        network = network_output_parameters
        if params.health_check_timeout_seconds >= params.health_check_interval_seconds:
            raise ValueError("health check timeout must be shorter than the health check interval")

        region = aws_environment.region or Stack.of(self).region
        container_name = "app"

        self.target_group = elbv2.CfnTargetGroup(
            self,
            "targetGroup",
            health_check_interval_seconds=params.health_check_interval_seconds,
            health_check_path=params.health_check_path,
            health_check_port=str(params.container_port),
            health_check_protocol=params.container_protocol,
            health_check_timeout_seconds=params.health_check_timeout_seconds,
            healthy_threshold_count=params.healthy_threshold_count,
            unhealthy_threshold_count=params.unhealthy_threshold_count,
            target_group_attributes=_stickiness_attributes(params),
            target_type="ip",
            port=params.container_port,
            protocol=params.container_protocol,
            vpc_id=network.vpc_id,
        )

        # With HTTPS in place the HTTP listener only redirects, so the rule
        # goes on exactly one listener.
        self.listener_rule = elbv2.CfnListenerRule(
            self,
            "listenerRule",
            listener_arn=network.https_listener_arn or network.http_listener_arn,
            priority=params.listener_rule_priority,
            actions=[
                elbv2.CfnListenerRule.ActionProperty(
                    type="forward",
                    target_group_arn=self.target_group.ref,
                )
            ],
            conditions=[
                elbv2.CfnListenerRule.RuleConditionProperty(
                    field="path-pattern",
                    values=["*"],
                )
            ],
        )

        self.log_group = logs.LogGroup(
            self,
            "ecsLogGroup",
            log_group_name=application_environment.prefix("logs"),
            retention=params.log_retention,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.ecs_security_group = ec2.CfnSecurityGroup(
            self,
            "ecsSecurityGroup",
            vpc_id=network.vpc_id,
            group_description="Security Group for the ECS containers",
        )

        ec2.CfnSecurityGroupIngress(
            self,
            "ecsIngressFromSelf",
            ip_protocol="-1",
            source_security_group_id=self.ecs_security_group.attr_group_id,
            group_id=self.ecs_security_group.attr_group_id,
        )

        ec2.CfnSecurityGroupIngress(
            self,
            "ecsIngressFromLoadbalancer",
            ip_protocol="-1",
            source_security_group_id=network.load_balancer_security_group_id,
            group_id=self.ecs_security_group.attr_group_id,
        )

        for index, security_group_id in enumerate(params.security_group_ids_to_grant_ingress_from_ecs, start=1):
            ec2.CfnSecurityGroupIngress(
                self,
                f"securityGroupIngress{index}",
                ip_protocol="-1",
                source_security_group_id=self.ecs_security_group.attr_group_id,
                group_id=security_group_id,
            )

        self.execution_role = iam.Role(
            self,
            "ecsTaskExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            path="/",
            inline_policies={
                "ecsTaskExecutionRolePolicy": iam.PolicyDocument(
                    statements=[
                        iam.PolicyStatement(
                            effect=iam.Effect.ALLOW,
                            actions=[
                                "ecr:GetAuthorizationToken",
                                "ecr:BatchCheckLayerAvailability",
                                "ecr:GetDownloadUrlForLayer",
                                "ecr:BatchGetImage",
                                "logs:CreateLogStream",
                                "logs:PutLogEvents",
                            ],
                            resources=["*"],
                        )
                    ]
                )
            },
        )

        inline_policies = {}
        if params.task_role_policy_statements:
            inline_policies["ecsTaskRolePolicy"] = iam.PolicyDocument(
                statements=list(params.task_role_policy_statements)
            )
        self.task_role = iam.Role(
            self,
            "ecsTaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            path="/",
            inline_policies=inline_policies or None,
        )

        image_source = params.docker_image_source
        if image_source.is_ecr_source:
            repository = ecr.Repository.from_repository_name(
                self, "ecrRepository", image_source.repository_name
            )
            repository.grant_pull(self.execution_role)
            image = repository.repository_uri_for_tag(image_source.tag)
        else:
            image = image_source.image_url

        container = ecs.CfnTaskDefinition.ContainerDefinitionProperty(
            name=container_name,
            cpu=params.cpu,
            memory=params.memory,
            image=image,
            essential=True,
            port_mappings=[
                ecs.CfnTaskDefinition.PortMappingProperty(
                    container_port=params.container_port,
                    protocol="tcp",
                )
            ],
            environment=[
                ecs.CfnTaskDefinition.KeyValuePairProperty(name=name, value=value)
                for name, value in sorted(params.environment_variables.items())
            ],
            log_configuration=ecs.CfnTaskDefinition.LogConfigurationProperty(
                log_driver="awslogs",
                options={
                    "awslogs-group": self.log_group.log_group_name,
                    "awslogs-region": region,
                    "awslogs-stream-prefix": application_environment.prefix("stream"),
                    "awslogs-datetime-format": params.awslogs_date_time_format,
                },
            ),
        )

        self.task_definition = ecs.CfnTaskDefinition(
            self,
            "taskDefinition",
            family=application_environment.prefix("td"),
            cpu=str(params.cpu),
            memory=str(params.memory),
            network_mode="awsvpc",
            requires_compatibilities=["FARGATE"],
            execution_role_arn=self.execution_role.role_arn,
            task_role_arn=self.task_role.role_arn,
            container_definitions=[container],
        )

        self.ecs_service = ecs.CfnService(
            self,
            "ecsService",
            cluster=network.ecs_cluster_name,
            launch_type="FARGATE",
            desired_count=params.desired_instances_count,
            task_definition=self.task_definition.ref,
            deployment_configuration=ecs.CfnService.DeploymentConfigurationProperty(
                maximum_percent=params.maximum_instances_percent,
                minimum_healthy_percent=params.minimum_healthy_instances_percent,
            ),
            network_configuration=ecs.CfnService.NetworkConfigurationProperty(
                awsvpc_configuration=ecs.CfnService.AwsVpcConfigurationProperty(
                    assign_public_ip="ENABLED",
                    security_groups=[self.ecs_security_group.attr_group_id],
                    subnets=network.public_subnets,
                )
            ),
            load_balancers=[
                ecs.CfnService.LoadBalancerProperty(
                    container_name=container_name,
                    container_port=params.container_port,
                    target_group_arn=self.target_group.ref,
                )
            ],
        )
        # The target group must be attached to a listener before ECS registers tasks in it.
        self.ecs_service.add_dependency(self.listener_rule)

        application_environment.tag(self)


def _stickiness_attributes(
    params: ServiceInputParameters,
) -> list[elbv2.CfnTargetGroup.TargetGroupAttributeProperty]:
    attrs = {"stickiness.enabled": "true" if params.sticky_sessions_enabled else "false"}
    if params.sticky_sessions_enabled:
        attrs["stickiness.type"] = "lb_cookie"
        attrs["stickiness.lb_cookie.duration_seconds"] = str(params.sticky_sessions_cookie_duration_seconds)
    return [
        elbv2.CfnTargetGroup.TargetGroupAttributeProperty(key=key, value=value)
        for key, value in attrs.items()
    ]
