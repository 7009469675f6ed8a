from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import (
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_ssm as ssm,
)
from constructs import Construct

from stacks.parameter_store import network_parameter_name, read_parameter, write_parameter

PARAMETER_VPC_ID = "vpcId"
PARAMETER_HTTP_LISTENER = "httpListenerArn"
PARAMETER_HTTPS_LISTENER = "httpsListenerArn"
PARAMETER_LOADBALANCER_SECURITY_GROUP_ID = "loadBalancerSecurityGroupId"
PARAMETER_ECS_CLUSTER_NAME = "ecsClusterName"
PARAMETER_ISOLATED_SUBNET_ONE = "isolatedSubnetIdOne"
PARAMETER_ISOLATED_SUBNET_TWO = "isolatedSubnetIdTwo"
PARAMETER_PUBLIC_SUBNET_ONE = "publicSubnetIdOne"
PARAMETER_PUBLIC_SUBNET_TWO = "publicSubnetIdTwo"
PARAMETER_AVAILABILITY_ZONE_ONE = "availabilityZoneOne"
PARAMETER_AVAILABILITY_ZONE_TWO = "availabilityZoneTwo"
PARAMETER_LOAD_BALANCER_ARN = "loadBalancerArn"
PARAMETER_LOAD_BALANCER_DNS_NAME = "loadBalancerDnsName"
PARAMETER_LOAD_BALANCER_HOSTED_ZONE_ID = "loadBalancerCanonicalHostedZoneId"

# Written in place of the HTTPS listener ARN when the network has no certificate.
NO_HTTPS_LISTENER = "null"


@dataclass(frozen=True)
class NetworkInputParameters:
    ssl_certificate_arn: str | None = None
    vpc_cidr: str = "10.0.0.0/16"
    subnet_cidr_mask: int = 24


@dataclass(frozen=True)
class NetworkOutputParameters:
    vpc_id: str
    http_listener_arn: str
    https_listener_arn: str | None
    load_balancer_security_group_id: str
    ecs_cluster_name: str
    isolated_subnets: list[str]
    public_subnets: list[str]
    availability_zones: list[str]
    load_balancer_arn: str
    load_balancer_dns_name: str
    load_balancer_canonical_hosted_zone_id: str


class Network(Construct):
    """
    Shared network of one environment: a VPC with public and isolated
    subnets in two availability zones, an ECS cluster, and a public
    application load balancer. Application services attach to it through
    the parameters it writes to the parameter store.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        environment_name: str,
        network_input_parameters: NetworkInputParameters | None = None,
    ) -> None:
        super().__init__(scope, construct_id)

        self.environment_name = (environment_name or "").strip()
        if not self.environment_name:
            raise ValueError("environment_name is required for the network.")
        params = network_input_parameters or NetworkInputParameters()

        self.vpc = ec2.Vpc(
            self,
            "vpc",
            ip_addresses=ec2.IpAddresses.cidr(params.vpc_cidr),
            max_azs=2,
            nat_gateways=0,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="publicSubnet",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=params.subnet_cidr_mask,
                ),
                ec2.SubnetConfiguration(
                    name="isolatedSubnet",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=params.subnet_cidr_mask,
                ),
            ],
        )

        self.ecs_cluster = ecs.Cluster(
            self,
            "cluster",
            vpc=self.vpc,
            cluster_name=self._prefix("ecsCluster"),
        )

        self.load_balancer_security_group = ec2.SecurityGroup(
            self,
            "loadbalancerSecurityGroup",
            vpc=self.vpc,
            description="Public access to the load balancer.",
            allow_all_outbound=True,
        )
        self.load_balancer_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "HTTP from anywhere"
        )

        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self,
            "loadbalancer",
            vpc=self.vpc,
            internet_facing=True,
            load_balancer_name=self._prefix("loadbalancer"),
            security_group=self.load_balancer_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )

        # Services register listener rules; unmatched requests get a 404.
        not_found = elbv2.ListenerAction.fixed_response(
            404, content_type="text/plain", message_body="not found"
        )

        self.https_listener: elbv2.ApplicationListener | None = None
        if params.ssl_certificate_arn:
            self.load_balancer_security_group.add_ingress_rule(
                ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "HTTPS from anywhere"
            )
            self.https_listener = self.load_balancer.add_listener(
                "httpsListener",
                port=443,
                protocol=elbv2.ApplicationProtocol.HTTPS,
                open=False,
                certificates=[elbv2.ListenerCertificate.from_arn(params.ssl_certificate_arn)],
                default_action=not_found,
            )
            http_default = elbv2.ListenerAction.redirect(
                protocol="HTTPS", port="443", permanent=True
            )
        else:
            http_default = not_found

        self.http_listener = self.load_balancer.add_listener(
            "httpListener",
            port=80,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=False,
            default_action=http_default,
        )

        self._write_output_parameters()

    def _prefix(self, name: str) -> str:
        return f"{self.environment_name}-{name}"

    def _write_output_parameters(self) -> None:
        isolated = self.vpc.isolated_subnets
        public = self.vpc.public_subnets
        azs = self.vpc.availability_zones
        values = {
            PARAMETER_VPC_ID: self.vpc.vpc_id,
            PARAMETER_HTTP_LISTENER: self.http_listener.listener_arn,
            PARAMETER_HTTPS_LISTENER: (
                self.https_listener.listener_arn if self.https_listener else NO_HTTPS_LISTENER
            ),
            PARAMETER_LOADBALANCER_SECURITY_GROUP_ID: self.load_balancer_security_group.security_group_id,
            PARAMETER_ECS_CLUSTER_NAME: self.ecs_cluster.cluster_name,
            PARAMETER_ISOLATED_SUBNET_ONE: isolated[0].subnet_id,
            PARAMETER_ISOLATED_SUBNET_TWO: isolated[1].subnet_id,
            PARAMETER_PUBLIC_SUBNET_ONE: public[0].subnet_id,
            PARAMETER_PUBLIC_SUBNET_TWO: public[1].subnet_id,
            PARAMETER_AVAILABILITY_ZONE_ONE: azs[0],
            PARAMETER_AVAILABILITY_ZONE_TWO: azs[1],
            PARAMETER_LOAD_BALANCER_ARN: self.load_balancer.load_balancer_arn,
            PARAMETER_LOAD_BALANCER_DNS_NAME: self.load_balancer.load_balancer_dns_name,
            PARAMETER_LOAD_BALANCER_HOSTED_ZONE_ID: self.load_balancer.load_balancer_canonical_hosted_zone_id,
        }
        for key, value in values.items():
            write_parameter(
                self,
                key,
                name=network_parameter_name(self.environment_name, key),
                value=value,
            )

    @staticmethod
    def get_output_parameters_from_parameter_store(
        scope: Construct,
        environment_name: str,
        *,
        lookup_https_listener: bool = True,
    ) -> NetworkOutputParameters:
        def read(key: str) -> str:
            return read_parameter(scope, network_parameter_name(environment_name, key))

        return NetworkOutputParameters(
            vpc_id=read(PARAMETER_VPC_ID),
            http_listener_arn=read(PARAMETER_HTTP_LISTENER),
            https_listener_arn=(
                _https_listener_arn_from_lookup(scope, environment_name)
                if lookup_https_listener
                else None
            ),
            load_balancer_security_group_id=read(PARAMETER_LOADBALANCER_SECURITY_GROUP_ID),
            ecs_cluster_name=read(PARAMETER_ECS_CLUSTER_NAME),
            isolated_subnets=[read(PARAMETER_ISOLATED_SUBNET_ONE), read(PARAMETER_ISOLATED_SUBNET_TWO)],
            public_subnets=[read(PARAMETER_PUBLIC_SUBNET_ONE), read(PARAMETER_PUBLIC_SUBNET_TWO)],
            availability_zones=[read(PARAMETER_AVAILABILITY_ZONE_ONE), read(PARAMETER_AVAILABILITY_ZONE_TWO)],
            load_balancer_arn=read(PARAMETER_LOAD_BALANCER_ARN),
            load_balancer_dns_name=read(PARAMETER_LOAD_BALANCER_DNS_NAME),
            load_balancer_canonical_hosted_zone_id=read(PARAMETER_LOAD_BALANCER_HOSTED_ZONE_ID),
        )


def _https_listener_arn_from_lookup(scope: Construct, environment_name: str) -> str | None:
    # Whether a service gets an HTTPS listener rule is decided at synth time,
    # so this one parameter is looked up instead of resolved at deploy time.
    name = network_parameter_name(environment_name, PARAMETER_HTTPS_LISTENER)
    value = ssm.StringParameter.value_from_lookup(scope, name)
    if not value or value == NO_HTTPS_LISTENER or value.startswith("dummy-value-for-"):
        return None
    return value

