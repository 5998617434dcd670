"""
Load Balancer Stack
Internet-facing network load balancer in front of the node HTTP port
"""
from aws_cdk import (
    CfnOutput,
    CfnParameter,
    Stack,
    aws_elasticloadbalancingv2 as elbv2,
)
from constructs import Construct

from .tagging import TaggingFramework


class LoadBalancerStack(Stack):
    """Template for the NLB, its target group and listener (TCP:80 or TLS:443)"""

    def __init__(self, scope: Construct, construct_id: str,
                 with_tls: bool = False, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.with_tls = with_tls

        self.vpc_id = CfnParameter(self, "VpcId", type="String")
        self.subnet_ids = CfnParameter(self, "PublicSubnetIds", type="CommaDelimitedList")
        self.http_port = CfnParameter(
            self, "HttpPort", type="Number", default=9650,
            description="Node HTTP API port the target group forwards to"
        )
        if with_tls:
            self.certificate_arn = CfnParameter(
                self, "NlbAcmCertificateArn", type="String",
                description="ACM certificate for the TLS listener"
            )

        TaggingFramework(self, "TaggingFramework", component="load-balancer")

        self._create_load_balancer()
        self._create_target_group()
        self._create_listener()

        CfnOutput(self, "NlbArn", value=self.load_balancer.ref)
        CfnOutput(self, "NlbTargetGroupArn", value=self.target_group.ref)
        CfnOutput(self, "NlbDnsName", value=self.load_balancer.attr_dns_name)

    def _create_load_balancer(self) -> None:
        self.load_balancer = elbv2.CfnLoadBalancer(
            self, "NetworkLoadBalancer",
            type="network",
            scheme="internet-facing",
            subnets=self.subnet_ids.value_as_list
        )

    def _create_target_group(self) -> None:
        self.target_group = elbv2.CfnTargetGroup(
            self, "TargetGroup",
            vpc_id=self.vpc_id.value_as_string,
            port=self.http_port.value_as_number,
            protocol="TCP",
            target_type="instance",
            health_check_protocol="TCP",
            health_check_port="traffic-port",
            health_check_interval_seconds=10,
            healthy_threshold_count=3,
            unhealthy_threshold_count=3
        )

    def _create_listener(self) -> None:
        listener_props = {
            "load_balancer_arn": self.load_balancer.ref,
            "default_actions": [
                elbv2.CfnListener.ActionProperty(
                    type="forward",
                    target_group_arn=self.target_group.ref
                )
            ],
        }
        if self.with_tls:
            listener_props.update({
                "port": 443,
                "protocol": "TLS",
                "certificates": [
                    elbv2.CfnListener.CertificateProperty(
                        certificate_arn=self.certificate_arn.value_as_string
                    )
                ],
            })
        else:
            listener_props.update({"port": 80, "protocol": "TCP"})

        self.listener = elbv2.CfnListener(self, "Listener", **listener_props)
