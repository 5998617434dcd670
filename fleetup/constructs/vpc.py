"""
VPC Stack
Public network for fleet nodes: VPC, internet gateway, public subnets and security group
"""
from typing import List
from aws_cdk import (
    CfnOutput,
    CfnParameter,
    Fn,
    Stack,
    aws_ec2 as ec2,
)
from constructs import Construct

from .tagging import TaggingFramework


class VpcStack(Stack):
    """Template for the fleet VPC with one public subnet per availability zone"""

    def __init__(self, scope: Construct, construct_id: str,
                 subnet_count: int = 3, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if subnet_count < 1 or subnet_count > 8:
            raise ValueError("subnet_count must be between 1 and 8")
        self.subnet_count = subnet_count

        self.vpc_cidr = CfnParameter(
            self, "VpcCidr", type="String", default="10.0.0.0/16",
            description="IP range (CIDR notation) for the VPC"
        )
        self.subnet_cidrs = [
            CfnParameter(
                self, f"PublicSubnetCidr{i + 1}", type="String", default=f"10.0.{32 * i}.0/19",
                description=f"IP range (CIDR notation) for public subnet {i + 1}"
            )
            for i in range(subnet_count)
        ]
        self.ingress_range = CfnParameter(
            self, "IngressIpv4Range", type="String", default="0.0.0.0/0",
            description="IPv4 range allowed to reach SSH and the node ports"
        )
        self.http_port = CfnParameter(
            self, "HttpPort", type="Number", default=9650,
            description="Node HTTP API port"
        )
        self.peer_port = CfnParameter(
            self, "PeerPort", type="Number", default=9651,
            description="Node peer-to-peer port"
        )

        TaggingFramework(self, "TaggingFramework", component="vpc")

        self._create_network()
        self._create_public_subnets()
        self._create_security_group()

        CfnOutput(self, "VpcId", value=self.vpc.ref)
        CfnOutput(self, "SecurityGroupId", value=self.security_group.attr_group_id)
        CfnOutput(self, "PublicSubnetIds", value=Fn.join(",", [s.ref for s in self.public_subnets]))

    def _create_network(self) -> None:
        """Create the VPC, internet gateway and public route table"""
        self.vpc = ec2.CfnVPC(
            self, "Vpc",
            cidr_block=self.vpc_cidr.value_as_string,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            instance_tenancy="default"
        )

        self.internet_gateway = ec2.CfnInternetGateway(self, "InternetGateway")
        attachment = ec2.CfnVPCGatewayAttachment(
            self, "InternetGatewayAttachment",
            vpc_id=self.vpc.ref,
            internet_gateway_id=self.internet_gateway.ref
        )

        self.route_table = ec2.CfnRouteTable(self, "PublicRouteTable", vpc_id=self.vpc.ref)
        route = ec2.CfnRoute(
            self, "PublicRoute",
            route_table_id=self.route_table.ref,
            destination_cidr_block="0.0.0.0/0",
            gateway_id=self.internet_gateway.ref
        )
        # The route is only valid once the gateway is attached
        route.add_dependency(attachment)

    def _create_public_subnets(self) -> None:
        self.public_subnets: List[ec2.CfnSubnet] = []
        for i, cidr in enumerate(self.subnet_cidrs):
            subnet = ec2.CfnSubnet(
                self, f"PublicSubnet{i + 1}",
                vpc_id=self.vpc.ref,
                cidr_block=cidr.value_as_string,
                availability_zone=Fn.select(i, Fn.get_azs()),
                map_public_ip_on_launch=True
            )
            ec2.CfnSubnetRouteTableAssociation(
                self, f"PublicSubnet{i + 1}RouteTableAssociation",
                subnet_id=subnet.ref,
                route_table_id=self.route_table.ref
            )
            self.public_subnets.append(subnet)

    def _create_security_group(self) -> None:
        """Create the node security group; nodes in the group reach each other freely"""
        ingress = self.ingress_range.value_as_string
        self.security_group = ec2.CfnSecurityGroup(
            self, "SecurityGroup",
            group_description="Security group for fleet nodes",
            vpc_id=self.vpc.ref,
            security_group_ingress=[
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp", from_port=22, to_port=22, cidr_ip=ingress
                ),
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp",
                    from_port=self.http_port.value_as_number,
                    to_port=self.http_port.value_as_number,
                    cidr_ip=ingress
                ),
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp",
                    from_port=self.peer_port.value_as_number,
                    to_port=self.peer_port.value_as_number,
                    cidr_ip=ingress
                ),
            ],
            security_group_egress=[
                ec2.CfnSecurityGroup.EgressProperty(ip_protocol="-1", cidr_ip="0.0.0.0/0")
            ]
        )

        ec2.CfnSecurityGroupIngress(
            self, "SecurityGroupIntraFleetIngress",
            group_id=self.security_group.attr_group_id,
            ip_protocol="-1",
            source_security_group_id=self.security_group.attr_group_id
        )
