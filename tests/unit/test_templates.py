"""
Unit tests for the fleet CloudFormation templates
Tests synthesis of each template and validates resource configurations
"""
import json
import pytest
import aws_cdk as cdk

from aws_cdk.assertions import Template, Match

from fleetup.constructs import (
    InstanceRoleStack,
    LoadBalancerStack,
    ScalingGroupStack,
    VpcStack,
    render_template,
    vpc_template_id,
)
from fleetup.constructs.templates import (
    INSTANCE_ROLE_TEMPLATE,
    LOAD_BALANCER_TLS_TEMPLATE,
    SCALING_GROUP_TEMPLATE,
    build_stack,
)


@pytest.fixture
def app():
    """Create CDK app for testing"""
    return cdk.App()


class TestInstanceRoleTemplate:
    """Test the EC2 instance role template"""

    @pytest.fixture
    def template(self, app):
        return Template.from_stack(InstanceRoleStack(app, "TestInstanceRole"))

    def test_role_assumed_by_ec2(self, template):
        template.has_resource_properties("AWS::IAM::Role", {
            "AssumeRolePolicyDocument": {
                "Statement": Match.array_with([
                    Match.object_like({"Principal": {"Service": "ec2.amazonaws.com"}})
                ])
            }
        })

    def test_instance_profile_and_output(self, template):
        template.resource_count_is("AWS::IAM::InstanceProfile", 1)
        template.has_output("InstanceProfileArn", {})

    def test_parameters(self, template):
        for name in ("RoleName", "KmsCmkArn", "S3BucketName"):
            template.has_parameter(name, {"Type": "String"})

    def test_kms_access_scoped_to_key(self, template):
        template.has_resource_properties("AWS::IAM::Policy", {
            "PolicyDocument": {
                "Statement": Match.array_with([
                    Match.object_like({
                        "Action": Match.array_with(["kms:Decrypt"]),
                        "Resource": {"Ref": "KmsCmkArn"},
                    })
                ])
            }
        })

    def test_required_tags_applied(self, template):
        template.has_resource_properties("AWS::IAM::Role", {
            "Tags": Match.array_with([
                {"Key": "App", "Value": "fleetup"},
                {"Key": "Component", "Value": "ec2-instance-role"},
            ])
        })


class TestVpcTemplate:
    """Test the VPC template"""

    @pytest.fixture
    def template(self, app):
        return Template.from_stack(VpcStack(app, "TestVpc", subnet_count=2))

    def test_one_public_subnet_per_zone(self, template):
        template.resource_count_is("AWS::EC2::VPC", 1)
        template.resource_count_is("AWS::EC2::Subnet", 2)
        template.resource_count_is("AWS::EC2::SubnetRouteTableAssociation", 2)
        template.has_resource_properties("AWS::EC2::Subnet", {"MapPublicIpOnLaunch": True})

    def test_internet_route(self, template):
        template.has_resource_properties("AWS::EC2::Route", {"DestinationCidrBlock": "0.0.0.0/0"})

    def test_security_group_opens_ssh(self, template):
        template.has_resource_properties("AWS::EC2::SecurityGroup", {
            "SecurityGroupIngress": Match.array_with([
                Match.object_like({"FromPort": 22, "ToPort": 22, "IpProtocol": "tcp"})
            ])
        })

    def test_outputs(self, template):
        for name in ("VpcId", "SecurityGroupId", "PublicSubnetIds"):
            template.has_output(name, {})

    def test_subnet_count_bounds(self, app):
        with pytest.raises(ValueError):
            VpcStack(app, "TooMany", subnet_count=9)


class TestScalingGroupTemplate:
    """Test the auto scaling group template"""

    @pytest.fixture
    def template(self, app):
        return Template.from_stack(ScalingGroupStack(app, "TestScalingGroup"))

    def test_fixed_capacity_group(self, template):
        template.has_resource_properties("AWS::AutoScaling::AutoScalingGroup", {
            "MinSize": {"Ref": "Capacity"},
            "MaxSize": {"Ref": "Capacity"},
            "DesiredCapacity": {"Ref": "Capacity"},
        })

    def test_launch_template_requires_imdsv2_and_encryption(self, template):
        template.has_resource_properties("AWS::EC2::LaunchTemplate", {
            "LaunchTemplateData": Match.object_like({
                "MetadataOptions": {"HttpTokens": "required"},
                "BlockDeviceMappings": [
                    Match.object_like({"Ebs": Match.object_like({"Encrypted": True, "VolumeType": "gp3"})})
                ],
            })
        })

    def test_node_kind_parameter(self, template):
        template.has_parameter("NodeKind", {"AllowedValues": ["anchor", "non-anchor"]})

    def test_backup_parameters_default_to_empty(self, template):
        for name in ("DbBackupS3Region", "DbBackupS3Bucket", "DbBackupS3Key"):
            template.has_parameter(name, {"Type": "String", "Default": ""})

    def test_output(self, template):
        template.has_output("AsgLogicalId", {})


class TestLoadBalancerTemplate:
    """Test the network load balancer templates"""

    def test_plain_listener(self, app):
        template = Template.from_stack(LoadBalancerStack(app, "TestNlb"))

        template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
            "Type": "network",
            "Scheme": "internet-facing",
        })
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 80,
            "Protocol": "TCP",
        })
        for name in ("NlbArn", "NlbTargetGroupArn", "NlbDnsName"):
            template.has_output(name, {})

    def test_tls_listener(self, app):
        template = Template.from_stack(LoadBalancerStack(app, "TestNlbTls", with_tls=True))

        template.has_parameter("NlbAcmCertificateArn", {"Type": "String"})
        template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
            "Port": 443,
            "Protocol": "TLS",
            "Certificates": [{"CertificateArn": {"Ref": "NlbAcmCertificateArn"}}],
        })


class TestTemplateRegistry:
    """Test template lookup and rendering"""

    def test_vpc_template_id(self):
        assert vpc_template_id(3) == "vpc-3az"

    def test_build_known_templates(self, app):
        for template_id in (INSTANCE_ROLE_TEMPLATE, SCALING_GROUP_TEMPLATE, LOAD_BALANCER_TLS_TEMPLATE):
            assert build_stack(template_id, cdk.App()) is not None
        assert isinstance(build_stack("vpc-1az", app), VpcStack)

    def test_unknown_template(self, app):
        with pytest.raises(KeyError):
            build_stack("database", app)

    def test_rendered_template_is_plain_cloudformation(self):
        body = json.loads(render_template(vpc_template_id(2)))

        assert "Resources" in body
        subnets = [r for r in body["Resources"].values() if r["Type"] == "AWS::EC2::Subnet"]
        assert len(subnets) == 2
        # Rendered without bootstrap resources so it can be submitted directly
        assert "BootstrapVersion" not in body.get("Parameters", {})

    def test_render_is_cached(self):
        assert render_template(INSTANCE_ROLE_TEMPLATE) is render_template(INSTANCE_ROLE_TEMPLATE)
