"""
Instance Role Stack
IAM role and instance profile assumed by fleet EC2 instances
"""
from aws_cdk import (
    CfnOutput,
    CfnParameter,
    Stack,
    aws_iam as iam,
)
from constructs import Construct

from .tagging import TaggingFramework


class InstanceRoleStack(Stack):
    """Template for the EC2 instance role and its instance profile"""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.role_name = CfnParameter(
            self, "RoleName", type="String",
            description="Name of the IAM role and instance profile"
        )
        self.kms_cmk_arn = CfnParameter(
            self, "KmsCmkArn", type="String",
            description="KMS CMK the instances may use for envelope encryption"
        )
        self.s3_bucket_name = CfnParameter(
            self, "S3BucketName", type="String",
            description="Deployment bucket holding configuration and backups"
        )

        TaggingFramework(self, "TaggingFramework", component="ec2-instance-role")

        self._create_role()
        self._create_instance_profile()

        CfnOutput(self, "InstanceProfileArn", value=self.instance_profile.attr_arn)

    def _create_role(self) -> None:
        """Create the role with least-privilege access to fleet resources"""
        self.role = iam.Role(
            self, "InstanceRole",
            role_name=self.role_name.value_as_string,
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            description="Instance role for fleet nodes",
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
            ]
        )

        self.role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "kms:Encrypt",
                    "kms:Decrypt",
                    "kms:GenerateDataKey*",
                    "kms:DescribeKey"
                ],
                resources=[self.kms_cmk_arn.value_as_string]
            )
        )

        bucket_arn = f"arn:aws:s3:::{self.s3_bucket_name.value_as_string}"
        self.role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:ListBucket"],
                resources=[bucket_arn]
            )
        )
        self.role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["s3:GetObject", "s3:PutObject"],
                resources=[f"{bucket_arn}/*"]
            )
        )

        # Nodes publish system logs and metrics when enabled
        self.role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "cloudwatch:PutMetricData",
                    "logs:CreateLogGroup",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                    "logs:DescribeLogStreams"
                ],
                resources=["*"]
            )
        )

        # Nodes discover their peers by tag
        self.role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=[
                    "ec2:DescribeInstances",
                    "ec2:DescribeTags",
                    "autoscaling:DescribeAutoScalingGroups"
                ],
                resources=["*"]
            )
        )

    def _create_instance_profile(self) -> None:
        self.instance_profile = iam.CfnInstanceProfile(
            self, "InstanceProfile",
            instance_profile_name=self.role_name.value_as_string,
            path="/",
            roles=[self.role.role_name]
        )
