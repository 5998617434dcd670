"""
Scaling Group Stack
Launch template and auto scaling group for one tier of fleet nodes
"""
from aws_cdk import (
    CfnOutput,
    CfnParameter,
    Fn,
    Stack,
    aws_autoscaling as autoscaling,
    aws_ec2 as ec2,
)
from constructs import Construct

from .tagging import TaggingFramework


NODE_KINDS = ["anchor", "non-anchor"]

USER_DATA = """#!/usr/bin/env bash
set -xeu

mkdir -p /etc/fleetup
cat > /etc/fleetup/node.env <<EOT
FLEET_ID=${FleetId}
NODE_KIND=${NodeKind}
AWS_REGION=${AWS::Region}
S3_BUCKET=${S3BucketName}
METRICS_NAMESPACE=${MetricsNamespace}
SYSTEM_LOGS_ENABLED=${SystemLogsEnabled}
SYSTEM_METRICS_ENABLED=${SystemMetricsEnabled}
DB_BACKUP_S3_REGION=${DbBackupS3Region}
DB_BACKUP_S3_BUCKET=${DbBackupS3Bucket}
DB_BACKUP_S3_KEY=${DbBackupS3Key}
EOT
"""


class ScalingGroupStack(Stack):
    """Template for an anchor or non-anchor node auto scaling group"""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.fleet_id = CfnParameter(self, "Id", type="String", description="Deployment id")
        self.node_kind = CfnParameter(
            self, "NodeKind", type="String", allowed_values=NODE_KINDS,
            description="Node tier served by this group"
        )
        self.s3_bucket_name = CfnParameter(self, "S3BucketName", type="String")
        self.key_name = CfnParameter(self, "Ec2KeyPairName", type="String")
        self.instance_profile_arn = CfnParameter(self, "InstanceProfileArn", type="String")
        self.security_group_id = CfnParameter(self, "SecurityGroupId", type="String")
        self.subnet_ids = CfnParameter(self, "PublicSubnetIds", type="CommaDelimitedList")
        self.image_id = CfnParameter(self, "ImageId", type="String")
        self.instance_type = CfnParameter(self, "InstanceType", type="String", default="c5.2xlarge")
        self.capacity = CfnParameter(self, "Capacity", type="Number", default=1, min_value=1)
        self.volume_size = CfnParameter(
            self, "VolumeSize", type="Number", default=300, min_value=8,
            description="Root volume size in GB"
        )
        self.metrics_namespace = CfnParameter(self, "MetricsNamespace", type="String", default="")
        self.system_logs = CfnParameter(
            self, "SystemLogsEnabled", type="String", default="true", allowed_values=["true", "false"]
        )
        self.system_metrics = CfnParameter(
            self, "SystemMetricsEnabled", type="String", default="true", allowed_values=["true", "false"]
        )
        # Empty when nodes start without restoring a backup
        self.backup_region = CfnParameter(self, "DbBackupS3Region", type="String", default="")
        self.backup_bucket = CfnParameter(self, "DbBackupS3Bucket", type="String", default="")
        self.backup_key = CfnParameter(self, "DbBackupS3Key", type="String", default="")

        TaggingFramework(self, "TaggingFramework", component="scaling-group")

        self.group_name = Fn.join("-", [self.fleet_id.value_as_string, self.node_kind.value_as_string])

        self._create_launch_template()
        self._create_auto_scaling_group()

        CfnOutput(self, "AsgLogicalId", value=self.auto_scaling_group.ref)

    def _user_data(self) -> str:
        return Fn.base64(Fn.sub(USER_DATA, {
            "FleetId": self.fleet_id.value_as_string,
            "NodeKind": self.node_kind.value_as_string,
            "S3BucketName": self.s3_bucket_name.value_as_string,
            "MetricsNamespace": self.metrics_namespace.value_as_string,
            "SystemLogsEnabled": self.system_logs.value_as_string,
            "SystemMetricsEnabled": self.system_metrics.value_as_string,
            "DbBackupS3Region": self.backup_region.value_as_string,
            "DbBackupS3Bucket": self.backup_bucket.value_as_string,
            "DbBackupS3Key": self.backup_key.value_as_string,
        }))

    def _create_launch_template(self) -> None:
        self.launch_template = ec2.CfnLaunchTemplate(
            self, "LaunchTemplate",
            launch_template_name=self.group_name,
            launch_template_data=ec2.CfnLaunchTemplate.LaunchTemplateDataProperty(
                image_id=self.image_id.value_as_string,
                instance_type=self.instance_type.value_as_string,
                key_name=self.key_name.value_as_string,
                iam_instance_profile=ec2.CfnLaunchTemplate.IamInstanceProfileProperty(
                    arn=self.instance_profile_arn.value_as_string
                ),
                network_interfaces=[
                    ec2.CfnLaunchTemplate.NetworkInterfaceProperty(
                        device_index=0,
                        associate_public_ip_address=True,
                        delete_on_termination=True,
                        groups=[self.security_group_id.value_as_string]
                    )
                ],
                block_device_mappings=[
                    ec2.CfnLaunchTemplate.BlockDeviceMappingProperty(
                        device_name="/dev/sda1",
                        ebs=ec2.CfnLaunchTemplate.EbsProperty(
                            volume_size=self.volume_size.value_as_number,
                            volume_type="gp3",
                            encrypted=True,
                            delete_on_termination=True
                        )
                    )
                ],
                metadata_options=ec2.CfnLaunchTemplate.MetadataOptionsProperty(
                    http_tokens="required"
                ),
                user_data=self._user_data()
            )
        )

    def _create_auto_scaling_group(self) -> None:
        capacity = self.capacity.value_as_string
        self.auto_scaling_group = autoscaling.CfnAutoScalingGroup(
            self, "AutoScalingGroup",
            auto_scaling_group_name=self.group_name,
            min_size=capacity,
            max_size=capacity,
            desired_capacity=capacity,
            vpc_zone_identifier=self.subnet_ids.value_as_list,
            launch_template=autoscaling.CfnAutoScalingGroup.LaunchTemplateSpecificationProperty(
                launch_template_id=self.launch_template.ref,
                version=self.launch_template.attr_latest_version_number
            ),
            health_check_type="EC2",
            health_check_grace_period=300,
            tags=[
                autoscaling.CfnAutoScalingGroup.TagPropertyProperty(
                    key="Name", value=self.group_name, propagate_at_launch=True
                ),
                autoscaling.CfnAutoScalingGroup.TagPropertyProperty(
                    key="FLEET_ID", value=self.fleet_id.value_as_string, propagate_at_launch=True
                ),
                autoscaling.CfnAutoScalingGroup.TagPropertyProperty(
                    key="NODE_KIND", value=self.node_kind.value_as_string, propagate_at_launch=True
                ),
            ]
        )
