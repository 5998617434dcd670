"""
Scaling Client
Attaches load balancer target groups to auto scaling groups
"""
import logging

from botocore.exceptions import BotoCoreError, ClientError

from .base import AwsClient
from ..errors import ProvisioningError


logger = logging.getLogger(__name__)


class ScalingClient(AwsClient):
    """Auto Scaling operations"""

    service_name = "autoscaling"

    def attach_target_group(self, asg_name: str, target_group_arn: str) -> None:
        """Register an ASG with a target group (idempotent on the AWS side)"""
        try:
            self.client.attach_load_balancer_target_groups(
                AutoScalingGroupName=asg_name,
                TargetGroupARNs=[target_group_arn],
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(
                f"Failed to attach target group {target_group_arn} to {asg_name}: {e}"
            ) from e
        logger.info(f"Attached target group {target_group_arn} to {asg_name}")
