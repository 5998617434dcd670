"""
Constructs Module
CDK stacks rendered into the CloudFormation templates the orchestrator deploys
"""

from .instance_role import InstanceRoleStack
from .vpc import VpcStack
from .scaling_group import ScalingGroupStack
from .load_balancer import LoadBalancerStack
from .templates import render_template, vpc_template_id

__all__ = [
    'InstanceRoleStack',
    'VpcStack',
    'ScalingGroupStack',
    'LoadBalancerStack',
    'render_template',
    'vpc_template_id'
]
