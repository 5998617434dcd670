"""
Template Registry
Synthesizes fleet CDK stacks into CloudFormation template bodies
"""
import json
import re
import logging
from functools import lru_cache
from typing import Callable, Dict

from aws_cdk import App, BootstraplessSynthesizer, Stack

from .instance_role import InstanceRoleStack
from .load_balancer import LoadBalancerStack
from .scaling_group import ScalingGroupStack
from .vpc import VpcStack


logger = logging.getLogger(__name__)

INSTANCE_ROLE_TEMPLATE = "ec2-instance-role"
SCALING_GROUP_TEMPLATE = "scaling-group"
LOAD_BALANCER_TEMPLATE = "load-balancer"
LOAD_BALANCER_TLS_TEMPLATE = "load-balancer-tls"

_VPC_TEMPLATE_PATTERN = re.compile(r"^vpc-(\d)az$")

_CONSTRUCT_ID = "FleetTemplate"

_BUILDERS: Dict[str, Callable[[App], Stack]] = {
    INSTANCE_ROLE_TEMPLATE: lambda app: InstanceRoleStack(
        app, _CONSTRUCT_ID, synthesizer=BootstraplessSynthesizer()
    ),
    SCALING_GROUP_TEMPLATE: lambda app: ScalingGroupStack(
        app, _CONSTRUCT_ID, synthesizer=BootstraplessSynthesizer()
    ),
    LOAD_BALANCER_TEMPLATE: lambda app: LoadBalancerStack(
        app, _CONSTRUCT_ID, with_tls=False, synthesizer=BootstraplessSynthesizer()
    ),
    LOAD_BALANCER_TLS_TEMPLATE: lambda app: LoadBalancerStack(
        app, _CONSTRUCT_ID, with_tls=True, synthesizer=BootstraplessSynthesizer()
    ),
}


def vpc_template_id(subnet_count: int) -> str:
    """Template id of the VPC with one public subnet in each of subnet_count zones"""
    return f"vpc-{subnet_count}az"


def build_stack(template_id: str, app: App) -> Stack:
    """Instantiate the CDK stack for a template id inside app"""
    match = _VPC_TEMPLATE_PATTERN.match(template_id)
    if match:
        return VpcStack(
            app, _CONSTRUCT_ID,
            subnet_count=int(match.group(1)),
            synthesizer=BootstraplessSynthesizer()
        )

    builder = _BUILDERS.get(template_id)
    if builder is None:
        raise KeyError(f"Unknown template id: {template_id}")
    return builder(app)


@lru_cache(maxsize=None)
def render_template(template_id: str) -> str:
    """Return the CloudFormation JSON body for a template id (cached per process)"""
    app = App(analytics_reporting=False)
    stack = build_stack(template_id, app)
    template = app.synth().get_stack_by_name(stack.stack_name).template
    logger.info(f"Rendered template {template_id} with {len(template.get('Resources', {}))} resources")
    return json.dumps(template)
