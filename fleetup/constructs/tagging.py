"""
Tagging Framework for fleet templates
Applies consistent tags to every taggable CloudFormation resource via a CDK Aspect
"""
from typing import Dict, Optional
import jsii
from aws_cdk import (
    Aspects,
    AspectPriority,
    CfnResource,
    IAspect,
    TagManager,
)
from constructs import Construct, IConstruct


@jsii.implements(IAspect)
class FleetTaggingAspect:
    """CDK Aspect that sets the fleet tags on taggable CloudFormation resources"""

    def __init__(self, component: str, additional_tags: Optional[Dict[str, str]] = None):
        self.component = component

        self.required_tags = {
            "App": "fleetup",
            "ManagedBy": "fleetup",
            "Component": component,
        }

        # Compliance requirements by resource type
        self.resource_type_tags = {
            "AWS::EC2::LaunchTemplate": {
                "DataClassification": "internal"
            },
            "AWS::AutoScaling::AutoScalingGroup": {
                "MonitoringLevel": "standard"
            },
            "AWS::ElasticLoadBalancingV2::LoadBalancer": {
                "Exposure": "public"
            },
        }

        if additional_tags:
            self.required_tags.update(additional_tags)

    def visit(self, node: IConstruct) -> None:
        """Tag CloudFormation resources only; tags set at this level create no new aspects"""
        if not isinstance(node, CfnResource):
            return
        if TagManager.is_taggable(node):
            tag_manager = node.tags
        elif TagManager.is_taggable_v2(node):
            tag_manager = node.cdk_tag_manager
        else:
            return

        tags = dict(self.required_tags)
        tags.update(self.resource_type_tags.get(node.cfn_resource_type, {}))

        for tag_key, tag_value in tags.items():
            tag_manager.set_tag(tag_key, tag_value)


class TaggingFramework(Construct):
    """Attaches the fleet tagging aspect to its scope"""

    def __init__(self, scope: Construct, construct_id: str,
                 component: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.component = component

        Aspects.of(scope).add(
            FleetTaggingAspect(component),
            priority=AspectPriority.MUTATING
        )
