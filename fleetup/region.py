"""
Region Selector
Resolves the effective AWS region from an explicit value, the environment or a fallback
"""
import os
import logging
from typing import Optional

import boto3


logger = logging.getLogger(__name__)

FALLBACK_REGION = "us-west-2"


def default_region_from_environment() -> Optional[str]:
    """Return the region the ambient AWS configuration points at, if any"""
    region = os.getenv("AWS_REGION")
    if region and region.strip():
        return region.strip()

    # Covers AWS_DEFAULT_REGION and the shared config file profile
    region = boto3.session.Session().region_name
    if region and region.strip():
        return region.strip()
    return None


def select_region(explicit: Optional[str] = None) -> str:
    """Pick the effective region: explicit, then environment default, then fallback"""
    if explicit and explicit.strip():
        region = explicit.strip()
        logger.info(f"Using explicitly requested region {region}")
        return region

    region = default_region_from_environment()
    if region:
        logger.info(f"Using region {region} from the AWS environment")
        return region

    logger.info(f"No region configured; falling back to {FALLBACK_REGION}")
    return FALLBACK_REGION
