"""
Provider Clients Module
boto3-backed collaborators the orchestrator drives
"""

from .storage import S3StorageClient
from .kms import KmsClient
from .ec2 import KeyPairClient
from .cloudformation import StackClient
from .autoscaling import ScalingClient

__all__ = [
    'S3StorageClient',
    'KmsClient',
    'KeyPairClient',
    'StackClient',
    'ScalingClient'
]
