"""
Key-Management Client
Creates and schedules deletion of the fleet's KMS customer master key
"""
import logging
from typing import Dict, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .base import AwsClient, error_code
from ..errors import ProvisioningError


logger = logging.getLogger(__name__)


class KmsClient(AwsClient):
    """KMS operations for the fleet CMK"""

    service_name = "kms"

    def create_key(self, description: str, tags: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
        """Create a symmetric encryption key and return (key id, key arn)"""
        kwargs = {
            "Description": description,
            "KeyUsage": "ENCRYPT_DECRYPT",
            "KeySpec": "SYMMETRIC_DEFAULT",
        }
        if tags:
            kwargs["Tags"] = [{"TagKey": k, "TagValue": v} for k, v in tags.items()]

        try:
            metadata = self.client.create_key(**kwargs)["KeyMetadata"]
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Failed to create KMS key: {e}") from e

        logger.info(f"Created KMS key {metadata['KeyId']}")
        return metadata["KeyId"], metadata["Arn"]

    def describe_key(self, key_ref: str) -> Tuple[str, str]:
        """Look up an existing key by id or arn and return (key id, key arn)"""
        try:
            metadata = self.client.describe_key(KeyId=key_ref)["KeyMetadata"]
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Failed to describe KMS key {key_ref}: {e}") from e
        return metadata["KeyId"], metadata["Arn"]

    def schedule_key_deletion(self, key_id: str, pending_window_days: int = 7) -> None:
        """Schedule key deletion and confirm the key is pending deletion"""
        try:
            self.client.schedule_key_deletion(KeyId=key_id, PendingWindowInDays=pending_window_days)
        except ClientError as e:
            code = error_code(e)
            if code == "NotFoundException":
                logger.info(f"KMS key {key_id} no longer exists")
                return
            # Already pending deletion
            if code != "KMSInvalidStateException":
                raise ProvisioningError(f"Failed to schedule deletion of KMS key {key_id}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to schedule deletion of KMS key {key_id}: {e}") from e

        try:
            state = self.client.describe_key(KeyId=key_id)["KeyMetadata"]["KeyState"]
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Failed to confirm deletion of KMS key {key_id}: {e}") from e
        if state not in ("PendingDeletion", "PendingReplicaDeletion"):
            raise ProvisioningError(f"KMS key {key_id} is in state {state}, expected PendingDeletion")
        logger.info(f"KMS key {key_id} scheduled for deletion in {pending_window_days} days")
