"""
Storage Client
S3 bucket existence checks, creation and removal
"""
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from .base import AwsClient, error_code
from ..errors import ConfigError, ProvisioningError


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound"}
_FORBIDDEN_CODES = {"403", "AccessDenied", "Forbidden"}


class S3StorageClient(AwsClient):
    """S3 operations for the deployment bucket"""

    service_name = "s3"

    def bucket_exists(self, name: str, expected_owner: Optional[str] = None) -> bool:
        """Check whether the bucket exists and belongs to expected_owner

        A bucket that exists under another account is refused with ConfigError,
        since reusing it would write fleet state into storage we do not own.
        """
        kwargs = {"Bucket": name}
        if expected_owner:
            kwargs["ExpectedBucketOwner"] = expected_owner

        try:
            self.client.head_bucket(**kwargs)
            return True
        except ClientError as e:
            code = error_code(e)
            if code in _NOT_FOUND_CODES:
                return False
            if code in _FORBIDDEN_CODES:
                raise ConfigError(
                    f"Bucket {name} exists but is not owned by account {expected_owner or 'of the caller'}; "
                    "refusing to reuse it"
                ) from e
            raise ProvisioningError(f"Failed to check bucket {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to check bucket {name}: {e}") from e

    def create_bucket(self, name: str, region: str) -> None:
        """Create a private, encrypted bucket in region"""
        kwargs = {"Bucket": name}
        # us-east-1 rejects an explicit location constraint
        if region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            self.client.create_bucket(**kwargs)
            logger.info(f"Created bucket {name} in {region}")
        except ClientError as e:
            code = error_code(e)
            if code == "BucketAlreadyOwnedByYou":
                logger.info(f"Bucket {name} already owned by this account")
            elif code == "BucketAlreadyExists":
                raise ConfigError(f"Bucket name {name} is taken by another account") from e
            else:
                raise ProvisioningError(f"Failed to create bucket {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to create bucket {name}: {e}") from e

        try:
            self.client.put_public_access_block(
                Bucket=name,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
            self.client.put_bucket_encryption(
                Bucket=name,
                ServerSideEncryptionConfiguration={
                    "Rules": [
                        {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
                    ]
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Failed to secure bucket {name}: {e}") from e

    def delete_bucket(self, name: str) -> None:
        """Empty and delete the bucket; a missing bucket counts as deleted"""
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=name):
                objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if objects:
                    self.client.delete_objects(Bucket=name, Delete={"Objects": objects, "Quiet": True})
            self.client.delete_bucket(Bucket=name)
            logger.info(f"Deleted bucket {name}")
        except ClientError as e:
            if error_code(e) in _NOT_FOUND_CODES:
                logger.info(f"Bucket {name} already deleted")
                return
            raise ProvisioningError(f"Failed to delete bucket {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to delete bucket {name}: {e}") from e
