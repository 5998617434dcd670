"""
Identity Resolver
Resolves the caller's AWS account identity from the ambient credentials
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .errors import IdentityError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Read-only snapshot of the STS caller identity"""

    account_id: str
    role_arn: str
    user_id: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "account_id": self.account_id,
            "role_arn": self.role_arn,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            account_id=str(data.get("account_id", "")),
            role_arn=str(data.get("role_arn", "")),
            user_id=str(data.get("user_id", "")),
        )


def resolve_identity(session: Optional[boto3.session.Session] = None,
                     region: Optional[str] = None) -> Identity:
    """Query STS for the caller identity; raises IdentityError without credentials"""
    session = session or boto3.session.Session()
    try:
        sts = session.client("sts", region_name=region)
        response = sts.get_caller_identity()
    except NoCredentialsError as e:
        raise IdentityError("No AWS credentials found in the environment") from e
    except (ClientError, BotoCoreError) as e:
        raise IdentityError(f"Failed to resolve caller identity: {e}") from e

    identity = Identity(
        account_id=response["Account"],
        role_arn=response["Arn"],
        user_id=response["UserId"],
    )
    logger.info(f"Resolved caller identity {identity.role_arn} (account {identity.account_id})")
    return identity
