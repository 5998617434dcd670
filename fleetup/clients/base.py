"""
Client Base
Shared boto3 session handling and error helpers for provider clients
"""
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError


def error_code(error: ClientError) -> str:
    """Return the service error code of a botocore ClientError"""
    return str(error.response.get("Error", {}).get("Code", ""))


def error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", ""))


class AwsClient:
    """Holds a boto3 session and creates the service client lazily"""

    service_name = ""

    def __init__(self, region: Optional[str] = None,
                 session: Optional[boto3.session.Session] = None) -> None:
        self.region = region
        self._session = session or boto3.session.Session()
        self._client: Optional[Any] = None

    @property
    def client(self) -> Any:
        # AWS clients are initialized lazily
        if self._client is None:
            self._client = self._session.client(self.service_name, region_name=self.region)
        return self._client
