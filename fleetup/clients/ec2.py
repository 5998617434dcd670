"""
Key-Pair Client
Creates EC2 SSH key pairs and keeps the private key on local disk
"""
import os
import logging
from pathlib import Path
from typing import Tuple, Union

from botocore.exceptions import BotoCoreError, ClientError

from .base import AwsClient, error_code
from ..errors import ProvisioningError


logger = logging.getLogger(__name__)


class KeyPairClient(AwsClient):
    """EC2 key pair operations"""

    service_name = "ec2"

    def create_key_pair(self, name: str, path: Union[str, Path]) -> Tuple[str, str]:
        """Create the key pair and write its private key to path (mode 0400)

        If the key pair already exists and the private key is already on disk,
        a previous run created it without recording it; the pair is adopted.
        """
        key_path = Path(path).expanduser()
        try:
            response = self.client.create_key_pair(KeyName=name)
        except ClientError as e:
            if error_code(e) == "InvalidKeyPair.Duplicate":
                if key_path.is_file():
                    logger.info(f"Key pair {name} already exists; adopting private key at {key_path}")
                    return name, str(key_path)
                raise ProvisioningError(
                    f"Key pair {name} already exists but its private key is not at {key_path}"
                ) from e
            raise ProvisioningError(f"Failed to create key pair {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to create key pair {name}: {e}") from e

        self._write_private_key(key_path, response["KeyMaterial"])
        logger.info(f"Created key pair {name}; private key saved to {key_path}")
        return name, str(key_path)

    def delete_key_pair(self, name: str, path: Union[str, Path, None] = None) -> None:
        """Delete the key pair and its local private key"""
        try:
            self.client.delete_key_pair(KeyName=name)
        except ClientError as e:
            if error_code(e) != "InvalidKeyPair.NotFound":
                raise ProvisioningError(f"Failed to delete key pair {name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to delete key pair {name}: {e}") from e

        if path:
            key_path = Path(path).expanduser()
            if key_path.exists():
                key_path.unlink()
        logger.info(f"Deleted key pair {name}")

    @staticmethod
    def _write_private_key(key_path: Path, material: str) -> None:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        if key_path.exists():
            key_path.unlink()
        fd = os.open(str(key_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(material)
        os.chmod(key_path, 0o400)
