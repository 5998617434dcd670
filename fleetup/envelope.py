"""
Persistence Envelope
Snapshots the resource ledger to a durable store so orchestration can resume
"""
import json
import os
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigError, ProvisioningError
from .ledger import ResourceLedger


logger = logging.getLogger(__name__)


class PersistenceEnvelope(ABC):
    """Base envelope: JSON encoding plus a single-writer lock around saves"""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @staticmethod
    def encode(ledger: ResourceLedger) -> bytes:
        return (json.dumps(ledger.to_dict(), indent=2) + "\n").encode("utf-8")

    @staticmethod
    def decode(payload: bytes, source: str) -> ResourceLedger:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"Ledger at {source} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Ledger at {source} must be a JSON object")
        return ResourceLedger.from_dict(data)

    def save(self, ledger: ResourceLedger) -> None:
        # Snapshot and write under one lock so saves land in ledger order
        with self._lock:
            self._write(self.encode(ledger))

    def is_stored_in(self, bucket: str) -> bool:
        """Whether the ledger object lives in the given S3 bucket"""
        return False

    @abstractmethod
    def load(self) -> ResourceLedger:
        ...

    @abstractmethod
    def exists(self) -> bool:
        ...

    @abstractmethod
    def _write(self, payload: bytes) -> None:
        ...


class LocalFileEnvelope(PersistenceEnvelope):
    """Stores the ledger as a JSON file, replaced atomically on every save"""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> ResourceLedger:
        if not self.exists():
            raise ConfigError(f"No ledger found at {self.path}")
        ledger = self.decode(self.path.read_bytes(), str(self.path))
        logger.info(f"Loaded ledger from {self.path}: {ledger!r}")
        return ledger

    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"Saved ledger to {self.path}")


class S3Envelope(PersistenceEnvelope):
    """Stores the ledger as a JSON object in S3"""

    def __init__(self, bucket: str, key: str, region: Optional[str] = None,
                 session: Optional[boto3.session.Session] = None) -> None:
        super().__init__()
        if not bucket or not key:
            raise ConfigError("S3 envelope requires both a bucket and a key")
        self.bucket = bucket
        self.key = key
        session = session or boto3.session.Session()
        self._s3 = session.client("s3", region_name=region)

    @property
    def location(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def is_stored_in(self, bucket: str) -> bool:
        return bool(bucket) and bucket == self.bucket

    def exists(self) -> bool:
        try:
            self._s3.head_object(Bucket=self.bucket, Key=self.key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NoSuchBucket"):
                return False
            raise ProvisioningError(f"Failed to check {self.location}: {e}") from e

    def load(self) -> ResourceLedger:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=self.key)
            payload = response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "NoSuchBucket", "404"):
                raise ConfigError(f"No ledger found at {self.location}") from e
            raise ProvisioningError(f"Failed to download {self.location}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to download {self.location}: {e}") from e

        ledger = self.decode(payload, self.location)
        logger.info(f"Loaded ledger from {self.location}: {ledger!r}")
        return ledger

    def _write(self, payload: bytes) -> None:
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self.key,
                Body=payload,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise ProvisioningError(f"Failed to upload ledger to {self.location}: {e}") from e
        logger.debug(f"Saved ledger to {self.location}")
