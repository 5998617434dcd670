"""
Configuration Management
Fleet topology and orchestrator settings loaded from environment variables
"""
import os
import re
import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigError
from .ledger import ResourceKind, ResourceLedger
from .region import select_region


logger = logging.getLogger(__name__)

ENV_PREFIX = "FLEETUP_"

_DEPLOYMENT_ID_PATTERN = re.compile(r"^[a-z][a-z0-9-]{0,39}$")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {ENV_PREFIX}{name}={raw!r}; must be an integer") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {ENV_PREFIX}{name}={raw!r}; must be a number") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid {ENV_PREFIX}{name}={raw!r}; must be true or false")


@dataclass(frozen=True)
class FleetTopology:
    """Shape of the node fleet and the deterministic names derived from its id"""

    deployment_id: str
    image_id: str
    anchor_nodes: int = 0
    non_anchor_nodes: int = 1
    instance_type: str = "c5.2xlarge"
    volume_size_gb: int = 300
    http_port: int = 9650
    peer_port: int = 9651
    subnet_count: int = 3
    ingress_ipv4_range: str = "0.0.0.0/0"

    def validate(self) -> None:
        if not _DEPLOYMENT_ID_PATTERN.match(self.deployment_id or ""):
            raise ConfigError(
                f"deployment_id {self.deployment_id!r} must start with a letter and contain "
                "only lowercase letters, digits and hyphens (max 40 characters)"
            )
        if not self.image_id:
            raise ConfigError("image_id must be non-empty")
        if self.anchor_nodes < 0:
            raise ConfigError("anchor_nodes must not be negative")
        if self.non_anchor_nodes < 1:
            raise ConfigError("non_anchor_nodes must be at least 1")
        if not 1 <= self.subnet_count <= 8:
            raise ConfigError("subnet_count must be between 1 and 8")

    @property
    def has_anchor_tier(self) -> bool:
        return self.anchor_nodes > 0

    @property
    def key_pair_name(self) -> str:
        return f"{self.deployment_id}-ec2-key"

    @property
    def instance_role_stack_name(self) -> str:
        return f"{self.deployment_id}-ec2-instance-role"

    @property
    def vpc_stack_name(self) -> str:
        return f"{self.deployment_id}-vpc"

    @property
    def anchor_stack_name(self) -> str:
        return f"{self.deployment_id}-asg-anchor"

    @property
    def non_anchor_stack_name(self) -> str:
        return f"{self.deployment_id}-asg-non-anchor"

    @property
    def load_balancer_stack_name(self) -> str:
        return f"{self.deployment_id}-nlb"

    @property
    def metrics_namespace(self) -> str:
        return f"{self.deployment_id}-fleet"

    @classmethod
    def from_env(cls) -> "FleetTopology":
        deployment_id = _env("DEPLOYMENT_ID")
        if not deployment_id:
            raise ConfigError(f"Missing required environment variable: {ENV_PREFIX}DEPLOYMENT_ID")
        image_id = _env("IMAGE_ID")
        if not image_id:
            raise ConfigError(f"Missing required environment variable: {ENV_PREFIX}IMAGE_ID")

        return cls(
            deployment_id=deployment_id,
            image_id=image_id,
            anchor_nodes=_env_int("ANCHOR_NODES", 0),
            non_anchor_nodes=_env_int("NON_ANCHOR_NODES", 1),
            instance_type=_env("INSTANCE_TYPE", "c5.2xlarge"),
            volume_size_gb=_env_int("VOLUME_SIZE_GB", 300),
            http_port=_env_int("HTTP_PORT", 9650),
            peer_port=_env_int("PEER_PORT", 9651),
            subnet_count=_env_int("SUBNET_COUNT", 3),
            ingress_ipv4_range=_env("INGRESS_IPV4_RANGE", "0.0.0.0/0"),
        )


@dataclass(frozen=True)
class StepTimeouts:
    """Hard stabilization deadlines in seconds per resource kind"""

    instance_role: float = 900.0
    vpc: float = 900.0
    anchor_nodes: float = 1800.0
    non_anchor_nodes: float = 1800.0
    load_balancer: float = 900.0
    deletion: float = 1800.0

    def for_kind(self, kind: ResourceKind) -> float:
        return getattr(self, kind.value, self.deletion)

    @classmethod
    def from_env(cls) -> "StepTimeouts":
        defaults = cls()
        return cls(
            instance_role=_env_float("TIMEOUT_INSTANCE_ROLE", defaults.instance_role),
            vpc=_env_float("TIMEOUT_VPC", defaults.vpc),
            anchor_nodes=_env_float("TIMEOUT_ANCHOR_NODES", defaults.anchor_nodes),
            non_anchor_nodes=_env_float("TIMEOUT_NON_ANCHOR_NODES", defaults.non_anchor_nodes),
            load_balancer=_env_float("TIMEOUT_LOAD_BALANCER", defaults.load_balancer),
            deletion=_env_float("TIMEOUT_DELETION", defaults.deletion),
        )


@dataclass(frozen=True)
class FleetConfiguration:
    """Runtime configuration for one fleetup invocation"""

    topology: FleetTopology
    action: str = "apply"
    region: Optional[str] = None
    s3_bucket: str = ""
    ledger_path: str = "fleetup-ledger.json"
    # When both are set the ledger lives in S3; the bucket must already exist
    ledger_s3_bucket: Optional[str] = None
    ledger_s3_key: Optional[str] = None
    key_dir: str = "~/.ssh"
    db_backup_s3_region: Optional[str] = None
    db_backup_s3_bucket: Optional[str] = None
    db_backup_s3_key: Optional[str] = None
    instance_system_logs: bool = True
    instance_system_metrics: bool = True
    nlb_acm_certificate_arn: Optional[str] = None
    timeouts: StepTimeouts = field(default_factory=StepTimeouts)
    step_attempts: int = 3
    wait_retries: int = 1
    max_workers: int = 1
    purge_bucket: bool = False
    log_level: str = "INFO"

    def validate(self) -> None:
        if self.action not in ("apply", "delete"):
            raise ConfigError(f"action must be 'apply' or 'delete', got {self.action!r}")
        if self.step_attempts < 1:
            raise ConfigError("step_attempts must be at least 1")
        if self.wait_retries < 0:
            raise ConfigError("wait_retries must not be negative")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if bool(self.ledger_s3_bucket) != bool(self.ledger_s3_key):
            raise ConfigError("ledger_s3_bucket and ledger_s3_key must be set together")
        if self.purge_bucket and self.ledger_s3_bucket == self.s3_bucket:
            raise ConfigError("purge_bucket cannot delete the bucket that holds the ledger")

        backup = {
            "db_backup_s3_region": self.db_backup_s3_region,
            "db_backup_s3_bucket": self.db_backup_s3_bucket,
            "db_backup_s3_key": self.db_backup_s3_key,
        }
        missing = [key for key, value in backup.items() if not value]
        if missing and len(missing) != len(backup):
            raise ConfigError(f"Backup coordinates are partially set; missing {', '.join(missing)}")
        self.topology.validate()

    def new_ledger(self) -> ResourceLedger:
        """Build a fresh ledger from the caller-supplied settings"""
        return ResourceLedger(
            region=select_region(self.region),
            s3_bucket=self.s3_bucket,
            db_backup_s3_region=self.db_backup_s3_region,
            db_backup_s3_bucket=self.db_backup_s3_bucket,
            db_backup_s3_key=self.db_backup_s3_key,
            instance_system_logs=self.instance_system_logs,
            instance_system_metrics=self.instance_system_metrics,
            nlb_acm_certificate_arn=self.nlb_acm_certificate_arn,
        )

    @classmethod
    def from_env(cls) -> "FleetConfiguration":
        """Load configuration from FLEETUP_* environment variables"""
        return cls(
            topology=FleetTopology.from_env(),
            action=_env("ACTION", "apply"),
            region=_env("REGION"),
            s3_bucket=_env("S3_BUCKET", ""),
            ledger_path=_env("LEDGER_PATH", "fleetup-ledger.json"),
            ledger_s3_bucket=_env("LEDGER_S3_BUCKET"),
            ledger_s3_key=_env("LEDGER_S3_KEY"),
            key_dir=_env("KEY_DIR", "~/.ssh"),
            db_backup_s3_region=_env("DB_BACKUP_S3_REGION"),
            db_backup_s3_bucket=_env("DB_BACKUP_S3_BUCKET"),
            db_backup_s3_key=_env("DB_BACKUP_S3_KEY"),
            instance_system_logs=_env_bool("INSTANCE_SYSTEM_LOGS", True),
            instance_system_metrics=_env_bool("INSTANCE_SYSTEM_METRICS", True),
            nlb_acm_certificate_arn=_env("NLB_ACM_CERTIFICATE_ARN"),
            timeouts=StepTimeouts.from_env(),
            step_attempts=_env_int("STEP_ATTEMPTS", 3),
            wait_retries=_env_int("WAIT_RETRIES", 1),
            max_workers=_env_int("MAX_WORKERS", 1),
            purge_bucket=_env_bool("PURGE_BUCKET", False),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )
