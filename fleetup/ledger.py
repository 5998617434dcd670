"""
Resource Ledger
Authoritative record of declared inputs and derived outputs for one fleet deployment

Caller-supplied fields are plain attributes set through the constructor or the
loader. Derived state is held as one immutable record per resource kind and is
only reachable through read-only properties; apply_created and clear are the
sole mutation paths, and both are driven by the orchestrator.
"""
import logging
import threading
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

from .errors import ConfigError, StateError
from .identity import Identity
from .region import FALLBACK_REGION


logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Resource kinds in provisioning order"""

    BUCKET = "bucket"
    KMS_KEY = "kms_key"
    KEY_PAIR = "key_pair"
    INSTANCE_ROLE = "instance_role"
    VPC = "vpc"
    METRICS_NAMESPACE = "metrics_namespace"
    ANCHOR_NODES = "anchor_nodes"
    NON_ANCHOR_NODES = "non_anchor_nodes"
    LOAD_BALANCER = "load_balancer"


@dataclass(frozen=True)
class BucketRecord:
    arn: str


@dataclass(frozen=True)
class KmsKeyRecord:
    cmk_id: str
    cmk_arn: str


@dataclass(frozen=True)
class KeyPairRecord:
    key_name: str
    key_path: str


@dataclass(frozen=True)
class InstanceRoleRecord:
    stack_name: str
    instance_profile_arn: str


@dataclass(frozen=True)
class VpcRecord:
    stack_name: str
    vpc_id: str
    security_group_id: str
    public_subnet_ids: Tuple[str, ...]


@dataclass(frozen=True)
class MetricsNamespaceRecord:
    namespace: str


@dataclass(frozen=True)
class ScalingGroupRecord:
    stack_name: str
    logical_id: str


@dataclass(frozen=True)
class LoadBalancerRecord:
    stack_name: str
    nlb_arn: str
    target_group_arn: str
    dns_name: str


RECORD_TYPES: Dict[ResourceKind, Type] = {
    ResourceKind.BUCKET: BucketRecord,
    ResourceKind.KMS_KEY: KmsKeyRecord,
    ResourceKind.KEY_PAIR: KeyPairRecord,
    ResourceKind.INSTANCE_ROLE: InstanceRoleRecord,
    ResourceKind.VPC: VpcRecord,
    ResourceKind.METRICS_NAMESPACE: MetricsNamespaceRecord,
    ResourceKind.ANCHOR_NODES: ScalingGroupRecord,
    ResourceKind.NON_ANCHOR_NODES: ScalingGroupRecord,
    ResourceKind.LOAD_BALANCER: LoadBalancerRecord,
}

# Persisted keys per record attribute. These names are part of the on-disk
# format and must stay stable across versions.
PERSISTED_KEYS: Dict[ResourceKind, Dict[str, str]] = {
    ResourceKind.BUCKET: {
        "arn": "s3_bucket_arn",
    },
    ResourceKind.KMS_KEY: {
        "cmk_id": "kms_cmk_id",
        "cmk_arn": "kms_cmk_arn",
    },
    ResourceKind.KEY_PAIR: {
        "key_name": "ec2_key_name",
        "key_path": "ec2_key_path",
    },
    ResourceKind.INSTANCE_ROLE: {
        "stack_name": "cloudformation_ec2_instance_role",
        "instance_profile_arn": "cloudformation_ec2_instance_profile_arn",
    },
    ResourceKind.VPC: {
        "stack_name": "cloudformation_vpc",
        "vpc_id": "cloudformation_vpc_id",
        "security_group_id": "cloudformation_vpc_security_group_id",
        "public_subnet_ids": "cloudformation_vpc_public_subnet_ids",
    },
    ResourceKind.METRICS_NAMESPACE: {
        "namespace": "cloudwatch_metrics_namespace",
    },
    ResourceKind.ANCHOR_NODES: {
        "stack_name": "cloudformation_asg_anchor_nodes",
        "logical_id": "cloudformation_asg_anchor_nodes_logical_id",
    },
    ResourceKind.NON_ANCHOR_NODES: {
        "stack_name": "cloudformation_asg_non_anchor_nodes",
        "logical_id": "cloudformation_asg_non_anchor_nodes_logical_id",
    },
    ResourceKind.LOAD_BALANCER: {
        "stack_name": "cloudformation_asg_nlb",
        "nlb_arn": "cloudformation_asg_nlb_arn",
        "target_group_arn": "cloudformation_asg_nlb_target_group_arn",
        "dns_name": "cloudformation_asg_nlb_dns_name",
    },
}

# Keys written by earlier releases, read as their current name
LEGACY_KEYS: Dict[str, str] = {
    "cloudwatch_avalanche_metrics_namespace": "cloudwatch_metrics_namespace",
}

_BACKUP_KEYS = ("db_backup_s3_region", "db_backup_s3_bucket", "db_backup_s3_key")

_TUPLE_FIELDS = ("public_subnet_ids",)


def _is_empty(value: Any) -> bool:
    if isinstance(value, tuple):
        return not value or not all(value)
    return not value


def _missing_attrs(record: Any) -> List[str]:
    return [f.name for f in fields(record) if _is_empty(getattr(record, f.name))]


def _record_is_complete(record: Any) -> bool:
    return not _missing_attrs(record)


class ResourceLedger:
    """State record for one deployment: caller inputs plus write-once derived records"""

    def __init__(self,
                 region: str = FALLBACK_REGION,
                 s3_bucket: str = "",
                 db_backup_s3_region: Optional[str] = None,
                 db_backup_s3_bucket: Optional[str] = None,
                 db_backup_s3_key: Optional[str] = None,
                 instance_system_logs: Optional[bool] = True,
                 instance_system_metrics: Optional[bool] = True,
                 nlb_acm_certificate_arn: Optional[str] = None,
                 identity: Optional[Identity] = None) -> None:
        self.region = region
        self.s3_bucket = s3_bucket

        self.db_backup_s3_region = db_backup_s3_region
        self.db_backup_s3_bucket = db_backup_s3_bucket
        self.db_backup_s3_key = db_backup_s3_key

        self.instance_system_logs = instance_system_logs
        self.instance_system_metrics = instance_system_metrics

        self.nlb_acm_certificate_arn = nlb_acm_certificate_arn

        self._identity = identity
        self._records: Dict[ResourceKind, Any] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Caller inputs
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise ConfigError when the caller inputs cannot drive provisioning"""
        if not self.region or not self.region.strip():
            raise ConfigError("region must be non-empty")
        if not self.s3_bucket or not self.s3_bucket.strip():
            raise ConfigError("s3_bucket must be non-empty")

    @property
    def has_backup_source(self) -> bool:
        return all(getattr(self, key) for key in _BACKUP_KEYS)

    @property
    def system_logs_enabled(self) -> bool:
        # Unset means the creation default, which is enabled
        return self.instance_system_logs is not False

    @property
    def system_metrics_enabled(self) -> bool:
        return self.instance_system_metrics is not False

    # ------------------------------------------------------------------
    # Identity snapshot
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def set_identity(self, identity: Identity) -> None:
        """Record the caller identity once; a different identity is a StateError"""
        with self._lock:
            if self._identity is None:
                self._identity = identity
                return
            if self._identity != identity:
                raise StateError(
                    f"Ledger identity is already set to {self._identity.role_arn}; "
                    f"refusing to replace it with {identity.role_arn}"
                )

    # ------------------------------------------------------------------
    # Derived records
    # ------------------------------------------------------------------

    def is_created(self, kind: ResourceKind) -> bool:
        """True once any identifier of the kind is recorded, even if others are missing"""
        with self._lock:
            return kind in self._records

    def missing_fields(self, kind: ResourceKind) -> List[str]:
        """Persisted keys still unset on a partially recorded kind"""
        record = self.record(kind)
        if record is None:
            return []
        return [PERSISTED_KEYS[kind][attr] for attr in _missing_attrs(record)]

    def record(self, kind: ResourceKind) -> Optional[Any]:
        with self._lock:
            return self._records.get(kind)

    def created_kinds(self) -> List[ResourceKind]:
        with self._lock:
            return [kind for kind in ResourceKind if kind in self._records]

    def apply_created(self, kind: ResourceKind, record: Any) -> None:
        """Set the derived record of a kind; fails if it is already set"""
        expected = RECORD_TYPES[kind]
        if not isinstance(record, expected):
            raise StateError(
                f"{kind.value} expects a {expected.__name__}, got {type(record).__name__}"
            )
        if not _record_is_complete(record):
            raise StateError(f"{kind.value} record has empty fields: {record}")

        with self._lock:
            if kind in self._records:
                raise StateError(
                    f"{kind.value} is already recorded as {self._records[kind]}; "
                    "clear it before recording a new resource"
                )
            self._records[kind] = record
        logger.info(f"Recorded {kind.value}: {record}")

    def complete_record(self, kind: ResourceKind, record: Any) -> None:
        """Fill in the missing fields of a partial record; recorded values never change"""
        expected = RECORD_TYPES[kind]
        if not isinstance(record, expected) or not _record_is_complete(record):
            raise StateError(f"{kind.value} needs a complete {expected.__name__}, got {record}")

        with self._lock:
            current = self._records.get(kind)
            if current is None:
                raise StateError(f"{kind.value} is not recorded; use apply_created")
            for f in fields(current):
                recorded = getattr(current, f.name)
                if not _is_empty(recorded) and recorded != getattr(record, f.name):
                    raise StateError(
                        f"{kind.value} {f.name} is recorded as {recorded!r}; "
                        f"refusing to replace it with {getattr(record, f.name)!r}"
                    )
            self._records[kind] = record
        logger.info(f"Completed {kind.value}: {record}")

    def clear(self, kind: ResourceKind) -> None:
        """Unset the derived record of a kind (after its resource is deleted)"""
        with self._lock:
            removed = self._records.pop(kind, None)
        if removed is not None:
            logger.info(f"Cleared {kind.value} (was {removed})")

    def _field(self, kind: ResourceKind, name: str) -> Optional[Any]:
        record = self.record(kind)
        if record is None:
            return None
        value = getattr(record, name)
        return None if _is_empty(value) else value

    @property
    def s3_bucket_arn(self) -> Optional[str]:
        return self._field(ResourceKind.BUCKET, "arn")

    @property
    def kms_cmk_id(self) -> Optional[str]:
        return self._field(ResourceKind.KMS_KEY, "cmk_id")

    @property
    def kms_cmk_arn(self) -> Optional[str]:
        return self._field(ResourceKind.KMS_KEY, "cmk_arn")

    @property
    def ec2_key_name(self) -> Optional[str]:
        return self._field(ResourceKind.KEY_PAIR, "key_name")

    @property
    def ec2_key_path(self) -> Optional[str]:
        return self._field(ResourceKind.KEY_PAIR, "key_path")

    @property
    def instance_role_stack(self) -> Optional[str]:
        return self._field(ResourceKind.INSTANCE_ROLE, "stack_name")

    @property
    def instance_profile_arn(self) -> Optional[str]:
        return self._field(ResourceKind.INSTANCE_ROLE, "instance_profile_arn")

    @property
    def vpc_stack(self) -> Optional[str]:
        return self._field(ResourceKind.VPC, "stack_name")

    @property
    def vpc_id(self) -> Optional[str]:
        return self._field(ResourceKind.VPC, "vpc_id")

    @property
    def security_group_id(self) -> Optional[str]:
        return self._field(ResourceKind.VPC, "security_group_id")

    @property
    def public_subnet_ids(self) -> Optional[Tuple[str, ...]]:
        return self._field(ResourceKind.VPC, "public_subnet_ids")

    @property
    def metrics_namespace(self) -> Optional[str]:
        return self._field(ResourceKind.METRICS_NAMESPACE, "namespace")

    @property
    def anchor_nodes_stack(self) -> Optional[str]:
        return self._field(ResourceKind.ANCHOR_NODES, "stack_name")

    @property
    def anchor_nodes_logical_id(self) -> Optional[str]:
        return self._field(ResourceKind.ANCHOR_NODES, "logical_id")

    @property
    def non_anchor_nodes_stack(self) -> Optional[str]:
        return self._field(ResourceKind.NON_ANCHOR_NODES, "stack_name")

    @property
    def non_anchor_nodes_logical_id(self) -> Optional[str]:
        return self._field(ResourceKind.NON_ANCHOR_NODES, "logical_id")

    @property
    def nlb_stack(self) -> Optional[str]:
        return self._field(ResourceKind.LOAD_BALANCER, "stack_name")

    @property
    def nlb_arn(self) -> Optional[str]:
        return self._field(ResourceKind.LOAD_BALANCER, "nlb_arn")

    @property
    def nlb_target_group_arn(self) -> Optional[str]:
        return self._field(ResourceKind.LOAD_BALANCER, "target_group_arn")

    @property
    def nlb_dns_name(self) -> Optional[str]:
        return self._field(ResourceKind.LOAD_BALANCER, "dns_name")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Flat mapping of every set field; unset fields are omitted"""
        with self._lock:
            data: Dict[str, Any] = {}
            if self._identity is not None:
                data["identity"] = self._identity.to_dict()

            data["region"] = self.region
            data["s3_bucket"] = self.s3_bucket

            for key in _BACKUP_KEYS:
                value = getattr(self, key)
                if value is not None:
                    data[key] = value

            if self.instance_system_logs is not None:
                data["instance_system_logs"] = self.instance_system_logs
            if self.instance_system_metrics is not None:
                data["instance_system_metrics"] = self.instance_system_metrics
            if self.nlb_acm_certificate_arn is not None:
                data["nlb_acm_certificate_arn"] = self.nlb_acm_certificate_arn

            for kind in ResourceKind:
                record = self._records.get(kind)
                if record is None:
                    continue
                for attr, key in PERSISTED_KEYS[kind].items():
                    value = getattr(record, attr)
                    if _is_empty(value):
                        continue
                    data[key] = list(value) if isinstance(value, tuple) else value
            return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceLedger":
        """Rebuild a ledger; unknown keys are ignored and absent keys stay unset"""
        data = dict(data)
        for legacy, current in LEGACY_KEYS.items():
            if legacy in data and current not in data:
                data[current] = data.pop(legacy)

        identity_data = data.get("identity")
        ledger = cls(
            region=data.get("region") or "",
            s3_bucket=data.get("s3_bucket") or "",
            db_backup_s3_region=data.get("db_backup_s3_region"),
            db_backup_s3_bucket=data.get("db_backup_s3_bucket"),
            db_backup_s3_key=data.get("db_backup_s3_key"),
            instance_system_logs=data.get("instance_system_logs"),
            instance_system_metrics=data.get("instance_system_metrics"),
            nlb_acm_certificate_arn=data.get("nlb_acm_certificate_arn"),
            identity=Identity.from_dict(identity_data) if isinstance(identity_data, dict) else None,
        )

        for kind in ResourceKind:
            keys = PERSISTED_KEYS[kind]
            present = {attr: data[key] for attr, key in keys.items() if data.get(key)}
            if not present:
                continue
            if len(present) != len(keys):
                missing = [key for attr, key in keys.items() if attr not in present]
                logger.warning(
                    f"{kind.value} is partially recorded (missing {', '.join(missing)}); "
                    "keeping the recorded identifiers"
                )

            values = {
                attr: () if attr in _TUPLE_FIELDS else ""
                for attr in keys
            }
            values.update({
                attr: tuple(str(v) for v in value) if isinstance(value, list) else str(value)
                for attr, value in present.items()
            })
            ledger._records[kind] = RECORD_TYPES[kind](**values)

        return ledger

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceLedger):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        created = ", ".join(kind.value for kind in self.created_kinds()) or "none"
        return f"ResourceLedger(region={self.region!r}, s3_bucket={self.s3_bucket!r}, created=[{created}])"
