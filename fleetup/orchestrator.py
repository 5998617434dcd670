"""
Provisioning Orchestrator
Drives every fleet resource from absent to created (or back) in dependency order

Each step checks the ledger before acting, so the orchestrator can be re-run
against the same ledger at any time: completed steps are skipped, and after a
crash or failure the next run resumes from the first unfinished step. The ledger
is persisted after every successful step.
"""
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3

from .clients import KeyPairClient, KmsClient, S3StorageClient, ScalingClient, StackClient
from .configuration import FleetConfiguration
from .constructs.templates import (
    INSTANCE_ROLE_TEMPLATE,
    LOAD_BALANCER_TEMPLATE,
    LOAD_BALANCER_TLS_TEMPLATE,
    SCALING_GROUP_TEMPLATE,
    vpc_template_id,
)
from .envelope import PersistenceEnvelope
from .errors import ConfigError, FleetError, ProvisioningError, ProvisioningTimeout, StateError
from .identity import Identity, resolve_identity
from .ledger import (
    BucketRecord,
    InstanceRoleRecord,
    KeyPairRecord,
    KmsKeyRecord,
    LoadBalancerRecord,
    MetricsNamespaceRecord,
    ResourceKind,
    ResourceLedger,
    ScalingGroupRecord,
    VpcRecord,
)
from .utils.retry_helper import ExponentialBackoff, call_with_retries


logger = logging.getLogger(__name__)


class OrchestrationStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class OrchestrationResult:
    """Outcome of an apply or teardown run"""

    status: OrchestrationStatus
    created_steps: List[str] = field(default_factory=list)
    deleted_steps: List[str] = field(default_factory=list)
    skipped_steps: List[str] = field(default_factory=list)
    reconciled_steps: List[str] = field(default_factory=list)
    disabled_steps: List[str] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)


@dataclass
class ProviderClients:
    """The external collaborators the orchestrator drives"""

    storage: Any
    kms: Any
    key_pairs: Any
    stacks: Any
    scaling: Any

    @classmethod
    def for_region(cls, region: str,
                   session: Optional[boto3.session.Session] = None) -> "ProviderClients":
        session = session or boto3.session.Session()
        return cls(
            storage=S3StorageClient(region=region, session=session),
            kms=KmsClient(region=region, session=session),
            key_pairs=KeyPairClient(region=region, session=session),
            stacks=StackClient(region=region, session=session),
            scaling=ScalingClient(region=region, session=session),
        )


@dataclass(frozen=True)
class ProvisioningStep:
    kind: ResourceKind
    depends_on: Tuple[ResourceKind, ...]
    create: Callable[[], Any]
    delete: Callable[[Any], None]
    enabled: Callable[[], bool]
    # Fills in a partially recorded resource from what AWS reports for it
    reconcile: Optional[Callable[[Any], Any]] = None


class ProvisioningOrchestrator:
    """Reconciles the ledger against AWS: apply creates, teardown deletes"""

    def __init__(self,
                 ledger: ResourceLedger,
                 envelope: PersistenceEnvelope,
                 clients: ProviderClients,
                 configuration: FleetConfiguration,
                 identity_resolver: Optional[Callable[[], Identity]] = None,
                 cancel_event: Optional[threading.Event] = None,
                 retry_backoff: Optional[ExponentialBackoff] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.ledger = ledger
        self.envelope = envelope
        self.clients = clients
        self.configuration = configuration
        self.topology = configuration.topology

        self._identity_resolver = identity_resolver or (lambda: resolve_identity(region=ledger.region))
        self._cancel_event = cancel_event or threading.Event()
        self._retry_backoff = retry_backoff or ExponentialBackoff(base_delay=2.0, max_delay=30.0)
        self._sleep = sleep
        self._result_lock = threading.Lock()

        self.steps: List[ProvisioningStep] = self._build_steps()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; honoured before the next step starts"""
        logger.info("Cancellation requested; stopping before the next step")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def apply(self) -> OrchestrationResult:
        """Create every missing resource in dependency order"""
        self.ledger.validate()
        self.configuration.validate()
        self._check_identity()
        self._persist()

        if not self.topology.has_anchor_tier and self.ledger.is_created(ResourceKind.ANCHOR_NODES):
            logger.warning(
                "Ledger records anchor nodes but the topology has no anchor tier; "
                "they are left in place until teardown"
            )

        result = OrchestrationResult(status=OrchestrationStatus.COMPLETED)
        enabled_steps = []
        for step in self.steps:
            if step.enabled():
                enabled_steps.append(step)
            else:
                logger.info(f"Step {step.kind.value} is disabled for this deployment; skipping")
                result.disabled_steps.append(step.kind.value)

        try:
            for wave in self._plan_waves(enabled_steps):
                if self.cancelled:
                    return self._finish_cancelled(result)
                self._run_wave(wave, result)
        except FleetError as e:
            self._report_failure(e)
            raise

        result.completed_steps = [kind.value for kind in self.ledger.created_kinds()]
        logger.info(
            f"Apply complete: created {result.created_steps or 'nothing'}, "
            f"skipped {result.skipped_steps or 'nothing'}"
        )
        return result

    def teardown(self) -> OrchestrationResult:
        """Delete every recorded resource in reverse dependency order"""
        self.ledger.validate()
        self.configuration.validate()
        if self.configuration.purge_bucket and self.envelope.is_stored_in(self.ledger.s3_bucket):
            raise ConfigError(
                f"purge_bucket would delete {self.ledger.s3_bucket}, which holds the ledger"
            )
        self._check_identity()

        result = OrchestrationResult(status=OrchestrationStatus.COMPLETED)
        try:
            for step in reversed(self.steps):
                if self.cancelled:
                    return self._finish_cancelled(result)
                self._run_delete(step, result)
        except FleetError as e:
            self._report_failure(e)
            raise

        result.completed_steps = [kind.value for kind in self.ledger.created_kinds()]
        logger.info(f"Teardown complete: deleted {result.deleted_steps or 'nothing'}")
        return result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _check_identity(self) -> None:
        identity = self._identity_resolver()
        recorded = self.ledger.identity
        if recorded is not None and recorded.account_id != identity.account_id:
            raise ConfigError(
                f"Ledger belongs to account {recorded.account_id} but the current credentials "
                f"resolve to account {identity.account_id}"
            )
        if recorded is None:
            self.ledger.set_identity(identity)

    def _persist(self) -> None:
        self.envelope.save(self.ledger)

    def _finish_cancelled(self, result: OrchestrationResult) -> OrchestrationResult:
        self._persist()
        result.status = OrchestrationStatus.CANCELLED
        result.completed_steps = [kind.value for kind in self.ledger.created_kinds()]
        logger.info(f"Cancelled; completed steps so far: {result.completed_steps}")
        return result

    def _report_failure(self, error: FleetError) -> None:
        error.completed_steps = [kind.value for kind in self.ledger.created_kinds()]
        logger.error(
            f"Step {error.failed_step or 'setup'} failed: {error}. "
            f"Completed steps: {error.completed_steps or 'none'}"
        )
        try:
            self._persist()
        except FleetError:
            logger.exception("Failed to persist the ledger after the step failure")

    def _step(self, kind: ResourceKind) -> ProvisioningStep:
        for step in self.steps:
            if step.kind == kind:
                return step
        raise KeyError(kind)

    def _required_dependencies(self, step: ProvisioningStep) -> List[ResourceKind]:
        # A disabled dependency (e.g. no anchor tier) is not a missing one
        return [dep for dep in step.depends_on if self._step(dep).enabled()]

    def _plan_waves(self, steps: List[ProvisioningStep]) -> List[List[ProvisioningStep]]:
        """Group steps into waves whose members only depend on earlier waves"""
        if self.configuration.max_workers <= 1:
            return [[step] for step in steps]

        levels: Dict[ResourceKind, int] = {}
        for step in steps:
            deps = self._required_dependencies(step)
            levels[step.kind] = 1 + max((levels[dep] for dep in deps), default=-1)

        waves: List[List[ProvisioningStep]] = []
        for step in steps:
            level = levels[step.kind]
            while len(waves) <= level:
                waves.append([])
            waves[level].append(step)
        return waves

    def _run_wave(self, wave: List[ProvisioningStep], result: OrchestrationResult) -> None:
        pending = [step for step in wave if not self.ledger.is_created(step.kind)]
        if len(pending) <= 1 or self.configuration.max_workers <= 1:
            for step in wave:
                self._run_step(step, result)
            return

        for step in wave:
            if self.ledger.is_created(step.kind):
                self._run_step(step, result)

        # Each worker owns the record of its own resource kind
        errors: List[FleetError] = []
        with ThreadPoolExecutor(max_workers=min(self.configuration.max_workers, len(pending))) as pool:
            futures = {pool.submit(self._run_step, step, result): step for step in pending}
            for future in as_completed(futures):
                try:
                    future.result()
                except FleetError as e:
                    errors.append(e)
        if errors:
            for extra in errors[1:]:
                logger.error(f"Step {extra.failed_step} also failed: {extra}")
            raise errors[0]

    def _run_step(self, step: ProvisioningStep, result: OrchestrationResult) -> None:
        kind = step.kind
        if self.ledger.is_created(kind):
            missing = self.ledger.missing_fields(kind)
            if missing and step.reconcile is not None:
                self._reconcile_step(step, missing, result)
                return
            if missing:
                logger.warning(f"{kind.value} is missing {', '.join(missing)}; leaving it as recorded")
            logger.info(f"{kind.value} already created ({self.ledger.record(kind)}); skipping")
            with self._result_lock:
                result.skipped_steps.append(kind.value)
            return

        try:
            missing = [dep.value for dep in self._required_dependencies(step)
                       if not self.ledger.is_created(dep)]
            if missing:
                raise StateError(f"{kind.value} cannot be created before {', '.join(missing)}")

            logger.info(f"Creating {kind.value}")
            record = call_with_retries(
                step.create,
                description=f"creating {kind.value}",
                max_attempts=self.configuration.step_attempts,
                backoff=self._retry_backoff,
                sleep=self._sleep,
            )
            self.ledger.apply_created(kind, record)
            self._persist()
        except FleetError as e:
            if e.failed_step is None:
                e.failed_step = kind.value
            raise

        with self._result_lock:
            result.created_steps.append(kind.value)

    def _reconcile_step(self, step: ProvisioningStep, missing: List[str],
                        result: OrchestrationResult) -> None:
        """Complete a partially recorded resource without creating a new one"""
        kind = step.kind
        try:
            logger.info(f"{kind.value} is partially recorded (missing {', '.join(missing)}); reconciling")
            recorded = self.ledger.record(kind)
            record = call_with_retries(
                lambda: step.reconcile(recorded),
                description=f"reconciling {kind.value}",
                max_attempts=self.configuration.step_attempts,
                backoff=self._retry_backoff,
                sleep=self._sleep,
            )
            self.ledger.complete_record(kind, record)
            self._persist()
        except FleetError as e:
            if e.failed_step is None:
                e.failed_step = kind.value
            raise

        with self._result_lock:
            result.reconciled_steps.append(kind.value)

    def _run_delete(self, step: ProvisioningStep, result: OrchestrationResult) -> None:
        kind = step.kind
        record = self.ledger.record(kind)
        if record is None:
            result.skipped_steps.append(kind.value)
            return

        try:
            logger.info(f"Deleting {kind.value}")
            call_with_retries(
                lambda: step.delete(record),
                description=f"deleting {kind.value}",
                max_attempts=self.configuration.step_attempts,
                backoff=self._retry_backoff,
                sleep=self._sleep,
            )
            self.ledger.clear(kind)
            self._persist()
        except FleetError as e:
            if e.failed_step is None:
                e.failed_step = kind.value
            raise

        result.deleted_steps.append(kind.value)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _build_steps(self) -> List[ProvisioningStep]:
        always = lambda: True  # noqa: E731
        compute_deps = (
            ResourceKind.KEY_PAIR,
            ResourceKind.INSTANCE_ROLE,
            ResourceKind.VPC,
            ResourceKind.METRICS_NAMESPACE,
        )
        return [
            ProvisioningStep(ResourceKind.BUCKET, (), self._create_bucket, self._delete_bucket, always),
            ProvisioningStep(
                ResourceKind.KMS_KEY, (), self._create_kms_key, self._delete_kms_key, always,
                reconcile=self._reconcile_kms_key,
            ),
            ProvisioningStep(
                ResourceKind.KEY_PAIR, (), self._create_key_pair, self._delete_key_pair, always,
                reconcile=self._reconcile_key_pair,
            ),
            ProvisioningStep(
                ResourceKind.INSTANCE_ROLE,
                (ResourceKind.BUCKET, ResourceKind.KMS_KEY),
                self._create_instance_role, partial(self._delete_stack, ResourceKind.INSTANCE_ROLE), always,
                reconcile=partial(self._reconcile_stack, ResourceKind.INSTANCE_ROLE, self._instance_role_record),
            ),
            ProvisioningStep(
                ResourceKind.VPC, (), self._create_vpc, partial(self._delete_stack, ResourceKind.VPC), always,
                reconcile=partial(self._reconcile_stack, ResourceKind.VPC, self._vpc_record),
            ),
            ProvisioningStep(
                ResourceKind.METRICS_NAMESPACE, (),
                self._create_metrics_namespace, lambda record: None,
                lambda: self.ledger.system_metrics_enabled,
            ),
            ProvisioningStep(
                ResourceKind.ANCHOR_NODES, compute_deps,
                lambda: self._create_scaling_group(anchor=True),
                partial(self._delete_stack, ResourceKind.ANCHOR_NODES),
                lambda: self.topology.has_anchor_tier,
                reconcile=partial(self._reconcile_stack, ResourceKind.ANCHOR_NODES, self._scaling_group_record),
            ),
            ProvisioningStep(
                ResourceKind.NON_ANCHOR_NODES, compute_deps + (ResourceKind.ANCHOR_NODES,),
                lambda: self._create_scaling_group(anchor=False),
                partial(self._delete_stack, ResourceKind.NON_ANCHOR_NODES), always,
                reconcile=partial(self._reconcile_stack, ResourceKind.NON_ANCHOR_NODES, self._scaling_group_record),
            ),
            ProvisioningStep(
                ResourceKind.LOAD_BALANCER,
                (ResourceKind.NON_ANCHOR_NODES, ResourceKind.ANCHOR_NODES),
                self._create_load_balancer, partial(self._delete_stack, ResourceKind.LOAD_BALANCER), always,
                reconcile=partial(self._reconcile_stack, ResourceKind.LOAD_BALANCER, self._load_balancer_record),
            ),
        ]

    def _partition(self) -> str:
        identity = self.ledger.identity
        if identity is not None and identity.role_arn.startswith("arn:"):
            return identity.role_arn.split(":")[1]
        return "aws"

    def _stack_tags(self) -> Dict[str, str]:
        return {"Fleet": self.topology.deployment_id, "ManagedBy": "fleetup"}

    def _stack_name(self, kind: ResourceKind) -> str:
        return {
            ResourceKind.INSTANCE_ROLE: self.topology.instance_role_stack_name,
            ResourceKind.VPC: self.topology.vpc_stack_name,
            ResourceKind.ANCHOR_NODES: self.topology.anchor_stack_name,
            ResourceKind.NON_ANCHOR_NODES: self.topology.non_anchor_stack_name,
            ResourceKind.LOAD_BALANCER: self.topology.load_balancer_stack_name,
        }[kind]

    def _create_bucket(self) -> BucketRecord:
        name = self.ledger.s3_bucket
        owner = self.ledger.identity.account_id if self.ledger.identity else None
        if self.clients.storage.bucket_exists(name, expected_owner=owner):
            logger.info(f"Bucket {name} already exists in account {owner}; reusing it")
        else:
            self.clients.storage.create_bucket(name, self.ledger.region)
        return BucketRecord(arn=f"arn:{self._partition()}:s3:::{name}")

    def _delete_bucket(self, record: BucketRecord) -> None:
        if not self.configuration.purge_bucket:
            logger.info(f"Retaining bucket {self.ledger.s3_bucket}; set purge_bucket to delete it")
            return
        self.clients.storage.delete_bucket(self.ledger.s3_bucket)

    def _create_kms_key(self) -> KmsKeyRecord:
        key_id, key_arn = self.clients.kms.create_key(
            description=f"fleetup {self.topology.deployment_id} CMK",
            tags=self._stack_tags(),
        )
        return KmsKeyRecord(cmk_id=key_id, cmk_arn=key_arn)

    def _reconcile_kms_key(self, record: KmsKeyRecord) -> KmsKeyRecord:
        key_id, key_arn = self.clients.kms.describe_key(record.cmk_id or record.cmk_arn)
        return KmsKeyRecord(cmk_id=record.cmk_id or key_id, cmk_arn=record.cmk_arn or key_arn)

    def _delete_kms_key(self, record: KmsKeyRecord) -> None:
        self.clients.kms.schedule_key_deletion(record.cmk_id or record.cmk_arn)

    def _key_path(self) -> str:
        name = self.topology.key_pair_name
        return str(Path(self.configuration.key_dir).expanduser() / f"{name}.pem")

    def _create_key_pair(self) -> KeyPairRecord:
        key_name, key_path = self.clients.key_pairs.create_key_pair(self.topology.key_pair_name, self._key_path())
        return KeyPairRecord(key_name=key_name, key_path=key_path)

    def _reconcile_key_pair(self, record: KeyPairRecord) -> KeyPairRecord:
        return KeyPairRecord(
            key_name=record.key_name or self.topology.key_pair_name,
            key_path=record.key_path or self._key_path(),
        )

    def _delete_key_pair(self, record: KeyPairRecord) -> None:
        self.clients.key_pairs.delete_key_pair(
            record.key_name or self.topology.key_pair_name, record.key_path or None
        )

    def _wait_for_stack(self, kind: ResourceKind, stack_name: str) -> Dict[str, str]:
        """Wait for the stack to settle; a timed-out wait is retried up to wait_retries times"""
        timeout = self.configuration.timeouts.for_kind(kind)
        attempts = self.configuration.wait_retries + 1
        for attempt in range(attempts):
            try:
                return self.clients.stacks.wait_until_stable(stack_name, timeout)
            except ProvisioningTimeout:
                if attempt == attempts - 1:
                    raise
                logger.warning(
                    f"Stack {stack_name} not stable after {timeout:.0f}s; "
                    f"waiting again ({attempt + 2}/{attempts})"
                )
        raise AssertionError("unreachable")

    def _deploy_stack(self, kind: ResourceKind, template_id: str, stack_name: str,
                      params: Dict[str, str]) -> Dict[str, str]:
        """Request the stack, then wait for it; a timed-out wait is retried, never the create"""
        self.clients.stacks.create_stack(template_id, stack_name, params, tags=self._stack_tags())
        return self._wait_for_stack(kind, stack_name)

    def _reconcile_stack(self, kind: ResourceKind,
                         build: Callable[[str, Dict[str, str]], Any], record: Any) -> Any:
        stack_name = record.stack_name or self._stack_name(kind)
        return build(stack_name, self._wait_for_stack(kind, stack_name))

    @staticmethod
    def _output(outputs: Dict[str, str], key: str, stack_name: str) -> str:
        value = outputs.get(key)
        if not value:
            raise ProvisioningError(f"Stack {stack_name} has no {key} output")
        return value

    def _delete_stack(self, kind: ResourceKind, record: Any) -> None:
        stack_name = record.stack_name or self._stack_name(kind)
        self.clients.stacks.delete_stack(stack_name)
        self.clients.stacks.wait_until_deleted(stack_name, self.configuration.timeouts.deletion)

    def _instance_role_record(self, stack_name: str, outputs: Dict[str, str]) -> InstanceRoleRecord:
        return InstanceRoleRecord(
            stack_name=stack_name,
            instance_profile_arn=self._output(outputs, "InstanceProfileArn", stack_name),
        )

    def _create_instance_role(self) -> InstanceRoleRecord:
        stack_name = self.topology.instance_role_stack_name
        outputs = self._deploy_stack(
            ResourceKind.INSTANCE_ROLE, INSTANCE_ROLE_TEMPLATE, stack_name,
            {
                "RoleName": f"{self.topology.deployment_id}-instance-role",
                "KmsCmkArn": self.ledger.kms_cmk_arn,
                "S3BucketName": self.ledger.s3_bucket,
            },
        )
        return self._instance_role_record(stack_name, outputs)

    def _vpc_record(self, stack_name: str, outputs: Dict[str, str]) -> VpcRecord:
        subnets = self._output(outputs, "PublicSubnetIds", stack_name)
        return VpcRecord(
            stack_name=stack_name,
            vpc_id=self._output(outputs, "VpcId", stack_name),
            security_group_id=self._output(outputs, "SecurityGroupId", stack_name),
            public_subnet_ids=tuple(s.strip() for s in subnets.split(",") if s.strip()),
        )

    def _create_vpc(self) -> VpcRecord:
        stack_name = self.topology.vpc_stack_name
        outputs = self._deploy_stack(
            ResourceKind.VPC, vpc_template_id(self.topology.subnet_count), stack_name,
            {
                "IngressIpv4Range": self.topology.ingress_ipv4_range,
                "HttpPort": str(self.topology.http_port),
                "PeerPort": str(self.topology.peer_port),
            },
        )
        return self._vpc_record(stack_name, outputs)

    def _create_metrics_namespace(self) -> MetricsNamespaceRecord:
        # CloudWatch namespaces come into being with the first datapoint
        return MetricsNamespaceRecord(namespace=self.topology.metrics_namespace)

    def _scaling_group_record(self, stack_name: str, outputs: Dict[str, str]) -> ScalingGroupRecord:
        return ScalingGroupRecord(
            stack_name=stack_name,
            logical_id=self._output(outputs, "AsgLogicalId", stack_name),
        )

    def _backup_params(self) -> Dict[str, str]:
        if not self.ledger.has_backup_source:
            return {"DbBackupS3Region": "", "DbBackupS3Bucket": "", "DbBackupS3Key": ""}
        return {
            "DbBackupS3Region": self.ledger.db_backup_s3_region,
            "DbBackupS3Bucket": self.ledger.db_backup_s3_bucket,
            "DbBackupS3Key": self.ledger.db_backup_s3_key,
        }

    def _create_scaling_group(self, anchor: bool) -> ScalingGroupRecord:
        if anchor:
            kind, capacity = ResourceKind.ANCHOR_NODES, self.topology.anchor_nodes
        else:
            kind, capacity = ResourceKind.NON_ANCHOR_NODES, self.topology.non_anchor_nodes
        stack_name = self._stack_name(kind)

        params = {
            "Id": self.topology.deployment_id,
            "NodeKind": "anchor" if anchor else "non-anchor",
            "S3BucketName": self.ledger.s3_bucket,
            "Ec2KeyPairName": self.ledger.ec2_key_name,
            "InstanceProfileArn": self.ledger.instance_profile_arn,
            "SecurityGroupId": self.ledger.security_group_id,
            "PublicSubnetIds": ",".join(self.ledger.public_subnet_ids),
            "ImageId": self.topology.image_id,
            "InstanceType": self.topology.instance_type,
            "Capacity": str(capacity),
            "VolumeSize": str(self.topology.volume_size_gb),
            "MetricsNamespace": self.ledger.metrics_namespace or "",
            "SystemLogsEnabled": str(self.ledger.system_logs_enabled).lower(),
            "SystemMetricsEnabled": str(self.ledger.system_metrics_enabled).lower(),
        }
        params.update(self._backup_params())

        outputs = self._deploy_stack(kind, SCALING_GROUP_TEMPLATE, stack_name, params)
        return self._scaling_group_record(stack_name, outputs)

    def _load_balancer_record(self, stack_name: str, outputs: Dict[str, str]) -> LoadBalancerRecord:
        return LoadBalancerRecord(
            stack_name=stack_name,
            nlb_arn=self._output(outputs, "NlbArn", stack_name),
            target_group_arn=self._output(outputs, "NlbTargetGroupArn", stack_name),
            dns_name=self._output(outputs, "NlbDnsName", stack_name),
        )

    def _create_load_balancer(self) -> LoadBalancerRecord:
        stack_name = self.topology.load_balancer_stack_name
        params = {
            "VpcId": self.ledger.vpc_id,
            "PublicSubnetIds": ",".join(self.ledger.public_subnet_ids),
            "HttpPort": str(self.topology.http_port),
        }
        template_id = LOAD_BALANCER_TEMPLATE
        if self.ledger.nlb_acm_certificate_arn:
            template_id = LOAD_BALANCER_TLS_TEMPLATE
            params["NlbAcmCertificateArn"] = self.ledger.nlb_acm_certificate_arn

        outputs = self._deploy_stack(ResourceKind.LOAD_BALANCER, template_id, stack_name, params)
        record = self._load_balancer_record(stack_name, outputs)

        for kind in (ResourceKind.ANCHOR_NODES, ResourceKind.NON_ANCHOR_NODES):
            group = self.ledger.record(kind)
            if group is not None:
                self.clients.scaling.attach_target_group(group.logical_id, record.target_group_arn)
        return record
