"""
Tests for environment-driven configuration
"""
import pytest

from fleetup.configuration import FleetConfiguration, FleetTopology, StepTimeouts
from fleetup.errors import ConfigError
from fleetup.ledger import ResourceKind


@pytest.fixture
def fleet_env(monkeypatch):
    monkeypatch.setenv("FLEETUP_DEPLOYMENT_ID", "demo")
    monkeypatch.setenv("FLEETUP_IMAGE_ID", "ami-12345678")
    monkeypatch.setenv("FLEETUP_S3_BUCKET", "demo-bucket")
    return monkeypatch


class TestFleetTopology:
    """Test topology validation and derived names"""

    def test_derived_names(self):
        topology = FleetTopology(deployment_id="demo", image_id="ami-1")

        assert topology.key_pair_name == "demo-ec2-key"
        assert topology.instance_role_stack_name == "demo-ec2-instance-role"
        assert topology.vpc_stack_name == "demo-vpc"
        assert topology.anchor_stack_name == "demo-asg-anchor"
        assert topology.non_anchor_stack_name == "demo-asg-non-anchor"
        assert topology.load_balancer_stack_name == "demo-nlb"
        assert topology.metrics_namespace == "demo-fleet"
        assert not topology.has_anchor_tier

    @pytest.mark.parametrize("kwargs", [
        {"deployment_id": "Demo"},
        {"deployment_id": "1demo"},
        {"image_id": ""},
        {"anchor_nodes": -1},
        {"non_anchor_nodes": 0},
        {"subnet_count": 0},
    ])
    def test_invalid_topology(self, kwargs):
        values = {"deployment_id": "demo", "image_id": "ami-1"}
        values.update(kwargs)
        with pytest.raises(ConfigError):
            FleetTopology(**values).validate()


class TestFleetConfiguration:
    """Test loading FleetConfiguration from FLEETUP_* variables"""

    def test_defaults(self, fleet_env):
        config = FleetConfiguration.from_env()
        config.validate()

        assert config.action == "apply"
        assert config.topology.non_anchor_nodes == 1
        assert config.step_attempts == 3
        assert config.max_workers == 1
        assert config.purge_bucket is False
        assert config.timeouts == StepTimeouts()

    def test_overrides(self, fleet_env):
        fleet_env.setenv("FLEETUP_ACTION", "delete")
        fleet_env.setenv("FLEETUP_ANCHOR_NODES", "2")
        fleet_env.setenv("FLEETUP_INSTANCE_SYSTEM_METRICS", "false")
        fleet_env.setenv("FLEETUP_TIMEOUT_VPC", "120")
        fleet_env.setenv("FLEETUP_MAX_WORKERS", "4")
        fleet_env.setenv("FLEETUP_LOG_LEVEL", "debug")

        config = FleetConfiguration.from_env()

        assert config.action == "delete"
        assert config.topology.has_anchor_tier
        assert config.instance_system_metrics is False
        assert config.timeouts.for_kind(ResourceKind.VPC) == 120.0
        assert config.max_workers == 4
        assert config.log_level == "DEBUG"

    def test_missing_deployment_id(self, monkeypatch):
        monkeypatch.delenv("FLEETUP_DEPLOYMENT_ID", raising=False)
        monkeypatch.setenv("FLEETUP_IMAGE_ID", "ami-1")
        with pytest.raises(ConfigError, match="FLEETUP_DEPLOYMENT_ID"):
            FleetConfiguration.from_env()

    def test_invalid_number(self, fleet_env):
        fleet_env.setenv("FLEETUP_STEP_ATTEMPTS", "three")
        with pytest.raises(ConfigError):
            FleetConfiguration.from_env()

    def test_invalid_flag(self, fleet_env):
        fleet_env.setenv("FLEETUP_PURGE_BUCKET", "maybe")
        with pytest.raises(ConfigError):
            FleetConfiguration.from_env()

    def test_invalid_action(self, fleet_env):
        fleet_env.setenv("FLEETUP_ACTION", "destroy")
        with pytest.raises(ConfigError):
            FleetConfiguration.from_env().validate()

    def test_ledger_location_needs_bucket_and_key(self, fleet_env):
        fleet_env.setenv("FLEETUP_LEDGER_S3_KEY", "fleets/demo.json")
        with pytest.raises(ConfigError):
            FleetConfiguration.from_env().validate()

    def test_purge_cannot_delete_ledger_bucket(self, fleet_env):
        fleet_env.setenv("FLEETUP_LEDGER_S3_BUCKET", "demo-bucket")
        fleet_env.setenv("FLEETUP_LEDGER_S3_KEY", "fleets/demo.json")
        fleet_env.setenv("FLEETUP_PURGE_BUCKET", "true")
        with pytest.raises(ConfigError):
            FleetConfiguration.from_env().validate()

    def test_timeouts_fall_back_to_deletion(self):
        timeouts = StepTimeouts(deletion=42.0)
        assert timeouts.for_kind(ResourceKind.BUCKET) == 42.0
        assert timeouts.for_kind(ResourceKind.LOAD_BALANCER) == 900.0

    def test_new_ledger_uses_explicit_region(self, fleet_env):
        fleet_env.setenv("FLEETUP_REGION", "eu-north-1")
        ledger = FleetConfiguration.from_env().new_ledger()

        assert ledger.region == "eu-north-1"
        assert ledger.s3_bucket == "demo-bucket"
        assert ledger.created_kinds() == []

    def test_partial_backup_coordinates_rejected(self, fleet_env):
        fleet_env.setenv("FLEETUP_DB_BACKUP_S3_REGION", "us-east-1")
        fleet_env.setenv("FLEETUP_DB_BACKUP_S3_BUCKET", "backups")
        with pytest.raises(ConfigError, match="db_backup_s3_key"):
            FleetConfiguration.from_env().validate()

    def test_complete_backup_coordinates(self, fleet_env):
        fleet_env.setenv("FLEETUP_DB_BACKUP_S3_REGION", "us-east-1")
        fleet_env.setenv("FLEETUP_DB_BACKUP_S3_BUCKET", "backups")
        fleet_env.setenv("FLEETUP_DB_BACKUP_S3_KEY", "db.tar")
        config = FleetConfiguration.from_env()
        config.validate()
        assert config.new_ledger().has_backup_source
