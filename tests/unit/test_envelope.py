"""
Tests for the persistence envelopes
"""
import json
import pytest

import boto3
from moto import mock_aws

from fleetup.envelope import LocalFileEnvelope, PersistenceEnvelope, S3Envelope
from fleetup.errors import ConfigError
from fleetup.ledger import BucketRecord, ResourceKind, ResourceLedger


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def ledger():
    ledger = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket")
    ledger.apply_created(ResourceKind.BUCKET, BucketRecord("arn:aws:s3:::fleet-bucket"))
    return ledger


class TestLocalFileEnvelope:
    """Test the JSON file envelope"""

    def test_save_then_load(self, tmp_path, ledger):
        envelope = LocalFileEnvelope(tmp_path / "state" / "ledger.json")
        assert not envelope.exists()

        envelope.save(ledger)

        assert envelope.exists()
        assert envelope.load() == ledger

    def test_saved_file_is_flat_json(self, tmp_path, ledger):
        path = tmp_path / "ledger.json"
        LocalFileEnvelope(path).save(ledger)

        data = json.loads(path.read_text())
        assert data["s3_bucket_arn"] == "arn:aws:s3:::fleet-bucket"
        assert "kms_cmk_id" not in data

    def test_save_leaves_no_temp_files(self, tmp_path, ledger):
        envelope = LocalFileEnvelope(tmp_path / "ledger.json")
        envelope.save(ledger)
        envelope.save(ledger)

        assert [p.name for p in tmp_path.iterdir()] == ["ledger.json"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            LocalFileEnvelope(tmp_path / "absent.json").load()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            LocalFileEnvelope(path).load()

    def test_non_object_file(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            LocalFileEnvelope(path).load()


class TestS3Envelope:
    """Test the S3 object envelope"""

    @mock_aws
    def test_save_then_load(self, aws_credentials, ledger):
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="fleet-state")
        envelope = S3Envelope("fleet-state", "fleets/demo.json", region="us-east-1")
        assert not envelope.exists()

        envelope.save(ledger)

        assert envelope.exists()
        assert envelope.load() == ledger
        head = boto3.client("s3", region_name="us-east-1").head_object(
            Bucket="fleet-state", Key="fleets/demo.json"
        )
        assert head["ContentType"] == "application/json"

    @mock_aws
    def test_missing_object(self, aws_credentials):
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="fleet-state")
        with pytest.raises(ConfigError):
            S3Envelope("fleet-state", "absent.json", region="us-east-1").load()

    def test_requires_bucket_and_key(self):
        with pytest.raises(ConfigError):
            S3Envelope("", "ledger.json")

    def test_is_stored_in_its_own_bucket_only(self, aws_credentials):
        envelope = S3Envelope("fleet-state", "fleets/demo.json", region="us-east-1")

        assert envelope.is_stored_in("fleet-state")
        assert not envelope.is_stored_in("fleet-bucket")
        assert not envelope.is_stored_in("")


class TestPersistenceEnvelope:
    """Test the shared envelope behaviour"""

    def test_base_envelope_is_abstract(self):
        with pytest.raises(TypeError):
            PersistenceEnvelope()

    def test_local_file_is_never_in_a_bucket(self, tmp_path):
        assert not LocalFileEnvelope(tmp_path / "ledger.json").is_stored_in("fleet-bucket")
