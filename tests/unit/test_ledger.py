"""
Tests for the Resource Ledger
Covers write-once derived records, validation and the persisted key format
"""

import unittest

from fleetup.errors import ConfigError, StateError
from fleetup.identity import Identity
from fleetup.ledger import (
    BucketRecord,
    KmsKeyRecord,
    LoadBalancerRecord,
    ResourceKind,
    ResourceLedger,
    ScalingGroupRecord,
    VpcRecord,
)


class TestLedgerValidation(unittest.TestCase):
    """Test caller input validation"""

    def test_valid_ledger_passes(self):
        ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket").validate()

    def test_empty_region_rejected(self):
        with self.assertRaises(ConfigError):
            ResourceLedger(region="", s3_bucket="fleet-bucket").validate()

    def test_blank_bucket_rejected(self):
        with self.assertRaises(ConfigError):
            ResourceLedger(region="us-east-1", s3_bucket="   ").validate()

    def test_partial_backup_coordinates_are_no_backup_source(self):
        ledger = ResourceLedger(
            region="us-east-1",
            s3_bucket="fleet-bucket",
            db_backup_s3_region="us-east-1",
            db_backup_s3_bucket="backups",
        )
        ledger.validate()
        self.assertFalse(ledger.has_backup_source)

    def test_complete_backup_coordinates(self):
        ledger = ResourceLedger(
            region="us-east-1",
            s3_bucket="fleet-bucket",
            db_backup_s3_region="us-east-1",
            db_backup_s3_bucket="backups",
            db_backup_s3_key="db.tar",
        )
        ledger.validate()
        self.assertTrue(ledger.has_backup_source)

    def test_unset_flags_count_as_enabled(self):
        ledger = ResourceLedger(instance_system_logs=None, instance_system_metrics=None)
        self.assertTrue(ledger.system_logs_enabled)
        self.assertTrue(ledger.system_metrics_enabled)

        ledger.instance_system_metrics = False
        self.assertFalse(ledger.system_metrics_enabled)


class TestDerivedRecords(unittest.TestCase):
    """Test the write-once discipline of derived state"""

    def setUp(self):
        self.ledger = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket")

    def test_apply_created_sets_record(self):
        self.assertFalse(self.ledger.is_created(ResourceKind.KMS_KEY))
        self.ledger.apply_created(ResourceKind.KMS_KEY, KmsKeyRecord("key-1", "arn:aws:kms:key-1"))

        self.assertTrue(self.ledger.is_created(ResourceKind.KMS_KEY))
        self.assertEqual(self.ledger.kms_cmk_id, "key-1")
        self.assertEqual(self.ledger.kms_cmk_arn, "arn:aws:kms:key-1")

    def test_second_apply_is_state_error(self):
        self.ledger.apply_created(ResourceKind.KMS_KEY, KmsKeyRecord("key-1", "arn-1"))
        with self.assertRaises(StateError):
            self.ledger.apply_created(ResourceKind.KMS_KEY, KmsKeyRecord("key-2", "arn-2"))
        self.assertEqual(self.ledger.kms_cmk_id, "key-1")

    def test_wrong_record_type_is_state_error(self):
        with self.assertRaises(StateError):
            self.ledger.apply_created(ResourceKind.BUCKET, KmsKeyRecord("key-1", "arn-1"))

    def test_empty_field_is_state_error(self):
        with self.assertRaises(StateError):
            self.ledger.apply_created(ResourceKind.KMS_KEY, KmsKeyRecord("key-1", ""))
        with self.assertRaises(StateError):
            self.ledger.apply_created(ResourceKind.VPC, VpcRecord("s", "vpc-1", "sg-1", ()))
        self.assertFalse(self.ledger.is_created(ResourceKind.VPC))

    def test_clear_allows_new_record(self):
        self.ledger.apply_created(ResourceKind.BUCKET, BucketRecord("arn:aws:s3:::fleet-bucket"))
        self.ledger.clear(ResourceKind.BUCKET)
        self.assertFalse(self.ledger.is_created(ResourceKind.BUCKET))
        self.assertIsNone(self.ledger.s3_bucket_arn)

        self.ledger.apply_created(ResourceKind.BUCKET, BucketRecord("arn:aws:s3:::fleet-bucket"))
        self.assertTrue(self.ledger.is_created(ResourceKind.BUCKET))

    def test_clear_of_unset_kind_is_noop(self):
        self.ledger.clear(ResourceKind.LOAD_BALANCER)
        self.assertEqual(self.ledger.created_kinds(), [])

    def test_created_kinds_follow_provisioning_order(self):
        self.ledger.apply_created(ResourceKind.VPC, VpcRecord("fleet-vpc", "vpc-1", "sg-1", ("subnet-a",)))
        self.ledger.apply_created(ResourceKind.BUCKET, BucketRecord("arn:aws:s3:::fleet-bucket"))
        self.assertEqual(self.ledger.created_kinds(), [ResourceKind.BUCKET, ResourceKind.VPC])

    def test_identity_is_write_once(self):
        identity = Identity("123456789012", "arn:aws:iam::123456789012:user/ops", "AIDA1")
        self.ledger.set_identity(identity)
        self.ledger.set_identity(identity)
        self.assertEqual(self.ledger.identity, identity)

        with self.assertRaises(StateError):
            self.ledger.set_identity(Identity("210987654321", "arn:aws:iam::210987654321:user/x", "AIDA2"))


class TestLedgerSerialization(unittest.TestCase):
    """Test the flat persisted mapping"""

    def test_unset_fields_are_omitted(self):
        data = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket").to_dict()
        self.assertEqual(data, {
            "region": "us-east-1",
            "s3_bucket": "fleet-bucket",
            "instance_system_logs": True,
            "instance_system_metrics": True,
        })

    def test_persisted_key_names(self):
        ledger = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket")
        ledger.apply_created(ResourceKind.VPC, VpcRecord("fleet-vpc", "vpc-1", "sg-1", ("subnet-a", "subnet-b")))
        ledger.apply_created(ResourceKind.ANCHOR_NODES, ScalingGroupRecord("fleet-asg-anchor", "asg-anchor"))
        ledger.apply_created(
            ResourceKind.LOAD_BALANCER,
            LoadBalancerRecord("fleet-nlb", "arn:nlb", "arn:tg", "nlb.example.com"),
        )

        data = ledger.to_dict()
        self.assertEqual(data["cloudformation_vpc"], "fleet-vpc")
        self.assertEqual(data["cloudformation_vpc_public_subnet_ids"], ["subnet-a", "subnet-b"])
        self.assertEqual(data["cloudformation_asg_anchor_nodes_logical_id"], "asg-anchor")
        self.assertEqual(data["cloudformation_asg_nlb_target_group_arn"], "arn:tg")
        self.assertEqual(data["cloudformation_asg_nlb_dns_name"], "nlb.example.com")
        self.assertNotIn("cloudformation_asg_non_anchor_nodes", data)

    def test_from_dict_restores_records(self):
        data = {
            "region": "eu-west-1",
            "s3_bucket": "fleet-bucket",
            "identity": {"account_id": "123456789012", "role_arn": "arn:aws:iam::123456789012:user/ops",
                         "user_id": "AIDA1"},
            "kms_cmk_id": "key-1",
            "kms_cmk_arn": "arn:aws:kms:eu-west-1:123456789012:key/key-1",
            "cloudformation_vpc": "fleet-vpc",
            "cloudformation_vpc_id": "vpc-1",
            "cloudformation_vpc_security_group_id": "sg-1",
            "cloudformation_vpc_public_subnet_ids": ["subnet-a"],
            "some_future_field": "ignored",
        }
        ledger = ResourceLedger.from_dict(data)

        self.assertEqual(ledger.region, "eu-west-1")
        self.assertEqual(ledger.identity.account_id, "123456789012")
        self.assertEqual(ledger.kms_cmk_id, "key-1")
        self.assertEqual(ledger.public_subnet_ids, ("subnet-a",))
        self.assertIsNone(ledger.instance_system_logs)
        self.assertTrue(ledger.system_logs_enabled)
        self.assertNotIn("some_future_field", ledger.to_dict())

    def test_partial_record_keeps_recorded_identifiers(self):
        ledger = ResourceLedger.from_dict({
            "region": "us-east-1",
            "s3_bucket": "fleet-bucket",
            "cloudformation_asg_nlb": "fleet-nlb",
            "cloudformation_asg_nlb_arn": "arn:nlb",
        })

        self.assertTrue(ledger.is_created(ResourceKind.LOAD_BALANCER))
        self.assertEqual(ledger.nlb_stack, "fleet-nlb")
        self.assertEqual(ledger.nlb_arn, "arn:nlb")
        self.assertIsNone(ledger.nlb_dns_name)
        self.assertEqual(
            ledger.missing_fields(ResourceKind.LOAD_BALANCER),
            ["cloudformation_asg_nlb_target_group_arn", "cloudformation_asg_nlb_dns_name"],
        )

        data = ledger.to_dict()
        self.assertEqual(data["cloudformation_asg_nlb"], "fleet-nlb")
        self.assertNotIn("cloudformation_asg_nlb_dns_name", data)

    def test_lone_kms_key_id_is_kept(self):
        ledger = ResourceLedger.from_dict({"region": "us-east-1", "s3_bucket": "fleet-bucket", "kms_cmk_id": "abc"})

        self.assertTrue(ledger.is_created(ResourceKind.KMS_KEY))
        self.assertEqual(ledger.kms_cmk_id, "abc")
        self.assertIsNone(ledger.kms_cmk_arn)
        self.assertEqual(ledger.to_dict()["kms_cmk_id"], "abc")

    def test_complete_record_fills_missing_fields(self):
        ledger = ResourceLedger.from_dict({"region": "us-east-1", "s3_bucket": "fleet-bucket", "kms_cmk_id": "abc"})

        ledger.complete_record(ResourceKind.KMS_KEY, KmsKeyRecord("abc", "arn:aws:kms:key/abc"))

        self.assertEqual(ledger.kms_cmk_arn, "arn:aws:kms:key/abc")
        self.assertEqual(ledger.missing_fields(ResourceKind.KMS_KEY), [])

    def test_complete_record_never_changes_recorded_values(self):
        ledger = ResourceLedger.from_dict({"region": "us-east-1", "s3_bucket": "fleet-bucket", "kms_cmk_id": "abc"})

        with self.assertRaises(StateError):
            ledger.complete_record(ResourceKind.KMS_KEY, KmsKeyRecord("other", "arn:aws:kms:key/other"))
        self.assertEqual(ledger.kms_cmk_id, "abc")

    def test_complete_record_requires_existing_record(self):
        ledger = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket")
        with self.assertRaises(StateError):
            ledger.complete_record(ResourceKind.KMS_KEY, KmsKeyRecord("abc", "arn:aws:kms:key/abc"))

    def test_legacy_metrics_namespace_key(self):
        ledger = ResourceLedger.from_dict({
            "region": "us-east-1",
            "s3_bucket": "fleet-bucket",
            "cloudwatch_avalanche_metrics_namespace": "demo-fleet",
        })

        self.assertEqual(ledger.metrics_namespace, "demo-fleet")
        self.assertEqual(ledger.to_dict()["cloudwatch_metrics_namespace"], "demo-fleet")

    def test_reload_is_equal(self):
        ledger = ResourceLedger(region="us-east-1", s3_bucket="fleet-bucket", nlb_acm_certificate_arn="arn:acm")
        ledger.apply_created(ResourceKind.BUCKET, BucketRecord("arn:aws:s3:::fleet-bucket"))
        ledger.apply_created(ResourceKind.VPC, VpcRecord("fleet-vpc", "vpc-1", "sg-1", ("subnet-a",)))

        self.assertEqual(ResourceLedger.from_dict(ledger.to_dict()), ledger)


if __name__ == "__main__":
    unittest.main()
