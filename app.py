#!/usr/bin/env python3
"""
Fleetup Application Entry Point
"""
import sys
import signal
import logging

from fleetup.configuration import FleetConfiguration
from fleetup.envelope import LocalFileEnvelope, PersistenceEnvelope, S3Envelope
from fleetup.errors import FleetError
from fleetup.orchestrator import OrchestrationStatus, ProviderClients, ProvisioningOrchestrator


logger = logging.getLogger("fleetup")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # boto and jsii are noisy at DEBUG
    for name in ("botocore", "boto3", "urllib3", "jsii"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_envelope(configuration: FleetConfiguration) -> PersistenceEnvelope:
    if configuration.ledger_s3_key:
        return S3Envelope(
            bucket=configuration.ledger_s3_bucket,
            key=configuration.ledger_s3_key,
            region=configuration.region,
        )
    return LocalFileEnvelope(configuration.ledger_path)


def main():
    """Main application entry point"""
    try:
        configuration = FleetConfiguration.from_env()
        configure_logging(configuration.log_level)
        configuration.validate()

        envelope = build_envelope(configuration)
        ledger = envelope.load() if envelope.exists() else configuration.new_ledger()

        orchestrator = ProvisioningOrchestrator(
            ledger=ledger,
            envelope=envelope,
            clients=ProviderClients.for_region(ledger.region),
            configuration=configuration,
        )
        # Ctrl-C stops between steps so the ledger stays consistent
        signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())

        if configuration.action == "delete":
            result = orchestrator.teardown()
        else:
            result = orchestrator.apply()
    except FleetError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"{type(e).__name__}: {e}")
        if e.completed_steps:
            logger.error(f"Completed steps: {', '.join(e.completed_steps)}")
        return 1

    if result.status == OrchestrationStatus.CANCELLED:
        logger.warning(f"Cancelled; re-run to resume. Completed steps: {result.completed_steps}")
        return 130

    if ledger.nlb_dns_name:
        logger.info(f"Fleet endpoint: {ledger.nlb_dns_name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
