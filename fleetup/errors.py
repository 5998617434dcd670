"""
Error Taxonomy
Exceptions raised by the ledger, the provider clients and the orchestrator
"""
from typing import List, Optional


class FleetError(Exception):
    """Base class for all fleetup errors

    The orchestrator annotates errors it propagates with the step that failed
    and the steps that were already complete, so a re-run can resume.
    """

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.failed_step: Optional[str] = None
        self.completed_steps: List[str] = []


class ConfigError(FleetError):
    """Invalid or contradictory ledger input; never retried"""
    pass


class IdentityError(FleetError):
    """Caller identity could not be resolved"""
    pass


class ProvisioningError(FleetError):
    """A provider call failed"""
    pass


class ProvisioningTimeout(FleetError):
    """A stabilization wait exceeded its deadline"""
    pass


class StateError(FleetError):
    """Ledger invariant violation, always a logic fault"""
    pass
