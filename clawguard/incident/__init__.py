"""clawguard.incident

Lockdown state, the revocation controller and the incident runbooks.
"""

from clawguard.incident.actuators import CommandRunner, HostActuator
from clawguard.incident.controller import LockdownReport, RevocationController, StepOutcome, StepStatus
from clawguard.incident.state import LockdownState, LockdownStore

__all__ = [
    "CommandRunner",
    "HostActuator",
    "LockdownReport",
    "LockdownState",
    "LockdownStore",
    "RevocationController",
    "StepOutcome",
    "StepStatus",
]
