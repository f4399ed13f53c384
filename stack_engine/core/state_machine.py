# stack_engine/core/state_machine.py
"""
Deployment lifecycle tables.

Two independent machines live here:
- DeploymentStatus: technical lifecycle of one deployment row.
- OperationMode: human/observer controlled mode of a running deployment.

Both are pure lookups: (current, target) -> target or error. The
Deployment aggregate is the only caller that applies the result.
"""

from enum import Enum

from stack_engine.core.errors import IllegalTransitionError, InvalidDeploymentStateError


class DeploymentStatus(Enum):
    """Deployment status (technical lifecycle)."""

    INSTALLING = "Installing"
    RUNNING = "Running"
    FAILED = "Failed"
    REMOVED = "Removed"


class OperationMode(Enum):
    """Operation mode (operator/observer controlled)."""

    NORMAL = "Normal"
    MAINTENANCE = "Maintenance"
    MIGRATING = "Migrating"
    FAILED = "Failed"
    STOPPED = "Stopped"

    @classmethod
    def parse(cls, name: str) -> "OperationMode":
        """Case-insensitive lookup by value or member name."""
        if isinstance(name, OperationMode):
            return name
        key = (name or "").strip().lower()
        for mode in cls:
            if mode.value.lower() == key or mode.name.lower() == key:
                return mode
        raise ValueError(f"Invalid operation mode: {name}")


ALLOWED_STATUS_TRANSITIONS = {
    DeploymentStatus.INSTALLING: {
        DeploymentStatus.RUNNING,
        DeploymentStatus.FAILED,
    },
    DeploymentStatus.RUNNING: {
        DeploymentStatus.REMOVED,
    },
}


ALLOWED_MODE_TRANSITIONS = {
    OperationMode.NORMAL: {
        OperationMode.MAINTENANCE,
        OperationMode.MIGRATING,
    },
    OperationMode.MAINTENANCE: {
        OperationMode.NORMAL,
    },
    OperationMode.MIGRATING: {
        OperationMode.NORMAL,
        OperationMode.FAILED,
    },
    OperationMode.FAILED: {
        OperationMode.NORMAL,
    },
    OperationMode.STOPPED: {
        OperationMode.NORMAL,
    },
}


class OperationModeStateMachine:
    @staticmethod
    def can_transition(current: OperationMode, target: OperationMode) -> bool:
        return target in ALLOWED_MODE_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(current: OperationMode, target: OperationMode) -> OperationMode:
        if target not in ALLOWED_MODE_TRANSITIONS.get(current, set()):
            raise IllegalTransitionError(current, target)
        return target


class DeploymentStatusMachine:
    @staticmethod
    def transition(current: DeploymentStatus, target: DeploymentStatus) -> DeploymentStatus:
        if target not in ALLOWED_STATUS_TRANSITIONS.get(current, set()):
            raise InvalidDeploymentStateError(
                f"Cannot transition deployment from {current.value} to {target.value}"
            )
        return target
