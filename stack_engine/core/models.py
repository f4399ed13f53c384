"""Core domain models (deployment aggregate)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from stack_engine.core.errors import IllegalTransitionError, InvalidDeploymentStateError
from stack_engine.core.state_machine import (
    DeploymentStatus,
    DeploymentStatusMachine,
    OperationMode,
    OperationModeStateMachine,
)


class MaintenanceSource(Enum):
    """Who put a deployment into maintenance."""

    MANUAL = "manual"
    OBSERVER = "observer"


@dataclass
class Deployment:
    """
    Deployment aggregate.

    Status and operation mode are only changed through the methods below;
    every successful mutation bumps ``version``.
    """

    # Identity
    deployment_id: UUID
    environment_id: str
    stack_id: str
    stack_name: str

    # Lifecycle
    status: DeploymentStatus = DeploymentStatus.INSTALLING
    operation_mode: OperationMode = OperationMode.NORMAL

    # Configuration
    variables: Dict[str, str] = field(default_factory=dict)
    stack_version: Optional[str] = None
    target_version: Optional[str] = None
    previous_version: Optional[str] = None

    # Maintenance observer
    observer_config: Optional[Dict[str, Any]] = None
    observer_enabled: bool = True
    maintenance_source: Optional[MaintenanceSource] = None
    mode_reason: Optional[str] = None

    # Results
    deployed_containers: List[str] = field(default_factory=list)
    stopped_containers: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    # Optimistic concurrency: repositories accept an update only when the
    # stored row is exactly one version behind.
    version: int = 0

    # -------------------------
    # STATUS TRANSITIONS
    # -------------------------

    def mark_running(self, deployed_containers: Optional[List[str]] = None) -> None:
        """Installing -> Running."""
        self.status = DeploymentStatusMachine.transition(self.status, DeploymentStatus.RUNNING)
        if deployed_containers is not None:
            self.deployed_containers = list(deployed_containers)
        self.error_message = None
        self._touch()

    def mark_failed(self, error_message: str) -> None:
        """Installing -> Failed."""
        self.status = DeploymentStatusMachine.transition(self.status, DeploymentStatus.FAILED)
        self.error_message = error_message
        self._touch()

    def mark_removed(self) -> None:
        """Running -> Removed."""
        self.status = DeploymentStatusMachine.transition(self.status, DeploymentStatus.REMOVED)
        self._touch()

    @property
    def is_active(self) -> bool:
        return self.status in (DeploymentStatus.INSTALLING, DeploymentStatus.RUNNING)

    # -------------------------
    # OPERATION MODE TRANSITIONS
    # -------------------------

    def enter_maintenance(self, source: MaintenanceSource, reason: Optional[str] = None) -> None:
        self._change_mode(OperationMode.MAINTENANCE, reason)
        self.maintenance_source = source

    def exit_maintenance(self, reason: Optional[str] = None) -> None:
        if self.operation_mode != OperationMode.MAINTENANCE:
            raise IllegalTransitionError(self.operation_mode, OperationMode.NORMAL)
        self._change_mode(OperationMode.NORMAL, reason)
        self.maintenance_source = None
        self.stopped_containers = []

    def record_stopped_containers(self, names: List[str]) -> None:
        """Containers stopped on entering maintenance; only these are restarted on exit."""
        if self.operation_mode != OperationMode.MAINTENANCE:
            raise InvalidDeploymentStateError(
                f"Stopped containers are only recorded in Maintenance (current: {self.operation_mode.value})"
            )
        self.stopped_containers = list(names)
        self._touch()

    def start_migration(self, target_version: str) -> None:
        self._change_mode(OperationMode.MIGRATING, f"Upgrading to {target_version}")
        self.target_version = target_version

    def complete_migration(self) -> None:
        """Migrating -> Normal; commits the target version."""
        self._change_mode(OperationMode.NORMAL, "Upgrade completed")
        self.previous_version = self.stack_version
        self.stack_version = self.target_version
        self.target_version = None

    def fail_migration(self, reason: str) -> None:
        """Migrating -> Failed; the current stack_version stays as rollback reference."""
        self._change_mode(OperationMode.FAILED, reason)
        self.error_message = reason

    def recover(self, reason: Optional[str] = None) -> None:
        """Failed -> Normal, explicit operator action."""
        if self.operation_mode != OperationMode.FAILED:
            raise IllegalTransitionError(self.operation_mode, OperationMode.NORMAL)
        self._change_mode(OperationMode.NORMAL, reason)
        self.target_version = None
        self.error_message = None

    @property
    def can_rollback(self) -> bool:
        """Only a failed upgrade can be rolled back."""
        return self.status == DeploymentStatus.RUNNING and self.operation_mode == OperationMode.FAILED

    def complete_rollback(self, deployed_containers: List[str]) -> None:
        """Failed -> Normal after the stored version was deployed again."""
        if not self.can_rollback:
            raise IllegalTransitionError(self.operation_mode, OperationMode.NORMAL)
        self._change_mode(OperationMode.NORMAL, f"Rolled back to {self.stack_version}")
        self.deployed_containers = list(deployed_containers)
        self.target_version = None
        self.error_message = None

    def record_error(self, error_message: str) -> None:
        """Keep the status, remember why the last command failed."""
        self.error_message = error_message
        self._touch()

    def restart_stopped(self, reason: Optional[str] = None) -> None:
        if self.operation_mode != OperationMode.STOPPED:
            raise IllegalTransitionError(self.operation_mode, OperationMode.NORMAL)
        self._change_mode(OperationMode.NORMAL, reason)

    def set_observer_enabled(self, enabled: bool) -> None:
        self.observer_enabled = enabled
        self._touch()

    def _change_mode(self, target: OperationMode, reason: Optional[str]) -> None:
        if self.status != DeploymentStatus.RUNNING:
            raise InvalidDeploymentStateError(
                f"Deployment must be running to change operation mode (current: {self.status.value})"
            )
        self.operation_mode = OperationModeStateMachine.transition(self.operation_mode, target)
        self.mode_reason = reason
        self._touch()

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
        self.version += 1
