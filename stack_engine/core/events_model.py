"""Event models for the stack engine."""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID
from typing import Any, Dict, List


@dataclass
class DeploymentEvent:
    """Domain event published as plain data."""

    event_type: str
    deployment_id: UUID
    timestamp: datetime
    metadata: Dict[str, Any]

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def deployment_started(deployment):
        return DeploymentEvent(
            event_type="deployment.started",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "stack_id": deployment.stack_id,
                "stack_name": deployment.stack_name,
                "environment_id": deployment.environment_id,
            }
        )

    @staticmethod
    def deployment_succeeded(deployment, warnings: List[str]):
        return DeploymentEvent(
            event_type="deployment.succeeded",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "stack_version": deployment.stack_version,
                "containers": list(deployment.deployed_containers),
                "warnings": list(warnings),
            }
        )

    @staticmethod
    def deployment_failed(deployment, errors: List[str]):
        return DeploymentEvent(
            event_type="deployment.failed",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "errors": list(errors),
            }
        )

    @staticmethod
    def deployment_cancelled(deployment):
        return DeploymentEvent(
            event_type="deployment.cancelled",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={"stack_name": deployment.stack_name}
        )

    @staticmethod
    def deployment_removed(deployment):
        return DeploymentEvent(
            event_type="deployment.removed",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={"stack_name": deployment.stack_name}
        )

    @staticmethod
    def upgrade_started(deployment):
        return DeploymentEvent(
            event_type="deployment.upgrade_started",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "from_version": deployment.stack_version,
                "to_version": deployment.target_version,
            }
        )

    @staticmethod
    def mode_changed(deployment, previous_mode, source: str):
        return DeploymentEvent(
            event_type="deployment.mode_changed",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "previous_mode": previous_mode.value,
                "new_mode": deployment.operation_mode.value,
                "reason": deployment.mode_reason,
                "source": source,
            }
        )

    @staticmethod
    def observer_triggered(deployment_id: UUID, observed_value, maintenance_required: bool):
        return DeploymentEvent(
            event_type="observer.triggered",
            deployment_id=deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "observed_value": observed_value,
                "maintenance_required": maintenance_required,
            }
        )

    @staticmethod
    def observer_escalated(deployment_id: UUID, consecutive_failures: int, last_error: str):
        """Critical notification after repeated observer failures."""
        return DeploymentEvent(
            event_type="observer.escalated",
            deployment_id=deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "severity": "critical",
                "consecutive_failures": consecutive_failures,
                "last_error": last_error,
            }
        )

    @staticmethod
    def rolled_back(deployment, warnings: List[str]):
        return DeploymentEvent(
            event_type="deployment.rolled_back",
            deployment_id=deployment.deployment_id,
            timestamp=DeploymentEvent._now(),
            metadata={
                "stack_version": deployment.stack_version,
                "containers": list(deployment.deployed_containers),
                "warnings": list(warnings),
            }
        )
