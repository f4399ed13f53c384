# stack_engine/infrastructure/postgres/models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, Enum as SQLEnum, Index, Text, Boolean, Uuid
)

from stack_engine.core.models import MaintenanceSource
from stack_engine.core.state_machine import DeploymentStatus, OperationMode
from stack_engine.infrastructure.postgres.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentORM(Base):
    """
    Deployment table - one row per deployment, never deleted.

    Indexes:
    - Primary key on deployment_id
    - Composite index on (environment_id, stack_name) for redeploy lookup
    - Index on status for restoring observers of running deployments
    """

    __tablename__ = "deployments"

    # Identity
    deployment_id = Column(Uuid, primary_key=True, nullable=False)
    environment_id = Column(String(255), nullable=False)
    stack_id = Column(String(512), nullable=False)
    stack_name = Column(String(255), nullable=False)

    # Lifecycle
    status = Column(
        SQLEnum(DeploymentStatus, name="deployment_status"),
        nullable=False,
        default=DeploymentStatus.INSTALLING,
        index=True
    )
    operation_mode = Column(
        SQLEnum(OperationMode, name="operation_mode"),
        nullable=False,
        default=OperationMode.NORMAL
    )

    # Configuration
    variables = Column(JSON, nullable=False, default=dict)
    stack_version = Column(String(100), nullable=True)
    target_version = Column(String(100), nullable=True)
    previous_version = Column(String(100), nullable=True)

    # Maintenance observer
    observer_config = Column(JSON, nullable=True)
    observer_enabled = Column(Boolean, nullable=False, default=True)
    maintenance_source = Column(SQLEnum(MaintenanceSource, name="maintenance_source"), nullable=True)
    mode_reason = Column(Text, nullable=True)

    # Results
    deployed_containers = Column(JSON, nullable=False, default=list)
    stopped_containers = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_deployments_environment_stack", "environment_id", "stack_name"),
    )

    def __repr__(self):
        return f"<DeploymentORM(id={self.deployment_id}, stack={self.stack_name}, status={self.status})>"
