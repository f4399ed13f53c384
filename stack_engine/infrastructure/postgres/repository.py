# stack_engine/infrastructure/postgres/repository.py

"""SQL repository implementation using SQLAlchemy."""

import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stack_engine.core.repository import DeploymentRepository
from stack_engine.core.models import Deployment
from stack_engine.core.state_machine import DeploymentStatus
from stack_engine.core.errors import (
    DeploymentAlreadyExists,
    DeploymentConcurrencyError,
    DeploymentNotFound,
    DeploymentPersistenceError,
)
from stack_engine.infrastructure.postgres.database import get_session_factory
from stack_engine.infrastructure.postgres.models import DeploymentORM

logger = logging.getLogger(__name__)

# Columns copied one-to-one between the aggregate and the row.
_FIELDS = (
    "deployment_id",
    "environment_id",
    "stack_id",
    "stack_name",
    "status",
    "operation_mode",
    "variables",
    "stack_version",
    "target_version",
    "previous_version",
    "observer_config",
    "observer_enabled",
    "maintenance_source",
    "mode_reason",
    "deployed_containers",
    "stopped_containers",
    "error_message",
    "created_at",
    "updated_at",
    "version",
)

_ACTIVE = (DeploymentStatus.INSTALLING, DeploymentStatus.RUNNING)


# ============================================
# Mapping Functions
# ============================================

def orm_to_domain(orm: DeploymentORM) -> Deployment:
    """Convert ORM model to domain model."""
    values = {name: getattr(orm, name) for name in _FIELDS}
    values["variables"] = dict(orm.variables or {})
    values["deployed_containers"] = list(orm.deployed_containers or [])
    values["stopped_containers"] = list(orm.stopped_containers or [])
    return Deployment(**values)


def copy_to_orm(deployment: Deployment, orm: DeploymentORM) -> DeploymentORM:
    for name in _FIELDS:
        setattr(orm, name, getattr(deployment, name))
    return orm


# ============================================
# Repository Implementation
# ============================================

class PostgresDeploymentRepository(DeploymentRepository):
    """SQLAlchemy implementation; works on PostgreSQL and, for tests, SQLite."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Args:
            session_factory: SQLAlchemy session factory. If None, uses the production factory.
        """
        self._session_factory = session_factory or get_session_factory()

    def _get_session(self) -> Session:
        return self._session_factory()

    # -------------------------
    # WRITE
    # -------------------------

    def create(self, deployment: Deployment) -> None:
        session = self._get_session()
        try:
            session.add(copy_to_orm(deployment, DeploymentORM()))
            session.commit()
            logger.debug(f"[db] create {deployment.deployment_id}")
        except IntegrityError as e:
            session.rollback()
            raise DeploymentAlreadyExists(
                f"Deployment {deployment.deployment_id} already exists"
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise DeploymentPersistenceError(f"Failed to create deployment: {e}") from e
        finally:
            session.close()

    def update(self, deployment: Deployment) -> None:
        """Update deployment with optimistic locking."""
        session = self._get_session()
        try:
            orm = (
                session.query(DeploymentORM)
                .filter(
                    and_(
                        DeploymentORM.deployment_id == deployment.deployment_id,
                        DeploymentORM.version == deployment.version - 1,
                    )
                )
                .with_for_update()
                .first()
            )

            if orm is None:
                if session.get(DeploymentORM, deployment.deployment_id) is None:
                    raise DeploymentNotFound(f"Deployment {deployment.deployment_id} not found")
                raise DeploymentConcurrencyError(
                    f"Update failed for {deployment.deployment_id} - concurrent modification"
                )

            copy_to_orm(deployment, orm)
            session.commit()
            logger.debug(f"[db] update {deployment.deployment_id} -> v{deployment.version}")
        except (DeploymentNotFound, DeploymentConcurrencyError):
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise DeploymentPersistenceError(f"Failed to update deployment: {e}") from e
        finally:
            session.close()

    # -------------------------
    # READ
    # -------------------------

    def get(self, deployment_id: UUID) -> Optional[Deployment]:
        session = self._get_session()
        try:
            orm = session.get(DeploymentORM, deployment_id)
            return orm_to_domain(orm) if orm is not None else None
        finally:
            session.close()

    def find_active(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        session = self._get_session()
        try:
            orm = (
                session.query(DeploymentORM)
                .filter(
                    DeploymentORM.environment_id == environment_id,
                    DeploymentORM.stack_name == stack_name,
                    DeploymentORM.status.in_(_ACTIVE),
                )
                .order_by(DeploymentORM.created_at.desc())
                .first()
            )
            return orm_to_domain(orm) if orm is not None else None
        finally:
            session.close()

    def list_active(self) -> Iterable[Deployment]:
        return self._list(DeploymentORM.status.in_(_ACTIVE))

    def list_running(self) -> Iterable[Deployment]:
        return self._list(DeploymentORM.status == DeploymentStatus.RUNNING)

    def list_all(self) -> Iterable[Deployment]:
        return self._list()

    def _list(self, *criteria) -> Iterable[Deployment]:
        session = self._get_session()
        try:
            query = session.query(DeploymentORM).filter(*criteria).order_by(DeploymentORM.created_at.asc())
            return [orm_to_domain(orm) for orm in query.all()]
        finally:
            session.close()
