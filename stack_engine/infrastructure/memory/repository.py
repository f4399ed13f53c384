# stack_engine/infrastructure/memory/repository.py

from copy import deepcopy
from threading import Lock
from typing import Iterable, Optional
from uuid import UUID

from stack_engine.core.repository import DeploymentRepository
from stack_engine.core.models import Deployment
from stack_engine.core.state_machine import DeploymentStatus
from stack_engine.core.errors import (
    DeploymentAlreadyExists,
    DeploymentConcurrencyError,
    DeploymentNotFound,
)


class InMemoryDeploymentRepository(DeploymentRepository):
    """Dict-backed store; callers always get detached copies, like from the database."""

    def __init__(self):
        self._store: dict[UUID, Deployment] = {}
        self._lock = Lock()

    def create(self, deployment: Deployment) -> None:
        with self._lock:
            if deployment.deployment_id in self._store:
                raise DeploymentAlreadyExists(f"Deployment {deployment.deployment_id} already exists")
            self._store[deployment.deployment_id] = deepcopy(deployment)

    def get(self, deployment_id: UUID) -> Deployment | None:
        with self._lock:
            stored = self._store.get(deployment_id)
            return deepcopy(stored) if stored is not None else None

    def update(self, deployment: Deployment) -> None:
        with self._lock:
            stored = self._store.get(deployment.deployment_id)
            if stored is None:
                raise DeploymentNotFound(f"Deployment {deployment.deployment_id} not found")
            if stored.version != deployment.version - 1:
                raise DeploymentConcurrencyError(
                    f"Update failed for {deployment.deployment_id} - concurrent modification "
                    f"(stored v{stored.version}, writing v{deployment.version})"
                )
            self._store[deployment.deployment_id] = deepcopy(deployment)

    def find_active(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        with self._lock:
            for d in self._store.values():
                if (
                    d.environment_id == environment_id
                    and d.stack_name == stack_name
                    and d.is_active
                ):
                    return deepcopy(d)
        return None

    def list_active(self) -> Iterable[Deployment]:
        with self._lock:
            active = [d for d in self._store.values() if d.is_active]
            return [deepcopy(d) for d in sorted(active, key=lambda d: d.created_at)]

    def list_running(self) -> Iterable[Deployment]:
        with self._lock:
            return [deepcopy(d) for d in self._store.values() if d.status == DeploymentStatus.RUNNING]

    def list_all(self) -> Iterable[Deployment]:
        with self._lock:
            return [deepcopy(d) for d in sorted(self._store.values(), key=lambda d: d.created_at)]
