# stack_engine/core/repository.py

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from stack_engine.core.models import Deployment


class DeploymentRepository(ABC):
    """
    Persistence contract for deployments.

    Rows are never deleted; removal is a status change.
    """

    @abstractmethod
    def create(self, deployment: Deployment) -> None:
        """
        Persist a new deployment.
        Must fail if deployment_id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, deployment_id: UUID) -> Optional[Deployment]:
        """
        Fetch deployment by ID.
        Returns None if not found.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, deployment: Deployment) -> None:
        """
        Persist updated deployment state with optimistic locking.
        The stored version must be ``deployment.version - 1``, otherwise
        DeploymentConcurrencyError is raised and nothing is written.
        """
        raise NotImplementedError

    @abstractmethod
    def find_active(self, environment_id: str, stack_name: str) -> Optional[Deployment]:
        """
        Installing or Running deployment for a stack name in an environment.
        Used to route repeated deploy requests to an upgrade.
        """
        raise NotImplementedError

    @abstractmethod
    def list_active(self) -> Iterable[Deployment]:
        """
        Installing or Running deployments in every environment.
        Used to keep runtime stack names unique on the shared endpoint.
        """
        raise NotImplementedError

    @abstractmethod
    def list_running(self) -> Iterable[Deployment]:
        """
        Deployments in Running status.
        Used to restore observer loops on startup.
        """
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> Iterable[Deployment]:
        """All deployments, oldest first."""
        raise NotImplementedError
