# stack_engine/executor/runtime_client.py
"""Capability-style container runtime interface used by the execution engine."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class ContainerSpec:
    """Container create+start request."""
    image: str
    name: str
    environment: Dict[str, str] = field(default_factory=dict)
    ports: List[str] = field(default_factory=list)
    volumes: List[str] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    restart_policy: str = "unless-stopped"
    command: Optional[Union[str, List[str]]] = None
    entrypoint: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    health_check: Optional[Dict[str, Any]] = None


@dataclass
class ContainerInfo:
    container_id: str
    name: str
    status: str
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.status == "running"


class RuntimeClient(ABC):
    """
    Container runtime capabilities.

    Implementations raise RuntimeClientError (ImagePullError for pulls) on
    failure.
    """

    @abstractmethod
    def pull_image(self, image: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def image_exists(self, image: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def ensure_network(self, name: str) -> None:
        """Create the network unless it already exists."""
        raise NotImplementedError

    @abstractmethod
    def remove_container(self, name_or_id: str, force: bool = True) -> bool:
        """Returns False if no such container exists."""
        raise NotImplementedError

    @abstractmethod
    def create_and_start(self, spec: ContainerSpec) -> str:
        """Returns the container id."""
        raise NotImplementedError

    @abstractmethod
    def wait_for_exit(self, container_id: str, timeout: float, poll_interval: float) -> Optional[int]:
        """Exit code, or None if the container is still running at timeout."""
        raise NotImplementedError

    @abstractmethod
    def get_logs(self, container_id: str, tail: int = 50) -> str:
        raise NotImplementedError

    @abstractmethod
    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        """All containers (running or not) carrying every given label."""
        raise NotImplementedError

    @abstractmethod
    def stop_container(self, container_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def start_container(self, container_id: str) -> None:
        raise NotImplementedError
