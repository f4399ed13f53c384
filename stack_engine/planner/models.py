"""Deployment plan models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class NetworkDefinition:
    logical_name: str
    resolved_name: str
    external: bool = False
    driver: Optional[str] = None


@dataclass
class VolumeMount:
    source: str
    target: str
    named: bool = False


@dataclass
class DeploymentStep:
    """One container to create, in dependency order."""

    context_name: str
    image: str
    version: str
    container_name: str
    order: int
    lifecycle: str = "service"
    networks: List[str] = field(default_factory=list)
    env_vars: Dict[str, str] = field(default_factory=dict)
    ports: List[str] = field(default_factory=list)
    volumes: List[VolumeMount] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    restart: Optional[str] = None
    command: Optional[Union[str, List[str]]] = None
    entrypoint: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    health_check: Optional[Dict[str, Any]] = None
    internal: bool = True

    @property
    def is_init(self) -> bool:
        return self.lifecycle == "init"


@dataclass
class DeploymentPlan:
    stack_name: str
    stack_version: str
    global_env_vars: Dict[str, str] = field(default_factory=dict)
    networks: Dict[str, NetworkDefinition] = field(default_factory=dict)
    named_volumes: Dict[str, str] = field(default_factory=dict)
    steps: List[DeploymentStep] = field(default_factory=list)

    def step(self, context_name: str) -> DeploymentStep:
        for s in self.steps:
            if s.context_name == context_name:
                return s
        raise KeyError(context_name)
