#tests/conftest.py

"""Pytest configuration and fixtures."""

import textwrap
from itertools import count
from typing import Dict, List, Optional

import pytest

from stack_engine.core.errors import ImagePullError, RuntimeClientError
from stack_engine.core.events import LogEventEmitter
from stack_engine.core.service import DeploymentService
from stack_engine.executor.engine import ExecutionEngine
from stack_engine.executor.runtime_client import ContainerInfo, ContainerSpec, RuntimeClient
from stack_engine.infrastructure.memory.repository import InMemoryDeploymentRepository
from stack_engine.manifest.catalog import StackCatalog
from stack_engine.observers.base import BaseObserver
from stack_engine.observers.service import MaintenanceObserverService
from stack_engine.planner.compiler import PlanCompiler


# ============================================
# Fake container runtime
# ============================================

class FakeRuntimeClient(RuntimeClient):
    """In-memory runtime; failures are scripted per image or container name."""

    def __init__(self):
        self.local_images = set()
        self.pull_failures = set()
        self.create_failures = set()
        self.exit_codes: Dict[str, Optional[int]] = {}
        self.networks: List[str] = []
        self.containers: Dict[str, ContainerInfo] = {}
        self.specs: Dict[str, ContainerSpec] = {}
        self.started: List[str] = []
        self.stopped: List[str] = []
        self.restarted: List[str] = []
        self._ids = count(1)

    def pull_image(self, image: str) -> None:
        if image in self.pull_failures:
            raise ImagePullError(f"pull access denied for {image}")
        self.local_images.add(image)

    def image_exists(self, image: str) -> bool:
        return image in self.local_images

    def ensure_network(self, name: str) -> None:
        if name not in self.networks:
            self.networks.append(name)

    def remove_container(self, name_or_id: str, force: bool = True) -> bool:
        for container_id, info in list(self.containers.items()):
            if name_or_id in (container_id, info.name):
                del self.containers[container_id]
                return True
        return False

    def create_and_start(self, spec: ContainerSpec) -> str:
        if spec.name in self.create_failures:
            raise RuntimeClientError(f"Conflict creating {spec.name}")
        container_id = f"c{next(self._ids)}"
        self.containers[container_id] = ContainerInfo(container_id, spec.name, "running", dict(spec.labels))
        self.specs[spec.name] = spec
        self.started.append(spec.name)
        return container_id

    def wait_for_exit(self, container_id: str, timeout: float, poll_interval: float) -> Optional[int]:
        info = self.containers[container_id]
        code = self.exit_codes.get(info.name, 0)
        if code is not None:
            info.status = "exited"
        return code

    def get_logs(self, container_id: str, tail: int = 50) -> str:
        return f"logs of {self.containers[container_id].name}"

    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        return [
            info for info in self.containers.values()
            if all(info.labels.get(k) == v for k, v in labels.items())
        ]

    def stop_container(self, container_id: str) -> None:
        info = self.containers[container_id]
        info.status = "exited"
        self.stopped.append(info.name)

    def start_container(self, container_id: str) -> None:
        info = self.containers[container_id]
        info.status = "running"
        self.restarted.append(info.name)

    def container(self, name: str) -> ContainerInfo:
        return next(info for info in self.containers.values() if info.name == name)


# ============================================
# Scripted maintenance observer
# ============================================

class ScriptedObserver(BaseObserver):
    """Returns queued values; an Exception in the queue is raised instead."""

    def __init__(self, config, script: List):
        super().__init__(config)
        self.script = script

    def read_value(self) -> str:
        value = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(value, Exception):
            raise value
        return value


# ============================================
# Manifests
# ============================================

PRODUCT_MANIFEST = """
metadata:
  name: Shop
  productVersion: "2.1.0"
variables:
  DB_PASSWORD:
    type: Password
    default: secret
  HTTP_PORT:
    type: Port
    default: 8080
services:
  db:
    image: postgres:16
    environment:
      POSTGRES_PASSWORD: ${DB_PASSWORD}
    volumes:
      - data:/var/lib/postgresql/data
  app:
    image: shop/app:2.1.0
    dependsOn: [db]
    ports:
      - "${HTTP_PORT}:80"
  worker:
    image: shop/worker:2.1.0
    dependsOn: [db]
    labels:
      stackengine.maintenance: ignore
volumes:
  data: {}
"""

OBSERVED_MANIFEST = PRODUCT_MANIFEST + """
maintenanceObserver:
  type: sqlExtendedProperty
  connectionString: "sqlite:///${DB_FILE:-shop.db}"
  propertyName: MaintenanceMode
  maintenanceValue: "1"
  normalValue: "0"
  pollingInterval: 5s
"""


@pytest.fixture
def write_manifest(tmp_path):
    """Write dedented manifest text below tmp_path; returns the file path."""
    def _write(relative: str, text: str):
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path
    return _write


# ============================================
# Wiring
# ============================================

@pytest.fixture
def runtime():
    return FakeRuntimeClient()


@pytest.fixture
def repository():
    return InMemoryDeploymentRepository()


@pytest.fixture
def event_log():
    return LogEventEmitter()


@pytest.fixture
def engine(runtime):
    return ExecutionEngine(runtime, init_timeout=1.0, init_poll_interval=0.01)


@pytest.fixture
def catalog():
    return StackCatalog()


@pytest.fixture
def observer_script():
    """Values handed out by ScriptedObserver; tests append to it."""
    return ["0"]


@pytest.fixture
def observer_service(repository, event_log, observer_script):
    service = MaintenanceObserverService(
        repository,
        event_log,
        failure_threshold=3,
        observer_factory=lambda config: ScriptedObserver(config, observer_script),
        autostart=False,
    )
    yield service
    service.stop_all()


@pytest.fixture
def service(repository, catalog, engine, event_log, observer_service):
    return DeploymentService(
        repository=repository,
        catalog=catalog,
        compiler=PlanCompiler(),
        engine=engine,
        event_emitters=event_log,
        observer_service=observer_service,
    )


@pytest.fixture
def shop_stack_id(catalog):
    return catalog.add_source("git-main", PRODUCT_MANIFEST)[0]


@pytest.fixture
def observed_stack_id(catalog):
    return catalog.add_source("git-main", OBSERVED_MANIFEST)[0]


@pytest.fixture
def shop_v2_stack_id(catalog):
    return catalog.add_source("git-next", PRODUCT_MANIFEST.replace("2.1.0", "2.2.0"))[0]


@pytest.fixture
def product_manifest():
    return PRODUCT_MANIFEST


@pytest.fixture
def observed_manifest():
    return OBSERVED_MANIFEST
