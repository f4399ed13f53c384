# stack_engine/container.py

"""Dependency injection container - wires all services together."""

from stack_engine.core.config import EngineSettings, get_settings
from stack_engine.core.events import LogEventEmitter, MultiEventEmitter
from stack_engine.core.repository import DeploymentRepository
from stack_engine.core.service import DeploymentService
from stack_engine.executor.engine import ExecutionEngine
from stack_engine.executor.runtime_client import RuntimeClient
from stack_engine.manifest.catalog import StackCatalog
from stack_engine.observers.service import MaintenanceObserverService
from stack_engine.planner.compiler import PlanCompiler


def build_repository(settings: EngineSettings) -> DeploymentRepository:
    if settings.repository_backend == "postgres":
        from stack_engine.infrastructure.postgres.repository import PostgresDeploymentRepository
        return PostgresDeploymentRepository()

    from stack_engine.infrastructure.memory.repository import InMemoryDeploymentRepository
    return InMemoryDeploymentRepository()


def build_runtime(settings: EngineSettings) -> RuntimeClient:
    if settings.runtime_backend == "docker":
        from runtime_agent.docker_runtime import DockerRuntimeClient
        return DockerRuntimeClient()

    from runtime_agent.client import RuntimeAgentClient
    return RuntimeAgentClient(settings.runtime_agent_url, timeout=settings.runtime_agent_timeout)


settings = get_settings()


# ============================================
# REPOSITORIES
# ============================================

deployment_repository = build_repository(settings)

stack_catalog = StackCatalog()


# ============================================
# EVENTS
# ============================================

event_log = LogEventEmitter()

emitters = MultiEventEmitter([
    event_log
])


# ============================================
# EXECUTION
# ============================================

runtime_client = build_runtime(settings)

execution_engine = ExecutionEngine(
    runtime_client,
    init_timeout=settings.init_timeout,
    init_poll_interval=settings.init_poll_interval,
)


# ============================================
# SERVICES
# ============================================

observer_service = MaintenanceObserverService(
    repository=deployment_repository,
    event_emitters=emitters,
    failure_threshold=settings.observer_failure_threshold,
)

deployment_service = DeploymentService(
    repository=deployment_repository,
    catalog=stack_catalog,
    compiler=PlanCompiler(),
    engine=execution_engine,
    event_emitters=emitters,
    observer_service=observer_service,
)
