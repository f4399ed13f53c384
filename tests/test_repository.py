"""Test deployment repository implementations."""

import pytest
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from stack_engine.core.errors import DeploymentAlreadyExists, DeploymentConcurrencyError, DeploymentNotFound
from stack_engine.core.models import Deployment, MaintenanceSource
from stack_engine.core.state_machine import DeploymentStatus, OperationMode
from stack_engine.infrastructure.memory.repository import InMemoryDeploymentRepository
from stack_engine.infrastructure.postgres.database import drop_db, get_session_factory, init_db
from stack_engine.infrastructure.postgres.repository import PostgresDeploymentRepository


@pytest.fixture
def sql_engine():
    """In-memory SQLite standing in for PostgreSQL."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    drop_db(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryDeploymentRepository()
    engine = request.getfixturevalue("sql_engine")
    return PostgresDeploymentRepository(get_session_factory(engine))


def make_deployment(stack_name="shop", environment_id="env-1", **overrides) -> Deployment:
    return Deployment(
        deployment_id=uuid4(),
        environment_id=environment_id,
        stack_id="git-main:Shop:Shop",
        stack_name=stack_name,
        stack_version="2.1.0",
        variables={"HTTP_PORT": "8080"},
        **overrides,
    )


class TestDeploymentRepository:
    """Test repository operations on every backend."""

    # -------------------------
    # CREATE TESTS
    # -------------------------

    def test_create_and_get(self, store):
        deployment = make_deployment(
            observer_config={"type": "file", "path": "/flag", "maintenanceValue": "true"},
        )
        store.create(deployment)

        retrieved = store.get(deployment.deployment_id)

        assert retrieved is not None
        assert retrieved.deployment_id == deployment.deployment_id
        assert retrieved.status == DeploymentStatus.INSTALLING
        assert retrieved.operation_mode == OperationMode.NORMAL
        assert retrieved.variables == {"HTTP_PORT": "8080"}
        assert retrieved.observer_config["path"] == "/flag"
        assert retrieved.observer_enabled

    def test_create_duplicate_fails(self, store):
        deployment = make_deployment()
        store.create(deployment)

        with pytest.raises(DeploymentAlreadyExists):
            store.create(deployment)

    def test_get_missing(self, store):
        assert store.get(uuid4()) is None

    # -------------------------
    # UPDATE TESTS
    # -------------------------

    def test_update_persists_transitions(self, store):
        deployment = make_deployment()
        store.create(deployment)

        deployment.mark_running(["shop_db", "shop_app"])
        store.update(deployment)
        deployment.enter_maintenance(MaintenanceSource.OBSERVER, "flag set")
        store.update(deployment)
        deployment.record_stopped_containers(["shop_db"])
        store.update(deployment)

        retrieved = store.get(deployment.deployment_id)
        assert retrieved.status == DeploymentStatus.RUNNING
        assert retrieved.operation_mode == OperationMode.MAINTENANCE
        assert retrieved.maintenance_source == MaintenanceSource.OBSERVER
        assert retrieved.mode_reason == "flag set"
        assert retrieved.deployed_containers == ["shop_db", "shop_app"]
        assert retrieved.stopped_containers == ["shop_db"]
        assert retrieved.version == 3

    def test_update_missing_fails(self, store):
        with pytest.raises(DeploymentNotFound):
            store.update(make_deployment())

    def test_stale_update_is_rejected(self, store):
        deployment = make_deployment()
        store.create(deployment)
        first = store.get(deployment.deployment_id)
        second = store.get(deployment.deployment_id)

        first.mark_running()
        store.update(first)

        second.mark_failed("pull failed")
        with pytest.raises(DeploymentConcurrencyError):
            store.update(second)

        retrieved = store.get(deployment.deployment_id)
        assert retrieved.status == DeploymentStatus.RUNNING
        assert retrieved.version == 1

    def test_update_must_advance_exactly_one_version(self, store):
        deployment = make_deployment()
        store.create(deployment)

        deployment.mark_running()
        deployment.enter_maintenance(MaintenanceSource.MANUAL)

        with pytest.raises(DeploymentConcurrencyError):
            store.update(deployment)
        assert store.get(deployment.deployment_id).status == DeploymentStatus.INSTALLING

    def test_unchanged_copy_cannot_be_written(self, store):
        deployment = make_deployment()
        store.create(deployment)

        with pytest.raises(DeploymentConcurrencyError):
            store.update(store.get(deployment.deployment_id))

    # -------------------------
    # QUERY TESTS
    # -------------------------

    def test_find_active(self, store):
        failed = make_deployment()
        failed.mark_failed("pull failed")
        store.create(failed)
        active = make_deployment()
        store.create(active)
        store.create(make_deployment(environment_id="env-2"))

        found = store.find_active("env-1", "shop")

        assert found.deployment_id == active.deployment_id
        assert store.find_active("env-1", "blog") is None

    def test_removed_is_not_active(self, store):
        deployment = make_deployment()
        deployment.mark_running()
        deployment.mark_removed()
        store.create(deployment)

        assert store.find_active("env-1", "shop") is None

    def test_list_active_spans_environments(self, store):
        first = make_deployment()
        first.mark_running()
        other_env = make_deployment(environment_id="env-2", stack_name="blog")
        removed = make_deployment(stack_name="old")
        removed.mark_running()
        removed.mark_removed()
        for deployment in (first, other_env, removed):
            store.create(deployment)

        active = [d.deployment_id for d in store.list_active()]

        assert active == [first.deployment_id, other_env.deployment_id]

    def test_list_running_and_all(self, store):
        running = make_deployment(stack_name="a")
        running.mark_running()
        installing = make_deployment(stack_name="b")
        store.create(running)
        store.create(installing)

        assert [d.deployment_id for d in store.list_running()] == [running.deployment_id]
        assert [d.deployment_id for d in store.list_all()] == [running.deployment_id, installing.deployment_id]


class TestSqlRepository:
    """SQL-specific behaviour."""

    def test_returns_detached_copies(self, sql_engine):
        store = PostgresDeploymentRepository(get_session_factory(sql_engine))
        deployment = make_deployment()
        store.create(deployment)

        copy = store.get(deployment.deployment_id)
        copy.mark_running()

        assert store.get(deployment.deployment_id).status == DeploymentStatus.INSTALLING


class TestMemoryRepository:
    """In-memory specifics."""

    def test_returns_detached_copies(self):
        store = InMemoryDeploymentRepository()
        deployment = make_deployment()
        store.create(deployment)

        deployment.mark_running()
        store.get(deployment.deployment_id).mark_failed("ignored")

        assert store.get(deployment.deployment_id).status == DeploymentStatus.INSTALLING
