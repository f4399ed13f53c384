"""Test the runtime agent HTTP surface, its client and the Docker adapter."""

from unittest.mock import MagicMock

import pytest
import requests
from docker.errors import APIError, ImageNotFound, NotFound
from fastapi.testclient import TestClient

from runtime_agent import client as agent_client_module
from runtime_agent.client import RuntimeAgentClient
from runtime_agent.docker_runtime import (
    DockerRuntimeClient,
    duration_to_ns,
    health_check_config,
    parse_port_bindings,
)
from runtime_agent.server import app, get_runtime
from stack_engine.core.errors import ImagePullError, RuntimeClientError
from stack_engine.executor.engine import ExecutionEngine
from stack_engine.executor.runtime_client import ContainerSpec
from stack_engine.observers.models import parse_duration
from stack_engine.planner.compiler import PlanCompiler


@pytest.fixture
def agent(runtime):
    app.dependency_overrides[get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def agent_client(agent, monkeypatch):
    """RuntimeAgentClient whose HTTP calls are served by the in-process agent."""
    def route(method, url, timeout=None, **kwargs):
        return agent.request(method, url, **kwargs)

    monkeypatch.setattr(agent_client_module.requests, "request", route)
    return RuntimeAgentClient("http://testserver/")


class TestAgentEndpoints:
    """Test the agent API directly."""

    def test_health(self, agent):
        assert agent.get("/health").json() == {"status": "healthy"}

    def test_pull_failure_is_bad_gateway(self, agent, runtime):
        runtime.pull_failures.add("ghost:1")

        response = agent.post("/images/pull", json={"image": "ghost:1"})

        assert response.status_code == 502
        assert "pull access denied" in response.json()["detail"]

    def test_container_lifecycle(self, agent, runtime):
        response = agent.post("/containers", json={
            "image": "nginx:1.25",
            "name": "shop_web",
            "labels": {"stackengine.stack": "shop"},
        })
        assert response.status_code == 200
        container_id = response.json()["container_id"]

        listed = agent.get("/containers", params={"label": "stackengine.stack=shop"}).json()
        assert [c["name"] for c in listed] == ["shop_web"]

        assert agent.post(f"/containers/{container_id}/stop").status_code == 200
        assert runtime.stopped == ["shop_web"]

        assert agent.delete("/containers/shop_web").json()["removed"] is True
        assert agent.delete("/containers/shop_web").json()["removed"] is False

    def test_create_conflict_is_server_error(self, agent, runtime):
        runtime.create_failures.add("shop_web")

        response = agent.post("/containers", json={"image": "nginx", "name": "shop_web"})

        assert response.status_code == 500
        assert "Conflict" in response.json()["detail"]


class TestRuntimeAgentClient:
    """Test the control-plane client against the agent."""

    def test_pull_failure_maps_to_image_pull_error(self, agent_client, runtime):
        runtime.pull_failures.add("ghost:1")

        with pytest.raises(ImagePullError):
            agent_client.pull_image("ghost:1")

    def test_image_exists(self, agent_client, runtime):
        runtime.local_images.add("nginx:1.25")

        assert agent_client.image_exists("nginx:1.25")
        assert not agent_client.image_exists("nginx:1.26")

    def test_plan_executes_through_agent(self, agent_client, runtime, catalog, shop_stack_id):
        plan = PlanCompiler().compile(catalog.get(shop_stack_id).stack, {}, "shop")
        engine = ExecutionEngine(agent_client, init_timeout=1.0, init_poll_interval=0.01)

        result = engine.execute(plan, "env-1")

        assert result.success
        assert runtime.started == ["shop_db", "shop_app", "shop_worker"]
        assert runtime.specs["shop_app"].aliases == ["app"]

        stopped = engine.stop_stack("shop")
        assert sorted(stopped.changed) == ["shop_app", "shop_db"]
        assert stopped.ignored == ["shop_worker"]

    def test_unreachable_agent(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("connection refused")

        monkeypatch.setattr(agent_client_module.requests, "request", refuse)

        with pytest.raises(RuntimeClientError, match="Runtime agent unreachable"):
            RuntimeAgentClient("http://10.0.0.9:9000").ensure_network("shop_default")


class TestDockerHelpers:
    """Test compose-style value conversion for the Docker SDK."""

    def test_port_bindings(self):
        assert parse_port_bindings(["8080:80", "127.0.0.1:5353:53/udp", "9000"]) == {
            "80/tcp": 8080,
            "53/udp": ("127.0.0.1", 5353),
            "9000/tcp": None,
        }

    def test_health_check(self):
        config = health_check_config({"test": "curl -f http://localhost", "interval": "30s", "retries": 3})

        assert config == {
            "test": ["CMD-SHELL", "curl -f http://localhost"],
            "interval": 30_000_000_000,
            "retries": 3,
        }
        assert health_check_config({"interval": "5s"}) is None

    def test_duration_to_ns(self):
        assert duration_to_ns("500ms") == 500_000_000
        assert duration_to_ns("1m") == 60_000_000_000
        assert duration_to_ns("1.5s") == 1_500_000_000
        assert duration_to_ns(2) == 2_000_000_000
        assert duration_to_ns(None) is None
        with pytest.raises(ValueError):
            duration_to_ns("soon")

    def test_durations_match_observer_settings(self):
        for raw in ("30s", "1m", "1h", "500ms", "15", "2M"):
            assert duration_to_ns(raw) == round(parse_duration(raw, 1.0) * 1_000_000_000)


class TestDockerRuntimeClient:
    """Test the Docker adapter against a mocked SDK client."""

    @pytest.fixture
    def sdk(self):
        return MagicMock()

    @pytest.fixture
    def docker_runtime(self, sdk):
        return DockerRuntimeClient(client=sdk)

    def test_pull_splits_tag(self, docker_runtime, sdk):
        docker_runtime.pull_image("registry:5000/team/app:1.2")

        sdk.images.pull.assert_called_once_with("registry:5000/team/app", tag="1.2")

    def test_pull_error(self, docker_runtime, sdk):
        sdk.images.pull.side_effect = APIError("manifest unknown")

        with pytest.raises(ImagePullError):
            docker_runtime.pull_image("ghost:1")

    def test_image_exists(self, docker_runtime, sdk):
        sdk.images.get.side_effect = ImageNotFound("missing")

        assert not docker_runtime.image_exists("ghost:1")

    def test_remove_missing_container(self, docker_runtime, sdk):
        sdk.containers.get.side_effect = NotFound("missing")

        assert docker_runtime.remove_container("shop_web") is False

    def test_ensure_network_is_idempotent(self, docker_runtime, sdk):
        sdk.networks.list.return_value = [MagicMock()]

        docker_runtime.ensure_network("shop_default")

        sdk.networks.create.assert_not_called()

    def test_create_attaches_aliases_on_every_network(self, docker_runtime, sdk):
        container = sdk.containers.create.return_value
        container.id = "abc123def456"
        spec = ContainerSpec(
            image="shop/app:1",
            name="shop_app",
            ports=["8080:80"],
            networks=["shop_backend", "shop_frontend"],
            aliases=["app"],
        )

        assert docker_runtime.create_and_start(spec) == "abc123def456"

        kwargs = sdk.containers.create.call_args.kwargs
        assert kwargs["network"] == "shop_backend"
        assert kwargs["ports"] == {"80/tcp": 8080}
        network = sdk.networks.get.return_value
        assert network.connect.call_count == 2
        network.connect.assert_called_with(container, aliases=["app"])
        container.start.assert_called_once()

    def test_invalid_container_settings_are_runtime_errors(self, docker_runtime, sdk):
        spec = ContainerSpec(image="shop/app:1", name="shop_app", ports=["http:80"])

        with pytest.raises(RuntimeClientError, match="Invalid container settings for shop_app"):
            docker_runtime.create_and_start(spec)

        bad_health = ContainerSpec(image="shop/app:1", name="shop_app", health_check={"test": "true", "interval": "soon"})
        with pytest.raises(RuntimeClientError):
            docker_runtime.create_and_start(bad_health)
        sdk.containers.create.assert_not_called()
