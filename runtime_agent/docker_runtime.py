# runtime_agent/docker_runtime.py
"""RuntimeClient backed by the local Docker daemon (docker SDK)."""

import logging
import time
from typing import Any, Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from stack_engine.core.durations import duration_seconds
from stack_engine.core.errors import ImagePullError, RuntimeClientError
from stack_engine.executor.runtime_client import ContainerInfo, ContainerSpec, RuntimeClient
from stack_engine.planner.naming import split_image_reference

logger = logging.getLogger(__name__)


def duration_to_ns(value: Optional[str]) -> Optional[int]:
    """'30s' / '1m' / '500ms' -> nanoseconds (docker healthcheck units)."""
    if value is None:
        return None
    return round(duration_seconds(value) * 1_000_000_000)


def parse_port_bindings(ports: List[str]) -> Dict[str, Any]:
    """
    Compose-style port strings -> docker SDK ``ports`` mapping.

    "8080:80" -> {"80/tcp": 8080}
    "127.0.0.1:8080:80/udp" -> {"80/udp": ("127.0.0.1", 8080)}
    "80" -> {"80/tcp": None}
    """
    bindings: Dict[str, Any] = {}
    for entry in ports:
        spec, _, protocol = entry.partition("/")
        protocol = protocol or "tcp"
        parts = spec.split(":")

        container_port = f"{parts[-1]}/{protocol}"
        if len(parts) == 1:
            bindings[container_port] = None
        elif len(parts) == 2:
            bindings[container_port] = int(parts[0]) if parts[0] else None
        else:
            host_ip = ":".join(parts[:-2])
            bindings[container_port] = (host_ip, int(parts[-2]))
    return bindings


def health_check_config(health_check: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not health_check or not health_check.get("test"):
        return None

    test = health_check["test"]
    if isinstance(test, str):
        test = ["CMD-SHELL", test]

    config: Dict[str, Any] = {"test": test}
    for key, target in (("interval", "interval"), ("timeout", "timeout"), ("start_period", "start_period")):
        if health_check.get(key):
            config[target] = duration_to_ns(health_check[key])
    if health_check.get("retries") is not None:
        config["retries"] = int(health_check["retries"])
    return config


class DockerRuntimeClient(RuntimeClient):
    """Talks to the Docker daemon through ``docker.from_env()``."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
                logger.info("✅ Connected to Docker daemon")
            except DockerException as e:
                raise RuntimeClientError(f"Docker not available: {e}") from e
        return self._client

    # -------------------------
    # IMAGES
    # -------------------------

    def pull_image(self, image: str) -> None:
        repository, tag = split_image_reference(image)
        logger.info(f"Pulling image: {repository}:{tag}")
        try:
            self.client.images.pull(repository, tag=tag)
        except DockerException as e:
            raise ImagePullError(str(e)) from e

    def image_exists(self, image: str) -> bool:
        try:
            self.client.images.get(image)
            return True
        except ImageNotFound:
            return False
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

    # -------------------------
    # NETWORKS
    # -------------------------

    def ensure_network(self, name: str) -> None:
        try:
            if self.client.networks.list(names=[name]):
                return
            self.client.networks.create(name, driver="bridge")
            logger.info(f"Created network {name}")
        except DockerException as e:
            raise RuntimeClientError(f"Network '{name}': {e}") from e

    # -------------------------
    # CONTAINERS
    # -------------------------

    def remove_container(self, name_or_id: str, force: bool = True) -> bool:
        try:
            container = self.client.containers.get(name_or_id)
        except NotFound:
            return False
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

        try:
            container.remove(force=force)
            return True
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

    def create_and_start(self, spec: ContainerSpec) -> str:
        config: Dict[str, Any] = {
            "image": spec.image,
            "name": spec.name,
            "detach": True,
            "labels": dict(spec.labels),
            "restart_policy": {"Name": spec.restart_policy},
        }
        if spec.environment:
            config["environment"] = spec.environment
        if spec.volumes:
            config["volumes"] = list(spec.volumes)
        if spec.command is not None:
            config["command"] = spec.command
        if spec.entrypoint is not None:
            config["entrypoint"] = spec.entrypoint
        if spec.working_dir:
            config["working_dir"] = spec.working_dir
        if spec.user:
            config["user"] = spec.user
        if spec.networks:
            config["network"] = spec.networks[0]

        try:
            if spec.ports:
                config["ports"] = parse_port_bindings(spec.ports)
            healthcheck = health_check_config(spec.health_check)
        except (ValueError, TypeError) as e:
            raise RuntimeClientError(f"Invalid container settings for {spec.name}: {e}") from e
        if healthcheck:
            config["healthcheck"] = healthcheck

        try:
            container = self.client.containers.create(**config)

            # Re-attach with service aliases so siblings resolve each other by service name.
            for index, network_name in enumerate(spec.networks):
                network = self.client.networks.get(network_name)
                if index == 0:
                    network.disconnect(container)
                network.connect(container, aliases=spec.aliases)

            container.start()
            logger.info(f"✅ Container started: {spec.name} ({container.id[:12]})")
            return container.id
        except APIError as e:
            raise RuntimeClientError(f"Docker API error: {e}") from e
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

    def wait_for_exit(self, container_id: str, timeout: float, poll_interval: float) -> Optional[int]:
        deadline = time.monotonic() + timeout
        try:
            container = self.client.containers.get(container_id)
            while True:
                container.reload()
                if container.status in ("exited", "dead"):
                    return container.attrs.get("State", {}).get("ExitCode", 1)
                if time.monotonic() >= deadline:
                    return None
                time.sleep(poll_interval)
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

    def get_logs(self, container_id: str, tail: int = 50) -> str:
        try:
            raw = self.client.containers.get(container_id).logs(tail=tail)
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e
        return raw.decode("utf-8", errors="replace").strip()

    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        filters = {"label": [f"{k}={v}" for k, v in labels.items()]}
        try:
            containers = self.client.containers.list(all=True, filters=filters)
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e
        return [
            ContainerInfo(
                container_id=c.id,
                name=c.name,
                status=c.status,
                labels=dict(c.labels or {}),
            )
            for c in containers
        ]

    def stop_container(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).stop(timeout=10)
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e

    def start_container(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).start()
        except DockerException as e:
            raise RuntimeClientError(str(e)) from e
