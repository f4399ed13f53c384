# runtime_agent/client.py
"""RuntimeClient that talks to a remote Runtime Agent over HTTP."""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import requests

from stack_engine.core.errors import ImagePullError, RuntimeClientError
from stack_engine.executor.runtime_client import ContainerInfo, ContainerSpec, RuntimeClient

logger = logging.getLogger(__name__)


class RuntimeAgentClient(RuntimeClient):
    """Client for communicating with Runtime Agent."""

    def __init__(self, agent_url: str, timeout: int = 30):
        """
        Initialize client.

        Args:
            agent_url: Base URL of runtime agent (e.g., "http://10.0.1.10:9000")
            timeout: Request timeout in seconds (image pulls and init waits use longer ones)
        """
        self.base_url = agent_url.rstrip('/')
        self.timeout = timeout

    def health_check(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.error(f"Health check failed: {e}")
            return False

    # -------------------------
    # RuntimeClient
    # -------------------------

    def pull_image(self, image: str) -> None:
        response = self._request("POST", "/images/pull", json={"image": image}, timeout=600)
        if response.status_code != 200:
            raise ImagePullError(self._detail(response))

    def image_exists(self, image: str) -> bool:
        return bool(self._call("GET", "/images/exists", params={"image": image})["exists"])

    def ensure_network(self, name: str) -> None:
        self._call("POST", "/networks", json={"name": name})

    def remove_container(self, name_or_id: str, force: bool = True) -> bool:
        data = self._call("DELETE", f"/containers/{name_or_id}", params={"force": str(force).lower()})
        return bool(data["removed"])

    def create_and_start(self, spec: ContainerSpec) -> str:
        data = self._call("POST", "/containers", json=asdict(spec))
        logger.info(f"✅ Container deployed: {data['container_id'][:12]}")
        return data["container_id"]

    def wait_for_exit(self, container_id: str, timeout: float, poll_interval: float) -> Optional[int]:
        data = self._call(
            "POST",
            f"/containers/{container_id}/wait",
            json={"timeout": timeout, "poll_interval": poll_interval},
            timeout=timeout + self.timeout,
        )
        return data["exit_code"]

    def get_logs(self, container_id: str, tail: int = 50) -> str:
        return self._call("GET", f"/containers/{container_id}/logs", params={"tail": tail})["logs"]

    def list_containers(self, labels: Dict[str, str]) -> List[ContainerInfo]:
        params = [("label", f"{k}={v}") for k, v in labels.items()]
        return [
            ContainerInfo(
                container_id=item["container_id"],
                name=item["name"],
                status=item["status"],
                labels=item.get("labels") or {},
            )
            for item in self._call("GET", "/containers", params=params)
        ]

    def stop_container(self, container_id: str) -> None:
        self._call("POST", f"/containers/{container_id}/stop")

    def start_container(self, container_id: str) -> None:
        self._call("POST", f"/containers/{container_id}/start")

    # -------------------------
    # HTTP helpers
    # -------------------------

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> requests.Response:
        try:
            return requests.request(
                method,
                f"{self.base_url}{path}",
                timeout=timeout or self.timeout,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise RuntimeClientError(f"Runtime agent unreachable at {self.base_url}: {e}") from e

    def _call(self, method: str, path: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        if response.status_code != 200:
            raise RuntimeClientError(self._detail(response))
        return response.json()

    @staticmethod
    def _detail(response: requests.Response) -> str:
        try:
            return str(response.json().get("detail", response.text))
        except ValueError:
            return response.text
