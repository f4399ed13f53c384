# runtime_agent/server.py
"""
Runtime Agent - runs next to the container runtime.

Exposes the RuntimeClient capabilities over HTTP so the control plane can
drive a remote Docker daemon.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from stack_engine.core.errors import ImagePullError, RuntimeClientError
from stack_engine.executor.runtime_client import ContainerSpec, RuntimeClient
from runtime_agent.docker_runtime import DockerRuntimeClient

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Runtime Agent",
    description="Container runtime agent for the stack engine",
    version="1.0.0"
)

_runtime: Optional[RuntimeClient] = None


def get_runtime() -> RuntimeClient:
    global _runtime
    if _runtime is None:
        _runtime = DockerRuntimeClient()
    return _runtime


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class ImageRequest(BaseModel):
    image: str = Field(..., description="Image reference (e.g., 'nginx:alpine')")


class NetworkRequest(BaseModel):
    name: str


class ContainerSpecModel(BaseModel):
    """Container specification."""
    image: str
    name: str
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[str] = Field(default_factory=list, description="Port mappings ['8080:80']")
    volumes: List[str] = Field(default_factory=list, description="Volume mounts ['data:/var/lib/data']")
    networks: List[str] = Field(default_factory=list)
    aliases: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    restart_policy: str = "unless-stopped"
    command: Optional[Union[str, List[str]]] = None
    entrypoint: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = None
    user: Optional[str] = None
    health_check: Optional[Dict[str, Any]] = None


class WaitRequest(BaseModel):
    timeout: float = 300.0
    poll_interval: float = 0.5


class ContainerInfoResponse(BaseModel):
    container_id: str
    name: str
    status: str
    labels: Dict[str, str]


def _fail(e: RuntimeClientError, status_code: int = 500):
    logger.error(f"Runtime error: {e}")
    raise HTTPException(status_code=status_code, detail=str(e))


# ============================================
# ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.post("/images/pull")
def pull_image(request: ImageRequest, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        runtime.pull_image(request.image)
    except ImagePullError as e:
        _fail(e, status_code=502)
    except RuntimeClientError as e:
        _fail(e)
    return {"status": "pulled", "image": request.image}


@app.get("/images/exists")
def image_exists(image: str, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        return {"image": image, "exists": runtime.image_exists(image)}
    except RuntimeClientError as e:
        _fail(e)


@app.post("/networks")
def ensure_network(request: NetworkRequest, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        runtime.ensure_network(request.name)
    except RuntimeClientError as e:
        _fail(e)
    return {"status": "ready", "name": request.name}


@app.post("/containers")
def create_container(spec: ContainerSpecModel, runtime: RuntimeClient = Depends(get_runtime)):
    logger.info(f"Starting container: {spec.name} ({spec.image})")
    try:
        container_id = runtime.create_and_start(ContainerSpec(**spec.model_dump()))
    except RuntimeClientError as e:
        _fail(e)
    return {"container_id": container_id, "container_name": spec.name}


@app.get("/containers", response_model=List[ContainerInfoResponse])
def list_containers(
    label: List[str] = Query(default=[]),
    runtime: RuntimeClient = Depends(get_runtime),
):
    labels = dict(item.split("=", 1) for item in label if "=" in item)
    try:
        containers = runtime.list_containers(labels)
    except RuntimeClientError as e:
        _fail(e)
    return [
        ContainerInfoResponse(
            container_id=c.container_id,
            name=c.name,
            status=c.status,
            labels=c.labels,
        )
        for c in containers
    ]


@app.delete("/containers/{name_or_id}")
def remove_container(name_or_id: str, force: bool = True, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        removed = runtime.remove_container(name_or_id, force=force)
    except RuntimeClientError as e:
        _fail(e)
    return {"removed": removed, "container": name_or_id}


@app.post("/containers/{container_id}/wait")
def wait_for_exit(container_id: str, request: WaitRequest, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        exit_code = runtime.wait_for_exit(container_id, request.timeout, request.poll_interval)
    except RuntimeClientError as e:
        _fail(e)
    return {"container_id": container_id, "exit_code": exit_code}


@app.get("/containers/{container_id}/logs")
def get_logs(container_id: str, tail: int = 50, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        return {"container_id": container_id, "logs": runtime.get_logs(container_id, tail=tail)}
    except RuntimeClientError as e:
        _fail(e)


@app.post("/containers/{container_id}/stop")
def stop_container(container_id: str, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        runtime.stop_container(container_id)
    except RuntimeClientError as e:
        _fail(e)
    return {"status": "stopped", "container_id": container_id}


@app.post("/containers/{container_id}/start")
def start_container(container_id: str, runtime: RuntimeClient = Depends(get_runtime)):
    try:
        runtime.start_container(container_id)
    except RuntimeClientError as e:
        _fail(e)
    return {"status": "started", "container_id": container_id}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("🚀 Starting Runtime Agent...")
    logger.info("📍 Listening on 0.0.0.0:9000")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=9000,
        log_level="info"
    )
