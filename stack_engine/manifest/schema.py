# stack_engine/manifest/schema.py
"""Manifest document schema (parsed structure, before include resolution)."""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stack_engine.core.errors import ManifestParseError
from stack_engine.manifest.variables import VariableDefinition, to_text


class ManifestModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


def _none_to_dict(v):
    return {} if v is None else v


def _none_to_list(v):
    return [] if v is None else v


def _text_map(v) -> Dict[str, str]:
    """Map or ``KEY=VALUE`` list -> dict of strings."""
    if v is None:
        return {}
    if isinstance(v, list):
        result = {}
        for item in v:
            key, _, value = str(item).partition("=")
            result[key.strip()] = value
        return result
    if isinstance(v, dict):
        return {str(k): (to_text(value) or "") for k, value in v.items()}
    raise ValueError("expected a mapping or a list of KEY=VALUE entries")


class ServiceLifecycle(Enum):
    SERVICE = "service"
    INIT = "init"


class ManifestMetadata(ManifestModel):
    name: Optional[str] = None
    description: Optional[str] = None
    product_version: Optional[str] = Field(default=None, alias="productVersion")
    author: Optional[str] = None
    documentation: Optional[str] = None
    icon: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v):
        return [to_text(t) for t in _none_to_list(v)]


class HealthCheckDefinition(ManifestModel):
    test: Optional[Union[str, List[str]]] = None
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None
    start_period: Optional[str] = Field(default=None, alias="startPeriod")


class ServiceDefinition(ManifestModel):
    image: Optional[str] = None
    container_name: Optional[str] = Field(default=None, alias="containerName")
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    networks: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    restart: Optional[str] = None
    command: Optional[Union[str, List[str]]] = None
    entrypoint: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = Field(default=None, alias="workingDir")
    user: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    health_check: Optional[HealthCheckDefinition] = Field(default=None, alias="healthCheck")
    lifecycle: ServiceLifecycle = ServiceLifecycle.SERVICE

    @field_validator("environment", "labels", mode="before")
    @classmethod
    def _maps(cls, v):
        return _text_map(v)

    @field_validator("ports", "volumes", "networks", "depends_on", mode="before")
    @classmethod
    def _lists(cls, v):
        return [to_text(item) for item in _none_to_list(v)]

    @field_validator("lifecycle", mode="before")
    @classmethod
    def _lifecycle(cls, v):
        if v is None:
            return ServiceLifecycle.SERVICE
        return ServiceLifecycle(str(v).strip().lower())

    @property
    def is_init(self) -> bool:
        return self.lifecycle == ServiceLifecycle.INIT


class ResourceDefinition(ManifestModel):
    """Volume or network declaration."""

    driver: Optional[str] = None
    external: bool = False
    driver_opts: Dict[str, str] = Field(default_factory=dict, alias="driverOpts")

    @field_validator("driver_opts", mode="before")
    @classmethod
    def _opts(cls, v):
        return _text_map(v)


class StackBody(ManifestModel):
    """Shared shape of inline stacks and single-stack manifests."""

    variables: Dict[str, VariableDefinition] = Field(default_factory=dict)
    services: Dict[str, ServiceDefinition] = Field(default_factory=dict)
    volumes: Dict[str, ResourceDefinition] = Field(default_factory=dict)
    networks: Dict[str, ResourceDefinition] = Field(default_factory=dict)

    @field_validator("variables", "services", "volumes", "networks", mode="before")
    @classmethod
    def _entries(cls, v):
        return {k: _none_to_dict(item) for k, item in _none_to_dict(v).items()}


class StackEntry(StackBody):
    include: Optional[str] = None
    metadata: Optional[ManifestMetadata] = None


class MaintenanceObserverDefinition(ManifestModel):
    type: str
    polling_interval: str = Field(default="30s", alias="pollingInterval")
    timeout: Optional[str] = None
    maintenance_value: str = Field(alias="maintenanceValue")
    normal_value: Optional[str] = Field(default=None, alias="normalValue")
    enabled: bool = True

    # SQL
    connection_string: Optional[str] = Field(default=None, alias="connectionString")
    connection_name: Optional[str] = Field(default=None, alias="connectionName")
    property_name: Optional[str] = Field(default=None, alias="propertyName")
    query: Optional[str] = None

    # HTTP
    url: Optional[str] = None
    method: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    json_path: Optional[str] = Field(default=None, alias="jsonPath")

    # File
    path: Optional[str] = None
    mode: Optional[str] = None
    content_pattern: Optional[str] = Field(default=None, alias="contentPattern")

    @field_validator("maintenance_value", "normal_value", mode="before")
    @classmethod
    def _values(cls, v):
        return to_text(v)

    @field_validator("headers", mode="before")
    @classmethod
    def _headers(cls, v):
        return _text_map(v)


class Manifest(StackBody):
    version: Optional[str] = None
    metadata: Optional[ManifestMetadata] = None
    shared_variables: Dict[str, VariableDefinition] = Field(default_factory=dict, alias="sharedVariables")
    stacks: Dict[str, StackEntry] = Field(default_factory=dict)
    maintenance_observer: Optional[MaintenanceObserverDefinition] = Field(
        default=None, alias="maintenanceObserver"
    )

    @field_validator("shared_variables", "stacks", mode="before")
    @classmethod
    def _top_entries(cls, v):
        return {k: _none_to_dict(item) for k, item in _none_to_dict(v).items()}

    @property
    def name(self) -> Optional[str]:
        return self.metadata.name if self.metadata else None

    @property
    def product_version(self) -> Optional[str]:
        return self.metadata.product_version if self.metadata else None

    @property
    def is_product(self) -> bool:
        return bool(self.product_version)

    @property
    def is_multi_stack(self) -> bool:
        return bool(self.stacks)

    @property
    def is_single_stack(self) -> bool:
        return not self.stacks and bool(self.services)


# ============================================
# Parsing
# ============================================

def detect_format(data: Dict[str, Any]) -> str:
    """'multi-stack' or 'single-stack'; anything else is not a stack manifest."""
    if data.get("stacks"):
        return "multi-stack"
    if "services" in data:
        version = str(data.get("version") or "")
        if "metadata" in data or "variables" in data or version.lower().startswith("rsgo"):
            return "single-stack"
    if "services" not in data and "stacks" not in data:
        raise ManifestParseError("Manifest must have either 'services' or 'stacks'")
    raise ManifestParseError("Unrecognized manifest format (expected 'metadata' + 'services' or 'stacks')")


def load_document(raw_document: str) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(raw_document)
    except yaml.YAMLError as e:
        raise ManifestParseError(f"Invalid manifest document: {e}") from e

    if not isinstance(data, dict):
        raise ManifestParseError("Manifest root must be a mapping")
    return data


def parse_manifest(raw_document: str) -> Manifest:
    """Parse YAML/JSON text into a Manifest. Structure errors -> ManifestParseError."""
    data = load_document(raw_document)
    detect_format(data)

    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            location = ".".join(str(p) for p in err["loc"])
            problems.append(f"{location}: {err['msg']}")
        raise ManifestParseError("Invalid manifest structure: " + "; ".join(problems)) from e

    if manifest.is_multi_stack and manifest.services:
        raise ManifestParseError("Manifest cannot declare both 'stacks' and top-level 'services'")

    return manifest
