# stack_engine/observers/models.py
"""Maintenance observer configuration and check results."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from stack_engine.core.durations import duration_seconds
from stack_engine.core.errors import ObserverConfigError
from stack_engine.manifest.schema import MaintenanceObserverDefinition
from stack_engine.manifest.variables import PLACEHOLDER_PATTERN

DEFAULT_POLLING_INTERVAL = 30.0
DEFAULT_TIMEOUT = 10.0


class ObserverType(Enum):
    SQL_EXTENDED_PROPERTY = "sqlExtendedProperty"
    SQL_QUERY = "sqlQuery"
    HTTP = "http"
    FILE = "file"

    @classmethod
    def parse(cls, value: str) -> "ObserverType":
        key = (value or "").strip().lower()
        for t in cls:
            if t.value.lower() == key:
                return t
        raise ObserverConfigError(f"Unknown observer type: {value}")


def parse_duration(value: Optional[str], default: float) -> float:
    """'30s', '1m', '1h', '500ms' or bare seconds -> seconds."""
    if value is None or str(value).strip() == "":
        return default
    try:
        seconds = duration_seconds(value)
    except ValueError as e:
        raise ObserverConfigError(str(e)) from e
    if seconds <= 0:
        raise ObserverConfigError(f"Duration must be positive: {value}")
    return seconds


def substitute_connection_string(template: str, variables: Mapping[str, str]) -> str:
    """Like placeholder resolution, but an unresolvable reference is an error."""
    missing = []

    def _replace(match):
        value = variables.get(match.group(1))
        if value:
            return value
        if match.group(2) is not None:
            return match.group(2)
        missing.append(match.group(1))
        return match.group(0)

    resolved = PLACEHOLDER_PATTERN.sub(_replace, template)
    if missing:
        raise ObserverConfigError(
            f"Connection string references unresolved variable(s): {', '.join(missing)}"
        )
    return resolved


@dataclass
class ObserverConfig:
    """Observer settings with durations parsed and the connection reference resolved."""

    type: ObserverType
    maintenance_value: str
    normal_value: Optional[str] = None
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    enabled: bool = True

    # SQL
    connection_string: Optional[str] = None
    property_name: Optional[str] = None
    query: Optional[str] = None

    # HTTP
    url: Optional[str] = None
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    json_path: Optional[str] = None

    # File
    path: Optional[str] = None
    mode: str = "exists"
    content_pattern: Optional[str] = None

    @classmethod
    def from_manifest(
        cls,
        raw: Mapping[str, Any],
        variables: Optional[Mapping[str, str]] = None,
    ) -> "ObserverConfig":
        """
        Build from the manifest's ``maintenanceObserver`` block.

        Raises:
            ObserverConfigError: unknown type, missing type-specific settings,
                bad durations or an unresolvable connection reference
        """
        try:
            definition = MaintenanceObserverDefinition.model_validate(dict(raw))
        except ValidationError as e:
            raise ObserverConfigError(f"Invalid maintenance observer: {e}") from e

        variables = variables or {}
        observer_type = ObserverType.parse(definition.type)

        if not definition.maintenance_value or not definition.maintenance_value.strip():
            raise ObserverConfigError("maintenanceValue cannot be empty")

        config = cls(
            type=observer_type,
            maintenance_value=definition.maintenance_value,
            normal_value=definition.normal_value or None,
            polling_interval=parse_duration(definition.polling_interval, DEFAULT_POLLING_INTERVAL),
            timeout=parse_duration(definition.timeout, DEFAULT_TIMEOUT),
            enabled=definition.enabled,
            property_name=definition.property_name,
            query=definition.query,
            url=definition.url,
            method=(definition.method or "GET").upper(),
            headers=dict(definition.headers),
            json_path=definition.json_path,
            path=definition.path,
            mode=(definition.mode or "exists").lower(),
            content_pattern=definition.content_pattern,
        )

        if observer_type in (ObserverType.SQL_EXTENDED_PROPERTY, ObserverType.SQL_QUERY):
            config.connection_string = cls._connection(definition, variables)
            if observer_type == ObserverType.SQL_EXTENDED_PROPERTY and not config.property_name:
                raise ObserverConfigError("sqlExtendedProperty observer requires propertyName")
            if observer_type == ObserverType.SQL_QUERY and not config.query:
                raise ObserverConfigError("sqlQuery observer requires query")

        elif observer_type == ObserverType.HTTP:
            if not config.url:
                raise ObserverConfigError("http observer requires url")
            config.url = substitute_connection_string(config.url, variables)

        elif observer_type == ObserverType.FILE:
            if not config.path:
                raise ObserverConfigError("file observer requires path")
            if config.mode not in ("exists", "content"):
                raise ObserverConfigError(f"Invalid file observer mode: {config.mode}")
            if config.content_pattern:
                try:
                    re.compile(config.content_pattern)
                except re.error as e:
                    raise ObserverConfigError(f"Invalid contentPattern: {e}") from e

        return config

    @staticmethod
    def _connection(definition: MaintenanceObserverDefinition, variables: Mapping[str, str]) -> str:
        if definition.connection_string:
            return substitute_connection_string(definition.connection_string, variables)
        if definition.connection_name:
            value = variables.get(definition.connection_name)
            if not value:
                raise ObserverConfigError(
                    f"Connection variable '{definition.connection_name}' is not set"
                )
            return value
        raise ObserverConfigError("SQL observer requires connectionString or connectionName")


@dataclass
class ObserverResult:
    observed_value: Optional[str]
    maintenance_required: bool
    success: bool
    error_message: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @staticmethod
    def maintenance(observed_value: str) -> "ObserverResult":
        return ObserverResult(observed_value, maintenance_required=True, success=True)

    @staticmethod
    def normal(observed_value: str) -> "ObserverResult":
        return ObserverResult(observed_value, maintenance_required=False, success=True)

    @staticmethod
    def failed(error_message: str) -> "ObserverResult":
        return ObserverResult(None, maintenance_required=False, success=False, error_message=error_message)

    def __str__(self) -> str:
        if not self.success:
            return f"Failed: {self.error_message}"
        if self.maintenance_required:
            return f"Maintenance required (value: {self.observed_value})"
        return f"Normal operation (value: {self.observed_value})"
