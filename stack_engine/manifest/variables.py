# stack_engine/manifest/variables.py
"""
Typed stack variables.

Definitions come from a manifest (shared or stack scoped), values come from
the user. Resolution merges both; validation is a separate explicit step so
that a half-filled form can still be previewed.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
BOOLEAN_VALUES = {"true", "false", "1", "0"}


class VariableType(Enum):
    STRING = "String"
    NUMBER = "Number"
    BOOLEAN = "Boolean"
    SELECT = "Select"
    PASSWORD = "Password"
    PORT = "Port"
    URL = "Url"
    EMAIL = "Email"
    PATH = "Path"
    MULTILINE = "MultiLine"
    CONNECTION_STRING = "ConnectionString"
    SQLSERVER_CONNECTION_STRING = "SqlServerConnectionString"
    POSTGRES_CONNECTION_STRING = "PostgresConnectionString"
    MYSQL_CONNECTION_STRING = "MySqlConnectionString"
    MONGO_CONNECTION_STRING = "MongoConnectionString"
    REDIS_CONNECTION_STRING = "RedisConnectionString"
    EVENTSTORE_CONNECTION_STRING = "EventStoreConnectionString"

    @classmethod
    def parse(cls, value: Any) -> "VariableType":
        if isinstance(value, VariableType):
            return value
        if value is None:
            return cls.STRING
        key = str(value).strip().lower()
        for t in cls:
            if t.value.lower() == key:
                return t
        raise ValueError(f"Unknown variable type: {value}")

    @property
    def is_numeric(self) -> bool:
        return self in (VariableType.NUMBER, VariableType.PORT)

    @property
    def supports_pattern(self) -> bool:
        return self in (VariableType.STRING, VariableType.PASSWORD)


def to_text(value: Any) -> Optional[str]:
    """Scalar YAML value -> string (booleans lower-cased the way YAML writes them)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class SelectOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    value: str
    label: Optional[str] = None
    description: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _value_text(cls, v):
        return to_text(v)


class VariableDefinition(BaseModel):
    """One variable as declared in a manifest."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    label: Optional[str] = None
    description: Optional[str] = None
    type: VariableType = VariableType.STRING
    default: Optional[str] = None
    required: bool = False
    pattern: Optional[str] = None
    pattern_error: Optional[str] = Field(default=None, alias="patternError")
    options: Optional[List[SelectOption]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    placeholder: Optional[str] = None
    group: Optional[str] = None
    order: Optional[int] = None

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, v):
        return VariableType.parse(v)

    @field_validator("default", "placeholder", "label", mode="before")
    @classmethod
    def _scalar_text(cls, v):
        return to_text(v)

    def display_name(self, name: str) -> str:
        return self.label or name


# ============================================
# Definition merging
# ============================================

def merge_variable_layers(
    shared: Mapping[str, VariableDefinition],
    stack: Mapping[str, VariableDefinition],
) -> Dict[str, VariableDefinition]:
    """
    Shared definitions form the base layer. A stack-level entry with the
    same name only overrides ``default``; everything else is inherited.
    Stack-only variables are taken as declared.
    """
    merged: Dict[str, VariableDefinition] = {
        name: definition.model_copy(deep=True) for name, definition in shared.items()
    }
    for name, definition in stack.items():
        if name in merged:
            if definition.default is not None:
                merged[name] = merged[name].model_copy(update={"default": definition.default})
        else:
            merged[name] = definition.model_copy(deep=True)
    return merged


# ============================================
# Value resolution
# ============================================

def resolve_variable_values(
    definitions: Mapping[str, VariableDefinition],
    user_values: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """
    Effective value per variable: user input, then the (already merged)
    default, then empty string. Values supplied for undeclared names are kept.
    """
    user_values = user_values or {}
    resolved: Dict[str, str] = {}

    for name, definition in definitions.items():
        supplied = user_values.get(name)
        if supplied is not None:
            resolved[name] = to_text(supplied)
        elif definition.default is not None:
            resolved[name] = definition.default
        else:
            resolved[name] = ""

    for name, value in user_values.items():
        if name not in resolved and value is not None:
            resolved[name] = to_text(value)

    return resolved


def resolve_placeholders(text: Optional[str], values: Mapping[str, str]) -> Optional[str]:
    """Substitute ``${NAME}`` and ``${NAME:-default}``; unknown names become ""."""
    if not text:
        return text

    def _replace(match):
        value = values.get(match.group(1))
        if value:
            return value
        if match.group(2) is not None:
            return match.group(2)
        return ""

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def has_placeholders(text: Optional[str]) -> bool:
    return bool(text) and "${" in text


# ============================================
# Value validation
# ============================================

def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def validate_value(name: str, definition: VariableDefinition, value: Optional[str]) -> List[str]:
    label = definition.display_name(name)

    if definition.required and (value is None or not value.strip()):
        return [f"{label} is required."]

    if value is None or not value.strip():
        return []

    errors: List[str] = []
    vtype = definition.type

    if vtype.is_numeric:
        try:
            number = float(value)
        except ValueError:
            return [f"{label} must be a valid number."]
        if definition.min is not None and number < definition.min:
            errors.append(f"{label} must be at least {_format_number(definition.min)}.")
        if definition.max is not None and number > definition.max:
            errors.append(f"{label} must be at most {_format_number(definition.max)}.")
        if vtype == VariableType.PORT and not (1 <= number <= 65535):
            errors.append(f"{label} must be a valid port (1-65535).")

    elif vtype == VariableType.BOOLEAN:
        if value.strip().lower() not in BOOLEAN_VALUES:
            errors.append(f"{label} must be true or false.")

    elif vtype == VariableType.SELECT:
        allowed = [o.value for o in definition.options or []]
        if allowed and value not in allowed:
            errors.append(f"{label} must be one of: {', '.join(allowed)}.")

    elif vtype.supports_pattern and definition.pattern:
        try:
            if not re.search(definition.pattern, value):
                errors.append(definition.pattern_error or f"{label} does not match the required pattern.")
        except re.error:
            # Broken patterns are reported when the manifest is validated.
            pass

    elif vtype == VariableType.URL:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"{label} must be a valid http(s) URL.")

    elif vtype == VariableType.EMAIL:
        if not EMAIL_PATTERN.match(value):
            errors.append(f"{label} must be a valid email address.")

    return errors


def validate_variable_values(
    definitions: Mapping[str, VariableDefinition],
    values: Mapping[str, str],
) -> List[str]:
    """All value errors across all variables, in declaration order."""
    errors: List[str] = []
    for name, definition in definitions.items():
        errors.extend(validate_value(name, definition, values.get(name)))
    return errors
