# stack_engine/manifest/validation.py

import re
from typing import List, Mapping

from stack_engine.manifest.schema import ServiceDefinition
from stack_engine.manifest.variables import VariableDefinition, VariableType


def validate_variable_definitions(
    variables: Mapping[str, VariableDefinition],
    prefix: str = "",
) -> List[str]:
    """Constraint errors in variable declarations."""
    errors = []

    for name, definition in variables.items():
        where = f"{prefix}Variable '{name}'"

        if definition.type == VariableType.SELECT and not definition.options:
            errors.append(f"{where}: Select type requires at least one option")

        if (
            definition.type.is_numeric
            and definition.min is not None
            and definition.max is not None
            and definition.min > definition.max
        ):
            errors.append(
                f"{where}: min ({definition.min:g}) cannot be greater than max ({definition.max:g})"
            )

        if definition.pattern:
            try:
                re.compile(definition.pattern)
            except re.error as e:
                errors.append(f"{where}: invalid regex pattern '{definition.pattern}': {e}")

    return errors


def validate_services(
    services: Mapping[str, ServiceDefinition],
    prefix: str = "",
) -> List[str]:
    """Missing images and dangling dependsOn edges."""
    errors = []

    for name, service in services.items():
        if not service.image:
            errors.append(f"{prefix}Service '{name}': image is required")

        for dependency in service.depends_on:
            if dependency not in services:
                errors.append(
                    f"{prefix}Service '{name}' depends on non-existent service '{dependency}'"
                )

    return errors
