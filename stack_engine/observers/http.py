# stack_engine/observers/http.py

import json
import logging
import re
from typing import Any

import requests

from stack_engine.core.errors import ObserverIOError
from stack_engine.observers.base import BaseObserver
from stack_engine.observers.models import ObserverType

logger = logging.getLogger(__name__)

_INDEXED = re.compile(r"^([^\[\]]*)\[(\d+)\]$")


def extract_json_path(document: Any, json_path: str) -> Any:
    """
    Dotted path lookup: ``status.maintenance``, ``$.items[0].state``.

    Raises:
        ObserverIOError: property missing or index out of bounds
    """
    current = document
    for part in json_path.lstrip("$").lstrip(".").split("."):
        if not part:
            continue

        match = _INDEXED.match(part)
        name, index = (match.group(1), int(match.group(2))) if match else (part, None)

        if name:
            if not isinstance(current, dict) or name not in current:
                raise ObserverIOError(f"Property '{name}' not found in JSON path '{json_path}'")
            current = current[name]

        if index is not None:
            if not isinstance(current, list) or index >= len(current):
                raise ObserverIOError(f"Array index {index} out of bounds")
            current = current[index]

    return current


def json_value_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class HttpObserver(BaseObserver):
    """Calls an endpoint; the body (or a JSON path in it) is the observed value."""

    type = ObserverType.HTTP

    def read_value(self) -> str:
        try:
            response = requests.request(
                self.config.method,
                self.config.url,
                headers=self.config.headers or None,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ObserverIOError(f"HTTP check failed: {e}") from e

        # The body decides, whatever the status code.
        if response.status_code >= 400:
            logger.debug(f"HTTP observer got {response.status_code} from {self.config.url}")

        if not self.config.json_path:
            return response.text.strip()

        try:
            document = response.json()
        except ValueError as e:
            raise ObserverIOError(f"Failed to parse JSON response: {e}") from e

        return json_value_to_text(extract_json_path(document, self.config.json_path))
