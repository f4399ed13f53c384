# stack_engine/observers/file.py

import re
from pathlib import Path

from stack_engine.core.errors import ObserverIOError
from stack_engine.observers.base import BaseObserver
from stack_engine.observers.models import ObserverType


class FileObserver(BaseObserver):
    """
    mode "exists": "true"/"false".
    mode "content": first capture group of contentPattern, else the whole
    match, else the whole trimmed file.
    """

    type = ObserverType.FILE

    def read_value(self) -> str:
        path = Path(self.config.path)

        if self.config.mode == "exists":
            return "true" if path.exists() else "false"

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ObserverIOError(f"Cannot read {path}: {e}") from e

        if not self.config.content_pattern:
            return content.strip()

        match = re.search(self.config.content_pattern, content)
        if not match:
            raise ObserverIOError(f"Pattern '{self.config.content_pattern}' not found in {path}")
        return (match.group(1) if match.groups() else match.group(0)).strip()
