# stack_engine/planner/naming.py
"""Container runtime naming rules: [a-zA-Z0-9][a-zA-Z0-9_.-]*"""

import re

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")
_LEADING_INVALID = re.compile(r"^[^a-zA-Z0-9]+")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def sanitize_name(name: str) -> str:
    if not name or not name.strip():
        return "unnamed"

    sanitized = _INVALID_CHARS.sub("_", name.replace(" ", "_"))
    sanitized = _LEADING_INVALID.sub("", sanitized)
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized)
    sanitized = sanitized.rstrip("_")

    return sanitized or "unnamed"


def scoped_name(stack_name: str, name: str) -> str:
    """``{stack}_{name}`` for containers, networks and named volumes."""
    return f"{sanitize_name(stack_name)}_{sanitize_name(name)}"


def is_bind_mount(source: str) -> bool:
    """Filesystem paths are bind mounts; bare names are named volumes."""
    return (
        source.startswith(("/", ".", "~"))
        or "/" in source
        or "\\" in source
    )


def split_image_reference(image: str):
    """'registry:5000/app:1.2' -> ('registry:5000/app', '1.2'); a ':' followed by '/' is a registry port."""
    colon = image.rfind(":")
    if colon > 0 and "/" not in image[colon:]:
        return image[:colon], image[colon + 1:]
    return image, "latest"


def image_version(image: str) -> str:
    return split_image_reference(image)[1]
