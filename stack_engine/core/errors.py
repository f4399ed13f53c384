# stack_engine/core/errors.py

from typing import Iterable, List

# -----------------------------
# Base Errors
# -----------------------------

class StackEngineError(Exception):
    """Base class for all stack engine errors."""
    pass


# -----------------------------
# Manifest Errors
# -----------------------------

class ManifestParseError(StackEngineError):
    """Malformed manifest structure."""
    pass


class IncludeCycleError(ManifestParseError):
    """A manifest includes itself, directly or through other fragments."""

    def __init__(self, chain: Iterable[str]):
        self.chain = list(chain)
        super().__init__(f"Include cycle detected: {' -> '.join(self.chain)}")


class IncludeNotFoundError(StackEngineError):
    """A stack entry references a fragment file that does not exist."""

    def __init__(self, stack_key: str, path: str):
        self.stack_key = stack_key
        self.path = path
        super().__init__(f"Stack '{stack_key}': include file not found: {path}")


class ManifestValidationError(StackEngineError):
    """One or more constraint violations, reported together."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class CircularDependencyError(StackEngineError):
    """Service dependency graph contains a cycle."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Circular dependency detected involving service '{service}'")


class FragmentNotDeployableError(StackEngineError):
    """Fragments have no product version and can only be used via include."""
    pass


class StackNotFoundError(StackEngineError):
    pass


# -----------------------------
# Runtime Errors
# -----------------------------

class RuntimeClientError(StackEngineError):
    """Container runtime call failed."""
    pass


class ImagePullError(RuntimeClientError):
    pass


class StepFailedError(StackEngineError):
    """A single plan step could not be applied."""

    def __init__(self, context: str, message: str):
        self.context = context
        super().__init__(message)


# -----------------------------
# Operation Mode Errors
# -----------------------------

class IllegalTransitionError(StackEngineError):
    """Requested operation mode change is not in the transition table."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot change operation mode from {current.value} to {target.value}"
        )


class InvalidDeploymentStateError(StackEngineError):
    """Deployment status does not allow the requested operation."""
    pass


# -----------------------------
# Observer Errors
# -----------------------------

class ObserverIOError(StackEngineError):
    """Transient failure while reading the observed system."""
    pass


class ObserverConfigError(StackEngineError):
    """Observer configuration is incomplete or invalid."""
    pass


# -----------------------------
# Persistence Errors
# -----------------------------

class DeploymentPersistenceError(StackEngineError):
    pass


class DeploymentAlreadyExists(DeploymentPersistenceError):
    pass


class DeploymentNotFound(DeploymentPersistenceError):
    pass


class DeploymentConcurrencyError(DeploymentPersistenceError):
    """The stored row changed since the deployment was loaded."""
    pass
