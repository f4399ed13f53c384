# stack_engine/executor/engine.py
"""
Deployment Execution Engine - applies a DeploymentPlan to the container runtime.

Steps run one at a time in plan order. Each step's outcome is collected in
an ExecutionResult instead of being raised, so a late failure never hides
earlier successes. Steps whose dependencies failed are skipped.

The engine is also the only component that starts/stops containers after
deployment (maintenance), so every public operation runs under the
per-stack lock.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from stack_engine.core.errors import RuntimeClientError, StepFailedError
from stack_engine.executor.cancellation import CancellationToken
from stack_engine.executor.locks import DeploymentLocks
from stack_engine.executor.runtime_client import ContainerSpec, RuntimeClient
from stack_engine.planner.models import DeploymentPlan, DeploymentStep
from stack_engine.planner.naming import sanitize_name, split_image_reference

logger = logging.getLogger(__name__)


# ============================================
# Container labels
# ============================================
LABEL_STACK = "stackengine.stack"
LABEL_CONTEXT = "stackengine.context"
LABEL_ENVIRONMENT = "stackengine.environment"
LABEL_LIFECYCLE = "stackengine.lifecycle"
LABEL_MAINTENANCE = "stackengine.maintenance"
MAINTENANCE_IGNORE = "ignore"

CANCELLED_MESSAGE = "Deployment was cancelled"


@dataclass
class ExecutionResult:
    """Accumulated outcome of one deployment attempt."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    deployed_contexts: List[str] = field(default_factory=list)
    deployed_containers: Dict[str, str] = field(default_factory=dict)
    skipped_contexts: List[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled


@dataclass
class StackActionResult:
    """Outcome of apply-stop / apply-start / remove."""
    changed: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class ExecutionEngine:
    """Applies plans and stack-wide start/stop actions through a RuntimeClient."""

    def __init__(
        self,
        runtime: RuntimeClient,
        *,
        locks: Optional[DeploymentLocks] = None,
        init_timeout: float = 300.0,
        init_poll_interval: float = 0.5,
    ):
        self.runtime = runtime
        self.locks = locks or DeploymentLocks()
        self.init_timeout = init_timeout
        self.init_poll_interval = init_poll_interval

    @staticmethod
    def lock_key(stack_name: str) -> str:
        return sanitize_name(stack_name)

    # -------------------------
    # DEPLOY
    # -------------------------

    def execute(
        self,
        plan: DeploymentPlan,
        environment_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Apply every step of ``plan``; never raises for step-level failures."""
        with self.locks.hold(self.lock_key(plan.stack_name)):
            return self._execute(plan, environment_id, cancel_token)

    def _execute(
        self,
        plan: DeploymentPlan,
        environment_id: str,
        cancel_token: Optional[CancellationToken],
    ) -> ExecutionResult:
        result = ExecutionResult()
        stack = plan.stack_name

        logger.info(f"[{stack}] 🚀 Executing plan: {len(plan.steps)} step(s)")

        try:
            self._ensure_networks(plan)
        except RuntimeClientError as e:
            result.errors.append(f"Failed to create networks: {e}")
            logger.error(f"[{stack}] ❌ Network setup failed: {e}")
            return result

        failed: Set[str] = set()

        for step in sorted(plan.steps, key=lambda s: s.order):
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning(f"[{stack}] Cancelled before step '{step.context_name}'")
                result.cancelled = True
                result.errors.append(cancel_token.reason or CANCELLED_MESSAGE)
                break

            blocked = [d for d in step.depends_on if d in failed]
            if blocked:
                message = f"Service '{step.context_name}' skipped: dependency '{blocked[0]}' failed"
                logger.warning(f"[{stack}] {message}")
                result.errors.append(message)
                result.skipped_contexts.append(step.context_name)
                failed.add(step.context_name)
                continue

            try:
                container_id = self._apply_step(plan, step, environment_id, result)
            except StepFailedError as e:
                self._step_failed(result, failed, step, str(e))
                continue
            except RuntimeClientError as e:
                self._step_failed(result, failed, step, f"Service '{step.context_name}': {e}")
                continue

            result.deployed_contexts.append(step.context_name)
            result.deployed_containers[step.context_name] = container_id
            logger.info(f"[{stack}] ✅ {step.context_name} ({step.container_name})")

        if result.success:
            logger.info(f"[{stack}] ✅ Plan applied ({len(result.warnings)} warning(s))")
        else:
            logger.error(f"[{stack}] ❌ Plan finished with {len(result.errors)} error(s)")

        return result

    @staticmethod
    def _step_failed(result: ExecutionResult, failed: Set[str], step: DeploymentStep, message: str) -> None:
        logger.error(f"[{step.container_name}] ❌ {message}")
        result.errors.append(message)
        failed.add(step.context_name)

    def _ensure_networks(self, plan: DeploymentPlan) -> None:
        for network in plan.networks.values():
            if network.external:
                continue
            self.runtime.ensure_network(network.resolved_name)

    def _apply_step(
        self,
        plan: DeploymentPlan,
        step: DeploymentStep,
        environment_id: str,
        result: ExecutionResult,
    ) -> str:
        context = step.context_name

        self._ensure_image(step, result)

        try:
            if self.runtime.remove_container(step.container_name, force=True):
                logger.info(f"[{plan.stack_name}] Removed existing container {step.container_name}")
        except RuntimeClientError as e:
            raise StepFailedError(context, f"Service '{context}': failed to remove existing container: {e}")

        spec = self._container_spec(plan, step, environment_id)

        try:
            container_id = self.runtime.create_and_start(spec)
        except RuntimeClientError as e:
            raise StepFailedError(context, f"Service '{context}': failed to start container: {e}")

        if step.is_init:
            self._wait_for_init(step, container_id)

        return container_id

    def _ensure_image(self, step: DeploymentStep, result: ExecutionResult) -> None:
        """Pull; fall back to an existing local copy of the exact reference."""
        try:
            self.runtime.pull_image(step.image)
            return
        except RuntimeClientError as e:
            pull_error = e

        try:
            local_copy = self.runtime.image_exists(step.image)
        except RuntimeClientError as e:
            raise StepFailedError(
                step.context_name,
                f"Service '{step.context_name}': Failed to pull image '{step.image}' and the local image "
                f"store could not be inspected: {e} ({pull_error})",
            )

        if local_copy:
            warning = (
                f"Image '{step.image}' could not be pulled - using existing local image. "
                f"The deployed version may be outdated."
            )
            logger.warning(f"⚠️ {warning} ({pull_error})")
            result.warnings.append(warning)
            return

        name, tag = split_image_reference(step.image)
        raise StepFailedError(
            step.context_name,
            f"Service '{step.context_name}': Failed to pull image '{name}' (tag: {tag}) - "
            f"no local copy exists. Check the image name and registry credentials. ({pull_error})",
        )

    def _wait_for_init(self, step: DeploymentStep, container_id: str) -> None:
        context = step.context_name
        logger.info(f"Waiting for init container '{context}' to finish")

        try:
            exit_code = self.runtime.wait_for_exit(
                container_id,
                timeout=self.init_timeout,
                poll_interval=self.init_poll_interval,
            )
        except RuntimeClientError as e:
            raise StepFailedError(context, f"Init container '{context}' could not be inspected: {e}")

        if exit_code is None:
            raise StepFailedError(
                context,
                f"Init container '{context}' did not complete within {self.init_timeout:g}s",
            )

        if exit_code != 0:
            try:
                logs = self.runtime.get_logs(container_id)
            except RuntimeClientError:
                logs = ""
            raise StepFailedError(
                context,
                f"Init container '{context}' failed with exit code {exit_code}"
                + (f". Logs:\n{logs}" if logs else ""),
            )

    @staticmethod
    def _container_spec(plan: DeploymentPlan, step: DeploymentStep, environment_id: str) -> ContainerSpec:
        labels = dict(step.labels)
        labels.update({
            LABEL_STACK: plan.stack_name,
            LABEL_CONTEXT: step.context_name,
            LABEL_ENVIRONMENT: environment_id,
            LABEL_LIFECYCLE: step.lifecycle,
        })

        volumes = [
            f"{v.source}:{v.target}" if v.source else v.target
            for v in step.volumes
        ]

        return ContainerSpec(
            image=step.image,
            name=step.container_name,
            environment=dict(step.env_vars),
            ports=list(step.ports),
            volumes=volumes,
            networks=list(step.networks),
            aliases=[step.context_name],
            labels=labels,
            restart_policy="no" if step.is_init else (step.restart or "unless-stopped"),
            command=step.command,
            entrypoint=step.entrypoint,
            working_dir=step.working_dir,
            user=step.user,
            health_check=step.health_check,
        )

    # -------------------------
    # STACK-WIDE ACTIONS
    # -------------------------

    def stop_stack(self, stack_name: str) -> StackActionResult:
        """Stop every running service container except maintenance-ignored ones."""
        key = self.lock_key(stack_name)
        with self.locks.hold(key):
            result = StackActionResult()
            for container in self.runtime.list_containers({LABEL_STACK: key}):
                if self._skip_for_maintenance(container, result):
                    continue
                if not container.running:
                    continue
                try:
                    self.runtime.stop_container(container.container_id)
                    result.changed.append(container.name)
                    logger.info(f"[{key}] Stopped {container.name}")
                except RuntimeClientError as e:
                    result.errors.append(f"Failed to stop {container.name}: {e}")
            return result

    def start_stack(self, stack_name: str, only: Optional[Iterable[str]] = None) -> StackActionResult:
        """
        Start stopped service containers except maintenance-ignored ones.

        ``only`` restricts the start to the named containers (those a
        previous ``stop_stack`` stopped); None starts every stopped one.
        """
        key = self.lock_key(stack_name)
        names = None if only is None else set(only)
        with self.locks.hold(key):
            result = StackActionResult()
            for container in self.runtime.list_containers({LABEL_STACK: key}):
                if self._skip_for_maintenance(container, result):
                    continue
                if container.running:
                    continue
                if names is not None and container.name not in names:
                    continue
                try:
                    self.runtime.start_container(container.container_id)
                    result.changed.append(container.name)
                    logger.info(f"[{key}] Started {container.name}")
                except RuntimeClientError as e:
                    result.errors.append(f"Failed to start {container.name}: {e}")
            return result

    def remove_stack(self, stack_name: str) -> StackActionResult:
        key = self.lock_key(stack_name)
        with self.locks.hold(key):
            result = StackActionResult()
            for container in self.runtime.list_containers({LABEL_STACK: key}):
                try:
                    self.runtime.remove_container(container.container_id, force=True)
                    result.changed.append(container.name)
                except RuntimeClientError as e:
                    result.errors.append(f"Failed to remove {container.name}: {e}")
            logger.info(f"[{key}] Removed {len(result.changed)} container(s)")
            return result

    @staticmethod
    def _skip_for_maintenance(container, result: StackActionResult) -> bool:
        # Init containers have already exited and must not be re-run.
        if container.labels.get(LABEL_LIFECYCLE) == "init":
            return True
        if container.labels.get(LABEL_MAINTENANCE, "").lower() == MAINTENANCE_IGNORE:
            result.ignored.append(container.name)
            return True
        return False
