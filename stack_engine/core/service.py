# stack_engine/core/service.py
"""Deployment service - command layer used by the API and by observers."""

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID, uuid4

from stack_engine.core.errors import (
    DeploymentConcurrencyError,
    IllegalTransitionError,
    InvalidDeploymentStateError,
    ManifestValidationError,
    RuntimeClientError,
    StackEngineError,
)
from stack_engine.core.events_model import DeploymentEvent
from stack_engine.core.models import Deployment, MaintenanceSource
from stack_engine.core.state_machine import (
    DeploymentStatus,
    OperationMode,
    OperationModeStateMachine,
)
from stack_engine.executor.cancellation import CancellationToken
from stack_engine.executor.engine import ExecutionResult, StackActionResult
from stack_engine.manifest.resolver import ResolvedStack
from stack_engine.manifest.variables import resolve_variable_values, validate_variable_values
from stack_engine.planner.models import DeploymentPlan
from stack_engine.planner.naming import sanitize_name

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Transport-agnostic outcome of a command."""
    success: bool
    message: str
    deployment_id: Optional[UUID] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @staticmethod
    def ok(message: str, deployment_id: Optional[UUID] = None, warnings=None):
        return CommandResult(True, message, deployment_id, list(warnings or []))

    @staticmethod
    def failed(message: str, deployment_id: Optional[UUID] = None, errors=None, warnings=None):
        return CommandResult(False, message, deployment_id, list(warnings or []), list(errors or [message]))


class DeploymentService:
    """
    Deploy, upgrade, operation-mode and removal commands.

    Every command that touches containers holds the engine's per-stack lock
    for its whole duration, so a second command for the same stack waits
    for the first one to finish.
    """

    def __init__(
        self,
        repository,
        catalog,
        compiler,
        engine,
        event_emitters,
        observer_service=None,
    ):
        self._repo = repository
        self._catalog = catalog
        self._compiler = compiler
        self._engine = engine
        self._emitters = event_emitters
        self._observers = observer_service
        self._tokens: Dict[UUID, CancellationToken] = {}
        self._tokens_lock = Lock()

        if observer_service is not None:
            observer_service.bind(self)

    # -------------------------
    # QUERIES
    # -------------------------

    def get_deployment(self, deployment_id: UUID) -> Optional[Deployment]:
        return self._repo.get(deployment_id)

    def list_deployments(self) -> List[Deployment]:
        return list(self._repo.list_all())

    # -------------------------
    # DEPLOY
    # -------------------------

    def deploy(
        self,
        stack_id: str,
        stack_name: str,
        environment_id: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> CommandResult:
        """Install a stack; an active deployment of the same name is upgraded instead."""
        try:
            stack = self._catalog.get(stack_id).stack
        except StackEngineError as e:
            return CommandResult.failed(str(e))

        existing = self._repo.find_active(environment_id, stack_name)
        if existing is not None:
            logger.info(f"Stack '{stack_name}' already deployed ({existing.deployment_id}); upgrading")
            return self.upgrade(existing.deployment_id, stack_id, variables)

        conflict = self._name_conflict(stack_name, environment_id)
        if conflict is not None:
            return conflict

        with self._stack_lock(stack_name):
            # A concurrent deploy may have finished while we waited.
            if self._repo.find_active(environment_id, stack_name) is not None:
                return CommandResult.failed(
                    f"Stack '{stack_name}' was deployed concurrently; retry to upgrade it"
                )
            conflict = self._name_conflict(stack_name, environment_id)
            if conflict is not None:
                return conflict

            try:
                values, plan = self._prepare(stack, variables, stack_name)
            except StackEngineError as e:
                return self._rejected(e)

            deployment = Deployment(
                deployment_id=uuid4(),
                environment_id=environment_id,
                stack_id=stack_id,
                stack_name=stack_name,
                variables=values,
                stack_version=plan.stack_version,
                observer_config=self._observer_config(stack),
            )
            self._repo.create(deployment)
            self._emit([DeploymentEvent.deployment_started(deployment)])

            result = self._run(deployment, plan)

            if result.success:
                deployment.mark_running(self._container_names(plan, result))
                self._repo.update(deployment)
                self._emit([DeploymentEvent.deployment_succeeded(deployment, result.warnings)])
            else:
                deployment.mark_failed("; ".join(result.errors))
                self._repo.update(deployment)
                self._emit([self._failure_event(deployment, result)])

        if not result.success:
            return CommandResult.failed(
                "Deployment was cancelled" if result.cancelled else "Deployment failed",
                deployment.deployment_id,
                errors=result.errors,
                warnings=result.warnings,
            )

        self._register_observer(deployment)
        return CommandResult.ok(
            f"Stack '{stack_name}' deployed ({plan.stack_version})",
            deployment.deployment_id,
            warnings=result.warnings,
        )

    # -------------------------
    # UPGRADE
    # -------------------------

    def upgrade(
        self,
        deployment_id: UUID,
        target_stack_id: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> CommandResult:
        """Normal -> Migrating -> Normal (success) or Failed (prior version kept)."""
        deployment = self._repo.get(deployment_id)
        if deployment is None:
            return CommandResult.failed(f"Deployment {deployment_id} not found")

        try:
            stack = self._catalog.get(target_stack_id).stack
        except StackEngineError as e:
            return CommandResult.failed(str(e), deployment_id)

        with self._stack_lock(deployment.stack_name):
            deployment = self._repo.get(deployment_id)

            if deployment.status != DeploymentStatus.RUNNING or deployment.operation_mode != OperationMode.NORMAL:
                return CommandResult.failed(
                    f"Deployment must be running in Normal mode to upgrade "
                    f"(status: {deployment.status.value}, mode: {deployment.operation_mode.value})",
                    deployment_id,
                )

            merged = dict(deployment.variables)
            merged.update(variables or {})

            try:
                values, plan = self._prepare(stack, merged, deployment.stack_name)
            except StackEngineError as e:
                return self._rejected(e, deployment_id)

            from_version = deployment.stack_version
            try:
                deployment.start_migration(plan.stack_version)
                self._repo.update(deployment)
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)
            self._emit([DeploymentEvent.upgrade_started(deployment)])

            result = self._run(deployment, plan)

            try:
                if result.success:
                    deployment.stack_id = target_stack_id
                    deployment.variables = values
                    deployment.observer_config = self._observer_config(stack)
                    deployment.deployed_containers = self._container_names(plan, result)
                    deployment.complete_migration()
                    self._repo.update(deployment)
                    self._emit([DeploymentEvent.deployment_succeeded(deployment, result.warnings)])
                else:
                    deployment.fail_migration("; ".join(result.errors))
                    self._repo.update(deployment)
                    self._emit([self._failure_event(deployment, result)])
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)

        if not result.success:
            return CommandResult.failed(
                f"Upgrade to {plan.stack_version} failed; deployment stays on {from_version}",
                deployment_id,
                errors=result.errors,
                warnings=result.warnings,
            )

        self._register_observer(deployment)
        return CommandResult.ok(
            f"Upgraded '{deployment.stack_name}' from {from_version} to {deployment.stack_version}",
            deployment_id,
            warnings=result.warnings,
        )

    # -------------------------
    # ROLLBACK
    # -------------------------

    def rollback(self, deployment_id: UUID) -> CommandResult:
        """
        Redeploy the version that was running before a failed upgrade.

        The stack is compiled again from the catalog entry of the stored
        ``stack_version`` with the stored variables; on success the
        deployment goes Failed -> Normal.
        """
        deployment = self._repo.get(deployment_id)
        if deployment is None:
            return CommandResult.failed(f"Deployment {deployment_id} not found")

        if not deployment.can_rollback:
            return self._not_rollbackable(deployment)

        try:
            stack = self._catalog.get_version(deployment.stack_id, deployment.stack_version).stack
        except StackEngineError as e:
            return CommandResult.failed(str(e), deployment_id)

        with self._stack_lock(deployment.stack_name):
            deployment = self._repo.get(deployment_id)
            if not deployment.can_rollback:
                return self._not_rollbackable(deployment)

            try:
                _, plan = self._prepare(stack, deployment.variables, deployment.stack_name)
            except StackEngineError as e:
                return self._rejected(e, deployment_id)

            logger.info(f"[{deployment_id}] ⏪ Rolling back '{deployment.stack_name}' to {deployment.stack_version}")
            result = self._run(deployment, plan)

            try:
                if result.success:
                    deployment.complete_rollback(self._container_names(plan, result))
                    self._repo.update(deployment)
                    self._emit([DeploymentEvent.rolled_back(deployment, result.warnings)])
                else:
                    deployment.record_error("; ".join(result.errors))
                    self._repo.update(deployment)
                    self._emit([self._failure_event(deployment, result)])
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)

        if not result.success:
            return CommandResult.failed(
                f"Rollback to {deployment.stack_version} failed; deployment stays in Failed mode",
                deployment_id,
                errors=result.errors,
                warnings=result.warnings,
            )

        self._register_observer(deployment)
        return CommandResult.ok(
            f"Rolled back '{deployment.stack_name}' to {deployment.stack_version}",
            deployment_id,
            warnings=result.warnings,
        )

    @staticmethod
    def _not_rollbackable(deployment: Deployment) -> CommandResult:
        return CommandResult.failed(
            f"Rollback is only available after a failed upgrade "
            f"(status: {deployment.status.value}, mode: {deployment.operation_mode.value})",
            deployment.deployment_id,
        )

    # -------------------------
    # OPERATION MODE
    # -------------------------

    def change_operation_mode(
        self,
        deployment_id: UUID,
        new_mode: str,
        reason: Optional[str] = None,
        source: str = "manual",
    ) -> CommandResult:
        """
        Request an operation-mode transition.

        Entering Maintenance stops the stack's containers and records which;
        leaving Maintenance starts those again, leaving Stopped starts every
        stopped one. Container failures are reported as warnings, the mode
        change itself stands.
        """
        try:
            target = OperationMode.parse(new_mode)
            maintenance_source = MaintenanceSource(source)
        except ValueError as e:
            return CommandResult.failed(str(e), deployment_id)

        if target == OperationMode.MIGRATING:
            return CommandResult.failed("Migrating mode is only entered by an upgrade", deployment_id)

        deployment = self._repo.get(deployment_id)
        if deployment is None:
            return CommandResult.failed(f"Deployment {deployment_id} not found")

        with self._stack_lock(deployment.stack_name):
            deployment = self._repo.get(deployment_id)

            if deployment.status != DeploymentStatus.RUNNING:
                return CommandResult.failed(
                    f"Deployment must be running to change operation mode (current: {deployment.status.value})",
                    deployment_id,
                )

            current = deployment.operation_mode
            if current == target:
                return CommandResult.ok(f"Deployment is already in {target.value} mode", deployment_id)

            if current == OperationMode.MIGRATING:
                return CommandResult.failed("An upgrade is in progress", deployment_id)

            # Only what maintenance stopped comes back; None means every stopped container.
            restart_only = list(deployment.stopped_containers) if current == OperationMode.MAINTENANCE else None

            try:
                self._apply_mode(deployment, current, target, maintenance_source, reason)
                self._repo.update(deployment)
            except (IllegalTransitionError, InvalidDeploymentStateError) as e:
                return CommandResult.failed(str(e), deployment_id)
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)

            if target == OperationMode.MAINTENANCE:
                action = self._container_action(self._engine.stop_stack, deployment.stack_name)
                deployment.record_stopped_containers(action.changed)
                try:
                    self._repo.update(deployment)
                except DeploymentConcurrencyError as e:
                    action.errors.append(f"Stopped containers could not be recorded: {e}")
            elif current in (OperationMode.MAINTENANCE, OperationMode.STOPPED):
                action = self._container_action(
                    self._engine.start_stack, deployment.stack_name, only=restart_only
                )
            else:
                action = StackActionResult()

            for error in action.errors:
                logger.warning(f"[{deployment_id}] {error}")

            self._emit([DeploymentEvent.mode_changed(deployment, current, source)])

        logger.info(
            f"[{deployment_id}] Operation mode {current.value} -> {target.value} "
            f"({source}{': ' + reason if reason else ''})"
        )
        return CommandResult.ok(
            f"Operation mode changed from {current.value} to {target.value}",
            deployment_id,
            warnings=action.errors,
        )

    @staticmethod
    def _apply_mode(
        deployment: Deployment,
        current: OperationMode,
        target: OperationMode,
        source: MaintenanceSource,
        reason: Optional[str],
    ) -> None:
        if target == OperationMode.MAINTENANCE:
            deployment.enter_maintenance(source, reason)
        elif target == OperationMode.NORMAL and current == OperationMode.MAINTENANCE:
            deployment.exit_maintenance(reason)
        elif target == OperationMode.NORMAL and current == OperationMode.FAILED:
            deployment.recover(reason)
        elif target == OperationMode.NORMAL and current == OperationMode.STOPPED:
            deployment.restart_stopped(reason)
        else:
            # Raises for every remaining pair.
            OperationModeStateMachine.transition(current, target)

    @staticmethod
    def _container_action(action, stack_name: str, **kwargs) -> StackActionResult:
        try:
            return action(stack_name, **kwargs)
        except RuntimeClientError as e:
            return StackActionResult(errors=[f"Container runtime unavailable: {e}"])

    # -------------------------
    # OBSERVER
    # -------------------------

    def set_observer_enabled(self, deployment_id: UUID, enabled: bool) -> CommandResult:
        deployment = self._repo.get(deployment_id)
        if deployment is None:
            return CommandResult.failed(f"Deployment {deployment_id} not found")
        if not deployment.observer_config:
            return CommandResult.failed("Deployment has no maintenance observer", deployment_id)

        # Loop registration stays outside the lock: unregister joins a tick that may be waiting on it.
        with self._stack_lock(deployment.stack_name):
            deployment = self._repo.get(deployment_id)
            try:
                deployment.set_observer_enabled(enabled)
                self._repo.update(deployment)
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)

        if self._observers is not None:
            if enabled and deployment.status == DeploymentStatus.RUNNING:
                self._observers.register(deployment)
            else:
                self._observers.unregister(deployment_id)

        state = "enabled" if enabled else "disabled"
        logger.info(f"[{deployment_id}] Maintenance observer {state}")
        return CommandResult.ok(f"Maintenance observer {state}", deployment_id)

    # -------------------------
    # REMOVE / CANCEL
    # -------------------------

    def remove_deployment(self, deployment_id: UUID) -> CommandResult:
        deployment = self._repo.get(deployment_id)
        if deployment is None:
            return CommandResult.failed(f"Deployment {deployment_id} not found")

        if deployment.status != DeploymentStatus.RUNNING:
            return CommandResult.failed(
                f"Only running deployments can be removed (current: {deployment.status.value})",
                deployment_id,
            )

        # Stopped before taking the stack lock: a polling tick may be waiting on it.
        if self._observers is not None:
            self._observers.unregister(deployment_id)

        with self._stack_lock(deployment.stack_name):
            deployment = self._repo.get(deployment_id)
            if deployment.status != DeploymentStatus.RUNNING:
                return CommandResult.failed(
                    f"Only running deployments can be removed (current: {deployment.status.value})",
                    deployment_id,
                )
            action = self._container_action(self._engine.remove_stack, deployment.stack_name)
            try:
                deployment.mark_removed()
                self._repo.update(deployment)
            except DeploymentConcurrencyError as e:
                return self._conflict(e, deployment_id)
            self._emit([DeploymentEvent.deployment_removed(deployment)])

        return CommandResult.ok(
            f"Deployment '{deployment.stack_name}' removed",
            deployment_id,
            warnings=action.errors,
        )

    def cancel_deployment(self, deployment_id: UUID) -> CommandResult:
        with self._tokens_lock:
            token = self._tokens.get(deployment_id)
        if token is None:
            return CommandResult.failed("No deployment in progress", deployment_id)

        token.cancel()
        logger.warning(f"[{deployment_id}] Cancellation requested")
        return CommandResult.ok("Cancellation requested", deployment_id)

    # -------------------------
    # INTERNAL HELPERS
    # -------------------------

    def _stack_lock(self, stack_name: str):
        return self._engine.locks.hold(self._engine.lock_key(stack_name))

    def _name_conflict(self, stack_name: str, environment_id: str) -> Optional[CommandResult]:
        """
        Container names, labels and the stack lock derive from the sanitized
        stack name alone, so it may belong to one active deployment only.
        """
        runtime_name = sanitize_name(stack_name)
        for other in self._repo.list_active():
            if sanitize_name(other.stack_name) != runtime_name:
                continue
            if other.environment_id == environment_id and other.stack_name == stack_name:
                continue
            message = (
                f"Stack name '{stack_name}' is already in use by deployment {other.deployment_id} "
                f"('{other.stack_name}' in environment '{other.environment_id}')"
            )
            logger.warning(f"Command rejected: {message}")
            return CommandResult.failed(message)
        return None

    def _conflict(self, error: DeploymentConcurrencyError, deployment_id: UUID) -> CommandResult:
        logger.warning(f"[{deployment_id}] {error}")
        return CommandResult.failed(
            "Deployment was modified concurrently; reload and retry",
            deployment_id,
            errors=[str(error)],
        )

    def _prepare(self, stack: ResolvedStack, variables, stack_name: str):
        values = resolve_variable_values(stack.variables, variables)
        errors = validate_variable_values(stack.variables, values)
        if errors:
            raise ManifestValidationError(errors)
        return values, self._compiler.compile(stack, values, stack_name)

    def _run(self, deployment: Deployment, plan: DeploymentPlan) -> ExecutionResult:
        token = CancellationToken()
        with self._tokens_lock:
            self._tokens[deployment.deployment_id] = token
        try:
            return self._engine.execute(plan, deployment.environment_id, token)
        except Exception as e:
            # Anything escaping the engine still has to end in a persisted failure.
            logger.error(f"[{deployment.deployment_id}] ❌ Unexpected error while applying plan: {e}", exc_info=True)
            return ExecutionResult(errors=[f"Unexpected error while applying plan: {e}"])
        finally:
            with self._tokens_lock:
                self._tokens.pop(deployment.deployment_id, None)

    def _register_observer(self, deployment: Deployment) -> None:
        if self._observers is not None and deployment.observer_enabled:
            self._observers.register(deployment)

    @staticmethod
    def _observer_config(stack: ResolvedStack) -> Optional[Dict[str, Any]]:
        if stack.maintenance_observer is None:
            return None
        return stack.maintenance_observer.model_dump(by_alias=True, exclude_none=True)

    @staticmethod
    def _container_names(plan: DeploymentPlan, result: ExecutionResult) -> List[str]:
        return [plan.step(context).container_name for context in result.deployed_contexts]

    @staticmethod
    def _failure_event(deployment: Deployment, result: ExecutionResult) -> DeploymentEvent:
        if result.cancelled:
            return DeploymentEvent.deployment_cancelled(deployment)
        return DeploymentEvent.deployment_failed(deployment, result.errors)

    @staticmethod
    def _rejected(error: StackEngineError, deployment_id: Optional[UUID] = None) -> CommandResult:
        errors = getattr(error, "errors", None) or [str(error)]
        logger.warning(f"Command rejected: {error}")
        return CommandResult.failed(str(error), deployment_id, errors=errors)

    def _emit(self, events):
        self._emitters.emit(events)
