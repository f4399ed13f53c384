# stack_engine/observers/service.py
"""
Maintenance Observer Service - mirrors external state into operation modes.

Architecture:
- One daemon thread per deployment with an enabled observer
- Each tick: read value -> ObserverResult -> maybe request a mode change
- Mode changes go through the command layer (same path as the API)
- Failures are logged; N consecutive failures emit one critical event
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from uuid import UUID

from stack_engine.core.errors import ObserverConfigError
from stack_engine.core.events_model import DeploymentEvent
from stack_engine.core.models import Deployment, MaintenanceSource
from stack_engine.core.state_machine import DeploymentStatus, OperationMode
from stack_engine.observers.base import BaseObserver
from stack_engine.observers.factory import create_observer
from stack_engine.observers.models import ObserverConfig, ObserverResult

logger = logging.getLogger(__name__)

OBSERVER_SOURCE = "observer"


@dataclass
class ObserverState:
    deployment_id: UUID
    observer: BaseObserver
    config: ObserverConfig
    last_result: Optional[ObserverResult] = None
    last_checked_at: Optional[datetime] = None
    consecutive_failures: int = 0
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    # Serializes the polling loop and check_now over the fields above.
    tick_lock: threading.Lock = field(default_factory=threading.Lock)


class MaintenanceObserverService:

    def __init__(
        self,
        repository,
        event_emitters,
        *,
        failure_threshold: int = 3,
        observer_factory: Callable[[ObserverConfig], BaseObserver] = create_observer,
        autostart: bool = True,
    ):
        """
        Args:
            repository: DeploymentRepository (read-only use)
            event_emitters: EventEmitter for observer events
            failure_threshold: consecutive failures before escalation
            observer_factory: builds the reader for a config
            autostart: start a polling thread on register (off in tests, which
                drive checks through check_now)
        """
        self._repo = repository
        self._emitters = event_emitters
        self.failure_threshold = failure_threshold
        self._observer_factory = observer_factory
        self.autostart = autostart
        self._commands = None
        self._states: Dict[UUID, ObserverState] = {}
        self._lock = threading.Lock()

    def bind(self, commands) -> None:
        """Attach the command layer used to request mode changes."""
        self._commands = commands

    # -------------------------
    # REGISTRATION
    # -------------------------

    def register(self, deployment: Deployment, start: Optional[bool] = None) -> bool:
        """
        Create (or replace) the observer of a deployment.

        Returns False when the deployment has no usable, enabled observer.
        """
        self.unregister(deployment.deployment_id)

        if not deployment.observer_config or not deployment.observer_enabled:
            return False

        try:
            config = ObserverConfig.from_manifest(deployment.observer_config, deployment.variables)
        except ObserverConfigError as e:
            logger.error(f"[{deployment.deployment_id}] ❌ Maintenance observer not started: {e}")
            return False

        if not config.enabled:
            logger.info(f"[{deployment.deployment_id}] Maintenance observer disabled in manifest")
            return False

        state = ObserverState(
            deployment_id=deployment.deployment_id,
            observer=self._observer_factory(config),
            config=config,
        )
        with self._lock:
            self._states[deployment.deployment_id] = state

        logger.info(
            f"[{deployment.deployment_id}] Maintenance observer registered: "
            f"{config.type.value}, every {config.polling_interval:g}s"
        )

        if start is None:
            start = self.autostart
        if start:
            self._start_loop(state)
        return True

    def unregister(self, deployment_id: UUID) -> None:
        with self._lock:
            state = self._states.pop(deployment_id, None)
        if state is None:
            return

        state.stop_event.set()
        if state.thread and state.thread is not threading.current_thread():
            state.thread.join(timeout=state.config.timeout + 1)

        dispose = getattr(state.observer, "dispose", None)
        if dispose:
            dispose()
        logger.info(f"[{deployment_id}] Maintenance observer stopped")

    def is_registered(self, deployment_id: UUID) -> bool:
        return deployment_id in self._states

    def last_result(self, deployment_id: UUID) -> Optional[ObserverResult]:
        state = self._states.get(deployment_id)
        return state.last_result if state else None

    def start_all(self) -> int:
        """Restore loops for running deployments (process start)."""
        count = 0
        for deployment in self._repo.list_running():
            if self.register(deployment):
                count += 1
        logger.info(f"Started {count} maintenance observer(s)")
        return count

    def stop_all(self) -> None:
        for deployment_id in list(self._states):
            self.unregister(deployment_id)

    # -------------------------
    # POLLING
    # -------------------------

    def _start_loop(self, state: ObserverState) -> None:
        state.thread = threading.Thread(
            target=self._run_loop,
            args=(state,),
            name=f"observer-{state.deployment_id}",
            daemon=True,
        )
        state.thread.start()

    def _run_loop(self, state: ObserverState) -> None:
        while not state.stop_event.is_set():
            try:
                self._tick(state)
            except Exception as e:
                logger.error(f"[{state.deployment_id}] Error in observer cycle: {e}", exc_info=True)

            state.stop_event.wait(state.config.polling_interval)

    def check_now(self, deployment_id: UUID) -> Optional[ObserverResult]:
        """Run one check synchronously (operator trigger, tests)."""
        state = self._states.get(deployment_id)
        if state is None:
            return None
        return self._tick(state)

    def _tick(self, state: ObserverState) -> ObserverResult:
        with state.tick_lock:
            result = state.observer.check()
            state.last_result = result
            state.last_checked_at = datetime.now(timezone.utc)

            if not state.stop_event.is_set():
                self._handle_result(state, result)
            return result

    # -------------------------
    # RESULT HANDLING
    # -------------------------

    def _handle_result(self, state: ObserverState, result: ObserverResult) -> None:
        deployment_id = state.deployment_id

        if not result.success:
            state.consecutive_failures += 1
            logger.warning(
                f"[{deployment_id}] Maintenance check failed "
                f"({state.consecutive_failures} in a row): {result.error_message}"
            )
            if state.consecutive_failures == self.failure_threshold:
                self._emit(DeploymentEvent.observer_escalated(
                    deployment_id, state.consecutive_failures, result.error_message or ""
                ))
            return

        state.consecutive_failures = 0

        deployment = self._repo.get(deployment_id)
        if deployment is None or deployment.status != DeploymentStatus.RUNNING:
            return

        mode = deployment.operation_mode

        if result.maintenance_required:
            if mode == OperationMode.NORMAL:
                self._request_mode(
                    deployment,
                    OperationMode.MAINTENANCE,
                    f"Triggered by maintenance observer (observed: {result.observed_value})",
                    result,
                )
            return

        if mode != OperationMode.MAINTENANCE:
            return

        if deployment.maintenance_source == MaintenanceSource.OBSERVER:
            self._request_mode(
                deployment,
                OperationMode.NORMAL,
                f"Maintenance cleared by observer (observed: {result.observed_value})",
                result,
            )
        else:
            logger.debug(f"[{deployment_id}] Manual maintenance kept; observer reports normal")

    def _request_mode(self, deployment: Deployment, mode: OperationMode, reason: str, result: ObserverResult) -> None:
        if self._commands is None:
            logger.error("Maintenance observer service is not bound to a command handler")
            return

        logger.info(f"[{deployment.deployment_id}] Observer requests {mode.value}: {reason}")
        self._emit(DeploymentEvent.observer_triggered(
            deployment.deployment_id, result.observed_value, result.maintenance_required
        ))

        outcome = self._commands.change_operation_mode(
            deployment.deployment_id, mode.value, reason, source=OBSERVER_SOURCE
        )
        if not outcome.success:
            logger.warning(f"[{deployment.deployment_id}] Observer mode change rejected: {outcome.message}")

    def _emit(self, event: DeploymentEvent) -> None:
        self._emitters.emit([event])
