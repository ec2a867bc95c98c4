"""Destructive workflow state machine.

One :class:`OperationSequencer` drives one :class:`PlannedOperation`::

    Idle -> Confirmed -> Unmounting -> Acting -> Settling -> Refreshing -> Done
                              |            |
                              +--> Failed <+

The unmount step is retried once after a short wait. The action itself is
never retried: a non-zero exit goes straight to Failed. Waits are scheduled
callbacks, never sleeps, so the caller's thread stays free. Closing the
execution surface before Acting cancels back to Idle; after that the
command runs to completion.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

from driveassist.config import settings
from driveassist.domain.models import WorkflowResult, WorkflowState
from driveassist.logging import EventLogger, LoggerFactory, new_job_id
from driveassist.services.planner import PlannedOperation
from driveassist.services.scheduler import Scheduler, TimerScheduler
from driveassist.storage import devices
from driveassist.storage.commands import Command
from driveassist.storage.device_lock import DeviceLockRegistry, default_registry
from driveassist.storage.exceptions import (
    InventoryUnavailableError,
    UnmountFailedError,
    WorkflowError,
)
from driveassist.storage.partition import unmount_remediation
from driveassist.storage.validation import OperationSafetyGate

UNMOUNT_ATTEMPTS = 2

StateListener = Callable[[WorkflowState], None]
ResultListener = Callable[[WorkflowResult], None]


class Executor(Protocol):
    """Runs a long command out of process and reports its exit status."""

    def run(self, command: Command, on_exit: Callable[[int], None]) -> None: ...


_ALLOWED = {
    WorkflowState.IDLE: {WorkflowState.CONFIRMED},
    WorkflowState.CONFIRMED: {WorkflowState.UNMOUNTING, WorkflowState.IDLE},
    WorkflowState.UNMOUNTING: {WorkflowState.ACTING, WorkflowState.FAILED, WorkflowState.IDLE},
    WorkflowState.ACTING: {WorkflowState.SETTLING, WorkflowState.FAILED},
    WorkflowState.SETTLING: {WorkflowState.REFRESHING},
    WorkflowState.REFRESHING: {WorkflowState.DONE},
    WorkflowState.DONE: set(),
    WorkflowState.FAILED: set(),
}


class OperationSequencer:
    def __init__(
        self,
        plan: PlannedOperation,
        executor: Executor,
        gate: OperationSafetyGate,
        *,
        scheduler: Optional[Scheduler] = None,
        registry: Optional[DeviceLockRegistry] = None,
        refresh: Optional[Callable[[], object]] = None,
        mount_probe: Optional[Callable[[str], list[str]]] = None,
        unmounter: Optional[Callable[[str], bool]] = None,
        rereader: Optional[Callable[[str], Optional[str]]] = None,
        job_id: Optional[str] = None,
    ):
        self.plan = plan
        self._executor = executor
        self._gate = gate
        self._scheduler = scheduler or TimerScheduler()
        self._registry = registry or default_registry()
        self._refresh = refresh
        self._mount_probe = mount_probe or devices.mounted_paths_for
        self._unmounter = unmounter or devices.unmount_path
        self._rereader = rereader or devices.reread_partition_table
        self.job_id = job_id or new_job_id("workflow")
        self._log = LoggerFactory.for_workflow(self.job_id, target=plan.target)
        self._lock = threading.RLock()
        self._state = WorkflowState.IDLE
        self._result: Optional[WorkflowResult] = None
        self._cancelled = False
        self._holding = False
        self._state_listeners: list[StateListener] = []
        self._result_listeners: list[ResultListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def result(self) -> Optional[WorkflowResult]:
        return self._result

    def add_listener(self, listener: StateListener) -> None:
        """Call ``listener(new_state)`` on every state change."""
        self._state_listeners.append(listener)

    def add_result_listener(self, listener: ResultListener) -> None:
        self._result_listeners.append(listener)

    def _transition(self, new_state: WorkflowState) -> None:
        with self._lock:
            old_state = self._state
            if new_state not in _ALLOWED[old_state]:
                raise WorkflowError(
                    f"Illegal workflow transition {old_state.value} -> {new_state.value}"
                )
            self._state = new_state
        EventLogger.log_state_change(self._log, self.job_id, old_state.value, new_state.value)
        for listener in list(self._state_listeners):
            listener(new_state)

    def _finish(self, state: WorkflowState, result: WorkflowResult) -> None:
        self._result = result
        self._release()
        self._transition(state)
        if result.success:
            self._log.success(f"{self.plan.description.action} on {self.plan.target} done")
        else:
            self._log.error(f"{self.plan.description.action} failed: {result.reason}")
        for listener in list(self._result_listeners):
            listener(result)

    def _fail(self, reason: str, exit_code: Optional[int] = None) -> None:
        self._finish(
            WorkflowState.FAILED,
            WorkflowResult(success=False, target=self.plan.target, reason=reason, exit_code=exit_code),
        )

    def _release(self) -> None:
        if self._holding:
            self._registry.release(self.plan.target)
            self._holding = False

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Confirm and begin the workflow.

        Returns False when the user declines (state stays Idle).

        Raises:
            WorkflowConflictError: another workflow holds an overlapping device.
            WorkflowError: this sequencer was already started.
        """
        if self._state is not WorkflowState.IDLE or self._cancelled:
            raise WorkflowError(f"Workflow {self.job_id} was already started")
        self._registry.acquire(self.plan.target)
        self._holding = True
        try:
            approved = self._gate.confirm(self.plan.description, self.plan.severity)
        except Exception:
            self._release()
            raise
        if not approved:
            self._release()
            return False
        self._transition(WorkflowState.CONFIRMED)
        self._transition(WorkflowState.UNMOUNTING)
        self._attempt_unmount(1)
        return True

    def cancel(self) -> bool:
        """Cancel before Acting. Returns False once the command is dispatched."""
        with self._lock:
            if self._state not in (WorkflowState.CONFIRMED, WorkflowState.UNMOUNTING):
                if self._state is not WorkflowState.IDLE:
                    self._log.warning(
                        f"Cannot cancel {self.job_id} in state {self._state.value}"
                    )
                return False
            self._cancelled = True
        self._release()
        self._transition(WorkflowState.IDLE)
        self._log.info(f"{self.plan.description.action} on {self.plan.target} cancelled")
        return True

    def surface_closed(self) -> bool:
        """The execution surface was closed by the user."""
        return self.cancel()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _still_mounted(self) -> list[str]:
        if not self.plan.unmount:
            return []
        return list(self._mount_probe(self.plan.target))

    def _attempt_unmount(self, attempt: int) -> None:
        if self._cancelled:
            return
        try:
            mounted = self._still_mounted()
            if mounted:
                self._log.debug(f"Unmount attempt {attempt}: {', '.join(mounted)}")
                for path in mounted:
                    self._unmounter(path)
                mounted = self._still_mounted()
        except Exception as error:
            self._log.exception(f"Unmount check for {self.plan.target} raised")
            self._fail(f"Could not unmount {self.plan.target}: {error}")
            return
        if not mounted:
            self._act()
            return
        if attempt < UNMOUNT_ATTEMPTS:
            delay = settings.get_float(
                "unmount_retry_delay_seconds", settings.DEFAULT_UNMOUNT_RETRY_DELAY
            )
            self._log.warning(f"Still mounted: {', '.join(mounted)}; retrying in {delay}s")
            self._scheduler.call_later(delay, lambda: self._attempt_unmount(attempt + 1))
            return
        error = UnmountFailedError(self.plan.target, mounted)
        self._fail(f"{error}\n\n{unmount_remediation(mounted)}")

    def _act(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._transition(WorkflowState.ACTING)
        try:
            command = self.plan.command_for_execution()
        except OSError as error:
            self._fail(f"Could not prepare the command: {error}")
            return
        EventLogger.log_command(self._log, command.render())
        try:
            self._executor.run(command, self._on_exit)
        except Exception as error:
            self._log.exception(f"Executor rejected {self.plan.description.action}")
            # on_exit may already have moved the workflow on before the raise
            if self._state is WorkflowState.ACTING:
                self._fail(f"Could not start {self.plan.description.action}: {error}")

    def _on_exit(self, exit_code: int) -> None:
        if exit_code != 0:
            self._fail(
                f"{self.plan.description.action} on {self.plan.target} "
                f"exited with status {exit_code}. The operation was not retried.",
                exit_code=exit_code,
            )
            return
        self._transition(WorkflowState.SETTLING)
        if self.plan.reread_disk:
            try:
                mechanism = self._rereader(self.plan.reread_disk)
            except Exception:
                self._log.exception(f"Re-reading {self.plan.reread_disk} raised")
                mechanism = None
            if mechanism is None:
                self._log.warning(
                    f"Kernel did not re-read {self.plan.reread_disk}; inventory may be stale"
                )
        delay = settings.get_float("settle_delay_seconds", settings.DEFAULT_SETTLE_DELAY)
        self._scheduler.call_later(delay, self._begin_refresh)

    def _begin_refresh(self) -> None:
        self._transition(WorkflowState.REFRESHING)
        self._scheduler.call_later(self.plan.refresh_delay, self._refresh_and_finish)

    def _refresh_and_finish(self) -> None:
        reason = None
        if self._refresh is not None:
            try:
                self._refresh()
            except InventoryUnavailableError as error:
                self._log.error(f"Inventory refresh failed: {error}")
                reason = f"Operation succeeded but the device list could not be refreshed: {error}"
            except Exception as error:
                self._log.exception("Inventory refresh raised")
                reason = f"Operation succeeded but refreshing the device list raised: {error}"
        self._finish(
            WorkflowState.DONE,
            WorkflowResult(success=True, target=self.plan.target, reason=reason, exit_code=0),
        )
