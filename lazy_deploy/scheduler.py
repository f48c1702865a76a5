"""Concurrent execution of the selected units' state machines.

Every selected unit gets its own worker thread. A unit first waits for the
selected units it depends on, then for a free slot, and only then starts
building. Slots are held from building until the unit terminates, so
at most `max_concurrency` units are ever building, publishing, deploying
or verifying at the same time.

A failing unit only affects the units that depend on it: they are skipped.
Siblings without a dependency relation keep running.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed, wait

from .backends import Collaborators
from .errors import ConfigError
from .machine import DeploymentStateMachine, Observer
from .models import (
    DeploymentRecord,
    DeploymentState,
    SelectionResult,
    SkipReason,
)
from .registry import UnitRegistry


class ExecutionScheduler:
    """Runs one DeploymentStateMachine per selected unit with bounded concurrency.

    Args:
        collaborators: External systems used by every state machine.
        max_concurrency: Maximum number of units in an active stage at once.
        health_interval: Seconds between health probes.
        health_timeout: Seconds before verification gives up.
        observer: Transition callback passed to every state machine. It is
                  called from worker threads.
        clock: Monotonic clock for health deadlines.
        sleep: Sleep function for health polling.

    Raises:
        ConfigError: If max_concurrency is below 1.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        max_concurrency: int = 4,
        health_interval: float = 5.0,
        health_timeout: float = 300.0,
        observer: Observer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ConfigError(
                f"max_concurrency must be at least 1, got {max_concurrency}"
            )
        self.collaborators = collaborators
        self.max_concurrency = max_concurrency
        self.health_interval = health_interval
        self.health_timeout = health_timeout
        self.observer = observer
        self.clock = clock
        self.sleep = sleep
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop starting new units. Units already in flight run to completion."""
        self._cancelled.set()

    def run(
        self,
        selection: SelectionResult,
        registry: UnitRegistry,
        *,
        revision: str,
        deadline: float | None = None,
    ) -> dict[str, DeploymentRecord]:
        """Deploy every selected unit and return their records.

        Args:
            selection: Units to deploy.
            registry: Registry the selection was resolved against.
            revision: Revision identifier used for image tags.
            deadline: Optional number of seconds after which the run is
                      cancelled.

        Returns:
            Map of unit name → record, in dependency order. Every record
            is terminal unless its worker crashed, in which case it keeps
            the state it stopped in and the exception as error_message.

        Raises:
            UnknownUnit: If the selection names an unregistered unit.
        """
        units = [registry.resolve(name) for name in sorted(selection.selected)]
        order = registry.topo_order(unit.name for unit in units)
        if not order:
            return {}

        machines = {
            name: DeploymentStateMachine(
                registry.resolve(name),
                revision=revision,
                collaborators=self.collaborators,
                health_interval=self.health_interval,
                health_timeout=self.health_timeout,
                observer=self.observer,
                clock=self.clock,
                sleep=self.sleep,
            )
            for name in order
        }
        done = {name: threading.Event() for name in order}

        timer: threading.Timer | None = None
        if deadline is not None:
            timer = threading.Timer(deadline, self.cancel)
            timer.daemon = True
            timer.start()

        try:
            with ThreadPoolExecutor(
                max_workers=len(order), thread_name_prefix="lazy-deploy"
            ) as pool:
                futures = [
                    pool.submit(self._drive, machines[name], machines, done)
                    for name in order
                ]
                try:
                    for future in as_completed(futures):
                        future.result()
                except KeyboardInterrupt:
                    self.cancel()
                    wait(futures)
        finally:
            if timer is not None:
                timer.cancel()

        return {name: machines[name].record for name in order}

    def _drive(
        self,
        machine: DeploymentStateMachine,
        machines: dict[str, DeploymentStateMachine],
        done: dict[str, threading.Event],
    ) -> None:
        """Worker body for one unit: wait for dependencies, then for a slot."""
        unit = machine.record.unit
        try:
            # Only selected dependencies are waited on
            waits = [dep for dep in unit.depends_on if dep in done]
            for dep in waits:
                done[dep].wait()

            # Dependency records are final once their event is set
            blocked = [
                machines[dep].record
                for dep in waits
                if machines[dep].record.state is not DeploymentState.SUCCEEDED
            ]
            if blocked:
                if all(r.skip_reason is SkipReason.CANCELLED for r in blocked):
                    machine.skip(SkipReason.CANCELLED)
                else:
                    machine.skip(SkipReason.DEPENDENCY_FAILED)
                return

            if self.cancelled:
                machine.skip(SkipReason.CANCELLED)
                return

            with self._slots:
                if self.cancelled:
                    machine.skip(SkipReason.CANCELLED)
                    return
                machine.run()
        except Exception as exc:
            # The record stays where it stopped and is reported as incomplete
            machine.record.error_message = f"{type(exc).__name__}: {exc}"
        finally:
            done[unit.name].set()
