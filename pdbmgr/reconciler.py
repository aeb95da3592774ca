from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Event, Thread
from typing import Callable

from .errors import (
    ConflictError,
    ControlPlaneError,
    FatalConfigError,
    PdbMgrError,
    ProbeError,
    TransientApiError,
)
from .kube import PolicyStore
from .policy import Allowance, derive_allowance, effective_threshold
from .probe import probe
from .protocol import ServerStatus
from .runtime import RuntimeState
from .settings import Settings

log = logging.getLogger(__name__)

Prober = Callable[[str, int, float], ServerStatus]


@dataclass(frozen=True)
class TickOutcome:
    status: ServerStatus | None = None
    allowance: Allowance | None = None
    wrote: bool = False
    attempts: int = 0
    error: str | None = None  # error kind when the tick did not reach its goal


class BudgetReconciler:
    """Keeps the PodDisruptionBudget field in line with the server's player count.

    One tick is probe -> derive -> apply. Ticks run one after another on a
    single thread and never overlap.
    """

    def __init__(
        self,
        settings: Settings,
        store: PolicyStore,
        runtime: RuntimeState | None = None,
        prober: Prober | None = None,
    ):
        self.settings = settings
        self.store = store
        self.runtime = runtime or RuntimeState()
        self.prober = prober or probe
        self._stop = Event()
        self._thr: Thread | None = None

    # --- lifecycle ---

    def verify(self) -> Allowance | None:
        """Look up the PDB once before the loop starts.

        PolicyNotFoundError (a FatalConfigError) propagates. The current field
        value seeds the last applied allowance so a restart does not rewrite it.
        Other control-plane failures only leave it unseeded.
        """
        s = self.settings
        try:
            snap = self.store.get(s.namespace, s.pdb_name)
        except FatalConfigError:
            raise
        except ControlPlaneError as e:
            self.runtime.record("WARN", "startup", f"Could not read initial PodDisruptionBudget state: {e}")
            return None
        current = s.pdb_field.allowance_for(snap.field_value(s.pdb_field))
        self.runtime.set_applied(current)
        self.runtime.record(
            "INFO",
            "startup",
            f"Watching {s.server_host}:{s.server_port} for minimum {s.policy.describe()}; "
            f"PodDisruptionBudget {s.namespace}/{s.pdb_name} {s.pdb_field.value}="
            f"{snap.field_value(s.pdb_field)!r} ({current.value if current else 'unmanaged'})",
        )
        return current

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="pdbmgr-reconciler", daemon=True)
        self._thr.start()

    def stop(self, grace_s: float | None = None) -> bool:
        """Ask the loop to stop and wait for an in-flight tick.

        Returns True if the thread finished within the grace period.
        """
        self._stop.set()
        if self._thr is None:
            return True
        self._thr.join(self.settings.shutdown_grace_s if grace_s is None else grace_s)
        alive = self._thr.is_alive()
        if alive:
            log.warning("Reconciler still busy after shutdown grace period; abandoning it.")
        return not alive

    def is_running(self) -> bool:
        return self._thr is not None and self._thr.is_alive()

    def _loop(self) -> None:
        self.runtime.record("INFO", "loop_started", "Reconciler started")
        interval = self.settings.update_interval_s
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                log.exception("Reconciler tick failed")
            elapsed = time.monotonic() - started
            if elapsed >= interval:
                log.warning("Tick took %.2fs, longer than the %.2fs interval; starting the next one now.", elapsed, interval)
                continue
            self._stop.wait(interval - elapsed)
        self.runtime.record("INFO", "loop_stopped", "Reconciler stopped")

    # --- one cycle ---

    def tick(self) -> TickOutcome:
        s = self.settings
        rt = self.runtime
        rt.begin_tick()

        try:
            status = self.prober(s.server_host, s.server_port, s.probe_timeout_s)
        except ProbeError as e:
            rt.bump("probe_failures")
            rt.record("WARN", "probe_failed", f"Failed to get server player count ({e.kind}): {e}")
            return TickOutcome(error=e.kind)

        rt.set_status(status)
        threshold = effective_threshold(s.policy, status.max)
        allowance = derive_allowance(status, s.policy)
        rt.record(
            "DEBUG",
            "probe_ok",
            f"Condition {'met' if allowance is Allowance.BLOCKED else 'unmet'}: "
            f"{status.online}/{status.max} players (need {threshold}).",
        )

        last = rt.get_applied()
        if allowance == last:
            rt.record("DEBUG", "apply_skipped", "Server player state unchanged - skipping this update.")
            return TickOutcome(status=status, allowance=allowance)

        try:
            attempts = self._apply(allowance, last)
        except _Exhausted as e:
            return TickOutcome(status=status, allowance=allowance, attempts=e.attempts, error=e.kind)
        except PdbMgrError as e:
            rt.record("ERROR", "apply_failed", f"Failed to patch PodDisruptionBudget {s.namespace}/{s.pdb_name}: {e}")
            return TickOutcome(status=status, allowance=allowance, error=e.kind)
        return TickOutcome(status=status, allowance=allowance, wrote=True, attempts=attempts)

    def _apply(self, allowance: Allowance, previous: Allowance | None) -> int:
        """Fetch, then conditionally patch, retrying conflicts and transient faults.

        Returns the number of attempts used.
        """
        s = self.settings
        rt = self.runtime
        value = s.pdb_field.value_for(allowance)
        last_error: PdbMgrError | None = None
        used = 0

        for attempt in range(1, s.apply_max_attempts + 1):
            if attempt > 1:
                delay = min(s.apply_backoff_s * 2 ** (attempt - 2), s.apply_backoff_max_s)
                if self._stop.wait(delay):
                    break
            used = attempt
            try:
                snap = self.store.get(s.namespace, s.pdb_name)
                self.store.conditional_update(s.namespace, s.pdb_name, snap.resource_version, s.pdb_field, value)
            except ConflictError as e:
                rt.bump("conflicts")
                rt.record("WARN", "apply_conflict", f"Attempt {attempt}/{s.apply_max_attempts}: {e}")
                last_error = e
                continue
            except TransientApiError as e:
                rt.record("WARN", "apply_retry", f"Attempt {attempt}/{s.apply_max_attempts}: {e}")
                last_error = e
                continue

            rt.set_applied(allowance)
            rt.bump("writes")
            rt.record(
                "INFO",
                "apply_ok",
                f"PodDisruptionBudget {s.namespace}/{s.pdb_name} patched: "
                f"{previous.value if previous else 'unknown'} -> {allowance.value} ({s.pdb_field.value}={value}).",
            )
            return attempt

        rt.bump("exhaustions")
        rt.record(
            "ERROR",
            "apply_exhausted",
            f"Giving up on PodDisruptionBudget {s.namespace}/{s.pdb_name} this tick "
            f"after {used} attempt(s): {last_error}",
        )
        raise _Exhausted(used)


class _Exhausted(Exception):
    kind = "exhausted"

    def __init__(self, attempts: int):
        super().__init__(f"exhausted after {attempts} attempt(s)")
        self.attempts = attempts
