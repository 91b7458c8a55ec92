"""Fixed-interval liveness sweep for abandoned claims."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta

from todo_arbiter.backlog.arbiter import ClaimArbiter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepSummary:
    """Aggregate sweep counters for CLI reporting."""

    sweeps: int = 0
    reclaimed: int = 0
    overruns: int = 0
    reclaimed_task_ids: list[str] = field(default_factory=list)


class LivenessSweeper:
    """Periodically releases claims whose owners stopped reporting."""

    def __init__(
        self,
        *,
        arbiter: ClaimArbiter,
        stale_after_seconds: float,
        interval_seconds: float,
    ) -> None:
        if stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be > 0")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.arbiter = arbiter
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.interval_seconds = interval_seconds
        self._stop_requested = False

    def run_once(self) -> SweepSummary:
        """Run one sweep pass."""

        started = time.monotonic()
        reclaimed = self.arbiter.reclaim_stale(stale_after=self.stale_after)
        elapsed = time.monotonic() - started

        summary = SweepSummary(
            sweeps=1,
            reclaimed=len(reclaimed),
            reclaimed_task_ids=[task.task_id for task in reclaimed],
        )
        if elapsed > self.interval_seconds:
            summary.overruns = 1
            logger.warning(
                "Liveness sweep took %.2fs, longer than the %.2fs interval",
                elapsed,
                self.interval_seconds,
            )
        return summary

    def run_loop(self, *, max_sweeps: int | None = None) -> SweepSummary:
        """Sweep on a fixed interval until stopped or ``max_sweeps`` is reached."""

        aggregate = SweepSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                deadline = time.monotonic() + self.interval_seconds
                summary = self.run_once()
                aggregate.sweeps += summary.sweeps
                aggregate.reclaimed += summary.reclaimed
                aggregate.overruns += summary.overruns
                aggregate.reclaimed_task_ids.extend(summary.reclaimed_task_ids)
                if max_sweeps is not None and aggregate.sweeps >= max_sweeps:
                    break
                self._sleep_until(deadline)
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _sleep_until(self, deadline: float) -> None:
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Liveness sweeper stopping on %s", name)
            self.request_stop()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
