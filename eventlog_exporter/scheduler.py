"""Scheduler: Idle/Running loop that exports every channel once per cycle."""

import enum
import logging
import threading
from datetime import datetime, timezone

from eventlog_exporter.config import ChannelSpec
from eventlog_exporter.exporter import ChannelExporter, ExportResult

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class Scheduler:
    """Drives ChannelExporter over a fixed channel list on a fixed interval.

    Channels are processed sequentially in configured order. The wait
    between cycles returns early when the shutdown event is set.
    """

    def __init__(
        self,
        exporter: ChannelExporter,
        channel_specs: tuple[ChannelSpec, ...],
        interval: float,
        shutdown_event: threading.Event | None = None,
    ):
        self._exporter = exporter
        self._specs = tuple(channel_specs)
        self._interval = interval
        self._shutdown = shutdown_event or threading.Event()
        self._state = SchedulerState.IDLE
        self._cycles = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycles(self) -> int:
        return self._cycles

    def run_cycle(self) -> list[ExportResult]:
        """Attempt every channel exactly once, then return to IDLE."""
        cycle_started = datetime.now(timezone.utc)
        self._state = SchedulerState.RUNNING
        results = []
        try:
            for spec in self._specs:
                results.append(self._exporter.export_safely(spec, cycle_started))
        finally:
            self._state = SchedulerState.IDLE
            self._cycles += 1

        failed = [r.channel for r in results if not r.ok]
        self._exporter.metrics.record_cycle()
        if failed:
            logger.warning("Cycle %d finished: %d/%d channel(s) failed (%s)",
                           self._cycles, len(failed), len(results), ", ".join(failed))
        else:
            logger.info("Cycle %d finished: %d channel(s) exported", self._cycles, len(results))
        self._exporter.metrics.log_summary()
        return results

    def run_forever(self, max_cycles: int | None = None):
        """Loop until stop() is called (or max_cycles cycles have run)."""
        logger.info("Scheduler started: %d channel(s), interval=%.1fs",
                    len(self._specs), self._interval)
        while not self._shutdown.is_set():
            self.run_cycle()
            if max_cycles is not None and self._cycles >= max_cycles:
                break
            if self._shutdown.wait(self._interval):
                break
        logger.info("Scheduler stopped after %d cycle(s)", self._cycles)

    def stop(self):
        self._shutdown.set()
