"""Thread-safe export counters and the per-cycle summary line."""

import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)


class ExportMetrics:
    """Counters for tracking exporter behaviour across cycles."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cycles = 0
        self._exports_ok = 0
        self._rows_written = 0
        self._entries_skipped = 0
        self._failures: dict[str, int] = defaultdict(int)

    def record_cycle(self):
        with self._lock:
            self._cycles += 1

    def record_export(self, rows: int, skipped: int):
        """Record a published channel file."""
        with self._lock:
            self._exports_ok += 1
            self._rows_written += rows
            self._entries_skipped += skipped

    def record_failure(self, kind: str, skipped: int = 0):
        """Record an abandoned channel export by error kind."""
        with self._lock:
            self._failures[kind] += 1
            self._entries_skipped += skipped

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "cycles": self._cycles,
                "exports_ok": self._exports_ok,
                "exports_failed": sum(self._failures.values()),
                "failures_by_kind": dict(self._failures),
                "rows_written": self._rows_written,
                "entries_skipped": self._entries_skipped,
            }

    def log_summary(self):
        snap = self.snapshot()
        logger.info(
            "[metrics] cycles=%d exports_ok=%d exports_failed=%d rows=%d skipped=%d",
            snap["cycles"], snap["exports_ok"], snap["exports_failed"],
            snap["rows_written"], snap["entries_skipped"],
        )
