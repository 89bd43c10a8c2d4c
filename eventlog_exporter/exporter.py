"""ChannelExporter: one export cycle for one channel.

fetch -> normalize -> encode to a temp file -> atomic replace onto the
published path. A failure at any step leaves the published file untouched.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone

from eventlog_exporter.config import ChannelSpec
from eventlog_exporter.encoder import ParquetEncoder
from eventlog_exporter.errors import ExportError, PublishFailure, SourceUnavailable
from eventlog_exporter.metrics import ExportMetrics
from eventlog_exporter.models import build_batch
from eventlog_exporter.sources import EventSource

logger = logging.getLogger(__name__)

# mkstemp creates files readable by the owner only
PUBLISHED_FILE_MODE = 0o644


@dataclass(frozen=True)
class ExportResult:
    channel: str
    ok: bool
    rows: int = 0
    skipped: int = 0
    error_kind: str | None = None
    error: str | None = None


class ChannelExporter:
    def __init__(
        self,
        source: EventSource,
        encoder: ParquetEncoder | None = None,
        max_records: int = 10,
        write_mode: str = "overwrite",
        metrics: ExportMetrics | None = None,
    ):
        self._source = source
        self._encoder = encoder or ParquetEncoder()
        self._max_records = max_records
        self._append = write_mode == "append"
        self._metrics = metrics or ExportMetrics()

    @property
    def metrics(self) -> ExportMetrics:
        return self._metrics

    def export(self, spec: ChannelSpec, cycle_started: datetime | None = None) -> ExportResult:
        """Run one export cycle for spec. Raises ExportError on failure."""
        cycle_started = cycle_started or datetime.now(timezone.utc)

        try:
            raw_entries = self._source.fetch(spec.name, self._max_records)
        except SourceUnavailable:
            raise
        except Exception as e:
            raise SourceUnavailable(spec.name, f"fetch failed: {e!r}") from e

        batch = build_batch(spec.name, raw_entries, cycle_started)

        out_dir = os.path.dirname(spec.output_path) or "."
        try:
            os.makedirs(out_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=os.path.basename(spec.output_path) + ".", suffix=".tmp", dir=out_dir,
            )
            os.close(fd)
        except OSError as e:
            raise PublishFailure(spec.name, f"cannot create temp file in {out_dir}: {e}") from e

        try:
            previous = spec.output_path if self._append else None
            rows = self._encoder.write(batch, tmp_path, previous=previous)
            try:
                os.chmod(tmp_path, PUBLISHED_FILE_MODE)
                os.replace(tmp_path, spec.output_path)
            except OSError as e:
                raise PublishFailure(spec.name, f"rename onto {spec.output_path} failed: {e}") from e
        except ExportError as e:
            _discard(tmp_path)
            e.skipped = batch.skipped
            raise
        except BaseException:
            _discard(tmp_path)
            raise

        logger.info("%s: published %d row(s) to %s (skipped %d)",
                    spec.name, rows, spec.output_path, batch.skipped)
        return ExportResult(channel=spec.name, ok=True, rows=rows, skipped=batch.skipped)

    def export_safely(self, spec: ChannelSpec, cycle_started: datetime | None = None) -> ExportResult:
        """Run export() and turn any failure into a logged, failed ExportResult."""
        cycle_started = cycle_started or datetime.now(timezone.utc)
        try:
            result = self.export(spec, cycle_started)
        except ExportError as e:
            logger.error("%s: export abandoned for cycle %s (%s, skipped %d): %s",
                         spec.name, cycle_started.isoformat(), e.kind, e.skipped, e)
            self._metrics.record_failure(e.kind, e.skipped)
            return ExportResult(channel=spec.name, ok=False, skipped=e.skipped,
                                error_kind=e.kind, error=str(e))
        except Exception as e:
            logger.exception("%s: unexpected error in cycle %s",
                             spec.name, cycle_started.isoformat())
            self._metrics.record_failure("unexpected")
            return ExportResult(channel=spec.name, ok=False, error_kind="unexpected", error=repr(e))

        self._metrics.record_export(result.rows, result.skipped)
        return result


def _discard(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp file %s: %s", path, e)
