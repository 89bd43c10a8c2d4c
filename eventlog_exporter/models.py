"""Normalized event log record model and raw-entry normalization."""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from eventlog_exporter.errors import RecordUnreadable

logger = logging.getLogger(__name__)

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# PowerShell 5 ConvertTo-Json renders DateTime as "/Date(1700000000000)/"
_MS_DATE_RE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")
# .NET round-trip format carries 7 fractional digits, Python accepts 6
_LONG_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


@dataclass(frozen=True)
class LogRecord:
    timestamp: datetime          # UTC, microsecond resolution
    event_id: int                # clamped to int32
    provider_name: str = ""
    message: str | None = None   # None = could not be rendered


@dataclass(frozen=True)
class ExportBatch:
    channel: str
    records: tuple[LogRecord, ...] = ()
    skipped: int = 0
    cycle_started: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __len__(self) -> int:
        return len(self.records)


def clamp_int32(value: int) -> int:
    """Clamp an integer into the signed 32-bit range."""
    return max(INT32_MIN, min(INT32_MAX, value))


def _unwrap(value):
    """Unwrap the evtx attribute form {"#text": value}."""
    if isinstance(value, Mapping) and "#text" in value:
        return value["#text"]
    return value


def parse_timestamp(value) -> datetime:
    """Convert a source creation time into an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings,
    PowerShell /Date(ms)/ literals and epoch seconds.
    """
    value = _unwrap(value)
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        match = _MS_DATE_RE.match(text)
        if match:
            ts = datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
        else:
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            elif text.endswith(" UTC"):
                text = text[:-4] + "+00:00"
            text = _LONG_FRACTION_RE.sub(r"\1", text)
            ts = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp type: {type(value).__name__}")

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_event_id(value) -> int:
    value = _unwrap(value)
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid event id: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        return clamp_int32(int(text, 16) if text.lower().startswith("0x") else int(text))
    return clamp_int32(int(value))


def _utf8_safe(text: str) -> str:
    """Replace characters UTF-8 cannot encode, such as lone surrogates."""
    try:
        text.encode("utf-8")
        return text
    except UnicodeEncodeError:
        return text.encode("utf-8", "replace").decode("utf-8")


def _provider_name(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Mapping):
        attrs = value.get("#attributes", value)
        name = attrs.get("Name") if isinstance(attrs, Mapping) else None
        return _utf8_safe(str(name)) if name is not None else ""
    return _utf8_safe(str(value))


def render_message(value) -> str | None:
    """Render a message value, swallowing any rendering failure."""
    try:
        if callable(value):
            value = value()
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        return _utf8_safe(value)
    except Exception as e:
        logger.debug("Message rendering failed: %s", e)
        return None


def normalize_entry(raw) -> LogRecord:
    """Normalize one raw source entry into a LogRecord.

    Raises RecordUnreadable when the entry has no usable creation time or id.
    """
    if not isinstance(raw, Mapping):
        raise RecordUnreadable("-", f"entry is not a mapping: {type(raw).__name__}")

    try:
        timestamp = parse_timestamp(raw["TimeCreated"])
        event_id = parse_event_id(raw["Id"])
    except (KeyError, ValueError, TypeError, OverflowError, OSError) as e:
        raise RecordUnreadable("-", f"unreadable entry: {e!r}") from e

    return LogRecord(
        timestamp=timestamp,
        event_id=event_id,
        provider_name=_provider_name(raw.get("ProviderName")),
        message=render_message(raw.get("Message")),
    )


def build_batch(
    channel: str,
    raw_entries: Iterable,
    cycle_started: datetime | None = None,
) -> ExportBatch:
    """Normalize fetched entries into an ExportBatch, dropping unreadable ones."""
    records = []
    skipped = 0
    for raw in raw_entries:
        try:
            records.append(normalize_entry(raw))
        except RecordUnreadable as e:
            skipped += 1
            logger.debug("%s: dropped entry: %s", channel, e)

    if skipped:
        logger.warning("%s: skipped %d unreadable entr%s",
                       channel, skipped, "y" if skipped == 1 else "ies")

    return ExportBatch(
        channel=channel,
        records=tuple(records),
        skipped=skipped,
        cycle_started=cycle_started or datetime.now(timezone.utc),
    )
