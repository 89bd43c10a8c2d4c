"""Event sources: where raw entries for a channel come from.

Sources only fetch. Every source returns a list of RawEntry mappings keyed
TimeCreated / Id / ProviderName / Message, oldest first, at most max_records
long, and raises SourceUnavailable when the channel cannot be read at all.
"""

import json
import logging
import os
import shlex
import subprocess
from collections import deque

from eventlog_exporter.errors import SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = (
    "powershell -NoProfile -NonInteractive -Command "
    "\"Get-WinEvent -LogName '{channel}' -MaxEvents {max_records} "
    "| Sort-Object TimeCreated "
    "| Select-Object @{{n='TimeCreated';e={{$_.TimeCreated.ToUniversalTime().ToString('o')}}}},"
    "Id,ProviderName,Message "
    "| ConvertTo-Json -Compress\""
)

# Normalization rejects this shape, so build_batch counts it as skipped.
UNREADABLE_ENTRY = {"TimeCreated": None, "Id": None}

# A reader that keeps failing this many times in a row is given up on.
MAX_CONSECUTIVE_ERRORS = 100


class EventSource:
    """Base class for channel readers."""

    name = "base"

    def fetch(self, channel: str, max_records: int) -> list[dict]:
        """Return up to max_records most recent entries; subclasses override."""
        raise NotImplementedError


class EvtxFileSource(EventSource):
    """Reads the tail of {logs_dir}/{channel}.evtx with the evtx parser."""

    name = "evtx"

    def __init__(self, logs_dir: str):
        self._logs_dir = logs_dir

    def path_for(self, channel: str) -> str:
        return os.path.join(self._logs_dir, f"{channel}.evtx")

    def fetch(self, channel: str, max_records: int) -> list[dict]:
        from evtx import PyEvtxParser

        path = self.path_for(channel)
        try:
            parser = PyEvtxParser(path)
            records = iter(parser.records_json())
        except (OSError, RuntimeError, ValueError) as e:
            raise SourceUnavailable(channel, f"cannot read {path}: {e}") from e

        # A corrupt record is yielded or raised as RuntimeError; keep going.
        tail: deque = deque(maxlen=max_records)
        errors_in_a_row = 0
        while True:
            try:
                record = next(records)
            except StopIteration:
                break
            except RuntimeError as e:
                record = e
            if isinstance(record, Exception):
                errors_in_a_row += 1
                if errors_in_a_row > MAX_CONSECUTIVE_ERRORS:
                    logger.warning("%s: giving up on %s after %d consecutive bad records",
                                   channel, path, errors_in_a_row - 1)
                    break
                logger.debug("%s: unparseable evtx record: %s", channel, record)
                tail.append(dict(UNREADABLE_ENTRY))
            else:
                errors_in_a_row = 0
                tail.append(evtx_record_to_entry(record))
        return list(tail)


def evtx_record_to_entry(record: dict) -> dict:
    """Flatten one records_json() item into a RawEntry.

    Structural problems are left for normalization to reject, so one bad
    record never fails the whole fetch.
    """
    try:
        event = json.loads(record["data"])["Event"]
        system = event["System"]
    except (KeyError, TypeError, ValueError):
        return dict(UNREADABLE_ENTRY)

    time_created = system.get("TimeCreated")
    if isinstance(time_created, dict):
        time_created = time_created.get("#attributes", {}).get("SystemTime")

    return {
        "TimeCreated": time_created or record.get("timestamp"),
        "Id": system.get("EventID"),
        "ProviderName": system.get("Provider"),
        "Message": lambda: _render_event_data(event),
    }


def _render_event_data(event: dict) -> str | None:
    """Render EventData/UserData values as "k=v; ..." text."""
    data = event.get("EventData") or event.get("UserData")
    if data is None:
        return None
    if not isinstance(data, dict):
        return str(data)

    parts = []
    for key, value in data.items():
        if key == "#attributes":
            continue
        if isinstance(value, dict):
            value = value.get("#text", json.dumps(value, sort_keys=True))
        parts.append(f"{key}={value}")
    return "; ".join(parts)


class CommandSource(EventSource):
    """Runs an external command per channel and parses its JSON output.

    The command template is formatted with {channel} and {max_records}.
    """

    name = "command"

    def __init__(self, command_template: str = DEFAULT_COMMAND, timeout: float = 30.0):
        self._template = command_template
        self._timeout = timeout

    def build_command(self, channel: str, max_records: int) -> list[str]:
        command = self._template.format(channel=channel, max_records=max_records)
        return shlex.split(command)

    def fetch(self, channel: str, max_records: int) -> list[dict]:
        argv = self.build_command(channel, max_records)
        try:
            proc = subprocess.run(
                argv, capture_output=True, text=True, timeout=self._timeout, check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SourceUnavailable(channel, f"command failed to run: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {proc.returncode}"
            raise SourceUnavailable(channel, f"command exited {proc.returncode}: {detail}")

        output = proc.stdout.strip()
        if not output:
            return []
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise SourceUnavailable(channel, f"command produced invalid JSON: {e}") from e

        # ConvertTo-Json emits a bare object for a single result
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise SourceUnavailable(channel, f"unexpected JSON payload: {type(data).__name__}")
        return data[-max_records:]


def create_source(config) -> EventSource:
    """Build the configured event source."""
    if config.source == "command":
        return CommandSource(config.command, timeout=config.command_timeout)
    return EvtxFileSource(config.evtx_dir)
