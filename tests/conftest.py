"""Shared pytest fixtures for the eventlog exporter test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from eventlog_exporter.errors import SourceUnavailable
from eventlog_exporter.sources import EventSource

BASE_TIME = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)


def make_raw_entry(i: int, message="default", provider="Service Control Manager") -> dict:
    """Return a well-formed RawEntry; message="default" yields "Event <i>"."""
    return {
        "TimeCreated": (BASE_TIME + timedelta(seconds=i)).isoformat(),
        "Id": 7000 + i,
        "ProviderName": provider,
        "Message": f"Event {i}" if message == "default" else message,
    }


class FakeSource(EventSource):
    """In-memory source. Channels mapped to an Exception raise it on fetch."""

    name = "fake"

    def __init__(self, entries_by_channel: dict):
        self._entries = entries_by_channel
        self.calls: list[tuple[str, int]] = []

    def fetch(self, channel: str, max_records: int) -> list[dict]:
        self.calls.append((channel, max_records))
        entries = self._entries.get(channel, [])
        if isinstance(entries, Exception):
            raise entries
        return list(entries)[-max_records:]


@pytest.fixture()
def raw_entries() -> list[dict]:
    """Return 10 well-formed raw entries."""
    return [make_raw_entry(i) for i in range(10)]


@pytest.fixture()
def failing_source_error() -> SourceUnavailable:
    return SourceUnavailable("Security", "access denied")
