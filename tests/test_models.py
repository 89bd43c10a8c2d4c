"""Tests for record normalization."""

import json
from datetime import datetime, timezone

import pytest

from conftest import make_raw_entry
from eventlog_exporter.errors import RecordUnreadable
from eventlog_exporter.models import (
    INT32_MAX,
    INT32_MIN,
    LogRecord,
    build_batch,
    clamp_int32,
    normalize_entry,
    parse_timestamp,
)


class TestParseTimestamp:
    def test_iso_with_z_suffix(self):
        ts = parse_timestamp("2024-01-15T10:30:00.123456Z")
        assert ts == datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

    def test_seven_fraction_digits_truncated(self):
        ts = parse_timestamp("2024-01-15T10:30:00.1234567Z")
        assert ts.microsecond == 123456

    def test_offset_converted_to_utc(self):
        ts = parse_timestamp("2024-01-15T12:30:00+02:00")
        assert ts == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_naive_datetime_taken_as_utc(self):
        ts = parse_timestamp(datetime(2024, 1, 15, 10, 30))
        assert ts.tzinfo == timezone.utc
        assert ts.hour == 10

    def test_powershell_date_literal(self):
        ts = parse_timestamp("/Date(1705314600000)/")
        assert ts == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        ts = parse_timestamp(1705314600)
        assert ts == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_evtx_text_form(self):
        ts = parse_timestamp({"#text": "2024-01-15T10:30:00Z"})
        assert ts.year == 2024

    def test_evtx_header_timestamp(self):
        ts = parse_timestamp("2024-01-15 10:30:00.000000 UTC")
        assert ts == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            parse_timestamp("not a time")


class TestClampInt32:
    def test_in_range_unchanged(self):
        assert clamp_int32(4624) == 4624
        assert clamp_int32(-5) == -5

    def test_overflow_clamped(self):
        assert clamp_int32(2 ** 40) == INT32_MAX
        assert clamp_int32(-(2 ** 40)) == INT32_MIN


class TestNormalizeEntry:
    def test_well_formed_entry(self):
        record = normalize_entry(make_raw_entry(3))
        assert isinstance(record, LogRecord)
        assert record.event_id == 7003
        assert record.provider_name == "Service Control Manager"
        assert record.message == "Event 3"
        assert record.timestamp.tzinfo == timezone.utc

    def test_missing_provider_defaults_to_empty(self):
        raw = make_raw_entry(0)
        del raw["ProviderName"]
        assert normalize_entry(raw).provider_name == ""

    def test_provider_attribute_form(self):
        raw = make_raw_entry(0, provider={"#attributes": {"Name": "EventLog"}})
        assert normalize_entry(raw).provider_name == "EventLog"

    def test_missing_message_is_none(self):
        raw = make_raw_entry(0, message=None)
        assert normalize_entry(raw).message is None

    def test_empty_message_kept_distinct_from_missing(self):
        raw = make_raw_entry(0, message="")
        assert normalize_entry(raw).message == ""

    def test_render_failure_swallowed(self):
        def broken():
            raise RuntimeError("message DLL missing")

        raw = make_raw_entry(0, message=broken)
        assert normalize_entry(raw).message is None

    def test_lazy_message_rendered(self):
        raw = make_raw_entry(0, message=lambda: "rendered")
        assert normalize_entry(raw).message == "rendered"

    def test_string_and_hex_ids(self):
        assert normalize_entry({**make_raw_entry(0), "Id": "4624"}).event_id == 4624
        assert normalize_entry({**make_raw_entry(0), "Id": "0x10"}).event_id == 16
        assert normalize_entry({**make_raw_entry(0), "Id": {"#text": 41}}).event_id == 41

    def test_out_of_range_id_clamped(self):
        raw = {**make_raw_entry(0), "Id": 2 ** 33}
        assert normalize_entry(raw).event_id == INT32_MAX

    @pytest.mark.parametrize("raw", [
        None,
        "a string",
        {"Id": 1},
        {"TimeCreated": "2024-01-15T10:30:00Z"},
        {"TimeCreated": "yesterday", "Id": 1},
        {"TimeCreated": "2024-01-15T10:30:00Z", "Id": "abc"},
        {"TimeCreated": "2024-01-15T10:30:00Z", "Id": None},
    ])
    def test_unreadable_entries(self, raw):
        with pytest.raises(RecordUnreadable):
            normalize_entry(raw)


class TestBuildBatch:
    def test_keeps_order(self, raw_entries):
        batch = build_batch("Application", raw_entries)
        assert len(batch) == 10
        assert [r.event_id for r in batch.records] == list(range(7000, 7010))
        assert batch.skipped == 0

    def test_counts_and_drops_unreadable(self, raw_entries):
        entries = raw_entries[:3] + [{"Id": 1}, "junk"] + raw_entries[3:5]
        batch = build_batch("System", entries)
        assert len(batch) == 5
        assert batch.skipped == 2
        assert batch.channel == "System"

    def test_empty_input(self):
        batch = build_batch("Setup", [])
        assert len(batch) == 0
        assert batch.skipped == 0


class TestUnencodableText:
    def test_lone_surrogate_in_message_replaced(self):
        raw = make_raw_entry(0, message=json.loads('"broken \\ud800 text"'))
        record = normalize_entry(raw)
        assert record.message == "broken ? text"
        record.message.encode("utf-8")

    def test_lone_surrogate_in_provider_replaced(self):
        raw = make_raw_entry(0, provider={"#attributes": {"Name": "Svc\udc80"}})
        assert normalize_entry(raw).provider_name == "Svc?"

    def test_valid_unicode_untouched(self):
        raw = make_raw_entry(0, message="Dienst gestartet ✓", provider="Überwachung")
        record = normalize_entry(raw)
        assert record.message == "Dienst gestartet ✓"
        assert record.provider_name == "Überwachung"
