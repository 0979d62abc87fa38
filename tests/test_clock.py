"""
Tests for clocks and batch timestamps.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from budget_ledger.ledger import BatchStamper, FixedClock, format_timestamp, parse_timestamp, period_of
from budget_ledger.ledger.clock import effective_trigger_day


class TestBatchStamper:
    """Timestamps must be unique per run, even with a stalled clock."""

    def test_stamp_format(self):
        clock = FixedClock(datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc))
        assert BatchStamper(clock).next() == "2024-01-02T10:00:00.000000Z"

    def test_stuck_clock_still_gives_increasing_stamps(self):
        """Two runs in the same instant get distinct, ordered stamps."""
        clock = FixedClock(datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc))
        stamper = BatchStamper(clock)

        first = stamper.next()
        second = stamper.next()

        assert first != second
        assert parse_timestamp(second) - parse_timestamp(first) == timedelta(microseconds=1)

    def test_clock_going_backwards(self):
        clock = FixedClock(datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc))
        stamper = BatchStamper(clock)
        first = stamper.next()

        clock.advance(hours=-1)
        second = stamper.next()

        assert parse_timestamp(second) > parse_timestamp(first)

    def test_observe_existing_timestamps(self):
        """Stamps issued after a load sort after what the ledger already holds."""
        clock = FixedClock(datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc))
        stamper = BatchStamper(clock)
        stamper.observe("2024-06-01T00:00:00Z")
        stamper.observe("not a timestamp")
        stamper.observe(None)

        assert stamper.next() == "2024-06-01T00:00:00.000001Z"

    def test_advancing_clock_is_used_as_is(self):
        clock = FixedClock(datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc))
        stamper = BatchStamper(clock)
        stamper.next()
        clock.advance(seconds=5)
        assert stamper.next() == "2024-01-02T10:00:05.000000Z"


class TestTimestampParsing:

    def test_parse_zulu_suffix(self):
        parsed = parse_timestamp("2024-01-01T10:00:00Z")
        assert parsed == datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)

    def test_parse_offset_is_normalised_to_utc(self):
        parsed = parse_timestamp("2024-01-01T12:00:00+02:00")
        assert parsed == datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_naive_is_utc(self):
        parsed = parse_timestamp("2024-01-01T10:00:00")
        assert parsed.tzinfo is not None
        assert parsed.hour == 10

    @pytest.mark.parametrize("raw", ["", "   ", "yesterday", "2024-13-01T00:00:00Z", None, 12])
    def test_parse_garbage_returns_none(self, raw):
        assert parse_timestamp(raw) is None

    def test_format_then_parse(self):
        moment = datetime(2024, 3, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(moment)) == moment

    def test_format_naive_treated_as_utc(self):
        assert format_timestamp(datetime(2024, 3, 1, 9, 0)) == "2024-03-01T09:00:00.000000Z"


class TestCalendarHelpers:

    def test_period_of(self):
        assert period_of(date(2024, 3, 9)) == "2024-03"
        assert period_of(datetime(2023, 12, 31, 23, 59)) == "2023-12"

    @pytest.mark.parametrize(
        "trigger_day, as_of, expected",
        [
            (31, date(2024, 2, 10), 29),  # leap year
            (31, date(2023, 2, 10), 28),
            (31, date(2024, 4, 1), 30),
            (31, date(2024, 5, 1), 31),
            (15, date(2024, 2, 1), 15),
        ],
    )
    def test_effective_trigger_day(self, trigger_day, as_of, expected):
        assert effective_trigger_day(trigger_day, as_of) == expected

    def test_fixed_clock_today(self):
        clock = FixedClock(datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc))
        assert clock.today() == date(2024, 1, 15)
        clock.set_time(datetime(2024, 2, 1, 0, 0))
        assert clock.today() == date(2024, 2, 1)
