import pytest
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from crewslot.utils.timeutils import LocalTime, parse_datetime_flexible, parse_time_to_minutes, to_iso, to_local

TZ = "America/Los_Angeles"


class TestLocalConversion:
    def test_monday_morning(self, at):
        assert to_local(at(2025, 3, 3, 9, 30), TZ) == LocalTime(1, 570)

    def test_sunday_is_zero(self, at):
        assert to_local(at(2025, 3, 2, 0, 0), TZ).weekday == 0

    def test_utc_instant_converted(self):
        instant = datetime(2025, 3, 3, 17, 30, tzinfo=timezone.utc)
        assert to_local(instant, TZ) == LocalTime(1, 570)
        assert to_local(instant, "America/New_York") == LocalTime(1, 750)

    def test_to_iso_uses_target_offset(self, at):
        assert to_iso(at(2025, 3, 3, 9, 0), TZ) == "2025-03-03T09:00:00-08:00"
        assert to_iso(at(2025, 3, 3, 9, 0), "UTC") == "2025-03-03T17:00:00+00:00"


class TestFlexibleParsing:
    """Requested times arrive in many shapes from forms and voice agents."""

    def test_ymd_24h(self, at):
        assert parse_datetime_flexible("2025-03-04 14:30", TZ) == at(2025, 3, 4, 14, 30)

    def test_ymd_meridiem(self, at):
        assert parse_datetime_flexible("2025-03-04 2:30 pm", TZ) == at(2025, 3, 4, 14, 30)

    def test_mdy_meridiem(self, at):
        assert parse_datetime_flexible("3/4/2025 2:30pm", TZ) == at(2025, 3, 4, 14, 30)

    def test_bare_dates_use_default_hour(self, at):
        assert parse_datetime_flexible("2025-03-04", TZ) == at(2025, 3, 4, 9, 0)
        assert parse_datetime_flexible("3/4/2025", TZ, default_hour=8) == at(2025, 3, 4, 8, 0)

    def test_iso_with_zone(self, at):
        assert parse_datetime_flexible("2025-03-04T22:30:00Z", TZ) == at(2025, 3, 4, 14, 30)
        assert parse_datetime_flexible("2025-03-04T14:30:00-08:00", TZ) == at(2025, 3, 4, 14, 30)

    def test_free_text(self, at):
        now = at(2025, 3, 1, 8, 0)
        assert parse_datetime_flexible("March 4th 2pm", TZ, now=now) == at(2025, 3, 4, 14, 0)
        assert parse_datetime_flexible("4 march 2025 14:30", TZ, now=now) == at(2025, 3, 4, 14, 30)
        assert parse_datetime_flexible("Mar. 10, 2025", TZ, now=now) == at(2025, 3, 10, 9, 0)

    def test_free_text_without_year_rolls_forward(self, at):
        now = at(2025, 3, 1, 8, 0)
        assert parse_datetime_flexible("January 5th", TZ, now=now) == at(2026, 1, 5, 9, 0)

    def test_datetime_and_date_objects(self, at):
        assert parse_datetime_flexible(datetime(2025, 3, 4, 14, 30), TZ) == at(2025, 3, 4, 14, 30)
        aware = datetime(2025, 3, 4, 22, 30, tzinfo=timezone.utc)
        assert parse_datetime_flexible(aware, TZ) is aware
        assert parse_datetime_flexible(date(2025, 3, 4), TZ) == at(2025, 3, 4, 9, 0)

    def test_result_is_in_requested_zone(self):
        parsed = parse_datetime_flexible("2025-03-04 14:30", "America/Chicago")
        assert parsed.tzinfo == ZoneInfo("America/Chicago")

    def test_month_abbreviations(self, at):
        now = at(2025, 3, 1, 8, 0)
        assert parse_datetime_flexible("Sept 4 2025 10am", TZ, now=now) == at(2025, 9, 4, 10, 0)
        assert parse_datetime_flexible("janu 5 2026", TZ, now=now) == at(2026, 1, 5, 9, 0)

    @pytest.mark.parametrize("value", ["marching 4th 2pm", "decade 5 2025", "junk 12 2025"])
    def test_words_that_start_like_months_are_ignored(self, value, at):
        assert parse_datetime_flexible(value, TZ, now=at(2025, 3, 1, 8, 0)) is None

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", "2025-02-30", "13/45/2025", "someday soon"])
    def test_unparseable_returns_none(self, value):
        assert parse_datetime_flexible(value, TZ) is None


class TestTimeOfDay:
    @pytest.mark.parametrize("value,expected", [
        ("09:00", 540),
        ("17:30", 1050),
        ("5pm", 1020),
        ("9 am", 540),
        ("12am", 0),
        ("12pm", 720),
        ("12:30 PM", 750),
    ])
    def test_valid(self, value, expected):
        assert parse_time_to_minutes(value) == expected

    @pytest.mark.parametrize("value", [None, "", "25:00", "13pm", "0am", "noon", "9"])
    def test_invalid(self, value):
        assert parse_time_to_minutes(value) is None
