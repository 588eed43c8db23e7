from datetime import date, datetime, timedelta, timezone

import pytest

from date_utils import civil_date, parse_date_input, resolve_relative_date, today_in_tz
from errors import ValidationError


def test_civil_date_drops_time():
    assert civil_date(datetime(2024, 3, 1, 23, 59)) == date(2024, 3, 1)
    assert civil_date("2024-03-01T10:00:00Z") == date(2024, 3, 1)
    assert civil_date(date(2024, 3, 1)) == date(2024, 3, 1)


def test_relative_phrases():
    today = today_in_tz("UTC")
    assert resolve_relative_date("Today") == today
    assert resolve_relative_date("tomorrow") == today + timedelta(days=1)
    assert resolve_relative_date("in 3 days") == today + timedelta(days=3)
    assert resolve_relative_date("next week") == today + timedelta(days=7)
    assert resolve_relative_date("someday") is None
    monday = resolve_relative_date("monday")
    assert monday.isoweekday() == 1
    assert 1 <= (monday - today).days <= 7


def test_unknown_timezone_falls_back_to_utc():
    assert today_in_tz("Not/AZone") == today_in_tz("UTC")


class TestParseDateInput:
    def test_plain_date(self):
        assert parse_date_input("2024-02-29", "start_date") == date(2024, 2, 29)

    def test_none_passes_through(self):
        assert parse_date_input(None, "due_at") is None

    def test_timestamp_uses_user_timezone(self):
        # 02:00 UTC on the 2nd is still the 1st in New York
        assert parse_date_input("2024-03-02T02:00:00Z", "start_date", "America/New_York") == date(2024, 3, 1)
        aware = datetime(2024, 3, 2, 2, 0, tzinfo=timezone.utc)
        assert parse_date_input(aware, "start_date", "America/New_York") == date(2024, 3, 1)

    def test_naive_timestamp_keeps_its_date(self):
        assert parse_date_input("2024-03-02T02:00:00", "start_date", "America/New_York") == date(2024, 3, 2)

    @pytest.mark.parametrize("value", ["2024-02-30", "yesterday-ish", 20240301, "   "])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_date_input(value, "due_at")
        assert exc.value.field == "due_at"
