"""Tests for recurrence normalization and next-occurrence calculation."""
from datetime import date, datetime, timedelta

import pytest

from errors import ValidationError
from recurrence import (
    ALL_DAYS_MASK,
    RecurrenceSpec,
    mask_for_weekdays,
    merge_recurrence,
    next_occurrence_date,
    normalize_recurrence,
    series_id_of,
    upcoming_occurrences,
    weekday_bit,
    weekday_from_mask,
    weekdays_in_mask,
)

WEDNESDAY = date(2024, 3, 6)


def _dates(start: date, days: int):
    return [start + timedelta(days=i) for i in range(days)]


class TestWeekdayMasks:
    def test_weekday_bits(self):
        assert weekday_bit(1) == 1
        assert weekday_bit(7) == 64
        assert mask_for_weekdays([1, 2, 3, 4, 5, 6, 7]) == ALL_DAYS_MASK
        assert weekdays_in_mask(0b0010101) == [1, 3, 5]

    def test_weekday_from_mask_only_for_single_day(self):
        assert weekday_from_mask(weekday_bit(3)) == 3
        assert weekday_from_mask(0b11) is None
        assert weekday_from_mask(0) is None
        assert weekday_from_mask(None) is None
        assert weekday_from_mask(128) is None

    def test_mask_for_weekdays_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            mask_for_weekdays([0])


class TestNormalizeRecurrence:
    def test_disabled_clears_everything(self):
        spec = normalize_recurrence(False, "weekly", 4, 3, 12, WEDNESDAY)
        assert spec == RecurrenceSpec.disabled()
        assert spec.as_columns() == {
            "repeat_enabled": False,
            "repeat_pattern": None,
            "repeat_days": None,
            "repeat_weekly_day": None,
            "repeat_monthly_day": None,
        }

    @pytest.mark.parametrize("pattern", [None, "", "yearly", 3])
    def test_invalid_pattern(self, pattern):
        with pytest.raises(ValidationError) as exc:
            normalize_recurrence(True, pattern, None, None, None, WEDNESDAY)
        assert exc.value.field == "repeat_pattern"
        assert "daily" in str(exc.value)

    def test_pattern_is_case_insensitive(self):
        assert normalize_recurrence(True, " Daily ", None, None, None, WEDNESDAY).repeat_pattern == "daily"

    def test_daily_defaults_to_every_day(self):
        spec = normalize_recurrence(True, "daily", None, 5, 9, WEDNESDAY)
        assert spec.repeat_days == ALL_DAYS_MASK
        assert spec.repeat_weekly_day is None
        assert spec.repeat_monthly_day is None

    @pytest.mark.parametrize("mask", [0, 128, -1])
    def test_daily_mask_out_of_range(self, mask):
        with pytest.raises(ValidationError) as exc:
            normalize_recurrence(True, "daily", mask, None, None, WEDNESDAY)
        assert exc.value.field == "repeat_days"
        assert "127" in str(exc.value)

    def test_daily_rejects_non_integer_mask(self):
        with pytest.raises(ValidationError) as exc:
            normalize_recurrence(True, "daily", "5", None, None, WEDNESDAY)
        assert exc.value.field == "repeat_days"

    def test_weekly_explicit_day_wins(self):
        spec = normalize_recurrence(True, "weekly", weekday_bit(1), 5, None, WEDNESDAY)
        assert spec.repeat_weekly_day == 5
        assert spec.repeat_days == weekday_bit(5)
        assert spec.repeat_monthly_day is None

    def test_weekly_day_from_single_bit_mask(self):
        spec = normalize_recurrence(True, "weekly", weekday_bit(2), None, None, WEDNESDAY)
        assert spec.repeat_weekly_day == 2

    def test_weekly_day_from_reference_date(self):
        spec = normalize_recurrence(True, "weekly", None, None, None, WEDNESDAY)
        assert spec.repeat_weekly_day == 3
        assert spec.repeat_days == weekday_bit(3)

    def test_weekly_multi_day_mask_falls_back_to_reference(self):
        spec = normalize_recurrence(True, "weekly", 0b11, None, None, WEDNESDAY)
        assert spec.repeat_weekly_day == 3

    @pytest.mark.parametrize("day", [0, 8])
    def test_weekly_day_out_of_range(self, day):
        with pytest.raises(ValidationError) as exc:
            normalize_recurrence(True, "weekly", None, day, None, WEDNESDAY)
        assert exc.value.field == "repeat_weekly_day"

    def test_monthly_defaults_to_reference_day(self):
        spec = normalize_recurrence(True, "monthly", 7, 2, None, date(2024, 1, 31))
        assert spec.repeat_monthly_day == 31
        assert spec.repeat_days is None
        assert spec.repeat_weekly_day is None

    @pytest.mark.parametrize("day", [0, 32])
    def test_monthly_day_out_of_range(self, day):
        with pytest.raises(ValidationError) as exc:
            normalize_recurrence(True, "monthly", None, None, day, WEDNESDAY)
        assert exc.value.field == "repeat_monthly_day"

    def test_merge_prefers_new_values(self):
        existing = {
            "repeat_enabled": True,
            "repeat_pattern": "weekly",
            "repeat_days": weekday_bit(3),
            "repeat_weekly_day": 3,
            "repeat_monthly_day": None,
        }
        spec = merge_recurrence(existing, {"repeat_pattern": "monthly", "repeat_weekly_day": None}, date(2024, 5, 17))
        assert spec.repeat_pattern == "monthly"
        assert spec.repeat_monthly_day == 17

    def test_merge_keeps_existing_when_absent(self):
        existing = {"repeat_enabled": True, "repeat_pattern": "daily", "repeat_days": 0b11111}
        assert merge_recurrence(existing, {}, WEDNESDAY).repeat_days == 0b11111


class TestNextOccurrenceDate:
    @pytest.mark.parametrize("pattern", ["daily", "weekly", "monthly"])
    def test_always_strictly_after_base(self, pattern):
        for base in _dates(date(2023, 12, 1), 120):
            assert next_occurrence_date(base, pattern) > base

    def test_daily_matches_mask_and_is_first_match(self):
        for mask in (1, 0b0011111, 0b1100000, 0b1010101, ALL_DAYS_MASK, 64):
            for base in _dates(date(2024, 2, 20), 21):
                result = next_occurrence_date(base, "daily", mask)
                assert mask & weekday_bit(result.isoweekday())
                d = base + timedelta(days=1)
                while d < result:
                    assert not mask & weekday_bit(d.isoweekday())
                    d += timedelta(days=1)

    def test_daily_null_mask_is_every_day(self):
        assert next_occurrence_date(date(2024, 3, 1), "daily", None) == date(2024, 3, 2)

    def test_daily_weekdays_only_skips_weekend(self):
        friday = date(2024, 3, 8)
        assert next_occurrence_date(friday, "daily", 0b0011111) == date(2024, 3, 11)

    def test_weekly_lands_on_target_within_a_week(self):
        for target in range(1, 8):
            for base in _dates(date(2024, 3, 1), 14):
                result = next_occurrence_date(base, "weekly", None, target)
                assert result.isoweekday() == target
                assert 1 <= (result - base).days <= 7

    def test_weekly_same_weekday_is_next_week(self):
        assert next_occurrence_date(WEDNESDAY, "weekly", None, 3) == WEDNESDAY + timedelta(days=7)

    def test_weekly_target_from_mask_then_base(self):
        assert next_occurrence_date(WEDNESDAY, "weekly", weekday_bit(5)) == date(2024, 3, 8)
        assert next_occurrence_date(WEDNESDAY, "weekly") == date(2024, 3, 13)

    @pytest.mark.parametrize(
        "base, day, expected",
        [
            (date(2024, 1, 31), 31, date(2024, 2, 29)),
            (date(2023, 1, 31), 31, date(2023, 2, 28)),
            (date(2024, 3, 31), 31, date(2024, 4, 30)),
            (date(2024, 12, 15), 15, date(2025, 1, 15)),
            (date(2024, 1, 5), 20, date(2024, 2, 20)),
            (date(2024, 2, 29), None, date(2024, 3, 29)),
        ],
    )
    def test_monthly(self, base, day, expected):
        assert next_occurrence_date(base, "monthly", None, None, day) == expected

    def test_time_of_day_is_ignored(self):
        assert next_occurrence_date(datetime(2024, 3, 1, 23, 59), "daily") == date(2024, 3, 2)

    def test_unknown_pattern(self):
        with pytest.raises(ValidationError):
            next_occurrence_date(WEDNESDAY, "hourly")

    def test_upcoming_occurrences(self):
        spec = normalize_recurrence(True, "monthly", None, None, 31, date(2024, 1, 31))
        assert upcoming_occurrences(date(2024, 1, 31), spec, 3) == [
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]
        assert upcoming_occurrences(date(2024, 1, 31), RecurrenceSpec.disabled(), 3) == []


def test_series_id_of():
    assert series_id_of({"id": "a", "series_id": None}) == "a"
    assert series_id_of({"id": "b", "series_id": "a"}) == "a"
