"""Tests for recurrence dates."""

from datetime import date

import pytest

from fairshare.models.expense import RecurrenceInterval
from fairshare.recurrence import next_occurrence


class TestNextOccurrence:
    """Tests for next_occurrence."""

    @pytest.mark.parametrize("interval,expected", [
        (RecurrenceInterval.DAILY, date(2024, 3, 16)),
        (RecurrenceInterval.WEEKLY, date(2024, 3, 22)),
        (RecurrenceInterval.MONTHLY, date(2024, 4, 15)),
        (RecurrenceInterval.YEARLY, date(2025, 3, 15)),
    ])
    def test_one_step(self, interval, expected):
        """Test each interval advances by exactly one unit."""
        assert next_occurrence(date(2024, 3, 15), interval) == expected

    def test_accepts_plain_strings(self):
        """Test that interval values work without the enum."""
        assert next_occurrence(date(2024, 3, 15), "monthly") == date(2024, 4, 15)

    def test_month_end_clamps(self):
        """Test Jan 31 moves to the end of February."""
        assert next_occurrence(date(2023, 1, 31), "monthly") == date(2023, 2, 28)
        assert next_occurrence(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
        assert next_occurrence(date(2024, 3, 31), "monthly") == date(2024, 4, 30)

    def test_leap_day_yearly(self):
        """Test Feb 29 moves to Feb 28 the next year."""
        assert next_occurrence(date(2024, 2, 29), "yearly") == date(2025, 2, 28)

    def test_year_rollover(self):
        """Test daily and monthly steps across the year boundary."""
        assert next_occurrence(date(2024, 12, 31), "daily") == date(2025, 1, 1)
        assert next_occurrence(date(2024, 12, 15), "monthly") == date(2025, 1, 15)

    def test_unknown_interval(self):
        """Test that unknown intervals are rejected."""
        with pytest.raises(ValueError):
            next_occurrence(date(2024, 3, 15), "fortnightly")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
