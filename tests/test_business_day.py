"""
Tests for business day logic.
Verifies the 4 AM cutoff and timezone handling.
"""
from datetime import date, datetime

from marginlens.core.business_day import get_business_date, local_hour, to_local
from marginlens.services.computation import business_day_bounds


class TestBusinessDate:
    """Test business date calculation with 4 AM cutoff."""

    def test_before_4am_previous_day(self):
        """Order at 2:00 AM belongs to previous business day."""
        assert get_business_date(datetime(2024, 1, 2, 2, 0)) == date(2024, 1, 1)

    def test_exactly_4am_same_day(self):
        assert get_business_date(datetime(2024, 1, 2, 4, 0)) == date(2024, 1, 2)

    def test_3_59am_previous_day(self):
        assert get_business_date(datetime(2024, 1, 2, 3, 59)) == date(2024, 1, 1)

    def test_timezone_conversion(self):
        """06:00 UTC is 01:00 EST, still the previous business day in New York."""
        dt = datetime(2024, 1, 2, 6, 0)
        assert get_business_date(dt, "America/New_York") == date(2024, 1, 1)
        assert get_business_date(dt) == date(2024, 1, 2)


class TestLocalTime:

    def test_without_timezone_unchanged(self):
        dt = datetime(2024, 1, 2, 19, 30)
        assert to_local(dt) == dt
        assert local_hour(dt) == 19

    def test_local_hour(self):
        # 23:00 UTC = 04:30 IST next day
        assert local_hour(datetime(2024, 1, 2, 23, 0), "Asia/Kolkata") == 4


class TestBusinessDayBounds:

    def test_utc_bounds(self):
        start, end = business_day_bounds(date(2024, 3, 15))
        assert start == datetime(2024, 3, 15, 4, 0)
        assert end == datetime(2024, 3, 16, 4, 0)

    def test_local_bounds_are_converted_to_utc(self):
        # 04:00 IST = 22:30 UTC the previous evening
        start, end = business_day_bounds(date(2024, 3, 15), "Asia/Kolkata")
        assert start == datetime(2024, 3, 14, 22, 30)
        assert end == datetime(2024, 3, 15, 22, 30)
