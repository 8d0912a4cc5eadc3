from datetime import datetime, time

import pytest

from booking_engine.utils.time_utils import format_hhmm, is_valid_range, parse_hhmm, time_to_minutes


class TestTimeToMinutes:
    def test_regular(self):
        assert time_to_minutes(time(9, 30)) == 570

    def test_midnight_start_is_zero(self):
        assert time_to_minutes(time(0, 0)) == 0

    def test_midnight_end_is_end_of_day(self):
        assert time_to_minutes(time(0, 0), is_end_time=True) == 1440


class TestRanges:
    def test_forward_range(self):
        assert is_valid_range(time(9), time(10)) is True

    def test_empty_and_inverted(self):
        assert is_valid_range(time(9), time(9)) is False
        assert is_valid_range(time(10), time(9)) is False

    def test_until_midnight(self):
        assert is_valid_range(time(22), time(0)) is True


class TestHhmm:
    @pytest.mark.parametrize(
        "raw, expected",
        [("07:30", time(7, 30)), ("07:30:00", time(7, 30)), (" 18:05 ", time(18, 5)), ("24:00", time(0, 0))],
    )
    def test_parse(self, raw, expected):
        assert parse_hhmm(raw) == expected

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_hhmm("7pm")

    def test_format(self):
        assert format_hhmm(time(7, 5)) == "07:05"
        assert format_hhmm(datetime(2026, 3, 2, 18, 0)) == "18:00"
