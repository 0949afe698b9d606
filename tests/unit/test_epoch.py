"""Unit tests for epoch timestamp conversion."""

import pytest

from cert_toolkit import epoch
from cert_toolkit.input_guard import InputValidationError, SecurityRejectionError


class TestFormatDetection:
    """Test timestamp unit detection by digit count."""

    @pytest.mark.parametrize("value,expected", [
        ("0", "seconds"),
        ("1700000000", "seconds"),
        ("1700000000000", "milliseconds"),
        ("99999999999", "milliseconds"),
        ("1700000000000000", "microseconds"),
        ("1700000000000000000", "nanoseconds"),
        ("99999999999999999999", "unknown"),
    ])
    def test_detect(self, value, expected):
        assert epoch.detect_timestamp_format(value).format == expected

    def test_ten_digits_past_2100_is_unknown(self):
        assert epoch.detect_timestamp_format("9999999999") is epoch.UNKNOWN


class TestEpochToHuman:
    """Test epoch to human-readable conversion."""

    def test_seconds(self):
        result = epoch.epoch_to_human("1700000000", "utc")

        assert result.format == "Unix Timestamp (seconds)"
        assert result.iso_time == "2023-11-14T22:13:20.000Z"
        assert result.utc_time == "Tue, 14 Nov 2023 22:13:20 GMT"
        assert result.local_time == "11/14/2023, 10:13:20 PM"
        assert result.timezone == "UTC"
        assert result.unix_timestamp == 1700000000
        assert result.js_timestamp == 1700000000000
        assert result.micro_timestamp == 1700000000000000
        assert result.nano_timestamp == 1700000000000000000
        assert result.warning is None

    def test_milliseconds(self):
        result = epoch.epoch_to_human("1700000000123", "UTC")

        assert result.format == "JavaScript Timestamp (milliseconds)"
        assert result.iso_time == "2023-11-14T22:13:20.123Z"
        assert result.unix_timestamp == 1700000000
        assert result.js_timestamp == 1700000000123

    def test_nanoseconds_keep_precision(self):
        result = epoch.epoch_to_human("1700000000123456789", "utc")

        assert result.format == "Nanoseconds Timestamp"
        assert result.js_timestamp == 1700000000123
        assert result.micro_timestamp == 1700000000123456
        assert result.nano_timestamp == 1700000000123456789
        assert result.iso_time == "2023-11-14T22:13:20.123Z"

    def test_zero_is_the_epoch(self):
        result = epoch.epoch_to_human("0", "utc")
        assert result.iso_time == "1970-01-01T00:00:00.000Z"
        assert result.local_time == "1/1/1970, 12:00:00 AM"

    def test_local_timezone_label(self):
        assert epoch.epoch_to_human("1700000000").timezone == "Local Time"

    def test_unknown_format_outside_safe_range(self):
        with pytest.raises(InputValidationError, match="outside safe processing range"):
            epoch.epoch_to_human("99999999999999999999", "utc")

    def test_required(self):
        with pytest.raises(InputValidationError, match="Epoch timestamp is required"):
            epoch.epoch_to_human("  ")

    @pytest.mark.parametrize("value", ["17000abc", "-1", "1.5", "١٢٣"])
    def test_digits_only(self, value):
        with pytest.raises(InputValidationError, match="only numbers"):
            epoch.epoch_to_human(value)

    def test_too_long(self):
        with pytest.raises(SecurityRejectionError):
            epoch.epoch_to_human("1" * 21)

    def test_unknown_timezone(self):
        with pytest.raises(InputValidationError, match="Unknown timezone"):
            epoch.epoch_to_human("1700000000", "Mars/Olympus_Mons")


class TestHumanToEpoch:
    """Test date/time to epoch conversion."""

    def test_with_seconds(self):
        result = epoch.human_to_epoch("2023-11-14", "22:13:20", "utc")

        assert result.unix_timestamp == 1700000000
        assert result.js_timestamp == 1700000000000
        assert result.micro_timestamp == 1700000000000000
        assert result.nano_timestamp == 1700000000000000000
        assert result.iso_time == "2023-11-14T22:13:20.000Z"
        assert result.input_date_time == "2023-11-14 22:13:20"
        assert result.timezone == "UTC"

    def test_without_seconds(self):
        result = epoch.human_to_epoch("2023-11-14", "22:13", "utc")
        assert result.unix_timestamp == 1699999980

    def test_out_of_range_hour_rolls_over(self):
        result = epoch.human_to_epoch("2024-01-01", "25:00", "utc")
        assert result.iso_time == "2024-01-02T01:00:00.000Z"
        assert result.unix_timestamp == 1704157200

    def test_round_trip_through_iso_time(self):
        iso_time = epoch.epoch_to_human("1712345678", "utc").iso_time
        date_part, time_part = iso_time.rstrip("Z").split("T")

        result = epoch.human_to_epoch(date_part, time_part.split(".")[0], "utc")
        assert result.unix_timestamp == 1712345678

    def test_missing_date(self):
        with pytest.raises(InputValidationError, match="Date is required"):
            epoch.human_to_epoch("", "10:00", "utc")

    def test_missing_time(self):
        with pytest.raises(InputValidationError, match="Time is required"):
            epoch.human_to_epoch("2024-01-01", None, "utc")

    def test_unparsable(self):
        with pytest.raises(InputValidationError, match="Invalid date/time format"):
            epoch.human_to_epoch("not-a-date", "10:00", "utc")
