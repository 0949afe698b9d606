"""Epoch timestamp detection and conversion."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from email.utils import format_datetime
from fractions import Fraction
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging
import math
import re

from .input_guard import MAX_EPOCH_LENGTH, InputValidationError, SecurityRejectionError

logger = logging.getLogger(__name__)

# 2100-01-01T00:00:00Z
MAX_SECONDS = 4_102_444_800
MAX_MILLISECONDS = 4_102_444_800_000
# Largest integer a JSON/JavaScript number holds exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
SAFE_RANGE_MESSAGE = "Timestamp value is outside safe processing range"
UNKNOWN_FORMAT_WARNING = "Could not detect timestamp format. Treating as Unix seconds."


@dataclass(frozen=True)
class TimestampFormat:
    """Detected timestamp unit and its scale to milliseconds."""

    format: str
    display_name: str
    scale: Fraction

    @property
    def multiplier(self) -> float:
        return float(self.scale)


SECONDS = TimestampFormat("seconds", "Unix Timestamp (seconds)", Fraction(1000))
MILLISECONDS = TimestampFormat("milliseconds", "JavaScript Timestamp (milliseconds)", Fraction(1))
MICROSECONDS = TimestampFormat("microseconds", "Microseconds Timestamp", Fraction(1, 1000))
NANOSECONDS = TimestampFormat("nanoseconds", "Nanoseconds Timestamp", Fraction(1, 1_000_000))
UNKNOWN = TimestampFormat("unknown", "Unknown Format (treating as seconds)", Fraction(1000))


@dataclass
class EpochConversion:
    """Epoch value rendered in human-readable and alternative-unit forms."""

    input: str
    format: str
    local_time: str
    utc_time: str
    iso_time: str
    unix_timestamp: int
    js_timestamp: int
    micro_timestamp: int
    nano_timestamp: int
    timezone: str
    warning: Optional[str] = None


@dataclass
class HumanConversion:
    """Epoch values for a human-entered date and time."""

    input_date_time: str
    timezone: str
    iso_time: str
    unix_timestamp: int
    js_timestamp: int
    micro_timestamp: int
    nano_timestamp: int


def detect_timestamp_format(value: str) -> TimestampFormat:
    """
    Guess the unit of an epoch timestamp from its digit count and magnitude.

    Non-digit characters are ignored.
    """
    digits = re.sub(r"\D", "", value)
    if not digits:
        return UNKNOWN

    length = len(digits)
    number = int(digits)

    if length <= 10:
        if 0 <= number <= MAX_SECONDS:
            return SECONDS
    elif 11 <= length <= 13:
        if 0 <= number <= MAX_MILLISECONDS:
            return MILLISECONDS
    elif 14 <= length <= 16:
        return MICROSECONDS
    elif 17 <= length <= 19:
        return NANOSECONDS

    if 1_000_000_000 <= number <= MAX_SECONDS:
        return SECONDS
    if 1_000_000_000_000 <= number <= MAX_MILLISECONDS:
        return MILLISECONDS
    return UNKNOWN


def resolve_timezone(name: Optional[str]) -> Tuple[Optional[tzinfo], str]:
    """
    Map a timezone selector to a tzinfo and display label.

    ``local`` (or nothing) returns None, meaning the server's local zone.
    """
    if not name or name.lower() == "local":
        return None, "Local Time"
    if name.lower() == "utc":
        return timezone.utc, "UTC"
    try:
        return ZoneInfo(name), name
    except (ZoneInfoNotFoundError, ValueError):
        raise InputValidationError(f"Unknown timezone: {name}")


def format_local_time(moment: datetime) -> str:
    """Render e.g. ``11/14/2023, 10:13:20 PM``."""
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return (
        f"{moment.month}/{moment.day}/{moment.year}, "
        f"{hour}:{moment.minute:02d}:{moment.second:02d} {meridiem}"
    )


def format_iso_time(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    moment = moment.astimezone(timezone.utc)
    return f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}Z"


def _validate_epoch_input(timestamp: Optional[str]) -> str:
    if timestamp is None or not str(timestamp).strip():
        raise InputValidationError(
            "Epoch timestamp is required",
            details="Example: 1698765432 for Unix timestamp",
        )
    value = str(timestamp).strip()
    if len(value) > MAX_EPOCH_LENGTH:
        raise SecurityRejectionError(
            "Epoch timestamp is too long. Maximum allowed length is 20 digits."
        )
    if not value.isdigit() or not value.isascii():
        raise InputValidationError("Epoch timestamp must contain only numbers (0-9).")
    return value


def epoch_to_human(timestamp: Optional[str], tz_name: Optional[str] = None) -> EpochConversion:
    """
    Convert an epoch timestamp of any supported unit to human-readable forms.

    Args:
        timestamp: Digits only, at most 20 characters
        tz_name: "local", "utc" or an IANA zone used for ``local_time``

    Returns:
        EpochConversion

    Raises:
        InputValidationError: On invalid input or values outside the safe range
    """
    value = _validate_epoch_input(timestamp)
    zone, zone_label = resolve_timezone(tz_name)
    detected = detect_timestamp_format(value)

    js_exact = int(value) * detected.scale
    if js_exact > MAX_SAFE_INTEGER:
        raise InputValidationError(SAFE_RANGE_MESSAGE)

    try:
        moment = EPOCH + timedelta(microseconds=math.floor(js_exact * 1000))
    except OverflowError:
        raise InputValidationError(SAFE_RANGE_MESSAGE)

    if not 1900 <= moment.year <= 2200:
        logger.warning(f"Timestamp {value} converts to unusual year {moment.year}")

    local_moment = moment.astimezone(zone)
    logger.info(f"Converted epoch {value} detected as {detected.format}")

    return EpochConversion(
        input=value,
        format=detected.display_name,
        local_time=format_local_time(local_moment),
        utc_time=format_datetime(moment, usegmt=True),
        iso_time=format_iso_time(moment),
        unix_timestamp=math.floor(js_exact / 1000),
        js_timestamp=math.floor(js_exact),
        micro_timestamp=math.floor(js_exact * 1000),
        nano_timestamp=math.floor(js_exact * 1_000_000),
        timezone=zone_label,
        warning=UNKNOWN_FORMAT_WARNING if detected is UNKNOWN else None,
    )


def _leading_int(text: str) -> int:
    match = re.match(r"\s*(\d+)", text)
    return int(match.group(1)) if match else 0


def parse_date_time(date_text: str, time_text: str) -> Optional[datetime]:
    """
    Parse separate date and time fields.

    Tries ISO ``T``-joined and space-joined forms (with and without seconds),
    then falls back to building the value field by field. Out-of-range time
    fields roll over into the next unit.

    Returns:
        A naive datetime (or aware, if the input carried an offset), or None
    """
    candidates = (
        f"{date_text}T{time_text}",
        f"{date_text} {time_text}",
        f"{date_text}T{time_text}:00",
        f"{date_text} {time_text}:00",
    )
    for candidate in candidates:
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            continue

    try:
        base = datetime.fromisoformat(f"{date_text}T00:00:00")
    except ValueError:
        return None

    parts = time_text.split(":")
    if len(parts) < 2:
        return None

    seconds = _leading_int(parts[2]) if len(parts) > 2 else 0
    try:
        return base + timedelta(
            hours=_leading_int(parts[0]),
            minutes=_leading_int(parts[1]),
            seconds=seconds,
        )
    except OverflowError:
        return None


def human_to_epoch(
    date_text: Optional[str],
    time_text: Optional[str],
    tz_name: Optional[str] = None,
) -> HumanConversion:
    """
    Convert a date and time to epoch values.

    Args:
        date_text: Date, e.g. 2024-03-04
        time_text: Time, e.g. 08:30 or 08:30:15
        tz_name: "local", "utc" or an IANA zone the wall-clock time is in

    Raises:
        InputValidationError: If date or time is missing or cannot be parsed
    """
    if date_text is None or not date_text.strip():
        raise InputValidationError("Date is required")
    if time_text is None or not time_text.strip():
        raise InputValidationError("Time is required")

    date_text = date_text.strip()
    time_text = time_text.strip()
    zone, zone_label = resolve_timezone(tz_name)

    parsed = parse_date_time(date_text, time_text)
    if parsed is None:
        raise InputValidationError(
            "Invalid date/time format",
            details=f"Date format: {date_text}, Time format: {time_text}",
        )

    if parsed.tzinfo is None:
        # astimezone() on a naive value treats it as server local time
        moment = parsed.astimezone() if zone is None else parsed.replace(tzinfo=zone)
    else:
        moment = parsed

    js_timestamp = (moment - EPOCH) // timedelta(milliseconds=1)
    logger.info(f"Converted {date_text} {time_text} ({zone_label}) to epoch")

    return HumanConversion(
        input_date_time=f"{date_text} {time_text}",
        timezone=zone_label,
        iso_time=format_iso_time(moment),
        unix_timestamp=js_timestamp // 1000,
        js_timestamp=js_timestamp,
        micro_timestamp=js_timestamp * 1000,
        nano_timestamp=js_timestamp * 1_000_000,
    )
