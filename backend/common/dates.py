import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UNCLEAR_DATE_SENTINEL = "Unclear date/time - please rephrase."
ISO_SECONDS_FORMAT = "%Y-%m-%dT%H:%M:%S"
ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")

_TIME_TAG_RE = re.compile(r"<TIME>(.*?)</TIME>", re.IGNORECASE | re.DOTALL)
_FORMATS = (
    "%B %d, %Y, %I:%M %p",
    "%B %d, %Y %I:%M %p",
    "%B %d, %Y, %I %p",
    "%B %d, %Y",
)


class DateFormatError(ValueError):
    """The model answered without a <TIME> tag."""


@dataclass
class DateConversion:
    original_text: str
    formatted: str
    date_time: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalText": self.original_text,
            "formattedDateTime": self.formatted,
            "dateTime": to_utc_iso(self.date_time) if self.date_time else None,
        }


def resolve_timezone(tz_name: Optional[str]) -> tzinfo:
    name = (tz_name or "").strip() or "UTC"
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return timezone.utc


def to_utc_iso(value: datetime) -> str:
    """Millisecond UTC literal, e.g. 2025-04-21T21:00:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_long_datetime(value: datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{value:%B} {value.day}, {value.year}, {hour}:{value:%M} {value:%p}"


def extract_time_tag(text: str) -> str:
    match = _TIME_TAG_RE.search(text or "")
    if not match:
        raise DateFormatError("Invalid response format")
    return match.group(1).strip()


def parse_formatted_datetime(value: str, tz_name: Optional[str] = None) -> Optional[datetime]:
    """Parse "April 21, 2025, 9:00 PM" (optionally zone-suffixed) into an aware datetime.

    Returns None for the unclear sentinel or anything else that does not parse.
    """
    candidate = (value or "").strip().strip('"').strip()
    if not candidate or candidate == UNCLEAR_DATE_SENTINEL:
        return None
    tz = resolve_timezone(tz_name)
    head, _, tail = candidate.rpartition(" ")
    if head and tail and tail.upper() not in {"AM", "PM"} and not tail[:1].isdigit():
        # Trailing zone token, e.g. "UTC" or "America/New_York".
        tz = resolve_timezone(tail)
        candidate = head.rstrip(",").strip()
    for fmt in _FORMATS:
        try:
            parsed = datetime.strptime(candidate, fmt)
        except ValueError:
            continue
        return parsed.replace(tzinfo=tz)
    return None


def build_conversion_prompt(now: datetime, tz_name: str = "UTC", to_utc: bool = False) -> str:
    local_now = now.astimezone(resolve_timezone(tz_name))
    hour = local_now.hour % 12 or 12
    clock = f"{hour}:{local_now:%M} {local_now:%p}"
    lines = [
        "### Convert Relative Time Expressions to Specific Date & Time Strings",
        "",
        f"The current date and time in timezone {tz_name} is {format_long_datetime(local_now)}",
        f"The day of the week is {local_now:%A}",
        f"The month is {local_now:%B}",
        f"The year is {local_now.year}",
        f"The time is {clock}",
        "",
        "### Output Format:",
        '- Date: "Month Day, Year"',
        '- Time: "H:MM AM/PM"' + (" followed by UTC" if to_utc else ""),
        "- If time is not mentioned, default to 9:00 AM.",
        "- Never give dates in the past, only dates in the future.",
        "- Respond only with the time, in this format:",
        "<TIME>April 21, 2025, 9:00 PM" + (" UTC" if to_utc else "") + "</TIME>",
        "",
        "You must use the <TIME></TIME> tag to return the date and time.",
        "Durations like \"in 45 minutes\" or \"in 10 days\" must be added precisely to both date and time.",
        "If the expression crosses midnight, adjust the date accordingly.",
        f'For ambiguous or unsupported expressions (e.g. "soon"), answer <TIME>{UNCLEAR_DATE_SENTINEL}</TIME>',
    ]
    if to_utc:
        lines.insert(-4, f"- Convert the input from {tz_name} to UTC.")
    return "\n".join(lines)


def conversion_from_answer(original_text: str, answer: str, tz_name: Optional[str] = None) -> DateConversion:
    formatted = extract_time_tag(answer)
    parsed = parse_formatted_datetime(formatted, tz_name)
    if parsed is None:
        return DateConversion(original_text=original_text, formatted=UNCLEAR_DATE_SENTINEL, date_time=None)
    return DateConversion(original_text=original_text, formatted=formatted, date_time=parsed)
