"""
Date-time normalization, formatting and the date method table.

Every date value inside the engine is a timezone-aware datetime. Values
enter through to_datetime, which tries, in order:

    1. aware datetime            passthrough
    2. naive datetime / date     default zone (UTC) applied
    3. ISO-8601                  "2024-01-15", "2024-01-15T10:30:00.000Z"
    4. HTTP-date                 "Sun, 06 Nov 1994 08:49:37 GMT"
    5. RFC 2822                  "Tue, 15 Jan 2024 10:30:00 +0100"
    6. SQL timestamp             "2024-01-15 10:30:00", "2024-01-15 10:30:00.123"
    7. epoch milliseconds        1705314600000, "1705314600000"

The first form that parses wins; otherwise InvalidDateError(input).

Method names and format tokens follow Luxon (DateTime.toFormat) since that
is what workflow authors write; $formatDate accepts Moment-style tokens.
"""

from __future__ import annotations

import calendar
import datetime as dt
import email.utils
import math
import re
from collections.abc import Callable, Mapping
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import EvaluationError, InvalidDateError
from ..resolver.values import (
    UNDEFINED,
    HostObject,
    MissingMember,
    is_nullish,
    is_number,
    is_undefined,
    to_integer,
    to_number,
    to_string,
)
from .registry import MethodTable

methods = MethodTable("date")

UTC = dt.timezone.utc

MONTH_NAMES = [calendar.month_name[i] for i in range(1, 13)]
MONTH_ABBR = [calendar.month_abbr[i] for i in range(1, 13)]
WEEKDAY_NAMES = [calendar.day_name[i] for i in range(7)]  # Monday first
WEEKDAY_ABBR = [calendar.day_abbr[i] for i in range(7)]

_HTTP_DATE_RE = re.compile(
    r"^(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun), \d{2} "
    r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec) \d{4} \d{2}:\d{2}:\d{2} GMT$"
)
_SQL_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)
_EPOCH_RE = re.compile(r"^-?\d+(?:\.\d+)?$")

_MS_PER_UNIT = {
    "millisecond": 1,
    "second": 1000,
    "minute": 60 * 1000,
    "hour": 60 * 60 * 1000,
    "day": 24 * 60 * 60 * 1000,
    "week": 7 * 24 * 60 * 60 * 1000,
    "month": 30 * 24 * 60 * 60 * 1000,
    "quarter": 91 * 24 * 60 * 60 * 1000,
    "year": 365 * 24 * 60 * 60 * 1000,
}


def normalize_unit(unit: Any) -> str:
    name = to_string(unit).strip()
    lowered = name.lower().rstrip("s") if name.lower() != "ms" else "millisecond"
    if lowered in _MS_PER_UNIT:
        return lowered
    raise EvaluationError(
        f"Invalid unit: {name}",
        description=f"Valid units: {', '.join(u + 's' for u in _MS_PER_UNIT)}",
    )


# =============================================================================
# Normalization
# =============================================================================


def from_epoch(ms: int | float) -> dt.datetime:
    if isinstance(ms, bool) or not math.isfinite(ms):
        raise InvalidDateError(ms)
    try:
        return dt.datetime(1970, 1, 1, tzinfo=UTC) + dt.timedelta(milliseconds=ms)
    except OverflowError as e:
        raise InvalidDateError(ms) from e


def _from_iso(text: str) -> dt.datetime | None:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = dt.datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _from_http(text: str) -> dt.datetime | None:
    if not _HTTP_DATE_RE.match(text):
        return None
    try:
        return dt.datetime.strptime(text, "%a, %d %b %Y %H:%M:%S GMT").replace(tzinfo=UTC)
    except ValueError:
        return None


def _from_rfc2822(text: str) -> dt.datetime | None:
    try:
        parsed = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _from_sql(text: str) -> dt.datetime | None:
    for fmt in _SQL_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def to_datetime(value: Any) -> dt.datetime:
    """Normalize a value into an aware datetime (see module docstring for order)."""
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text:
            for parser in (_from_iso, _from_http, _from_rfc2822, _from_sql):
                parsed = parser(text)
                if parsed is not None:
                    return parsed
            if _EPOCH_RE.match(text):
                return from_epoch(float(text))
        raise InvalidDateError(value)
    if is_number(value):
        return from_epoch(value)
    raise InvalidDateError(value if not is_undefined(value) else "undefined")


def to_millis(value: dt.datetime) -> int:
    delta = value - dt.datetime(1970, 1, 1, tzinfo=UTC)
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000


def _offset_text(value: dt.datetime, colon: bool = True) -> str:
    offset = value.utcoffset() or dt.timedelta(0)
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{mins:02d}" if colon else f"{sign}{hours:02d}{mins:02d}"


def to_iso(value: dt.datetime) -> str:
    """ISO-8601 with millisecond precision; "Z" for a zero offset."""
    base = value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}"
    offset = value.utcoffset()
    if not offset:
        return base + "Z"
    return base + _offset_text(value)


def zone_name(value: dt.datetime) -> str:
    tz = value.tzinfo
    if isinstance(tz, ZoneInfo):
        return tz.key
    if tz is None or value.utcoffset() == dt.timedelta(0):
        return "UTC"
    return f"UTC{_offset_text(value)}"


def get_zone(name: Any) -> dt.tzinfo:
    zone = to_string(name)
    if zone.lower() in ("utc", "gmt", "z", "local", "system"):
        return UTC
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise EvaluationError(f"Invalid time zone: {zone}") from e


# =============================================================================
# Arithmetic
# =============================================================================


def _add_months(value: dt.datetime, months: int) -> dt.datetime:
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    if not 1 <= year <= 9999:
        raise EvaluationError("Date out of range")
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def shift(value: dt.datetime, amount: Any, unit: Any = UNDEFINED, sign: int = 1) -> dt.datetime:
    """plus/minus with a duration object ({days: 1}) or a number plus unit."""
    if isinstance(amount, Mapping):
        parts = {normalize_unit(k): to_number(v) for k, v in amount.items()}
    elif isinstance(amount, Duration):
        parts = {"millisecond": amount.total_ms}
    elif is_number(amount):
        parts = {normalize_unit("millisecond" if is_undefined(unit) else unit): amount}
    else:
        raise EvaluationError(f"Invalid duration: {to_string(amount)}")

    result = value
    try:
        for name, count in parts.items():
            if math.isnan(count) or math.isinf(count):
                raise EvaluationError(f"Invalid duration amount for {name}s")
            if name in ("year", "quarter", "month"):
                months = {"year": 12, "quarter": 3, "month": 1}[name] * count
                whole = int(months)
                result = _add_months(result, sign * whole)
                if months != whole:
                    result += dt.timedelta(days=sign * (months - whole) * 30)
            else:
                result += dt.timedelta(milliseconds=sign * count * _MS_PER_UNIT[name])
    except OverflowError as e:
        raise EvaluationError("Date out of range") from e
    return result


def start_of(value: dt.datetime, unit: Any) -> dt.datetime:
    name = normalize_unit(unit)
    if name == "millisecond":
        return value.replace(microsecond=value.microsecond // 1000 * 1000)
    result = value.replace(microsecond=0)
    if name == "second":
        return result
    result = result.replace(second=0)
    if name == "minute":
        return result
    result = result.replace(minute=0)
    if name == "hour":
        return result
    result = result.replace(hour=0)
    if name == "day":
        return result
    if name == "week":
        return result - dt.timedelta(days=result.weekday())
    if name == "month":
        return result.replace(day=1)
    if name == "quarter":
        return result.replace(month=(result.month - 1) // 3 * 3 + 1, day=1)
    return result.replace(month=1, day=1)


def end_of(value: dt.datetime, unit: Any) -> dt.datetime:
    name = normalize_unit(unit)
    begin = start_of(value, name)
    if name in ("year", "quarter", "month"):
        following = _add_months(begin, {"year": 12, "quarter": 3, "month": 1}[name])
    else:
        following = begin + dt.timedelta(milliseconds=_MS_PER_UNIT[name])
    return following - dt.timedelta(milliseconds=1)


class Duration(HostObject):
    """Result of DateTime.diff: a length of time exposed Luxon-style."""

    js_type = "object"

    def __init__(self, total_ms: int | float, units: tuple[str, ...] = ("millisecond",)):
        self.total_ms = total_ms
        self.units = units

    def as_unit(self, unit: Any) -> float:
        name = normalize_unit(unit)
        amount = self.total_ms / _MS_PER_UNIT[name]
        return int(amount) if float(amount).is_integer() else amount

    def to_object(self) -> dict[str, int | float]:
        return {f"{u}s": self.as_unit(u) for u in self.units}

    def to_iso(self) -> str:
        seconds = self.total_ms / 1000
        text = f"{int(seconds)}" if float(seconds).is_integer() else f"{seconds:g}"
        return f"PT{text}S"

    def js_member(self, name: str) -> Any:
        unit = name.rstrip("s") if name != "ms" else "millisecond"
        if unit in _MS_PER_UNIT:
            return self.as_unit(unit)
        members: dict[str, Callable[..., Any]] = {
            "as": self.as_unit,
            "toMillis": lambda: self.total_ms,
            "toISO": self.to_iso,
            "toObject": self.to_object,
            "toString": self.to_iso,
        }
        if name in members:
            return members[name]
        return MissingMember(name=name, obj=self)

    def js_plain(self) -> Any:
        return self.to_iso()


def diff(value: dt.datetime, other: Any, unit: Any = UNDEFINED) -> Duration:
    total = to_millis(value) - to_millis(to_datetime(other))
    if is_undefined(unit):
        units: tuple[str, ...] = ("millisecond",)
    elif isinstance(unit, (list, tuple)):
        units = tuple(normalize_unit(u) for u in unit)
    else:
        units = (normalize_unit(unit),)
    return Duration(total, units)


# =============================================================================
# Formatting
# =============================================================================

_LUXON_TOKEN_RE = re.compile(
    r"'[^']*'|yyyy|yy|y|LLLL|LLL|LL|L|MMMM|MMM|MM|M|dd|d|ooo|o|cccc|ccc|c|EEEE|EEE|E"
    r"|HH|H|hh|h|mm|m|ss|s|SSS|S|a|ZZZ|ZZ|Z|z|qq|q|kkkk|kk|WW|W|X|x"
)
_MOMENT_TOKEN_RE = re.compile(
    r"\[[^\]]*\]|YYYY|YY|MMMM|MMM|MM|M|DDDD|DDD|DD|Do|D|dddd|ddd|d|HH|H|hh|h|mm|m|ss|s|SSS|A|a|ZZ|Z|X|x"
)


def _hour12(value: dt.datetime) -> int:
    return value.hour % 12 or 12


def _ordinal(n: int) -> str:
    suffix = "th" if 10 <= n % 100 <= 20 else {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _luxon_token(value: dt.datetime, token: str) -> str:
    iso_year, iso_week, iso_weekday = value.isocalendar()
    table: dict[str, Callable[[], Any]] = {
        "yyyy": lambda: f"{value.year:04d}",
        "yy": lambda: f"{value.year % 100:02d}",
        "y": lambda: value.year,
        "LLLL": lambda: MONTH_NAMES[value.month - 1],
        "LLL": lambda: MONTH_ABBR[value.month - 1],
        "LL": lambda: f"{value.month:02d}",
        "L": lambda: value.month,
        "MMMM": lambda: MONTH_NAMES[value.month - 1],
        "MMM": lambda: MONTH_ABBR[value.month - 1],
        "MM": lambda: f"{value.month:02d}",
        "M": lambda: value.month,
        "dd": lambda: f"{value.day:02d}",
        "d": lambda: value.day,
        "ooo": lambda: f"{value.timetuple().tm_yday:03d}",
        "o": lambda: value.timetuple().tm_yday,
        "cccc": lambda: WEEKDAY_NAMES[value.weekday()],
        "ccc": lambda: WEEKDAY_ABBR[value.weekday()],
        "c": lambda: iso_weekday,
        "EEEE": lambda: WEEKDAY_NAMES[value.weekday()],
        "EEE": lambda: WEEKDAY_ABBR[value.weekday()],
        "E": lambda: iso_weekday,
        "HH": lambda: f"{value.hour:02d}",
        "H": lambda: value.hour,
        "hh": lambda: f"{_hour12(value):02d}",
        "h": lambda: _hour12(value),
        "mm": lambda: f"{value.minute:02d}",
        "m": lambda: value.minute,
        "ss": lambda: f"{value.second:02d}",
        "s": lambda: value.second,
        "SSS": lambda: f"{value.microsecond // 1000:03d}",
        "S": lambda: value.microsecond // 1000,
        "a": lambda: "AM" if value.hour < 12 else "PM",
        "ZZZ": lambda: _offset_text(value, colon=False),
        "ZZ": lambda: _offset_text(value),
        "Z": lambda: _short_offset(value),
        "z": lambda: zone_name(value),
        "qq": lambda: f"{(value.month - 1) // 3 + 1:02d}",
        "q": lambda: (value.month - 1) // 3 + 1,
        "kkkk": lambda: f"{iso_year:04d}",
        "kk": lambda: f"{iso_year % 100:02d}",
        "WW": lambda: f"{iso_week:02d}",
        "W": lambda: iso_week,
        "X": lambda: to_millis(value) // 1000,
        "x": lambda: to_millis(value),
    }
    return str(table[token]())


def _short_offset(value: dt.datetime) -> str:
    text = _offset_text(value)
    hours, minutes = text[1:].split(":")
    short = str(int(hours)) + (f":{minutes}" if minutes != "00" else "")
    return text[0] + short


def to_format(value: dt.datetime, fmt: Any) -> str:
    """Luxon toFormat: tokens replaced, quoted text kept verbatim."""
    pattern = to_string(fmt)

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("'"):
            return token[1:-1] if len(token) > 2 else "'"
        return _luxon_token(value, token)

    return _LUXON_TOKEN_RE.sub(replace, pattern)


def format_moment(value: dt.datetime, fmt: str) -> str:
    """Moment-style format used by $formatDate (YYYY-MM-DD HH:mm:ss)."""

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.startswith("["):
            return token[1:-1]
        mapping: dict[str, Callable[[], Any]] = {
            "YYYY": lambda: f"{value.year:04d}",
            "YY": lambda: f"{value.year % 100:02d}",
            "MMMM": lambda: MONTH_NAMES[value.month - 1],
            "MMM": lambda: MONTH_ABBR[value.month - 1],
            "MM": lambda: f"{value.month:02d}",
            "M": lambda: value.month,
            "DDDD": lambda: f"{value.timetuple().tm_yday:03d}",
            "DDD": lambda: value.timetuple().tm_yday,
            "DD": lambda: f"{value.day:02d}",
            "Do": lambda: _ordinal(value.day),
            "D": lambda: value.day,
            "dddd": lambda: WEEKDAY_NAMES[value.weekday()],
            "ddd": lambda: WEEKDAY_ABBR[value.weekday()],
            "d": lambda: (value.weekday() + 1) % 7,
            "HH": lambda: f"{value.hour:02d}",
            "H": lambda: value.hour,
            "hh": lambda: f"{_hour12(value):02d}",
            "h": lambda: _hour12(value),
            "mm": lambda: f"{value.minute:02d}",
            "m": lambda: value.minute,
            "ss": lambda: f"{value.second:02d}",
            "s": lambda: value.second,
            "SSS": lambda: f"{value.microsecond // 1000:03d}",
            "A": lambda: "AM" if value.hour < 12 else "PM",
            "a": lambda: "am" if value.hour < 12 else "pm",
            "ZZ": lambda: _offset_text(value, colon=False),
            "Z": lambda: _offset_text(value),
            "X": lambda: to_millis(value) // 1000,
            "x": lambda: to_millis(value),
        }
        return str(mapping[token]())

    return _MOMENT_TOKEN_RE.sub(replace, fmt)


_STRPTIME_TOKENS = {
    "yyyy": "%Y",
    "yy": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "dd": "%d",
    "d": "%d",
    "HH": "%H",
    "H": "%H",
    "hh": "%I",
    "h": "%I",
    "mm": "%M",
    "m": "%M",
    "ss": "%S",
    "s": "%S",
    "SSS": "%f",
    "a": "%p",
    "EEEE": "%A",
    "EEE": "%a",
    "ZZ": "%z",
    "ZZZ": "%z",
}


def parse_format(text: Any, fmt: Any) -> dt.datetime:
    """DateTime.fromFormat for the common Luxon tokens."""
    source, pattern = to_string(text), to_string(fmt)
    parts: list[str] = []
    last = 0
    for match in _LUXON_TOKEN_RE.finditer(pattern):
        parts.append(pattern[last : match.start()].replace("%", "%%"))
        token = match.group(0)
        if token.startswith("'"):
            parts.append(token[1:-1].replace("%", "%%"))
        elif token in _STRPTIME_TOKENS:
            parts.append(_STRPTIME_TOKENS[token])
        else:
            raise EvaluationError(f"Unsupported token in fromFormat: {token}")
        last = match.end()
    parts.append(pattern[last:].replace("%", "%%"))
    try:
        parsed = dt.datetime.strptime(source, "".join(parts))
    except ValueError as e:
        raise InvalidDateError(source) from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def to_locale_string(value: dt.datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}, {_hour12(value)}:{value.minute:02d}:{value.second:02d} {'AM' if value.hour < 12 else 'PM'}"


# =============================================================================
# Properties
# =============================================================================


@methods.property("year", "Calendar year", "$today.year // 2024", "number")
def year(value: dt.datetime) -> int:
    return value.year


@methods.property("month", "Month of the year (1-12)", returns="number")
def month(value: dt.datetime) -> int:
    return value.month


@methods.property("day", "Day of the month", returns="number")
def day(value: dt.datetime) -> int:
    return value.day


@methods.property("hour", "Hour of the day (0-23)", returns="number")
def hour(value: dt.datetime) -> int:
    return value.hour


@methods.property("minute", "Minute of the hour", returns="number")
def minute(value: dt.datetime) -> int:
    return value.minute


@methods.property("second", "Second of the minute", returns="number")
def second(value: dt.datetime) -> int:
    return value.second


@methods.property("millisecond", "Millisecond of the second", returns="number")
def millisecond(value: dt.datetime) -> int:
    return value.microsecond // 1000


@methods.property("weekday", "ISO day of the week (1 = Monday, 7 = Sunday)", returns="number")
def weekday(value: dt.datetime) -> int:
    return value.isoweekday()


@methods.property("weekdayLong", "Name of the day of the week", returns="string")
def weekday_long(value: dt.datetime) -> str:
    return WEEKDAY_NAMES[value.weekday()]


@methods.property("weekdayShort", "Abbreviated day of the week", returns="string")
def weekday_short(value: dt.datetime) -> str:
    return WEEKDAY_ABBR[value.weekday()]


@methods.property("monthLong", "Name of the month", returns="string")
def month_long(value: dt.datetime) -> str:
    return MONTH_NAMES[value.month - 1]


@methods.property("monthShort", "Abbreviated month name", returns="string")
def month_short(value: dt.datetime) -> str:
    return MONTH_ABBR[value.month - 1]


@methods.property("ordinal", "Day of the year", returns="number")
def ordinal(value: dt.datetime) -> int:
    return value.timetuple().tm_yday


@methods.property("weekNumber", "ISO week number", returns="number")
def week_number(value: dt.datetime) -> int:
    return value.isocalendar()[1]


@methods.property("quarter", "Quarter of the year (1-4)", returns="number")
def quarter(value: dt.datetime) -> int:
    return (value.month - 1) // 3 + 1


@methods.property("daysInMonth", "Number of days in the month", returns="number")
def days_in_month(value: dt.datetime) -> int:
    return calendar.monthrange(value.year, value.month)[1]


@methods.property("isInLeapYear", "Whether the year is a leap year", returns="boolean")
def is_in_leap_year(value: dt.datetime) -> bool:
    return calendar.isleap(value.year)


@methods.property("isWeekend", "Whether the day is Saturday or Sunday", "$now.isWeekend", "boolean")
def is_weekend(value: dt.datetime) -> bool:
    return value.weekday() >= 5


@methods.property("zoneName", "IANA zone name", returns="string")
def zone_name_(value: dt.datetime) -> str:
    return zone_name(value)


@methods.property("offset", "UTC offset in minutes", returns="number")
def offset(value: dt.datetime) -> int:
    delta = value.utcoffset() or dt.timedelta(0)
    return int(delta.total_seconds() // 60)


@methods.property("isValid", "Always true for normalized dates", returns="boolean")
def is_valid(value: dt.datetime) -> bool:
    return True


# =============================================================================
# Methods
# =============================================================================


@methods.method("plus(duration, unit?)", "Adds a duration ({days: 1}) or an amount of unit", "$now.plus({days: 7})", returns="date")
def plus(value: dt.datetime, amount: Any, unit: Any = UNDEFINED) -> dt.datetime:
    return shift(value, amount, unit, sign=1)


@methods.method("minus(duration, unit?)", "Subtracts a duration or an amount of unit", "$now.minus(2, \"hours\")", returns="date")
def minus(value: dt.datetime, amount: Any, unit: Any = UNDEFINED) -> dt.datetime:
    return shift(value, amount, unit, sign=-1)


@methods.method("startOf(unit)", "Start of the year, quarter, month, week, day, hour, minute or second", '$now.startOf("month")', returns="date")
def start_of_(value: dt.datetime, unit: Any) -> dt.datetime:
    return start_of(value, unit)


@methods.method("endOf(unit)", "Last millisecond of the unit", '$today.endOf("year")', returns="date")
def end_of_(value: dt.datetime, unit: Any) -> dt.datetime:
    return end_of(value, unit)


@methods.method("set(values)", "Copy with fields replaced ({year, month, day, hour, ...})", returns="date")
def set_(value: dt.datetime, values: Any) -> dt.datetime:
    if not isinstance(values, Mapping):
        raise EvaluationError("set() expects an object such as {hour: 9}")
    fields = {"millisecond": "microsecond"}
    changes: dict[str, int] = {}
    for key, raw in values.items():
        name = normalize_unit(key)
        amount = to_integer(raw)
        if name == "millisecond":
            amount *= 1000
        changes[fields.get(name, name)] = amount
    try:
        return value.replace(**changes)
    except (TypeError, ValueError) as e:
        raise EvaluationError(f"Invalid date fields: {e}") from e


@methods.method("diff(other, unit?)", "Duration between the dates", '$now.diff($today, "hours").hours', returns="object")
def diff_(value: dt.datetime, other: Any, unit: Any = UNDEFINED) -> Duration:
    return diff(value, other, unit)


@methods.method("diffTo(other, unit?)", "Difference in unit (default days) as a number", '$today.diffTo("2024-12-25", "days")', returns="number")
def diff_to(value: dt.datetime, other: Any, unit: Any = "days") -> int | float:
    name = "day" if is_undefined(unit) else normalize_unit(unit)
    return diff(to_datetime(other), value, name).as_unit(name)


@methods.method("hasSame(other, unit)", "Whether both dates fall in the same unit", returns="boolean")
def has_same(value: dt.datetime, other: Any, unit: Any) -> bool:
    other_date = to_datetime(other).astimezone(value.tzinfo)
    return start_of(value, unit) == start_of(other_date, unit)


@methods.method("equals(other)", "Whether both dates denote the same instant", returns="boolean")
def equals(value: dt.datetime, other: Any) -> bool:
    return to_millis(value) == to_millis(to_datetime(other))


@methods.method("isBetween(start, end)", "Whether the date lies strictly between start and end", returns="boolean")
def is_between(value: dt.datetime, start: Any, end: Any) -> bool:
    low, high = sorted((to_millis(to_datetime(start)), to_millis(to_datetime(end))))
    return low < to_millis(value) < high


@methods.method("toISO()", "ISO-8601 string", '$now.toISO() // "2024-01-15T10:30:00.000Z"', aliases=("toISOString", "toJSON"), returns="string")
def to_iso_(value: dt.datetime) -> str:
    return to_iso(value)


@methods.method("toISODate()", "ISO calendar date (yyyy-MM-dd)", returns="string")
def to_iso_date(value: dt.datetime) -> str:
    return value.date().isoformat()


@methods.method("toISOTime()", "ISO time with offset", returns="string")
def to_iso_time(value: dt.datetime) -> str:
    return to_iso(value).split("T", 1)[1]


@methods.method("toFormat(format)", "Formats with Luxon tokens", '$now.toFormat("yyyy-MM-dd HH:mm")', aliases=("format",), returns="string")
def to_format_(value: dt.datetime, fmt: Any) -> str:
    return to_format(value, fmt)


@methods.method("toLocaleString()", "Human readable date and time", returns="string")
def to_locale_string_(value: dt.datetime) -> str:
    return to_locale_string(value)


@methods.method("toString()", "ISO-8601 string", returns="string")
def to_string_(value: dt.datetime) -> str:
    return to_iso(value)


@methods.method("toMillis()", "Epoch milliseconds", aliases=("valueOf", "getTime"), returns="number")
def to_millis_(value: dt.datetime) -> int:
    return to_millis(value)


@methods.method("toSeconds()", "Epoch seconds (fractional)", returns="number")
def to_seconds(value: dt.datetime) -> int | float:
    ms = to_millis(value)
    return ms // 1000 if ms % 1000 == 0 else ms / 1000


@methods.method("toUnixInteger()", "Epoch seconds, truncated", returns="number")
def to_unix_integer(value: dt.datetime) -> int:
    return to_millis(value) // 1000


@methods.method("toUTC()", "Same instant in UTC", aliases=("toLocal",), returns="date")
def to_utc(value: dt.datetime) -> dt.datetime:
    return value.astimezone(UTC)


@methods.method("setZone(zone)", "Same instant in an IANA zone", '$now.setZone("America/New_York")', returns="date")
def set_zone(value: dt.datetime, zone: Any) -> dt.datetime:
    return value.astimezone(get_zone(zone))


@methods.method("toDateTime()", "The date itself", returns="date")
def to_date_time(value: dt.datetime) -> dt.datetime:
    return value


@methods.method("getFullYear()", "Calendar year", returns="number")
def get_full_year(value: dt.datetime) -> int:
    return value.year


@methods.method("getMonth()", "Zero-based month (0 = January)", returns="number")
def get_month(value: dt.datetime) -> int:
    return value.month - 1


@methods.method("getDate()", "Day of the month", returns="number")
def get_date(value: dt.datetime) -> int:
    return value.day


@methods.method("getDay()", "Day of the week (0 = Sunday)", returns="number")
def get_day(value: dt.datetime) -> int:
    return (value.weekday() + 1) % 7


@methods.method("getHours()", "Hour of the day", returns="number")
def get_hours(value: dt.datetime) -> int:
    return value.hour


@methods.method("getMinutes()", "Minute of the hour", returns="number")
def get_minutes(value: dt.datetime) -> int:
    return value.minute


@methods.method("getSeconds()", "Second of the minute", returns="number")
def get_seconds(value: dt.datetime) -> int:
    return value.second


@methods.method("getMilliseconds()", "Millisecond of the second", returns="number")
def get_milliseconds(value: dt.datetime) -> int:
    return value.microsecond // 1000


def format_date(value: Any, fmt: Any = "YYYY-MM-DD", now: dt.datetime | None = None) -> str:
    """$formatDate(value, format): Moment tokens, current time when value is empty."""
    pattern = "YYYY-MM-DD" if is_nullish(fmt) else to_string(fmt)
    if is_nullish(value) or value == "" or value == 0:
        moment = now or dt.datetime.now(UTC)
    else:
        moment = to_datetime(value)
    return format_moment(moment, pattern)
