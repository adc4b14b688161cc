"""Render timestamps with a compact, PHP ``date()`` style template.

Each recognised character in the template is replaced by a component of the
instant, every other character is copied unchanged::

    >>> format_time("Y-m-d H:i:s", datetime.datetime(2024, 2, 12, 15, 19, 21))
    '2024-02-12 15:19:21'

Supported codes: ``Y y m n d j z H G h g i s A a u v w W N D l t F M O P T Z
c r U``.  The codes ``S L o B e I`` from PHP are not implemented and are
emitted literally.  Month and weekday names are always English regardless of
the process locale.
"""
from __future__ import annotations

import calendar
import datetime as _dt
from typing import Callable, Dict, Optional

_WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def _hour12(t: _dt.datetime) -> int:
    return t.hour % 12 or 12


def _local_zone(t: _dt.datetime) -> Optional[_dt.datetime]:
    # Naive instants take the offset of the local zone at that wall-clock
    # time; dates outside the platform's time_t range have none.
    try:
        return t.astimezone()
    except (OverflowError, ValueError, OSError):
        return None


def _offset_seconds(t: _dt.datetime) -> int:
    if t.tzinfo is None:
        local = _local_zone(t)
        return _offset_seconds(local) if local is not None else 0
    offset = t.utcoffset()
    if offset is None:
        return 0
    return int(offset.total_seconds())


def _zone_name(t: _dt.datetime) -> str:
    if t.tzinfo is None:
        local = _local_zone(t)
        if local is None:
            return "UTC"
        t = local
    return t.tzname() or ""


def _offset(t: _dt.datetime, separator: str = "") -> str:
    seconds = _offset_seconds(t)
    sign = "-" if seconds < 0 else "+"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{sign}{hours:02d}{separator}{minutes:02d}"


def _iso8601(t: _dt.datetime) -> str:
    return (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d}"
        f"T{t.hour:02d}:{t.minute:02d}:{t.second:02d}{_offset(t, ':')}"
    )


def _rfc2822(t: _dt.datetime) -> str:
    return (
        f"{_WEEKDAY_NAMES[t.weekday()][:3]}, {t.day} {_MONTH_NAMES[t.month - 1][:3]} {t.year:04d} "
        f"{t.hour:02d}:{t.minute:02d}:{t.second:02d} {_offset(t)}"
    )


_UNIX_EPOCH = _dt.datetime(1970, 1, 1)


def _epoch(t: _dt.datetime) -> int:
    return (t.replace(tzinfo=None) - _UNIX_EPOCH) // _dt.timedelta(seconds=1) - _offset_seconds(t)


_CODES: Dict[str, Callable[[_dt.datetime], str]] = {
    "Y": lambda t: str(t.year),
    "y": lambda t: f"{t.year % 100:02d}",
    "m": lambda t: f"{t.month:02d}",
    "n": lambda t: str(t.month),
    "d": lambda t: f"{t.day:02d}",
    "j": lambda t: str(t.day),
    "z": lambda t: str(t.timetuple().tm_yday - 1),
    "H": lambda t: f"{t.hour:02d}",
    "G": lambda t: str(t.hour),
    "h": lambda t: f"{_hour12(t):02d}",
    "g": lambda t: str(_hour12(t)),
    "i": lambda t: f"{t.minute:02d}",
    "s": lambda t: f"{t.second:02d}",
    "A": lambda t: "PM" if t.hour >= 12 else "AM",
    "a": lambda t: "pm" if t.hour >= 12 else "am",
    "u": lambda t: str(t.microsecond),
    "v": lambda t: str(t.microsecond // 1000),
    "w": lambda t: str(t.isoweekday() % 7),
    "W": lambda t: str(t.isocalendar()[1]),
    "N": lambda t: str(t.isoweekday()),
    "D": lambda t: _WEEKDAY_NAMES[t.weekday()][:3],
    "l": lambda t: _WEEKDAY_NAMES[t.weekday()],
    "t": lambda t: str(calendar.monthrange(t.year, t.month)[1]),
    "F": lambda t: _MONTH_NAMES[t.month - 1],
    "M": lambda t: _MONTH_NAMES[t.month - 1][:3],
    "O": _offset,
    "P": lambda t: _offset(t, ":"),
    "T": _zone_name,
    "Z": lambda t: str(_offset_seconds(t)),
    "c": _iso8601,
    "r": _rfc2822,
    "U": lambda t: str(_epoch(t)),
}

# Frequently used templates rendered without walking the code table.
_FAST_PATHS: Dict[str, Callable[[_dt.datetime], str]] = {
    "Y": lambda t: str(t.year),
    "Y-m-d": lambda t: f"{t.year}-{t.month:02d}-{t.day:02d}",
    "Y-m-d H:i:s": lambda t: f"{t.year}-{t.month:02d}-{t.day:02d} {t.hour:02d}:{t.minute:02d}:{t.second:02d}",
    "Y/m/d H:i:s": lambda t: f"{t.year}/{t.month:02d}/{t.day:02d} {t.hour:02d}:{t.minute:02d}:{t.second:02d}",
    "Ymd": lambda t: f"{t.year}{t.month:02d}{t.day:02d}",
    "Ym": lambda t: f"{t.year}{t.month:02d}",
    "Hi": lambda t: f"{t.hour:02d}{t.minute:02d}",
    "His": lambda t: f"{t.hour:02d}{t.minute:02d}{t.second:02d}",
}


def format_time(template: str, instant: Optional[_dt.datetime] = None) -> str:
    """Render ``instant`` (default: now, local time) according to ``template``.

    A naive ``instant`` is rendered from its own fields and is taken as local
    time only by the timezone codes (``O P T Z c r U``).  When the local zone
    cannot be resolved for it those codes fall back to UTC.
    """

    if instant is None:
        instant = _dt.datetime.now()

    fast = _FAST_PATHS.get(template)
    if fast is not None:
        return fast(instant)

    parts = []
    for char in template:
        render = _CODES.get(char)
        parts.append(render(instant) if render is not None else char)
    return "".join(parts)


def format_epoch(template: str, epoch_seconds: int, tz: Optional[_dt.tzinfo] = None) -> str:
    """Render a Unix timestamp; local time unless ``tz`` is given.

    The timestamp must fall within the years ``datetime`` can hold (1 to
    9999), otherwise ``datetime.fromtimestamp`` raises ``ValueError`` or
    ``OverflowError``.
    """

    return format_time(template, _dt.datetime.fromtimestamp(epoch_seconds, tz))
