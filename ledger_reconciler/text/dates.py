"""
Date mining from free text.

Dates found in text are returned at 12:00 UTC of the calendar day so that
a timezone shift of a few hours never moves them to another day.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from ledger_reconciler.text.money import normalize_currency_token


DEFAULT_OFFSET_MINUTES = 120

MONTHS_RU = (
    ("январ", 1), ("янв", 1),
    ("феврал", 2), ("фев", 2),
    ("март", 3), ("мар", 3),
    ("апрел", 4), ("апр", 4),
    ("май", 5), ("мая", 5),
    ("июн", 6),
    ("июл", 7),
    ("август", 8), ("авг", 8),
    ("сентябр", 9), ("сен", 9),
    ("октябр", 10), ("окт", 10),
    ("ноябр", 11), ("ноя", 11),
    ("декабр", 12), ("дек", 12),
)

_TODAY_RE = re.compile(r"\b(сегодня|today)\b")
_YESTERDAY_RE = re.compile(r"\b(вчера|yesterday)\b")
_BEFORE_YESTERDAY_RE = re.compile(r"\bпозавчера\b")
_DMY_RE = re.compile(r"\b([0-3]?\d)[./-]([01]?\d)(?:[./-](\d{2,4}))?\b")
_MONTH_TEXT_RE = re.compile(r"\b([0-3]?\d)\s+([а-яa-z]+)(?:\s+(\d{4}))?\b")

# "11.10 TON", "2.5 гривны", "$12.10" are amounts, not dates
_CURRENCY_AFTER_RE = re.compile(r"^\s*([a-zа-яё]+\.?|[$€₴₽£])")
_SYMBOL_BEFORE_RE = re.compile(r"[$€₴₽£]\s*$")

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_FULL_DMY_RE = re.compile(r"\b(\d{1,2})[./](\d{1,2})[./](\d{4})\b")

_FUTURE_INTENT_RE = re.compile(
    r"(завтра|послезавтра|через\s+\d*\s*(?:дн|недел|месяц)|"
    r"на\s+следующ|в\s+следующ|следующ\w+\s+(?:недел|месяц)|"
    r"заплан|предстоящ|tomorrow|next\s+(?:week|month|year)|in\s+\d+\s+days|planned|upcoming)",
    re.IGNORECASE,
)

_TZ_UTC_RE = re.compile(r"^UTC([+-])(\d{1,2})(?::?(\d{2}))?$")
_TZ_SIGNED_RE = re.compile(r"^([+-])(\d{1,2})(?::?(\d{2}))?$")
_TZ_HOURS_RE = re.compile(r"^([+-]?)(\d{1,2})$")


def parse_timezone_offset_minutes(tz: Optional[str]) -> int:
    """
    Parse 'UTC+02:00', '+3', '-0530', '2' into minutes east of UTC.

    Anything unparseable falls back to +120.
    """
    compact = re.sub(r"\s+", "", str(tz or "")).upper()
    if not compact:
        return DEFAULT_OFFSET_MINUTES
    if compact in ("0", "+0", "-0", "UTC", "GMT"):
        return 0

    match = _TZ_UTC_RE.match(compact) or _TZ_SIGNED_RE.match(compact)
    if match:
        sign, hours, minutes = match.group(1), match.group(2), match.group(3)
    else:
        match = _TZ_HOURS_RE.match(compact)
        if not match:
            return DEFAULT_OFFSET_MINUTES
        sign, hours, minutes = match.group(1) or "+", match.group(2), "0"

    hours_n = int(hours)
    minutes_n = int(minutes or 0)
    if hours_n > 14 or minutes_n > 59:
        return DEFAULT_OFFSET_MINUTES
    signed = -1 if sign == "-" else 1
    return signed * (hours_n * 60 + minutes_n)


def noon_utc(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)


def local_today(now: datetime, tz: Optional[str]) -> date:
    """Calendar day of `now` in the user's timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    shifted = now.astimezone(timezone.utc) + timedelta(
        minutes=parse_timezone_offset_minutes(tz)
    )
    return shifted.date()


def _from_parts(day: int, month: int, year: int) -> Optional[datetime]:
    try:
        return noon_utc(date(year, month, day))
    except ValueError:
        return None


def _is_amount(text: str, start: int, end: int) -> bool:
    """A day.month-shaped number written next to a currency."""
    if _SYMBOL_BEFORE_RE.search(text[:start]):
        return True
    after = _CURRENCY_AFTER_RE.match(text[end:])
    return bool(after and normalize_currency_token(after.group(1)))


def _month_from_text(word: str) -> Optional[int]:
    for prefix, month in MONTHS_RU:
        if word.startswith(prefix):
            return month
    return None


def extract_explicit_date(
    text: Optional[str],
    now: datetime,
    tz: Optional[str] = None,
) -> Optional[datetime]:
    """
    Date the user stated in words or digits.

    Handles 'сегодня'/'вчера'/'позавчера', '12.10', '12.10.2026',
    '12/10/26' and '12 октября [2026]'. A day.month without year that is
    followed by a currency word is an amount and yields None.
    """
    lowered = (text or "").strip().lower()
    if not lowered:
        return None

    today = local_today(now, tz)
    if _TODAY_RE.search(lowered):
        return noon_utc(today)
    if _BEFORE_YESTERDAY_RE.search(lowered):
        return noon_utc(today - timedelta(days=2))
    if _YESTERDAY_RE.search(lowered):
        return noon_utc(today - timedelta(days=1))

    for dmy in _DMY_RE.finditer(lowered):
        if not dmy.group(3) and _is_amount(lowered, dmy.start(), dmy.end()):
            continue
        year = today.year
        if dmy.group(3):
            year = int(dmy.group(3))
            if year < 100:
                year += 2000
        return _from_parts(int(dmy.group(1)), int(dmy.group(2)), year)

    month_text = _MONTH_TEXT_RE.search(lowered)
    if month_text:
        month = _month_from_text(month_text.group(2))
        if month is not None:
            year = int(month_text.group(3)) if month_text.group(3) else today.year
            return _from_parts(int(month_text.group(1)), month, year)

    return None


def extract_full_date(text: Optional[str]) -> Optional[datetime]:
    """A complete calendar date anywhere in the text: 2026-10-19 or 19.10.2026."""
    source = text or ""
    iso = _ISO_DATE_RE.search(source)
    if iso:
        found = _from_parts(int(iso.group(3)), int(iso.group(2)), int(iso.group(1)))
        if found:
            return found
    dmy = _FULL_DMY_RE.search(source)
    if dmy:
        return _from_parts(int(dmy.group(1)), int(dmy.group(2)), int(dmy.group(3)))
    return None


def has_future_intent(text: Optional[str]) -> bool:
    """True when the user explicitly talks about a future payment."""
    return bool(_FUTURE_INTENT_RE.search(text or ""))


def same_utc_day(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return False
    return utc_day(a) == utc_day(b)


def utc_day(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).date()
