"""Battle and period identifier helpers.

Identifiers are plain strings:
    battle_id  YYYYMMDD  (battle start date in official game time)
    month_id   YYYYMM
    year_id    YYYY

A battle belongs to a period when its battle_id starts with the period id.
"""
import calendar
import re
from datetime import date, datetime, timedelta

from flockstats.exceptions import ValidationError

MONTH = 'month'
YEAR = 'year'

# A battle runs two days, followed by one day off
BATTLE_INTERVAL_DAYS = 3
BATTLE_DURATION_DAYS = 2

_BATTLE_ID_RE = re.compile(r'^\d{8}$')
_MONTH_ID_RE = re.compile(r'^\d{6}$')
_YEAR_ID_RE = re.compile(r'^\d{4}$')


def parse_battle_id(battle_id):
    """Parse a battle id into the calendar date it names.

    Args:
        battle_id: YYYYMMDD string

    Returns:
        datetime.date

    Raises:
        ValidationError: wrong shape or not a real date (e.g. 20240230)
    """
    if not isinstance(battle_id, str) or not _BATTLE_ID_RE.match(battle_id):
        raise ValidationError(f"Invalid battle ID format: {battle_id!r} (expected YYYYMMDD)")
    try:
        return datetime.strptime(battle_id, '%Y%m%d').date()
    except ValueError:
        raise ValidationError(f"Invalid date in battle ID: {battle_id}")


def battle_id_from_date(value):
    return value.strftime('%Y%m%d')


def next_battle_id(battle_id):
    """Battle id of the battle scheduled after ``battle_id``."""
    return battle_id_from_date(parse_battle_id(battle_id) + timedelta(days=BATTLE_INTERVAL_DAYS))


def validate_month_id(month_id):
    if not isinstance(month_id, str) or not _MONTH_ID_RE.match(month_id):
        raise ValidationError(f"Invalid month ID format: {month_id!r} (expected YYYYMM)")
    month = int(month_id[4:])
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month in month ID: {month_id}")
    return month_id


def validate_year_id(year_id):
    if not isinstance(year_id, str) or not _YEAR_ID_RE.match(year_id):
        raise ValidationError(f"Invalid year ID format: {year_id!r} (expected YYYY)")
    return year_id


def period_granularity(period_id):
    """Tell month ids from year ids.

    Returns:
        MONTH or YEAR

    Raises:
        ValidationError: neither a valid YYYYMM nor a valid YYYY
    """
    if isinstance(period_id, str) and len(period_id) == 6:
        validate_month_id(period_id)
        return MONTH
    if isinstance(period_id, str) and len(period_id) == 4:
        validate_year_id(period_id)
        return YEAR
    raise ValidationError(f"Invalid period ID: {period_id!r} (expected YYYYMM or YYYY)")


def month_id_from_battle_id(battle_id):
    parse_battle_id(battle_id)
    return battle_id[:6]


def year_id_from_battle_id(battle_id):
    parse_battle_id(battle_id)
    return battle_id[:4]


def month_id_from_date(value):
    return value.strftime('%Y%m')


def month_bounds(month_id):
    """First and last calendar day of a month.

    Returns:
        Tuple of (first_date, last_date)
    """
    validate_month_id(month_id)
    year, month = int(month_id[:4]), int(month_id[4:])
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def months_between(start, end):
    """Every month id from ``start``'s month through ``end``'s month, inclusive."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def parse_id(value, label='ID'):
    """Coerce a numeric identifier (clan, player) to a positive int."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {value!r}")
    if parsed <= 0:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return parsed


def parse_clan_id(value):
    return parse_id(value, 'clan ID')


def parse_date(value, field='date'):
    """Parse an ISO date string (YYYY-MM-DD); None and date objects pass through."""
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {value!r} (expected YYYY-MM-DD)")
