"""Service layer for the global battle schedule calendar.

The calendar is shared by every clan and changes a few times a week at most,
so lookups go through Flask-Caching. Timestamps are naive datetimes in
official game time.
"""
from datetime import datetime, timedelta

from loguru import logger

from flockstats.exceptions import ConflictError
from flockstats.extensions import cache, db
from flockstats.models import MasterBattle
from flockstats.services import audit_service
from flockstats.services.periods import (
    BATTLE_DURATION_DAYS,
    battle_id_from_date,
    next_battle_id,
    parse_battle_id,
)

CALENDAR_CACHE_TIMEOUT = 3600


def _calendar_cache_key(battle_id):
    return f"MasterBattle:battle_id:{battle_id}"


def battle_id_exists(battle_id):
    """Look up a battle id in the schedule calendar.

    Args:
        battle_id: YYYYMMDD string (validated by the caller)

    Returns:
        Dict with 'start' and 'end' datetimes, or None when not scheduled
    """
    cache_key = _calendar_cache_key(battle_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    entry = db.session.get(MasterBattle, battle_id)
    if entry is None:
        return None

    result = {'start': entry.start_timestamp, 'end': entry.end_timestamp}
    cache.set(cache_key, result, timeout=CALENDAR_CACHE_TIMEOUT)
    return result


def battle_window(battle_id):
    """Start and end timestamps of a battle starting on the date ``battle_id`` names."""
    start_date = parse_battle_id(battle_id)
    start = datetime(start_date.year, start_date.month, start_date.day)
    end = start + timedelta(days=BATTLE_DURATION_DAYS) - timedelta(seconds=1)
    return start, end


def add_battle_date(battle_id=None, actor_id=None, notes=None):
    """Add a calendar entry.

    Args:
        battle_id: YYYYMMDD start date. Defaults to the battle after the
            latest scheduled one.
        actor_id: Who scheduled it
        notes: Free text

    Returns:
        The new MasterBattle

    Raises:
        ValidationError: malformed battle id
        ConflictError: battle id already scheduled
    """
    if battle_id is None:
        battle_id = next_scheduled_battle_id()
    start, end = battle_window(battle_id)

    if db.session.get(MasterBattle, battle_id) is not None:
        raise ConflictError(f"Battle {battle_id} already exists", battle_id=battle_id)

    entry = MasterBattle(
        battle_id=battle_id,
        start_timestamp=start,
        end_timestamp=end,
        created_by=actor_id,
        notes=notes
    )
    try:
        db.session.add(entry)
        audit_service.record(
            actor_id,
            audit_service.MASTER_BATTLE_CREATED,
            audit_service.MASTER_BATTLE,
            battle_id,
            details={'start': start.isoformat(), 'end': end.isoformat()}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error scheduling battle {battle_id}: {e}")
        raise

    cache.delete(_calendar_cache_key(battle_id))
    logger.info(f"Scheduled battle {battle_id} ({start} - {end})")
    return entry


def next_scheduled_battle_id(today=None):
    """Battle id following the latest calendar entry.

    With an empty calendar this is today's date.
    """
    latest = MasterBattle.query.order_by(MasterBattle.battle_id.desc()).first()
    if latest is None:
        return battle_id_from_date(today or datetime.now().date())
    return next_battle_id(latest.battle_id)


def list_schedule(limit=10, upcoming=False, now=None):
    """Recent (or upcoming) calendar entries.

    Args:
        limit: Maximum entries to return
        upcoming: Only entries that have not ended yet, soonest first
        now: Reference time, defaults to the current time

    Returns:
        List of calendar entry dicts
    """
    query = MasterBattle.query
    if upcoming:
        now = now or datetime.now()
        query = query.filter(MasterBattle.end_timestamp >= now).order_by(MasterBattle.battle_id.asc())
    else:
        query = query.order_by(MasterBattle.battle_id.desc())
    return [entry.to_dict() for entry in query.limit(limit).all()]
