"""Battle record builder - validates submissions, derives metrics, persists atomically.

Every derived column of a battle and its player rows is computed here from
the raw inputs, before anything is written. Updates merge new raw inputs
with the stored raw inputs and derive everything again; stored derived
values are never fed back into a calculation.

Battle writes do not touch period rollups. A rollup that already exists
only changes through recalculation_service.
"""
from loguru import logger
from sqlalchemy.exc import IntegrityError

from flockstats.exceptions import ConflictError, NotFoundError, ScheduleError, ValidationError
from flockstats.extensions import db
from flockstats.models import ClanBattle, ClanBattleNonplayerStats, ClanBattlePlayerStats
from flockstats.services import audit_service, calculations, roster_service, schedule_service
from flockstats.services.periods import parse_battle_id

BATTLE_INPUT_FIELDS = (
    'opponent_name',
    'opponent_country',
    'opponent_rovio_id',
    'score',
    'baseline_fp',
    'opponent_score',
    'opponent_fp',
)

MAX_NAME_LENGTH = 100
MAX_REASON_LENGTH = 1000


# =====================================================
# Input Validation
# =====================================================

def _int_field(data, field, minimum, context=''):
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{context}{field} must be an integer", field=field)
    if value < minimum:
        raise ValidationError(f"{context}{field} must be at least {minimum}", field=field)
    return value


def _text_field(data, field, max_length, required=True, context=''):
    value = data.get(field)
    if value is None and not required:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{context}{field} cannot be empty", field=field)
    if len(value) > max_length:
        raise ValidationError(f"{context}{field} is too long (max {max_length})", field=field)
    return value.strip()


def _validate_player(row, index):
    context = f"player_stats[{index}]."
    if not isinstance(row, dict):
        raise ValidationError(f"player_stats[{index}] must be an object")
    return {
        'player_id': _int_field(row, 'player_id', 1, context),
        'rank': _int_field(row, 'rank', 1, context),
        'score': _int_field(row, 'score', 0, context),
        'fp': _int_field(row, 'fp', 1, context),
        'action_code': roster_service.validate_action_code(row.get('action_code') or roster_service.HOLD),
        'action_reason': _text_field(row, 'action_reason', MAX_REASON_LENGTH, False, context),
        'player_name': _text_field(row, 'player_name', MAX_NAME_LENGTH, False, context),
    }


def _validate_nonplayer(row, index):
    context = f"nonplayer_stats[{index}]."
    if not isinstance(row, dict):
        raise ValidationError(f"nonplayer_stats[{index}] must be an object")
    reserve = row.get('reserve', False)
    if not isinstance(reserve, bool):
        raise ValidationError(f"{context}reserve must be true or false", field='reserve')
    return {
        'player_id': _int_field(row, 'player_id', 1, context),
        'fp': _int_field(row, 'fp', 1, context),
        'reserve': reserve,
        'action_code': roster_service.validate_action_code(row.get('action_code') or roster_service.HOLD),
        'action_reason': _text_field(row, 'action_reason', MAX_REASON_LENGTH, False, context),
        'player_name': _text_field(row, 'player_name', MAX_NAME_LENGTH, False, context),
    }


def validate_entry(entry):
    """Validate a raw battle submission.

    Args:
        entry: Submission dict (see create_battle)

    Returns:
        Normalized copy of the submission

    Raises:
        ValidationError: on the first problem found
    """
    if not isinstance(entry, dict):
        raise ValidationError('Battle entry must be an object')

    battle_id = entry.get('battle_id')
    parse_battle_id(battle_id)

    normalized = {
        'battle_id': battle_id,
        'opponent_name': _text_field(entry, 'opponent_name', MAX_NAME_LENGTH),
        'opponent_country': _text_field(entry, 'opponent_country', MAX_NAME_LENGTH),
        'opponent_rovio_id': _int_field(entry, 'opponent_rovio_id', 1),
        'score': _int_field(entry, 'score', 0),
        'baseline_fp': _int_field(entry, 'baseline_fp', 1),
        'opponent_score': _int_field(entry, 'opponent_score', 0),
        'opponent_fp': _int_field(entry, 'opponent_fp', 1),
    }

    players = entry.get('player_stats') or []
    nonplayers = entry.get('nonplayer_stats') or []
    if not isinstance(players, list) or not isinstance(nonplayers, list):
        raise ValidationError('player_stats and nonplayer_stats must be lists')
    if not players:
        raise ValidationError('At least one player must have participated in the battle')

    normalized['player_stats'] = [_validate_player(row, i) for i, row in enumerate(players)]
    normalized['nonplayer_stats'] = [_validate_nonplayer(row, i) for i, row in enumerate(nonplayers)]

    seen = set()
    for row in normalized['player_stats'] + normalized['nonplayer_stats']:
        if row['player_id'] in seen:
            raise ValidationError(
                f"Player {row['player_id']} is listed more than once",
                player_id=row['player_id']
            )
        seen.add(row['player_id'])

    return normalized


# =====================================================
# Derivation
# =====================================================

def build_battle_values(clan_id, entry, window):
    """Compute the full battle record from a validated submission.

    Pure: reads nothing from the database.

    Args:
        clan_id: Owning clan
        entry: Output of validate_entry
        window: Calendar entry dict with 'start' and 'end' datetimes

    Returns:
        Tuple of (battle column values, player rows, non-player rows)
    """
    players = [
        dict(row, ratio=calculations.player_ratio(row['score'], row['fp']))
        for row in entry['player_stats']
    ]
    players = calculations.player_ratio_ranks(players)
    nonplayers = [dict(row) for row in entry['nonplayer_stats']]

    score = entry['score']
    total_fp = calculations.total_fp(players, nonplayers)
    nonplaying_fp_ratio = calculations.nonplaying_fp_ratio(
        calculations.nonplaying_fp(nonplayers), total_fp
    )

    values = {
        'clan_id': clan_id,
        'battle_id': entry['battle_id'],
        'start_date': _as_date(window['start']),
        'end_date': _as_date(window['end']),
        'result': calculations.battle_result(score, entry['opponent_score']),
        'fp': total_fp,
        'ratio': calculations.clan_ratio(score, entry['baseline_fp']),
        'average_ratio': calculations.average_ratio(score, total_fp),
        'projected_score': calculations.projected_score(score, nonplaying_fp_ratio),
        'margin_ratio': calculations.margin_ratio(score, entry['opponent_score']),
        'fp_margin': calculations.fp_margin(entry['baseline_fp'], entry['opponent_fp']),
        'nonplaying_count': calculations.nonplaying_count(nonplayers),
        'nonplaying_fp_ratio': nonplaying_fp_ratio,
        'reserve_count': calculations.reserve_count(nonplayers),
        'reserve_fp_ratio': calculations.reserve_fp_ratio(
            calculations.reserve_fp(nonplayers), total_fp
        ),
    }
    for field in BATTLE_INPUT_FIELDS:
        values[field] = entry[field]

    return values, players, nonplayers


def _as_date(value):
    return value.date() if hasattr(value, 'date') else value


def stored_inputs(battle):
    """Raw inputs of a stored battle, in submission shape."""
    entry = {'battle_id': battle.battle_id}
    for field in BATTLE_INPUT_FIELDS:
        entry[field] = getattr(battle, field)
    entry['player_stats'] = [
        {
            'player_id': ps.player_id,
            'rank': ps.rank,
            'score': ps.score,
            'fp': ps.fp,
            'action_code': ps.action_code,
            'action_reason': ps.action_reason,
        }
        for ps in battle.player_stats
    ]
    entry['nonplayer_stats'] = [
        {
            'player_id': nps.player_id,
            'fp': nps.fp,
            'reserve': nps.reserve,
            'action_code': nps.action_code,
            'action_reason': nps.action_reason,
        }
        for nps in battle.nonplayer_stats
    ]
    return entry


def _calendar_window(battle_id):
    window = schedule_service.battle_id_exists(battle_id)
    if window is None:
        raise ScheduleError(f"Battle {battle_id} is not in the battle schedule", battle_id=battle_id)
    return window


def _stage_battle(clan_id, values, players, nonplayers):
    """Add the battle, its child rows and roster side effects to the session."""
    battle = ClanBattle(**values)

    for row in players:
        member = roster_service.ensure_member(clan_id, row['player_id'], values['start_date'], row.get('player_name'))
        battle.player_stats.append(ClanBattlePlayerStats(
            clan_id=clan_id,
            battle_id=values['battle_id'],
            player_id=row['player_id'],
            player=member,
            rank=row['rank'],
            score=row['score'],
            fp=row['fp'],
            ratio=row['ratio'],
            ratio_rank=row['ratio_rank'],
            action_code=row['action_code'],
            action_reason=row['action_reason']
        ))
        roster_service.apply_action_code(member, row['action_code'], values['end_date'])

    for row in nonplayers:
        member = roster_service.ensure_member(clan_id, row['player_id'], values['start_date'], row.get('player_name'))
        battle.nonplayer_stats.append(ClanBattleNonplayerStats(
            clan_id=clan_id,
            battle_id=values['battle_id'],
            player_id=row['player_id'],
            player=member,
            fp=row['fp'],
            reserve=row['reserve'],
            action_code=row['action_code'],
            action_reason=row['action_reason']
        ))
        roster_service.apply_action_code(member, row['action_code'], values['end_date'])

    db.session.add(battle)
    return battle


# =====================================================
# Write Operations
# =====================================================

def create_battle(clan_id, entry, actor_id=None):
    """Record a clan's result for a scheduled battle.

    Args:
        clan_id: Clan ID
        entry: Submission dict with battle_id, opponent_name, opponent_country,
            opponent_rovio_id, score, baseline_fp, opponent_score, opponent_fp,
            player_stats [{player_id, rank, score, fp, action_code?,
            action_reason?, player_name?}] and nonplayer_stats [{player_id,
            fp, reserve, action_code?, action_reason?, player_name?}]
        actor_id: Trusted actor identifier for the audit trail

    Returns:
        The persisted ClanBattle

    Raises:
        ValidationError: malformed input
        ScheduleError: battle_id not in the calendar
        ConflictError: battle already recorded for this clan
    """
    entry = validate_entry(entry)
    battle_id = entry['battle_id']
    window = _calendar_window(battle_id)

    if db.session.get(ClanBattle, (clan_id, battle_id)) is not None:
        raise ConflictError(f"Battle {battle_id} already recorded for clan {clan_id}", battle_id=battle_id)

    values, players, nonplayers = build_battle_values(clan_id, entry, window)

    try:
        battle = _stage_battle(clan_id, values, players, nonplayers)
        audit_service.record(
            actor_id, audit_service.BATTLE_CREATED, audit_service.BATTLE, battle_id, clan_id,
            {'opponent_name': values['opponent_name'], 'result': values['result'], 'player_count': len(players)}
        )
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if db.session.get(ClanBattle, (clan_id, battle_id)) is not None:
            logger.warning(f"Battle {battle_id} for clan {clan_id} was recorded concurrently")
            raise ConflictError(f"Battle {battle_id} already recorded for clan {clan_id}", battle_id=battle_id) from e
        logger.error(f"Error creating battle {battle_id} for clan {clan_id}: {e}")
        raise
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating battle {battle_id} for clan {clan_id}: {e}")
        raise

    logger.info(f"Recorded battle {battle_id} for clan {clan_id} (result={values['result']}, ratio={values['ratio']:.2f})")
    return battle


def update_battle(clan_id, battle_id, changes, actor_id=None):
    """Change raw inputs of a recorded battle and derive everything again.

    Args:
        clan_id: Clan ID
        battle_id: Battle to update
        changes: Any subset of the raw submission fields; player_stats and
            nonplayer_stats replace the stored lists when given
        actor_id: Trusted actor identifier

    Returns:
        The replacement ClanBattle
    """
    existing = get_battle(clan_id, battle_id)
    if not isinstance(changes, dict):
        raise ValidationError('Battle changes must be an object')
    if changes.get('battle_id', battle_id) != battle_id:
        raise ValidationError('battle_id cannot be changed; delete and re-create the battle instead')

    merged = stored_inputs(existing)
    changed_fields = []
    for field in BATTLE_INPUT_FIELDS + ('player_stats', 'nonplayer_stats'):
        if field in changes:
            merged[field] = changes[field]
            changed_fields.append(field)

    entry = validate_entry(merged)
    window = _calendar_window(battle_id)
    values, players, nonplayers = build_battle_values(clan_id, entry, window)

    try:
        db.session.delete(existing)
        db.session.flush()
        battle = _stage_battle(clan_id, values, players, nonplayers)
        audit_service.record(
            actor_id, audit_service.BATTLE_UPDATED, audit_service.BATTLE, battle_id, clan_id,
            {'changed_fields': changed_fields}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating battle {battle_id} for clan {clan_id}: {e}")
        raise

    logger.info(f"Updated battle {battle_id} for clan {clan_id} ({', '.join(changed_fields) or 'no changes'})")
    return battle


def delete_battle(clan_id, battle_id, actor_id=None):
    """Remove a recorded battle and its player rows.

    Roster departures applied when the battle was recorded stay in place.
    """
    battle = get_battle(clan_id, battle_id)
    try:
        db.session.delete(battle)
        audit_service.record(
            actor_id, audit_service.BATTLE_DELETED, audit_service.BATTLE, battle_id, clan_id,
            {'opponent_name': battle.opponent_name}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting battle {battle_id} for clan {clan_id}: {e}")
        raise

    logger.info(f"Deleted battle {battle_id} for clan {clan_id}")


# =====================================================
# Read Operations
# =====================================================

def get_battle(clan_id, battle_id):
    parse_battle_id(battle_id)
    battle = db.session.get(ClanBattle, (clan_id, battle_id))
    if battle is None:
        raise NotFoundError(f"Battle {battle_id} not found for clan {clan_id}", battle_id=battle_id)
    return battle


def list_battles(clan_id, start=None, end=None, opponent_name=None, result=None, page=1, limit=20):
    """Battles of a clan, newest first.

    Args:
        clan_id: Clan ID
        start: Earliest start_date (inclusive)
        end: Latest start_date (inclusive)
        opponent_name: Case-insensitive substring filter
        result: 1, 0 or -1
        page: 1-based page number
        limit: Page size

    Returns:
        Dictionary with 'battles', 'total', 'page', 'limit'
    """
    query = ClanBattle.query.filter_by(clan_id=clan_id)
    if start is not None:
        query = query.filter(ClanBattle.start_date >= start)
    if end is not None:
        query = query.filter(ClanBattle.start_date <= end)
    if opponent_name:
        query = query.filter(ClanBattle.opponent_name.ilike(f"%{opponent_name}%"))
    if result is not None:
        if result not in (calculations.WIN, calculations.TIE, calculations.LOSS):
            raise ValidationError(f"Invalid result filter: {result!r}")
        query = query.filter(ClanBattle.result == result)

    total = query.count()
    battles = (
        query.order_by(ClanBattle.battle_id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'battles': [b.to_dict() for b in battles],
        'total': total,
        'page': page,
        'limit': limit,
    }


def battles_in_range(clan_id, start=None, end=None):
    """All battles of a clan with start_date in [start, end], oldest first."""
    query = ClanBattle.query.filter_by(clan_id=clan_id)
    if start is not None:
        query = query.filter(ClanBattle.start_date >= start)
    if end is not None:
        query = query.filter(ClanBattle.start_date <= end)
    return query.order_by(ClanBattle.battle_id.asc()).all()
