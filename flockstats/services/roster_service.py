"""Service layer for clan rosters.

A roster member is in exactly one lifecycle state: active, left, or kicked.
Public functions here commit their own transaction; the helpers used by the
battle builder (ensure_member, apply_action_code) only stage changes in the
caller's session.
"""
from datetime import date

from loguru import logger
from sqlalchemy import text

from flockstats.exceptions import ConflictError, ConsistencyError, NotFoundError, ValidationError
from flockstats.extensions import db
from flockstats.models import RosterMember
from flockstats.services import audit_service

# Action codes recorded against player/non-player battle rows
HOLD = 'HOLD'
WARN = 'WARN'
KICK = 'KICK'
RESERVE = 'RESERVE'
PASS = 'PASS'
LEFT = 'LEFT'

ACTION_CODES = (HOLD, WARN, KICK, RESERVE, PASS, LEFT)


def lifecycle_state(member):
    """Name the member's lifecycle state ('active', 'left', 'kicked')."""
    if member.kicked_date is not None:
        return 'kicked'
    if member.left_date is not None:
        return 'left'
    return 'active'


def check_lifecycle(member):
    """Verify exactly one of {active, left, kicked} holds.

    Raises:
        ConsistencyError: the stored flags and dates disagree
    """
    states = [bool(member.active), member.left_date is not None, member.kicked_date is not None]
    if sum(states) != 1:
        raise ConsistencyError(
            f"Roster member {member.player_id} has an inconsistent lifecycle state",
            player_id=member.player_id,
            active=bool(member.active),
            left_date=member.left_date.isoformat() if member.left_date else None,
            kicked_date=member.kicked_date.isoformat() if member.kicked_date else None,
        )
    if member.departure_date is not None and member.departure_date < member.joined_date:
        raise ConsistencyError(
            f"Roster member {member.player_id} departed before joining",
            player_id=member.player_id,
        )


def validate_action_code(action_code):
    if action_code not in ACTION_CODES:
        raise ValidationError(
            f"Unknown action code: {action_code!r}",
            allowed=list(ACTION_CODES)
        )
    return action_code


def get_member(clan_id, player_id):
    member = db.session.get(RosterMember, player_id)
    if member is None or member.clan_id != clan_id:
        raise NotFoundError(f"Player {player_id} is not on the roster of clan {clan_id}")
    return member


def list_roster(clan_id, active=None, search=None, page=1, limit=20):
    """Roster members of a clan, ordered by name.

    Args:
        clan_id: Clan ID
        active: True/False to filter by active flag, None for everyone
        search: Case-insensitive substring of the player name
        page: 1-based page number
        limit: Page size

    Returns:
        Dictionary with 'members', 'total', 'page', 'limit'
    """
    query = RosterMember.query.filter_by(clan_id=clan_id)
    if active is not None:
        query = query.filter(RosterMember.active.is_(active))
    if search:
        query = query.filter(RosterMember.player_name.ilike(f"%{search}%"))

    total = query.count()
    members = (
        query.order_by(RosterMember.player_name, RosterMember.player_id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'members': [dict(m.to_dict(), state=lifecycle_state(m)) for m in members],
        'total': total,
        'page': page,
        'limit': limit,
    }


def add_member(clan_id, player_name, joined_date=None, actor_id=None):
    """Add a new active member to a clan roster."""
    player_name = (player_name or '').strip()
    if not player_name:
        raise ValidationError('player_name is required')

    member = RosterMember(
        clan_id=clan_id,
        player_name=player_name,
        joined_date=joined_date or date.today(),
        active=True
    )
    try:
        db.session.add(member)
        db.session.flush()
        audit_service.record(
            actor_id, audit_service.ROSTER_MEMBER_ADDED, audit_service.ROSTER_MEMBER,
            member.player_id, clan_id, {'player_name': player_name}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding roster member {player_name!r} to clan {clan_id}: {e}")
        raise

    logger.info(f"Added {player_name!r} (player {member.player_id}) to clan {clan_id}")
    return member


def ensure_member(clan_id, player_id, joined_date, player_name=None):
    """Return the roster member for a battle row, creating it on first appearance.

    Staged in the caller's transaction; nothing is committed here.

    Raises:
        ValidationError: player_id belongs to a different clan
    """
    member = db.session.get(RosterMember, player_id)
    if member is not None:
        if member.clan_id != clan_id:
            raise ValidationError(
                f"Player {player_id} belongs to clan {member.clan_id}, not clan {clan_id}"
            )
        return member

    member = RosterMember(
        player_id=player_id,
        clan_id=clan_id,
        player_name=player_name or f"Player {player_id}",
        joined_date=joined_date,
        active=True
    )
    db.session.add(member)
    db.session.flush()
    sync_player_id_sequence()
    logger.debug(f"Created roster member {player_id} for clan {clan_id} on first appearance")
    return member


def sync_player_id_sequence():
    """Move the PostgreSQL player_id sequence past explicitly inserted ids.

    Members created on first appearance carry the player_id from the battle
    entry, and explicit inserts leave the SERIAL sequence behind. SQLite
    allocates max + 1 on its own.
    """
    if db.session.get_bind().dialect.name != 'postgresql':
        return
    db.session.execute(text(
        "SELECT setval(pg_get_serial_sequence('roster_members', 'player_id'), "
        "(SELECT max(player_id) FROM roster_members))"
    ))


def _depart(member, field, on_date):
    if not member.active:
        raise ConflictError(
            f"Player {member.player_id} is already {lifecycle_state(member)}",
            player_id=member.player_id
        )
    if on_date < member.joined_date:
        raise ValidationError(
            f"{field} {on_date.isoformat()} is before joined_date {member.joined_date.isoformat()}"
        )
    setattr(member, field, on_date)
    member.active = False


def apply_action_code(member, action_code, on_date):
    """Stage the roster effect of a battle action code.

    KICK sets kicked_date and LEFT sets left_date, both deactivating the
    member. Every other code leaves the roster alone, as does a departure
    code for a member who is no longer active.

    Returns:
        True if the member changed
    """
    if action_code not in (KICK, LEFT) or not member.active:
        return False
    field = 'kicked_date' if action_code == KICK else 'left_date'
    _depart(member, field, max(on_date, member.joined_date))
    return True


def _change_lifecycle(clan_id, player_id, field, on_date, action_type, actor_id):
    member = get_member(clan_id, player_id)
    on_date = on_date or date.today()
    try:
        _depart(member, field, on_date)
        audit_service.record(
            actor_id, action_type, audit_service.ROSTER_MEMBER, player_id, clan_id,
            {field: on_date.isoformat()}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating roster member {player_id} in clan {clan_id}: {e}")
        raise

    logger.info(f"Player {player_id} in clan {clan_id} {lifecycle_state(member)} on {on_date}")
    return member


def mark_left(clan_id, player_id, left_date=None, actor_id=None):
    return _change_lifecycle(
        clan_id, player_id, 'left_date', left_date, audit_service.ROSTER_MEMBER_LEFT, actor_id
    )


def kick(clan_id, player_id, kicked_date=None, actor_id=None):
    return _change_lifecycle(
        clan_id, player_id, 'kicked_date', kicked_date, audit_service.ROSTER_MEMBER_KICKED, actor_id
    )


def reactivate(clan_id, player_id, actor_id=None):
    """Bring a departed member back; clears both departure dates."""
    member = get_member(clan_id, player_id)
    if member.active:
        raise ConflictError(f"Player {player_id} is already active", player_id=player_id)

    previous = lifecycle_state(member)
    try:
        member.left_date = None
        member.kicked_date = None
        member.active = True
        audit_service.record(
            actor_id, audit_service.ROSTER_MEMBER_REACTIVATED, audit_service.ROSTER_MEMBER,
            player_id, clan_id, {'previous_state': previous}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error reactivating roster member {player_id} in clan {clan_id}: {e}")
        raise

    logger.info(f"Player {player_id} in clan {clan_id} reactivated (was {previous})")
    return member
