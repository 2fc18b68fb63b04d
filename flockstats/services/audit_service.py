"""Service layer for the audit trail.

record() only adds the row to the current session; the caller's commit (or
rollback) decides whether the fact survives, so an audit entry never
outlives the change it describes.
"""
from loguru import logger

from flockstats.extensions import db
from flockstats.models import AuditLog

# Action types
ROSTER_MEMBER_ADDED = 'ROSTER_MEMBER_ADDED'
ROSTER_MEMBER_LEFT = 'ROSTER_MEMBER_LEFT'
ROSTER_MEMBER_KICKED = 'ROSTER_MEMBER_KICKED'
ROSTER_MEMBER_REACTIVATED = 'ROSTER_MEMBER_REACTIVATED'
BATTLE_CREATED = 'BATTLE_CREATED'
BATTLE_UPDATED = 'BATTLE_UPDATED'
BATTLE_DELETED = 'BATTLE_DELETED'
MONTH_COMPLETED = 'MONTH_COMPLETED'
MONTH_REOPENED = 'MONTH_REOPENED'
RECALCULATE = 'RECALCULATE'
MASTER_BATTLE_CREATED = 'MASTER_BATTLE_CREATED'

# Entity types
ROSTER_MEMBER = 'ROSTER_MEMBER'
BATTLE = 'BATTLE'
MONTHLY_STATS = 'MONTHLY_STATS'
YEARLY_STATS = 'YEARLY_STATS'
MASTER_BATTLE = 'MASTER_BATTLE'


def record(actor_id, action_type, entity_type, entity_id, clan_id=None, details=None):
    """Append an audit fact to the current transaction.

    Args:
        actor_id: Trusted actor identifier (None for system/CLI actions)
        action_type: One of the action type constants above
        entity_type: One of the entity type constants above
        entity_id: Identifier of the affected entity
        clan_id: Owning clan, if any
        details: JSON-serializable dict

    Returns:
        The pending AuditLog row
    """
    entry = AuditLog(
        actor_id=actor_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        clan_id=clan_id,
        details=details or {}
    )
    db.session.add(entry)
    logger.info(f"AUDIT {action_type} {entity_type}:{entity_id} clan={clan_id} actor={actor_id}")
    return entry


def list_audit_logs(clan_id=None, action_type=None, entity_type=None, actor_id=None, page=1, limit=50):
    """Most recent audit facts first, optionally filtered.

    Returns:
        Dictionary with 'logs' (list of dicts), 'total', 'page', 'limit'
    """
    query = AuditLog.query
    if clan_id is not None:
        query = query.filter_by(clan_id=clan_id)
    if action_type:
        query = query.filter_by(action_type=action_type)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if actor_id:
        query = query.filter_by(actor_id=actor_id)

    total = query.count()
    logs = (
        query.order_by(AuditLog.timestamp.desc(), AuditLog.log_id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        'logs': [log.to_dict() for log in logs],
        'total': total,
        'page': page,
        'limit': limit,
    }
