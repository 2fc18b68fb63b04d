"""Battle schedule calendar and audit trail routes"""
from flask import Blueprint, g, jsonify, request

from flockstats.exceptions import ValidationError
from flockstats.routes.helpers import actor_required, bool_arg, json_body, page_args
from flockstats.services import audit_service, schedule_service

bp = Blueprint('schedule', __name__)


@bp.route('/schedule', methods=['GET'])
def list_schedule():
    """Recent calendar entries, or ?upcoming=true for the ones not yet over."""
    limit = request.args.get('limit', 10, type=int)
    if limit < 1:
        raise ValidationError('limit must be a positive integer')
    entries = schedule_service.list_schedule(limit=min(limit, 100), upcoming=bool(bool_arg('upcoming')))
    return jsonify({'schedule': entries})


@bp.route('/schedule', methods=['POST'])
@actor_required
def add_battle_date():
    """Schedule a battle. Body: {"battle_id": "YYYYMMDD", "notes": "..."}; battle_id defaults to the next slot."""
    data = json_body()
    entry = schedule_service.add_battle_date(
        battle_id=data.get('battle_id'),
        actor_id=g.actor_id,
        notes=data.get('notes')
    )
    return jsonify(entry.to_dict()), 201


@bp.route('/audit-logs', methods=['GET'])
@actor_required
def list_audit_logs():
    page, limit = page_args()
    return jsonify(audit_service.list_audit_logs(
        clan_id=request.args.get('clan_id', type=int),
        action_type=request.args.get('action_type'),
        entity_type=request.args.get('entity_type'),
        actor_id=request.args.get('actor_id'),
        page=page,
        limit=limit
    ))
