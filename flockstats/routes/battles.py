"""Battle record routes"""
from flask import Blueprint, g, jsonify, request

from flockstats.routes.helpers import actor_required, date_args, json_body, page_args
from flockstats.services import battle_service
from flockstats.services.periods import parse_clan_id
from flockstats.utils.formatters import display_fields, result_label

bp = Blueprint('battles', __name__)

DISPLAY_FIELDS = (
    'ratio', 'average_ratio', 'projected_score', 'margin_ratio',
    'fp_margin', 'nonplaying_fp_ratio', 'reserve_fp_ratio',
)


def _battle_json(battle_dict):
    battle_dict['result_label'] = result_label(battle_dict['result'])
    display_fields(battle_dict, DISPLAY_FIELDS)
    for row in battle_dict.get('player_stats', []):
        display_fields(row, ('ratio',))
    return battle_dict


@bp.route('/<clan_id>/battles', methods=['POST'])
@actor_required
def create_battle(clan_id):
    """Record a battle result with its player and non-player rows."""
    battle = battle_service.create_battle(parse_clan_id(clan_id), json_body(), actor_id=g.actor_id)
    return jsonify(_battle_json(battle.to_dict(include_stats=True))), 201


@bp.route('/<clan_id>/battles', methods=['GET'])
def list_battles(clan_id):
    start, end = date_args()
    page, limit = page_args()
    result = battle_service.list_battles(
        parse_clan_id(clan_id),
        start=start,
        end=end,
        opponent_name=request.args.get('opponent'),
        result=request.args.get('result', type=int),
        page=page,
        limit=limit
    )
    result['battles'] = [_battle_json(b) for b in result['battles']]
    return jsonify(result)


@bp.route('/<clan_id>/battles/<battle_id>', methods=['GET'])
def get_battle(clan_id, battle_id):
    battle = battle_service.get_battle(parse_clan_id(clan_id), battle_id)
    return jsonify(_battle_json(battle.to_dict(include_stats=True)))


@bp.route('/<clan_id>/battles/<battle_id>', methods=['PUT'])
@actor_required
def update_battle(clan_id, battle_id):
    """Replace raw inputs of a battle; derived values are recomputed."""
    battle = battle_service.update_battle(parse_clan_id(clan_id), battle_id, json_body(), actor_id=g.actor_id)
    return jsonify(_battle_json(battle.to_dict(include_stats=True)))


@bp.route('/<clan_id>/battles/<battle_id>', methods=['DELETE'])
@actor_required
def delete_battle(clan_id, battle_id):
    battle_service.delete_battle(parse_clan_id(clan_id), battle_id, actor_id=g.actor_id)
    return '', 204
