"""Roster routes"""
from flask import Blueprint, g, jsonify, request

from flockstats.routes.helpers import actor_required, bool_arg, json_body, page_args
from flockstats.services import roster_service
from flockstats.services.periods import parse_clan_id, parse_date, parse_id

bp = Blueprint('roster', __name__)


def _member_json(member):
    return dict(member.to_dict(), state=roster_service.lifecycle_state(member))


@bp.route('/<clan_id>/roster', methods=['GET'])
def list_roster(clan_id):
    page, limit = page_args()
    return jsonify(roster_service.list_roster(
        parse_clan_id(clan_id),
        active=bool_arg('active'),
        search=request.args.get('search'),
        page=page,
        limit=limit
    ))


@bp.route('/<clan_id>/roster', methods=['POST'])
@actor_required
def add_member(clan_id):
    data = json_body()
    member = roster_service.add_member(
        parse_clan_id(clan_id),
        data.get('player_name'),
        joined_date=parse_date(data.get('joined_date'), 'joined_date'),
        actor_id=g.actor_id
    )
    return jsonify(_member_json(member)), 201


@bp.route('/<clan_id>/roster/<player_id>/leave', methods=['POST'])
@actor_required
def leave(clan_id, player_id):
    data = request.get_json(silent=True) or {}
    member = roster_service.mark_left(
        parse_clan_id(clan_id),
        parse_id(player_id, 'player ID'),
        left_date=parse_date(data.get('left_date'), 'left_date'),
        actor_id=g.actor_id
    )
    return jsonify(_member_json(member))


@bp.route('/<clan_id>/roster/<player_id>/kick', methods=['POST'])
@actor_required
def kick(clan_id, player_id):
    data = request.get_json(silent=True) or {}
    member = roster_service.kick(
        parse_clan_id(clan_id),
        parse_id(player_id, 'player ID'),
        kicked_date=parse_date(data.get('kicked_date'), 'kicked_date'),
        actor_id=g.actor_id
    )
    return jsonify(_member_json(member))


@bp.route('/<clan_id>/roster/<player_id>/reactivate', methods=['POST'])
@actor_required
def reactivate(clan_id, player_id):
    member = roster_service.reactivate(parse_clan_id(clan_id), parse_id(player_id, 'player ID'), actor_id=g.actor_id)
    return jsonify(_member_json(member))
