"""Report routes - trends, player performance, matchups, roster churn"""
from flask import Blueprint, jsonify, request

from flockstats.routes.helpers import date_args
from flockstats.services import report_service
from flockstats.services.periods import parse_clan_id, parse_id

bp = Blueprint('reports', __name__)


@bp.route('/<clan_id>/reports/trends')
def trends(clan_id):
    """Clan trend series; ?aggregation=battle|monthly&start=YYYY-MM-DD&end=YYYY-MM-DD"""
    start, end = date_args()
    aggregation = request.args.get('aggregation', report_service.BATTLE)
    return jsonify(report_service.get_trends(parse_clan_id(clan_id), start, end, aggregation))


@bp.route('/<clan_id>/reports/player/<player_id>')
def player_report(clan_id, player_id):
    start, end = date_args()
    return jsonify(report_service.get_player_report(
        parse_clan_id(clan_id), parse_id(player_id, 'player ID'), start, end
    ))


@bp.route('/<clan_id>/reports/matchups')
def matchups(clan_id):
    start, end = date_args()
    return jsonify(report_service.get_matchups(parse_clan_id(clan_id), start, end))


@bp.route('/<clan_id>/reports/roster-churn')
def roster_churn(clan_id):
    start, end = date_args()
    return jsonify(report_service.get_roster_churn(parse_clan_id(clan_id), start, end))
