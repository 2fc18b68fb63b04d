"""Monthly and yearly rollup routes"""
from flask import Blueprint, g, jsonify

from flockstats.exceptions import ValidationError
from flockstats.routes.helpers import actor_required, json_body
from flockstats.services import recalculation_service, rollup_service
from flockstats.services.periods import MONTH, YEAR, parse_clan_id, parse_id, period_granularity
from flockstats.utils.formatters import display_fields

bp = Blueprint('stats', __name__)

CLAN_DISPLAY_FIELDS = (
    'average_fp', 'average_baseline_fp', 'average_ratio', 'average_average_ratio',
    'average_margin_ratio', 'average_fp_margin', 'average_nonplaying_count',
    'average_nonplaying_fp_ratio', 'average_reserve_count', 'average_reserve_fp_ratio',
)

PLAYER_DISPLAY_FIELDS = (
    'average_score', 'average_fp', 'average_ratio', 'average_rank', 'average_ratio_rank',
)


def _require(period_id, granularity):
    if period_granularity(period_id) != granularity:
        raise ValidationError(f"Expected a {granularity} ID, got {period_id!r}")
    return period_id


def _clan_json(row):
    data = display_fields(row.to_dict(), CLAN_DISPLAY_FIELDS)
    data['period_id'] = row.period_id
    data['is_complete'] = row.is_complete
    return data


def _player_json(row):
    return dict(display_fields(row.to_dict(), PLAYER_DISPLAY_FIELDS), period_id=row.period_id)


def _players_json(period_id, rows):
    return {'period_id': period_id, 'players': [_player_json(r) for r in rows]}


# ===== MONTHS =====

@bp.route('/<clan_id>/stats/months')
def list_months(clan_id):
    """Months with battles, newest first, with their completion state."""
    return jsonify({'periods': rollup_service.list_periods(parse_clan_id(clan_id), MONTH)})


@bp.route('/<clan_id>/stats/months/<month_id>')
def get_month(clan_id, month_id):
    row = rollup_service.get_or_compute_clan_performance(parse_clan_id(clan_id), _require(month_id, MONTH))
    return jsonify(_clan_json(row))


@bp.route('/<clan_id>/stats/months/<month_id>/players')
def get_month_players(clan_id, month_id):
    rows = rollup_service.get_or_compute_individual_performance(parse_clan_id(clan_id), _require(month_id, MONTH))
    return jsonify(_players_json(month_id, rows))


@bp.route('/<clan_id>/stats/months/<month_id>/players/<player_id>')
def get_month_player(clan_id, month_id, player_id):
    row = rollup_service.get_player_performance(
        parse_clan_id(clan_id), _require(month_id, MONTH), parse_id(player_id, 'player ID')
    )
    return jsonify(_player_json(row))


@bp.route('/<clan_id>/stats/months/<month_id>/complete', methods=['POST'])
@actor_required
def set_month_complete(clan_id, month_id):
    """Lock ({"complete": true}) or reopen ({"complete": false}) a month."""
    complete = json_body().get('complete', True)
    if not isinstance(complete, bool):
        raise ValidationError('complete must be true or false')
    row = rollup_service.set_month_complete(
        parse_clan_id(clan_id), _require(month_id, MONTH), complete, actor_id=g.actor_id
    )
    return jsonify(_clan_json(row))


@bp.route('/<clan_id>/stats/months/<month_id>/recalculate', methods=['POST'])
@actor_required
def recalculate_month(clan_id, month_id):
    summary = recalculation_service.recalculate(parse_clan_id(clan_id), _require(month_id, MONTH), actor_id=g.actor_id)
    return jsonify(summary)


# ===== YEARS =====

@bp.route('/<clan_id>/stats/years')
def list_years(clan_id):
    return jsonify({'periods': rollup_service.list_periods(parse_clan_id(clan_id), YEAR)})


@bp.route('/<clan_id>/stats/years/<year_id>')
def get_year(clan_id, year_id):
    row = rollup_service.get_or_compute_clan_performance(parse_clan_id(clan_id), _require(year_id, YEAR))
    return jsonify(_clan_json(row))


@bp.route('/<clan_id>/stats/years/<year_id>/players')
def get_year_players(clan_id, year_id):
    rows = rollup_service.get_or_compute_individual_performance(parse_clan_id(clan_id), _require(year_id, YEAR))
    return jsonify(_players_json(year_id, rows))


@bp.route('/<clan_id>/stats/years/<year_id>/players/<player_id>')
def get_year_player(clan_id, year_id, player_id):
    row = rollup_service.get_player_performance(
        parse_clan_id(clan_id), _require(year_id, YEAR), parse_id(player_id, 'player ID')
    )
    return jsonify(_player_json(row))


@bp.route('/<clan_id>/stats/years/<year_id>/recalculate', methods=['POST'])
@actor_required
def recalculate_year(clan_id, year_id):
    summary = recalculation_service.recalculate(parse_clan_id(clan_id), _require(year_id, YEAR), actor_id=g.actor_id)
    return jsonify(summary)
