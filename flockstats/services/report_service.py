"""Report service layer - trends, player reports, matchups and roster churn.

Reports read the stored per-battle derived fields; nothing here derives a
battle metric again. Values are rounded for display only at the point they
are placed in a report (display_round).
"""
from collections import Counter, OrderedDict
from datetime import date

from loguru import logger

from flockstats.exceptions import ValidationError
from flockstats.extensions import db
from flockstats.models import ClanBattle, ClanBattleNonplayerStats, ClanBattlePlayerStats, RosterMember
from flockstats.services import calculations, roster_service
from flockstats.services.battle_service import battles_in_range
from flockstats.services.periods import month_bounds, month_id_from_date, months_between
from flockstats.utils.formatters import display_round

# Relative change between first and last third of a series that counts as a trend
TREND_THRESHOLD_PERCENT = 5.0

IMPROVING = 'improving'
DECLINING = 'declining'
STABLE = 'stable'

# Opponents faced at least this many times are flagged as rivals
RIVAL_MIN_BATTLES = 3
RECENT_MATCHUPS = 5

LONGEST_TENURED_LIMIT = 10

BATTLE = 'battle'
MONTHLY = 'monthly'


def _check_range(start, end):
    if start is not None and end is not None and start > end:
        raise ValidationError(f"start {start.isoformat()} is after end {end.isoformat()}")


# =====================================================
# Trend Classification
# =====================================================

def classify_trend(values):
    """Classify an ordered series as improving, declining or stable.

    Compares the mean of the first third of the series with the mean of the
    last third (integer division). Fewer than 3 values is always stable, as
    is a first-third mean of 0.
    """
    if len(values) < 3:
        return STABLE

    third = len(values) // 3
    first_avg = calculations.average(values[:third])
    last_avg = calculations.average(values[-third:])
    if first_avg == 0:
        return STABLE

    change = (last_avg - first_avg) / first_avg * calculations.PERCENTAGE_MULTIPLIER
    if change > TREND_THRESHOLD_PERCENT:
        return IMPROVING
    if change < -TREND_THRESHOLD_PERCENT:
        return DECLINING
    return STABLE


def participation_rate(battle):
    """Players as a share of players plus non-reserve non-players."""
    players = len(battle.player_stats)
    nonplaying = sum(1 for np in battle.nonplayer_stats if not np.reserve)
    return calculations.percentage(players, players + nonplaying)


# =====================================================
# Clan Trends
# =====================================================

def _battle_points(battles):
    flock_power, ratio, participation, margin = [], [], [], []
    for battle in battles:
        month_id = battle.month_id
        day = battle.start_date.isoformat()
        flock_power.append({
            'date': day,
            'key': battle.battle_id,
            'month_id': month_id,
            'total_fp': battle.fp,
            'baseline_fp': battle.baseline_fp,
        })
        ratio.append({
            'date': day,
            'key': battle.battle_id,
            'month_id': month_id,
            'ratio': battle.ratio,
            'average_ratio': battle.average_ratio,
        })
        nonplaying = sum(1 for np in battle.nonplayer_stats if not np.reserve)
        participation.append({
            'date': day,
            'key': battle.battle_id,
            'month_id': month_id,
            'nonplaying_fp_ratio': battle.nonplaying_fp_ratio,
            'reserve_fp_ratio': battle.reserve_fp_ratio,
            'participation_rate': participation_rate(battle),
            'player_count': len(battle.player_stats),
            'nonplaying_count': nonplaying,
        })
        margin.append({
            'date': day,
            'key': battle.battle_id,
            'month_id': month_id,
            'margin_ratio': battle.margin_ratio,
            'result': battle.result,
            'score': battle.score,
            'opponent_score': battle.opponent_score,
        })
    return flock_power, ratio, participation, margin


def _group_by_month(points):
    groups = OrderedDict()
    for point in points:
        groups.setdefault(point['month_id'], []).append(point)
    return groups


def _monthly_points(points, fields, places, integer_fields=()):
    """Replace each month's points with one point holding the field means."""
    monthly = []
    for month_id, group in _group_by_month(points).items():
        point = {'date': group[0]['date'], 'key': month_id, 'month_id': month_id}
        for field in fields:
            mean = calculations.average([p[field] for p in group])
            point[field] = round(mean) if field in integer_fields else display_round(mean, places)
        monthly.append(point)
    return monthly


def _monthly_margin_points(points):
    monthly = []
    for month_id, group in _group_by_month(points).items():
        results = [p['result'] for p in group]
        wins = results.count(calculations.WIN)
        losses = results.count(calculations.LOSS)
        if wins > losses:
            result = calculations.WIN
        elif losses > wins:
            result = calculations.LOSS
        else:
            result = calculations.TIE
        monthly.append({
            'date': group[0]['date'],
            'key': month_id,
            'month_id': month_id,
            'margin_ratio': display_round(calculations.average([p['margin_ratio'] for p in group])),
            'result': result,
            'wins': wins,
            'losses': losses,
            'ties': results.count(calculations.TIE),
            'score': round(calculations.average([p['score'] for p in group])),
            'opponent_score': round(calculations.average([p['opponent_score'] for p in group])),
        })
    return monthly


def _empty_trend_summary():
    return {
        'battle_count': 0,
        'date_range': {'start': None, 'end': None},
        'fp_trend': {'start': 0, 'end': 0, 'change': 0, 'change_percent': 0.0},
        'ratio_trend': {'average': 0.0, 'min': 0.0, 'max': 0.0, 'direction': STABLE},
        'participation_trend': {'average': 0.0, 'min': 0.0, 'max': 0.0},
        'win_loss_summary': {
            'wins': 0, 'losses': 0, 'ties': 0,
            'win_rate': 0.0, 'loss_rate': 0.0, 'tie_rate': 0.0,
            'avg_win_margin': 0.0, 'avg_loss_margin': 0.0,
        },
    }


def _trend_summary(battles, participation_rates):
    first, last = battles[0], battles[-1]
    fp_change = last.baseline_fp - first.baseline_fp
    ratios = [b.ratio for b in battles]
    results = [b.result for b in battles]
    wins = [b.margin_ratio for b in battles if b.result == calculations.WIN]
    losses = [b.margin_ratio for b in battles if b.result == calculations.LOSS]
    count = len(battles)

    return {
        'battle_count': count,
        'date_range': {'start': first.start_date.isoformat(), 'end': last.start_date.isoformat()},
        'fp_trend': {
            'start': first.baseline_fp,
            'end': last.baseline_fp,
            'change': fp_change,
            'change_percent': display_round(calculations.percentage(fp_change, first.baseline_fp)),
        },
        'ratio_trend': {
            'average': display_round(calculations.average(ratios)),
            'min': display_round(min(ratios)),
            'max': display_round(max(ratios)),
            'direction': classify_trend(ratios),
        },
        'participation_trend': {
            'average': display_round(calculations.average(participation_rates)),
            'min': display_round(min(participation_rates)),
            'max': display_round(max(participation_rates)),
        },
        'win_loss_summary': {
            'wins': len(wins),
            'losses': len(losses),
            'ties': results.count(calculations.TIE),
            'win_rate': display_round(calculations.percentage(len(wins), count)),
            'loss_rate': display_round(calculations.percentage(len(losses), count)),
            'tie_rate': display_round(calculations.percentage(results.count(calculations.TIE), count)),
            'avg_win_margin': display_round(calculations.safe_average(wins)),
            'avg_loss_margin': display_round(calculations.safe_average(losses)),
        },
    }


def get_trends(clan_id, start=None, end=None, aggregation=BATTLE):
    """Clan performance series and summary over a date range.

    Args:
        clan_id: Clan ID
        start: Earliest battle start date (inclusive), or None
        end: Latest battle start date (inclusive), or None
        aggregation: 'battle' for one point per battle, 'monthly' for one
            point per calendar month

    Returns:
        Dictionary with 'flock_power', 'ratio', 'participation', 'margin'
        series and a 'summary' block
    """
    if aggregation not in (BATTLE, MONTHLY):
        raise ValidationError(f"Invalid aggregation: {aggregation!r} (expected 'battle' or 'monthly')")
    _check_range(start, end)

    battles = battles_in_range(clan_id, start, end)
    if not battles:
        return {
            'aggregation': aggregation,
            'flock_power': [],
            'ratio': [],
            'participation': [],
            'margin': [],
            'summary': _empty_trend_summary(),
        }

    flock_power, ratio, participation, margin = _battle_points(battles)
    summary = _trend_summary(battles, [p['participation_rate'] for p in participation])

    if aggregation == MONTHLY:
        flock_power = _monthly_points(
            flock_power, ('total_fp', 'baseline_fp'), 0, integer_fields=('total_fp', 'baseline_fp')
        )
        ratio = _monthly_points(ratio, ('ratio', 'average_ratio'), 2)
        participation = _monthly_points(
            participation,
            ('nonplaying_fp_ratio', 'reserve_fp_ratio', 'participation_rate', 'player_count', 'nonplaying_count'),
            2,
            integer_fields=('player_count', 'nonplaying_count')
        )
        margin = _monthly_margin_points(margin)

    logger.debug(f"Built {aggregation} trends for clan {clan_id} from {len(battles)} battles")
    return {
        'aggregation': aggregation,
        'flock_power': flock_power,
        'ratio': ratio,
        'participation': participation,
        'margin': margin,
        'summary': summary,
    }


# =====================================================
# Player Report
# =====================================================

def get_player_report(clan_id, player_id, start=None, end=None):
    """One player's per-battle performance compared with the clan.

    Returns:
        Dictionary with 'player', 'performance' rows and a 'summary'
    """
    _check_range(start, end)
    member = roster_service.get_member(clan_id, player_id)

    query = (
        db.session.query(ClanBattlePlayerStats, ClanBattle)
        .join(ClanBattle, (ClanBattle.clan_id == ClanBattlePlayerStats.clan_id)
              & (ClanBattle.battle_id == ClanBattlePlayerStats.battle_id))
        .filter(ClanBattlePlayerStats.clan_id == clan_id, ClanBattlePlayerStats.player_id == player_id)
    )
    if start is not None:
        query = query.filter(ClanBattle.start_date >= start)
    if end is not None:
        query = query.filter(ClanBattle.start_date <= end)
    rows = query.order_by(ClanBattle.battle_id.asc()).all()

    battles = battles_in_range(clan_id, start, end)

    performance = [
        {
            'date': battle.start_date.isoformat(),
            'battle_id': battle.battle_id,
            'opponent_name': battle.opponent_name,
            'player_ratio': stat.ratio,
            'clan_ratio': battle.ratio,
            'clan_average_ratio': battle.average_ratio,
            'rank': stat.rank,
            'ratio_rank': stat.ratio_rank,
            'score': stat.score,
            'fp': stat.fp,
            'action_code': stat.action_code,
        }
        for stat, battle in rows
    ]

    ratios = [stat.ratio for stat, _ in rows]
    avg_ratio = calculations.safe_average(ratios)
    clan_avg_ratio = calculations.safe_average([b.ratio for b in battles])
    comparison = (
        (avg_ratio / clan_avg_ratio - 1) * calculations.PERCENTAGE_MULTIPLIER if clan_avg_ratio else 0.0
    )

    return {
        'player': {
            'player_id': member.player_id,
            'player_name': member.player_name,
            'active': member.active,
            'state': roster_service.lifecycle_state(member),
        },
        'performance': performance,
        'summary': {
            'total_battles': len(battles),
            'battles_played': len(rows),
            'participation_rate': display_round(calculations.percentage(len(rows), len(battles))),
            'avg_ratio': display_round(avg_ratio),
            'min_ratio': display_round(min(ratios)) if ratios else 0.0,
            'max_ratio': display_round(max(ratios)) if ratios else 0.0,
            'clan_avg_ratio': display_round(clan_avg_ratio),
            'comparison_to_clan': display_round(comparison),
            'trend': classify_trend(ratios),
        },
    }


# =====================================================
# Matchups
# =====================================================

def _tally(results):
    return (
        results.count(calculations.WIN),
        results.count(calculations.LOSS),
        results.count(calculations.TIE),
    )


def get_matchups(clan_id, start=None, end=None):
    """Results grouped by opponent name and by opponent country.

    Returns:
        Dictionary with 'opponents' (most faced first), 'countries' and 'summary'
    """
    _check_range(start, end)
    battles = list(reversed(battles_in_range(clan_id, start, end)))  # newest first

    by_opponent = OrderedDict()
    by_country = OrderedDict()
    for battle in battles:
        by_opponent.setdefault(battle.opponent_name, []).append(battle)
        by_country.setdefault(battle.opponent_country, []).append(battle)

    opponents = []
    for name, faced in by_opponent.items():
        wins, losses, ties = _tally([b.result for b in faced])
        fp_diffs = [b.baseline_fp - b.opponent_fp for b in faced]
        opponents.append({
            'name': name,
            'rovio_id': faced[0].opponent_rovio_id,
            'country': faced[0].opponent_country,
            'battles': len(faced),
            'wins': wins,
            'losses': losses,
            'ties': ties,
            'win_rate': display_round(calculations.percentage(wins, len(faced))),
            'avg_fp_diff': display_round(calculations.average(fp_diffs), 0),
            'is_rival': len(faced) >= RIVAL_MIN_BATTLES,
            'recent_battles': [
                {
                    'battle_id': b.battle_id,
                    'date': b.start_date.isoformat(),
                    'result': b.result,
                    'score': b.score,
                    'opponent_score': b.opponent_score,
                    'fp_diff': b.baseline_fp - b.opponent_fp,
                }
                for b in faced[:RECENT_MATCHUPS]
            ],
        })
    opponents.sort(key=lambda o: -o['battles'])

    countries = []
    for country, faced in by_country.items():
        wins, losses, ties = _tally([b.result for b in faced])
        countries.append({
            'country': country,
            'battles': len(faced),
            'wins': wins,
            'losses': losses,
            'ties': ties,
            'win_rate': display_round(calculations.percentage(wins, len(faced))),
            'percentage': display_round(calculations.percentage(len(faced), len(battles))),
        })
    countries.sort(key=lambda c: -c['battles'])

    return {
        'opponents': opponents,
        'countries': countries,
        'summary': {
            'total_battles': len(battles),
            'unique_opponents': len(opponents),
            'unique_countries': len(countries),
            'rivals': sum(1 for o in opponents if o['is_rival']),
        },
    }


# =====================================================
# Roster Churn
# =====================================================

def _in_range(value, start, end):
    if value is None:
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def _active_at(member, day):
    if member.joined_date > day:
        return False
    departure = member.departure_date
    return departure is None or departure > day


def _action_code_frequency(clan_id, start, end):
    counts = Counter()
    for model in (ClanBattlePlayerStats, ClanBattleNonplayerStats):
        query = (
            db.session.query(model.action_code, db.func.count())
            .join(ClanBattle, (ClanBattle.clan_id == model.clan_id) & (ClanBattle.battle_id == model.battle_id))
            .filter(model.clan_id == clan_id)
        )
        if start is not None:
            query = query.filter(ClanBattle.start_date >= start)
        if end is not None:
            query = query.filter(ClanBattle.start_date <= end)
        for action_code, count in query.group_by(model.action_code).all():
            counts[action_code] += count
    total = sum(counts.values())
    return [
        {
            'action_code': code,
            'count': counts.get(code, 0),
            'percentage': display_round(calculations.percentage(counts.get(code, 0), total)),
        }
        for code in roster_service.ACTION_CODES
    ]


def get_roster_churn(clan_id, start=None, end=None, today=None):
    """Join/leave/kick activity of a clan roster by calendar month.

    Args:
        clan_id: Clan ID
        start: First day of the range, defaults to the earliest join date
        end: Last day of the range, defaults to today
        today: Reference date for tenure, defaults to date.today()

    Returns:
        Dictionary with 'monthly' buckets, 'summary', 'action_codes' and
        'longest_tenured'. The summary's retention_rate is the share of
        members who joined within the range and are still active; members
        who joined before the range count toward neither side.

    Raises:
        ConsistencyError: a roster member is in more than one lifecycle state
    """
    _check_range(start, end)
    today = today or date.today()
    members = RosterMember.query.filter_by(clan_id=clan_id).order_by(RosterMember.player_id).all()
    for member in members:
        roster_service.check_lifecycle(member)

    range_start = start or min((m.joined_date for m in members), default=today)
    range_end = end or today

    buckets = OrderedDict(
        (month_id, {'month_id': month_id, 'joined': 0, 'left': 0, 'kicked': 0})
        for month_id in months_between(range_start, range_end)
    )
    for member in members:
        for field, event in (('joined_date', 'joined'), ('left_date', 'left'), ('kicked_date', 'kicked')):
            day = getattr(member, field)
            if _in_range(day, range_start, range_end):
                buckets[month_id_from_date(day)][event] += 1

    for month_id, bucket in buckets.items():
        month_end = month_bounds(month_id)[1]
        bucket['net_change'] = bucket['joined'] - bucket['left'] - bucket['kicked']
        bucket['active_at_month_end'] = sum(1 for m in members if _active_at(m, month_end))

    joined_in_range = [m for m in members if _in_range(m.joined_date, range_start, range_end)]
    active = [m for m in members if m.active]
    retained = [m for m in joined_in_range if m.active]
    tenures = [(today - m.joined_date).days for m in active]

    longest = sorted(active, key=lambda m: (m.joined_date, m.player_id))[:LONGEST_TENURED_LIMIT]

    return {
        'monthly': list(buckets.values()),
        'summary': {
            'range_start': range_start.isoformat(),
            'range_end': range_end.isoformat(),
            'total_joined': sum(b['joined'] for b in buckets.values()),
            'total_left': sum(b['left'] for b in buckets.values()),
            'total_kicked': sum(b['kicked'] for b in buckets.values()),
            'currently_active': len(active),
            'inactive_members': len(members) - len(active),
            'retention_rate': display_round(calculations.percentage(len(retained), len(joined_in_range))),
            'average_tenure_days': display_round(calculations.safe_average(tenures), 1),
        },
        'action_codes': _action_code_frequency(clan_id, range_start, range_end),
        'longest_tenured': [
            {
                'player_id': m.player_id,
                'player_name': m.player_name,
                'joined_date': m.joined_date.isoformat(),
                'tenure_days': (today - m.joined_date).days,
            }
            for m in longest
        ],
    }
