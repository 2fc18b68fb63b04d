"""Period rollup engine - monthly and yearly clan/player performance.

Rollups are materialized lazily: the first read of a period with battles
computes and stores the rollup, and later reads return the stored row even
if more battles are recorded afterwards. Only recalculation_service replaces
an existing rollup.

Monthly clan rollups carry a completion lock (PeriodState). Yearly rollups
and player rollups have no lock.
"""
from collections import OrderedDict

from loguru import logger
from sqlalchemy import func, literal_column

from flockstats.exceptions import NotFoundError, ValidationError
from flockstats.extensions import db
from flockstats.models import (
    ClanBattle,
    ClanBattlePlayerStats,
    MonthlyClanPerformance,
    MonthlyIndividualPerformance,
    PeriodState,
    YearlyClanPerformance,
    YearlyIndividualPerformance,
    insert_or_fetch,
)
from flockstats.services import audit_service, calculations
from flockstats.services.periods import MONTH, YEAR, period_granularity

# Players need at least this many battles in a period to get a rollup row
MIN_BATTLES_FOR_STATS = 3

_PERIOD_MODELS = {
    MONTH: (MonthlyClanPerformance, MonthlyIndividualPerformance, 'month_id'),
    YEAR: (YearlyClanPerformance, YearlyIndividualPerformance, 'year_id'),
}


def period_models(period_id):
    """Resolve the rollup tables for a period id.

    Returns:
        Tuple of (granularity, clan model, individual model, period column name)

    Raises:
        ValidationError: period id is neither YYYYMM nor YYYY
    """
    granularity = period_granularity(period_id)
    clan_model, individual_model, key = _PERIOD_MODELS[granularity]
    return granularity, clan_model, individual_model, key


# =====================================================
# Qualifying Battles
# =====================================================

def qualifying_battles(clan_id, period_id):
    """Battles of a clan whose battle_id falls in the period, oldest first."""
    return (
        ClanBattle.query
        .filter(ClanBattle.clan_id == clan_id, ClanBattle.battle_id.startswith(period_id))
        .order_by(ClanBattle.battle_id.asc())
        .all()
    )


def qualifying_player_stats(clan_id, period_id):
    """Player rows of the period's battles, in battle order."""
    return (
        ClanBattlePlayerStats.query
        .filter(
            ClanBattlePlayerStats.clan_id == clan_id,
            ClanBattlePlayerStats.battle_id.startswith(period_id)
        )
        .order_by(ClanBattlePlayerStats.battle_id.asc(), ClanBattlePlayerStats.player_id.asc())
        .all()
    )


# =====================================================
# Aggregation (pure)
# =====================================================

def aggregate_clan_performance(battles):
    """Aggregate a non-empty battle set into clan rollup column values.

    Counts are sums; every other metric is the unrounded mean of the stored
    per-battle value, taken in the order given.

    Args:
        battles: Objects with the ClanBattle derived attributes

    Returns:
        Dictionary of rollup column values (no key columns, no state)
    """
    if not battles:
        raise ValueError('Cannot aggregate an empty battle set')

    def mean(attr):
        return calculations.average([getattr(b, attr) for b in battles])

    results = [b.result for b in battles]
    return {
        'battle_count': len(battles),
        'won_count': results.count(calculations.WIN),
        'lost_count': results.count(calculations.LOSS),
        'tied_count': results.count(calculations.TIE),
        'average_fp': mean('fp'),
        'average_baseline_fp': mean('baseline_fp'),
        'average_ratio': mean('ratio'),
        'average_average_ratio': mean('average_ratio'),
        'average_margin_ratio': mean('margin_ratio'),
        'average_fp_margin': mean('fp_margin'),
        'average_nonplaying_count': mean('nonplaying_count'),
        'average_nonplaying_fp_ratio': mean('nonplaying_fp_ratio'),
        'average_reserve_count': mean('reserve_count'),
        'average_reserve_fp_ratio': mean('reserve_fp_ratio'),
    }


def aggregate_individual_performance(player_stats, min_battles=MIN_BATTLES_FOR_STATS):
    """Aggregate player rows into per-player rollup values.

    Args:
        player_stats: Objects with player_id, score, fp, ratio, rank, ratio_rank
        min_battles: Players with fewer battles are left out

    Returns:
        List of dicts (player_id plus rollup columns), ordered by
        average_ratio descending then player_id
    """
    by_player = OrderedDict()
    for row in player_stats:
        by_player.setdefault(row.player_id, []).append(row)

    aggregates = []
    for player_id, rows in by_player.items():
        if len(rows) < min_battles:
            continue
        aggregates.append({
            'player_id': player_id,
            'battles_played': len(rows),
            'average_score': calculations.average([r.score for r in rows]),
            'average_fp': calculations.average([r.fp for r in rows]),
            'average_ratio': calculations.average([r.ratio for r in rows]),
            'average_rank': calculations.average([r.rank for r in rows]),
            'average_ratio_rank': calculations.average([r.ratio_rank for r in rows]),
        })

    aggregates.sort(key=lambda a: (-a['average_ratio'], a['player_id']))
    return aggregates


# =====================================================
# Materialization
# =====================================================

def clan_rollup_values(clan_id, period_id, battles):
    """Full insert values for a clan rollup row, state open for months."""
    granularity, _, _, key = period_models(period_id)
    values = aggregate_clan_performance(battles)
    values['clan_id'] = clan_id
    values[key] = period_id
    if granularity == MONTH:
        values['state'] = PeriodState.OPEN
    return values


def individual_rollup_values(clan_id, period_id, player_stats):
    _, _, _, key = period_models(period_id)
    rows = []
    for aggregate in aggregate_individual_performance(player_stats):
        aggregate['clan_id'] = clan_id
        aggregate[key] = period_id
        rows.append(aggregate)
    return rows


def get_or_compute_clan_performance(clan_id, period_id):
    """Return the clan rollup for a month or year, computing it on first read.

    Args:
        clan_id: Clan ID
        period_id: YYYYMM or YYYY

    Returns:
        MonthlyClanPerformance or YearlyClanPerformance

    Raises:
        ValidationError: malformed period id
        NotFoundError: no stored rollup and no qualifying battles
    """
    _, clan_model, _, _ = period_models(period_id)

    stored = db.session.get(clan_model, (clan_id, period_id))
    if stored is not None:
        return stored

    battles = qualifying_battles(clan_id, period_id)
    if not battles:
        raise NotFoundError(f"No battles found for clan {clan_id} in period {period_id}", period_id=period_id)

    values = clan_rollup_values(clan_id, period_id, battles)
    try:
        row = insert_or_fetch(clan_model, values)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error storing {clan_model.__tablename__} for clan {clan_id} period {period_id}: {e}")
        raise

    logger.info(f"Materialized {clan_model.__tablename__} for clan {clan_id} period {period_id} from {len(battles)} battles")
    return row


def _stored_individual_rows(individual_model, key, clan_id, period_id):
    return (
        individual_model.query
        .filter_by(clan_id=clan_id, **{key: period_id})
        .order_by(individual_model.average_ratio.desc(), individual_model.player_id.asc())
        .all()
    )


def get_or_compute_individual_performance(clan_id, period_id):
    """Return per-player rollups for a month or year, computing them on first read.

    Only players with at least MIN_BATTLES_FOR_STATS battles in the period
    get a row. A period whose players all fall short returns an empty list.

    Returns:
        List of Monthly/YearlyIndividualPerformance, best average ratio first

    Raises:
        ValidationError: malformed period id
        NotFoundError: no stored rollups and no player rows in the period
    """
    _, _, individual_model, key = period_models(period_id)

    stored = _stored_individual_rows(individual_model, key, clan_id, period_id)
    if stored:
        return stored

    player_stats = qualifying_player_stats(clan_id, period_id)
    if not player_stats:
        raise NotFoundError(f"No player stats found for clan {clan_id} in period {period_id}", period_id=period_id)

    rows = individual_rollup_values(clan_id, period_id, player_stats)
    if not rows:
        logger.debug(f"No player reached {MIN_BATTLES_FOR_STATS} battles for clan {clan_id} in period {period_id}")
        return []

    try:
        for values in rows:
            insert_or_fetch(individual_model, values)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error storing {individual_model.__tablename__} for clan {clan_id} period {period_id}: {e}")
        raise

    logger.info(f"Materialized {len(rows)} {individual_model.__tablename__} rows for clan {clan_id} period {period_id}")
    return _stored_individual_rows(individual_model, key, clan_id, period_id)


def get_player_performance(clan_id, period_id, player_id):
    """Single player's rollup for a period.

    Raises:
        NotFoundError: the player has no rollup (too few battles or absent)
    """
    for row in get_or_compute_individual_performance(clan_id, period_id):
        if row.player_id == player_id:
            return row
    raise NotFoundError(
        f"No stats for player {player_id} in clan {clan_id} period {period_id} "
        f"(requires at least {MIN_BATTLES_FOR_STATS} battles)",
        player_id=player_id
    )


# =====================================================
# Completion Lock
# =====================================================

def set_month_complete(clan_id, month_id, complete, actor_id=None):
    """Mark a monthly rollup complete, or reopen it.

    Args:
        clan_id: Clan ID
        month_id: YYYYMM
        complete: True to lock, False to reopen
        actor_id: Trusted actor identifier

    Returns:
        The updated MonthlyClanPerformance

    Raises:
        ValidationError: not a month id (years have no lock)
        NotFoundError: the month has not been materialized yet
    """
    if period_granularity(month_id) != MONTH:
        raise ValidationError(f"Only months can be marked complete, got {month_id!r}")

    row = db.session.get(MonthlyClanPerformance, (clan_id, month_id))
    if row is None:
        raise NotFoundError(
            f"Monthly stats for clan {clan_id} month {month_id} do not exist yet; view the month first",
            month_id=month_id
        )

    previous = row.state
    row.state = PeriodState.COMPLETE if complete else PeriodState.OPEN
    try:
        audit_service.record(
            actor_id,
            audit_service.MONTH_COMPLETED if complete else audit_service.MONTH_REOPENED,
            audit_service.MONTHLY_STATS,
            month_id,
            clan_id,
            {'previous_state': previous.value, 'state': row.state.value}
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error setting completion of clan {clan_id} month {month_id}: {e}")
        raise

    logger.info(f"Clan {clan_id} month {month_id} is now {row.state.value}")
    return row


# =====================================================
# Period Listing
# =====================================================

def list_periods(clan_id, granularity=MONTH):
    """Every month (or year) in which the clan has battles, newest first.

    Returns:
        List of dicts with period_id, battle_count, materialized, state
    """
    if granularity not in _PERIOD_MODELS:
        raise ValidationError(f"Invalid granularity: {granularity!r} (expected 'month' or 'year')")
    clan_model, _, key = _PERIOD_MODELS[granularity]
    length = 6 if granularity == MONTH else 4

    # Literal substr bounds
    period_expr = func.substr(ClanBattle.battle_id, literal_column('1'), literal_column(str(length)))
    counts = (
        db.session.query(period_expr.label('period_id'), func.count().label('battle_count'))
        .filter(ClanBattle.clan_id == clan_id)
        .group_by(period_expr)
        .order_by(period_expr.desc())
        .all()
    )

    stored = {
        getattr(row, key): row
        for row in clan_model.query.filter_by(clan_id=clan_id).all()
    }

    periods = []
    for period_id, battle_count in counts:
        row = stored.get(period_id)
        entry = {
            'period_id': period_id,
            'battle_count': battle_count,
            'materialized': row is not None,
        }
        if granularity == MONTH:
            entry['state'] = row.state.value if row is not None else None
        periods.append(entry)
    return periods
