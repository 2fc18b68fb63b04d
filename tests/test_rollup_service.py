"""Tests for lazy period rollups, the completion lock and the create race."""
from types import SimpleNamespace

import pytest

from conftest import ACTOR, CLAN_ID, make_entry, player
from flockstats.exceptions import NotFoundError, ValidationError
from flockstats.extensions import db
from flockstats.models import (
    AuditLog,
    MonthlyClanPerformance,
    MonthlyIndividualPerformance,
    PeriodState,
    YearlyClanPerformance,
    insert_or_fetch,
)
from flockstats.services import battle_service, rollup_service

pytestmark = pytest.mark.integration


def _record(*entries):
    for entry in entries:
        battle_service.create_battle(CLAN_ID, entry)


def _january_and_february():
    _record(
        make_entry('20240103', score=50000, opponent_score=45000),
        make_entry('20240106', score=40000, opponent_score=45000),
        make_entry('20240109', score=30000, opponent_score=30000),
        make_entry('20240201', score=10000, opponent_score=5000),
    )


@pytest.mark.unit
def test_aggregate_clan_performance_means_and_counts():
    battles = [
        SimpleNamespace(result=1, fp=2000, baseline_fp=2500, ratio=200.0, average_ratio=250.0,
                        margin_ratio=10.0, fp_margin=4.0, nonplaying_count=1, nonplaying_fp_ratio=5.0,
                        reserve_count=0, reserve_fp_ratio=0.0),
        SimpleNamespace(result=-1, fp=2100, baseline_fp=2600, ratio=100.0, average_ratio=120.0,
                        margin_ratio=-20.0, fp_margin=-2.0, nonplaying_count=2, nonplaying_fp_ratio=15.0,
                        reserve_count=1, reserve_fp_ratio=10.0),
    ]
    values = rollup_service.aggregate_clan_performance(battles)
    assert (values['battle_count'], values['won_count'], values['lost_count'], values['tied_count']) == (2, 1, 1, 0)
    assert values['average_ratio'] == pytest.approx(150.0)
    assert values['average_margin_ratio'] == pytest.approx(-5.0)
    assert values['average_nonplaying_count'] == pytest.approx(1.5)
    assert values['average_reserve_fp_ratio'] == pytest.approx(5.0)


@pytest.mark.unit
def test_aggregate_individual_performance_requires_minimum_battles():
    rows = [
        SimpleNamespace(player_id=pid, score=score, fp=100, ratio=ratio, rank=rank, ratio_rank=rank)
        for pid, score, ratio, rank in [
            (1, 1000, 100.0, 1), (1, 2000, 200.0, 2), (1, 3000, 300.0, 1),
            (2, 500, 50.0, 2), (2, 500, 50.0, 1),
        ]
    ]
    result = rollup_service.aggregate_individual_performance(rows)
    assert [r['player_id'] for r in result] == [1]
    assert result[0]['battles_played'] == 3
    assert result[0]['average_ratio'] == pytest.approx(200.0)
    assert result[0]['average_rank'] == pytest.approx(4 / 3)


def test_monthly_rollup_averages_only_in_month_battles(app):
    _january_and_february()
    row = rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')

    assert row.battle_count == 3
    assert (row.won_count, row.lost_count, row.tied_count) == (1, 1, 1)
    assert row.average_ratio == pytest.approx((200.0 + 160.0 + 120.0) / 3)
    assert row.state is PeriodState.OPEN
    assert row.is_complete is False


def test_yearly_rollup_includes_every_month(app):
    _january_and_february()
    row = rollup_service.get_or_compute_clan_performance(CLAN_ID, '2024')
    assert isinstance(row, YearlyClanPerformance)
    assert row.battle_count == 4


def test_missing_period_is_not_found(app):
    with pytest.raises(NotFoundError):
        rollup_service.get_or_compute_clan_performance(CLAN_ID, '202405')
    assert MonthlyClanPerformance.query.count() == 0


def test_malformed_period_is_validation_error(app):
    with pytest.raises(ValidationError):
        rollup_service.get_or_compute_clan_performance(CLAN_ID, '2024-01')


def test_first_read_locks_in_values(app):
    _record(make_entry('20240103'))
    first = rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')
    assert first.battle_count == 1

    _record(make_entry('20240106', score=10000))
    again = rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')
    assert again.battle_count == 1
    assert MonthlyClanPerformance.query.count() == 1


def test_concurrent_first_reads_create_one_row(app, monkeypatch):
    """A second reader that lost the insert race gets the first writer's row."""
    _record(make_entry('20240103'), make_entry('20240106'), make_entry('20240109'))

    original = rollup_service.qualifying_battles
    competitor = {}

    def racing_qualifying_battles(clan_id, period_id):
        battles = original(clan_id, period_id)
        if not competitor:
            # Another request materializes the rollup between our check and our insert
            values = rollup_service.clan_rollup_values(clan_id, period_id, battles)
            competitor['row'] = insert_or_fetch(MonthlyClanPerformance, values)
        return battles

    monkeypatch.setattr(rollup_service, 'qualifying_battles', racing_qualifying_battles)
    row = rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')

    assert MonthlyClanPerformance.query.count() == 1
    assert row.battle_count == 3
    assert row.average_ratio == competitor['row'].average_ratio


def test_insert_or_fetch_is_idempotent(app):
    _record(make_entry('20240103'))
    battles = rollup_service.qualifying_battles(CLAN_ID, '202401')
    values = rollup_service.clan_rollup_values(CLAN_ID, '202401', battles)

    first = insert_or_fetch(MonthlyClanPerformance, values)
    second = insert_or_fetch(MonthlyClanPerformance, dict(values, battle_count=99))
    db.session.commit()

    assert first is second
    assert second.battle_count == 1
    assert MonthlyClanPerformance.query.count() == 1


def test_insert_or_fetch_names_unsupported_dialect(app, monkeypatch):
    bind = SimpleNamespace(dialect=SimpleNamespace(name='mysql'))
    monkeypatch.setattr(db.session(), 'get_bind', lambda *args, **kwargs: bind)
    with pytest.raises(RuntimeError, match='mysql'):
        insert_or_fetch(MonthlyClanPerformance, {'clan_id': CLAN_ID, 'month_id': '202401'})


def test_individual_rollups(app):
    players = [player(1, 30000, 1000), player(2, 20000, 1000)]
    _record(
        make_entry('20240103', players=players),
        make_entry('20240106', players=players),
        make_entry('20240109', players=[player(1, 10000, 1000), player(3, 5000, 500)]),
    )
    rows = rollup_service.get_or_compute_individual_performance(CLAN_ID, '202401')

    assert [r.player_id for r in rows] == [1]
    assert rows[0].battles_played == 3
    assert rows[0].average_ratio == pytest.approx((300.0 + 300.0 + 100.0) / 3)
    assert MonthlyIndividualPerformance.query.count() == 1

    assert rollup_service.get_player_performance(CLAN_ID, '202401', 1).player_id == 1
    with pytest.raises(NotFoundError):
        rollup_service.get_player_performance(CLAN_ID, '202401', 2)


def test_individual_rollups_empty_when_nobody_qualifies(app):
    _record(make_entry('20240103'))
    assert rollup_service.get_or_compute_individual_performance(CLAN_ID, '202401') == []
    with pytest.raises(NotFoundError):
        rollup_service.get_or_compute_individual_performance(CLAN_ID, '202402')


def test_set_month_complete_and_reopen(app):
    _record(make_entry('20240103'))
    with pytest.raises(NotFoundError):
        rollup_service.set_month_complete(CLAN_ID, '202401', True, actor_id=ACTOR)

    rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')
    row = rollup_service.set_month_complete(CLAN_ID, '202401', True, actor_id=ACTOR)
    assert row.state is PeriodState.COMPLETE

    row = rollup_service.set_month_complete(CLAN_ID, '202401', False, actor_id=ACTOR)
    assert row.state is PeriodState.OPEN

    actions = [a.action_type for a in AuditLog.query.filter_by(entity_type='MONTHLY_STATS').order_by(AuditLog.log_id)]
    assert actions == ['MONTH_COMPLETED', 'MONTH_REOPENED']


def test_years_have_no_lock(app):
    _record(make_entry('20240103'))
    rollup_service.get_or_compute_clan_performance(CLAN_ID, '2024')
    with pytest.raises(ValidationError):
        rollup_service.set_month_complete(CLAN_ID, '2024', True, actor_id=ACTOR)


def test_list_periods(app):
    _january_and_february()
    rollup_service.get_or_compute_clan_performance(CLAN_ID, '202401')

    months = rollup_service.list_periods(CLAN_ID, 'month')
    assert months == [
        {'period_id': '202402', 'battle_count': 1, 'materialized': False, 'state': None},
        {'period_id': '202401', 'battle_count': 3, 'materialized': True, 'state': 'open'},
    ]
    years = rollup_service.list_periods(CLAN_ID, 'year')
    assert years == [{'period_id': '2024', 'battle_count': 4, 'materialized': False}]
