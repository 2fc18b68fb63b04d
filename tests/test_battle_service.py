"""Tests for the battle record builder."""
from datetime import date

import pytest

from conftest import ACTOR, CLAN_ID, make_entry, nonplayer, player
from flockstats.exceptions import ConflictError, NotFoundError, ScheduleError, ValidationError
from flockstats.extensions import db
from flockstats.models import AuditLog, ClanBattle, ClanBattlePlayerStats, RosterMember
from flockstats.services import battle_service

pytestmark = pytest.mark.integration


def test_create_battle_derives_every_field(app):
    entry = make_entry(
        '20240103',
        players=[player(1, 30000, 1000), player(2, 20000, 1000)],
        nonplayers=[nonplayer(3, 500), nonplayer(4, 700, reserve=True, action_code='RESERVE')],
    )
    battle = battle_service.create_battle(CLAN_ID, entry, actor_id=ACTOR)

    assert battle.result == 1
    assert battle.ratio == pytest.approx(200.0)
    assert battle.margin_ratio == pytest.approx(10.0)
    assert battle.fp == 2500  # players + non-reserve non-players
    assert battle.average_ratio == pytest.approx(50000 / 2500 * 10)
    assert battle.fp_margin == pytest.approx((2500 - 2400) / 2500 * 100)
    assert battle.nonplaying_count == 1
    assert battle.nonplaying_fp_ratio == pytest.approx(20.0)
    assert battle.reserve_count == 1
    assert battle.reserve_fp_ratio == pytest.approx(700 / 3200 * 100)
    assert battle.projected_score == pytest.approx(60000.0)
    assert battle.start_date == date(2024, 1, 3)
    assert battle.end_date == date(2024, 1, 4)

    ranks = {ps.player_id: (ps.ratio, ps.ratio_rank) for ps in battle.player_stats}
    assert ranks[1] == (pytest.approx(300.0), 1)
    assert ranks[2] == (pytest.approx(200.0), 2)

    audit = AuditLog.query.filter_by(action_type='BATTLE_CREATED').one()
    assert audit.actor_id == ACTOR
    assert audit.entity_id == '20240103'


def test_create_battle_zero_score_has_finite_margins(app):
    entry = make_entry('20240103', score=0, opponent_score=1000, players=[player(1, 0, 1000)])
    battle = battle_service.create_battle(CLAN_ID, entry)
    assert battle.result == -1
    assert battle.margin_ratio == 0.0


def test_tied_player_ratios_share_rank(app):
    entry = make_entry('20240103', players=[
        player(1, 20000, 1000),
        player(2, 20000, 1000),
        player(3, 10000, 1000),
    ])
    battle = battle_service.create_battle(CLAN_ID, entry)
    assert sorted(ps.ratio_rank for ps in battle.player_stats) == [1, 1, 3]


def test_unscheduled_battle_is_rejected(app):
    with pytest.raises(ScheduleError):
        battle_service.create_battle(CLAN_ID, make_entry('20240104'))
    assert ClanBattle.query.count() == 0


def test_duplicate_battle_is_conflict(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    with pytest.raises(ConflictError):
        battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    # Another clan can record the same battle
    battle_service.create_battle(2, make_entry('20240103', players=[player(10, 100, 10)]))
    assert ClanBattle.query.count() == 2


@pytest.mark.parametrize('change', [
    {'battle_id': '2024-01-03'},
    {'score': -1},
    {'baseline_fp': 0},
    {'score': '50000'},
    {'player_stats': []},
    {'opponent_name': ''},
])
def test_invalid_entries_are_rejected(app, change):
    entry = make_entry('20240103')
    entry.update(change)
    with pytest.raises(ValidationError):
        battle_service.create_battle(CLAN_ID, entry)


def test_player_listed_twice_is_rejected(app):
    entry = make_entry('20240103', players=[player(1, 100, 10)], nonplayers=[nonplayer(1, 10)])
    with pytest.raises(ValidationError):
        battle_service.create_battle(CLAN_ID, entry)


def test_unknown_action_code_is_rejected(app):
    entry = make_entry('20240103', nonplayers=[nonplayer(3, 10, action_code='BAN')])
    with pytest.raises(ValidationError):
        battle_service.create_battle(CLAN_ID, entry)


def test_failed_write_leaves_nothing_behind(app):
    # Player 5 belongs to another clan, discovered mid-write
    battle_service.create_battle(2, make_entry('20240103', players=[player(5, 100, 10)]))
    entry = make_entry('20240106', players=[player(1, 100, 10), player(5, 100, 10)])
    with pytest.raises(ValidationError):
        battle_service.create_battle(CLAN_ID, entry)

    assert db.session.get(ClanBattle, (CLAN_ID, '20240106')) is None
    assert ClanBattlePlayerStats.query.filter_by(clan_id=CLAN_ID).count() == 0
    assert db.session.get(RosterMember, 1) is None


def test_first_appearance_creates_roster_member(app):
    entry = make_entry('20240103', players=[player(1, 100, 10, player_name='Red')])
    battle_service.create_battle(CLAN_ID, entry)
    member = db.session.get(RosterMember, 1)
    assert member.player_name == 'Red'
    assert member.joined_date == date(2024, 1, 3)
    assert member.active is True


def test_kick_and_left_action_codes_update_roster(app):
    entry = make_entry('20240103', nonplayers=[
        nonplayer(3, 100, action_code='KICK', action_reason='inactive'),
        nonplayer(4, 100, action_code='LEFT'),
        nonplayer(5, 100, action_code='WARN'),
    ])
    battle_service.create_battle(CLAN_ID, entry)

    kicked = db.session.get(RosterMember, 3)
    left = db.session.get(RosterMember, 4)
    warned = db.session.get(RosterMember, 5)
    assert (kicked.active, kicked.kicked_date, kicked.left_date) == (False, date(2024, 1, 4), None)
    assert (left.active, left.left_date, left.kicked_date) == (False, date(2024, 1, 4), None)
    assert warned.active is True


def test_update_battle_rederives_from_raw_inputs(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    battle = battle_service.update_battle(CLAN_ID, '20240103', {'opponent_score': 55000}, actor_id=ACTOR)

    assert battle.result == -1
    assert battle.margin_ratio == pytest.approx(-10.0)
    assert battle.ratio == pytest.approx(200.0)
    assert len(battle.player_stats) == 2
    assert ClanBattle.query.count() == 1
    assert AuditLog.query.filter_by(action_type='BATTLE_UPDATED').count() == 1


def test_update_battle_replaces_players(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    battle = battle_service.update_battle(CLAN_ID, '20240103', {'player_stats': [player(1, 50000, 2500)]})
    assert [ps.player_id for ps in battle.player_stats] == [1]
    assert battle.fp == 2500
    assert ClanBattlePlayerStats.query.count() == 1


def test_update_battle_cannot_move_battle_id(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    with pytest.raises(ValidationError):
        battle_service.update_battle(CLAN_ID, '20240103', {'battle_id': '20240106'})


def test_delete_battle(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    battle_service.delete_battle(CLAN_ID, '20240103', actor_id=ACTOR)
    assert ClanBattle.query.count() == 0
    assert ClanBattlePlayerStats.query.count() == 0
    with pytest.raises(NotFoundError):
        battle_service.get_battle(CLAN_ID, '20240103')


def test_list_battles_filters_and_paginates(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103', opponent_name='Pigs'))
    battle_service.create_battle(CLAN_ID, make_entry('20240106', opponent_score=60000))
    battle_service.create_battle(CLAN_ID, make_entry('20240201'))

    result = battle_service.list_battles(CLAN_ID, limit=2)
    assert result['total'] == 3
    assert [b['battle_id'] for b in result['battles']] == ['20240201', '20240106']

    losses = battle_service.list_battles(CLAN_ID, result=-1)
    assert [b['battle_id'] for b in losses['battles']] == ['20240106']

    january = battle_service.list_battles(CLAN_ID, start=date(2024, 1, 1), end=date(2024, 1, 31))
    assert january['total'] == 2

    pigs = battle_service.list_battles(CLAN_ID, opponent_name='pig')
    assert [b['battle_id'] for b in pigs['battles']] == ['20240103']
