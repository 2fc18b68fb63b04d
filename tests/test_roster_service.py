"""Tests for roster lifecycle operations."""
from datetime import date

import pytest

from conftest import ACTOR, CLAN_ID, make_entry, player
from flockstats.exceptions import ConflictError, NotFoundError, ValidationError
from flockstats.models import AuditLog, RosterMember
from flockstats.services import battle_service, roster_service

pytestmark = pytest.mark.integration


def test_add_and_list_members(app):
    roster_service.add_member(CLAN_ID, 'Red', joined_date=date(2024, 1, 1), actor_id=ACTOR)
    roster_service.add_member(CLAN_ID, 'Chuck', joined_date=date(2024, 1, 2), actor_id=ACTOR)
    roster_service.add_member(2, 'Other clan', joined_date=date(2024, 1, 2))

    roster = roster_service.list_roster(CLAN_ID)
    assert roster['total'] == 2
    assert [m['player_name'] for m in roster['members']] == ['Chuck', 'Red']
    assert all(m['state'] == 'active' for m in roster['members'])
    assert AuditLog.query.filter_by(action_type='ROSTER_MEMBER_ADDED', clan_id=CLAN_ID).count() == 2


def test_add_member_requires_name(app):
    with pytest.raises(ValidationError):
        roster_service.add_member(CLAN_ID, '   ')


def test_leave_kick_and_reactivate(app):
    red = roster_service.add_member(CLAN_ID, 'Red', joined_date=date(2024, 1, 1))
    chuck = roster_service.add_member(CLAN_ID, 'Chuck', joined_date=date(2024, 1, 1))

    roster_service.mark_left(CLAN_ID, red.player_id, left_date=date(2024, 2, 1), actor_id=ACTOR)
    roster_service.kick(CLAN_ID, chuck.player_id, kicked_date=date(2024, 2, 2), actor_id=ACTOR)
    assert roster_service.lifecycle_state(red) == 'left'
    assert roster_service.lifecycle_state(chuck) == 'kicked'
    assert roster_service.list_roster(CLAN_ID, active=True)['total'] == 0

    with pytest.raises(ConflictError):
        roster_service.kick(CLAN_ID, red.player_id, actor_id=ACTOR)

    roster_service.reactivate(CLAN_ID, chuck.player_id, actor_id=ACTOR)
    assert chuck.active is True
    assert chuck.kicked_date is None
    roster_service.check_lifecycle(chuck)

    with pytest.raises(ConflictError):
        roster_service.reactivate(CLAN_ID, chuck.player_id)


def test_departure_before_joining_is_rejected(app):
    red = roster_service.add_member(CLAN_ID, 'Red', joined_date=date(2024, 3, 1))
    with pytest.raises(ValidationError):
        roster_service.mark_left(CLAN_ID, red.player_id, left_date=date(2024, 2, 1))
    assert red.active is True


def test_member_of_other_clan_is_not_found(app):
    red = roster_service.add_member(2, 'Red', joined_date=date(2024, 1, 1))
    with pytest.raises(NotFoundError):
        roster_service.kick(CLAN_ID, red.player_id)


def test_add_member_after_battle_created_members(app):
    # Members 1 and 2 come from the battle entry with explicit ids
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    assert sorted(m.player_id for m in RosterMember.query.all()) == [1, 2]

    member = roster_service.add_member(CLAN_ID, 'Stella', joined_date=date(2024, 1, 4), actor_id=ACTOR)
    assert member.player_id == 3

    battle_service.create_battle(CLAN_ID, make_entry('20240106', players=[player(10, 30000, 1000)]))
    assert roster_service.add_member(CLAN_ID, 'Hal', joined_date=date(2024, 1, 7)).player_id == 11


def test_player_ids_are_shared_across_clans(app):
    battle_service.create_battle(CLAN_ID, make_entry('20240103'))
    with pytest.raises(ValidationError):
        battle_service.create_battle(2, make_entry('20240103', players=[player(1, 30000, 1000)]))
    assert battle_service.create_battle(2, make_entry('20240103', players=[player(5, 30000, 1000)]))
