"""Shared pytest fixtures: app on in-memory SQLite, seeded battle calendar, entry factory."""
from datetime import datetime, timedelta

import pytest

from flockstats import create_app
from flockstats.extensions import db
from flockstats.models import MasterBattle

CLAN_ID = 1
ACTOR = 'admin-1'

# Calendar seeded for every test
SCHEDULED_BATTLES = (
    '20240103', '20240106', '20240109', '20240112', '20240115',
    '20240201', '20240204', '20240207',
    '20240301', '20240304',
    '20240602',
    '20241231',
)


def schedule(*battle_ids):
    """Insert calendar entries directly (no audit, no cache)."""
    for battle_id in battle_ids:
        start = datetime.strptime(battle_id, '%Y%m%d')
        db.session.add(MasterBattle(
            battle_id=battle_id,
            start_timestamp=start,
            end_timestamp=start + timedelta(days=2) - timedelta(seconds=1)
        ))
    db.session.commit()


@pytest.fixture
def app():
    """Application with a fresh schema per test."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        schedule(*SCHEDULED_BATTLES)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def actor_headers():
    return {'X-Actor-Id': ACTOR}


def player(player_id, score, fp, rank=None, **extra):
    row = {'player_id': player_id, 'rank': rank or player_id, 'score': score, 'fp': fp}
    row.update(extra)
    return row


def nonplayer(player_id, fp, reserve=False, action_code='HOLD', **extra):
    row = {'player_id': player_id, 'fp': fp, 'reserve': reserve, 'action_code': action_code}
    row.update(extra)
    return row


def make_entry(battle_id, score=50000, opponent_score=45000, baseline_fp=2500, opponent_fp=2400,
               opponent_name='Angry Flock', opponent_country='Finland', players=None, nonplayers=None):
    """Battle submission with sensible defaults.

    Default players: two players with 1000 FP each (30000 and 20000 points).
    """
    return {
        'battle_id': battle_id,
        'opponent_name': opponent_name,
        'opponent_country': opponent_country,
        'opponent_rovio_id': 777,
        'score': score,
        'baseline_fp': baseline_fp,
        'opponent_score': opponent_score,
        'opponent_fp': opponent_fp,
        'player_stats': players if players is not None else [
            player(1, 30000, 1000),
            player(2, 20000, 1000),
        ],
        'nonplayer_stats': nonplayers if nonplayers is not None else [],
    }


@pytest.fixture
def entry_factory():
    return make_entry
