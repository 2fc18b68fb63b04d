"""HTTP-level tests: status mapping, identity header, JSON shapes."""
import pytest

from conftest import CLAN_ID, make_entry

pytestmark = pytest.mark.integration


def _post_battle(client, headers, battle_id, **kwargs):
    return client.post(f'/clans/{CLAN_ID}/battles', json=make_entry(battle_id, **kwargs), headers=headers)


def test_create_and_fetch_battle(client, actor_headers):
    response = _post_battle(client, actor_headers, '20240103')
    assert response.status_code == 201
    data = response.get_json()
    assert data['result'] == 1
    assert data['result_label'] == 'win'
    assert data['ratio'] == pytest.approx(200.0)
    assert data['ratio_display'] == 200.0
    assert len(data['player_stats']) == 2

    response = client.get(f'/clans/{CLAN_ID}/battles/20240103')
    assert response.status_code == 200
    assert response.get_json()['battle_id'] == '20240103'


def test_write_requires_actor_header(client):
    response = client.post(f'/clans/{CLAN_ID}/battles', json=make_entry('20240103'))
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Unauthorized'


@pytest.mark.parametrize('battle_id, status, error', [
    ('20240104', 422, 'Schedule Error'),
    ('2024-01-03', 400, 'Validation Error'),
])
def test_engine_errors_map_to_status(client, actor_headers, battle_id, status, error):
    response = _post_battle(client, actor_headers, battle_id)
    assert response.status_code == status
    body = response.get_json()
    assert body['error'] == error
    assert body['message']


def test_duplicate_battle_is_409(client, actor_headers):
    assert _post_battle(client, actor_headers, '20240103').status_code == 201
    assert _post_battle(client, actor_headers, '20240103').status_code == 409


def test_non_numeric_clan_id_is_400(client):
    response = client.get('/clans/abc/battles')
    assert response.status_code == 400


def test_update_and_delete_battle(client, actor_headers):
    _post_battle(client, actor_headers, '20240103')
    response = client.put(
        f'/clans/{CLAN_ID}/battles/20240103', json={'opponent_score': 60000}, headers=actor_headers
    )
    assert response.status_code == 200
    assert response.get_json()['result'] == -1

    assert client.delete(f'/clans/{CLAN_ID}/battles/20240103', headers=actor_headers).status_code == 204
    assert client.get(f'/clans/{CLAN_ID}/battles/20240103').status_code == 404


def test_month_stats_lifecycle(client, actor_headers):
    assert client.get(f'/clans/{CLAN_ID}/stats/months/202401').status_code == 404

    _post_battle(client, actor_headers, '20240103')
    complete_url = f'/clans/{CLAN_ID}/stats/months/202401/complete'
    assert client.post(complete_url, json={'complete': True}, headers=actor_headers).status_code == 404

    response = client.get(f'/clans/{CLAN_ID}/stats/months/202401')
    assert response.status_code == 200
    assert response.get_json()['state'] == 'open'
    assert response.get_json()['average_ratio_display'] == 200.0

    response = client.post(complete_url, json={'complete': True}, headers=actor_headers)
    assert response.get_json()['is_complete'] is True

    response = client.post(f'/clans/{CLAN_ID}/stats/months/202401/recalculate', headers=actor_headers)
    assert response.status_code == 200
    assert response.get_json()['battle_count'] == 1
    assert client.get(f'/clans/{CLAN_ID}/stats/months/202401').get_json()['state'] == 'open'

    months = client.get(f'/clans/{CLAN_ID}/stats/months').get_json()['periods']
    assert months[0]['period_id'] == '202401'


def test_month_route_rejects_year_id(client):
    assert client.get(f'/clans/{CLAN_ID}/stats/months/2024').status_code == 400
    assert client.get(f'/clans/{CLAN_ID}/stats/years/202401').status_code == 400


def test_year_stats(client, actor_headers):
    _post_battle(client, actor_headers, '20240103')
    _post_battle(client, actor_headers, '20240602')
    response = client.get(f'/clans/{CLAN_ID}/stats/years/2024')
    assert response.status_code == 200
    assert response.get_json()['battle_count'] == 2
    assert 'state' not in response.get_json()

    players = client.get(f'/clans/{CLAN_ID}/stats/years/2024/players').get_json()
    assert players['players'] == []


def test_reports(client, actor_headers):
    _post_battle(client, actor_headers, '20240103')
    trends = client.get(f'/clans/{CLAN_ID}/reports/trends?aggregation=monthly').get_json()
    assert trends['aggregation'] == 'monthly'
    assert trends['summary']['battle_count'] == 1

    assert client.get(f'/clans/{CLAN_ID}/reports/trends?start=01-01-2024').status_code == 400
    assert client.get(f'/clans/{CLAN_ID}/reports/matchups').get_json()['summary']['total_battles'] == 1
    assert client.get(f'/clans/{CLAN_ID}/reports/player/1').get_json()['summary']['battles_played'] == 1
    churn = client.get(f'/clans/{CLAN_ID}/reports/roster-churn?start=2024-01-01&end=2024-01-31').get_json()
    assert churn['monthly'][0]['joined'] == 2


def test_roster_routes(client, actor_headers):
    response = client.post(
        f'/clans/{CLAN_ID}/roster', json={'player_name': 'Red', 'joined_date': '2024-01-01'}, headers=actor_headers
    )
    assert response.status_code == 201
    player_id = response.get_json()['player_id']

    response = client.post(f'/clans/{CLAN_ID}/roster/{player_id}/kick', json={'kicked_date': '2024-02-01'},
                           headers=actor_headers)
    assert response.get_json()['state'] == 'kicked'
    assert client.post(f'/clans/{CLAN_ID}/roster/{player_id}/leave', headers=actor_headers).status_code == 409

    response = client.post(f'/clans/{CLAN_ID}/roster/{player_id}/reactivate', headers=actor_headers)
    assert response.get_json()['state'] == 'active'

    roster = client.get(f'/clans/{CLAN_ID}/roster?active=true').get_json()
    assert roster['total'] == 1


def test_schedule_routes(client, actor_headers):
    response = client.post('/schedule', json={'battle_id': '20240607'}, headers=actor_headers)
    assert response.status_code == 201
    assert response.get_json()['battle_id'] == '20240607'

    schedule = client.get('/schedule?limit=1').get_json()['schedule']
    assert schedule[0]['battle_id'] == '20241231'

    logs = client.get('/audit-logs?action_type=MASTER_BATTLE_CREATED', headers=actor_headers).get_json()
    assert logs['total'] == 1
