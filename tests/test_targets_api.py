import pytest
import datetime
import uuid
from unittest.mock import MagicMock, patch

import jwt
import psycopg2

from loadwise.app import app
from loadwise.blueprints.targets import weight_model_cache
from loadwise.progression import LastSet
from loadwise.repositories import PostgresSource
from loadwise.resolver import ExerciseLoadInfo
from loadwise.units import WeightUnit
from loadwise.weight_model import GymInventory, InventoryItem


def generate_jwt_token(user_id, secret_key=None):
    """Generates a JWT token for a given user_id."""
    if secret_key is None:
        secret_key = app.config['JWT_SECRET_KEY']

    payload = {
        'user_id': str(user_id),
        'exp': datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(hours=1)
    }
    return jwt.encode(payload, secret_key, algorithm="HS256")


# --- Mock Data ---
MOCK_USER_ID = str(uuid.uuid4())
MOCK_OTHER_USER_ID = str(uuid.uuid4())
MOCK_EXERCISE_ID = str(uuid.uuid4())
BARBELL = ExerciseLoadInfo(load_type='dual_load', default_bar_type='barbell')
DUMBBELL = ExerciseLoadInfo(load_type='single_load')

TARGET_URL = f'/v1/users/{MOCK_USER_ID}/exercises/{MOCK_EXERCISE_ID}/target'
RESOLVE_URL = f'/v1/exercises/{MOCK_EXERCISE_ID}/resolve-load'
PROPOSAL_URL = f'/v1/users/{MOCK_USER_ID}/target-proposal'


@pytest.fixture(autouse=True)
def not_revoked(monkeypatch):
    monkeypatch.setattr('loadwise.app.check_if_revoked', lambda payload: False)
    monkeypatch.setenv('LOADWISE_TELEMETRY', 'off')


@pytest.fixture()
def db(monkeypatch, fake_source):
    """Patches the pooled connection and returns a holder for the source the routes will see."""
    mock_conn = MagicMock()
    release = MagicMock()
    weight_model_cache.invalidate()
    holder = {"source": fake_source(load_info=BARBELL)}
    monkeypatch.setattr('loadwise.blueprints.targets.get_db_connection', lambda: mock_conn)
    monkeypatch.setattr('loadwise.blueprints.targets.release_db_connection', release)
    monkeypatch.setattr('loadwise.blueprints.targets.PostgresSource', lambda conn: holder['source'])
    holder['conn'] = mock_conn
    holder['release'] = release
    return holder


def _auth(user_id=MOCK_USER_ID):
    return {'Authorization': f'Bearer {generate_jwt_token(user_id)}'}


# --- Next-set target ---

def test_target_success(client, db, fake_source):
    db["source"] = fake_source(load_info=BARBELL, last_sets={None: LastSet(80, 8, notes="Feel: ++")})
    response = client.get(f'{TARGET_URL}?template_reps=8', headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['weight'] == 82.5
    assert data['reps'] == 8
    assert data['strategy'] == 'single_target'
    assert data['feel'] == '++'
    assert data['resolution']['implement'] == 'barbell'
    db['release'].assert_called_once_with(db['conn'])

def test_target_first_session(client, db):
    response = client.get(f'{TARGET_URL}?template_weight=60&template_reps=10', headers=_auth())
    assert response.status_code == 200
    data = response.get_json()
    assert (data['weight'], data['reps']) == (60, 10)
    assert data['rationale'][0] == "First time: template 60kg"

def test_target_uses_active_gym(client, db, fake_source):
    inventory = GymInventory(gym_id="gym-1", dumbbells=[InventoryItem(w) for w in (10, 15, 20, 25)])
    db["source"] = fake_source(load_info=DUMBBELL, inventory=inventory, active_gym_id="gym-1")
    response = client.get(f'{TARGET_URL}?template_weight=18', headers=_auth())

    data = response.get_json()
    assert data['weight'] == 20
    assert data['resolution']['source'] == 'gym'

def test_target_grip_fallback(client, db, fake_source):
    db["source"] = fake_source(load_info=BARBELL, last_sets={None: LastSet(80, 8, notes="Feel: ++")})
    response = client.get(f'{TARGET_URL}?template_reps=8&grip_ids=g2,g1', headers=_auth())

    data = response.get_json()
    assert data['used_fallback_history'] is True
    assert data['baseline_weight'] == 81.25
    assert db['source'].calls == [("get_last_set", 'g1,g2'), ("get_last_set", None)]

def test_target_safety_rails(client, db, fake_source):
    db["source"] = fake_source(load_info=BARBELL, last_sets={None: LastSet(80, 8, notes="Feel: ++")})
    response = client.get(f'{TARGET_URL}?template_reps=8&readiness=95&safety=true', headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['weight'] == 82.5
    assert data['per_side_kg'] == 31.25
    assert "Safety: capped at +6% over 80kg" in data['rationale']

def test_target_custom_safety_limit(client, db, fake_source):
    db["source"] = fake_source(load_info=BARBELL, last_sets={None: LastSet(80, 8, notes="Feel: ++")})
    response = client.get(f'{TARGET_URL}?template_reps=8&readiness=95&max_pct_up=2', headers=_auth())

    data = response.get_json()
    assert data['weight'] == 80
    assert "Safety: capped at +2% over 80kg" in data['rationale']

@pytest.mark.parametrize("query", [
    "template_reps=abc",
    "template_reps_min=12&template_reps_max=8",
    "readiness=150",
    "set_index=0",
    "snap_strategy=sideways",
    "max_pct_up=-1",
    "max_pct_down=100",
    "max_pct_up=lots",
])
def test_target_bad_params(client, db, query):
    response = client.get(f'{TARGET_URL}?{query}', headers=_auth())
    assert response.status_code == 400
    assert 'error' in response.get_json()

def test_target_forbidden_for_other_user(client, db):
    response = client.get(TARGET_URL, headers=_auth(MOCK_OTHER_USER_ID))
    assert response.status_code == 403

def test_target_requires_token(client, db):
    response = client.get(TARGET_URL)
    assert response.status_code == 401

def test_target_rejects_token_with_wrong_secret(client, db):
    token = generate_jwt_token(MOCK_USER_ID, secret_key="some-other-secret-key-0123456789abcdef")
    response = client.get(TARGET_URL, headers={'Authorization': f'Bearer {token}'})
    assert response.status_code == 401

def _broken_users_table_source(conn):
    """A real PostgresSource whose users query fails while every other lookup finds nothing."""
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor

    def execute(sql, params=None):
        if "FROM users" in sql:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

    cursor.execute.side_effect = execute
    cursor.fetchone.return_value = None
    cursor.fetchall.return_value = []
    return PostgresSource(conn)

def test_target_survives_active_gym_lookup_failure(client, db):
    db['source'] = _broken_users_table_source(db['conn'])
    response = client.get(f'{TARGET_URL}?template_weight=60&template_reps=10', headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert (data['weight'], data['reps']) == (60, 10)
    assert data['resolution']['source'] == 'default'
    db['conn'].rollback.assert_called_once()
    db['release'].assert_called_once_with(db['conn'])

def test_target_database_error(client, db):
    source = MagicMock()
    source.get_last_set.side_effect = psycopg2.Error("connection lost")
    db['source'] = source
    response = client.get(f'{TARGET_URL}?gym_id=gym-1', headers=_auth())

    assert response.status_code == 500
    assert response.get_json()['error'] == "Database error calculating target."
    db['release'].assert_called_once_with(db['conn'])


# --- Load resolution ---

def test_resolve_load_snaps_down(client, db):
    response = client.post(RESOLVE_URL, json={'desired_kg': 61}, headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['total_kg'] == 60
    assert data['achievable'] is False
    assert data['residual_kg'] == 1.0
    assert data['suggestion'] == "Closest: 60 kg (snapped from 61 kg, -1 kg)"

def test_resolve_load_snap_up_in_pounds(client, db):
    response = client.post(RESOLVE_URL, json={'desired_kg': 61, 'snap_strategy': 'up', 'unit': 'lb'}, headers=_auth())
    data = response.get_json()
    assert data['total_kg'] == 62.5
    assert data['suggestion'].startswith("Closest: 138 lb")

def test_resolve_load_per_side_entry(client, db):
    response = client.post(RESOLVE_URL, json={'desired_kg': 20, 'entry_mode': 'per_side'}, headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['total_kg'] == 60
    assert data['per_side_kg'] == 20
    assert data['suggestion'] == "Achievable: 60 kg"

@pytest.mark.parametrize("body", [
    {},
    {'desired_kg': 'heavy'},
    {'desired_kg': -5},
    {'desired_kg': 60, 'snap_strategy': 'sideways'},
    {'desired_kg': 60, 'unit': 'stone'},
    {'desired_kg': 20, 'entry_mode': 'sides'},
])
def test_resolve_load_bad_body(client, db, body):
    response = client.post(RESOLVE_URL, json=body, headers=_auth())
    assert response.status_code == 400

def test_resolve_load_requires_json(client, db):
    response = client.post(RESOLVE_URL, data="desired_kg=60", headers=_auth())
    assert response.status_code == 400

def test_resolve_load_survives_active_gym_lookup_failure(client, db):
    db['source'] = _broken_users_table_source(db['conn'])
    response = client.post(RESOLVE_URL, json={'desired_kg': 61}, headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['total_kg'] == 60
    assert data['source'] == 'default'
    db['conn'].rollback.assert_called_once()

@patch('loadwise.blueprints.targets.get_telemetry_sink')
def test_resolve_load_emits_telemetry(mock_sink, client, db):
    events = []
    mock_sink.return_value = events.append
    client.post(RESOLVE_URL, json={'desired_kg': 61, 'gym_id': 'gym-7'}, headers=_auth())

    assert len(events) == 1
    assert events[0].gym_id == 'gym-7'
    assert events[0].resolved_kg == 60


# --- Proposal and weight model ---

def test_proposal_from_query(client, db):
    response = client.get(f'{PROPOSAL_URL}?last_kg=100&readiness=90', headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['proposed_kg'] == 105
    assert data['min_step_kg'] == 2.5
    assert data['discrete_snap']['achievable'] is True

def test_proposal_reads_history_and_defaults_readiness(client, db, fake_source):
    db["source"] = fake_source(load_info=BARBELL, last_sets={None: LastSet(100, 8)})
    response = client.get(f'{PROPOSAL_URL}?exercise_id={MOCK_EXERCISE_ID}', headers=_auth())

    data = response.get_json()
    assert data['baseline_kg'] == 100
    assert data['readiness_score'] == 65
    assert data['rationale'] == ["Previous performance: 100kg", "Moderate readiness: maintaining load"]

def test_proposal_machine_exercise(client, db, fake_source):
    db["source"] = fake_source(load_info=ExerciseLoadInfo(load_type='stack'))
    response = client.get(f'{PROPOSAL_URL}?exercise_id={MOCK_EXERCISE_ID}&last_kg=47', headers=_auth())
    assert response.get_json()['proposed_kg'] == 47.5

def test_proposal_bad_mode(client, db):
    response = client.get(f'{PROPOSAL_URL}?mode=deload', headers=_auth())
    assert response.status_code == 400

def test_proposal_forbidden_for_other_user(client, db):
    response = client.get(PROPOSAL_URL, headers=_auth(MOCK_OTHER_USER_ID))
    assert response.status_code == 403

def test_weight_model_default(client, db):
    response = client.get(f'/v1/users/{MOCK_USER_ID}/weight-model', headers=_auth())

    assert response.status_code == 200
    data = response.get_json()
    assert data['bar_types']['barbell'] == {'bar_kg': 20.0}
    assert data['plates_kg_per_side'][0] == 25.0

def test_weight_model_cached_until_gym_changes(client, db):
    source = MagicMock()
    source.get_active_gym_id.return_value = "gym-lb"
    source.get_gym_inventory.return_value = GymInventory(
        gym_id="gym-lb",
        plates=[InventoryItem(45, WeightUnit.LB), InventoryItem(25, WeightUnit.LB)],
    )
    db['source'] = source
    url = f'/v1/users/{MOCK_USER_ID}/weight-model'

    assert client.get(url, headers=_auth()).get_json()['unit'] == 'lb'
    assert client.get(url, headers=_auth()).get_json()['unit'] == 'lb'
    source.get_gym_inventory.assert_called_once_with("gym-lb")

    source.get_active_gym_id.return_value = None
    assert client.get(url, headers=_auth()).get_json()['unit'] == 'kg'

def test_weight_model_refresh_rebuilds(client, db):
    source = MagicMock()
    source.get_active_gym_id.return_value = "gym-lb"
    source.get_gym_inventory.return_value = GymInventory(gym_id="gym-lb", plates=[InventoryItem(45, WeightUnit.LB)])
    db['source'] = source
    url = f'/v1/users/{MOCK_USER_ID}/weight-model'

    client.get(url, headers=_auth())
    client.get(f'{url}?refresh=true', headers=_auth())
    assert source.get_gym_inventory.call_count == 2

def test_health_does_not_need_auth(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}
