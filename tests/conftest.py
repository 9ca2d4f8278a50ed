import pytest
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from loadwise.app import app, limiter

TEST_JWT_SECRET = "test-secret-key-for-loadwise-suite-0123456789"


class FakeSource:
    """In-memory stand-in for PostgresSource."""

    def __init__(self, last_sets=None, load_info=None, inventory=None, readiness=None,
                 estimate=None, active_gym_id=None, bar_weights=None):
        # last_sets: {grip_key or None: LastSet}
        self.last_sets = last_sets or {}
        self.load_info = load_info
        self.inventory = inventory
        self.readiness = readiness
        self.estimate = estimate
        self.active_gym_id = active_gym_id
        self.bar_weights = bar_weights or {}
        self.calls = []

    def get_last_set(self, user_id, exercise_id, set_index=1, grip_key=None):
        self.calls.append(("get_last_set", grip_key))
        return self.last_sets.get(grip_key)

    def get_exercise_load_info(self, exercise_id):
        return self.load_info

    def get_equipment_bar_weight(self, equipment_ref_id):
        return self.bar_weights.get(equipment_ref_id)

    def get_gym_inventory(self, gym_id):
        return self.inventory

    def get_readiness_score(self, user_id):
        return self.readiness

    def get_exercise_estimate(self, user_id, exercise_id):
        return self.estimate

    def get_active_gym_id(self, user_id):
        return self.active_gym_id


@pytest.fixture()
def client():
    app.config.update(TESTING=True, JWT_SECRET_KEY=TEST_JWT_SECRET)
    limiter.enabled = False
    with app.test_client() as client:
        yield client


@pytest.fixture()
def fake_source():
    return FakeSource
