"""
Pytest configuration and fixtures for tournament platform tests.
"""
import os
import sys
from datetime import timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from shared.clock import utcnow
from tournament_service.app import create_app
from tournament_service.auth import issue_token
from tournament_service.models import db


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def store(app, db_session):
    """The app's tournament store, with its clock restored after each test."""
    original_clock = app.store.clock
    yield app.store
    app.store.clock = original_clock


@pytest.fixture
def make_payload():
    """Build a valid create payload starting two hours from ``now``."""
    def _make(now=None, **overrides):
        start = (now or utcnow()) + timedelta(hours=2)
        payload = {
            'name': 'Friday Night Royale',
            'description': 'Weekly community battle royale',
            'game_type': 'BR_MATCH',
            'type': 'manual',
            'start_time': start.isoformat(),
            'end_time': (start + timedelta(hours=2)).isoformat(),
            'registration_deadline': (start - timedelta(minutes=15)).isoformat(),
            'check_in_deadline': (start - timedelta(minutes=5)).isoformat(),
            'max_participants': 50,
            'min_participants': 10,
            'entry_fee': 50,
            'prize_pool': {'first': 1500, 'second': 750, 'third': 250},
            'rules': {'game_mode': 'battle_royale', 'custom_rules': ['No teaming allowed']},
            'tags': ['weekly'],
        }
        payload.update(overrides)
        return payload
    return _make


@pytest.fixture
def sample_tournament(store, make_payload):
    """An upcoming manual tournament."""
    return store.create_tournament(make_payload(), created_by='admin-1')


@pytest.fixture
def open_tournament(store, sample_tournament):
    """A tournament with registration open."""
    return store.open_registration(sample_tournament.tournament_id)


@pytest.fixture
def register_players(store):
    """Register ``count`` players and confirm the first ``confirm`` of them."""
    def _register(tournament_id, count, confirm=0, prefix='player'):
        for i in range(count):
            store.add_participant(tournament_id, f'{prefix}-{i}', f'{prefix.title()} {i}')
        for i in range(confirm):
            store.confirm_participant(tournament_id, f'{prefix}-{i}')
        return store.get_tournament(tournament_id)
    return _register


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers for a signed access token."""
    def _headers(user_id='user-1', username='player-one', role='user'):
        token = issue_token(app.config['SECRET_KEY'], user_id, username, role, app.config['TOKEN_SALT'])
        return {'Authorization': f'Bearer {token}'}
    return _headers


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers(user_id='admin-1', username='admin', role='admin')


@pytest.fixture
def orchestrator_config():
    from orchestrator.config import TestingConfig
    return TestingConfig


@pytest.fixture
def make_response(mocker):
    """Build a requests.Response stand-in with a status code and JSON body."""
    def _make(status_code, body=None):
        response = mocker.MagicMock()
        response.status_code = status_code
        if body is None:
            response.json.side_effect = ValueError("No JSON")
        else:
            response.json.return_value = body
        return response
    return _make


@pytest.fixture
def mock_session(mocker, make_response):
    """A requests.Session stand-in; login succeeds by default."""
    session = mocker.MagicMock()
    session.post.return_value = make_response(200, {"success": True, "data": {"token": "token-1"}})
    return session
