import os
import sys
import pytest

# Ensure the backend root (containing the `scoreguard` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from scoreguard import create_app, db, socketio


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    GAME_SIGNING_SECRET = 'test-signing-secret'
    GAME_RATE_LIMIT_PER_MINUTE = 20
    ADMIN_USERNAMES = ['mod']


class ProxiedConfig(TestConfig):
    TRUSTED_PROXY_HOPS = 1


def seed_games():
    from scoreguard.models import GameTitle, GameConfig
    memory = GameTitle(slug='memory-match', name='Memory Match', max_score=5000)
    speed = GameTitle(slug='speed-tap', name='Speed Tap', max_score=1000000)
    tiles = GameTitle(slug='tiles-run', name='Tiles Run', max_score=100000)
    retired = GameTitle(slug='retired', name='Retired Game', max_score=1000, active=False)
    db.session.add_all([memory, speed, tiles, retired])
    db.session.flush()
    db.session.add(GameConfig(game_id=memory.id, max_score_per_min=600))
    db.session.add(GameConfig(game_id=speed.id, min_duration_ms=500, max_score_per_min=600))
    db.session.commit()


def build_app(config_class):
    application = create_app(config_class)
    with application.app_context():
        import scoreguard.models  # noqa: F401
        db.create_all()
        seed_games()
    # Returned with no context pushed so each request gets its own g
    return application


def teardown_app(application):
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def flask_app():
    application = build_app(TestConfig)
    yield application
    teardown_app(application)


@pytest.fixture()
def proxied_app():
    """An app deployed behind one reverse proxy hop."""
    application = build_app(ProxiedConfig)
    yield application
    teardown_app(application)


@pytest.fixture()
def app_ctx(flask_app):
    """An app context for tests that talk to services directly, without HTTP."""
    with flask_app.app_context():
        yield flask_app


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def register_player(application, username):
    """A test client registered (and logged in) as ``username``."""
    c = application.test_client()
    res = c.post('/register', json={'username': username, 'password': 'password'})
    assert res.status_code == 201
    return c


@pytest.fixture()
def make_player(flask_app):
    return lambda username: register_player(flask_app, username)


@pytest.fixture()
def player(make_player):
    return make_player('alice')


@pytest.fixture()
def other_player(make_player):
    return make_player('bob')


@pytest.fixture()
def moderator(make_player):
    return make_player('mod')


@pytest.fixture()
def lifecycle(app_ctx):
    return app_ctx.extensions['session_lifecycle']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
