import random
import time
from urllib.parse import urlsplit

import pytest

from config import TestConfig, engine_options_for
from directory import InMemoryRoomDirectory, db
from models import Player
from server import create_app
from session import SessionCoordinator


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def directory():
    return InMemoryRoomDirectory()


@pytest.fixture
def coordinator(directory, rng):
    return SessionCoordinator(directory, rng=rng)


@pytest.fixture
def host():
    return Player(id='player_1_host', name='Alice')


@pytest.fixture
def guests():
    return [
        Player(id='player_2_bob', name='Bob'),
        Player(id='player_3_carol', name='Carol'),
        Player(id='player_4_dan', name='Dan'),
    ]


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout=3.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()
    return _wait


@pytest.fixture
def app(tmp_path):
    uri = f"sqlite:///{tmp_path / 'rooms.db'}"

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = uri
        SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(uri)

    app = create_app(FileConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def http_client(app):
    return app.test_client()


class _FlaskResponse:
    def __init__(self, resp):
        self._resp = resp
        self.status_code = resp.status_code
        self.text = resp.get_data(as_text=True)

    def json(self):
        data = self._resp.get_json(silent=True)
        if data is None:
            raise ValueError('no JSON body')
        return data


class FlaskHttp:
    """Just enough of requests.Session for LobbyClient, backed by the Flask test client."""

    def __init__(self, client):
        self.client = client

    def request(self, method, url, timeout=None, json=None, params=None):
        path = urlsplit(url).path
        return _FlaskResponse(self.client.open(path, method=method, json=json, query_string=params))


@pytest.fixture
def flask_http(http_client):
    return FlaskHttp(http_client)
