import os


def _database_uri(default: str) -> str:
    uri = os.environ.get('DATABASE_URL', default)
    if uri.startswith('postgres://'):
        uri = uri.replace('postgres://', 'postgresql://', 1)
    return uri


def engine_options_for(uri: str) -> dict:
    # The feed pollers and request threads share the SQLite file
    if uri.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {}


class Config:
    SQLALCHEMY_DATABASE_URI = _database_uri('sqlite:///judgement.db')
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    PORT = int(os.environ.get('PORT', 10000))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    MAX_CODE_ATTEMPTS = int(os.environ.get('MAX_CODE_ATTEMPTS', 10))
    MAX_TRANSACTION_RETRIES = int(os.environ.get('MAX_TRANSACTION_RETRIES', 25))
    MAX_PLAYERS_PER_ROOM = int(os.environ.get('MAX_PLAYERS_PER_ROOM', 6))
    FEED_POLL_INTERVAL = float(os.environ.get('FEED_POLL_INTERVAL', 0.25))
    POLL_TIMEOUT = float(os.environ.get('POLL_TIMEOUT', 25))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = engine_options_for(SQLALCHEMY_DATABASE_URI)
    FEED_POLL_INTERVAL = 0.01
    POLL_TIMEOUT = 0.2
