"""
Judgement lobby server.

HTTP front for the session coordinator: players create and join rooms by
code, the host starts the game, and every client follows its room by
long-polling ``/api/rooms/<code>/poll`` with the last version it saw.
"""
import logging
import time

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Config
from directory import SqlRoomDirectory, db
from errors import InvalidInput, LobbyError
from models import Player
from session import SessionCoordinator, clean_player, new_player_id, normalize_room_code

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


def coordinator() -> SessionCoordinator:
    return current_app.extensions['lobby']


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _player_from(data: dict) -> Player:
    raw = data.get('player') or {}
    if not isinstance(raw, dict):
        raise InvalidInput('player must be an object with id and name')
    player_id = raw.get('id') or data.get('player_id') or ''
    name = raw.get('name') or data.get('player_name') or ''
    return clean_player(Player(id=str(player_id), name=str(name)))


def _player_id_from(data: dict) -> str:
    player_id = str(data.get('player_id') or '').strip()
    if not player_id:
        raise InvalidInput('player_id is required')
    return player_id


@api.route('/api/players', methods=['POST'])
def register_player():
    """Hand out a session-scoped player id for a display name."""
    name = str(_body().get('name') or '').strip()
    if not name:
        raise InvalidInput('Player name is required')
    return jsonify({'id': new_player_id(), 'name': name}), 201


@api.route('/api/rooms', methods=['POST'])
def create_room():
    room = coordinator().create_room(_player_from(_body()))
    return jsonify(room.to_record()), 201


@api.route('/api/rooms/<code>', methods=['GET'])
def get_room(code):
    code = normalize_room_code(code)
    record = coordinator().directory.get(code)
    if record is None:
        return jsonify({'error': 'room_not_found', 'message': f'Room {code} not found'}), 404
    return jsonify(record), 200


@api.route('/api/rooms/<code>/join', methods=['POST'])
def join_room(code):
    room = coordinator().join_room(code, _player_from(_body()))
    return jsonify(room.to_record()), 200


@api.route('/api/rooms/<code>/leave', methods=['POST'])
def leave_room(code):
    coordinator().leave_room(code, _player_id_from(_body()))
    return jsonify({'success': True}), 200


@api.route('/api/rooms/<code>/start', methods=['POST'])
def start_game(code):
    room = coordinator().start_game(code, _player_id_from(_body()))
    return jsonify(room.to_record()), 200


@api.route('/api/rooms/<code>/bid', methods=['POST'])
def place_bid(code):
    data = _body()
    room = coordinator().place_bid(code, _player_id_from(data), data.get('bid'))
    return jsonify(room.to_record()), 200


@api.route('/api/rooms/<code>/next-round', methods=['POST'])
def next_round(code):
    data = _body()
    tricks_won = data.get('tricks_won')
    if not isinstance(tricks_won, dict):
        raise InvalidInput('tricks_won must map player ids to tricks')
    room = coordinator().advance_round(code, _player_id_from(data), tricks_won)
    return jsonify(room.to_record()), 200


@api.route('/api/rooms/<code>/poll', methods=['GET'])
def poll_room(code):
    """
    Long-poll the room. Returns as soon as the version differs from
    ``since`` (or the room is gone), else after ``timeout`` seconds.
    """
    code = normalize_room_code(code)
    since = request.args.get('since', type=int)
    max_timeout = current_app.config['POLL_TIMEOUT']
    timeout = min(request.args.get('timeout', default=max_timeout, type=float), max_timeout)
    interval = current_app.config['FEED_POLL_INTERVAL']

    directory = coordinator().directory
    deadline = time.monotonic() + max(timeout, 0)
    snap = directory.snapshot(code)
    while snap.exists and snap.version == since and time.monotonic() < deadline:
        time.sleep(interval)
        snap = directory.snapshot(code)

    return jsonify({'exists': snap.exists, 'version': snap.version, 'room': snap.record}), 200


@api.route('/health')
def health():
    return jsonify({'status': 'healthy', 'timestamp': time.time()}), 200


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(LobbyError)
    def _lobby_error(e):
        if e.http_status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message}")
        else:
            logger.info(f"{request.method} {request.path} rejected: {e.kind} ({e.message})")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(404)
    def _json_404(e):
        if request.path.startswith('/api/'):
            return jsonify({'error': 'not_found', 'path': request.path}), 404
        return e

    @app.errorhandler(405)
    def _json_405(e):
        if request.path.startswith('/api/'):
            return jsonify({'error': 'method_not_allowed', 'path': request.path}), 405
        return e

    @app.errorhandler(Exception)
    def _json_500(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"Unhandled error on {request.path}")
        if request.path.startswith('/api/'):
            return jsonify({'error': 'server_error', 'message': str(e)}), 500
        raise e


def create_app(config=None, directory=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config or Config)
    CORS(app, supports_credentials=True, origins=app.config['CORS_ORIGINS'])

    db.init_app(app)
    with app.app_context():
        db.create_all()
        logger.info("Database initialized")

    if directory is None:
        directory = SqlRoomDirectory(
            app,
            poll_interval=app.config['FEED_POLL_INTERVAL'],
            max_retries=app.config['MAX_TRANSACTION_RETRIES'],
        )
    app.extensions['lobby'] = SessionCoordinator(
        directory,
        max_code_attempts=app.config['MAX_CODE_ATTEMPTS'],
        max_players=app.config['MAX_PLAYERS_PER_ROOM'],
    )

    app.register_blueprint(api)
    register_error_handlers(app)
    return app


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )


if __name__ == '__main__':
    configure_logging(Config.LOG_LEVEL)
    app = create_app()
    app.run(host='0.0.0.0', port=Config.PORT, debug=False, threaded=True)
