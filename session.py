"""
Lobby coordination on top of a RoomDirectory.

Every state change (join, leave, start, bid, next round) is one directory
transaction, so concurrent clients can't duplicate players, leave a room
without a host, or resurrect a deleted room. Creation is the exception: it
is a plain write right after the code was found free.
"""
import logging
import random
import secrets
import string
import threading
import time
from typing import Callable, Dict, List, Optional, Union

from directory import DELETE, NO_CHANGE, RoomDirectory
from errors import (
    CodeAllocationExhausted, GameAlreadyStarted, InsufficientPlayers,
    InvalidBid, InvalidInput, LobbyError, NotHost, RoomFull, RoomNotFound,
)
from game import RoundSetup, score_round, setup_first_round, setup_next_round, validate_bid
from models import Player, Room, SessionStage

logger = logging.getLogger(__name__)

# No 0/O or 1/I/L: codes get read out loud and typed on phones
ROOM_CODE_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ123456789'
ROOM_CODE_LENGTH = 4
MAX_CODE_ATTEMPTS = 10
MAX_PLAYERS_PER_ROOM = 6
MIN_PLAYERS_TO_START = 2

PayloadFactory = Callable[[List[str]], RoundSetup]


def new_player_id() -> str:
    """Opaque per-session id, e.g. ``player_1718000000000_k3x9a``."""
    suffix = ''.join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(5))
    return f"player_{int(time.time() * 1000)}_{suffix}"


def normalize_room_code(raw) -> str:
    code = (raw or '').strip().upper()
    if not code:
        raise InvalidInput('Please enter a room code')
    if len(code) != ROOM_CODE_LENGTH or any(ch not in ROOM_CODE_ALPHABET for ch in code):
        raise InvalidInput(f'"{code}" is not a valid room code')
    return code


def clean_player(player: Player) -> Player:
    name = (player.name or '').strip()
    if not name:
        raise InvalidInput('Player name is required')
    if not (player.id or '').strip():
        raise InvalidInput('Player id is required')
    return Player(id=player.id.strip(), name=name)


class RoomWatch:
    """One live subscription held by the coordinator for a client."""

    def __init__(self, code: str, client_id: str) -> None:
        self.code = code
        self.client_id = client_id
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._attached = threading.Event()

    def attach(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe
        self._attached.set()

    def cancel(self) -> None:
        self._attached.wait()
        self._unsubscribe()


class SessionCoordinator:
    def __init__(self, directory: RoomDirectory, max_code_attempts: int = MAX_CODE_ATTEMPTS,
                 max_players: int = MAX_PLAYERS_PER_ROOM,
                 rng: Optional[random.Random] = None) -> None:
        self.directory = directory
        self.max_code_attempts = max_code_attempts
        self.max_players = max_players
        self.rng = rng or random.Random()
        self._watches: Dict[str, RoomWatch] = {}
        self._watches_lock = threading.Lock()

    # --- room codes ---

    def generate_room_code(self) -> str:
        return ''.join(self.rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))

    def allocate_room_code(self) -> str:
        for attempt in range(1, self.max_code_attempts + 1):
            code = self.generate_room_code()
            if self.directory.get(code) is None:
                return code
            logger.warning(f"Room code {code} already exists (attempt {attempt})")
        raise CodeAllocationExhausted(
            f'Could not find a free room code after {self.max_code_attempts} attempts'
        )

    # --- lobby ---

    def create_room(self, player: Player) -> Room:
        player = clean_player(player)
        code = self.allocate_room_code()
        room = Room.new(code, player)
        # Known race: another client may claim the same code between the
        # existence check and this write.
        self.directory.create(code, room.to_record())
        logger.info(f"Room {code} created by host {player.name} ({player.id})")
        return room

    def join_room(self, code: str, player: Player) -> Room:
        code = normalize_room_code(code)
        player = clean_player(player)

        def apply(record):
            if record is None:
                raise RoomNotFound(f'Room {code} not found')
            room = Room.from_record(record, code)
            if room.game_started:
                raise GameAlreadyStarted(f'The game in room {code} has already started')
            if room.has_player(player.id):
                return NO_CHANGE
            if len(room.players) >= self.max_players:
                raise RoomFull(f'Room {code} is full ({self.max_players} players)')
            room.add_player(player)
            return room.to_record()

        record = self.directory.transact(code, apply)
        room = Room.from_record(record, code)
        logger.info(f"Player {player.name} ({player.id}) in room {code}; total players={len(room.players)}")
        return room

    def leave_room(self, code: str, player_id: str) -> None:
        """Host leaving closes the room for everyone."""
        code = normalize_room_code(code)
        outcome = {'action': 'none'}

        def apply(record):
            outcome['action'] = 'none'
            if record is None:
                return NO_CHANGE
            room = Room.from_record(record, code)
            if room.is_host(player_id):
                outcome['action'] = 'closed'
                return DELETE
            if not room.remove_player(player_id):
                return NO_CHANGE
            outcome['action'] = 'left'
            return room.to_record()

        self.directory.transact(code, apply)
        if outcome['action'] == 'closed':
            logger.info(f"Host {player_id} left; room {code} closed")
        elif outcome['action'] == 'left':
            logger.info(f"Player {player_id} left room {code}")
        else:
            logger.info(f"Player {player_id} was not in room {code}; nothing to do")

    # --- game ---

    def start_game(self, code: str, requester_id: str,
                   payload: Union[RoundSetup, PayloadFactory, None] = None) -> Room:
        """
        Flip the room into play and store the first round.

        ``payload`` is a ready RoundSetup, or a callable building one from the
        player ids read inside the transaction. Without it the standard first
        round is dealt.
        """
        code = normalize_room_code(code)

        def apply(record):
            if record is None:
                raise RoomNotFound(f'Room {code} no longer exists')
            room = Room.from_record(record, code)
            if not room.is_host(requester_id):
                raise NotHost('Only the host can start the game')
            if room.game_started:
                raise GameAlreadyStarted(f'The game in room {code} has already started')
            if len(room.players) < MIN_PLAYERS_TO_START:
                raise InsufficientPlayers(f'Need at least {MIN_PLAYERS_TO_START} players to start')

            if payload is None:
                setup = setup_first_round(room.player_ids, self.rng)
            elif callable(payload):
                setup = payload(room.player_ids)
            else:
                setup = payload
            room.game_started = True
            room.current_round = 1
            room.round = setup
            room.scores = {pid: 0 for pid in room.player_ids}
            return room.to_record()

        room = Room.from_record(self.directory.transact(code, apply), code)
        logger.info(
            f"Game started in room {code} with {len(room.players)} players, "
            f"{room.round.cards_per_player} cards each"
        )
        return room

    def place_bid(self, code: str, player_id: str, bid: int) -> Room:
        code = normalize_room_code(code)

        def apply(record):
            if record is None:
                raise RoomNotFound(f'Room {code} not found')
            room = Room.from_record(record, code)
            if not room.game_started or room.round is None:
                raise InvalidBid('The game has not started yet')
            if room.game_over:
                raise InvalidBid('The game is over')
            current = room.round
            if player_id not in current.hands:
                raise InvalidInput(f'Player {player_id} is not playing in room {code}')
            if player_id in current.bids:
                raise InvalidBid('You have already bid this round')
            problem = validate_bid(bid, current.cards_per_player, current.bids,
                                   len(current.hands), current.total_cards)
            if problem:
                raise InvalidBid(problem)
            current.bids[player_id] = bid
            return room.to_record()

        room = Room.from_record(self.directory.transact(code, apply), code)
        logger.info(f"Player {player_id} bid {bid} in room {code} round {room.current_round}")
        return room

    def advance_round(self, code: str, requester_id: str, tricks_won: Dict[str, int]) -> Room:
        """Score the finished round and deal the next one (host only)."""
        code = normalize_room_code(code)

        def apply(record):
            if record is None:
                raise RoomNotFound(f'Room {code} not found')
            room = Room.from_record(record, code)
            if not room.is_host(requester_id):
                raise NotHost('Only the host can move to the next round')
            if not room.game_started or room.round is None:
                raise InvalidInput('The game has not started yet')
            if room.game_over:
                raise InvalidInput('The game is over')

            current = room.round
            waiting = [pid for pid in current.hands if pid not in current.bids]
            if waiting:
                raise InvalidInput(f'Still waiting for bids from {", ".join(waiting)}')
            unknown = set(tricks_won) - set(current.hands)
            if unknown:
                raise InvalidInput(f'Unknown players in results: {", ".join(sorted(unknown))}')
            if any(isinstance(t, bool) or not isinstance(t, int) or t < 0 for t in tricks_won.values()):
                raise InvalidInput('Tricks won must be non-negative whole numbers')
            if sum(tricks_won.values()) != current.cards_per_player:
                raise InvalidInput(f'Tricks won must add up to {current.cards_per_player}')

            current.tricks_won = {pid: tricks_won.get(pid, 0) for pid in current.hands}
            for pid, points in score_round(current.bids, current.tricks_won).items():
                room.scores[pid] = room.scores.get(pid, 0) + points

            following = setup_next_round(current, room.player_ids, self.rng)
            if following is None:
                room.game_over = True
            else:
                room.round = following
                room.current_round = following.round_number
            return room.to_record()

        room = Room.from_record(self.directory.transact(code, apply), code)
        if room.game_over:
            logger.info(f"Game over in room {code}; final scores {room.scores}")
        else:
            logger.info(
                f"Room {code} moved to round {room.current_round} "
                f"({room.round.cards_per_player} cards each, trump={room.round.trump})"
            )
        return room

    # --- change feed ---

    def watch_room(self, code: str, client_id: str,
                   on_update: Callable[[Room], None],
                   on_closed: Callable[[str], None],
                   on_error: Optional[Callable[[LobbyError], None]] = None) -> RoomWatch:
        """
        Follow a room for one client. Any earlier watch held by the same
        client is torn down first. Closing and errors both end the watch.
        """
        code = normalize_room_code(code)
        self.unwatch(client_id)
        watch = RoomWatch(code, client_id)

        def handle_change(record):
            if record is None:
                self._finish(watch)
                on_closed(code)
            else:
                on_update(Room.from_record(record, code))

        def handle_error(error):
            self._finish(watch)
            if on_error:
                on_error(error)
            else:
                logger.error(f"Lost room {code} for client {client_id}: {error}")

        with self._watches_lock:
            self._watches[client_id] = watch
        try:
            unsubscribe = self.directory.subscribe(code, handle_change, handle_error)
        except Exception:
            with self._watches_lock:
                if self._watches.get(client_id) is watch:
                    del self._watches[client_id]
            # release anyone already waiting in unwatch()
            watch.attach(lambda: None)
            raise
        watch.attach(unsubscribe)
        return watch

    def unwatch(self, client_id: str) -> None:
        with self._watches_lock:
            watch = self._watches.pop(client_id, None)
        if watch is not None:
            watch.cancel()

    def _finish(self, watch: RoomWatch) -> None:
        with self._watches_lock:
            if self._watches.get(watch.client_id) is watch:
                del self._watches[watch.client_id]
        watch.cancel()

    def watching(self, client_id: str) -> Optional[str]:
        with self._watches_lock:
            watch = self._watches.get(client_id)
        return watch.code if watch else None


class ClientSession:
    """
    Local view of one client's session.

    Create/join results are speculative and only applied while the request
    that produced them is still the latest one; room snapshots from the
    change feed are authoritative and always win.
    """

    def __init__(self, player: Player) -> None:
        self.player = player
        self.stage = SessionStage.NO_SESSION
        self.room_code: Optional[str] = None
        self.room: Optional[Room] = None
        self.confirmed = False
        self.reason: Optional[str] = None
        self._token = 0
        self._pending: Optional[int] = None
        self._lock = threading.Lock()

    @property
    def is_host(self) -> bool:
        return self.room is not None and self.room.is_host(self.player.id)

    def begin(self) -> int:
        """Start a create/join; pass the token to ``accept`` with its result."""
        with self._lock:
            self._token += 1
            self._pending = self._token
            return self._token

    def accept(self, token: int, room: Room) -> bool:
        with self._lock:
            if token != self._pending:
                logger.info(f"Discarding stale result for room {room.code}")
                return False
            self._pending = None
            self.room_code = room.code
            self.room = room
            self.confirmed = False
            self.reason = None
            self.stage = self._stage_for(room)
            return True

    def apply_snapshot(self, code: str, room: Optional[Room]) -> SessionStage:
        with self._lock:
            if code != self.room_code:
                return self.stage
            if room is None:
                self._reset('closed')
            elif not room.has_player(self.player.id):
                self._reset('removed')
            else:
                self.room = room
                self.confirmed = True
                self.stage = self._stage_for(room)
            return self.stage

    def leave(self) -> None:
        with self._lock:
            self._token += 1
            self._pending = None
            self._reset('left')

    def fail(self, error: Exception) -> None:
        with self._lock:
            self._pending = None
            self._reset(f'error: {error}')

    @staticmethod
    def _stage_for(room: Room) -> SessionStage:
        return SessionStage.IN_GAME if room.game_started else SessionStage.IN_LOBBY

    def _reset(self, reason: str) -> None:
        # caller holds self._lock
        self.stage = SessionStage.NO_SESSION
        self.room_code = None
        self.room = None
        self.confirmed = False
        self.reason = reason
