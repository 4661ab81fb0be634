#!/usr/bin/env python3
"""
HTTP client for the Judgement lobby server, plus a small bot demo.

Usage:
  python client.py [--url BASE_URL] [--players N]

The demo registers N bot players, has the first one create a room, the rest
join by code, starts the game and places a legal bid for everyone.
"""
import argparse
import logging
import sys
import threading
from typing import Callable, Dict, Optional

import requests

from cards import SUIT_NAMES
from directory import RoomSnapshot
from errors import ERRORS_BY_KIND, DirectoryUnavailable, LobbyError
from game import validate_bid
from models import Player, Room, SessionStage
from session import ClientSession

logger = logging.getLogger(__name__)

DEFAULT_URL = 'http://localhost:10000'


def error_from_response(status: int, body) -> LobbyError:
    if isinstance(body, dict):
        cls = ERRORS_BY_KIND.get(body.get('error'))
        message = body.get('message') or body.get('error') or f'HTTP {status}'
        if cls is not None:
            return cls(message)
        return LobbyError(message)
    return LobbyError(f'HTTP {status}: {body}')


class LobbyClient:
    def __init__(self, base_url: str = DEFAULT_URL, http=None, timeout: float = 10) -> None:
        self.base_url = base_url.rstrip('/')
        self.http = http or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, timeout: Optional[float] = None, **kwargs) -> dict:
        url = self.base_url + path
        try:
            r = self.http.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            raise DirectoryUnavailable(f'request-error: {e}') from e
        try:
            body = r.json()
        except ValueError:
            body = r.text
        if r.status_code >= 400:
            raise error_from_response(r.status_code, body)
        return body

    def register(self, name: str) -> Player:
        return Player.from_dict(self._request('POST', '/api/players', json={'name': name}))

    def create_room(self, player: Player) -> Room:
        return Room.from_record(self._request('POST', '/api/rooms', json={'player': player.to_dict()}))

    def get_room(self, code: str) -> Room:
        return Room.from_record(self._request('GET', f'/api/rooms/{code}'), code)

    def join_room(self, code: str, player: Player) -> Room:
        body = self._request('POST', f'/api/rooms/{code}/join', json={'player': player.to_dict()})
        return Room.from_record(body, code)

    def leave_room(self, code: str, player_id: str) -> None:
        self._request('POST', f'/api/rooms/{code}/leave', json={'player_id': player_id})

    def start_game(self, code: str, player_id: str) -> Room:
        body = self._request('POST', f'/api/rooms/{code}/start', json={'player_id': player_id})
        return Room.from_record(body, code)

    def place_bid(self, code: str, player_id: str, bid: int) -> Room:
        body = self._request('POST', f'/api/rooms/{code}/bid', json={'player_id': player_id, 'bid': bid})
        return Room.from_record(body, code)

    def next_round(self, code: str, player_id: str, tricks_won: Dict[str, int]) -> Room:
        body = self._request('POST', f'/api/rooms/{code}/next-round',
                             json={'player_id': player_id, 'tricks_won': tricks_won})
        return Room.from_record(body, code)

    def poll(self, code: str, since: Optional[int] = None, timeout: float = 25) -> RoomSnapshot:
        params = {'timeout': timeout}
        if since is not None:
            params['since'] = since
        body = self._request('GET', f'/api/rooms/{code}/poll', params=params, timeout=timeout + 5)
        return RoomSnapshot(code, body['version'], body['room'] if body['exists'] else None)

    def follow(self, session: ClientSession, stop: Optional[threading.Event] = None,
               on_change: Optional[Callable[[ClientSession], None]] = None,
               timeout: float = 25) -> None:
        """
        Feed room snapshots into ``session`` until it leaves the room,
        the room closes, or ``stop`` is set. Errors end the session.
        """
        code = session.room_code
        since = None
        while code and session.room_code == code and not (stop and stop.is_set()):
            try:
                snap = self.poll(code, since, timeout)
            except LobbyError as e:
                logger.error(f"Lost room {code}: {e}")
                session.fail(e)
                break
            if since is not None and snap.version == since and snap.exists:
                continue
            since = snap.version
            room = Room.from_record(snap.record, code) if snap.exists else None
            session.apply_snapshot(code, room)
            if on_change:
                on_change(session)
            if session.stage == SessionStage.NO_SESSION:
                break


def pick_bid(room: Room, player_id: str) -> int:
    """Lowest bid the engine will accept for this player right now."""
    current = room.round
    for bid in range(current.cards_per_player + 1):
        if validate_bid(bid, current.cards_per_player, current.bids,
                        len(current.hands), current.total_cards) is None:
            return bid
    raise LobbyError(f'No legal bid for {player_id}')


def demo_run(base: str, num_players: int) -> None:
    client = LobbyClient(base)
    players = [client.register(f'Bot{i + 1}') for i in range(num_players)]
    host = players[0]

    room = client.create_room(host)
    print(f"[create] {host.name} opened room {room.code}")
    for p in players[1:]:
        room = client.join_room(room.code, p)
        print(f"[join] {p.name} -> {room.code} ({len(room.players)} players)")

    room = client.start_game(room.code, host.id)
    print(f"[start] round {room.current_round}, {room.round.cards_per_player} cards each, trump {SUIT_NAMES.get(room.round.trump, 'none')}")
    for p in players:
        hand = ' '.join(str(c) for c in room.round.hands[p.id])
        print(f"[hand] {p.name}: {hand}")

    for p in players:
        bid = pick_bid(room, p.id)
        room = client.place_bid(room.code, p.id, bid)
        print(f"[bid] {p.name} bids {bid}")

    client.leave_room(room.code, host.id)
    print(f"[leave] host left, room {room.code} closed")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument('--url', default=DEFAULT_URL, help=f'Base URL for server (default {DEFAULT_URL})')
    parser.add_argument('--players', type=int, default=4, help='Number of bot players (default 4)')
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
    try:
        demo_run(args.url, args.players)
    except KeyboardInterrupt:
        print("Interrupted by user", file=sys.stderr)
        sys.exit(0)
    except LobbyError as e:
        print(f"Demo failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
