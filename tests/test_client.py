import threading

import pytest
import requests

from client import LobbyClient, error_from_response, pick_bid
from errors import (
    DirectoryUnavailable, GameAlreadyStarted, LobbyError, NotHost, RoomNotFound,
)
from models import SessionStage
from session import ClientSession


@pytest.fixture
def lobby_client(flask_http):
    return LobbyClient('http://lobby.test', http=flask_http)


def test_error_from_response_maps_kinds():
    err = error_from_response(404, {'error': 'room_not_found', 'message': 'Room ABCD not found'})
    assert isinstance(err, RoomNotFound)
    assert err.message == 'Room ABCD not found'

    err = error_from_response(500, {'error': 'server_error', 'message': 'boom'})
    assert type(err) is LobbyError

    err = error_from_response(502, '<html>bad gateway</html>')
    assert 'HTTP 502' in str(err)


def test_network_failure_is_directory_unavailable():
    class Down:
        def request(self, *args, **kwargs):
            raise requests.ConnectionError('refused')

    client = LobbyClient('http://lobby.test', http=Down())
    with pytest.raises(DirectoryUnavailable):
        client.get_room('ABCD')


def test_lobby_round_trip(lobby_client):
    alice = lobby_client.register('Alice')
    bob = lobby_client.register('Bob')
    carol = lobby_client.register('Carol')

    room = lobby_client.create_room(alice)
    room = lobby_client.join_room(room.code, bob)
    room = lobby_client.join_room(room.code, carol)
    assert room.player_ids == [alice.id, bob.id, carol.id]

    with pytest.raises(NotHost):
        lobby_client.start_game(room.code, bob.id)
    room = lobby_client.start_game(room.code, alice.id)
    assert room.game_started

    with pytest.raises(GameAlreadyStarted):
        lobby_client.join_room(room.code, lobby_client.register('Dan'))

    for p in (alice, bob, carol):
        room = lobby_client.place_bid(room.code, p.id, pick_bid(room, p.id))
    assert len(room.round.bids) == 3

    tricks = {alice.id: room.round.cards_per_player, bob.id: 0, carol.id: 0}
    room = lobby_client.next_round(room.code, alice.id, tricks)
    assert room.current_round == 2

    lobby_client.leave_room(room.code, alice.id)
    with pytest.raises(RoomNotFound):
        lobby_client.get_room(room.code)


def test_poll_snapshot(lobby_client):
    alice = lobby_client.register('Alice')
    room = lobby_client.create_room(alice)
    snap = lobby_client.poll(room.code)
    assert snap.exists
    assert snap.version == 1
    assert snap.record['hostId'] == alice.id


def test_follow_tracks_room_until_closed(lobby_client):
    alice = lobby_client.register('Alice')
    bob = lobby_client.register('Bob')
    room = lobby_client.create_room(alice)

    session = ClientSession(bob)
    assert session.accept(session.begin(), lobby_client.join_room(room.code, bob))
    assert session.stage == SessionStage.IN_LOBBY

    stages = []

    def on_change(s):
        stages.append(s.stage)
        if s.stage == SessionStage.IN_LOBBY and s.confirmed and len(stages) == 1:
            lobby_client.start_game(room.code, alice.id)
        elif s.stage == SessionStage.IN_GAME:
            lobby_client.leave_room(room.code, alice.id)

    lobby_client.follow(session, on_change=on_change, timeout=0.2)
    assert stages == [SessionStage.IN_LOBBY, SessionStage.IN_GAME, SessionStage.NO_SESSION]
    assert session.reason == 'closed'


def test_follow_stops_on_event(lobby_client):
    alice = lobby_client.register('Alice')
    session = ClientSession(alice)
    session.accept(session.begin(), lobby_client.create_room(alice))
    stop = threading.Event()

    def on_change(s):
        stop.set()

    lobby_client.follow(session, stop=stop, on_change=on_change, timeout=0.05)
    assert stop.is_set()
    assert session.stage == SessionStage.IN_LOBBY
    assert session.confirmed
