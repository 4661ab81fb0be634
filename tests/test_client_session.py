from errors import RoomNotFound
from models import Player, Room, SessionStage
from session import ClientSession

ALICE = Player('a', 'Alice')
BOB = Player('b', 'Bob')


def room(code='ABCD', players=(ALICE,), started=False):
    r = Room.new(code, players[0])
    for p in players[1:]:
        r.add_player(p)
    r.game_started = started
    return r


def test_new_session_has_no_room():
    session = ClientSession(ALICE)
    assert session.stage == SessionStage.NO_SESSION
    assert session.room_code is None
    assert not session.is_host


def test_accepted_result_enters_lobby_unconfirmed():
    session = ClientSession(ALICE)
    token = session.begin()
    assert session.accept(token, room())
    assert session.stage == SessionStage.IN_LOBBY
    assert session.room_code == 'ABCD'
    assert session.is_host
    assert session.confirmed is False


def test_snapshot_confirms_and_tracks_start():
    session = ClientSession(BOB)
    session.accept(session.begin(), room(players=(ALICE, BOB)))
    assert session.apply_snapshot('ABCD', room(players=(ALICE, BOB))) == SessionStage.IN_LOBBY
    assert session.confirmed
    assert not session.is_host
    assert session.apply_snapshot('ABCD', room(players=(ALICE, BOB), started=True)) == SessionStage.IN_GAME


def test_stale_result_is_discarded():
    session = ClientSession(ALICE)
    first = session.begin()
    second = session.begin()
    assert session.accept(first, room('WXYZ')) is False
    assert session.stage == SessionStage.NO_SESSION
    assert session.accept(second, room('ABCD'))
    assert session.room_code == 'ABCD'


def test_result_arriving_after_leave_is_discarded():
    session = ClientSession(ALICE)
    token = session.begin()
    session.leave()
    assert session.accept(token, room()) is False
    assert session.stage == SessionStage.NO_SESSION
    assert session.reason == 'left'


def test_room_closing_ends_session():
    session = ClientSession(BOB)
    session.accept(session.begin(), room(players=(ALICE, BOB)))
    assert session.apply_snapshot('ABCD', None) == SessionStage.NO_SESSION
    assert session.reason == 'closed'
    assert session.room is None


def test_being_removed_ends_session():
    session = ClientSession(BOB)
    session.accept(session.begin(), room(players=(ALICE, BOB)))
    session.apply_snapshot('ABCD', room(players=(ALICE,)))
    assert session.stage == SessionStage.NO_SESSION
    assert session.reason == 'removed'


def test_snapshots_for_other_rooms_are_ignored():
    session = ClientSession(ALICE)
    session.accept(session.begin(), room('ABCD'))
    assert session.apply_snapshot('WXYZ', None) == SessionStage.IN_LOBBY
    assert session.room_code == 'ABCD'


def test_failure_ends_session():
    session = ClientSession(ALICE)
    session.accept(session.begin(), room())
    session.fail(RoomNotFound('Room ABCD not found'))
    assert session.stage == SessionStage.NO_SESSION
    assert session.reason == 'error: Room ABCD not found'
