"""Error taxonomy shared by the round engine, the lobby and the HTTP layer."""


class LobbyError(Exception):
    """Base for every error a caller is expected to handle."""
    kind = 'lobby_error'
    http_status = 500

    def __init__(self, message: str = '') -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self.args[0])

    def to_dict(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class InvalidInput(LobbyError):
    """Invalid input"""
    kind = 'invalid_input'
    http_status = 400


class InvalidBid(InvalidInput):
    """Bid not allowed"""
    kind = 'invalid_bid'


class RoomNotFound(LobbyError):
    """Room not found"""
    kind = 'room_not_found'
    http_status = 404


class GameAlreadyStarted(LobbyError):
    """Game already started"""
    kind = 'game_already_started'
    http_status = 409


class NotHost(LobbyError):
    """Only the host can do that"""
    kind = 'not_host'
    http_status = 403


class InsufficientPlayers(LobbyError):
    """Not enough players"""
    kind = 'insufficient_players'
    http_status = 409


class RoomFull(LobbyError):
    """Room is full"""
    kind = 'room_full'
    http_status = 409


class CodeAllocationExhausted(LobbyError):
    """Could not allocate a unique room code"""
    kind = 'code_allocation_exhausted'
    http_status = 503


class InvalidPlayerCount(LobbyError):
    """Invalid number of players"""
    kind = 'invalid_player_count'
    http_status = 400


class DirectoryUnavailable(LobbyError):
    """Room directory unavailable"""
    kind = 'directory_unavailable'
    http_status = 503


ERRORS_BY_KIND = {
    cls.kind: cls
    for cls in (
        InvalidInput, InvalidBid, RoomNotFound, GameAlreadyStarted, NotHost,
        InsufficientPlayers, RoomFull, CodeAllocationExhausted,
        InvalidPlayerCount, DirectoryUnavailable,
    )
}
