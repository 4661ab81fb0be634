from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from game import RoundSetup


class SessionStage(Enum):
    NO_SESSION = 'NO_SESSION'
    IN_LOBBY = 'IN_LOBBY'
    IN_GAME = 'IN_GAME'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Player:
    id: str
    name: str

    def to_dict(self) -> dict:
        return {'id': self.id, 'name': self.name}

    @classmethod
    def from_dict(cls, data: dict) -> 'Player':
        return cls(id=str(data['id']), name=str(data['name']))


@dataclass
class Room:
    code: str
    host_id: str
    host_name: str
    players: List[Player] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    game_started: bool = False
    current_round: Optional[int] = None
    round: Optional[RoundSetup] = None
    scores: Dict[str, int] = field(default_factory=dict)
    game_over: bool = False

    @classmethod
    def new(cls, code: str, host: Player) -> 'Room':
        return cls(code=code, host_id=host.id, host_name=host.name, players=[host])

    @property
    def player_ids(self) -> List[str]:
        return [p.id for p in self.players]

    def has_player(self, player_id: str) -> bool:
        return any(p.id == player_id for p in self.players)

    def is_host(self, player_id: str) -> bool:
        return self.host_id == player_id

    def add_player(self, player: Player) -> bool:
        """Append unless already present. Returns True if the room changed."""
        if self.has_player(player.id):
            return False
        self.players.append(player)
        return True

    def remove_player(self, player_id: str) -> bool:
        before = len(self.players)
        self.players = [p for p in self.players if p.id != player_id]
        if self.round is not None:
            self.round.hands.pop(player_id, None)
            self.round.bids.pop(player_id, None)
            self.round.tricks_won.pop(player_id, None)
        return len(self.players) != before

    def to_record(self) -> dict:
        record = {
            'code': self.code,
            'hostId': self.host_id,
            'hostName': self.host_name,
            'players': [p.to_dict() for p in self.players],
            'createdAt': self.created_at.isoformat(),
            'gameStarted': self.game_started,
        }
        if self.current_round is not None:
            record['currentRound'] = self.current_round
        if self.round is not None:
            record['round'] = self.round.to_record()
        if self.scores:
            record['scores'] = dict(self.scores)
        if self.game_over:
            record['gameOver'] = True
        return record

    @classmethod
    def from_record(cls, record: dict, code: Optional[str] = None) -> 'Room':
        created_at = record.get('createdAt')
        return cls(
            code=record.get('code') or code or '',
            host_id=record['hostId'],
            host_name=record.get('hostName', ''),
            players=[Player.from_dict(p) for p in record.get('players', [])],
            created_at=datetime.fromisoformat(created_at) if created_at else utc_now(),
            game_started=bool(record.get('gameStarted', False)),
            current_round=record.get('currentRound'),
            round=RoundSetup.from_record(record['round']) if record.get('round') else None,
            scores=dict(record.get('scores', {})),
            game_over=bool(record.get('gameOver', False)),
        )
