"""
Card domain for Judgement: suits, ranks, the standard 52-card deck.

Ordering used everywhere: rank ascending (2 low, Ace high), ties broken by
suit Clubs < Hearts < Diamonds < Spades.
"""
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Suit(Enum):
    CLUBS = 'C'
    HEARTS = 'H'
    DIAMONDS = 'D'
    SPADES = 'S'

    @property
    def order(self) -> int:
        return SUIT_ORDER[self]


class Rank(Enum):
    TWO = '2'
    THREE = '3'
    FOUR = '4'
    FIVE = '5'
    SIX = '6'
    SEVEN = '7'
    EIGHT = '8'
    NINE = '9'
    TEN = '10'
    JACK = 'J'
    QUEEN = 'Q'
    KING = 'K'
    ACE = 'A'

    @property
    def order(self) -> int:
        return RANK_ORDER[self]


SUITS = [Suit.CLUBS, Suit.HEARTS, Suit.DIAMONDS, Suit.SPADES]
RANKS = list(Rank)
SUIT_ORDER = {s: i for i, s in enumerate(SUITS)}
RANK_ORDER = {r: i + 2 for i, r in enumerate(RANKS)}
SUIT_NAMES = {
    Suit.CLUBS: 'Clubs',
    Suit.HEARTS: 'Hearts',
    Suit.DIAMONDS: 'Diamonds',
    Suit.SPADES: 'Spades',
}


@dataclass(frozen=True)
class Card:
    suit: Suit
    rank: Rank

    @property
    def id(self) -> str:
        """Wire-level id, stable per (suit, rank)."""
        return f"{self.suit.value}-{self.rank.value}"

    def sort_key(self):
        return (self.rank.order, self.suit.order)

    def __lt__(self, other: 'Card') -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        return f"{self.rank.value}{self.suit.value}"

    def __repr__(self) -> str:
        return str(self)

    def to_dict(self) -> Dict[str, str]:
        return {'id': self.id, 'suit': self.suit.value, 'rank': self.rank.value}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'Card':
        return cls(Suit(data['suit']), Rank(data['rank']))


def parse_card(text: str) -> Card:
    """Parse short notation like 'AS', '10H' or '2c'."""
    text = text.strip().upper()
    if len(text) < 2:
        raise ValueError(f"Not a card: {text!r}")
    try:
        return Card(Suit(text[-1]), Rank(text[:-1]))
    except ValueError:
        raise ValueError(f"Not a card: {text!r}") from None


def compare_cards(a: Card, b: Card) -> int:
    """Return -1, 0 or 1 comparing rank first, then suit."""
    ka, kb = a.sort_key(), b.sort_key()
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def build_standard_deck() -> List[Card]:
    """All 52 cards in canonical order: 2C, 2H, 2D, 2S, 3C, ... AS."""
    return [Card(suit, rank) for rank in RANKS for suit in SUITS]


def shuffle_deck(deck: List[Card], rng: Optional[random.Random] = None) -> List[Card]:
    # Fisher-Yates on a copy
    rng = rng or random
    shuffled = list(deck)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def cards_to_dicts(cards: List[Card]) -> List[Dict[str, str]]:
    return [c.to_dict() for c in cards]


def cards_from_dicts(data: List[Dict[str, str]]) -> List[Card]:
    return [Card.from_dict(d) for d in data]
