"""
Round engine for Judgement.

Pure functions over the card domain: deck trimming for the first deal,
random removal between rounds, trump tracking, bid legality and scoring.
Nothing here touches the room directory.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Sequence

from cards import (
    SUIT_NAMES, Card, Suit, build_standard_deck, cards_from_dicts,
    cards_to_dicts, shuffle_deck,
)
from errors import InvalidPlayerCount

logger = logging.getLogger(__name__)

TRUMP_SUIT = Suit.SPADES
MIN_PLAYERS = 3
MAX_PLAYERS = 6
# The last bidder may not make the bids add up to the cards in play,
# but only once hands are bigger than this.
LAST_BIDDER_RULE_THRESHOLD = 5
POINTS_FOR_EXACT_BID = 10


class RoundAdjustment(NamedTuple):
    adjusted_deck: List[Card]
    trump_changed: bool


def sort_deck(deck: Sequence[Card]) -> List[Card]:
    return sorted(deck, key=Card.sort_key)


def adjust_deck_for_initial_deal(deck: Sequence[Card], num_players: int) -> List[Card]:
    """
    Trim the deck for the first round so it splits evenly between players,
    dropping the lowest cards first (2C, 2H, 2D, 2S, 3C, ...).

    From a full deck: 3 players -> 1 removed, 4 -> 0, 5 -> 2, 6 -> 4.
    """
    if num_players <= 0:
        raise InvalidPlayerCount(f"Number of players must be positive, got {num_players}")
    if num_players < MIN_PLAYERS or num_players > MAX_PLAYERS:
        logger.warning(
            f"Game designed for {MIN_PLAYERS}-{MAX_PLAYERS} players, got {num_players}; "
            "deck adjustment may be unusual"
        )

    cards_to_remove = len(deck) % num_players
    if cards_to_remove == 0:
        logger.debug(f"Initial deal: {len(deck)} cards suit {num_players} players, nothing removed")
        return list(deck)

    ordered = sort_deck(deck)
    removed, adjusted = ordered[:cards_to_remove], ordered[cards_to_remove:]
    logger.info(
        f"Initial deal: removed {', '.join(str(c) for c in removed)} "
        f"for {num_players} players ({len(adjusted)} cards left)"
    )
    return adjusted


def remove_random_cards(deck: Sequence[Card], count: int,
                        rng: Optional[random.Random] = None) -> List[Card]:
    if count <= 0:
        return list(deck)
    if count >= len(deck):
        return []
    rng = rng or random
    doomed = set(rng.sample(range(len(deck)), count))
    return [c for i, c in enumerate(deck) if i not in doomed]


def has_trump(deck: Sequence[Card]) -> bool:
    return any(c.suit == TRUMP_SUIT for c in deck)


def remove_cards_between_rounds(deck: Sequence[Card], num_players: int,
                                rng: Optional[random.Random] = None) -> RoundAdjustment:
    """
    Remove ``num_players`` cards uniformly at random before the next round.

    Unlike the first deal this is not lowest-first. ``trump_changed`` is set
    once no Spade is left in the deck.
    """
    if num_players < MIN_PLAYERS or num_players > MAX_PLAYERS:
        raise InvalidPlayerCount(
            f"Number of players must be between {MIN_PLAYERS} and {MAX_PLAYERS}, got {num_players}"
        )
    adjusted = remove_random_cards(deck, num_players, rng)
    return RoundAdjustment(adjusted, not has_trump(adjusted))


def is_valid_last_player_bid(bid: int, current_total_bids: int, total_cards: int,
                             cards_per_player: int) -> bool:
    if cards_per_player <= LAST_BIDDER_RULE_THRESHOLD:
        return True
    return current_total_bids + bid != total_cards


def calculate_score(bid: int, tricks_won: int) -> int:
    """10 points plus one per trick for an exact bid, nothing otherwise."""
    if bid == tricks_won:
        return POINTS_FOR_EXACT_BID + tricks_won
    return 0


def validate_bid(bid, hand_size: int, bids_so_far: Dict[str, int],
                 num_players: int, total_cards: int) -> Optional[str]:
    """Return why ``bid`` is not allowed, or None when it is."""
    if isinstance(bid, bool) or not isinstance(bid, int):
        return 'Bid must be a whole number'
    if bid < 0 or bid > hand_size:
        return f'Bid must be between 0 and {hand_size}'
    is_last = len(bids_so_far) == num_players - 1
    if is_last and not is_valid_last_player_bid(bid, sum(bids_so_far.values()),
                                                total_cards, hand_size):
        return f'Last bidder cannot make the total equal {total_cards}'
    return None


def score_round(bids: Dict[str, int], tricks_won: Dict[str, int]) -> Dict[str, int]:
    scores = {}
    for player_id in set(bids) | set(tricks_won):
        if player_id not in bids:
            scores[player_id] = 0
            continue
        scores[player_id] = calculate_score(bids[player_id], tricks_won.get(player_id, 0))
    return scores


def deal_hands(deck: Sequence[Card], player_ids: Sequence[str]) -> Dict[str, List[Card]]:
    """Deal round-robin; cards that would leave hands uneven stay undealt."""
    hands: Dict[str, List[Card]] = {pid: [] for pid in player_ids}
    if not player_ids:
        return hands
    per_player = len(deck) // len(player_ids)
    for i, card in enumerate(deck[:per_player * len(player_ids)]):
        hands[player_ids[i % len(player_ids)]].append(card)
    return hands


@dataclass
class RoundSetup:
    round_number: int
    trump: Optional[Suit]
    cards_per_player: int
    deck: List[Card]
    hands: Dict[str, List[Card]]
    bids: Dict[str, int] = field(default_factory=dict)
    tricks_won: Dict[str, int] = field(default_factory=dict)

    @property
    def total_cards(self) -> int:
        return self.cards_per_player * len(self.hands)

    def to_record(self) -> dict:
        return {
            'roundNumber': self.round_number,
            'trump': self.trump.value if self.trump else None,
            'cardsPerPlayer': self.cards_per_player,
            'deck': cards_to_dicts(self.deck),
            'hands': {pid: cards_to_dicts(h) for pid, h in self.hands.items()},
            'bids': dict(self.bids),
            'tricksWon': dict(self.tricks_won),
        }

    @classmethod
    def from_record(cls, data: dict) -> 'RoundSetup':
        return cls(
            round_number=data['roundNumber'],
            trump=Suit(data['trump']) if data.get('trump') else None,
            cards_per_player=data['cardsPerPlayer'],
            deck=cards_from_dicts(data.get('deck', [])),
            hands={pid: cards_from_dicts(h) for pid, h in data.get('hands', {}).items()},
            bids=dict(data.get('bids', {})),
            tricks_won=dict(data.get('tricksWon', {})),
        )


def setup_first_round(player_ids: Sequence[str],
                      rng: Optional[random.Random] = None) -> RoundSetup:
    num_players = len(player_ids)
    deck = shuffle_deck(adjust_deck_for_initial_deal(build_standard_deck(), num_players), rng)
    hands = deal_hands(deck, player_ids)
    return RoundSetup(
        round_number=1,
        trump=TRUMP_SUIT,
        cards_per_player=len(deck) // num_players,
        deck=deck,
        hands=hands,
    )


def setup_next_round(previous: RoundSetup, player_ids: Sequence[str],
                     rng: Optional[random.Random] = None) -> Optional[RoundSetup]:
    """
    Build the round after ``previous``. Returns None when the remaining deck
    cannot give every player at least one card.
    """
    adjustment = remove_cards_between_rounds(previous.deck, len(player_ids), rng)
    trump = previous.trump
    if trump is not None and adjustment.trump_changed:
        logger.info(f"No {SUIT_NAMES[TRUMP_SUIT]} left after round {previous.round_number}; playing without trump")
        trump = None

    cards_per_player = len(adjustment.adjusted_deck) // len(player_ids)
    if cards_per_player == 0:
        return None

    deck = shuffle_deck(adjustment.adjusted_deck, rng)
    return RoundSetup(
        round_number=previous.round_number + 1,
        trump=trump,
        cards_per_player=cards_per_player,
        deck=deck,
        hands=deal_hands(deck, player_ids),
    )
