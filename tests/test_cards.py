import random

import pytest

from cards import (
    Card, Rank, Suit, build_standard_deck, compare_cards, parse_card,
    shuffle_deck,
)
from game import sort_deck


def test_standard_deck_has_52_unique_cards():
    deck = build_standard_deck()
    assert len(deck) == 52
    assert len(set(deck)) == 52
    assert {c.suit for c in deck} == set(Suit)
    assert {c.rank for c in deck} == set(Rank)


def test_standard_deck_is_deterministic_and_starts_low():
    deck = build_standard_deck()
    assert deck == build_standard_deck()
    assert deck[0] == Card(Suit.CLUBS, Rank.TWO)
    assert deck[1] == Card(Suit.HEARTS, Rank.TWO)
    assert deck[-1] == Card(Suit.SPADES, Rank.ACE)


def test_compare_rank_first_then_suit():
    two_spades = Card(Suit.SPADES, Rank.TWO)
    three_clubs = Card(Suit.CLUBS, Rank.THREE)
    assert compare_cards(two_spades, three_clubs) == -1
    assert compare_cards(three_clubs, two_spades) == 1
    assert compare_cards(Card(Suit.CLUBS, Rank.ACE), Card(Suit.HEARTS, Rank.ACE)) == -1
    assert compare_cards(Card(Suit.DIAMONDS, Rank.KING), Card(Suit.DIAMONDS, Rank.KING)) == 0


def test_compare_is_a_total_order():
    deck = build_standard_deck()
    for a in deck:
        for b in deck:
            assert compare_cards(a, b) == -compare_cards(b, a)
            assert (compare_cards(a, b) == 0) == (a == b)
    # canonical order is strictly increasing
    assert all(compare_cards(x, y) == -1 for x, y in zip(deck, deck[1:]))


def test_shuffle_returns_permutation_without_mutating():
    deck = build_standard_deck()
    original = list(deck)
    shuffled = shuffle_deck(deck, random.Random(7))
    assert deck == original
    assert shuffled is not deck
    assert sorted(shuffled) == sorted(original)
    assert shuffled != original


def test_shuffle_is_reproducible_with_seeded_rng():
    deck = build_standard_deck()
    assert shuffle_deck(deck, random.Random(42)) == shuffle_deck(deck, random.Random(42))


def test_sort_recovers_canonical_order():
    deck = build_standard_deck()
    for seed in range(5):
        assert sort_deck(shuffle_deck(deck, random.Random(seed))) == deck


def test_card_wire_form():
    card = Card(Suit.HEARTS, Rank.TEN)
    data = card.to_dict()
    assert data == {'id': 'H-10', 'suit': 'H', 'rank': '10'}
    assert Card.from_dict(data) == card
    assert len({c.id for c in build_standard_deck()}) == 52


@pytest.mark.parametrize('text, expected', [
    ('AS', Card(Suit.SPADES, Rank.ACE)),
    ('10h', Card(Suit.HEARTS, Rank.TEN)),
    (' 2C ', Card(Suit.CLUBS, Rank.TWO)),
])
def test_parse_card(text, expected):
    assert parse_card(text) == expected
    assert parse_card(str(expected)) == expected


@pytest.mark.parametrize('text', ['', 'Z', '1S', '11H', 'AX'])
def test_parse_card_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_card(text)
