"""Pure deck-building rules: quota split, shortfall borrowing, sampling, interleave.

Invariants:
    - quota counts sum to the deck size and stay within 1 of the exact share
    - rebalancing only fails when the whole catalog is too small
    - interleaving keeps every card exactly once
"""

import numpy as np
import pytest
from uuid6 import uuid7

from heartdeck.domain.deck_rules import (
    CATEGORIES,
    TARGET_SHARE,
    interleave,
    quota_counts,
    rebalance_quota,
    sample_least_used,
)
from heartdeck.domain.errors import CatalogInsufficient
from heartdeck.models.dc_models import CategoryModel
from heartdeck.models.schema_models import CardSchema

A, T, P = CategoryModel.action, CategoryModel.text, CategoryModel.photo


def make_cards(category: str, n: int, usage_count: int = 0):
    return [
        CardSchema(card_id=uuid7(), category=category, prompt=f"{category} {i}", usage_count=usage_count)
        for i in range(n)
    ]


def test_quota_for_sixty_cards():
    assert quota_counts(60) == {A: 20, T: 20, P: 20}


def test_quota_for_ten_cards_gives_extra_to_action():
    assert quota_counts(10) == {A: 4, T: 3, P: 3}


@pytest.mark.parametrize("deck_size", [1, 2, 3, 7, 10, 33, 59, 60, 100, 101])
def test_quota_sums_and_stays_close_to_share(deck_size):
    counts = quota_counts(deck_size)
    assert sum(counts.values()) == deck_size
    for category in CATEGORIES:
        assert abs(counts[category] - deck_size * TARGET_SHARE[category]) < 1


def test_quota_rejects_empty_deck():
    with pytest.raises(ValueError):
        quota_counts(0)


def test_rebalance_keeps_quota_when_inventory_suffices():
    target = {A: 4, T: 3, P: 3}
    assert rebalance_quota(target, {A: 10, T: 10, P: 10}) == target


def test_rebalance_borrows_from_neighbours():
    target = {A: 4, T: 3, P: 3}
    result = rebalance_quota(target, {A: 1, T: 10, P: 10})
    assert result == {A: 1, T: 6, P: 3}


def test_rebalance_never_takes_from_a_category_that_was_borrowed_into():
    target = {A: 4, T: 3, P: 3}
    assert rebalance_quota(target, {A: 1, T: 3, P: 10}) == {A: 1, T: 3, P: 6}
    assert rebalance_quota(target, {A: 10, T: 0, P: 10}) == {A: 4, T: 0, P: 6}


def test_rebalance_fails_only_when_catalog_too_small():
    with pytest.raises(CatalogInsufficient):
        rebalance_quota({A: 4, T: 3, P: 3}, {A: 3, T: 3, P: 3})


def test_sample_least_used_returns_distinct_cards():
    cards = make_cards("text", 8)
    picked = sample_least_used(cards, 5, np.random.default_rng(1))
    assert len({card.card_id for card in picked}) == 5


def test_sample_least_used_prefers_fresh_cards():
    rng = np.random.default_rng(3)
    fresh = make_cards("photo", 5, usage_count=0)
    worn = make_cards("photo", 5, usage_count=50)
    fresh_ids = {card.card_id for card in fresh}
    hits = 0
    for _ in range(200):
        picked = sample_least_used(fresh + worn, 1, rng)
        hits += picked[0].card_id in fresh_ids
    assert hits > 160


def test_sample_least_used_rejects_oversized_request():
    with pytest.raises(CatalogInsufficient):
        sample_least_used(make_cards("action", 2), 3, np.random.default_rng(0))


def test_interleave_spreads_categories():
    piles = {A: make_cards("action", 20), T: make_cards("text", 20), P: make_cards("photo", 20)}
    dealt = interleave(piles, np.random.default_rng(5))

    assert len(dealt) == 60
    assert len({card.card_id for card in dealt}) == 60
    # equal piles deal in strict rotation
    for i in range(0, 60, 3):
        assert len({card.category for card in dealt[i:i + 3]}) == 3


def test_interleave_with_uneven_piles_never_clusters():
    piles = {A: make_cards("action", 4), T: make_cards("text", 3), P: make_cards("photo", 3)}
    dealt = interleave(piles, np.random.default_rng(9))
    categories = [card.category for card in dealt]
    assert sorted(categories) == sorted(["action"] * 4 + ["text"] * 3 + ["photo"] * 3)
    for i in range(len(categories) - 2):
        assert len(set(categories[i:i + 3])) > 1
