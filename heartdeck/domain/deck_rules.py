"""Deck and card-selection rules that are independent from HTTP and DB.

This module is organized by *concept* (rules), not by game mode.

Rule of thumb:
- OK: quota math, weighting, shuffling, pure transformations.
- Not OK: touching DB sessions, Redis, FastAPI, datetime.now(), etc.
  Randomness comes in as a numpy Generator.
"""

import logging
import math
from typing import Dict, Iterable, List, Sequence
from uuid import UUID

import numpy as np

from heartdeck.domain.errors import CatalogInsufficient
from heartdeck.models.dc_models import CategoryDistributionModel, CategoryModel, PlayRecord
from heartdeck.models.schema_models import CardSchema

CATEGORIES = (CategoryModel.action, CategoryModel.text, CategoryModel.photo)
CATEGORY_VALUES = {c.value for c in CATEGORIES}
TARGET_SHARE = {
    CategoryModel.action: 0.34,
    CategoryModel.text: 0.33,
    CategoryModel.photo: 0.33,
}
MIN_WEIGHT = 0.1
MAX_CONSECUTIVE = 2
CYCLE_LENGTH = 10


# ==============================================================================
# ==== Deck building ===========================================================
# ==============================================================================


def quota_counts(deck_size: int) -> Dict[CategoryModel, int]:
    """Split deck_size over the categories following TARGET_SHARE.

    Each bucket gets the floor of its exact share; the leftover goes to the
    largest fractional parts, ties to the larger bucket. Every count is
    within 1 of its exact share and the counts sum to deck_size.
    """
    if deck_size <= 0:
        raise ValueError("deck_size must be > 0")

    exact = {c: round(deck_size * TARGET_SHARE[c], 9) for c in CATEGORIES}
    counts = {c: int(math.floor(exact[c])) for c in CATEGORIES}
    leftover = deck_size - sum(counts.values())
    order = sorted(
        CATEGORIES,
        key=lambda c: (-(exact[c] - counts[c]), -TARGET_SHARE[c], CATEGORIES.index(c)),
    )
    for category in order[:leftover]:
        counts[category] += 1
    return counts


def rebalance_quota(
    counts: Dict[CategoryModel, int], inventory: Dict[CategoryModel, int]
) -> Dict[CategoryModel, int]:
    """Move any per-category shortfall onto the neighbouring categories.

    Neighbours are tried in the order action -> text -> photo -> action.

    Raises:
        CatalogInsufficient: the whole catalog holds fewer cards than the deck needs.
    """
    total = sum(counts.values())
    if sum(inventory.get(c, 0) for c in CATEGORIES) < total:
        raise CatalogInsufficient(
            f"catalog holds {sum(inventory.values())} active cards, deck needs {total}"
        )

    result = {c: min(counts[c], inventory.get(c, 0)) for c in CATEGORIES}
    # shortfalls are fixed against the clamped quota, before any borrowing
    shortfall = {c: counts[c] - result[c] for c in CATEGORIES}
    for index, category in enumerate(CATEGORIES):
        missing = shortfall[category]
        for step in (1, 2):
            if missing == 0:
                break
            neighbour = CATEGORIES[(index + step) % len(CATEGORIES)]
            spare = max(0, inventory.get(neighbour, 0) - result[neighbour])
            take = min(spare, missing)
            result[neighbour] += take
            missing -= take
        if missing:
            raise CatalogInsufficient(f"no spare cards to cover {category.value}")
    return result


def sample_least_used(
    cards: Sequence[CardSchema], count: int, rng: np.random.Generator
) -> List[CardSchema]:
    """Sample count distinct cards, favouring low usage_count."""
    if count <= 0:
        return []
    if count > len(cards):
        raise CatalogInsufficient(f"asked for {count} cards, only {len(cards)} available")
    weights = np.array([1.0 / (1 + max(card.usage_count, 0)) for card in cards])
    picked = rng.choice(len(cards), size=count, replace=False, p=weights / weights.sum())
    return [cards[int(i)] for i in picked]


def interleave(
    cards_by_category: Dict[CategoryModel, List[CardSchema]], rng: np.random.Generator
) -> List[CardSchema]:
    """Merge per-category piles into one deal order.

    Smooth weighted round robin: each category appears at a steady rate
    proportional to its pile size, so no category clusters at the start.
    """
    piles = {c: list(cards) for c, cards in cards_by_category.items() if cards}
    sizes = {c: len(cards) for c, cards in piles.items()}
    total = sum(sizes.values())
    order = [c for c in CATEGORIES if c in piles]
    order = [order[int(i)] for i in rng.permutation(len(order))]
    current = {c: 0 for c in order}

    dealt: List[CardSchema] = []
    for _ in range(total):
        for category in order:
            current[category] += sizes[category]
        pick = max(order, key=lambda c: current[c])
        current[pick] -= total
        dealt.append(piles[pick].pop())
    return dealt


# ==============================================================================
# ==== Card selection ==========================================================
# ==============================================================================


def resolve_history(
    played_card_ids: Iterable[UUID], categories_by_id: Dict[UUID, str]
) -> List[PlayRecord]:
    """Join played ids against their categories once, in play order.

    Ids with no known category are dropped.
    """
    history: List[PlayRecord] = []
    for card_id in played_card_ids:
        category = categories_by_id.get(UUID(str(card_id)))
        if category in CATEGORY_VALUES:
            history.append(PlayRecord(card_id=card_id, category=category))
    return history


def category_counts(history: Sequence[PlayRecord]) -> Dict[CategoryModel, int]:
    counts = {c: 0 for c in CATEGORIES}
    for record in history:
        counts[record.category] += 1
    return counts


def quota_weights(history: Sequence[PlayRecord]) -> Dict[CategoryModel, float]:
    """Normalized draw weights that favour under-represented categories."""
    if not history:
        return {c: 1.0 / len(CATEGORIES) for c in CATEGORIES}

    counts = category_counts(history)
    raw = {
        c: max(MIN_WEIGHT, TARGET_SHARE[c] - counts[c] / len(history)) for c in CATEGORIES
    }
    total = sum(raw.values())
    return {c: w / total for c, w in raw.items()}


def streak_category(history: Sequence[PlayRecord]) -> CategoryModel | None:
    """Category that would make a third consecutive draw, if any."""
    if len(history) < MAX_CONSECUTIVE:
        return None
    tail = {record.category for record in history[-MAX_CONSECUTIVE:]}
    if len(tail) == 1:
        return tail.pop()
    return None


def pick_category(weights: Dict[CategoryModel, float], draw: float) -> CategoryModel:
    """Map a uniform draw in [0, 1) onto the cumulative ranges action, text, photo."""
    upper = 0.0
    for category in CATEGORIES:
        upper += weights.get(category, 0.0)
        if draw < upper:
            return category
    return CATEGORIES[-1]


def fisher_yates(items: Sequence, rng: np.random.Generator) -> list:
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = int(rng.integers(0, i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def cycle_distribution(history: Sequence[PlayRecord]) -> CategoryDistributionModel:
    """Per-category counts in the current window of CYCLE_LENGTH plays."""
    cycle_start = (len(history) // CYCLE_LENGTH) * CYCLE_LENGTH
    counts = category_counts(history[cycle_start:])
    return CategoryDistributionModel(**{c.value: n for c, n in counts.items()})


class CardSelector:
    """Weighted random card picker with the anti-streak rule."""

    def __init__(self, rng: np.random.Generator | None = None, logger: logging.Logger | None = None):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.logger = logger or logging.getLogger(__name__)

    def select_next_card(
        self, play_history: Sequence[PlayRecord], available_pool: Sequence[CardSchema]
    ) -> CardSchema | None:
        """Pick the next card, or None when the pool is empty (deck exhausted).

        Args:
            play_history (Sequence[PlayRecord]): Plays of this session, oldest first
            available_pool (Sequence[CardSchema]): Cards that may still be dealt

        Returns:
            CardSchema | None: The chosen card
        """
        played_ids = {record.card_id for record in play_history}
        pool = [card for card in available_pool if card.card_id not in played_ids]
        if not pool:
            self.logger.info("No cards available to draw")
            return None

        eligible = pool
        avoid = streak_category(play_history)
        if avoid is not None:
            eligible = [card for card in pool if card.category != avoid.value]
            self.logger.debug(f"Avoiding {avoid.value} to prevent a third consecutive draw")
            if not eligible:
                self.logger.warning("Anti-streak filter emptied the pool, ignoring it for this draw")
                eligible = pool

        remaining_categories = {card.category for card in eligible}
        if len(remaining_categories) == 1:
            self.logger.debug(f"Only {remaining_categories.pop()} cards remain, skipping weights")
            return fisher_yates(eligible, self.rng)[0]

        weights = quota_weights(play_history)
        draw = float(self.rng.random())
        category = pick_category(weights, draw)
        self.logger.debug(
            f"Category draw {draw:.3f} against "
            f"{ {c.value: round(w, 3) for c, w in weights.items()} } -> {category.value}"
        )

        of_category = [card for card in eligible if card.category == category.value]
        if not of_category:
            self.logger.debug(f"No eligible {category.value} cards, drawing from the whole pool")
            of_category = eligible
        return fisher_yates(of_category, self.rng)[0]
