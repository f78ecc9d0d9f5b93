"""DB service layer for deck construction.

- Routers should not touch DB sessions directly; they call this module.
- This layer owns session/transaction boundaries.
- Use CRUD helpers that do NOT commit inside session.begin().
"""

import logging
from typing import List
from uuid import UUID

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from uuid6 import uuid7

from heartdeck.crud import CreateData, ReadData
from heartdeck.domain.deck_rules import (
    CATEGORIES,
    interleave,
    quota_counts,
    rebalance_quota,
    sample_least_used,
)
from heartdeck.domain.errors import CatalogInsufficient
from heartdeck.load_secrets import default_deck_size
from heartdeck.models.schema_models import DeckEntrySchema


class DeckBuilder:
    """Builds the ordered, per-session deck with the category quota."""

    def __init__(
        self,
        Session: async_sessionmaker,
        rng: np.random.Generator | None = None,
        logger: logging.Logger | None = None,
    ):
        self.Session: async_sessionmaker = Session
        self.rng = rng if rng is not None else np.random.default_rng()
        self.logger = logger or logging.getLogger(__name__)

    async def create_deck(self, session_id: UUID, deck_size: int = default_deck_size) -> bool:
        """Build and persist the deck of a session in one transaction.

        Args:
            session_id (UUID): The game session the deck belongs to
            deck_size (int): Number of cards to deal

        Returns:
            bool: True on success. On failure nothing is persisted and the
                caller may retry with a smaller deck_size.
        """
        if deck_size <= 0:
            self.logger.warning(f"Refusing to build a deck of size {deck_size}")
            return False

        try:
            async with self.Session() as session:
                async with session.begin():
                    await self.build_deck_no_commit(session_id, deck_size, session)
        except CatalogInsufficient as e:
            self.logger.warning(f"Deck for session {session_id} not built: {e}")
            return False
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to store deck for session {session_id}: {e}")
            return False
        return True

    async def build_deck_no_commit(
        self, session_id: UUID, deck_size: int, session: AsyncSession
    ) -> List[DeckEntrySchema]:
        """Select, order and add the deck entries inside the caller's transaction.

        Raises:
            CatalogInsufficient: the catalog cannot supply deck_size active cards,
                or the session already has a deck
        """
        if await ReadData.read_deck_entries(session_id, session):
            raise CatalogInsufficient(f"session {session_id} already has a deck")

        inventory = await ReadData.count_active_cards_by_category(session)
        target = quota_counts(deck_size)
        quota = rebalance_quota(target, {c: inventory.get(c.value, 0) for c in CATEGORIES})
        if quota != target:
            self.logger.info(
                f"Catalog short for quota {({c.value: n for c, n in target.items()})}, "
                f"using {({c.value: n for c, n in quota.items()})}"
            )

        piles = {}
        for category, count in quota.items():
            cards = await ReadData.read_active_cards(session, category.value)
            piles[category] = sample_least_used(cards, count, self.rng)

        entries = [
            DeckEntrySchema(
                deck_entry_id=uuid7(),
                session_id=session_id,
                card_id=card.card_id,
                position=position,
            )
            for position, card in enumerate(interleave(piles, self.rng))
        ]
        await CreateData.add_deck_entries(entries, session)
        self.logger.info(f"Built deck of {len(entries)} cards for session {session_id}")
        return entries
