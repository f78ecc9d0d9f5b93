from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, or_, select, update, desc
from typing import Dict, Iterable, List
from uuid import UUID
import logging

from heartdeck.models.schema_models import (
    CardGameSessionSchema,
    CardResponseSchema,
    CardSchema,
    DeckEntrySchema,
)
from heartdeck.models.schemas import (
    Card,
    CardGameSession,
    CardResponse,
    DeckEntry,
)

logger = logging.getLogger(__name__)


class ReadData:
    """Read helpers. They never commit; the caller owns the transaction."""

    @staticmethod
    async def read_session_data(
        session_id: UUID, session: AsyncSession, for_update: bool = False
    ) -> CardGameSessionSchema | None:
        """Read one game session row

        Args:
            session_id (UUID): To identify the game session
            for_update (bool): Lock the row until the surrounding transaction ends

        Returns:
            CardGameSessionSchema: Game session data
        """
        stmt = (
            select(CardGameSession)
            .where(CardGameSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None
        return CardGameSessionSchema.model_validate(result)

    @staticmethod
    async def read_latest_session_for_pair(
        participant_a_id: UUID, participant_b_id: UUID, session: AsyncSession
    ) -> CardGameSessionSchema | None:
        """Read the newest unfinished session between two participants, in either seat order"""
        stmt = (
            select(CardGameSession)
            .where(
                or_(
                    and_(
                        CardGameSession.participant_a_id == participant_a_id,
                        CardGameSession.participant_b_id == participant_b_id,
                    ),
                    and_(
                        CardGameSession.participant_a_id == participant_b_id,
                        CardGameSession.participant_b_id == participant_a_id,
                    ),
                ),
                CardGameSession.status.in_(("active", "paused")),
            )
            .order_by(desc(CardGameSession.created_at))
            .limit(1)
        )
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None
        return CardGameSessionSchema.model_validate(result)

    @staticmethod
    async def read_card_data(card_id: UUID, session: AsyncSession) -> CardSchema | None:
        result = await session.execute(select(Card).where(Card.card_id == card_id))
        result = result.scalars().first()

        if result is None:
            return None
        return CardSchema.model_validate(result)

    @staticmethod
    async def read_active_cards(
        session: AsyncSession, category: str | None = None
    ) -> List[CardSchema]:
        """Read active catalog cards, optionally for one category

        Args:
            category (str | None): "action", "text" or "photo"; None reads every category

        Returns:
            List[CardSchema]: Active cards ordered by usage_count, least used first
        """
        stmt = select(Card).where(Card.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(Card.category == category)
        stmt = stmt.order_by(Card.usage_count, Card.card_id)
        result = await session.execute(stmt)
        return [CardSchema.model_validate(card) for card in result.scalars().all()]

    @staticmethod
    async def count_active_cards_by_category(session: AsyncSession) -> Dict[str, int]:
        stmt = (
            select(Card.category, func.count(Card.card_id))
            .where(Card.is_active.is_(True))
            .group_by(Card.category)
        )
        result = await session.execute(stmt)
        return {category: count for category, count in result.all()}

    @staticmethod
    async def read_card_categories(
        card_ids: Iterable[UUID], session: AsyncSession
    ) -> Dict[UUID, str]:
        """Read the category of each card id in one query"""
        card_ids = [UUID(str(card_id)) for card_id in card_ids]
        if not card_ids:
            return {}
        stmt = select(Card.card_id, Card.category).where(Card.card_id.in_(card_ids))
        result = await session.execute(stmt)
        return {card_id: category for card_id, category in result.all()}

    @staticmethod
    async def read_undealt_deck(
        session_id: UUID, session: AsyncSession
    ) -> List[tuple[DeckEntrySchema, CardSchema]]:
        """Read deck entries that are neither played nor skipped, in deal order

        Returns:
            List[tuple[DeckEntrySchema, CardSchema]]: Each entry with its catalog card
        """
        stmt = (
            select(DeckEntry, Card)
            .join(Card, Card.card_id == DeckEntry.card_id)
            .where(
                DeckEntry.session_id == session_id,
                DeckEntry.is_played.is_(False),
                DeckEntry.skipped.is_(False),
            )
            .order_by(DeckEntry.position)
        )
        result = await session.execute(stmt)
        return [
            (DeckEntrySchema.model_validate(entry), CardSchema.model_validate(card))
            for entry, card in result.all()
        ]

    @staticmethod
    async def read_deck_entries(session_id: UUID, session: AsyncSession) -> List[DeckEntrySchema]:
        stmt = (
            select(DeckEntry)
            .where(DeckEntry.session_id == session_id)
            .order_by(DeckEntry.position)
        )
        result = await session.execute(stmt)
        return [DeckEntrySchema.model_validate(entry) for entry in result.scalars().all()]

    @staticmethod
    async def count_undealt_deck(session_id: UUID, session: AsyncSession) -> int:
        stmt = select(func.count(DeckEntry.deck_entry_id)).where(
            DeckEntry.session_id == session_id,
            DeckEntry.is_played.is_(False),
            DeckEntry.skipped.is_(False),
        )
        result = await session.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def read_response_counts(session_id: UUID, session: AsyncSession) -> Dict[str, int]:
        """Count card responses per participant

        Returns:
            Dict[str, int]: participant id (as str) -> number of responses
        """
        stmt = (
            select(CardResponse.participant_id, func.count(CardResponse.response_id))
            .where(CardResponse.session_id == session_id)
            .group_by(CardResponse.participant_id)
        )
        result = await session.execute(stmt)
        return {str(participant_id): count for participant_id, count in result.all()}

    @staticmethod
    async def read_responses(session_id: UUID, session: AsyncSession) -> List[CardResponseSchema]:
        stmt = (
            select(CardResponse)
            .where(CardResponse.session_id == session_id)
            .order_by(CardResponse.created_at)
        )
        result = await session.execute(stmt)
        return [CardResponseSchema.model_validate(r) for r in result.scalars().all()]

    @staticmethod
    async def read_abandoned_session_ids(cutoff: datetime, session: AsyncSession) -> List[UUID]:
        """Collect unfinished sessions with no activity since cutoff"""
        stmt = select(CardGameSession.session_id).where(
            CardGameSession.status.in_(("active", "paused")),
            CardGameSession.last_activity_at < cutoff,
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


class CreateData:
    @staticmethod
    async def add_session_data(game_session: CardGameSessionSchema, session: AsyncSession) -> None:
        """Add a game session row (no commit)"""
        session.add(
            CardGameSession(
                **game_session.model_dump(
                    exclude={"played_cards", "skipped_cards", "favorite_cards"}
                ),
                played_cards=[str(c) for c in game_session.played_cards],
                skipped_cards=[str(c) for c in game_session.skipped_cards],
                favorite_cards=[str(c) for c in game_session.favorite_cards],
            )
        )
        await session.flush()

    @staticmethod
    async def add_deck_entries(entries: List[DeckEntrySchema], session: AsyncSession) -> None:
        """Bulk add deck entries (no commit)"""
        session.add_all([DeckEntry(**entry.model_dump()) for entry in entries])
        await session.flush()

    @staticmethod
    async def add_card_response(response: CardResponseSchema, session: AsyncSession) -> None:
        """Add a card response (no commit)"""
        session.add(CardResponse(**response.model_dump()))
        await session.flush()


class UpdateData:
    @staticmethod
    async def apply_session_changes_no_commit(
        session_id: UUID,
        expected_version: int,
        changes: Dict,
        session: AsyncSession,
        expected_turn: UUID | None = None,
        expected_phase: str | None = None,
    ) -> bool:
        """Conditionally write changes to a game session row.

        The write only lands when the row still has expected_version (and,
        when given, expected_turn and expected_phase). The version is bumped
        on every successful write.

        Returns:
            bool: True when exactly one row was updated
        """
        stmt = update(CardGameSession).where(
            CardGameSession.session_id == session_id,
            CardGameSession.version == expected_version,
        )
        if expected_turn is not None:
            stmt = stmt.where(CardGameSession.current_turn == expected_turn)
        if expected_phase is not None:
            stmt = stmt.where(CardGameSession.phase == expected_phase)
        stmt = stmt.values(**changes, version=expected_version + 1).execution_options(
            synchronize_session=False
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            logger.debug(f"Conditional write on session {session_id} at version {expected_version} missed")
            return False
        return True

    @staticmethod
    async def mark_deck_entry_no_commit(
        session_id: UUID,
        card_id: UUID,
        session: AsyncSession,
        *,
        played: bool = False,
        skipped: bool = False,
        played_at: datetime | None = None,
    ) -> None:
        """Mark one deck entry as played or skipped, never both"""
        if played == skipped:
            raise ValueError("A deck entry is either played or skipped")
        stmt = (
            update(DeckEntry)
            .where(DeckEntry.session_id == session_id, DeckEntry.card_id == card_id)
            .values(is_played=played, skipped=skipped, played_at=played_at)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    @staticmethod
    async def increment_usage_count_no_commit(card_id: UUID, session: AsyncSession) -> None:
        stmt = (
            update(Card)
            .where(Card.card_id == card_id)
            .values(usage_count=Card.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
