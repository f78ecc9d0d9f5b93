"""DB service layer for turn-based card play.

- Every mutation runs in one transaction: read the row FOR UPDATE, run the
  turn guard, then write with a version-conditional UPDATE.
- Public methods never raise for game-rule violations; they return a
  TurnResult carrying the error code.
- After a successful commit the new snapshot is published on the
  session's Redis channel.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Tuple
from uuid import UUID

import numpy as np
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from uuid6 import uuid7

from heartdeck.converter import DataConverter
from heartdeck.crud import CreateData, ReadData, UpdateData
from heartdeck.domain.deck_rules import CardSelector, resolve_history
from heartdeck.domain.errors import CatalogInsufficient, SessionNotFound, StaleWrite, TurnError
from heartdeck.domain.sync_rules import PLACEHOLDER_PARTICIPANT_ID, is_placeholder
from heartdeck.domain.turn_rules import (
    complete_changes,
    draw_changes,
    end_changes,
    expire_changes,
    favorite_changes,
    guard,
    reveal_changes,
    skip_changes,
    toggle_pause_changes,
)
from heartdeck.load_secrets import (
    default_deck_size,
    max_failed_tasks,
    skips_per_participant,
)
from heartdeck.models.dc_models import (
    CompleteTurnModel,
    DrawModeModel,
    PhaseModel,
    SessionSnapshot,
    SessionStatusModel,
    TurnErrorModel,
    TurnResult,
)
from heartdeck.models.schema_models import (
    CardGameSessionSchema,
    CardResponseSchema,
    CardSchema,
)
from heartdeck.services.deck_db import DeckBuilder
from heartdeck.session_lock_manager import SessionLockManager

ALL_PHASES = tuple(PhaseModel)
CARD_ON_TABLE = (PhaseModel.drawn, PhaseModel.revealed)

# (changes, card, error) produced by one guarded mutation
Mutation = Tuple[Dict, CardSchema | None, TurnErrorModel | None]

data_converter = DataConverter()


def session_channel(session_id: UUID) -> str:
    return f"card_session:{session_id}"


async def read_snapshot_no_commit(session_id: UUID, session: AsyncSession) -> SessionSnapshot | None:
    """Assemble the client snapshot of a session from its rows"""
    game_session = await ReadData.read_session_data(session_id, session)
    if game_session is None:
        return None

    current_card = None
    if game_session.current_card_id is not None:
        current_card = await ReadData.read_card_data(game_session.current_card_id, session)
    categories = await ReadData.read_card_categories(game_session.played_cards, session)
    history = resolve_history(game_session.played_cards, categories)
    response_counts = await ReadData.read_response_counts(session_id, session)
    cards_remaining = await ReadData.count_undealt_deck(session_id, session)

    return data_converter.convert_session_to_snapshot(
        game_session, current_card, response_counts, history, cards_remaining
    )


class TurnCoordinator:
    """Session-level state machine: draw -> reveal -> complete/skip -> handoff."""

    def __init__(
        self,
        Session: async_sessionmaker,
        redis: Redis | None = None,
        rng: np.random.Generator | None = None,
        logger: logging.Logger | None = None,
        selector: CardSelector | None = None,
        deck_builder: DeckBuilder | None = None,
        lock_manager: SessionLockManager | None = None,
        skips_allowed: int = skips_per_participant,
        failed_task_limit: int = max_failed_tasks,
    ):
        self.Session: async_sessionmaker = Session
        self.redis = redis
        self.rng = rng if rng is not None else np.random.default_rng()
        self.logger = logger or logging.getLogger(__name__)
        self.selector = selector or CardSelector(self.rng, self.logger)
        self.deck_builder = deck_builder or DeckBuilder(Session, self.rng, self.logger)
        self.lock_manager = lock_manager or SessionLockManager()
        self.skips_allowed = skips_allowed
        self.failed_task_limit = failed_task_limit

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        participant_a_id: UUID,
        participant_b_id: UUID | None = None,
        deck_size: int | None = None,
        draw_mode: DrawModeModel = DrawModeModel.weighted,
    ) -> UUID | None:
        """Create a session with its deck, or reuse the pair's unfinished one.

        Args:
            participant_a_id (UUID): The participant starting the game
            participant_b_id (UUID | None): The partner; None seats a placeholder
            deck_size (int | None): Cards to deal; defaults to DEFAULT_DECK_SIZE
            draw_mode (DrawModeModel): weighted selection or sequential deal order

        Returns:
            UUID | None: The session id, or None when the deck could not be built
        """
        participant_b_id = participant_b_id or PLACEHOLDER_PARTICIPANT_ID
        deck_size = deck_size or default_deck_size

        try:
            async with self.Session() as session:
                async with session.begin():
                    if not is_placeholder(participant_b_id):
                        existing = await ReadData.read_latest_session_for_pair(
                            participant_a_id, participant_b_id, session
                        )
                        if existing is not None:
                            self.logger.info(f"Reusing session {existing.session_id}")
                            return existing.session_id

                    now = datetime.now()
                    if is_placeholder(participant_b_id):
                        first_turn = participant_a_id
                    else:
                        first_turn = (participant_a_id, participant_b_id)[int(self.rng.integers(0, 2))]

                    game_session = CardGameSessionSchema(
                        session_id=uuid7(),
                        participant_a_id=participant_a_id,
                        participant_b_id=participant_b_id,
                        current_turn=first_turn,
                        status=SessionStatusModel.active.value,
                        phase=PhaseModel.idle.value,
                        draw_mode=draw_mode.value,
                        deck_size=deck_size,
                        participant_a_skips_remaining=self.skips_allowed,
                        participant_b_skips_remaining=self.skips_allowed,
                        created_at=now,
                        started_at=now,
                        last_activity_at=now,
                    )
                    await CreateData.add_session_data(game_session, session)
                    await self.deck_builder.build_deck_no_commit(
                        game_session.session_id, deck_size, session
                    )
        except CatalogInsufficient as e:
            self.logger.warning(f"Session not started: {e}")
            return None
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to start session: {e}")
            return None

        self.logger.info(f"Started session {game_session.session_id}, first turn {first_turn}")
        return game_session.session_id

    async def read_snapshot(self, session_id: UUID) -> SessionSnapshot | None:
        try:
            async with self.Session() as session:
                return await read_snapshot_no_commit(session_id, session)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to read session {session_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Turn operations
    # ------------------------------------------------------------------

    async def draw_card(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        """Deal the next card to the turn holder. Idle -> Drawn.

        An exhausted deck ends the game and reports deck_exhausted.
        """

        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, (PhaseModel.idle,))
            card = await self._next_card(game_session, session)
            if card is None:
                self.logger.info(f"Deck exhausted for session {session_id}")
                changes = end_changes(game_session, now, reason="deck_exhausted")
                return changes, None, TurnErrorModel.deck_exhausted
            await UpdateData.increment_usage_count_no_commit(card.card_id, session)
            return draw_changes(game_session, card.card_id, now), card, None

        return await self._transition(session_id, "draw", mutate)

    async def reveal_card(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, (PhaseModel.drawn,))
            return reveal_changes(game_session, now), None, None

        return await self._transition(session_id, "reveal", mutate)

    async def complete_turn(
        self,
        session_id: UUID,
        requester_id: UUID,
        response: CompleteTurnModel | None = None,
    ) -> TurnResult:
        """Record the response, mark the card played and hand the turn over."""
        response = response or CompleteTurnModel()

        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, (PhaseModel.revealed,))
            card = await ReadData.read_card_data(game_session.current_card_id, session)
            await CreateData.add_card_response(
                CardResponseSchema(
                    response_id=uuid7(),
                    session_id=session_id,
                    card_id=game_session.current_card_id,
                    participant_id=requester_id,
                    response_type=card.category if card is not None else "action",
                    response_text=response.response_text,
                    response_time_seconds=response.response_time_seconds,
                    created_at=now,
                ),
                session,
            )
            await UpdateData.mark_deck_entry_no_commit(
                session_id, game_session.current_card_id, session, played=True, played_at=now
            )
            return complete_changes(game_session, now), card, None

        return await self._transition(session_id, "complete", mutate)

    async def skip_card(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        """Set the card aside, spending one skip. The turn still flips."""

        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, CARD_ON_TABLE)
            changes = skip_changes(game_session, requester_id, now)
            await UpdateData.mark_deck_entry_no_commit(
                session_id, game_session.current_card_id, session, skipped=True, played_at=now
            )
            return changes, None, None

        return await self._transition(session_id, "skip", mutate)

    async def expire_turn(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        """Turn timer ran out for the turn holder; counts a failed task."""

        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, CARD_ON_TABLE)
            changes = expire_changes(game_session, requester_id, now, self.failed_task_limit)
            await UpdateData.mark_deck_entry_no_commit(
                session_id, game_session.current_card_id, session, skipped=True, played_at=now
            )
            return changes, None, None

        return await self._transition(session_id, "expire", mutate)

    async def favorite_card(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, CARD_ON_TABLE, require_turn=False)
            return favorite_changes(game_session, now), None, None

        return await self._transition(session_id, "favorite", mutate)

    async def toggle_pause(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, ALL_PHASES, require_turn=False)
            return toggle_pause_changes(game_session, now), None, None

        return await self._transition(session_id, "toggle_pause", mutate)

    async def end_game(self, session_id: UUID, requester_id: UUID) -> TurnResult:
        """Terminal and idempotent: ending an ended game succeeds without a write."""

        async def mutate(game_session, now, session) -> Mutation:
            guard(game_session, requester_id, ALL_PHASES, require_turn=False)
            return end_changes(game_session, now, reason="ended_by_participant"), None, None

        return await self._transition(session_id, "end", mutate)

    async def complete_abandoned_sessions(self, max_idle_hours: int) -> int:
        """Mark unfinished sessions idle for max_idle_hours as completed.

        Returns:
            int: Number of sessions closed
        """
        cutoff = datetime.now() - timedelta(hours=max_idle_hours)
        try:
            async with self.Session() as session:
                session_ids = await ReadData.read_abandoned_session_ids(cutoff, session)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to collect abandoned sessions: {e}")
            return 0

        closed = 0
        for session_id in session_ids:

            async def mutate(game_session, now, session) -> Mutation:
                return end_changes(game_session, now, reason="abandoned"), None, None

            result = await self._transition(session_id, "abandon", mutate)
            if result.success:
                closed += 1
                await self.lock_manager.cleanup(session_id)
        if closed:
            self.logger.info(f"Closed {closed} abandoned sessions")
        return closed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _next_card(
        self, game_session: CardGameSessionSchema, session: AsyncSession
    ) -> CardSchema | None:
        undealt = await ReadData.read_undealt_deck(game_session.session_id, session)
        if not undealt:
            return None
        if game_session.draw_mode == DrawModeModel.sequential.value:
            return undealt[0][1]

        categories = await ReadData.read_card_categories(game_session.played_cards, session)
        history = resolve_history(game_session.played_cards, categories)
        return self.selector.select_next_card(history, [card for _, card in undealt])

    async def _transition(
        self,
        session_id: UUID,
        operation: str,
        mutate: Callable[[CardGameSessionSchema, datetime, AsyncSession], Awaitable[Mutation]],
    ) -> TurnResult:
        """Run one guarded mutation as a single check-and-set transaction."""
        session_lock = await self.lock_manager.get_lock(session_id)
        async with session_lock:
            try:
                async with self.Session() as session:
                    async with session.begin():
                        game_session = await ReadData.read_session_data(
                            session_id, session, for_update=True
                        )
                        if game_session is None:
                            raise SessionNotFound(f"Session {session_id} not found.")

                        changes, card, error = await mutate(game_session, datetime.now(), session)
                        if changes:
                            applied = await UpdateData.apply_session_changes_no_commit(
                                session_id,
                                game_session.version,
                                changes,
                                session,
                                expected_turn=game_session.current_turn,
                                expected_phase=game_session.phase,
                            )
                            if not applied:
                                raise StaleWrite("Session changed meanwhile, re-fetch and retry.")
                        snapshot = await read_snapshot_no_commit(session_id, session)
            except TurnError as e:
                self.logger.info(f"{operation} rejected for session {session_id}: {e.message}")
                return TurnResult(success=False, error=e.code, message=e.message)
            except SQLAlchemyError as e:
                self.logger.error(f"{operation} failed for session {session_id}: {e}")
                return TurnResult(
                    success=False,
                    error=TurnErrorModel.store_unavailable,
                    message="Store unavailable, re-fetch and retry.",
                )

        if changes:
            await self._publish(snapshot)
        self.logger.debug(f"{operation} applied to session {session_id} (version {snapshot.version})")
        return TurnResult(
            success=error is None,
            error=error,
            message=None if error is None else "No more cards.",
            session=snapshot,
            card=data_converter.convert_card_to_cardmodel(card),
        )

    async def _publish(self, snapshot: SessionSnapshot) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(session_channel(snapshot.session_id), snapshot.model_dump_json())
        except (RedisError, OSError) as e:
            # Subscribers fall back to polling; the write already committed.
            self.logger.warning(f"Failed to publish session {snapshot.session_id}: {e}")
