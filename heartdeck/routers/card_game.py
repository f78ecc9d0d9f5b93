import asyncio
import json
import logging
from typing import AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import StreamingResponse
from redis.asyncio import Redis

from heartdeck.db import Session
from heartdeck.domain.sync_rules import is_placeholder
from heartdeck.load_secrets import redis_host, redis_port
from heartdeck.models.dc_models import (
    CompleteTurnModel,
    SessionSnapshot,
    StartSessionModel,
    TurnErrorModel,
    TurnResult,
)
from heartdeck.services.turn_db import TurnCoordinator
from heartdeck.session_subscriber import SessionSubscriber

HEART_BEAT = 15

redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)

card_game_router = APIRouter(prefix="/card-sessions")
logger = logging.getLogger(__name__)
turn_coordinator = TurnCoordinator(Session, redis)

ERROR_STATUS = {
    TurnErrorModel.not_your_turn: status.HTTP_409_CONFLICT,
    TurnErrorModel.invalid_state: status.HTTP_409_CONFLICT,
    TurnErrorModel.stale_write: status.HTTP_409_CONFLICT,
    TurnErrorModel.session_not_found: status.HTTP_404_NOT_FOUND,
    TurnErrorModel.skip_limit_exceeded: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TurnErrorModel.store_unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_turn_coordinator() -> TurnCoordinator:
    return turn_coordinator


def get_redis() -> Redis | None:
    return redis


def check_result(result: TurnResult) -> TurnResult:
    """Raise the HTTP error for a rejected operation.

    An exhausted deck is a normal game ending, so it is returned as is.
    """
    if result.success or result.error == TurnErrorModel.deck_exhausted:
        return result
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error, status.HTTP_409_CONFLICT),
        detail={"error": result.error.value, "message": result.message},
    )


def sse_message(event: str, payload: dict | None = None) -> str:
    return f"event: {event}\ndata: {json.dumps(payload or {})}\n\n"


class CardGameServer:
    @staticmethod
    @card_game_router.post("", response_model=UUID)
    async def start_session(
        start_data: StartSessionModel,
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> UUID:
        """Start a session for a pair, or return their unfinished one

        Args:
            start_data (StartSessionModel): The pair, deck size and draw mode
        """
        session_id = await coordinator.start_session(
            start_data.participant_a_id,
            start_data.participant_b_id,
            start_data.deck_size,
            start_data.draw_mode,
        )
        if session_id is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={
                    "error": TurnErrorModel.catalog_insufficient.value,
                    "message": "The card catalog cannot fill a deck of this size.",
                },
            )
        return session_id

    @staticmethod
    @card_game_router.get("/{session_id}", response_model=SessionSnapshot)
    async def read_session(
        session_id: UUID,
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> SessionSnapshot:
        snapshot = await coordinator.read_snapshot(session_id)
        if snapshot is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": TurnErrorModel.session_not_found.value, "message": "Session not found."},
            )
        return snapshot

    @staticmethod
    @card_game_router.get("/{session_id}/stream")
    async def stream_session(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
        redis: Redis | None = Depends(get_redis),
    ):
        """Server-sent events for one participant's view of the session"""
        snapshot = await CardGameServer.read_session(session_id, coordinator)
        seated = (snapshot.participant_a_id, snapshot.participant_b_id)
        if is_placeholder(x_participant_id) or x_participant_id not in seated:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "error": TurnErrorModel.not_your_turn.value,
                    "message": "Not a participant of this session.",
                },
            )

        subscriber = SessionSubscriber(coordinator.read_snapshot, redis, x_participant_id)

        async def event_generator() -> AsyncGenerator[str, None]:
            queue: asyncio.Queue = asyncio.Queue()
            unsubscribe = await subscriber.observe(
                session_id,
                on_update=lambda snapshot: queue.put_nowait(
                    sse_message("session_update", snapshot.model_dump(mode="json"))
                ),
                on_partner_join=lambda: queue.put_nowait(sse_message("partner_joined")),
                on_error=lambda e: queue.put_nowait(
                    sse_message("channel_error", {"error": e.code.value, "message": str(e)})
                ),
            )
            try:
                while True:
                    try:
                        yield await asyncio.wait_for(queue.get(), timeout=HEART_BEAT)
                    except asyncio.TimeoutError:
                        yield ": heartbeat\n\n"
            finally:
                logger.info(f"Stream of session {session_id} closed")
                await unsubscribe()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream; charset=utf-8",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )


class TurnServer:
    @staticmethod
    @card_game_router.post("/{session_id}/draw", response_model=TurnResult)
    async def draw_card(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.draw_card(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/reveal", response_model=TurnResult)
    async def reveal_card(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.reveal_card(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/complete", response_model=TurnResult)
    async def complete_turn(
        session_id: UUID,
        response: CompleteTurnModel | None = None,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        """Finish the revealed card, optionally with the participant's response"""
        return check_result(
            await coordinator.complete_turn(session_id, x_participant_id, response)
        )

    @staticmethod
    @card_game_router.post("/{session_id}/skip", response_model=TurnResult)
    async def skip_card(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.skip_card(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/favorite", response_model=TurnResult)
    async def favorite_card(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.favorite_card(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/expire", response_model=TurnResult)
    async def expire_turn(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        """Called by the client's turn timer when time runs out"""
        return check_result(await coordinator.expire_turn(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/pause", response_model=TurnResult)
    async def toggle_pause(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.toggle_pause(session_id, x_participant_id))

    @staticmethod
    @card_game_router.post("/{session_id}/end", response_model=TurnResult)
    async def end_game(
        session_id: UUID,
        x_participant_id: UUID = Header(),
        coordinator: TurnCoordinator = Depends(get_turn_coordinator),
    ) -> TurnResult:
        return check_result(await coordinator.end_game(session_id, x_participant_id))
