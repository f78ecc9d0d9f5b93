from pydantic import BaseModel
from enum import Enum
from uuid import UUID
from typing import Dict, List, Optional


class CategoryModel(str, Enum):
    action = "action"
    text = "text"
    photo = "photo"


class SessionStatusModel(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"


class PhaseModel(str, Enum):
    idle = "idle"  # no card on the table, waiting for the turn holder to draw
    drawn = "drawn"
    revealed = "revealed"
    paused = "paused"
    ended = "ended"


class DrawModeModel(str, Enum):
    weighted = "weighted"  # Card Selector picks from the undealt deck
    sequential = "sequential"  # next undealt deck entry by position


class TurnErrorModel(str, Enum):
    not_your_turn = "not_your_turn"
    invalid_state = "invalid_state"
    skip_limit_exceeded = "skip_limit_exceeded"
    session_not_found = "session_not_found"
    stale_write = "stale_write"
    deck_exhausted = "deck_exhausted"
    catalog_insufficient = "catalog_insufficient"
    channel_error = "channel_error"
    store_unavailable = "store_unavailable"


class PlayRecord(BaseModel):
    """One resolved entry of a session's play history."""

    card_id: UUID
    category: CategoryModel


class CategoryDistributionModel(BaseModel):
    action: int = 0
    text: int = 0
    photo: int = 0


class StartSessionModel(BaseModel):
    participant_a_id: UUID
    participant_b_id: UUID | None = None
    deck_size: int | None = None
    draw_mode: DrawModeModel = DrawModeModel.weighted


class CompleteTurnModel(BaseModel):
    response_text: str | None = None
    response_time_seconds: float | None = None


class CardModel(BaseModel):
    card_id: UUID
    category: CategoryModel
    prompt: str
    difficulty_level: int = 1

    class Config:
        from_attributes = True


class SessionSnapshot(BaseModel):
    """Last-write-wins view of one session, as shipped to a client."""

    session_id: UUID
    participant_a_id: UUID
    participant_b_id: UUID
    current_turn: UUID
    status: SessionStatusModel
    phase: PhaseModel
    draw_mode: DrawModeModel
    current_card: Optional[CardModel] = None
    current_card_revealed: bool = False
    total_cards_played: int = 0
    played_cards: List[UUID] = []
    skipped_cards: List[UUID] = []
    favorite_cards: List[UUID] = []
    deck_size: int
    cards_remaining: int = 0
    skips_remaining: Dict[str, int] = {}
    failed_tasks: Dict[str, int] = {}
    response_counts: Dict[str, int] = {}
    cycle_distribution: CategoryDistributionModel = CategoryDistributionModel()
    winner_id: UUID | None = None
    win_reason: str | None = None
    version: int = 0


class TurnResult(BaseModel):
    success: bool
    error: TurnErrorModel | None = None
    message: str | None = None
    session: Optional[SessionSnapshot] = None
    card: Optional[CardModel] = None
