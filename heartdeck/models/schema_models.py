from pydantic import BaseModel
from typing import List
from uuid import UUID
from datetime import datetime


class CardSchema(BaseModel):
    card_id: UUID
    category: str
    prompt: str
    difficulty_level: int = 1
    usage_count: int = 0
    is_active: bool = True

    class Config:
        from_attributes = True


class DeckEntrySchema(BaseModel):
    deck_entry_id: UUID
    session_id: UUID
    card_id: UUID
    position: int
    is_played: bool = False
    skipped: bool = False
    played_at: datetime | None = None

    class Config:
        from_attributes = True


class CardResponseSchema(BaseModel):
    response_id: UUID
    session_id: UUID
    card_id: UUID
    participant_id: UUID
    response_type: str
    response_text: str | None = None
    response_time_seconds: float | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class CardGameSessionSchema(BaseModel):
    session_id: UUID
    participant_a_id: UUID
    participant_b_id: UUID
    current_turn: UUID
    status: str
    phase: str
    paused_phase: str | None = None
    draw_mode: str
    current_card_id: UUID | None = None
    current_card_revealed: bool = False
    current_card_started_at: datetime | None = None
    total_cards_played: int = 0
    played_cards: List[UUID] = []
    skipped_cards: List[UUID] = []
    favorite_cards: List[UUID] = []
    deck_size: int
    participant_a_skips_remaining: int
    participant_b_skips_remaining: int
    participant_a_failed_tasks: int = 0
    participant_b_failed_tasks: int = 0
    winner_id: UUID | None = None
    win_reason: str | None = None
    version: int = 0
    created_at: datetime
    started_at: datetime
    last_activity_at: datetime
    completed_at: datetime | None = None

    class Config:
        from_attributes = True
