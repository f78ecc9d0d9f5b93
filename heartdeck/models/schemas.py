from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import Column, UniqueConstraint
from sqlalchemy.types import JSON, Boolean, DateTime, Float, Integer, String, TEXT, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from uuid6 import uuid7
from datetime import datetime

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONList = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class Card(Base):
    __tablename__ = "card"
    card_id = Column(Uuid, primary_key=True, default=uuid7)
    category = Column(String, nullable=False, index=True)
    prompt = Column(TEXT, nullable=False)
    difficulty_level = Column(Integer, default=1)
    usage_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class CardGameSession(Base):
    __tablename__ = "card_game_session"
    session_id = Column(Uuid, primary_key=True, default=uuid7)
    participant_a_id = Column(Uuid, nullable=False, index=True)
    participant_b_id = Column(Uuid, nullable=False, index=True)
    current_turn = Column(Uuid, nullable=False)
    status = Column(String, default="active", nullable=False)
    phase = Column(String, default="idle", nullable=False)
    paused_phase = Column(String, nullable=True)
    draw_mode = Column(String, default="weighted", nullable=False)
    current_card_id = Column(Uuid, nullable=True)
    current_card_revealed = Column(Boolean, default=False, nullable=False)
    current_card_started_at = Column(DateTime, nullable=True)
    total_cards_played = Column(Integer, default=0, nullable=False)
    played_cards = Column(JSONList, default=list, nullable=False)
    skipped_cards = Column(JSONList, default=list, nullable=False)
    favorite_cards = Column(JSONList, default=list, nullable=False)
    deck_size = Column(Integer, nullable=False)
    participant_a_skips_remaining = Column(Integer, default=3, nullable=False)
    participant_b_skips_remaining = Column(Integer, default=3, nullable=False)
    participant_a_failed_tasks = Column(Integer, default=0, nullable=False)
    participant_b_failed_tasks = Column(Integer, default=0, nullable=False)
    winner_id = Column(Uuid, nullable=True)
    win_reason = Column(String, nullable=True)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    started_at = Column(DateTime, default=datetime.now)
    last_activity_at = Column(DateTime, default=datetime.now)
    completed_at = Column(DateTime, nullable=True)


class DeckEntry(Base):
    __tablename__ = "deck_entry"
    __table_args__ = (
        UniqueConstraint("session_id", "card_id", name="uq_deck_entry_session_card"),
        UniqueConstraint("session_id", "position", name="uq_deck_entry_session_position"),
    )
    deck_entry_id = Column(Uuid, primary_key=True, default=uuid7)
    session_id = Column(Uuid, nullable=False, index=True)
    card_id = Column(Uuid, nullable=False)
    position = Column(Integer, nullable=False)
    is_played = Column(Boolean, default=False, nullable=False)
    skipped = Column(Boolean, default=False, nullable=False)
    played_at = Column(DateTime, nullable=True)


class CardResponse(Base):
    __tablename__ = "card_response"
    response_id = Column(Uuid, primary_key=True, default=uuid7)
    session_id = Column(Uuid, nullable=False, index=True)
    card_id = Column(Uuid, nullable=False)
    participant_id = Column(Uuid, nullable=False)
    response_type = Column(String, nullable=False)
    response_text = Column(TEXT, nullable=True)
    response_time_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
