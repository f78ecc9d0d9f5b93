"""Turn ownership and phase transitions for one card game session.

Every operation goes through `guard`, which states its preconditions as
(expected phases, expected turn holder). The *_changes helpers return the
column values to write; the caller applies them with a conditional update.

   idle --draw--> drawn --reveal--> revealed --complete--> idle (turn flips)
                    |                   |
                    +-------skip--------+----------------> idle (turn flips)

   idle / revealed --toggle_pause--> paused --toggle_pause--> prior phase
   any --end--> ended
"""

from datetime import datetime
from typing import Collection, Dict
from uuid import UUID

from heartdeck.domain.errors import (
    InvalidStateTransition,
    NotYourTurn,
    SkipLimitExceeded,
)
from heartdeck.domain.sync_rules import is_placeholder
from heartdeck.models.dc_models import PhaseModel, SessionStatusModel
from heartdeck.models.schema_models import CardGameSessionSchema

PAUSABLE_PHASES = (PhaseModel.idle, PhaseModel.revealed)


def other_participant(session: CardGameSessionSchema, participant_id: UUID) -> UUID | None:
    if participant_id == session.participant_a_id:
        return session.participant_b_id
    return session.participant_a_id


def participant_slot(session: CardGameSessionSchema, participant_id: UUID) -> str:
    """Return "a" or "b" for a participant of this session.

    The placeholder partner of a session started alone is never a participant.
    """
    if is_placeholder(participant_id):
        raise NotYourTurn("The placeholder partner cannot act.")
    if participant_id == session.participant_a_id:
        return "a"
    if participant_id == session.participant_b_id:
        return "b"
    raise NotYourTurn(f"{participant_id} is not a participant of this session")


def guard(
    session: CardGameSessionSchema,
    requester_id: UUID,
    expected_phases: Collection[PhaseModel],
    *,
    require_turn: bool = True,
) -> None:
    """Reject the operation unless the session is in one of expected_phases
    and, when require_turn is set, the requester holds the turn.

    Raises:
        NotYourTurn: requester is not a participant, or does not hold the turn
        InvalidStateTransition: the session phase does not allow the operation
    """
    participant_slot(session, requester_id)
    phase = PhaseModel(session.phase)
    # a finished game reports its phase to everyone, turn holder or not
    if phase == PhaseModel.ended and phase not in expected_phases:
        raise InvalidStateTransition("The game has ended.")
    if require_turn and session.current_turn != requester_id:
        raise NotYourTurn("Not your turn.")
    if phase not in expected_phases:
        allowed = ", ".join(p.value for p in expected_phases)
        raise InvalidStateTransition(f"Cannot do this while {phase.value} (needs {allowed}).")


def _handoff(session: CardGameSessionSchema, now: datetime) -> Dict:
    next_turn = other_participant(session, session.current_turn)
    if is_placeholder(next_turn):
        # nobody is seated opposite yet, so the real participant keeps playing
        next_turn = session.current_turn
    return {
        "current_turn": next_turn,
        "phase": PhaseModel.idle.value,
        "current_card_id": None,
        "current_card_revealed": False,
        "current_card_started_at": None,
        "last_activity_at": now,
    }


def draw_changes(session: CardGameSessionSchema, card_id: UUID, now: datetime) -> Dict:
    return {
        "phase": PhaseModel.drawn.value,
        "current_card_id": card_id,
        "current_card_revealed": False,
        "current_card_started_at": None,
        "last_activity_at": now,
    }


def reveal_changes(session: CardGameSessionSchema, now: datetime) -> Dict:
    return {
        "phase": PhaseModel.revealed.value,
        "current_card_revealed": True,
        "current_card_started_at": now,
        "last_activity_at": now,
    }


def complete_changes(session: CardGameSessionSchema, now: datetime) -> Dict:
    played_cards = [str(card_id) for card_id in session.played_cards]
    played_cards.append(str(session.current_card_id))
    changes = _handoff(session, now)
    changes.update(
        played_cards=played_cards,
        total_cards_played=session.total_cards_played + 1,
    )
    return changes


def skip_changes(session: CardGameSessionSchema, requester_id: UUID, now: datetime) -> Dict:
    """Skip the card on the table, spending one of the requester's skips.

    Raises:
        SkipLimitExceeded: the requester has no skips left
    """
    skips_field = f"participant_{participant_slot(session, requester_id)}_skips_remaining"
    skips_remaining = getattr(session, skips_field)
    if skips_remaining <= 0:
        raise SkipLimitExceeded("No skips remaining.")

    changes = _handoff(session, now)
    changes.update(
        {
            skips_field: skips_remaining - 1,
            "skipped_cards": [str(c) for c in session.skipped_cards] + [str(session.current_card_id)],
        }
    )
    return changes


def expire_changes(
    session: CardGameSessionSchema, requester_id: UUID, now: datetime, max_failed_tasks: int
) -> Dict:
    """Turn timer ran out: count a failed task for the turn holder.

    The card is set aside as skipped without spending a skip. Reaching
    max_failed_tasks ends the game in the partner's favour.
    """
    failed_field = f"participant_{participant_slot(session, requester_id)}_failed_tasks"
    partner = other_participant(session, requester_id)
    failed_tasks = getattr(session, failed_field) + 1
    skipped_cards = [str(c) for c in session.skipped_cards] + [str(session.current_card_id)]

    if failed_tasks >= max_failed_tasks:
        changes = end_changes(session, now, reason="failed_tasks")
        changes.update(
            {
                failed_field: failed_tasks,
                "skipped_cards": skipped_cards,
                "winner_id": None if is_placeholder(partner) else partner,
            }
        )
        return changes

    changes = _handoff(session, now)
    changes.update({failed_field: failed_tasks, "skipped_cards": skipped_cards})
    return changes


def favorite_changes(session: CardGameSessionSchema, now: datetime) -> Dict:
    favorites = [str(c) for c in session.favorite_cards]
    if str(session.current_card_id) not in favorites:
        favorites.append(str(session.current_card_id))
    return {"favorite_cards": favorites, "last_activity_at": now}


def toggle_pause_changes(session: CardGameSessionSchema, now: datetime) -> Dict:
    phase = PhaseModel(session.phase)
    if phase == PhaseModel.paused:
        return {
            "phase": session.paused_phase or PhaseModel.idle.value,
            "paused_phase": None,
            "status": SessionStatusModel.active.value,
            "last_activity_at": now,
        }
    if phase in PAUSABLE_PHASES:
        return {
            "phase": PhaseModel.paused.value,
            "paused_phase": phase.value,
            "status": SessionStatusModel.paused.value,
            "last_activity_at": now,
        }
    raise InvalidStateTransition(f"Cannot pause or resume while {phase.value}.")


def end_changes(session: CardGameSessionSchema, now: datetime, reason: str | None = None) -> Dict:
    """Terminal transition. Returns no changes when the game already ended."""
    if PhaseModel(session.phase) == PhaseModel.ended:
        return {}
    return {
        "phase": PhaseModel.ended.value,
        "paused_phase": None,
        "status": SessionStatusModel.completed.value,
        "current_card_id": None,
        "current_card_revealed": False,
        "current_card_started_at": None,
        "win_reason": reason,
        "completed_at": now,
        "last_activity_at": now,
    }
