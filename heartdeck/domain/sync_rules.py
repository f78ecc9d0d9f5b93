"""Snapshot reducer for one participant's live view of a session.

Push deliveries and poll results both go through `reduce_snapshot`, so
ordering and duplicate handling live in this one function.
"""

from uuid import UUID

from pydantic import BaseModel

from heartdeck.models.dc_models import SessionSnapshot, SessionStatusModel

PLACEHOLDER_PARTICIPANT_ID = UUID(int=0)


class SyncView(BaseModel):
    snapshot: SessionSnapshot
    partner_connected: bool = False


def is_placeholder(participant_id: UUID | None) -> bool:
    return participant_id is None or participant_id == PLACEHOLDER_PARTICIPANT_ID


def partner_connected(snapshot: SessionSnapshot, viewer_id: UUID) -> bool:
    """Estimate whether the viewer's partner is present from session activity.

    Any recorded activity counts: a partner response, a played or skipped
    card. With no activity yet, an active session created with a real second
    participant counts as connected.
    """
    partner_id = (
        snapshot.participant_b_id
        if viewer_id == snapshot.participant_a_id
        else snapshot.participant_a_id
    )
    if is_placeholder(partner_id):
        return False

    if (
        snapshot.response_counts.get(str(partner_id), 0) > 0
        or snapshot.total_cards_played > 0
        or len(snapshot.played_cards) > 0
        or len(snapshot.skipped_cards) > 0
    ):
        return True

    return snapshot.status == SessionStatusModel.active and not is_placeholder(
        snapshot.participant_a_id
    )


def reduce_snapshot(
    view: SyncView | None, snapshot: SessionSnapshot, viewer_id: UUID
) -> tuple[SyncView | None, bool]:
    """Fold one delivered snapshot into the current view.

    Snapshots older than the current view (lower version) are dropped and
    the view is returned unchanged. Equal versions are re-applied, so
    duplicate deliveries are harmless.

    Returns:
        tuple[SyncView | None, bool]: The new view, or None when the snapshot
            was dropped, and whether the partner just became connected
    """
    if view is not None and snapshot.version < view.snapshot.version:
        return None, False

    connected = partner_connected(snapshot, viewer_id)
    joined = connected and (view is None or not view.partner_connected)
    return SyncView(snapshot=snapshot, partner_connected=connected), joined
