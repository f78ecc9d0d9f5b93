"""Snapshot reducer and partner-connected heuristic.

Invariants:
    - a snapshot older than the current view is never applied
    - duplicate deliveries of the same version are harmless
    - partner_joined fires on the first transition to connected only
"""

from uuid6 import uuid7

from heartdeck.domain.sync_rules import (
    PLACEHOLDER_PARTICIPANT_ID,
    SyncView,
    is_placeholder,
    partner_connected,
    reduce_snapshot,
)
from heartdeck.models.dc_models import SessionSnapshot

from conftest import PARTICIPANT_A, PARTICIPANT_B


def make_snapshot(version: int = 0, **overrides) -> SessionSnapshot:
    values = dict(
        session_id=uuid7(),
        participant_a_id=PARTICIPANT_A,
        participant_b_id=PARTICIPANT_B,
        current_turn=PARTICIPANT_A,
        status="active",
        phase="idle",
        draw_mode="weighted",
        deck_size=10,
        version=version,
    )
    values.update(overrides)
    return SessionSnapshot(**values)


def test_placeholder_detection():
    assert is_placeholder(None)
    assert is_placeholder(PLACEHOLDER_PARTICIPANT_ID)
    assert not is_placeholder(PARTICIPANT_B)


def test_placeholder_partner_is_not_connected():
    snapshot = make_snapshot(participant_b_id=PLACEHOLDER_PARTICIPANT_ID)
    assert not partner_connected(snapshot, PARTICIPANT_A)


def test_active_session_with_real_partner_is_connected():
    assert partner_connected(make_snapshot(), PARTICIPANT_A)
    assert partner_connected(make_snapshot(), PARTICIPANT_B)


def test_paused_session_without_activity_is_not_connected():
    assert not partner_connected(make_snapshot(status="paused"), PARTICIPANT_A)


def test_activity_counts_as_connected():
    snapshot = make_snapshot(status="paused", response_counts={str(PARTICIPANT_B): 1})
    assert partner_connected(snapshot, PARTICIPANT_A)
    snapshot = make_snapshot(status="completed", skipped_cards=[uuid7()])
    assert partner_connected(snapshot, PARTICIPANT_A)


def test_first_snapshot_is_applied():
    view, joined = reduce_snapshot(None, make_snapshot(0), PARTICIPANT_A)
    assert view.snapshot.version == 0
    assert view.partner_connected
    assert joined


def test_older_snapshot_is_dropped():
    current = SyncView(snapshot=make_snapshot(5), partner_connected=True)
    view, joined = reduce_snapshot(current, make_snapshot(4), PARTICIPANT_A)
    assert view is None
    assert not joined


def test_same_version_is_reapplied_without_second_join():
    snapshot = make_snapshot(3)
    current = SyncView(snapshot=snapshot, partner_connected=True)
    view, joined = reduce_snapshot(current, snapshot, PARTICIPANT_A)
    assert view.snapshot == snapshot
    assert not joined


def test_join_fires_when_partner_arrives():
    waiting = make_snapshot(0, participant_b_id=PLACEHOLDER_PARTICIPANT_ID)
    view, joined = reduce_snapshot(None, waiting, PARTICIPANT_A)
    assert not view.partner_connected
    assert not joined

    view, joined = reduce_snapshot(view, make_snapshot(1), PARTICIPANT_A)
    assert view.partner_connected
    assert joined
