"""Tests for submission lifecycle tracking."""

import pytest

from artifact_ingest.core.state import StateTracker, SubmissionState


def test_happy_path():
    tracker = StateTracker()
    tracker.start("commodore-64-manual", SubmissionState.INCOMPLETE)
    for state in (
        SubmissionState.COMPLETE,
        SubmissionState.VERIFIED,
        SubmissionState.PUBLISHED,
    ):
        tracker.advance("commodore-64-manual", state)
    assert tracker.get("commodore-64-manual") == SubmissionState.PUBLISHED


def test_cannot_skip_verification():
    tracker = StateTracker()
    tracker.start("commodore-64-manual", SubmissionState.COMPLETE)
    with pytest.raises(ValueError):
        tracker.advance("commodore-64-manual", SubmissionState.PUBLISHED)


def test_terminal_states_are_final():
    tracker = StateTracker()
    tracker.start("commodore-64-manual", SubmissionState.COMPLETE)
    tracker.advance("commodore-64-manual", SubmissionState.FAILED)
    with pytest.raises(ValueError):
        tracker.advance("commodore-64-manual", SubmissionState.VERIFIED)


def test_fail_pending_leaves_published_alone():
    tracker = StateTracker()
    tracker.start("first-submission", SubmissionState.VERIFIED)
    tracker.advance("first-submission", SubmissionState.PUBLISHED)
    tracker.start("second-submission", SubmissionState.COMPLETE)

    assert tracker.fail_pending() == ["second-submission"]
    assert tracker.counts() == {"published": 1, "failed": 1}
