"""Per-submission lifecycle tracking.

Submissions move through ``INCOMPLETE -> COMPLETE -> VERIFIED -> PUBLISHED``;
``FAILED`` is reachable from any non-terminal state.
"""

from __future__ import annotations

from enum import Enum
import logging

from ..utils.logging import log_event


class SubmissionState(str, Enum):
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    VERIFIED = "verified"
    PUBLISHED = "published"
    FAILED = "failed"


_TERMINAL = {SubmissionState.PUBLISHED, SubmissionState.FAILED}

_ALLOWED: dict[SubmissionState, set[SubmissionState]] = {
    SubmissionState.INCOMPLETE: {SubmissionState.COMPLETE},
    SubmissionState.COMPLETE: {SubmissionState.VERIFIED},
    SubmissionState.VERIFIED: {SubmissionState.PUBLISHED},
}


class StateTracker:
    """Records the lifecycle state of every submission in a batch by slug."""

    def __init__(self, logger: logging.Logger | None = None):
        self._states: dict[str, SubmissionState] = {}
        self._logger = logger

    def start(self, slug: str, state: SubmissionState) -> None:
        self._states[slug] = state

    def get(self, slug: str) -> SubmissionState:
        return self._states[slug]

    def advance(self, slug: str, state: SubmissionState) -> None:
        current = self._states[slug]
        if current == state:
            return
        if current in _TERMINAL:
            raise ValueError(f"Submission {slug} is already {current.value}")
        if state != SubmissionState.FAILED and state not in _ALLOWED.get(current, set()):
            raise ValueError(
                f"Illegal state change for {slug}: {current.value} -> {state.value}"
            )
        self._states[slug] = state
        log_event(
            self._logger,
            "State change",
            event="state_change",
            slug=slug,
            previous=current.value,
            state=state.value,
        )

    def fail_pending(self) -> list[str]:
        """Mark every non-terminal submission as failed; return their slugs."""
        failed = []
        for slug, state in self._states.items():
            if state not in _TERMINAL:
                self.advance(slug, SubmissionState.FAILED)
                failed.append(slug)
        return failed

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for state in self._states.values():
            counts[state.value] = counts.get(state.value, 0) + 1
        return counts
