"""Escrow release state machine guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API, the MCP tools, or a sweep does, an illegal transition
(e.g., released -> held) raises TransitionNotAllowed before any row changes.

The machines are instantiated per-record and validate transitions before
the ORM model's status field is updated.

Entry transition table (ledger_entries.release_status):
    held             -> pending_release  (queue)
    pending_release  -> released         (settle)
    pending_release  -> held             (revert)
    held             -> voided           (void)

Release request transition table (release_requests.status):
    pending     -> processing  (dispatch)
    pending     -> failed      (reject)      precondition failed, no rail call
    processing  -> completed   (complete)
    processing  -> failed      (fail)

"immediate" entries are never held and are deliberately not a state here.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class _GuardMixin:
    """Shared helpers for the two guard machines."""

    @classmethod
    def _check_status(cls, current_status: str) -> None:
        valid_values = {s.value for s in cls.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class EntryReleaseStateMachine(_GuardMixin, StateMachine):
    """Guards the escrow lifecycle of a single ledger entry.

    Usage:
        sm = EntryReleaseStateMachine(current_status="held")
        sm.queue()   # transitions to pending_release
        sm.status    # "pending_release"
    """

    held = State("Held", initial=True)
    pending_release = State("Pending release")
    released = State("Released", final=True)
    voided = State("Voided", final=True)

    queue = held.to(pending_release)
    settle = pending_release.to(released)
    revert = pending_release.to(held)
    void = held.to(voided)

    def __init__(self, current_status: str = "held") -> None:
        self._check_status(current_status)
        super().__init__(start_value=current_status)


class ReleaseRequestStateMachine(_GuardMixin, StateMachine):
    """Guards a single release attempt from queueing to a terminal outcome."""

    pending = State("Pending", initial=True)
    processing = State("Processing")
    completed = State("Completed", final=True)
    failed = State("Failed", final=True)

    dispatch = pending.to(processing)
    reject = pending.to(failed)
    complete = processing.to(completed)
    fail = processing.to(failed)

    def __init__(self, current_status: str = "pending") -> None:
        self._check_status(current_status)
        super().__init__(start_value=current_status)


def validate_transition(
    machine: type[EntryReleaseStateMachine] | type[ReleaseRequestStateMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
