"""Domain layer - pure business logic with zero framework dependencies."""

from fund_custody.domain.enums import (
    EventType,
    FailureCode,
    RailName,
    ReleaseRequestStatus,
    ReleaseStatus,
)
from fund_custody.domain.exceptions import (
    ConflictError,
    CustodyError,
    InvalidStateTransitionError,
    NotFoundError,
)
from fund_custody.domain.rail_protocol import (
    Destination,
    Payout,
    RailAdapter,
    RailConfig,
    TransferResult,
)
from fund_custody.domain.state_machine import (
    EntryReleaseStateMachine,
    ReleaseRequestStateMachine,
    validate_transition,
)

__all__ = [
    "EventType",
    "FailureCode",
    "RailName",
    "ReleaseRequestStatus",
    "ReleaseStatus",
    "ConflictError",
    "CustodyError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "Destination",
    "Payout",
    "RailAdapter",
    "RailConfig",
    "TransferResult",
    "EntryReleaseStateMachine",
    "ReleaseRequestStateMachine",
    "validate_transition",
]
