"""Domain exceptions for the fund custody service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class CustodyError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "CUSTODY_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class RequestValidationError(CustodyError):
    """Raised for malformed or missing input, before any state change."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


# --- Lookup Errors ---


class NotFoundError(CustodyError):
    """Base class for missing records."""


class LedgerNotFoundError(NotFoundError):
    def __init__(self, ledger_id: str) -> None:
        super().__init__(message=f"Ledger not found: {ledger_id}", code="LEDGER_NOT_FOUND")
        self.ledger_id = ledger_id


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(message=f"Entry not found: {entry_id}", code="ENTRY_NOT_FOUND")
        self.entry_id = entry_id


class ReleaseNotFoundError(NotFoundError):
    def __init__(self, release_id: str) -> None:
        super().__init__(
            message=f"Release request not found: {release_id}",
            code="RELEASE_NOT_FOUND",
        )
        self.release_id = release_id


# --- Conflict Errors ---


class ConflictError(CustodyError):
    """Raised when the current state forbids the operation. No side effects."""


class EntryNotHeldError(ConflictError):
    """Raised when an entry is released, voided, immediate, or not a credit."""

    def __init__(self, entry_id: str, release_status: str) -> None:
        super().__init__(
            message=f"Entry {entry_id} is not held (release_status={release_status})",
            code="ENTRY_NOT_HELD",
        )
        self.entry_id = entry_id
        self.release_status = release_status


class DuplicateReleaseError(ConflictError):
    """Raised when a pending or processing release already exists for an entry."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(
            message=f"A release is already in flight for entry {entry_id}",
            code="DUPLICATE_RELEASE",
        )
        self.entry_id = entry_id


class InvalidStateTransitionError(ConflictError):
    """Raised when an attempted state transition is not allowed.

    Example: released -> held (released is terminal).
    """

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_event} from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event


# --- Rail Errors ---


class RailNotFoundError(CustodyError):
    """Raised when a rail name is not registered."""

    def __init__(self, rail: str) -> None:
        super().__init__(message=f"Unknown rail: {rail}", code="UNKNOWN_RAIL")
        self.rail = rail


class RailConfigError(CustodyError):
    """Raised when a rail configuration fails validation."""

    def __init__(self, rail: str, errors: list[str]) -> None:
        super().__init__(
            message=f"Invalid config for rail '{rail}': {', '.join(errors)}",
            code="INVALID_RAIL_CONFIG",
        )
        self.rail = rail
        self.errors = errors


# --- Batch File Errors ---


class BatchFileError(CustodyError):
    """Raised when payouts cannot be encoded into a batch file."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="BATCH_FILE_ERROR")


class BatchFileExpiredError(NotFoundError):
    """Raised when a download token is unknown, used, or past its TTL."""

    def __init__(self) -> None:
        super().__init__(
            message="Batch file link is invalid or has expired",
            code="BATCH_FILE_EXPIRED",
        )
