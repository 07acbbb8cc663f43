"""Database infrastructure - engine, ORM models, and repositories."""

from fund_custody.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    session_scope,
)
from fund_custody.infrastructure.database.orm_models import (
    AuditRecord,
    Base,
    ConnectedAccount,
    Ledger,
    LedgerAccount,
    LedgerEntry,
    ReleaseRequest,
    VaultedCredential,
)
from fund_custody.infrastructure.database.repositories import (
    AuditRepository,
    ConnectedAccountRepository,
    CredentialRepository,
    EntryRepository,
    LedgerRepository,
    ReleaseRepository,
)

__all__ = [
    "AuditRecord",
    "Base",
    "ConnectedAccount",
    "Ledger",
    "LedgerAccount",
    "LedgerEntry",
    "ReleaseRequest",
    "VaultedCredential",
    "AuditRepository",
    "ConnectedAccountRepository",
    "CredentialRepository",
    "EntryRepository",
    "LedgerRepository",
    "ReleaseRepository",
    "get_async_session",
    "init_db",
    "close_db",
    "session_scope",
]
