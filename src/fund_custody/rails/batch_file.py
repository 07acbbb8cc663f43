"""NACHA-style fixed-width batch file encoder for the manual rail.

Every record is exactly 94 characters. Numeric fields are right-justified
and zero-padded, text fields are left-justified, space-padded and truncated
to their column. Bank parsers read by position, so a single off-by-one
shifts every following field.

File layout:
    1  file header
    5  batch header
    6  entry detail        (one per payout, credits only)
    8  batch control
    9  file control
    9999...               filler until the line count is a multiple of 10
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fund_custody.domain.exceptions import BatchFileError
from fund_custody.domain.money import to_minor_units

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fund_custody.domain.rail_protocol import Payout

RECORD_LENGTH = 94
BLOCKING_FACTOR = 10
ENTRY_HASH_MODULUS = 10**10

SERVICE_CLASS_CREDITS = "220"
TRANSACTION_CODES = {"checking": "22", "savings": "32"}

REQUIRED_ORIGINATOR_FIELDS = ("company_id", "originating_dfi", "bank_name", "company_name")


def _alpha(value: Any, width: int) -> str:
    return str(value or "")[:width].ljust(width)


def _num(value: int | str, width: int, label: str) -> str:
    text = str(value)
    if not text.isdigit():
        raise BatchFileError(f"{label} must be numeric")
    if len(text) > width:
        raise BatchFileError(f"{label} does not fit in {width} digits")
    return text.zfill(width)


@dataclass(frozen=True)
class Originator:
    """Identifiers of the company sending the file and its bank."""

    bank_name: str = "BANK NAME"
    company_name: str = "FUND CUSTODY"
    company_id: str = "1234567890"
    originating_dfi: str = "12345678"
    batch_number: str = "0000001"

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> Originator:
        """Build from a manual-rail config's settings, keeping defaults for blanks."""
        values = {
            key: str(settings[key]).strip()
            for key in ("bank_name", "company_name", "company_id", "originating_dfi", "batch_number")
            if str(settings.get(key) or "").strip()
        }
        return cls(**values)

    @staticmethod
    def missing_fields(settings: dict[str, Any]) -> list[str]:
        return [
            key for key in REQUIRED_ORIGINATOR_FIELDS if not str(settings.get(key) or "").strip()
        ]


@dataclass(frozen=True)
class BatchFile:
    """An encoded file plus the control totals written into it."""

    content: str
    entry_count: int
    total_minor: int
    entry_hash: int
    line_count: int
    release_ids: list[str] = field(default_factory=list)

    @property
    def block_count(self) -> int:
        return self.line_count // BLOCKING_FACTOR


class BatchFileEncoder:
    """Serializes payouts into a single-batch PPD credit file.

    Usage:
        encoder = BatchFileEncoder(Originator.from_settings(config.settings))
        batch = encoder.encode(payouts, now=datetime.now(UTC))
        batch.content  # "\\n"-joined 94-character records
    """

    def __init__(self, originator: Originator | None = None) -> None:
        self._originator = originator or Originator()
        self._dfi = _num(self._originator.originating_dfi[:8], 8, "originating_dfi")
        self._company_id = _num(self._originator.company_id, 10, "company_id")
        self._batch_number = _num(self._originator.batch_number, 7, "batch_number")

    def encode(self, payouts: Sequence[Payout], now: datetime | None = None) -> BatchFile:
        """Encode payouts into a complete file.

        Raises:
            BatchFileError: If there are no payouts, a payout lacks bank details,
                is not in USD, or its amount does not fit the amount column.
        """
        if not payouts:
            raise BatchFileError("No payouts to encode")

        now = (now or datetime.now(UTC)).astimezone(UTC)
        date = now.strftime("%y%m%d")

        lines = [self._file_header(date, now.strftime("%H%M")), self._batch_header(date)]

        entry_hash = 0
        total = 0
        for sequence, payout in enumerate(payouts, start=1):
            record, routing_prefix, amount = self._entry_detail(payout, sequence)
            lines.append(record)
            entry_hash += routing_prefix
            total += amount

        entry_count = len(payouts)
        entry_hash %= ENTRY_HASH_MODULUS
        lines.append(self._batch_control(entry_count, entry_hash, total))
        # The file control record counts itself.
        block_count = math.ceil((len(lines) + 1) / BLOCKING_FACTOR)
        lines.append(self._file_control(block_count, entry_count, entry_hash, total))

        while len(lines) % BLOCKING_FACTOR:
            lines.append("9" * RECORD_LENGTH)

        for line in lines:
            if len(line) != RECORD_LENGTH:
                raise BatchFileError(f"Record length {len(line)} != {RECORD_LENGTH}")

        return BatchFile(
            content="\n".join(lines),
            entry_count=entry_count,
            total_minor=total,
            entry_hash=entry_hash,
            line_count=len(lines),
            release_ids=[p.release_id for p in payouts],
        )

    # --- Records ---

    def _file_header(self, date: str, time: str) -> str:
        o = self._originator
        return (
            "1"
            + "01"
            + " " + self._dfi.zfill(9)
            + " " + self._company_id[:9]
            + date
            + time
            + "A"
            + "094"
            + str(BLOCKING_FACTOR)
            + "1"
            + _alpha(o.bank_name, 23)
            + _alpha(o.company_name, 23)
            + _alpha("", 8)
        )

    def _batch_header(self, date: str) -> str:
        return (
            "5"
            + SERVICE_CLASS_CREDITS
            + _alpha(self._originator.company_name, 16)
            + _alpha("", 20)
            + self._company_id
            + "PPD"
            + _alpha("PAYOUT", 10)
            + date
            + date
            + _alpha("", 3)
            + "1"
            + self._dfi
            + self._batch_number
        )

    def _entry_detail(self, payout: Payout, sequence: int) -> tuple[str, int, int]:
        destination = payout.destination
        if not destination.routing_number or not destination.account_number:
            raise BatchFileError(f"Payout {payout.release_id} has no bank details")
        if payout.currency.upper() != "USD":
            raise BatchFileError(
                f"Payout {payout.release_id} is in {payout.currency}; batch files are USD only"
            )

        routing = _num(destination.routing_number.strip(), 9, "routing_number")
        amount = to_minor_units(payout.amount, payout.currency)
        if amount <= 0:
            raise BatchFileError(f"Payout {payout.release_id} has a non-positive amount")
        transaction_code = TRANSACTION_CODES.get(destination.account_type, "22")

        record = (
            "6"
            + transaction_code
            + routing
            + _alpha(destination.account_number.strip(), 17)
            + _num(amount, 10, "amount")
            + _alpha(payout.recipient_id, 15)
            + _alpha(payout.recipient_name, 22)
            + _alpha("", 2)
            + "0"
            + self._dfi
            + _num(sequence, 7, "trace sequence")
        )
        return record, int(routing[:8]), amount

    def _batch_control(self, entry_count: int, entry_hash: int, total: int) -> str:
        return (
            "8"
            + SERVICE_CLASS_CREDITS
            + _num(entry_count, 6, "entry count")
            + _num(entry_hash, 10, "entry hash")
            + "0" * 12
            + _num(total, 12, "credit total")
            + self._company_id
            + _alpha("", 19)
            + _alpha("", 6)
            + self._dfi
            + self._batch_number
        )

    def _file_control(
        self, block_count: int, entry_count: int, entry_hash: int, total: int
    ) -> str:
        return (
            "9"
            + _num(1, 6, "batch count")
            + _num(block_count, 6, "block count")
            + _num(entry_count, 8, "entry count")
            + _num(entry_hash, 10, "entry hash")
            + "0" * 12
            + _num(total, 12, "credit total")
            + _alpha("", 39)
        )
