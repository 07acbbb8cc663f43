"""Application services - use case orchestration."""

from fund_custody.services.batch_file_service import BatchFileService
from fund_custody.services.event_publisher import (
    EventPublisher,
    LoggingEventPublisher,
    RedisEventPublisher,
)
from fund_custody.services.hold_registry import HoldRegistry
from fund_custody.services.pacing import Pacer
from fund_custody.services.rail_service import RailService
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import ReleaseOutcome, TransferExecutor

__all__ = [
    "BatchFileService",
    "EventPublisher",
    "HoldRegistry",
    "LoggingEventPublisher",
    "Pacer",
    "RailService",
    "RedisEventPublisher",
    "ReleaseCoordinator",
    "ReleaseOutcome",
    "TransferExecutor",
]
