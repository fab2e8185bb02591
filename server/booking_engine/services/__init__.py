"""Service layer package."""

from .bulk_reconciliation import BulkDeleteReport, BulkReconciliation
from .ledger_service import LedgerCheck, LedgerService
from .reservation_coordinator import ReservationCoordinator, ReservationRequest, Stay

__all__ = [
    "BulkDeleteReport",
    "BulkReconciliation",
    "LedgerCheck",
    "LedgerService",
    "ReservationCoordinator",
    "ReservationRequest",
    "Stay",
]
