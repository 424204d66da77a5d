"""
Per-tenant configuration data: timeslots (the source of truth for fee tiers)
and the audit record of the last reconciliation run.
"""

import threading
from abc import ABC, abstractmethod

import structlog

from app.models.reconciliation import ReconciliationRecord
from app.models.timeslot import Timeslot

logger = structlog.get_logger()


class TenantDataStore(ABC):
    """Repository interface for tenant timeslot configuration and run records."""

    @abstractmethod
    def get_timeslots(self, tenant_id: str) -> list[Timeslot]:
        pass

    @abstractmethod
    def save_timeslots(self, tenant_id: str, timeslots: list[Timeslot]) -> list[Timeslot]:
        pass

    @abstractmethod
    def save_reconciliation_record(self, record: ReconciliationRecord) -> None:
        pass

    @abstractmethod
    def get_reconciliation_record(self, tenant_id: str) -> ReconciliationRecord | None:
        pass

    @abstractmethod
    def delete_tenant_data(self, tenant_id: str) -> None:
        """Remove everything stored for a tenant (account deletion, app uninstall)."""


class InMemoryTenantDataStore(TenantDataStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._timeslots: dict[str, list[Timeslot]] = {}
        self._records: dict[str, ReconciliationRecord] = {}

    def get_timeslots(self, tenant_id: str) -> list[Timeslot]:
        with self._lock:
            return [slot.model_copy() for slot in self._timeslots.get(tenant_id, [])]

    def save_timeslots(self, tenant_id: str, timeslots: list[Timeslot]) -> list[Timeslot]:
        with self._lock:
            self._timeslots[tenant_id] = [slot.model_copy() for slot in timeslots]
            logger.info("Saved timeslots", tenant_id=tenant_id, count=len(timeslots))
            return self.get_timeslots(tenant_id)

    def save_reconciliation_record(self, record: ReconciliationRecord) -> None:
        with self._lock:
            self._records[record.tenant_id] = record.model_copy(deep=True)

    def get_reconciliation_record(self, tenant_id: str) -> ReconciliationRecord | None:
        with self._lock:
            record = self._records.get(tenant_id)
            return record.model_copy(deep=True) if record else None

    def delete_tenant_data(self, tenant_id: str) -> None:
        with self._lock:
            self._timeslots.pop(tenant_id, None)
            self._records.pop(tenant_id, None)
        logger.info("Deleted tenant data", tenant_id=tenant_id)
