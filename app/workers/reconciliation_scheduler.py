"""
Background scheduler for fee product reconciliation runs.

Webhooks and configuration saves hand a tenant id to schedule() and return
immediately; the run happens in a tracked asyncio task. A per-tenant lock
guarantees at most one run per tenant at a time. A trigger that arrives while
a background run is active is coalesced into a single follow-up run instead of
starting another one.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set

import structlog

from app.models.reconciliation import (
    CleanupResult,
    FeeAmountError,
    ReconciliationRecord,
    ReconciliationResult,
)
from app.models.tenant import Tenant
from app.services.credential_store import CredentialStore
from app.services.fee_extractor import extract_fee_amounts
from app.services.fee_reconciliation import FeeReconciliationEngine
from app.services.tenant_data_store import TenantDataStore

logger = structlog.get_logger()


class ReconciliationInProgress(Exception):
    """Raised when a tenant already has an active background reconciliation."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Reconciliation already in progress for tenant {tenant_id}")


class TenantNotConfigured(Exception):
    """Raised when a run is requested for a tenant without stored credentials."""


class ReconciliationScheduler:
    """Runs reconciliations in the background with at-most-one-run-per-tenant semantics."""

    def __init__(
        self,
        credential_store: CredentialStore,
        data_store: TenantDataStore,
        engine: Optional[FeeReconciliationEngine] = None,
    ):
        self.credential_store = credential_store
        self.data_store = data_store
        self.engine = engine or FeeReconciliationEngine()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._active: Dict[str, asyncio.Task] = {}
        self._pending: Dict[str, str] = {}
        self._tasks: Set[asyncio.Task] = set()

    @asynccontextmanager
    async def _tenant_lock(self, tenant_id: str):
        """Hold the tenant's lock. The lock is dropped once no caller holds or awaits it."""
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[tenant_id] -= 1
            if not self._lock_users[tenant_id]:
                del self._lock_users[tenant_id]
                del self._locks[tenant_id]

    def is_running(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return tenant_id in self._active or (lock is not None and lock.locked())

    def _claim(self, tenant_id: str) -> None:
        if tenant_id in self._active:
            raise ReconciliationInProgress(tenant_id)

    def schedule(self, tenant_id: str, trigger: str = "webhook") -> asyncio.Task:
        """
        Request a background reconciliation for a tenant. Fire-and-forget.

        Must be called from within the running event loop.

        Args:
            tenant_id: Tenant to reconcile
            trigger: Why the run was requested (webhook topic, 'timeslots_saved', ...)

        Returns:
            The task that will perform (or is performing) the run. Awaiting it
            waits for the run and any coalesced follow-up to finish.
        """
        try:
            self._claim(tenant_id)
        except ReconciliationInProgress:
            self._pending[tenant_id] = trigger
            logger.info(
                "Reconciliation already in progress, coalescing trigger",
                tenant_id=tenant_id,
                trigger=trigger,
            )
            return self._active[tenant_id]

        task = asyncio.get_running_loop().create_task(
            self._drain(tenant_id, trigger), name=f"fee-reconciliation:{tenant_id}"
        )
        self._active[tenant_id] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Scheduled fee reconciliation", tenant_id=tenant_id, trigger=trigger)
        return task

    async def _drain(self, tenant_id: str, trigger: str) -> None:
        try:
            while True:
                try:
                    await self._run_locked(tenant_id, trigger)
                except TenantNotConfigured:
                    logger.info("Skipping reconciliation for tenant without credentials", tenant_id=tenant_id)
                except Exception as e:
                    logger.error(
                        "Background fee reconciliation failed",
                        tenant_id=tenant_id,
                        trigger=trigger,
                        error=str(e),
                        exc_info=True,
                    )
                    self._record_failure(tenant_id, trigger, e)
                if tenant_id not in self._pending:
                    break
                trigger = self._pending.pop(tenant_id)
                logger.info("Running coalesced follow-up reconciliation", tenant_id=tenant_id, trigger=trigger)
        finally:
            self._active.pop(tenant_id, None)
            self._pending.pop(tenant_id, None)

    async def run_now(self, tenant_id: str, trigger: str = "manual") -> ReconciliationResult:
        """
        Run a reconciliation and return its result.

        Waits for any run already in progress for the tenant to finish first.

        Raises:
            TenantNotConfigured: if the tenant has no stored credentials
        """
        return await self._run_locked(tenant_id, trigger)

    async def run_cleanup(
        self, tenant_id: str, active_amounts: Optional[Iterable[Decimal]] = None
    ) -> CleanupResult:
        """
        Delete unused fee products for a tenant under the same per-tenant lock as reconciliation.

        Args:
            tenant_id: Tenant to clean up
            active_amounts: Authoritative active set; defaults to the amounts
                derived from the tenant's full stored timeslot configuration

        Raises:
            TenantNotConfigured: if the tenant has no stored credentials
        """
        async with self._tenant_lock(tenant_id):
            tenant = self.credential_store.get(tenant_id)
            if tenant is None:
                raise TenantNotConfigured(tenant_id)
            if active_amounts is None:
                active_amounts = extract_fee_amounts(self.data_store.get_timeslots(tenant_id))
            return await self.engine.cleanup(tenant, active_amounts)

    async def _run_locked(self, tenant_id: str, trigger: str) -> ReconciliationResult:
        async with self._tenant_lock(tenant_id):
            # Reload inside the lock so the run sees the latest credentials and timeslots
            tenant = self.credential_store.get(tenant_id)
            if tenant is None:
                raise TenantNotConfigured(tenant_id)
            return await self._run(tenant, trigger)

    async def _run(self, tenant: Tenant, trigger: str) -> ReconciliationResult:
        timeslots = self.data_store.get_timeslots(tenant.id)
        amounts = extract_fee_amounts(timeslots)
        logger.info(
            "Running fee reconciliation",
            tenant_id=tenant.id,
            trigger=trigger,
            fee_amounts=[str(a) for a in amounts],
        )
        result = await self.engine.reconcile(tenant, amounts)
        self.data_store.save_reconciliation_record(
            ReconciliationRecord(
                tenant_id=tenant.id,
                trigger=trigger,
                result=result,
                recorded_at=datetime.now(timezone.utc),
            )
        )
        return result

    def _record_failure(self, tenant_id: str, trigger: str, error: Exception) -> None:
        """Store a failed background run as the tenant's last record, so the dashboard shows it."""
        result = ReconciliationResult(
            errors=[FeeAmountError(error=str(error))],
            finished_at=datetime.now(timezone.utc),
        ).finalize(total_fee_amounts=0)
        self.data_store.save_reconciliation_record(
            ReconciliationRecord(
                tenant_id=tenant_id,
                trigger=trigger,
                result=result,
                recorded_at=datetime.now(timezone.utc),
            )
        )

    async def wait_idle(self) -> None:
        """Wait until every scheduled run (including follow-ups) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Wait for in-flight runs to finish. Called on application shutdown."""
        if self._tasks:
            logger.info("Waiting for fee reconciliations to finish", count=len(self._tasks))
        await self.wait_idle()
        logger.info("Reconciliation scheduler stopped")
