"""
Reconciliation scheduler for commission invoices.

Runs every RECONCILIATION_INTERVAL_MINUTES to:
1. Create invoices for completed bookings that are missing one
2. Audit the commission invariant across completed bookings
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

from core.config import RECONCILIATION_INTERVAL_MINUTES
from core.constants import RECONCILIATION_SCHEDULER_MAX_INSTANCES
from core.database import get_db_context
from services.invoice_reconciliation_service import InvoiceReconciliationService

logger = logging.getLogger(__name__)

# Global singleton instance
_reconciliation_scheduler: Optional['ReconciliationScheduler'] = None


class ReconciliationScheduler:
    """
    Scheduler for the invoice reconciliation sweep.

    Database sessions are created fresh for each run to avoid stale session issues.
    """

    def __init__(self, interval_minutes: int = RECONCILIATION_INTERVAL_MINUTES):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.interval_minutes = interval_minutes
        self._is_started = False

    async def start_scheduler(self) -> None:
        """
        Start the background scheduler.

        This should be called during application startup.
        """
        if self._is_started:
            logger.warning("Reconciliation scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._run_reconciliation,
            IntervalTrigger(minutes=self.interval_minutes),
            id="invoice_reconciliation",
            name="Commission invoice reconciliation",
            replace_existing=True,
            max_instances=RECONCILIATION_SCHEDULER_MAX_INSTANCES,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"Reconciliation scheduler started (every {self.interval_minutes} minutes)")

    async def stop_scheduler(self) -> None:
        """
        Stop the background scheduler.

        This should be called during application shutdown.
        """
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Reconciliation scheduler stopped")

    async def _run_reconciliation(self) -> None:
        """Offload the blocking sweep to a worker thread."""
        logger.info("Starting scheduled invoice reconciliation...")
        await asyncio.to_thread(self.run_once)

    def run_once(self) -> None:
        """Run backfill and audit once with a fresh session."""
        with get_db_context() as db:
            try:
                report = InvoiceReconciliationService.backfill_missing_invoices(db)
                mismatches = InvoiceReconciliationService.audit_commission_invariant(db)
                logger.info(
                    f"Invoice reconciliation completed: {len(report.created_invoice_ids)} created, "
                    f"{len(report.skipped)} skipped, {len(mismatches)} mismatches"
                )
            except Exception as e:
                logger.exception(f"Error during scheduled invoice reconciliation: {e}")
                # Don't re-raise - allow scheduler to continue


def get_reconciliation_scheduler() -> ReconciliationScheduler:
    """
    Get the global reconciliation scheduler instance.

    Returns:
        ReconciliationScheduler: The global scheduler instance
    """
    global _reconciliation_scheduler
    if _reconciliation_scheduler is None:
        _reconciliation_scheduler = ReconciliationScheduler()
    return _reconciliation_scheduler


async def start_reconciliation_scheduler() -> None:
    """Start the global reconciliation scheduler."""
    scheduler = get_reconciliation_scheduler()
    await scheduler.start_scheduler()


async def stop_reconciliation_scheduler() -> None:
    """Stop the global reconciliation scheduler."""
    global _reconciliation_scheduler
    if _reconciliation_scheduler:
        await _reconciliation_scheduler.stop_scheduler()
