"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for the periodic billing jobs.

WHY: Recurring invoices, recurring tasks and overdue statuses have to move
forward even when nobody is using the API. The jobs run hourly:
1. Generate invoices for due recurring invoice templates
2. Generate tasks for due recurring task templates
3. Mark open invoices past their due date as overdue

HOW: Uses APScheduler's AsyncIOScheduler on the application's event loop.
Each step runs in its own session and transaction, so a failure in one step
does not roll back the others. Running the same job in several API workers
at once is safe: due rows are locked with SKIP LOCKED and every generated
occurrence is protected by a unique constraint.

Example:
    # In main.py startup:
    from crm.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()
"""

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm.core.config import settings
from crm.db.session import AsyncSessionLocal
from crm.services.invoice_service import InvoiceService
from crm.services.recurring_invoice_service import RecurringInvoiceService
from crm.services.recurring_task_service import RecurringTaskService


logger = logging.getLogger(__name__)


BILLING_JOB_ID = "recurring_billing"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def _in_transaction(
    session_factory: async_sessionmaker,
    name: str,
    work: Callable[[AsyncSession], Awaitable[Any]],
) -> Any:
    """
    Run one job step in its own transaction.

    Errors are logged and swallowed so the remaining steps still run; the
    scheduler retries on the next tick.
    """
    async with session_factory() as session:
        try:
            result = await work(session)
            await session.commit()
            return result
        except Exception:
            await session.rollback()
            logger.exception("Scheduled step '%s' failed", name)
            return None


async def run_billing_cycle(
    today: Optional[date] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> Dict[str, Any]:
    """
    Run every periodic billing step once.

    WHAT: Recurring invoices, then recurring tasks, then the overdue sweep,
    across all organizations.

    WHY: Exposed separately from the scheduler so operators and tests can
    trigger a cycle directly.

    Args:
        today: Reference date (defaults to today)
        session_factory: Session factory (defaults to the application's)

    Returns:
        Dict with the result of each step (None when a step failed)
    """
    today = today or date.today()
    factory = session_factory or AsyncSessionLocal

    invoices = await _in_transaction(
        factory,
        "recurring_invoices",
        lambda session: RecurringInvoiceService(session).run_due_templates(today),
    )
    tasks = await _in_transaction(
        factory,
        "recurring_tasks",
        lambda session: RecurringTaskService(session).generate_due_tasks(None, None, today),
    )
    overdue = await _in_transaction(
        factory,
        "overdue_sweep",
        lambda session: InvoiceService(session).mark_overdue_invoices(today),
    )

    summary = {
        "recurring_invoices": invoices,
        "recurring_tasks_generated": len(tasks) if tasks is not None else None,
        "invoices_marked_overdue": len(overdue) if overdue is not None else None,
    }
    logger.info("Billing cycle finished: %s", summary)
    return summary


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    WHAT: Initializes APScheduler and registers the billing job.

    HOW:
    1. Creates AsyncIOScheduler with memory job store
    2. Registers the hourly billing job
    3. Starts the scheduler

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Never overlap with itself
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )

    _scheduler.add_job(
        func=run_billing_cycle,
        trigger=IntervalTrigger(seconds=settings.RECURRING_CHECK_INTERVAL_SECONDS),
        id=BILLING_JOB_ID,
        name="Recurring billing and overdue sweep",
        replace_existing=True,
    )

    _scheduler.start()
    logger.info(
        "Scheduler started (billing cycle every %s seconds)",
        settings.RECURRING_CHECK_INTERVAL_SECONDS,
    )


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from FastAPI shutdown event.
    """
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler not running")
        return

    if _scheduler.running:
        logger.info("Shutting down scheduler...")
        _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down")


def get_scheduler_status() -> dict:
    """
    Get scheduler status information.

    WHY: Reported by the /health endpoint.

    Returns:
        Dict with scheduler status and job details
    """
    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in _scheduler.get_jobs()
    ]

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
