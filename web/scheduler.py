"""Background scheduler for the automatic renewal sweep."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from renewal.audit import AuditAction
from renewal.connection import Connection
from renewal.errors import ConflictError
from renewal.operation import CREATED_BY_SYSTEM

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "auto_renewal_sweep"
PURGE_JOB_ID = "operation_retention_purge"


def check_scheduler_settings(values: dict) -> None:
    """Raise ValueError for a cron expression or threshold the scheduler cannot use."""
    if values.get("cron"):
        CronTrigger.from_crontab(values["cron"], timezone=timezone.utc)
    if values.get("threshold_days") not in (None, ""):
        if int(values["threshold_days"]) < 0:
            raise ValueError("threshold_days must not be negative")


class AutoRenewalScheduler:
    """Start renewals for connections whose certificate is close to expiry.

    A sweep only launches renewals; each renewal runs in its own worker
    thread, so one slow or failing target never delays the others.
    """

    def __init__(self, store, orchestrator, cron_expression: str = "0 0 * * *",
                 threshold_days: int = 7, enabled: bool = True, audit=None,
                 background_scheduler: Optional[BackgroundScheduler] = None):
        self.store = store
        self.orchestrator = orchestrator
        self.cron_expression = cron_expression
        self.threshold_days = threshold_days
        self.enabled = enabled
        self.audit = audit
        self._scheduler = background_scheduler or BackgroundScheduler(daemon=True)
        self._sweep_lock = threading.Lock()
        self.last_run_at: Optional[datetime] = None
        self.last_summary: Optional[dict] = None

    def _trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron_expression, timezone=timezone.utc)

    # ── Selection ────────────────────────────────────────────────

    def is_due(self, connection: Connection, now: Optional[datetime] = None) -> bool:
        if not connection.is_enabled or not connection.auto_renew:
            return False
        # Custom DNS needs a person to add the record
        if connection.is_manual_dns:
            return False
        if connection.cert_expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires = connection.cert_expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        days_left = (expires - now).total_seconds() / 86400
        return days_left <= self.threshold_days

    def due_connections(self, now: Optional[datetime] = None) -> list[Connection]:
        return [c for c in self.store.auto_renew_enabled() if self.is_due(c, now)]

    # ── Sweep ────────────────────────────────────────────────────

    def sweep(self) -> dict:
        """Start a renewal for every due connection not already renewing."""
        if not self._sweep_lock.acquire(blocking=False):
            logger.warning("Auto-renewal sweep already in progress, skipping this trigger")
            return {"started": [], "skipped": [], "failed": [], "due": 0, "overlap": True}

        try:
            due = self.due_connections()
            started, skipped, failed = [], [], []
            logger.info("Auto-renewal sweep: %d connection(s) due", len(due))

            for connection in due:
                if self.orchestrator.registry.active_for_connection(connection.id):
                    logger.info("Skipping %s: renewal already in progress", connection.name)
                    skipped.append(connection.id)
                    continue
                try:
                    self.orchestrator.start_renewal(connection.id, created_by=CREATED_BY_SYSTEM)
                    started.append(connection.id)
                except ConflictError:
                    skipped.append(connection.id)
                except Exception as e:
                    logger.exception("Auto-renewal could not start for %s", connection.name)
                    failed.append({"connection_id": connection.id, "error": str(e)})

            summary = {"started": started, "skipped": skipped, "failed": failed, "due": len(due)}
            self.last_run_at = datetime.now(timezone.utc)
            self.last_summary = summary
            logger.info("Auto-renewal sweep complete: %d started, %d skipped, %d failed",
                        len(started), len(skipped), len(failed))

            if self.audit is not None:
                try:
                    self.audit.log(AuditAction.AUTO_RENEWAL, "scheduled",
                                   f"Started {len(started)}/{len(due)} renewals", user=CREATED_BY_SYSTEM)
                except OSError:
                    logger.exception("Failed to log auto-renewal to audit")
            return summary
        finally:
            self._sweep_lock.release()

    def _purge(self) -> None:
        self.orchestrator.registry.purge_expired()

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(SWEEP_JOB_ID) if self.running else None
        if job is not None:
            return job.next_run_time
        if not self.enabled:
            return None
        return self._trigger().get_next_fire_time(None, datetime.now(timezone.utc))

    def status(self) -> dict:
        next_run = self.next_run_time()
        return {
            "enabled": self.enabled,
            "running": self.running,
            "cron_expression": self.cron_expression,
            "threshold_days": self.threshold_days,
            "next_run_time": next_run.isoformat() if next_run else None,
            "due_count": len(self.due_connections()),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_summary": self.last_summary,
            "sweep_in_progress": self._sweep_lock.locked(),
        }

    def start(self) -> None:
        if self.running:
            return
        self._scheduler.add_job(
            func=self.sweep,
            trigger=self._trigger(),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            func=self._purge,
            trigger="interval",
            minutes=1,
            id=PURGE_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Scheduler started: auto-renewal '%s', threshold %d day(s)",
                    self.cron_expression, self.threshold_days)

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


def init_scheduler(app):
    """Start the auto-renewal scheduler unless disabled in settings."""
    from web.services import get_scheduler

    scheduler = get_scheduler()
    if not scheduler.enabled:
        logger.info("Auto-renewal scheduler disabled")
        return scheduler
    scheduler.start()
    app.extensions["netssl_scheduler"] = scheduler
    return scheduler
