from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from clubnotify.core.errors import BackendError
from clubnotify.db.models import NavigateAction, NoAction, NotificationType
from clubnotify.notifications.service import NotificationService

logger = logging.getLogger(__name__)

# Weekday numbering follows the mobile client: 1 = Sunday ... 7 = Saturday
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


@dataclass
class ScheduledBroadcast:
    job_id: str
    tenant_id: str
    title: str
    next_run_time: datetime | None


class NotificationScheduler:
    """
    APScheduler manager for scheduled tenant broadcasts.
    Each job creates a notification through the NotificationService when it fires.
    """

    def __init__(self, service: NotificationService, scheduler: AsyncIOScheduler | None = None) -> None:
        self._service = service
        self.scheduler = scheduler or AsyncIOScheduler()

    async def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Notification scheduler started")

    async def stop(self) -> None:
        """
        Stop the scheduler gracefully.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Notification scheduler stopped")

    async def deliver(
        self,
        tenant_id: str,
        title: str,
        message: str,
        type: str = NotificationType.INFO.value,
        action: dict[str, Any] | None = None,
    ) -> None:
        parsed_action: NoAction | NavigateAction | None = None
        if action and action.get("kind") == "navigate":
            parsed_action = NavigateAction.model_validate(action)

        try:
            await self._service.create(tenant_id, type, title, message, parsed_action)
        except BackendError as exc:
            logger.exception("Error delivering scheduled notification to %s: %s", tenant_id, exc)

    def _add(
        self,
        trigger: Any,
        tenant_id: str,
        title: str,
        message: str,
        type: NotificationType | str,
        action: NoAction | NavigateAction | None,
        job_id: str | None,
        name: str,
    ) -> str:
        # Pending jobs (added before start) skip replace_existing checks
        if job_id is not None and self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)

        job = self.scheduler.add_job(
            self.deliver,
            trigger,
            kwargs={
                "tenant_id": tenant_id,
                "title": title,
                "message": message,
                "type": NotificationType(type).value,
                # Job kwargs must stay serializable
                "action": action.model_dump() if action is not None else None,
            },
            id=job_id,
            name=name,
            replace_existing=job_id is not None,
        )
        logger.info("Scheduled %s for tenant %s as job %s", name, tenant_id, job.id)
        return job.id

    def schedule_once(
        self,
        tenant_id: str,
        title: str,
        message: str,
        run_at: datetime,
        *,
        type: NotificationType | str = NotificationType.INFO,
        action: NoAction | NavigateAction | None = None,
        job_id: str | None = None,
    ) -> str:
        return self._add(
            DateTrigger(run_date=run_at),
            tenant_id, title, message, type, action, job_id,
            name="One-off broadcast",
        )

    def schedule_daily(
        self,
        tenant_id: str,
        title: str,
        message: str,
        hour: int,
        minute: int,
        *,
        type: NotificationType | str = NotificationType.INFO,
        action: NoAction | NavigateAction | None = None,
        job_id: str | None = None,
    ) -> str:
        return self._add(
            CronTrigger(hour=hour, minute=minute),
            tenant_id, title, message, type, action, job_id,
            name="Daily broadcast",
        )

    def schedule_weekly(
        self,
        tenant_id: str,
        title: str,
        message: str,
        weekday: int,
        hour: int,
        minute: int,
        *,
        type: NotificationType | str = NotificationType.INFO,
        action: NoAction | NavigateAction | None = None,
        job_id: str | None = None,
    ) -> str:
        if not 1 <= weekday <= 7:
            raise ValueError("weekday must be between 1 (Sunday) and 7 (Saturday)")
        return self._add(
            CronTrigger(day_of_week=_WEEKDAYS[weekday - 1], hour=hour, minute=minute),
            tenant_id, title, message, type, action, job_id,
            name="Weekly broadcast",
        )

    def cancel(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("Cancelled scheduled broadcast %s", job_id)
        return True

    def cancel_all(self) -> None:
        self.scheduler.remove_all_jobs()
        logger.info("Cancelled all scheduled broadcasts")

    def scheduled_jobs(self) -> list[ScheduledBroadcast]:
        return [
            ScheduledBroadcast(
                job_id=job.id,
                tenant_id=job.kwargs["tenant_id"],
                title=job.kwargs["title"],
                # Jobs added before start() have no computed run time yet
                next_run_time=getattr(job, "next_run_time", None),
            )
            for job in self.scheduler.get_jobs()
        ]
