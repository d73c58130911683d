"""Tests for scheduled tenant broadcasts."""

from datetime import datetime, timedelta, timezone

import pytest

from clubnotify.core.errors import BackendError
from clubnotify.db.models import NavigateAction
from clubnotify.notifications import NotificationScheduler


@pytest.fixture
def scheduler(service):
    return NotificationScheduler(service)


class TestScheduling:
    def test_schedule_daily(self, scheduler):
        job_id = scheduler.schedule_daily("gym-1", "Hydrate", "Drink water", hour=9, minute=30)
        jobs = scheduler.scheduled_jobs()

        assert [j.job_id for j in jobs] == [job_id]
        assert jobs[0].tenant_id == "gym-1"
        trigger = scheduler.scheduler.get_job(job_id).trigger
        assert str(trigger.fields[trigger.FIELD_NAMES.index("hour")]) == "9"
        assert str(trigger.fields[trigger.FIELD_NAMES.index("minute")]) == "30"

    def test_schedule_weekly_sunday_is_one(self, scheduler):
        job_id = scheduler.schedule_weekly("gym-1", "Weekly recap", "See progress", 1, 18, 0)
        trigger = scheduler.scheduler.get_job(job_id).trigger
        assert str(trigger.fields[trigger.FIELD_NAMES.index("day_of_week")]) == "sun"

    def test_schedule_weekly_rejects_bad_weekday(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.schedule_weekly("gym-1", "x", "y", 0, 10, 0)
        with pytest.raises(ValueError):
            scheduler.schedule_weekly("gym-1", "x", "y", 8, 10, 0)

    def test_explicit_job_id_replaces(self, scheduler):
        scheduler.schedule_daily("gym-1", "A", "a", 8, 0, job_id="morning")
        scheduler.schedule_daily("gym-1", "B", "b", 8, 0, job_id="morning")
        jobs = scheduler.scheduled_jobs()
        assert [(j.job_id, j.title) for j in jobs] == [("morning", "B")]

    def test_cancel(self, scheduler):
        run_at = datetime.now(timezone.utc) + timedelta(hours=1)
        job_id = scheduler.schedule_once("gym-1", "Class soon", "Spin in 1h", run_at)

        assert scheduler.cancel(job_id) is True
        assert scheduler.cancel(job_id) is False
        assert scheduler.scheduled_jobs() == []

    def test_cancel_all(self, scheduler):
        scheduler.schedule_daily("gym-1", "A", "a", 8, 0)
        scheduler.schedule_weekly("gym-2", "B", "b", 2, 8, 0)
        scheduler.cancel_all()
        assert scheduler.scheduled_jobs() == []

    @pytest.mark.asyncio
    async def test_start_computes_next_run(self, scheduler):
        scheduler.schedule_daily("gym-1", "A", "a", 8, 0)
        await scheduler.start()
        try:
            assert scheduler.scheduled_jobs()[0].next_run_time is not None
        finally:
            await scheduler.stop()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_deliver_creates_notification(self, scheduler, service):
        await scheduler.deliver(
            "gym-1",
            "Workout reminder",
            "Leg day",
            type="warning",
            action=NavigateAction(route="/workouts").model_dump(),
        )

        (record,) = await service.list("gym-1", "alice")
        assert record.title == "Workout reminder"
        assert record.action.route == "/workouts"

    @pytest.mark.asyncio
    async def test_deliver_logs_backend_failure(self, scheduler, backend, monkeypatch):
        async def broken(**kwargs):
            raise BackendError("offline")

        monkeypatch.setattr(backend, "insert_notification", broken)
        await scheduler.deliver("gym-1", "x", "y")
