import asyncio

import pytest

from lingobridge.scheduler.scheduler_config import JobConfig, create_scheduler
from lingobridge.services.background_tasks import BackgroundTaskManager


class TestSchedulerConfig:

    def test_job_defaults(self):
        scheduler = create_scheduler()

        assert scheduler._job_defaults["coalesce"] is True
        assert scheduler._job_defaults["max_instances"] == 1
        assert scheduler._job_defaults["misfire_grace_time"] == 30

    def test_unknown_job_uses_defaults(self):
        assert JobConfig.get_job_config("nope") == {}
        assert JobConfig.get_job_config("cache-cleanup")["misfire_grace_time"] == 3600


class TestBackgroundTaskManager:

    @pytest.mark.asyncio
    async def test_periodic_job_repeats(self):
        manager = BackgroundTaskManager()
        runs = []

        async def job():
            runs.append(1)

        manager.schedule_periodic("tick", job, interval=0.05)
        assert manager.scheduler.running
        await asyncio.sleep(0.4)
        await manager.shutdown()

        assert len(runs) >= 2
        assert manager.scheduled_jobs == []

    @pytest.mark.asyncio
    async def test_failing_run_keeps_schedule(self):
        manager = BackgroundTaskManager()
        runs = []

        async def job():
            runs.append(1)
            raise RuntimeError("transient")

        manager.schedule_periodic("flaky", job, interval=0.05)
        await asyncio.sleep(0.4)

        assert len(runs) >= 2
        assert manager.scheduled_jobs == ["flaky"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_delayed_start(self):
        manager = BackgroundTaskManager()
        runs = []

        async def job():
            runs.append(1)

        manager.schedule_periodic("later", job, interval=10, run_immediately=False)
        await asyncio.sleep(0.05)

        assert runs == []
        assert manager.scheduled_jobs == ["later"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_job(self):
        manager = BackgroundTaskManager()

        async def job():
            pass

        manager.schedule_periodic("job", job, interval=10, run_immediately=False)
        manager.schedule_periodic("job", job, interval=20, run_immediately=False)

        assert manager.scheduled_jobs == ["job"]
        assert manager.scheduler.get_job("job").trigger.interval_length == 20
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_one_shot_job_removes_itself(self):
        manager = BackgroundTaskManager()
        done = asyncio.Event()

        async def job():
            done.set()

        task = manager.schedule_once_nowait("once", job)
        await asyncio.wait_for(done.wait(), timeout=1)
        await task
        await asyncio.sleep(0)

        assert "once" not in manager.running_tasks

    @pytest.mark.asyncio
    async def test_shutdown_allows_restart(self):
        manager = BackgroundTaskManager()
        runs = []

        async def job():
            runs.append(1)

        manager.schedule_periodic("tick", job, interval=10, run_immediately=False)
        await manager.shutdown()
        manager.schedule_periodic("tick", job, interval=0.05)
        await asyncio.sleep(0.2)
        await manager.shutdown()

        assert runs
