import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List

from apscheduler.job import Job
from apscheduler.triggers.interval import IntervalTrigger

from lingobridge.scheduler.scheduler_config import JobConfig, create_scheduler
from lingobridge.utils.logger.custom_logging import LoggerMixin


class BackgroundTaskManager(LoggerMixin):
    """
    Periodic maintenance jobs (health polling, context sweeps, cache
    cleanup) run on an APScheduler AsyncIOScheduler; one-shot jobs such as
    the cache warm-up are fire-and-forget asyncio tasks. A failing run is
    logged and the job keeps its schedule.
    """

    def __init__(self):
        super().__init__()
        self.scheduler = create_scheduler()
        self.running_tasks: Dict[str, asyncio.Task] = {}

    @property
    def scheduled_jobs(self) -> List[str]:
        return [job.id for job in self.scheduler.get_jobs()]

    def schedule_periodic(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval: float,
        run_immediately: bool = True,
    ) -> Job:
        """Run `job` every `interval` seconds; replaces a job with the same name."""
        options = dict(JobConfig.get_job_config(name))
        jitter = options.pop("jitter", None)
        if run_immediately:
            options["next_run_time"] = datetime.now(timezone.utc)

        scheduled = self.scheduler.add_job(
            self._run_once,
            IntervalTrigger(seconds=interval, jitter=jitter),
            args=[name, job],
            id=name,
            name=name,
            replace_existing=True,
            **options,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self.logger.debug(f"Scheduled '{name}' every {interval}s")
        return scheduled

    def schedule_once_nowait(self, name: str, job: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Fire-and-forget a single run."""
        task = asyncio.create_task(self._run_once(name, job), name=name)
        self.running_tasks[name] = task
        task.add_done_callback(lambda t: self._handle_task_exception(t, name))
        return task

    async def _run_once(self, name: str, job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Background job '{name}' failed: {type(e).__name__}: {e}")

    def _handle_task_exception(self, task: asyncio.Task, name: str) -> None:
        try:
            if not task.cancelled() and task.exception():
                self.logger.error(f"Background task '{name}' crashed: {task.exception()}")
        finally:
            if self.running_tasks.get(name) is task:
                del self.running_tasks[name]

    async def shutdown(self) -> None:
        job_count = len(self.scheduler.get_jobs())
        if self.scheduler.running:
            self.scheduler.remove_all_jobs()
            self.scheduler.shutdown(wait=False)
        # A stopped AsyncIOScheduler stays bound to its loop; start fresh next time
        self.scheduler = create_scheduler()

        tasks = list(self.running_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.running_tasks.clear()
        self.logger.info(f"Stopped {job_count} scheduled jobs and {len(tasks)} background tasks")
