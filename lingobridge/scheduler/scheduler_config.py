from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore


def create_scheduler() -> AsyncIOScheduler:
    """
    Scheduler for the engine's maintenance jobs.

    - coalesce: a poller that fell behind runs once, not once per missed tick
    - max_instances=1: a slow health probe never overlaps the next one
    - misfire_grace_time: a run delayed by a busy loop still happens
    """
    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': AsyncIOExecutor()
    }

    job_defaults = {
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 30,
        'replace_existing': True
    }

    return AsyncIOScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )


class JobConfig:
    """Per-job overrides on top of the scheduler defaults"""

    JOB_SETTINGS = {
        'health-poller': {
            'misfire_grace_time': 10,
        },
        'context-sweep': {
            'misfire_grace_time': 60,
        },
        'cache-cleanup': {
            'misfire_grace_time': 3600,
            'jitter': 60,
        },
    }

    @classmethod
    def get_job_config(cls, job_name: str) -> dict:
        return cls.JOB_SETTINGS.get(job_name, {})
