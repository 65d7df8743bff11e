"""Job execution primitives.

- WorkQueue: bounded-concurrency runner for phase jobs
- EntityLockTable: busy set guarding per-pull-request work
"""

from src.linear_pilot.jobs.locks import EntityLockTable, PullRequestKey
from src.linear_pilot.jobs.queue import Job, WorkQueue

__all__ = [
    "EntityLockTable",
    "Job",
    "PullRequestKey",
    "WorkQueue",
]
