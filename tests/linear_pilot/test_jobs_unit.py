"""Unit tests for the work queue and the entity lock table.

Covers bounded concurrency, FIFO start order, failure isolation and the
busy-set semantics of the per-pull-request lock table.
"""

import asyncio
from typing import List

import pytest
from prometheus_client import CollectorRegistry

from src.linear_pilot.events.metrics import PilotMetrics
from src.linear_pilot.jobs import EntityLockTable, PullRequestKey, WorkQueue


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# WorkQueue
# ---------------------------------------------------------------------------


class TestWorkQueue:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            WorkQueue(concurrency=0)

    def test_at_most_two_of_five_jobs_run_at_once(self):
        async def scenario():
            queue = WorkQueue(concurrency=2)
            release = asyncio.Event()
            active = 0
            peak = 0

            async def job():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await release.wait()
                active -= 1

            for _ in range(5):
                queue.enqueue(job, label="test")

            for _ in range(10):
                await asyncio.sleep(0)

            assert queue.running == 2
            assert queue.pending == 3

            release.set()
            await queue.join()
            return queue, peak

        queue, peak = run_async(scenario())
        assert peak == 2
        assert queue.completed == 5
        assert queue.running == 0
        assert queue.pending == 0

    def test_jobs_start_in_enqueue_order(self):
        async def scenario():
            queue = WorkQueue(concurrency=1)
            started: List[int] = []

            def make_job(n: int):
                async def job():
                    started.append(n)
                    await asyncio.sleep(0)

                return job

            for n in range(6):
                queue.enqueue(make_job(n))
            await queue.join()
            return started

        assert run_async(scenario()) == [0, 1, 2, 3, 4, 5]

    def test_failing_job_does_not_stop_later_jobs(self):
        async def scenario():
            queue = WorkQueue(concurrency=2)
            finished: List[str] = []

            async def boom():
                raise RuntimeError("agent crashed")

            async def ok():
                finished.append("ok")

            queue.enqueue(boom, label="boom")
            queue.enqueue(ok, label="ok")
            queue.enqueue(boom, label="boom")
            queue.enqueue(ok, label="ok")
            await queue.join()
            return queue, finished

        queue, finished = run_async(scenario())
        assert finished == ["ok", "ok"]
        assert queue.completed == 4

    def test_join_waits_for_jobs_enqueued_by_jobs(self):
        async def scenario():
            queue = WorkQueue(concurrency=1)
            finished: List[str] = []

            async def child():
                finished.append("child")

            async def parent():
                finished.append("parent")
                queue.enqueue(child, label="child")

            queue.enqueue(parent, label="parent")
            await queue.join()
            return finished

        assert run_async(scenario()) == ["parent", "child"]

    def test_records_job_metrics(self):
        registry = CollectorRegistry()
        metrics = PilotMetrics(registry=registry)

        async def scenario():
            queue = WorkQueue(concurrency=1, metrics=metrics)

            async def ok():
                return None

            async def boom():
                raise RuntimeError("nope")

            queue.enqueue(ok, label="planning")
            queue.enqueue(boom, label="planning")
            await queue.join()

        run_async(scenario())

        succeeded = registry.get_sample_value(
            "pilot_jobs_total", {"label": "planning", "result": "success"}
        )
        failed = registry.get_sample_value(
            "pilot_jobs_total", {"label": "planning", "result": "failure"}
        )
        assert succeeded == 1.0
        assert failed == 1.0
        assert registry.get_sample_value("pilot_queue_jobs", {"status": "running"}) == 0.0
        assert registry.get_sample_value("pilot_queue_jobs", {"status": "pending"}) == 0.0

    def test_seeded_state_gauge_stays_non_negative(self):
        registry = CollectorRegistry()
        metrics = PilotMetrics(registry=registry)

        metrics.set_issue_counts({"in_progress": 2, "reviewing": 1})
        metrics.record_state_change("in_progress", "reviewing")

        def gauge(state):
            return registry.get_sample_value("pilot_issues_by_state", {"state": state})

        assert gauge("in_progress") == 1.0
        assert gauge("reviewing") == 2.0
        assert gauge("planning") == 0.0


# ---------------------------------------------------------------------------
# EntityLockTable
# ---------------------------------------------------------------------------


class TestEntityLockTable:
    def test_second_acquire_is_refused(self):
        locks = EntityLockTable()
        key = PullRequestKey("acme", "widgets", 7)

        assert locks.try_acquire(key) is True
        assert locks.try_acquire(key) is False
        assert locks.is_held(key)

    def test_keys_are_independent(self):
        locks = EntityLockTable()

        assert locks.try_acquire(PullRequestKey("acme", "widgets", 7))
        assert locks.try_acquire(PullRequestKey("acme", "widgets", 8))
        assert locks.try_acquire(PullRequestKey("acme", "gadgets", 7))
        assert len(locks) == 3

    def test_release_is_idempotent(self):
        locks = EntityLockTable()
        key = PullRequestKey("acme", "widgets", 7)

        locks.try_acquire(key)
        locks.release(key)
        locks.release(key)

        assert not locks.is_held(key)
        assert locks.try_acquire(key)

    def test_key_string_form(self):
        assert str(PullRequestKey("acme", "widgets", 7)) == "acme/widgets#7"

    def test_hold_releases_on_exception(self):
        locks = EntityLockTable()
        key = PullRequestKey("acme", "widgets", 7)

        async def scenario():
            with pytest.raises(RuntimeError):
                async with locks.hold(key) as acquired:
                    assert acquired
                    raise RuntimeError("boom")

        run_async(scenario())
        assert not locks.is_held(key)

    def test_hold_does_not_release_a_lock_it_did_not_take(self):
        locks = EntityLockTable()
        key = PullRequestKey("acme", "widgets", 7)
        locks.try_acquire(key)

        async def scenario():
            async with locks.hold(key) as acquired:
                return acquired

        assert run_async(scenario()) is False
        assert locks.is_held(key)
