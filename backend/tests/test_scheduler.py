"""Background regeneration scheduling."""
import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import item
from shelfscout.scheduler import (
    ActivityPattern,
    RecommendationScheduler,
    ScheduleEntry,
    job_id_for,
    peak_hours_policy,
)


class RecordingService:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def generate_in_background(self, user_id, collection, trigger="periodic"):
        self.calls.append((user_id, [i.id for i in collection], trigger))
        if self.fail:
            raise RuntimeError("metadata service down")
        return []


class FakeJobStore:
    """Stands in for the APScheduler instance; keeps the latest job per id."""

    def __init__(self):
        self.jobs = {}
        self.running = False

    def add_job(self, func, trigger=None, args=None, kwargs=None, id=None, name=None, replace_existing=False):
        self.jobs[id] = {"func": func, "trigger": trigger, "args": args, "kwargs": kwargs, "name": name}

    def get_job(self, job_id):
        return None

    def get_jobs(self):
        return [SimpleNamespace(id=job_id) for job_id in self.jobs]

    def remove_job(self, job_id):
        del self.jobs[job_id]


def small_collection(prefix):
    return [item(f"{prefix}{i}", f"tt{prefix}{i}", f"{prefix} {i}") for i in range(3)]


def test_schedule_replaces_pending_job_for_user():
    service = RecordingService()

    async def scenario():
        scheduler = RecommendationScheduler(service)
        scheduler.start()
        try:
            scheduler.schedule("u1", small_collection("a"), delay=0.1)
            scheduler.schedule("u1", small_collection("b"), delay=0.1)
            pending = [job.id for job in scheduler.scheduler.get_jobs()]
            await asyncio.sleep(0.6)
        finally:
            scheduler.shutdown()
        return pending

    pending = asyncio.run(scenario())

    assert pending == [job_id_for("u1")]
    assert service.calls == [("u1", ["b0", "b1", "b2"], "periodic")]


def test_cancel_removes_pending_job():
    service = RecordingService()

    async def scenario():
        scheduler = RecommendationScheduler(service)
        scheduler.start()
        try:
            scheduler.schedule("u1", small_collection("a"), delay=0.1)
            cancelled = scheduler.cancel("u1")
            cancelled_again = scheduler.cancel("u1")
            await asyncio.sleep(0.3)
        finally:
            scheduler.shutdown()
        return cancelled, cancelled_again

    assert asyncio.run(scenario()) == (True, False)
    assert service.calls == []


def test_schedule_before_start_is_an_error():
    with pytest.raises(RuntimeError):
        RecommendationScheduler(RecordingService()).schedule("u1")


def test_failures_are_swallowed_and_listeners_skipped():
    service = RecordingService(fail=True)
    scheduler = RecommendationScheduler(service)
    heard = []
    scheduler.add_listener(lambda *args: heard.append(args))

    asyncio.run(scheduler.run_job("u1", small_collection("a")))

    assert len(service.calls) == 1
    assert heard == []


def test_listeners_are_notified_and_isolated():
    scheduler = RecommendationScheduler(RecordingService())
    heard = []

    def broken(user_id, recommendations, trigger):
        raise ValueError("listener bug")

    def listener(user_id, recommendations, trigger):
        heard.append((user_id, recommendations, trigger))

    scheduler.add_listener(broken)
    scheduler.add_listener(listener)
    asyncio.run(scheduler.run_job("u1", small_collection("a"), "collection_change"))

    assert heard == [("u1", [], "collection_change")]

    scheduler.remove_listener(listener)
    asyncio.run(scheduler.run_job("u1", small_collection("a")))
    assert len(heard) == 1


def test_collection_loader_used_without_snapshot():
    service = RecordingService()
    loaded = []

    def loader(user_id):
        loaded.append(user_id)
        return small_collection("db")

    scheduler = RecommendationScheduler(service, collection_loader=loader)
    asyncio.run(scheduler.run_job("u1"))

    assert loaded == ["u1"]
    assert service.calls == [("u1", ["db0", "db1", "db2"], "periodic")]


def test_missing_loader_skips_generation():
    service = RecordingService()
    asyncio.run(RecommendationScheduler(service).run_job("u1"))
    assert service.calls == []


def test_peak_hours_policy():
    now = datetime(2026, 3, 2, 10, 30)
    entries = peak_hours_policy(ActivityPattern(peak_hours=[20, 9, 20]), now)

    assert entries == [
        ScheduleEntry(run_at=datetime(2026, 3, 3, 8, 45), reason="peak_usage"),
        ScheduleEntry(run_at=datetime(2026, 3, 2, 19, 45), reason="peak_usage"),
    ]


def test_routine_update_without_peak_hours():
    now = datetime(2026, 3, 2, 10, 30)
    entries = peak_hours_policy(ActivityPattern(), now)
    assert entries == [ScheduleEntry(run_at=now + timedelta(hours=6), reason="routine")]


def test_schedule_smart_updates_registers_future_entries():
    now = datetime(2026, 3, 2, 10, 30)
    jobs = FakeJobStore()
    scheduler = RecommendationScheduler(RecordingService(), scheduler=jobs, clock=lambda: now)

    def policy(activity, current):
        return [
            ScheduleEntry(run_at=current - timedelta(minutes=5), reason="peak_usage"),
            ScheduleEntry(run_at=current + timedelta(hours=1), reason="peak_usage"),
            ScheduleEntry(run_at=current + timedelta(hours=2), reason="routine"),
        ]

    scheduled = scheduler.schedule_smart_updates("u1", ActivityPattern(peak_hours=[11]), policy=policy)

    assert [e.reason for e in scheduled] == ["peak_usage", "routine"]
    assert sorted(jobs.jobs) == ["smart:u1:1", "smart:u1:2"]
    assert jobs.jobs["smart:u1:1"]["kwargs"] == {"user_id": "u1", "priority": "high", "trigger": "periodic"}
    assert jobs.jobs["smart:u1:2"]["kwargs"]["priority"] == "low"
    assert jobs.jobs["smart:u1:1"]["func"] == scheduler.run_smart_update
    assert asyncio.iscoroutinefunction(scheduler.run_smart_update)

    asyncio.run(scheduler.run_smart_update(**jobs.jobs["smart:u1:1"]["kwargs"]))
    queued = jobs.jobs[job_id_for("u1")]
    assert queued["name"] == "Regenerate recommendations (high)"
    assert queued["args"] == ["u1", None, "periodic"]


def test_smart_updates_replace_the_previous_plan():
    now = datetime(2026, 3, 2, 10, 30)
    jobs = FakeJobStore()
    scheduler = RecommendationScheduler(RecordingService(), scheduler=jobs, clock=lambda: now)
    jobs.jobs["smart:u2:0"] = {"name": "other user"}

    scheduler.schedule_smart_updates("u1", ActivityPattern(peak_hours=[12, 18, 21]))
    assert sorted(jobs.jobs) == ["smart:u1:0", "smart:u1:1", "smart:u1:2", "smart:u2:0"]

    scheduler.schedule_smart_updates("u1", ActivityPattern(peak_hours=[12]))
    assert sorted(jobs.jobs) == ["smart:u1:0", "smart:u2:0"]
