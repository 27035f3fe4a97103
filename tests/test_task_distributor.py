"""
Tests for daily recurring-task distribution.
"""
import asyncio
from collections import Counter
from datetime import date

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from campusfix.exceptions import DeadlineExceeded
from campusfix.models import Location, RecurringTask, Worker
from campusfix.repositories.ticket_store import TaskStore
from campusfix.services.task_distributor import (
    TaskDistributor,
    _date_lock,
    _date_locks,
    _is_duplicate_task,
    plan_distribution,
)
from tests.factories import (
    CleanerFactory,
    LocationFactory,
    LocationSnapshotFactory,
    WorkerSnapshotFactory,
)

DAY = date(2026, 3, 2)


def cleaners(n, **kwargs):
    return WorkerSnapshotFactory.build_batch(n, skill="cleaning", **kwargs)


class TestPlanDistribution:
    """Pure planning over a snapshot."""

    def test_round_robin_within_block(self):
        rooms = LocationSnapshotFactory.build_batch(6, block="A")
        workers = cleaners(2, coverage_area="A")

        plan = plan_distribution(rooms, workers, set())

        per_worker = Counter(t.worker_id for t in plan.tasks)
        assert per_worker == {workers[0].id: 3, workers[1].id: 3}
        assert len({t.location_id for t in plan.tasks}) == 6
        assert [t.worker_id for t in plan.tasks[:2]] == [workers[0].id, workers[1].id]

    def test_uneven_split(self):
        rooms = LocationSnapshotFactory.build_batch(5, block="A")
        workers = cleaners(2, coverage_area="A")

        plan = plan_distribution(rooms, workers, set())

        assert Counter(t.worker_id for t in plan.tasks) == {workers[0].id: 3, workers[1].id: 2}

    def test_blocks_use_their_own_cleaners(self):
        rooms_a = LocationSnapshotFactory.build_batch(2, block="A")
        rooms_b = LocationSnapshotFactory.build_batch(2, block="B")
        worker_a = cleaners(1, coverage_area="A")[0]
        worker_b = cleaners(1, coverage_area="B")[0]

        plan = plan_distribution(rooms_a + rooms_b, [worker_a, worker_b], set())

        by_location = {t.location_id: t.worker_id for t in plan.tasks}
        assert all(by_location[r.id] == worker_a.id for r in rooms_a)
        assert all(by_location[r.id] == worker_b.id for r in rooms_b)
        assert plan.blocks_without_dedicated_worker == []

    def test_block_names_are_normalized(self):
        rooms = LocationSnapshotFactory.build_batch(2, block=" hostel-b ")
        worker = cleaners(1, coverage_area="HOSTEL-B")[0]

        plan = plan_distribution(rooms, [worker], set())

        assert not any(t.fallback for t in plan.tasks)
        assert plan.blocks_without_dedicated_worker == []

    def test_missing_block_meets_missing_area(self):
        rooms = LocationSnapshotFactory.build_batch(2, block=None)
        general = cleaners(1, coverage_area=None)[0]
        other = cleaners(1, coverage_area="A")[0]

        plan = plan_distribution(rooms, [other, general], set())

        assert {t.worker_id for t in plan.tasks} == {general.id}

    def test_block_without_cleaner_uses_global_pool(self):
        rooms = LocationSnapshotFactory.build_batch(4, block="C")
        workers = cleaners(2, coverage_area="A")

        plan = plan_distribution(rooms, workers, set())

        assert len(plan.tasks) == 4
        assert plan.uncovered == []
        assert plan.blocks_without_dedicated_worker == ["C"]
        assert all(t.fallback for t in plan.tasks)
        assert Counter(t.worker_id for t in plan.tasks) == {workers[0].id: 2, workers[1].id: 2}

    def test_fallback_pool_spans_blocks(self):
        rooms = LocationSnapshotFactory.build_batch(1, block="C") + LocationSnapshotFactory.build_batch(1, block="D")
        workers = cleaners(2, coverage_area="A")

        plan = plan_distribution(rooms, workers, set())

        assert [t.worker_id for t in plan.tasks] == [workers[0].id, workers[1].id]
        assert plan.blocks_without_dedicated_worker == ["C", "D"]

    def test_empty_pool_leaves_locations_uncovered(self):
        rooms = LocationSnapshotFactory.build_batch(3, block="A")

        plan = plan_distribution(rooms, [], set())

        assert plan.tasks == []
        assert plan.uncovered == [r.id for r in rooms]

    def test_covered_locations_are_skipped(self):
        rooms = LocationSnapshotFactory.build_batch(3, block="A")
        workers = cleaners(1, coverage_area="A")

        plan = plan_distribution(rooms, workers, {rooms[0].id})

        assert plan.skipped == [rooms[0].id]
        assert {t.location_id for t in plan.tasks} == {rooms[1].id, rooms[2].id}

    def test_unavailable_workers_ignored(self):
        rooms = LocationSnapshotFactory.build_batch(2, block="A")
        off = cleaners(1, coverage_area="A", is_available=False)[0]
        on = cleaners(1, coverage_area="B")[0]

        plan = plan_distribution(rooms, [off, on], set())

        assert {t.worker_id for t in plan.tasks} == {on.id}

    def test_deterministic(self):
        rooms = LocationSnapshotFactory.build_batch(7, block="A")
        workers = cleaners(3, coverage_area="A")
        assert plan_distribution(rooms, workers, set()) == plan_distribution(rooms, workers, set())


async def _seed(test_db, n_rooms=6, n_cleaners=2, block="A", area="A"):
    rooms = LocationFactory.build_batch(n_rooms, block=block)
    staff = CleanerFactory.build_batch(n_cleaners, coverage_area=area)
    test_db.add_all([Location(**r) for r in rooms])
    test_db.add_all([Worker(**w) for w in staff])
    await test_db.commit()
    return rooms, staff


async def _task_count(test_db, target_date=DAY) -> int:
    result = await test_db.execute(
        select(func.count(RecurringTask.id)).where(RecurringTask.scheduled_date == target_date)
    )
    return result.scalar()


class TestTaskDistributor:
    """Distribution against the database."""

    @pytest.mark.asyncio
    async def test_fair_distribution(self, test_db, sink):
        rooms, staff = await _seed(test_db)

        summary = await TaskDistributor(test_db, sink).run(DAY)

        assert summary.tasks_created == 6
        assert summary.workers_involved == 2
        tasks = await TaskStore(test_db).list_tasks(scheduled_date=DAY)
        assert Counter(t.worker_id for t in tasks) == {staff[0]["id"]: 3, staff[1]["id"]: 3}
        assert len(sink.of_type("tasks_assigned")) == 2
        assert len(sink.of_type("tasks_generated")) == 1

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, test_db, sink):
        await _seed(test_db)
        distributor = TaskDistributor(test_db, sink)

        first = await distributor.run(DAY)
        second = await distributor.run(DAY)

        assert first.tasks_created == 6
        assert second.tasks_created == 0
        assert second.locations_skipped == 6
        assert await _task_count(test_db) == 6

    @pytest.mark.asyncio
    async def test_new_location_filled_on_rerun(self, test_db):
        await _seed(test_db, n_rooms=2)
        distributor = TaskDistributor(test_db)
        await distributor.run(DAY)

        test_db.add(Location(**LocationFactory(block="A")))
        await test_db.commit()
        summary = await distributor.run(DAY)

        assert summary.tasks_created == 1
        assert summary.locations_skipped == 2

    @pytest.mark.asyncio
    async def test_dates_are_independent(self, test_db):
        await _seed(test_db, n_rooms=3)
        distributor = TaskDistributor(test_db)

        await distributor.run(DAY)
        summary = await distributor.run(date(2026, 3, 3))

        assert summary.tasks_created == 3

    @pytest.mark.asyncio
    async def test_only_cleaners_and_operational_rooms(self, test_db):
        rooms, staff = await _seed(test_db, n_rooms=2, n_cleaners=1)
        test_db.add(Location(**LocationFactory(block="A", status="under_maintenance")))
        test_db.add(Location(**LocationFactory(block="A", kind="asset")))
        test_db.add(Worker(**CleanerFactory(skill="electrical")))
        await test_db.commit()

        summary = await TaskDistributor(test_db).run(DAY)

        tasks = await TaskStore(test_db).list_tasks(scheduled_date=DAY)
        assert summary.tasks_created == 2
        assert {t.worker_id for t in tasks} == {staff[0]["id"]}

    @pytest.mark.asyncio
    async def test_no_cleaners_is_partial_success(self, test_db):
        await _seed(test_db, n_rooms=3, n_cleaners=0)

        summary = await TaskDistributor(test_db).run(DAY)

        assert summary.tasks_created == 0
        assert summary.locations_uncovered == 3
        assert summary.errors

    @pytest.mark.asyncio
    async def test_lost_race_replans(self, test_db, monkeypatch):
        await _seed(test_db)
        await TaskDistributor(test_db).run(DAY)

        original = TaskStore.covered_location_ids
        calls = []

        async def stale_first_read(self, scheduled_date):
            calls.append(scheduled_date)
            if len(calls) == 1:
                # Simulates a concurrent run committing between read and insert
                return set()
            return await original(self, scheduled_date)

        monkeypatch.setattr(TaskStore, "covered_location_ids", stale_first_read)
        summary = await TaskDistributor(test_db).run(DAY)

        assert len(calls) == 2
        assert summary.tasks_created == 0
        assert summary.locations_skipped == 6
        assert await _task_count(test_db) == 6

    @pytest.mark.asyncio
    async def test_second_conflict_commits_nothing(self, test_db, monkeypatch):
        await _seed(test_db)
        await TaskDistributor(test_db).run(DAY)

        calls = []

        async def always_stale(self, scheduled_date):
            calls.append(scheduled_date)
            return set()

        monkeypatch.setattr(TaskStore, "covered_location_ids", always_stale)
        summary = await TaskDistributor(test_db).run(DAY)

        assert len(calls) == 2
        assert summary.tasks_created == 0
        assert any("inserted by a concurrent run" in e for e in summary.errors)
        assert summary.message == "No tasks created"
        assert await _task_count(test_db) == 6

    @pytest.mark.asyncio
    async def test_deadline_rolls_back_flushed_tasks(self, test_db, monkeypatch):
        await _seed(test_db)
        original = TaskDistributor._persist

        async def slow_persist(self, target_date):
            plan = await original(self, target_date)
            await asyncio.sleep(1)
            return plan

        monkeypatch.setattr(TaskDistributor, "_persist", slow_persist)

        with pytest.raises(DeadlineExceeded):
            await TaskDistributor(test_db).run(DAY, deadline=0.1)

        monkeypatch.undo()
        assert await _task_count(test_db) == 0
        assert DAY not in _date_locks

        summary = await TaskDistributor(test_db).run(DAY)
        assert summary.tasks_created == 6
        assert await _task_count(test_db) == 6

    @pytest.mark.asyncio
    async def test_other_integrity_errors_are_not_replanned(self, test_db, monkeypatch):
        await _seed(test_db)
        calls = []

        async def broken_persist(self, target_date):
            calls.append(target_date)
            raise IntegrityError(
                "INSERT INTO recurring_tasks", {}, Exception("FOREIGN KEY constraint failed")
            )

        monkeypatch.setattr(TaskDistributor, "_persist", broken_persist)
        summary = await TaskDistributor(test_db).run(DAY)

        assert len(calls) == 1
        assert summary.tasks_created == 0
        assert summary.errors == ["Integrity error, nothing committed: FOREIGN KEY constraint failed"]
        assert await _task_count(test_db) == 0


class TestDuplicateDetection:
    def test_sqlite_unique_failure(self):
        exc = IntegrityError(
            "INSERT INTO recurring_tasks",
            {},
            Exception(
                "UNIQUE constraint failed: recurring_tasks.location_id, recurring_tasks.scheduled_date"
            ),
        )
        assert _is_duplicate_task(exc)

    def test_postgres_named_constraint(self):
        exc = IntegrityError(
            "INSERT INTO recurring_tasks",
            {},
            Exception('duplicate key value violates unique constraint "uq_recurring_task_location_date"'),
        )
        assert _is_duplicate_task(exc)

    def test_foreign_key_failure_is_not_a_duplicate(self):
        exc = IntegrityError(
            "INSERT INTO recurring_tasks", {}, Exception("FOREIGN KEY constraint failed")
        )
        assert not _is_duplicate_task(exc)


class TestDateLock:
    @pytest.mark.asyncio
    async def test_runs_for_one_date_are_serialised(self):
        order = []

        async def hold(tag):
            async with _date_lock(DAY):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(hold("a"), hold("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_lock_dropped_after_last_user(self):
        async with _date_lock(DAY):
            assert _date_locks[DAY].users == 1

        assert DAY not in _date_locks

    @pytest.mark.asyncio
    async def test_lock_dropped_after_run(self, test_db):
        await _seed(test_db, n_rooms=1, n_cleaners=1)

        await TaskDistributor(test_db).run(DAY)

        assert _date_locks == {}
