import asyncio
from unittest.mock import AsyncMock, MagicMock

from dynamodb_helper import DynamoDBHelper
from exceptions import DynamoDBError
from job_store import JobStore, ProgressTracker
from schemas import JobStatus, ProgressPhase, ResourceKind


def _store(table):
    return JobStore(DynamoDBHelper("clip-studio-jobs-test", table=table))


def test_create_and_load_round_trip(in_memory_table, job):
    store = _store(in_memory_table)
    job.register_temporary_asset("p1_trimmed_x_0", ResourceKind.VIDEO)

    store.create(job)
    loaded = store.load(job.job_id)

    assert loaded.job_id == job.job_id
    assert loaded.clips == job.clips
    assert loaded.temporary_asset_ids == {"p1_trimmed_x_0"}
    assert loaded.temporary_asset_kinds == {"p1_trimmed_x_0": ResourceKind.VIDEO}
    assert loaded.target_duration == 15.0


def test_load_unknown_job(in_memory_table):
    assert _store(in_memory_table).load("nope") is None


def test_save_only_touches_requested_fields(in_memory_table, job):
    store = _store(in_memory_table)
    store.create(job)

    job.progress = 40
    job.error = "should not be written"
    store.save(job, ("progress",))

    item = in_memory_table.items[job.job_id]
    assert item["progress"] == 40
    assert item.get("error") is None
    assert item["updated_at"] == job.updated_at


def test_cancellation_of_running_job(in_memory_table, job):
    store = _store(in_memory_table)
    job.transition_to(JobStatus.IN_PROGRESS)
    store.create(job)

    cancelled = store.request_cancellation(job.job_id)

    assert cancelled.cancel_requested is True
    assert store.is_cancel_requested(job.job_id) is True


def test_cancellation_of_finished_job_is_ignored(in_memory_table, job):
    store = _store(in_memory_table)
    job.transition_to(JobStatus.FAILED)
    store.create(job)

    result = store.request_cancellation(job.job_id)

    assert result.is_terminal
    assert store.is_cancel_requested(job.job_id) is False


def test_cancellation_of_unknown_job(in_memory_table):
    store = _store(in_memory_table)
    assert store.request_cancellation("nope") is None
    assert store.is_cancel_requested("nope") is False


# ==============================================================================
# Progress
# ==============================================================================
def test_progress_never_moves_backwards(job):
    tracker = ProgressTracker(job)

    async def scenario():
        await tracker.emit(ProgressPhase.RESOLVING, 5)
        await tracker.emit(ProgressPhase.CONCATENATING, 40)
        # fallback strategy starts over at its own first phase
        await tracker.emit(ProgressPhase.TRIMMING, 10)
        await tracker.emit(ProgressPhase.TRIMMING, 55)
        await tracker.emit(ProgressPhase.FINALIZING, 90)
        await tracker.complete()

    asyncio.run(scenario())

    percents = [event.percent for event in tracker.events]
    assert percents == sorted(percents)
    assert [event.phase for event in tracker.events] == [
        ProgressPhase.RESOLVING,
        ProgressPhase.CONCATENATING,
        ProgressPhase.CONCATENATING,
        ProgressPhase.FINALIZING,
        ProgressPhase.COMPLETED,
    ]
    assert (job.phase, job.progress) == (ProgressPhase.COMPLETED, 100)


def test_progress_is_clamped_to_range(job):
    tracker = ProgressTracker(job)

    asyncio.run(tracker.emit(ProgressPhase.FINALIZING, 250))

    assert job.progress == 100


def test_progress_is_persisted_and_reported(in_memory_table, job):
    store = _store(in_memory_table)
    store.create(job)
    on_progress = AsyncMock()

    asyncio.run(ProgressTracker(job, store, on_progress).emit(ProgressPhase.DOWNLOADING, 20))

    assert in_memory_table.items[job.job_id]["progress"] == 20
    assert in_memory_table.items[job.job_id]["phase"] == "downloading"
    on_progress.assert_awaited_once()


def test_progress_persistence_failure_does_not_stop_the_job(job):
    store = MagicMock()
    store.save.side_effect = DynamoDBError("throttled")

    asyncio.run(ProgressTracker(job, store).emit(ProgressPhase.RESOLVING, 5))

    assert job.progress == 5


def test_fail_keeps_last_percentage(job):
    tracker = ProgressTracker(job)

    async def scenario():
        await tracker.emit(ProgressPhase.TRIMMING, 35)
        await tracker.fail()

    asyncio.run(scenario())

    assert (job.phase, job.progress) == (ProgressPhase.FAILED, 35)
