"""Tests for job lifecycle, status updates, cancellation and subscriptions."""

import asyncio

import pytest

from src.indexer.job_manager import (
    CANCELLED_MESSAGE,
    JobCancelledError,
    JobKind,
    JobPhase,
    SUBSCRIBER_QUEUE_SIZE,
)


async def test_create_job_is_queued(job_manager):
    job = job_manager.create_job(JobKind.INDEX, repo_id="acme/shop", branch="main")
    assert job.phase == JobPhase.QUEUED
    assert job.percentage == 0
    assert job_manager.get_job(job.job_id) is job
    assert job_manager.get_job("missing") is None


async def test_percentage_never_decreases(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    await job_manager.update_status(job.job_id, phase=JobPhase.PARSING, percentage=40)
    await job_manager.update_status(job.job_id, percentage=25)
    assert job.percentage == 40
    await job_manager.update_status(job.job_id, percentage=250)
    assert job.percentage == 100


async def test_complete_sets_percentage_and_duration(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    await job_manager.update_status(job.job_id, phase=JobPhase.CLONING, percentage=5)
    snapshot = await job_manager.update_status(job.job_id, phase=JobPhase.COMPLETE)
    assert snapshot["percentage"] == 100
    assert "totalSeconds" in snapshot
    assert "elapsedSeconds" not in snapshot


async def test_terminal_jobs_ignore_updates(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    await job_manager.mark_failed(job.job_id, "clone failed")
    assert await job_manager.update_status(job.job_id, phase=JobPhase.PARSING, percentage=50) is None
    assert job.phase == JobPhase.FAILED
    assert job.error == "clone failed"


async def test_phase_must_match_job_kind(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    assert await job_manager.update_status(job.job_id, phase=JobPhase.RUNNING_AGENTS) is None
    assert job.phase == JobPhase.QUEUED


async def test_unknown_progress_field_raises(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    with pytest.raises(AttributeError):
        await job_manager.update_status(job.job_id, bogus=1)


async def test_cancel_queued_job_ends_immediately(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    assert await job_manager.cancel_job(job.job_id) == "Index job cancelled"
    assert job.phase == JobPhase.CANCELLED
    assert job.error == CANCELLED_MESSAGE
    assert job.cancel_token.cancelled


async def test_cancel_running_job_moves_to_cancelling(job_manager):
    job = job_manager.create_job(JobKind.REVIEW)
    await job_manager.update_status(job.job_id, phase=JobPhase.FETCHING_PR, percentage=10)
    assert await job_manager.cancel_job(job.job_id) == "Review job cancelled"
    assert job.phase == JobPhase.CANCELLING

    # Progress reports are dropped while cancelling; the terminal one lands
    assert await job_manager.update_status(job.job_id, phase=JobPhase.RUNNING_AGENTS) is None
    with pytest.raises(JobCancelledError):
        job.cancel_token.raise_if_cancelled()
    await job_manager.mark_cancelled(job.job_id)
    assert job.phase == JobPhase.CANCELLED


async def test_cancel_terminal_and_unknown_jobs(job_manager):
    job = job_manager.create_job(JobKind.INDEX)
    await job_manager.update_status(job.job_id, phase=JobPhase.COMPLETE)
    assert await job_manager.cancel_job(job.job_id) == "Index job already complete"
    assert await job_manager.cancel_job("missing") is None


async def test_list_jobs_newest_first_with_paging(job_manager):
    jobs = [job_manager.create_job(JobKind.INDEX) for _ in range(5)]
    for i, job in enumerate(jobs):
        job.started_at = 1000.0 + i
    job_manager.create_job(JobKind.REVIEW)

    page, total = job_manager.list_jobs(JobKind.INDEX, limit=2, offset=1)
    assert total == 5
    assert [j.job_id for j in page] == [jobs[3].job_id, jobs[2].job_id]

    _, everything = job_manager.list_jobs()
    assert everything == 6


async def test_phase_counts(job_manager):
    first = job_manager.create_job(JobKind.INDEX)
    job_manager.create_job(JobKind.INDEX)
    job_manager.create_job(JobKind.REVIEW)
    await job_manager.update_status(first.job_id, phase=JobPhase.COMPLETE)
    assert job_manager.phase_counts(JobKind.INDEX) == {"complete": 1, "queued": 1}
    assert job_manager.phase_counts(JobKind.REVIEW) == {"queued": 1}


async def test_subscribe_starts_with_snapshot(job_manager):
    """The first event is the current snapshot; later updates follow in order."""
    job = job_manager.create_job(JobKind.INDEX, repo_id="acme/shop")
    await job_manager.update_status(job.job_id, phase=JobPhase.CLONING, percentage=5)

    queue = await job_manager.subscribe(job.job_id)
    first = queue.get_nowait()
    assert first["type"] == "status"
    assert first["phase"] == "cloning"

    await job_manager.update_status(job.job_id, phase=JobPhase.PARSING, percentage=20)
    await job_manager.publish_event(job.job_id, "log", message="parsing 3 files")
    assert queue.get_nowait()["phase"] == "parsing"
    event = queue.get_nowait()
    assert event["type"] == "log" and event["message"] == "parsing 3 files"

    job_manager.unsubscribe(job.job_id, queue)
    await job_manager.update_status(job.job_id, percentage=30)
    assert queue.empty()


async def test_subscribe_unknown_job(job_manager):
    assert await job_manager.subscribe("missing") is None


async def test_full_subscriber_queue_still_gets_terminal_event(job_manager):
    """Progress events are dropped for a slow subscriber, the final status never is."""
    job = job_manager.create_job(JobKind.INDEX, repo_id="acme/shop")
    await job_manager.update_status(job.job_id, phase=JobPhase.PARSING, percentage=30)
    queue = await job_manager.subscribe(job.job_id)

    for _ in range(SUBSCRIBER_QUEUE_SIZE + 10):
        await job_manager.publish_event(job.job_id, "log", message="tick")
    assert queue.full()

    await job_manager.update_status(job.job_id, phase=JobPhase.COMPLETE)
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    assert len(events) == SUBSCRIBER_QUEUE_SIZE
    assert events[-1]["type"] == "status"
    assert events[-1]["phase"] == "complete"
    # The oldest event made room for it
    assert events[0]["type"] == "log"


async def test_finding_events_accumulate(job_manager):
    job = job_manager.create_job(JobKind.REVIEW)
    await job_manager.publish_event(job.job_id, "finding", finding={"file": "a.ts", "line": 3})
    assert job.findings == [{"file": "a.ts", "line": 3}]


async def test_index_status_dict_keys(job_manager):
    job = job_manager.create_job(JobKind.INDEX, repo_id="acme/shop", repo_url="https://x/acme/shop.git")
    status = job_manager.get_status_dict(job)
    assert status["id"] == job.job_id
    assert status["kind"] == "index"
    assert status["repoUrl"] == "https://x/acme/shop.git"
    assert {"filesProcessed", "totalFiles", "functionsIndexed"} <= set(status)
    assert "error" not in status


async def test_review_status_dict_keys(job_manager):
    job = job_manager.create_job(JobKind.REVIEW, pr_url="https://bitbucket.org/a/b/pull-requests/1")
    status = job_manager.get_status_dict(job)
    assert status["prUrl"].endswith("/1")
    assert status["findings"] == []
    assert status["agentsRunning"] == []


async def test_start_runs_body_as_task(job_manager):
    job = job_manager.create_job(JobKind.INDEX)

    async def body():
        await asyncio.sleep(0)
        await job_manager.update_status(job.job_id, phase=JobPhase.COMPLETE)

    task = job_manager.start(job, body())
    assert job.task is task
    await task
    assert job.phase == JobPhase.COMPLETE
