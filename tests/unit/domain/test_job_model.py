from datetime import datetime, timedelta

import pytest

from name_screening.domain.events import JobCompleted, JobQueued, JobStarted
from name_screening.domain.exceptions import InvalidJobTransition
from name_screening.domain.model import Job, JobStatus, JobType, SearchRecord

T0 = datetime(2025, 1, 1, 12, 0, 0)


def make_job(priority: int = 1, sequence: int = 0, **kwargs) -> Job:
    return Job.create(
        job_type=JobType.CLEANUP,
        payload={},
        priority=priority,
        created_at=T0,
        sequence=sequence,
        **kwargs,
    )


def test_create_queued_job_emits_queued_event():
    job = make_job()

    assert job.status == JobStatus.QUEUED
    assert job.id.startswith("job_")
    events = job.pull_events()
    assert events == [JobQueued(job_id=job.id, job_type="cleanup")]
    assert job.pull_events() == []


def test_create_with_wake_time_starts_scheduled():
    job = make_job(scheduled_for=T0 + timedelta(seconds=30))

    assert job.status == JobStatus.SCHEDULED
    assert job.pull_events() == []

    job.promote()
    assert job.status == JobStatus.QUEUED
    assert job.scheduled_for is None


def test_full_lifecycle_sets_timestamps_and_progress():
    job = make_job()
    job.start(T0)
    job.update_progress(40)
    job.complete({"ok": True}, T0 + timedelta(milliseconds=250))

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.completed_at is not None
    assert job.execution_time_ms == 250
    assert isinstance(job.pull_events()[-1], JobCompleted)


def test_progress_never_decreases_and_is_clamped():
    job = make_job()
    job.start(T0)

    job.update_progress(60)
    job.update_progress(30)
    assert job.progress == 60

    job.update_progress(250)
    assert job.progress == 100


def test_progress_ignored_when_not_running():
    job = make_job()
    job.update_progress(50)
    assert job.progress == 0


@pytest.mark.parametrize("status", [JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED])
def test_cancel_only_allowed_while_queued(status):
    job = make_job()
    job.start(T0)
    if status == JobStatus.COMPLETED:
        job.complete({}, T0)
    elif status == JobStatus.FAILED:
        job.fail("boom", T0)

    assert job.cancel(T0) is False
    assert job.status == status


def test_cancel_queued_job_is_terminal():
    job = make_job()
    assert job.cancel(T0) is True
    assert job.status == JobStatus.CANCELLED
    assert job.status.is_terminal
    assert job.completed_at == T0


def test_illegal_transition_raises():
    job = make_job()
    with pytest.raises(InvalidJobTransition):
        job.complete({}, T0)

    job.start(T0)
    assert isinstance(job.pull_events()[-1], JobStarted)
    with pytest.raises(ValueError):
        job.start(T0)


def test_sort_key_orders_by_priority_then_arrival():
    low = make_job(priority=1, sequence=0)
    high_late = make_job(priority=3, sequence=2)
    high_early = make_job(priority=3, sequence=1)

    ordered = sorted([low, high_late, high_early], key=lambda j: j.sort_key)

    assert ordered == [high_early, high_late, low]


def test_search_record_query_terms_skip_empty_values():
    assert SearchRecord(id="r1", batch_id="b1", full_name="Ana Diaz").query_terms == ["Ana Diaz"]
    assert SearchRecord(
        id="r1", batch_id="b1", full_name="Ana Diaz", identification="123"
    ).query_terms == ["Ana Diaz", "123"]
