# tests/test_job_queue.py
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_files
from model.job import FileOutcome, StoredFileRecord
from service.job_queue import JobQueue
from util.enums import JobStatus
from util.errors import InvalidJobError, JobStateError, NotFoundError


def _ok(index, source):
    record = StoredFileRecord(
        storage_id=f"blob-{source.id}",
        display_name=source.name,
        source_ref=source.id,
        stored_at=datetime.now(timezone.utc),
        byte_length=10,
    )
    return FileOutcome(index=index, source_file=source, record=record)


def _err(index, source, message="boom"):
    return FileOutcome(index=index, source_file=source, error=message)


def _assert_consistent(view):
    p = view.progress
    assert 0 <= p.completed + p.failed <= p.total
    assert view.remaining == p.total - p.completed - p.failed


def test_create_job_starts_pending_with_zero_progress(job_queue):
    job_id = job_queue.create_job(make_files(3), {"owner": "u1"})

    view = job_queue.get_progress_snapshot(job_id)
    assert job_id.startswith("job_")
    assert view.status == JobStatus.pending
    assert view.progress.total == 3
    assert view.progress.completed == 0
    assert view.progress.failed == 0
    assert view.percentage == 0
    assert view.remaining == 3
    assert view.timestamps.started is None
    assert job_queue.get_job(job_id).metadata == {"owner": "u1"}


def test_create_job_rejects_empty_file_list(job_queue):
    with pytest.raises(InvalidJobError):
        job_queue.create_job([])
    assert job_queue.stats().total == 0


def test_job_ids_are_unique(job_queue):
    ids = {job_queue.create_job(make_files(1)) for _ in range(50)}
    assert len(ids) == 50


def test_unknown_job_raises_not_found(job_queue):
    with pytest.raises(NotFoundError):
        job_queue.get_progress_snapshot("job_missing")
    with pytest.raises(NotFoundError):
        job_queue.begin_processing("job_missing")


def test_all_successes_complete_the_job(job_queue):
    files = make_files(3)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    for i, f in enumerate(files):
        job_queue.note_file_started(job_id, i, f.name)
        _assert_consistent(job_queue.record_file_outcome(job_id, _ok(i, f)))

    assert job_queue.finalize(job_id) == JobStatus.completed
    view = job_queue.get_progress_snapshot(job_id)
    assert view.percentage == 100
    assert view.remaining == 0
    assert view.timestamps.completed is not None
    assert view.timestamps.completed >= view.timestamps.started >= view.timestamps.created
    assert len(job_queue.get_job(job_id).results.successful) == 3


def test_any_failure_completes_with_errors(job_queue):
    files = make_files(2)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    job_queue.record_file_outcome(job_id, _ok(0, files[0]))
    job_queue.record_file_outcome(job_id, _err(1, files[1], "File not found in Google Drive"))

    assert job_queue.finalize(job_id) == JobStatus.completed_with_errors
    job = job_queue.get_job(job_id)
    assert job.results.failed[0].error_message == "File not found in Google Drive"
    assert job.results.failed[0].source_file.id == files[1].id


def test_percentage_rounds_completed_over_total(job_queue):
    files = make_files(3)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    view = job_queue.record_file_outcome(job_id, _ok(0, files[0]))
    assert view.percentage == 33
    view = job_queue.record_file_outcome(job_id, _ok(1, files[1]))
    assert view.percentage == 67


def test_percentage_rounds_halves_up(job_queue):
    files = make_files(8)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    view = job_queue.record_file_outcome(job_id, _ok(0, files[0]))
    assert view.percentage == 13
    for i in range(1, 5):
        view = job_queue.record_file_outcome(job_id, _ok(i, files[i]))
    assert view.percentage == 63


def test_begin_twice_is_rejected(job_queue):
    job_id = job_queue.create_job(make_files(1))
    job_queue.begin_processing(job_id)
    with pytest.raises(JobStateError):
        job_queue.begin_processing(job_id)


def test_outcomes_require_processing_state(job_queue):
    files = make_files(1)
    job_id = job_queue.create_job(files)
    with pytest.raises(JobStateError):
        job_queue.record_file_outcome(job_id, _ok(0, files[0]))


def test_outcome_beyond_total_is_rejected(job_queue):
    files = make_files(1)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    job_queue.record_file_outcome(job_id, _ok(0, files[0]))
    with pytest.raises(JobStateError):
        job_queue.record_file_outcome(job_id, _err(0, files[0]))
    view = job_queue.get_progress_snapshot(job_id)
    assert view.progress.completed == 1
    assert view.progress.failed == 0


def test_terminal_states_are_absorbing(job_queue):
    files = make_files(1)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    job_queue.record_file_outcome(job_id, _ok(0, files[0]))
    job_queue.finalize(job_id)

    with pytest.raises(JobStateError):
        job_queue.finalize(job_id)
    with pytest.raises(JobStateError):
        job_queue.fail(job_id, "late failure")
    with pytest.raises(JobStateError):
        job_queue.begin_processing(job_id)
    assert job_queue.status_of(job_id) == JobStatus.completed


def test_pending_job_can_fail_directly(job_queue):
    job_id = job_queue.create_job(make_files(2))
    job_queue.fail(job_id, "User session with Google Drive access required")

    view = job_queue.get_progress_snapshot(job_id)
    assert view.status == JobStatus.failed
    assert view.error == "User session with Google Drive access required"
    assert view.progress.completed + view.progress.failed == 0
    assert view.timestamps.completed is not None


def test_concurrent_outcomes_are_not_lost(job_queue):
    files = make_files(5)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    barrier = threading.Barrier(5)

    def report(i):
        barrier.wait()
        outcome = _ok(i, files[i]) if i % 2 == 0 else _err(i, files[i])
        return job_queue.record_file_outcome(job_id, outcome)

    with ThreadPoolExecutor(max_workers=5) as pool:
        views = list(pool.map(report, range(5)))

    for v in views:
        _assert_consistent(v)
    view = job_queue.get_progress_snapshot(job_id)
    assert view.progress.completed == 3
    assert view.progress.failed == 2
    assert view.progress.current_index == 5
    job = job_queue.get_job(job_id)
    assert len(job.results.successful) == 3
    assert len(job.results.failed) == 2


def test_current_index_never_moves_backwards(job_queue):
    files = make_files(3)
    job_id = job_queue.create_job(files)
    job_queue.begin_processing(job_id)
    job_queue.note_file_started(job_id, 2, files[2].name)
    job_queue.note_file_started(job_id, 0, files[0].name)
    assert job_queue.get_progress_snapshot(job_id).progress.current_index == 3


def test_log_is_capped_to_most_recent_entries():
    queue = JobQueue(log_capacity=100)
    job_id = queue.create_job(make_files(1))
    for i in range(250):
        queue.add_log(job_id, f"entry {i}")

    log = queue.get_job(job_id).log
    assert len(log) == 100
    assert log[-1].message == "entry 249"
    assert log[0].message == "entry 150"


def test_reads_are_copies(job_queue):
    job_id = job_queue.create_job(make_files(1))
    job = job_queue.get_job(job_id)
    job.status = JobStatus.failed
    job.progress.completed = 99
    assert job_queue.status_of(job_id) == JobStatus.pending
    assert job_queue.get_progress_snapshot(job_id).progress.completed == 0


def test_list_jobs_newest_first_with_pagination(job_queue):
    ids = [job_queue.create_job(make_files(1)) for _ in range(5)]
    job_queue.fail(ids[0], "x")

    page = job_queue.list_jobs(limit=2, offset=0)
    assert page.pagination.total == 5
    assert page.pagination.has_more is True
    assert len(page.jobs) == 2

    everything = job_queue.list_jobs(limit=10)
    created = [v.timestamps.created for v in everything.jobs]
    assert created == sorted(created, reverse=True)
    assert everything.pagination.has_more is False

    failed = job_queue.list_jobs(status=JobStatus.failed)
    assert [v.job_id for v in failed.jobs] == [ids[0]]
    assert failed.pagination.total == 1


def test_stats_counts_by_status(job_queue):
    files = make_files(2)
    a = job_queue.create_job(files)
    job_queue.create_job(make_files(3))
    job_queue.begin_processing(a)
    job_queue.record_file_outcome(a, _ok(0, files[0]))

    stats = job_queue.stats()
    assert stats.total == 2
    assert stats.by_status["processing"] == 1
    assert stats.by_status["pending"] == 1
    assert stats.total_files_processed == 1
    assert stats.total_files_in_queue == 5


def test_garbage_collect_zero_age_removes_finished_and_unstarted(job_queue):
    files = make_files(1)
    finished = job_queue.create_job(files)
    job_queue.begin_processing(finished)
    job_queue.record_file_outcome(finished, _ok(0, files[0]))
    job_queue.finalize(finished)
    unstarted = job_queue.create_job(make_files(1))
    running = job_queue.create_job(make_files(1))
    job_queue.begin_processing(running)

    removed = job_queue.garbage_collect(timedelta(0))

    assert removed == 2
    with pytest.raises(NotFoundError):
        job_queue.get_progress_snapshot(finished)
    with pytest.raises(NotFoundError):
        job_queue.get_progress_snapshot(unstarted)
    assert job_queue.status_of(running) == JobStatus.processing


def test_garbage_collect_keeps_recent_jobs(job_queue):
    job_id = job_queue.create_job(make_files(1))
    job_queue.fail(job_id, "x")
    assert job_queue.garbage_collect(timedelta(hours=24)) == 0
    assert job_queue.status_of(job_id) == JobStatus.failed
