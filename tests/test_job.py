import pytest

from api.v1.core.exceptions import InvalidStateError, ValidationError
from api.v1.infra.jobs.job import Job, JobOptions, generate_job_id
from api.v1.infra.jobs.models import JobStatus


def _processing_job(**kwargs) -> Job:
    job = Job.create("export", {"format": "csv"}, JobOptions(**kwargs))
    job.mark_processing()
    return job


class TestJobCreation:
    """Submission defaults and option validation."""

    def test_defaults(self):
        job = Job.create("export")

        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.priority == 5
        assert job.payload == {}
        assert job.result is None and job.error is None
        assert job.started_at is None and job.completed_at is None
        assert job.created_at.tzinfo is not None

    @pytest.mark.parametrize(
        "options",
        [
            {"priority": 0},
            {"priority": 11},
            {"max_attempts": 0},
            {"delay_ms": -1},
            {"timeout_ms": 0},
        ],
    )
    def test_invalid_options_rejected(self, options):
        with pytest.raises(ValidationError):
            Job.create("export", {}, JobOptions(**options))

    def test_ids_are_unique_and_sortable(self):
        ids = [generate_job_id() for _ in range(200)]

        assert len(set(ids)) == len(ids)
        assert ids == sorted(ids)
        assert all(job_id.startswith("job_") for job_id in ids)


class TestJobTransitions:
    """The lifecycle state machine."""

    def test_claim_increments_attempts_and_sets_started_at(self):
        job = _processing_job()

        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at is not None

    def test_claim_requires_queued(self):
        job = _processing_job()

        with pytest.raises(InvalidStateError):
            job.mark_processing()

    def test_claim_refused_when_attempts_exhausted(self):
        job = Job.create("export", {}, JobOptions(max_attempts=1))
        job.attempts = 1

        with pytest.raises(InvalidStateError, match="no attempts left"):
            job.mark_processing()

    def test_complete(self):
        job = _processing_job()
        job.update_progress(40)
        job.mark_complete({"rows": 3})

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result == {"rows": 3}
        assert job.error is None
        assert job.completed_at is not None
        assert job.is_terminal

    def test_complete_requires_processing(self):
        job = Job.create("export")

        with pytest.raises(InvalidStateError):
            job.mark_complete({})

    def test_failed_requires_message(self):
        job = _processing_job()

        with pytest.raises(ValidationError):
            job.mark_failed("")

    def test_retry_cycle_keeps_last_error(self):
        job = _processing_job(max_attempts=2)
        job.mark_failed("network down")

        assert job.can_retry()
        job.requeue()

        assert job.status == JobStatus.QUEUED
        assert job.error is None
        assert job.last_error == "network down"
        assert job.completed_at is None

        job.mark_processing()
        assert job.attempts == 2
        job.mark_failed("still down")

        assert not job.can_retry()
        with pytest.raises(InvalidStateError):
            job.requeue()

    def test_reject_consumes_no_attempt(self):
        job = Job.create("ghost")
        job.reject("No processor registered for job type: ghost")

        assert job.status == JobStatus.FAILED
        assert job.attempts == 0
        assert job.completed_at is not None

    @pytest.mark.parametrize("start", ["queued", "processing"])
    def test_cancel_from_active_states(self, start):
        job = Job.create("export") if start == "queued" else _processing_job()
        job.mark_cancelled()

        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is not None

    def test_cancel_terminal_job_rejected(self):
        job = _processing_job()
        job.mark_complete({})

        with pytest.raises(InvalidStateError, match="Cannot cancel"):
            job.mark_cancelled()

    def test_to_dict_exposes_status_value(self):
        data = Job.create("export", {"a": 1}).to_dict()

        assert data["status"] == "queued"
        assert data["payload"] == {"a": 1}
        assert "created_at" in data


class TestJobProgress:
    """Progress validation and monotonicity."""

    @pytest.mark.parametrize("value", [-1, 101, 150])
    def test_out_of_range(self, value):
        job = _processing_job()

        with pytest.raises(ValidationError):
            job.update_progress(value)

    @pytest.mark.parametrize("value", [50.5, "50", True, None])
    def test_non_integer(self, value):
        job = _processing_job()

        with pytest.raises(ValidationError):
            job.update_progress(value)

    def test_requires_processing(self):
        job = Job.create("export")

        with pytest.raises(InvalidStateError):
            job.update_progress(10)

    def test_lower_value_ignored(self):
        job = _processing_job()

        assert job.update_progress(60) is True
        assert job.update_progress(30) is False
        assert job.progress == 60
        assert job.update_progress(60) is False

    def test_boundaries_accepted(self):
        job = _processing_job()

        assert job.update_progress(0) is False
        assert job.update_progress(100) is True
        assert job.progress == 100
