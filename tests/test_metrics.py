from datetime import timedelta

from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.metrics import JobMetrics
from api.v1.infra.jobs.models import JobStatus, utcnow


def _attempt(metrics: JobMetrics, job_type: str, succeed: bool) -> Job:
    job = Job.create(job_type)
    job.mark_processing()
    metrics.record_job_start(job)
    if succeed:
        metrics.record_job_complete(job)
    else:
        metrics.record_job_failed(job, RuntimeError("boom"))
    return job


class TestJobMetrics:
    """Per-type aggregates and timing samples."""

    def test_success_rate_is_a_fraction(self):
        metrics = JobMetrics()
        for _ in range(8):
            _attempt(metrics, "export", succeed=True)
        for _ in range(2):
            _attempt(metrics, "export", succeed=False)

        data = metrics.get_metrics_for_job_type("export")
        assert data.total_jobs == 10
        assert data.completed_jobs == 8
        assert data.failed_jobs == 2
        assert data.success_rate == 0.8
        assert data.average_processing_time_ms >= 0

    def test_unknown_type_has_no_metrics(self):
        assert JobMetrics().get_metrics_for_job_type("export") is None

    def test_summary_across_types(self):
        metrics = JobMetrics()
        _attempt(metrics, "export", succeed=True)
        _attempt(metrics, "batch-analysis", succeed=False)

        summary = metrics.get_metrics_summary()
        assert summary["total_jobs"] == 2
        assert summary["completed_jobs"] == 1
        assert summary["failed_jobs"] == 1
        assert summary["overall_success_rate"] == 0.5
        assert set(summary["job_type_breakdown"]) == {"export", "batch-analysis"}
        assert summary["job_type_breakdown"]["export"]["success_rate"] == 1.0

    def test_empty_summary(self):
        summary = JobMetrics().get_metrics_summary()

        assert summary["total_jobs"] == 0
        assert summary["overall_success_rate"] == 0.0
        assert summary["job_type_breakdown"] == {}

    def test_failure_without_start_is_counted_but_not_timed(self):
        metrics = JobMetrics()
        job = Job.create("ghost")
        metrics.record_job_failed(job, "No processor registered for job type: ghost")

        data = metrics.get_metrics_for_job_type("ghost")
        assert data.failed_jobs == 1
        assert data.timed_jobs == 0
        assert metrics.get_job_timing(job.id) is None

    def test_timing_sample_recorded(self):
        metrics = JobMetrics()
        job = _attempt(metrics, "export", succeed=False)

        sample = metrics.get_job_timing(job.id)
        assert sample.status == JobStatus.FAILED
        assert sample.error == "boom"
        assert sample.attempts == 1
        assert sample.processing_time_ms is not None

    def test_percentiles_nearest_rank(self):
        metrics = JobMetrics()
        for duration in range(1, 11):
            job = _attempt(metrics, "export", succeed=True)
            metrics.get_job_timing(job.id).processing_time_ms = float(duration)

        assert metrics.get_processing_time_percentiles("export") == {
            "p50": 5.0,
            "p90": 9.0,
            "p99": 10.0,
        }
        assert metrics.get_processing_time_percentiles("batch-analysis") == {}

    def test_samples_bounded_by_count(self):
        metrics = JobMetrics(max_samples=2)
        jobs = [_attempt(metrics, "export", succeed=True) for _ in range(3)]

        recent = metrics.get_recent_job_timings()
        assert [s.job_id for s in recent] == [jobs[2].id, jobs[1].id]
        # Aggregates are unaffected by sample eviction
        assert metrics.get_metrics_for_job_type("export").total_jobs == 3

    def test_clear_old_timings(self):
        metrics = JobMetrics(retention_ms=60_000)
        old = _attempt(metrics, "export", succeed=True)
        fresh = _attempt(metrics, "export", succeed=True)
        metrics.get_job_timing(old.id).start_time = utcnow() - timedelta(hours=1)

        assert metrics.clear_old_timings() == 1
        assert metrics.get_job_timing(old.id) is None
        assert metrics.get_job_timing(fresh.id) is not None
        assert metrics.get_metrics_for_job_type("export").total_jobs == 2

    def test_reset(self):
        metrics = JobMetrics()
        _attempt(metrics, "export", succeed=True)
        metrics.reset()

        assert metrics.get_all_metrics() == []
        assert metrics.get_recent_job_timings() == []
