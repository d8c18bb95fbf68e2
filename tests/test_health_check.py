"""Tests for the health check script's checks."""

from datetime import datetime, timedelta, timezone

from autopublish.job_store import InMemoryJobStore
from autopublish.models import PublishingPayload
from scripts.health_check import check_last_run, check_stuck_jobs


class TestStuckJobs:
    def test_old_processing_job_is_reported(self):
        queue = InMemoryJobStore()
        job = queue.enqueue(PublishingPayload(post_id="p", user_id="u", site_id="s"))
        queue.claim(job.id)

        later = datetime.now(timezone.utc) + timedelta(hours=2)
        ok, msg = check_stuck_jobs(queue, timedelta(minutes=30), now=later)

        assert ok is False
        assert job.id in msg

    def test_recent_processing_job_is_fine(self):
        queue = InMemoryJobStore()
        job = queue.enqueue(PublishingPayload(post_id="p", user_id="u", site_id="s"))
        queue.claim(job.id)

        ok, _ = check_stuck_jobs(queue, timedelta(minutes=30))
        assert ok is True


class TestLastRun:
    def test_missing_heartbeat(self, tmp_path):
        ok, msg = check_last_run(tmp_path, timedelta(hours=1))
        assert ok is False
        assert "No last_run.txt" in msg

    def test_fresh_heartbeat(self, tmp_path):
        now = datetime.now(timezone.utc).isoformat()
        (tmp_path / "last_run.txt").write_text(f"SUCCESS\n{now}\nheartbeat\n")
        ok, _ = check_last_run(tmp_path, timedelta(hours=1))
        assert ok is True

    def test_failure_status(self, tmp_path):
        now = datetime.now(timezone.utc).isoformat()
        (tmp_path / "last_run.txt").write_text(f"FAILURE\n{now}\nboom\n")
        ok, msg = check_last_run(tmp_path, timedelta(hours=1))
        assert ok is False
        assert "boom" in msg
