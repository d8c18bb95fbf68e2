#!/usr/bin/env python3
"""System health check, run hourly via cron."""

import shutil
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from autopublish.config import load_config
from autopublish.job_store import JobQueue
from autopublish.models import JobStatus
from autopublish.sql_store import SqlJobStore, init_db, make_engine


def check_last_run(log_dir: Path, max_age: timedelta) -> tuple[bool, str]:
    """Verify the worker wrote a heartbeat recently."""
    last_run_file = log_dir / "last_run.txt"
    if not last_run_file.exists():
        return False, "No last_run.txt found"

    lines = last_run_file.read_text().strip().split("\n")
    if len(lines) < 2:
        return False, "last_run.txt is malformed"

    status = lines[0].strip()
    timestamp_str = lines[1].strip()
    message = lines[2].strip() if len(lines) > 2 else ""

    try:
        age = datetime.now(timezone.utc) - datetime.fromisoformat(timestamp_str)
    except ValueError:
        return False, f"Cannot parse last_run timestamp: {timestamp_str}"

    if status == "FAILURE":
        return False, f"Last run FAILED {age.total_seconds()/3600:.1f}h ago: {message}"
    if age > max_age:
        return False, f"Last heartbeat was {age.total_seconds()/3600:.1f} hours ago"
    return True, f"OK, last heartbeat {age.total_seconds()/60:.0f}m ago"


def check_stuck_jobs(queue: JobQueue, max_age: timedelta, now: datetime = None) -> tuple[bool, str]:
    """Jobs left in processing longer than max_age (e.g. the worker died mid-job)."""
    now = now or datetime.now(timezone.utc)
    stuck = [
        job for job in queue.list_jobs(status=JobStatus.PROCESSING)
        if job.started_at is None or now - job.started_at > max_age
    ]
    if stuck:
        ids = ", ".join(job.id for job in stuck[:5])
        return False, f"{len(stuck)} job(s) stuck in processing: {ids}"
    return True, "No stuck jobs"


def check_disk_space(min_free_mb: int) -> tuple[bool, str]:
    total, used, free = shutil.disk_usage("/")
    free_mb = free // (1024 ** 2)
    if free_mb < min_free_mb:
        return False, f"Only {free_mb}MB free"
    return True, f"Disk {used / total * 100:.1f}% used"


def main():
    config = load_config()
    health = config.get("health", {})
    print(f"Health check: {datetime.now(timezone.utc).isoformat()}")
    alerts = []

    checks = [
        ("Last Run", lambda: check_last_run(
            Path(config["log_dir"]), timedelta(hours=health.get("heartbeat_max_age_hours", 1)))),
        ("Disk Space", lambda: check_disk_space(health.get("min_free_disk_mb", 500))),
    ]

    # Job state is only inspectable with a persistent store
    if config["database_url"]:
        engine = make_engine(config["database_url"])
        init_db(engine)
        queue = SqlJobStore(engine)
        checks.append(("Stuck Jobs", lambda: check_stuck_jobs(
            queue, timedelta(minutes=health.get("stuck_job_minutes", 30)))))

    for name, check_fn in checks:
        ok, msg = check_fn()
        status = "OK" if ok else "FAIL"
        print(f"  [{status}] {name}: {msg}")
        if not ok:
            alerts.append(f"{name}: {msg}")

    if alerts:
        print("Health check failures:\n\n" + "\n".join(alerts))
        return 1

    print("All checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
