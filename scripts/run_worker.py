#!/usr/bin/env python3
"""Run the job worker and the auto-publish scheduler until interrupted."""

import sys
import time
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from autopublish.config import load_config
from autopublish.pipeline import Pipeline
from autopublish.utils.logger import setup_logging

HEARTBEAT_SECONDS = 60


def write_last_run(log_dir: Path, success: bool, message: str = ""):
    """Write a last_run.txt for health check monitoring."""
    last_run_path = log_dir / "last_run.txt"
    last_run_path.parent.mkdir(parents=True, exist_ok=True)
    status = "SUCCESS" if success else "FAILURE"
    timestamp = datetime.now(timezone.utc).isoformat()
    last_run_path.write_text(f"{status}\n{timestamp}\n{message}\n")


def main():
    config = load_config(str(PROJECT_ROOT / "config.yaml"))
    setup_logging(log_dir=config["log_dir"], level=config["log_level"])
    log_dir = Path(config["log_dir"])

    pipeline = Pipeline.from_config(config)
    pipeline.start()
    print("Worker and scheduler running. Ctrl+C to stop.")

    try:
        while True:
            write_last_run(log_dir, success=pipeline.worker.running, message="heartbeat")
            time.sleep(HEARTBEAT_SECONDS)
    except KeyboardInterrupt:
        print("Stopping...")
    except Exception as e:
        print(f"FAILED: {e}", file=sys.stderr)
        write_last_run(log_dir, success=False, message=str(e))
        raise
    finally:
        pipeline.stop()


if __name__ == "__main__":
    main()
