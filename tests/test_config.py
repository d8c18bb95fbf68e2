"""Tests for configuration loading and structured logging."""

import json
import logging
import os
import sys
from unittest.mock import patch

from autopublish.config import DEFAULT_CONFIG, load_config
from autopublish.utils.logger import JSONFormatter


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "nope.yaml"))
        assert config["worker"] == DEFAULT_CONFIG["worker"]
        assert config["scheduler"]["timezone"] == "UTC"

    def test_file_values_merge_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("worker:\n  batch_size: 2\nscheduler:\n  timezone: Europe/Berlin\n")

        config = load_config(str(path))

        assert config["worker"]["batch_size"] == 2
        assert config["worker"]["poll_interval_seconds"] == 3
        assert config["scheduler"]["timezone"] == "Europe/Berlin"
        assert config["scheduler"]["interval_seconds"] == 3600

    def test_defaults_are_not_mutated(self, tmp_path):
        config = load_config(str(tmp_path / "nope.yaml"))
        config["worker"]["batch_size"] = 99
        assert DEFAULT_CONFIG["worker"]["batch_size"] == 5

    def test_environment(self, tmp_path):
        env = {"DATABASE_URL": "sqlite:///jobs.db", "LOG_LEVEL": "DEBUG", "LOG_DIR": "/var/log/autopublish"}
        with patch.dict(os.environ, env):
            config = load_config(str(tmp_path / "nope.yaml"))
        assert config["database_url"] == "sqlite:///jobs.db"
        assert config["log_level"] == "DEBUG"
        assert config["log_dir"] == "/var/log/autopublish"


class TestJSONFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("autopublish.worker", logging.INFO, __file__, 1, "Job done", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extra_fields_are_emitted(self):
        entry = json.loads(JSONFormatter().format(self._record(job_id="j1", job_type="publishing", status_code=201)))
        assert entry["message"] == "Job done"
        assert entry["level"] == "INFO"
        assert entry["job_id"] == "j1"
        assert entry["job_type"] == "publishing"
        assert entry["status_code"] == 201
        assert "site_id" not in entry

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "autopublish.worker", logging.ERROR, __file__, 1, "failed", None, sys.exc_info(),
            )
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]
