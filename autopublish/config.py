"""Configuration: config.yaml merged over defaults, secrets from the environment (.env)."""

import copy
import os

import yaml
from dotenv import load_dotenv

load_dotenv(override=True)

DEFAULT_CONFIG = {
    "claude": {
        "model": "claude-sonnet-4-5-20250929",
        "max_tokens": 8192,
        "temperature": 0.7,
    },
    "content": {
        "default_word_count": 1500,
        "images_per_post": 1,
        "max_internal_links": 10,
    },
    "worker": {
        "poll_interval_seconds": 3,
        "batch_size": 5,
    },
    "scheduler": {
        "interval_seconds": 3600,
        "timezone": "UTC",
        "high_score_threshold": 70,
    },
    "crawler": {
        "default_delay_seconds": 0.5,
        "user_agent": "SEO-Content-Bot/1.0",
        "request_timeout": 10,
        "max_errors": 100,
    },
    "images": {
        "output_dir": "output/images",
    },
    "health": {
        "stuck_job_minutes": 30,
        "heartbeat_max_age_hours": 1,
        "min_free_disk_mb": 500,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path="config.yaml") -> dict:
    """Load YAML config over DEFAULT_CONFIG. A missing file means all defaults."""
    data = {}
    if path and os.path.exists(path):
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    config = _deep_merge(DEFAULT_CONFIG, data)

    config["database_url"] = os.getenv("DATABASE_URL", "") or config.get("database_url", "")
    config["log_level"] = os.getenv("LOG_LEVEL", "") or config.get("log_level", "INFO")
    config["log_dir"] = os.getenv("LOG_DIR", "") or config.get("log_dir", "logs")
    return config
