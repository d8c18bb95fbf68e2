"""Recurring auto-publish scheduler: decides when a site is due and queues the work."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from autopublish.errors import SchedulingSkip, ValidationError
from autopublish.job_store import JobQueue, Storage
from autopublish.models import (
    ContentGenerationPayload,
    Job,
    Post,
    PostFrequency,
    PostStatus,
    ScheduledPostPayload,
    Site,
)

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3600
HIGH_SCORE_THRESHOLD = 70


@dataclass
class AutoPublishResult:
    post_id: str
    job_id: str
    keyword: str

    def to_dict(self) -> dict:
        return asdict(self)


def period_start(frequency: PostFrequency, now: datetime) -> datetime:
    """Start of the current publishing period (local midnight, Monday, or the 1st)."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    frequency = PostFrequency(frequency)
    if frequency == PostFrequency.WEEKLY:
        return midnight - timedelta(days=now.weekday())
    if frequency == PostFrequency.MONTHLY:
        return midnight.replace(day=1)
    return midnight


def already_published(site: Site, now: datetime) -> Optional[str]:
    """Skip reason when the site already published in the current period, else None."""
    if site.last_auto_publish_at is None:
        return None
    frequency = PostFrequency(site.post_frequency or PostFrequency.DAILY)
    last = site.last_auto_publish_at.astimezone(now.tzinfo)
    if last < period_start(frequency, now):
        return None
    return {
        PostFrequency.DAILY: "Already published today",
        PostFrequency.WEEKLY: "Already published this week",
        PostFrequency.MONTHLY: "Already published this month",
    }[frequency]


class AutoPublishScheduler:
    """Hourly tick over auto-publish sites, plus the per-site evaluation run by the worker."""

    def __init__(
        self,
        storage: Storage,
        queue: JobQueue,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        timezone: str = "UTC",
        word_count: int = 1500,
        high_score_threshold: int = HIGH_SCORE_THRESHOLD,
        rng: random.Random = None,
    ):
        self.storage = storage
        self.queue = queue
        self.interval = interval
        self.tz = ZoneInfo(timezone)
        self.word_count = word_count
        self.high_score_threshold = high_score_threshold
        self.rng = rng or random.Random()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: dict, storage: Storage, queue: JobQueue) -> "AutoPublishScheduler":
        sched = config.get("scheduler", {})
        return cls(
            storage,
            queue,
            interval=sched.get("interval_seconds", DEFAULT_INTERVAL_SECONDS),
            timezone=sched.get("timezone", "UTC"),
            word_count=config.get("content", {}).get("default_word_count", 1500),
            high_score_threshold=sched.get("high_score_threshold", HIGH_SCORE_THRESHOLD),
        )

    def _now(self, now: Optional[datetime] = None) -> datetime:
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.tz)
        return now.astimezone(self.tz)

    def is_due(self, site: Site, now: Optional[datetime] = None) -> bool:
        now = self._now(now)
        if not site.auto_publish_enabled:
            return False
        if now.hour != site.post_hour:
            return False

        frequency = PostFrequency(site.post_frequency or PostFrequency.DAILY)
        if frequency == PostFrequency.WEEKLY and now.weekday() != 0:
            return False
        if frequency == PostFrequency.MONTHLY and now.day != 1:
            return False

        return already_published(site, now) is None

    def tick(self, now: Optional[datetime] = None) -> list[Job]:
        """Queue a scheduled-post job for every site that is due right now."""
        now = self._now(now)
        jobs = []
        for site in self.storage.list_sites(auto_publish_only=True):
            try:
                due = self.is_due(site, now)
            except ValidationError as e:
                log.warning(f"Skipping site {site.id}: {e}", extra={"site_id": site.id})
                continue
            if not due:
                continue
            job = self.queue.enqueue(ScheduledPostPayload(site_id=site.id, user_id=site.user_id), user_id=site.user_id)
            log.info(f"Scheduled auto-publish for site {site.id}", extra={"site_id": site.id, "job_id": job.id})
            jobs.append(job)
        return jobs

    def evaluate(
        self, site_id: str, user_id: str, now: Optional[datetime] = None
    ) -> Union[AutoPublishResult, SchedulingSkip]:
        """Re-check the gates, pick a keyword, and queue content generation for a fresh draft."""
        now = self._now(now)
        site = self.storage.get_site(site_id)
        if site is None or not site.auto_publish_enabled:
            return SchedulingSkip("Auto-publish disabled")

        reason = already_published(site, now)
        if reason:
            return SchedulingSkip(reason)

        keywords = self.storage.get_keywords_for_site(site_id)
        preferred = [k for k in keywords if k.overall_score and k.overall_score > self.high_score_threshold]
        candidates = preferred or keywords
        if not candidates:
            return SchedulingSkip("No keywords available")

        keyword = self.rng.choice(candidates)
        post = self.storage.create_post(Post(
            user_id=user_id,
            site_id=site_id,
            keyword_id=keyword.id,
            title=f"Auto-generated: {keyword.keyword}",
            content="",
            status=PostStatus.DRAFT,
        ))
        job = self.queue.enqueue(
            ContentGenerationPayload(
                post_id=post.id,
                user_id=user_id,
                site_id=site_id,
                keyword_id=keyword.id,
                word_count=self.word_count,
                generate_images=True,
                publish_immediately=True,
            ),
            user_id=user_id,
        )
        # Set before generation completes; a failed generation does not reopen the period
        self.storage.update_site(site_id, last_auto_publish_at=now)

        log.info(
            f"Auto-publish queued '{keyword.keyword}' for site {site_id}",
            extra={"site_id": site_id, "job_id": job.id},
        )
        return AutoPublishResult(post_id=post.id, job_id=job.id, keyword=keyword.keyword)

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception:
                log.exception("Scheduler tick failed")

    def start(self):
        if self._thread and self._thread.is_alive():
            log.warning("Scheduler already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="autopublish-scheduler", daemon=True)
        self._thread.start()
        log.info(f"Scheduler started (interval {self.interval}s, timezone {self.tz.key})")

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        log.info("Scheduler stopped")
