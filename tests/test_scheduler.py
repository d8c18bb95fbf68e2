"""Tests for the auto-publish scheduler: due checks, period gates, keyword choice."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from autopublish.errors import SchedulingSkip
from autopublish.models import Keyword, PostFrequency, ScheduledPostPayload, Site, SiteType
from autopublish.scheduler import AutoPublishResult, AutoPublishScheduler, period_start


UTC = timezone.utc
MONDAY_9AM = datetime(2026, 3, 2, 9, 15, tzinfo=UTC)
TUESDAY_9AM = datetime(2026, 3, 3, 9, 15, tzinfo=UTC)
FIRST_OF_MONTH_9AM = datetime(2026, 3, 1, 9, 15, tzinfo=UTC)  # a Sunday


@pytest.fixture
def scheduler(storage, queue):
    return AutoPublishScheduler(storage, queue, rng=random.Random(7))


def _site(storage, **overrides):
    data = dict(
        id="site-1", user_id="user-1", url="https://blog.example.com", type=SiteType.WORDPRESS,
        auto_publish_enabled=True,
    )
    data.update(overrides)
    return storage.create_site(Site(**data))


class TestPeriodStart:
    def test_daily(self):
        assert period_start(PostFrequency.DAILY, TUESDAY_9AM) == datetime(2026, 3, 3, tzinfo=UTC)

    def test_weekly_is_monday_midnight(self):
        assert period_start(PostFrequency.WEEKLY, TUESDAY_9AM) == datetime(2026, 3, 2, tzinfo=UTC)
        assert period_start(PostFrequency.WEEKLY, MONDAY_9AM) == datetime(2026, 3, 2, tzinfo=UTC)

    def test_monthly(self):
        assert period_start(PostFrequency.MONTHLY, TUESDAY_9AM) == datetime(2026, 3, 1, tzinfo=UTC)


class TestIsDue:
    def test_daily_at_post_hour(self, scheduler, storage):
        site = _site(storage)
        assert scheduler.is_due(site, TUESDAY_9AM) is True
        assert scheduler.is_due(site, TUESDAY_9AM + timedelta(hours=1)) is False

    def test_custom_post_time(self, scheduler, storage):
        site = _site(storage, daily_post_time="17:30")
        assert scheduler.is_due(site, datetime(2026, 3, 3, 17, 0, tzinfo=UTC)) is True
        assert scheduler.is_due(site, TUESDAY_9AM) is False

    def test_weekly_only_on_monday(self, scheduler, storage):
        site = _site(storage, post_frequency=PostFrequency.WEEKLY)
        assert scheduler.is_due(site, MONDAY_9AM) is True
        assert scheduler.is_due(site, TUESDAY_9AM) is False

    def test_monthly_only_on_the_first(self, scheduler, storage):
        site = _site(storage, post_frequency=PostFrequency.MONTHLY)
        assert scheduler.is_due(site, FIRST_OF_MONTH_9AM) is True
        assert scheduler.is_due(site, MONDAY_9AM) is False

    def test_disabled_site_is_never_due(self, scheduler, storage):
        site = _site(storage, auto_publish_enabled=False)
        assert scheduler.is_due(site, TUESDAY_9AM) is False

    def test_already_published_today(self, scheduler, storage):
        site = _site(storage, last_auto_publish_at=datetime(2026, 3, 3, 0, 30, tzinfo=UTC))
        assert scheduler.is_due(site, TUESDAY_9AM) is False

    def test_published_yesterday_is_due(self, scheduler, storage):
        site = _site(storage, last_auto_publish_at=datetime(2026, 3, 2, 23, 59, tzinfo=UTC))
        assert scheduler.is_due(site, TUESDAY_9AM) is True

    def test_weekly_boundary_is_monday_midnight(self, scheduler, storage):
        before = _site(storage, post_frequency=PostFrequency.WEEKLY,
                       last_auto_publish_at=datetime(2026, 3, 1, 23, 59, tzinfo=UTC))
        assert scheduler.is_due(before, MONDAY_9AM) is True

        at = _site(storage, id="site-2", post_frequency=PostFrequency.WEEKLY,
                   last_auto_publish_at=datetime(2026, 3, 2, 0, 0, tzinfo=UTC))
        assert scheduler.is_due(at, MONDAY_9AM) is False

    def test_timezone_is_applied(self, storage, queue):
        """09:00 in New York is 14:00 UTC in early March."""
        scheduler = AutoPublishScheduler(storage, queue, timezone="America/New_York")
        site = _site(storage)
        assert scheduler.is_due(site, datetime(2026, 3, 3, 14, 5, tzinfo=UTC)) is True
        assert scheduler.is_due(site, TUESDAY_9AM) is False


class TestTick:
    def test_queues_only_due_sites(self, scheduler, storage, queue):
        _site(storage)
        _site(storage, id="site-2", daily_post_time="18:00")
        _site(storage, id="site-3", auto_publish_enabled=False)

        jobs = scheduler.tick(TUESDAY_9AM)

        assert len(jobs) == 1
        assert jobs[0].payload == ScheduledPostPayload(site_id="site-1", user_id="user-1")
        assert jobs[0].user_id == "user-1"
        assert len(queue.list_jobs()) == 1

    def test_bad_post_time_is_skipped(self, scheduler, storage):
        _site(storage, daily_post_time="soon")
        _site(storage, id="site-2")
        jobs = scheduler.tick(TUESDAY_9AM)
        assert [j.payload.site_id for j in jobs] == ["site-2"]


class TestEvaluate:
    def test_disabled_or_missing_site(self, scheduler, storage):
        _site(storage, auto_publish_enabled=False)
        assert scheduler.evaluate("site-1", "user-1", TUESDAY_9AM) == SchedulingSkip("Auto-publish disabled")
        assert scheduler.evaluate("ghost", "user-1", TUESDAY_9AM).reason == "Auto-publish disabled"

    @pytest.mark.parametrize("frequency,reason", [
        (PostFrequency.DAILY, "Already published today"),
        (PostFrequency.WEEKLY, "Already published this week"),
        (PostFrequency.MONTHLY, "Already published this month"),
    ])
    def test_already_published_in_period(self, scheduler, storage, frequency, reason):
        _site(storage, post_frequency=frequency, last_auto_publish_at=TUESDAY_9AM - timedelta(hours=1))
        outcome = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)
        assert outcome == SchedulingSkip(reason)
        assert outcome.to_dict() == {"skipped": True, "reason": reason}

    def test_no_keywords_changes_nothing(self, scheduler, storage, queue):
        _site(storage)
        outcome = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)

        assert outcome == SchedulingSkip("No keywords available")
        assert storage.get_site("site-1").last_auto_publish_at is None
        assert queue.list_jobs() == []
        assert storage.posts == {}

    def test_prefers_high_score_keywords(self, scheduler, storage, queue):
        _site(storage)
        storage.create_keyword(Keyword(id="k-high", user_id="user-1", site_id="site-1", keyword="espresso", overall_score=90))
        storage.create_keyword(Keyword(id="k-edge", user_id="user-1", site_id="site-1", keyword="latte", overall_score=70))
        storage.create_keyword(Keyword(id="k-none", user_id="user-1", site_id="site-1", keyword="mocha"))

        for _ in range(5):
            # reset the period gate between draws
            storage.sites["site-1"].last_auto_publish_at = None
            outcome = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)
            assert outcome.keyword == "espresso"

    def test_falls_back_to_all_keywords(self, scheduler, storage):
        _site(storage)
        storage.create_keyword(Keyword(id="k1", user_id="user-1", site_id="site-1", keyword="latte", overall_score=70))
        storage.create_keyword(Keyword(id="k2", user_id="user-1", site_id="site-1", keyword="mocha"))

        outcome = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)
        assert outcome.keyword in ("latte", "mocha")

    def test_creates_draft_and_generation_job(self, storage, queue):
        scheduler = AutoPublishScheduler(storage, queue, word_count=1200)
        _site(storage)
        storage.create_keyword(Keyword(id="k1", user_id="user-1", site_id="site-1", keyword="cold brew", overall_score=80))

        outcome = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)

        assert isinstance(outcome, AutoPublishResult)
        post = storage.get_post(outcome.post_id)
        assert post.title == "Auto-generated: cold brew"
        assert post.content == ""
        assert post.keyword_id == "k1"

        job = queue.get_job(outcome.job_id)
        assert job.type == "content-generation"
        assert job.payload.word_count == 1200
        assert job.payload.generate_images is True
        assert job.payload.publish_immediately is True

        assert storage.get_site("site-1").last_auto_publish_at == TUESDAY_9AM

    def test_second_evaluation_same_day_is_skipped(self, scheduler, storage, queue):
        _site(storage)
        storage.create_keyword(Keyword(id="k1", user_id="user-1", site_id="site-1", keyword="cold brew"))

        first = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM)
        second = scheduler.evaluate("site-1", "user-1", TUESDAY_9AM + timedelta(minutes=20))

        assert isinstance(first, AutoPublishResult)
        assert second == SchedulingSkip("Already published today")
        assert len(queue.list_jobs()) == 1


class TestThread:
    def test_start_twice_and_stop(self, storage, queue):
        scheduler = AutoPublishScheduler(storage, queue, interval=60)
        scheduler.start()
        scheduler.start()
        scheduler.stop(timeout=1)
        assert scheduler._thread is None
