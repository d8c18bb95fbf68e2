"""End-to-end tests through the Pipeline boundary."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from autopublish.config import DEFAULT_CONFIG, load_config
from autopublish.errors import ValidationError
from autopublish.image_generator import GeneratedImage
from autopublish.job_store import InMemoryJobStore, InMemoryStorage
from autopublish.models import ContentGenerationPayload, JobStatus, Post, PostStatus
from autopublish.pipeline import Pipeline
from autopublish.publishers import PublishResult
from autopublish.site_crawler import CrawlResult
from autopublish.sql_store import SqlJobStore, SqlStorage


@pytest.fixture
def publisher():
    pub = MagicMock()
    pub.publish.return_value = PublishResult(external_id="321", url="https://blog.example.com/coffee-brewing-guide")
    return pub


@pytest.fixture
def pipeline(storage, queue, content_generator, publisher):
    images = MagicMock()
    images.generate.return_value = GeneratedImage(url="file:///tmp/f.png", alt_text="Featured image")
    return Pipeline(
        storage, queue, content_generator, images,
        config=DEFAULT_CONFIG, publisher_factory=lambda site: publisher,
    )


class TestAutoPublishFlow:
    def test_schedule_to_published(self, pipeline, storage, queue, site, keyword, publisher):
        """scheduled-post -> content-generation -> publishing, one tick each."""
        jobs = pipeline.scheduler.tick(datetime(2026, 3, 3, 9, 5, tzinfo=timezone.utc))
        assert len(jobs) == 1

        assert pipeline.worker.tick() == 1
        scheduled = pipeline.get_job(jobs[0].id)
        assert scheduled.status == JobStatus.COMPLETED
        post_id = scheduled.result["post_id"]
        assert pipeline.get_post(post_id).status == PostStatus.DRAFT

        assert pipeline.worker.tick() == 1
        post = pipeline.get_post(post_id)
        assert post.status == PostStatus.SCHEDULED
        assert post.images == [{"url": "file:///tmp/f.png", "alt_text": "Featured image"}]

        assert pipeline.worker.tick() == 1
        post = pipeline.get_post(post_id)
        assert post.status == PostStatus.PUBLISHED
        assert post.external_post_id == "321"
        assert post.published_at is not None

        assert all(j.status == JobStatus.COMPLETED for j in queue.list_jobs())
        assert storage.get_site(site.id).last_auto_publish_at is not None
        assert publisher.publish.call_args.args[0] == "Coffee Brewing Guide"

    def test_publish_failure_surfaces_on_job_and_post(self, pipeline, draft_post, publisher):
        publisher.publish.side_effect = RuntimeError("WordPress API error (500)")
        job = pipeline.create_job(ContentGenerationPayload(
            post_id=draft_post.id, user_id="user-1", site_id="site-1", keyword_id="kw-1",
            publish_immediately=True,
        ), user_id="user-1")

        pipeline.worker.tick()
        pipeline.worker.tick()

        assert pipeline.get_job(job.id).status == JobStatus.COMPLETED
        failed = [j for j in pipeline.queue.list_jobs() if j.status == JobStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].type == "publishing"
        assert failed[0].error == "WordPress API error (500)"
        assert pipeline.get_post(draft_post.id).status == PostStatus.FAILED

    def test_create_post(self, pipeline, site):
        post = pipeline.create_post(Post(user_id="user-1", site_id=site.id, title="Manual"))
        assert pipeline.get_post(post.id).title == "Manual"


class TestCrawlSite:
    def test_stores_crawl_data(self, storage, queue, content_generator, site):
        result = CrawlResult(
            start_url=site.url, total_pages=1, crawled_pages=[], robots=None, sitemaps=[],
            site_structure={}, errors=[], completed_at=datetime(2026, 3, 3, tzinfo=timezone.utc),
        )
        crawler = MagicMock()
        crawler.return_value.crawl.return_value = result
        pipeline = Pipeline(storage, queue, content_generator, config=DEFAULT_CONFIG, crawler_factory=crawler)

        assert pipeline.crawl_site(site.id, preset="deep") is result

        args, kwargs = crawler.call_args
        assert args == (site.url,)
        assert (kwargs["max_depth"], kwargs["max_pages"]) == (4, 100)
        assert kwargs["delay"] == 0.5
        stored = storage.get_site(site.id)
        assert stored.crawl_data["total_pages"] == 1
        assert stored.last_crawled_at is not None

    def test_unknown_site_or_preset(self, storage, queue, content_generator, site):
        pipeline = Pipeline(storage, queue, content_generator, config=DEFAULT_CONFIG)
        with pytest.raises(ValidationError):
            pipeline.crawl_site("ghost")
        with pytest.raises(ValidationError):
            pipeline.crawl_site(site.id, preset="huge")


class TestFromConfig:
    def _config(self, tmp_path, **extra):
        config = load_config(str(tmp_path / "missing.yaml"))
        config["images"]["output_dir"] = str(tmp_path / "images")
        config.update(extra)
        return config

    def test_in_memory_without_database_url(self, tmp_path):
        pipeline = Pipeline.from_config(self._config(tmp_path, database_url=""))
        assert isinstance(pipeline.storage, InMemoryStorage)
        assert isinstance(pipeline.queue, InMemoryJobStore)

    def test_sql_with_database_url(self, tmp_path):
        pipeline = Pipeline.from_config(self._config(tmp_path, database_url="sqlite://"))
        assert isinstance(pipeline.storage, SqlStorage)
        assert isinstance(pipeline.queue, SqlJobStore)
        assert pipeline.queue.list_jobs() == []

    def test_start_and_stop(self, tmp_path):
        config = self._config(tmp_path, database_url="")
        config["worker"]["poll_interval_seconds"] = 0.01
        pipeline = Pipeline.from_config(config)
        pipeline.start()
        pipeline.stop()
        assert pipeline.worker.running is False
