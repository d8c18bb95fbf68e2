"""Wiring and boundary: builds stores, capabilities, worker and scheduler from config."""

import logging
from typing import Optional

from autopublish.config import load_config
from autopublish.content_generator import ContentGenerator
from autopublish.errors import ValidationError
from autopublish.handlers import ContentGenerationHandler, PublishingHandler, ScheduledPostHandler
from autopublish.image_generator import ImageGenerator
from autopublish.job_store import InMemoryJobStore, InMemoryStorage, JobQueue, Storage
from autopublish.models import Job, JobPayload, Post, utcnow
from autopublish.publishers import get_publisher
from autopublish.scheduler import AutoPublishScheduler
from autopublish.site_crawler import CRAWL_PRESETS, CrawlResult, SiteCrawler
from autopublish.sql_store import SqlJobStore, SqlStorage, init_db, make_engine
from autopublish.worker import Worker

log = logging.getLogger(__name__)


class Pipeline:
    """Entry point for everything outside the pipeline: create work, read results, run loops."""

    def __init__(
        self,
        storage: Storage,
        queue: JobQueue,
        content_generator: ContentGenerator,
        image_generator: Optional[ImageGenerator] = None,
        config: dict = None,
        publisher_factory=get_publisher,
        crawler_factory=SiteCrawler,
    ):
        self.config = config or {}
        self.storage = storage
        self.queue = queue
        self.crawler_factory = crawler_factory

        content_cfg = self.config.get("content", {})
        self.scheduler = AutoPublishScheduler.from_config(self.config, storage, queue)
        handlers = {
            ContentGenerationHandler.payload_type: ContentGenerationHandler(
                storage,
                queue,
                content_generator,
                image_generator,
                images_per_post=content_cfg.get("images_per_post", 1),
                max_internal_links=content_cfg.get("max_internal_links", 10),
            ),
            PublishingHandler.payload_type: PublishingHandler(storage, publisher_factory),
            ScheduledPostHandler.payload_type: ScheduledPostHandler(self.scheduler),
        }
        self.worker = Worker.from_config(self.config, queue, handlers)

    @classmethod
    def from_config(cls, config: dict = None, config_path="config.yaml") -> "Pipeline":
        """SQL stores when DATABASE_URL is set, otherwise in-memory."""
        config = config if config is not None else load_config(config_path)
        database_url = config.get("database_url")
        if database_url:
            engine = make_engine(database_url)
            init_db(engine)
            storage, queue = SqlStorage(engine), SqlJobStore(engine)
            log.info("Using SQL storage")
        else:
            storage, queue = InMemoryStorage(), InMemoryJobStore()
            log.warning("DATABASE_URL not set, using in-memory storage")

        return cls(
            storage,
            queue,
            ContentGenerator.from_config(config),
            ImageGenerator.from_config(config),
            config=config,
        )

    def create_post(self, post: Post) -> Post:
        return self.storage.create_post(post)

    def create_job(self, payload: JobPayload, user_id: Optional[str] = None) -> Job:
        return self.queue.create_job(payload, user_id=user_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.queue.get_job(job_id)

    def get_post(self, post_id: str) -> Optional[Post]:
        return self.storage.get_post(post_id)

    def crawl_site(self, site_id: str, preset: str = "quick") -> CrawlResult:
        """Crawl a site and store the result as its crawl_data."""
        site = self.storage.get_site(site_id)
        if site is None:
            raise ValidationError(f"Site not found: {site_id}")
        if preset not in CRAWL_PRESETS:
            raise ValidationError(f"Unknown crawl preset: {preset}")

        crawler_cfg = self.config.get("crawler", {})
        max_depth, max_pages = CRAWL_PRESETS[preset]
        crawler = self.crawler_factory(
            site.url,
            max_depth=max_depth,
            max_pages=max_pages,
            delay=crawler_cfg.get("default_delay_seconds", 0.5),
            user_agent=crawler_cfg.get("user_agent", "SEO-Content-Bot/1.0"),
            timeout=crawler_cfg.get("request_timeout", 10),
            max_errors=crawler_cfg.get("max_errors", 100),
        )
        result = crawler.crawl()
        self.storage.update_site(site_id, crawl_data=result.to_dict(), last_crawled_at=utcnow())
        return result

    def start(self):
        self.worker.start()
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()
        self.worker.stop()
