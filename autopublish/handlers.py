"""Job handlers: one per payload type. Each returns the dict stored as the job's result."""

import logging

from autopublish.content_generator import ContentGenerator, build_internal_links_prompt
from autopublish.errors import SchedulingSkip, ValidationError
from autopublish.image_generator import ImageGenerator
from autopublish.job_store import JobQueue, Storage
from autopublish.models import (
    ContentGenerationPayload,
    PostStatus,
    PublishingPayload,
    ScheduledPostPayload,
    SeoScore,
    utcnow,
)
from autopublish.publishers import get_publisher
from autopublish.seo_validator import validate_seo

log = logging.getLogger(__name__)

GENERIC_TOPIC = "general topic"

# Post fields written by a successful generation
GENERATED_FIELDS = ("title", "content", "meta_title", "meta_description", "headings", "images", "scheduled_for")


class ContentGenerationHandler:
    """Generates content for a draft post, scores it, and optionally queues publishing."""

    payload_type = ContentGenerationPayload

    def __init__(
        self,
        storage: Storage,
        queue: JobQueue,
        content_generator: ContentGenerator,
        image_generator: ImageGenerator = None,
        images_per_post: int = 1,
        max_internal_links: int = 10,
    ):
        self.storage = storage
        self.queue = queue
        self.content_generator = content_generator
        self.image_generator = image_generator
        self.images_per_post = images_per_post
        self.max_internal_links = max_internal_links

    def internal_links(self, site_id: str, post_id: str) -> list[dict]:
        """Published sibling posts usable as link targets."""
        site = self.storage.get_site(site_id)
        site_url = site.url.rstrip("/") if site else ""
        links = []
        for post in self.storage.get_published_posts(site_id, exclude_post_id=post_id):
            if not post.external_post_id:
                continue
            links.append({
                "title": post.title,
                "url": post.external_url or f"{site_url}/?p={post.external_post_id}",
                "headings": [h.get("text", "") for h in post.headings or []],
            })
            if len(links) >= self.max_internal_links:
                break
        return links

    def __call__(self, payload: ContentGenerationPayload) -> dict:
        post = self.storage.get_post(payload.post_id)
        if post is None:
            raise ValidationError(f"Post not found: {payload.post_id}")

        try:
            user = self.storage.get_user(payload.user_id)
            if user is None:
                raise ValidationError(f"User not found: {payload.user_id}")
            return self._generate(payload, user)
        except Exception:
            # Back to the pre-generation fields; only the status changes
            restored = {name: getattr(post, name) for name in GENERATED_FIELDS}
            self.storage.update_post(payload.post_id, status=PostStatus.FAILED, **restored)
            raise

    def _generate(self, payload: ContentGenerationPayload, user) -> dict:
        keyword_text = GENERIC_TOPIC
        if payload.keyword_id:
            keyword = self.storage.get_keyword(payload.keyword_id)
            if keyword is None:
                raise ValidationError(f"Keyword not found: {payload.keyword_id}")
            keyword_text = keyword.keyword

        link_context = build_internal_links_prompt(self.internal_links(payload.site_id, payload.post_id))
        api_key = user.ai_api_key if user.use_own_ai_key else None
        content = self.content_generator.generate(
            keyword_text, payload.word_count, link_context=link_context, api_key=api_key
        )

        images = []
        if payload.generate_images and self.image_generator and user.can_generate_images():
            for _ in range(self.images_per_post):
                image = self.image_generator.generate(f"Featured image for {keyword_text}")
                images.append(image.to_dict())
        elif payload.generate_images:
            log.info(f"Image generation not available for user {user.id}")

        seo = validate_seo(
            title=content.title,
            meta_title=content.meta_title,
            meta_description=content.meta_description,
            content=content.content,
            headings=content.headings,
            images=images,
            keyword=keyword_text,
        )

        self.storage.create_seo_score(SeoScore(post_id=payload.post_id, **seo.to_dict()))
        self.storage.update_post(
            payload.post_id,
            title=content.title,
            content=content.content,
            meta_title=content.meta_title,
            meta_description=content.meta_description,
            headings=content.headings,
            images=images,
            status=PostStatus.SCHEDULED if payload.publish_immediately else PostStatus.DRAFT,
            scheduled_for=utcnow() if payload.publish_immediately else None,
        )

        if payload.publish_immediately:
            self.queue.enqueue(
                PublishingPayload(post_id=payload.post_id, user_id=payload.user_id, site_id=payload.site_id),
                user_id=payload.user_id,
            )

        log.info(
            f"Generated post {payload.post_id} (SEO {seo.overall_seo_score})",
            extra={"site_id": payload.site_id},
        )
        return {"post_id": payload.post_id, "status": "completed", "seo_score": seo.overall_seo_score}


class PublishingHandler:
    """Pushes a post to its site's platform and records the external id."""

    payload_type = PublishingPayload

    def __init__(self, storage: Storage, publisher_factory=get_publisher):
        self.storage = storage
        self.publisher_factory = publisher_factory

    def __call__(self, payload: PublishingPayload) -> dict:
        post = self.storage.get_post(payload.post_id)
        if post is None:
            raise ValidationError(f"Post not found: {payload.post_id}")
        site = self.storage.get_site(payload.site_id)
        if site is None:
            raise ValidationError(f"Site not found: {payload.site_id}")

        try:
            publisher = self.publisher_factory(site)
            result = publisher.publish(
                post.title,
                post.content,
                meta_title=post.meta_title,
                meta_description=post.meta_description,
                images=post.images,
            )
        except Exception:
            self.storage.update_post(
                payload.post_id,
                status=PostStatus.FAILED,
                published_at=None,
                external_post_id=None,
                external_url=None,
            )
            raise

        self.storage.update_post(
            payload.post_id,
            status=PostStatus.PUBLISHED,
            published_at=utcnow(),
            external_post_id=result.external_id,
            external_url=result.url,
        )
        log.info(f"Published post {payload.post_id} -> {result.url}", extra={"site_id": site.id})
        return {
            "post_id": payload.post_id,
            "external_post_id": result.external_id,
            "url": result.url,
            "status": "published",
        }


class ScheduledPostHandler:
    """Runs one auto-publish evaluation for a site."""

    payload_type = ScheduledPostPayload

    def __init__(self, scheduler):
        self.scheduler = scheduler

    def __call__(self, payload: ScheduledPostPayload) -> dict:
        outcome = self.scheduler.evaluate(payload.site_id, payload.user_id)
        if isinstance(outcome, SchedulingSkip):
            log.info(f"Auto-publish skipped for site {payload.site_id}: {outcome.reason}", extra={"site_id": payload.site_id})
        return outcome.to_dict()
