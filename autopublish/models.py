"""Records that flow through the pipeline: jobs, posts, sites, keywords, users, SEO scores."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Optional, Union
from uuid import uuid4

from autopublish.errors import InvalidTransitionError, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    FAILED = "failed"


class SiteType(str, Enum):
    WORDPRESS = "wordpress"
    SHOPIFY = "shopify"


class PostFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SubscriptionPlan(str, Enum):
    FREE = "free"
    PAID = "paid"


# Job lifecycle: pending -> processing -> completed | failed, nothing else.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def check_transition(current: JobStatus, new: JobStatus):
    if new == current:
        return
    if new not in ALLOWED_TRANSITIONS[JobStatus(current)]:
        raise InvalidTransitionError(
            f"Job status cannot move from {JobStatus(current).value} to {JobStatus(new).value}"
        )


# ---------------------------------------------------------------------------
# Job payloads, one class per job type
# ---------------------------------------------------------------------------

@dataclass
class ContentGenerationPayload:
    JOB_TYPE: ClassVar[str] = "content-generation"

    post_id: str
    user_id: str
    site_id: str
    keyword_id: Optional[str] = None
    word_count: int = 1500
    generate_images: bool = False
    publish_immediately: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PublishingPayload:
    JOB_TYPE: ClassVar[str] = "publishing"

    post_id: str
    user_id: str
    site_id: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScheduledPostPayload:
    JOB_TYPE: ClassVar[str] = "scheduled-post"

    site_id: str
    user_id: str

    def to_dict(self) -> dict:
        return asdict(self)


JobPayload = Union[ContentGenerationPayload, PublishingPayload, ScheduledPostPayload]

PAYLOAD_TYPES = {
    cls.JOB_TYPE: cls
    for cls in (ContentGenerationPayload, PublishingPayload, ScheduledPostPayload)
}


def payload_from_dict(job_type: str, data: dict) -> JobPayload:
    """Rebuild a typed payload from its stored form. Unknown keys are dropped."""
    cls = PAYLOAD_TYPES.get(job_type)
    if cls is None:
        raise ValidationError(f"Unknown job type: {job_type}")
    known = {f.name for f in fields(cls)}
    try:
        return cls(**{k: v for k, v in (data or {}).items() if k in known})
    except TypeError as e:
        raise ValidationError(f"Malformed {job_type} payload: {e}") from e


@dataclass
class Job:
    payload: JobPayload
    user_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    result: Optional[dict] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def type(self) -> str:
        return self.payload.JOB_TYPE


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------

@dataclass
class User:
    id: str = field(default_factory=new_id)
    subscription_plan: SubscriptionPlan = SubscriptionPlan.FREE
    ai_api_key: Optional[str] = None
    use_own_ai_key: bool = False

    def can_generate_images(self) -> bool:
        return self.subscription_plan == SubscriptionPlan.PAID or self.use_own_ai_key


@dataclass
class Site:
    user_id: str
    url: str
    type: SiteType
    name: str = ""
    credentials: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    is_active: bool = True
    auto_publish_enabled: bool = False
    post_frequency: PostFrequency = PostFrequency.DAILY
    daily_post_time: str = "09:00"
    last_auto_publish_at: Optional[datetime] = None
    last_crawled_at: Optional[datetime] = None
    crawl_data: Optional[dict] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def post_hour(self) -> int:
        """Hour component of daily_post_time ("HH:MM")."""
        try:
            hour = int(self.daily_post_time.split(":")[0])
        except (AttributeError, ValueError) as e:
            raise ValidationError(f"Invalid daily_post_time: {self.daily_post_time!r}") from e
        if not 0 <= hour <= 23:
            raise ValidationError(f"Invalid daily_post_time: {self.daily_post_time!r}")
        return hour


@dataclass
class Keyword:
    user_id: str
    site_id: Optional[str]
    keyword: str
    overall_score: Optional[int] = None
    is_pinned: bool = False
    id: str = field(default_factory=new_id)


@dataclass
class Post:
    user_id: str
    site_id: str
    title: str = ""
    content: str = ""
    keyword_id: Optional[str] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    headings: list[dict] = field(default_factory=list)  # [{"level": 1, "text": "..."}]
    images: list[dict] = field(default_factory=list)  # [{"url": "...", "alt_text": "..."}]
    status: PostStatus = PostStatus.DRAFT
    scheduled_for: Optional[datetime] = None
    published_at: Optional[datetime] = None
    external_post_id: Optional[str] = None
    external_url: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def check_invariants(self):
        """published_at and external_post_id are set iff the post is published."""
        set_fields = [self.published_at is not None, bool(self.external_post_id)]
        if self.status == PostStatus.PUBLISHED:
            consistent = all(set_fields)
        else:
            consistent = not any(set_fields)
        if not consistent:
            raise ValidationError(
                f"Post {self.id}: status={PostStatus(self.status).value} is inconsistent "
                f"with published_at/external_post_id"
            )


@dataclass
class SeoScore:
    post_id: str
    readability_score: int
    readability_grade: str
    meta_title_length: int
    meta_description_length: int
    heading_structure_valid: bool
    keyword_density: float
    alt_tags_coverage: int
    overall_seo_score: int
    validation_errors: list[dict] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
