"""Relational backend for the job queue and record storage (SQLAlchemy 2.0 ORM).

The claim step is a single conditional UPDATE (``WHERE status = 'pending'``), so
several worker processes can share one jobs table without running a job twice.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from autopublish.errors import InvalidTransitionError, ValidationError
from autopublish.job_store import JobQueue, Storage, apply_updates, check_site_update
from autopublish.models import (
    Job,
    JobPayload,
    JobStatus,
    Keyword,
    Post,
    PostFrequency,
    PostStatus,
    SeoScore,
    Site,
    SiteType,
    SubscriptionPlan,
    User,
    check_transition,
    new_id,
    payload_from_dict,
    utcnow,
)

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_plan: Mapped[str] = mapped_column(String(20), default="free")
    ai_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    use_own_ai_key: Mapped[bool] = mapped_column(Boolean, default=False)


class SiteRow(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    credentials: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_publish_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    post_frequency: Mapped[str] = mapped_column(String(20), default="daily")
    daily_post_time: Mapped[str] = mapped_column(String(5), default="09:00")
    last_auto_publish_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_crawled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    crawl_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class KeywordRow(Base):
    __tablename__ = "keywords"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    site_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("sites.id"), index=True, nullable=True)
    keyword: Mapped[str] = mapped_column(Text, nullable=False)
    overall_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)


class PostRow(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    site_id: Mapped[str] = mapped_column(String(36), ForeignKey("sites.id"), index=True)
    keyword_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("keywords.id"), nullable=True)
    title: Mapped[str] = mapped_column(Text, default="")
    content: Mapped[str] = mapped_column(Text, default="")
    meta_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    headings: Mapped[list] = mapped_column(JSON, default=list)
    images: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    external_post_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SeoScoreRow(Base):
    __tablename__ = "seo_scores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    post_id: Mapped[str] = mapped_column(String(36), ForeignKey("posts.id"), index=True)
    readability_score: Mapped[int] = mapped_column(Integer)
    readability_grade: Mapped[str] = mapped_column(String(32))
    meta_title_length: Mapped[int] = mapped_column(Integer)
    meta_description_length: Mapped[int] = mapped_column(Integer)
    heading_structure_valid: Mapped[bool] = mapped_column(Boolean)
    keyword_density: Mapped[float] = mapped_column(Float)
    alt_tags_coverage: Mapped[int] = mapped_column(Integer)
    overall_seo_score: Mapped[int] = mapped_column(Integer)
    validation_errors: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class JobRow(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# Enum-typed dataclass fields, per record class
_ENUM_FIELDS = {
    User: {"subscription_plan": SubscriptionPlan},
    Site: {"type": SiteType, "post_frequency": PostFrequency},
    Keyword: {},
    Post: {"status": PostStatus},
    SeoScore: {},
}


def make_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite is pinned to one connection so threads share it."""
    if database_url == "sqlite://" or (database_url.startswith("sqlite") and ":memory:" in database_url):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine):
    """Create tables if they don't exist."""
    Base.metadata.create_all(bind=engine)
    log.info("Database tables ready")


def _aware(value):
    # SQLite hands back naive datetimes; everything we store is UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_column(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc)
    return value


def _row_to_record(row, cls):
    enum_fields = _ENUM_FIELDS[cls]
    kwargs = {}
    for f in fields(cls):
        value = _aware(getattr(row, f.name))
        if f.name in enum_fields and value is not None:
            value = enum_fields[f.name](value)
        kwargs[f.name] = value
    return cls(**kwargs)


def _record_to_values(record) -> dict:
    return {f.name: _to_column(getattr(record, f.name)) for f in fields(record)}


def _row_to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        user_id=row.user_id,
        payload=payload_from_dict(row.type, row.payload),
        status=JobStatus(row.status),
        result=row.result,
        error=row.error,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
    )


class SqlJobStore(JobQueue):
    """Jobs table accessed through short-lived sessions, one transaction per call."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def enqueue(self, payload: JobPayload, user_id: Optional[str] = None) -> Job:
        row = JobRow(
            id=new_id(),
            user_id=user_id,
            type=payload.JOB_TYPE,
            status=JobStatus.PENDING.value,
            payload=payload.to_dict(),
            created_at=utcnow(),
        )
        with self.Session.begin() as db:
            db.add(row)
        log.info(f"Enqueued {row.type} job {row.id}", extra={"job_id": row.id, "job_type": row.type})
        return _row_to_job(row)

    def get_pending_jobs(self, limit: int = 10) -> list[Job]:
        with self.Session() as db:
            rows = db.scalars(
                select(JobRow)
                .where(JobRow.status == JobStatus.PENDING.value)
                .order_by(JobRow.created_at)
                .limit(limit)
            ).all()
            return [_row_to_job(r) for r in rows]

    def claim(self, job_id: str) -> Optional[Job]:
        with self.Session.begin() as db:
            res = db.execute(
                update(JobRow)
                .where(JobRow.id == job_id, JobRow.status == JobStatus.PENDING.value)
                .values(status=JobStatus.PROCESSING.value, started_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return None
            row = db.get(JobRow, job_id, populate_existing=True)
            return _row_to_job(row)

    def _finish(self, job_id: str, status: JobStatus, **values) -> Job:
        with self.Session.begin() as db:
            res = db.execute(
                update(JobRow)
                .where(JobRow.id == job_id, JobRow.status == JobStatus.PROCESSING.value)
                .values(status=status.value, completed_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            row = db.get(JobRow, job_id, populate_existing=True)
            if row is None:
                raise ValidationError(f"Job not found: {job_id}")
            if res.rowcount != 1:
                raise InvalidTransitionError(
                    f"Job status cannot move from {row.status} to {status.value}"
                )
            return _row_to_job(row)

    def complete(self, job_id: str, result: Optional[dict] = None) -> Job:
        return self._finish(job_id, JobStatus.COMPLETED, result=result)

    def fail(self, job_id: str, error: str) -> Job:
        return self._finish(job_id, JobStatus.FAILED, error=error)

    def update_job(self, job_id: str, **updates) -> Job:
        with self.Session.begin() as db:
            row = db.get(JobRow, job_id, with_for_update=True)
            if row is None:
                raise ValidationError(f"Job not found: {job_id}")
            job = _row_to_job(row)
            if "status" in updates:
                check_transition(job.status, JobStatus(updates["status"]))
                updates["status"] = JobStatus(updates["status"])
            job = apply_updates(job, updates)
            row.user_id = job.user_id
            row.type = job.type
            row.payload = job.payload.to_dict()
            row.status = job.status.value
            row.result = job.result
            row.error = job.error
            row.created_at = _to_column(job.created_at)
            row.started_at = _to_column(job.started_at)
            row.completed_at = _to_column(job.completed_at)
            return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.Session() as db:
            row = db.get(JobRow, job_id)
            return _row_to_job(row) if row else None

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        stmt = select(JobRow).order_by(JobRow.created_at)
        if status is not None:
            stmt = stmt.where(JobRow.status == JobStatus(status).value)
        with self.Session() as db:
            return [_row_to_job(r) for r in db.scalars(stmt).all()]


class SqlStorage(Storage):
    """Record storage on the same database as the jobs table."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    def _create(self, row_cls, record):
        with self.Session.begin() as db:
            db.add(row_cls(**_record_to_values(record)))
        return record

    def _get(self, row_cls, cls, record_id: str):
        with self.Session() as db:
            row = db.get(row_cls, record_id)
            return _row_to_record(row, cls) if row else None

    def _update(self, row_cls, cls, record_id: str, updates: dict, check=None):
        with self.Session.begin() as db:
            row = db.get(row_cls, record_id, with_for_update=True)
            if row is None:
                raise ValidationError(f"{cls.__name__} not found: {record_id}")
            current = _row_to_record(row, cls)
            updated = apply_updates(current, updates)
            if check:
                check(current, updated)
            for key, value in _record_to_values(updated).items():
                setattr(row, key, value)
            return updated

    # Users
    def create_user(self, user: User) -> User:
        return self._create(UserRow, user)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(UserRow, User, user_id)

    # Sites
    def create_site(self, site: Site) -> Site:
        return self._create(SiteRow, site)

    def get_site(self, site_id: str) -> Optional[Site]:
        return self._get(SiteRow, Site, site_id)

    def update_site(self, site_id: str, **updates) -> Site:
        return self._update(SiteRow, Site, site_id, updates, check=check_site_update)

    def list_sites(self, auto_publish_only: bool = False) -> list[Site]:
        stmt = select(SiteRow).order_by(SiteRow.created_at)
        if auto_publish_only:
            stmt = stmt.where(SiteRow.auto_publish_enabled.is_(True))
        with self.Session() as db:
            return [_row_to_record(r, Site) for r in db.scalars(stmt).all()]

    # Keywords
    def create_keyword(self, keyword: Keyword) -> Keyword:
        return self._create(KeywordRow, keyword)

    def get_keyword(self, keyword_id: str) -> Optional[Keyword]:
        return self._get(KeywordRow, Keyword, keyword_id)

    def get_keywords_for_site(self, site_id: str) -> list[Keyword]:
        with self.Session() as db:
            rows = db.scalars(select(KeywordRow).where(KeywordRow.site_id == site_id)).all()
            return [_row_to_record(r, Keyword) for r in rows]

    # Posts
    def create_post(self, post: Post) -> Post:
        post.check_invariants()
        return self._create(PostRow, post)

    def get_post(self, post_id: str) -> Optional[Post]:
        return self._get(PostRow, Post, post_id)

    def update_post(self, post_id: str, **updates) -> Post:
        if "status" in updates:
            updates["status"] = PostStatus(updates["status"])
        updates.setdefault("updated_at", utcnow())
        return self._update(
            PostRow, Post, post_id, updates,
            check=lambda _current, updated: updated.check_invariants(),
        )

    def get_published_posts(self, site_id: str, exclude_post_id: Optional[str] = None) -> list[Post]:
        stmt = (
            select(PostRow)
            .where(PostRow.site_id == site_id, PostRow.status == PostStatus.PUBLISHED.value)
            .order_by(PostRow.published_at.desc())
        )
        if exclude_post_id:
            stmt = stmt.where(PostRow.id != exclude_post_id)
        with self.Session() as db:
            return [_row_to_record(r, Post) for r in db.scalars(stmt).all()]

    # SEO scores
    def create_seo_score(self, score: SeoScore) -> SeoScore:
        return self._create(SeoScoreRow, score)

    def get_seo_scores(self, post_id: str) -> list[SeoScore]:
        with self.Session() as db:
            rows = db.scalars(
                select(SeoScoreRow).where(SeoScoreRow.post_id == post_id).order_by(SeoScoreRow.created_at)
            ).all()
            return [_row_to_record(r, SeoScore) for r in rows]
