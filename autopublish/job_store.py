"""Job queue and record storage interfaces, plus the in-process implementations.

Handlers, the worker and the scheduler only talk to ``JobQueue`` and ``Storage``,
so the backend (this in-memory one, ``sql_store``, or a broker) can be swapped
without touching them.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from typing import Optional

from autopublish.errors import ValidationError
from autopublish.models import (
    Job,
    JobPayload,
    JobStatus,
    Keyword,
    Post,
    PostStatus,
    SeoScore,
    Site,
    User,
    check_transition,
    utcnow,
)

log = logging.getLogger(__name__)


def apply_updates(record, updates: dict):
    """Return a copy of ``record`` with ``updates`` applied. Unknown fields are rejected."""
    known = {f.name for f in fields(record)}
    unknown = set(updates) - known
    if unknown:
        raise ValidationError(
            f"Unknown {type(record).__name__} fields: {', '.join(sorted(unknown))}"
        )
    if "id" in updates and updates["id"] != record.id:
        raise ValidationError(f"Cannot change {type(record).__name__} id")
    return replace(record, **updates)


def check_site_update(current: Site, updated: Site):
    """last_auto_publish_at never moves backwards."""
    old, new = current.last_auto_publish_at, updated.last_auto_publish_at
    if old is not None and (new is None or new < old):
        raise ValidationError(
            f"Site {current.id}: last_auto_publish_at cannot move backwards "
            f"({old.isoformat()} -> {new.isoformat() if new else None})"
        )


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class JobQueue(ABC):
    """Persistence and lifecycle of Job records."""

    @abstractmethod
    def enqueue(self, payload: JobPayload, user_id: Optional[str] = None) -> Job:
        """Create a pending job for ``payload``."""

    @abstractmethod
    def get_pending_jobs(self, limit: int = 10) -> list[Job]:
        """Pending jobs, oldest first."""

    @abstractmethod
    def claim(self, job_id: str) -> Optional[Job]:
        """Atomically move a job pending -> processing.

        Returns the claimed job, or None when the job is gone or someone else
        claimed it first.
        """

    @abstractmethod
    def complete(self, job_id: str, result: Optional[dict] = None) -> Job:
        ...

    @abstractmethod
    def fail(self, job_id: str, error: str) -> Job:
        ...

    @abstractmethod
    def update_job(self, job_id: str, **updates) -> Job:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        ...

    def create_job(self, payload: JobPayload, user_id: Optional[str] = None) -> Job:
        return self.enqueue(payload, user_id=user_id)


class Storage(ABC):
    """Users, sites, keywords, posts and SEO scores."""

    @abstractmethod
    def create_user(self, user: User) -> User: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def create_site(self, site: Site) -> Site: ...

    @abstractmethod
    def get_site(self, site_id: str) -> Optional[Site]: ...

    @abstractmethod
    def update_site(self, site_id: str, **updates) -> Site: ...

    @abstractmethod
    def list_sites(self, auto_publish_only: bool = False) -> list[Site]: ...

    @abstractmethod
    def create_keyword(self, keyword: Keyword) -> Keyword: ...

    @abstractmethod
    def get_keyword(self, keyword_id: str) -> Optional[Keyword]: ...

    @abstractmethod
    def get_keywords_for_site(self, site_id: str) -> list[Keyword]: ...

    @abstractmethod
    def create_post(self, post: Post) -> Post: ...

    @abstractmethod
    def get_post(self, post_id: str) -> Optional[Post]: ...

    @abstractmethod
    def update_post(self, post_id: str, **updates) -> Post: ...

    @abstractmethod
    def get_published_posts(self, site_id: str, exclude_post_id: Optional[str] = None) -> list[Post]: ...

    @abstractmethod
    def create_seo_score(self, score: SeoScore) -> SeoScore: ...

    @abstractmethod
    def get_seo_scores(self, post_id: str) -> list[SeoScore]: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryJobStore(JobQueue):
    """Thread-safe job table kept in a dict. Claiming is atomic under one lock."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def enqueue(self, payload: JobPayload, user_id: Optional[str] = None) -> Job:
        job = Job(payload=payload, user_id=user_id)
        with self._lock:
            self._jobs[job.id] = job
        log.info(f"Enqueued {job.type} job {job.id}", extra={"job_id": job.id, "job_type": job.type})
        return copy.deepcopy(job)

    def get_pending_jobs(self, limit: int = 10) -> list[Job]:
        with self._lock:
            pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
            pending.sort(key=lambda j: j.created_at)
            return [copy.deepcopy(j) for j in pending[:limit]]

    def claim(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            job.status = JobStatus.PROCESSING
            job.started_at = utcnow()
            return copy.deepcopy(job)

    def complete(self, job_id: str, result: Optional[dict] = None) -> Job:
        return self.update_job(
            job_id, status=JobStatus.COMPLETED, result=result, completed_at=utcnow()
        )

    def fail(self, job_id: str, error: str) -> Job:
        return self.update_job(
            job_id, status=JobStatus.FAILED, error=error, completed_at=utcnow()
        )

    def update_job(self, job_id: str, **updates) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise ValidationError(f"Job not found: {job_id}")
            if "status" in updates:
                check_transition(job.status, JobStatus(updates["status"]))
                updates["status"] = JobStatus(updates["status"])
            updated = apply_updates(job, updates)
            self._jobs[job_id] = updated
            return copy.deepcopy(updated)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if status is None or j.status == status]
            jobs.sort(key=lambda j: j.created_at)
            return [copy.deepcopy(j) for j in jobs]


class InMemoryStorage(Storage):
    """Dict-backed record storage. Reads return copies; writes go through update_*."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.sites: dict[str, Site] = {}
        self.keywords: dict[str, Keyword] = {}
        self.posts: dict[str, Post] = {}
        self.seo_scores: list[SeoScore] = []
        self._lock = threading.RLock()

    def _put(self, table: dict, record):
        with self._lock:
            table[record.id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    def _get(self, table: dict, record_id: str):
        with self._lock:
            record = table.get(record_id)
            return copy.deepcopy(record) if record else None

    # Users
    def create_user(self, user: User) -> User:
        return self._put(self.users, user)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(self.users, user_id)

    # Sites
    def create_site(self, site: Site) -> Site:
        return self._put(self.sites, site)

    def get_site(self, site_id: str) -> Optional[Site]:
        return self._get(self.sites, site_id)

    def update_site(self, site_id: str, **updates) -> Site:
        with self._lock:
            site = self.sites.get(site_id)
            if site is None:
                raise ValidationError(f"Site not found: {site_id}")
            updated = apply_updates(site, updates)
            check_site_update(site, updated)
            self.sites[site_id] = updated
            return copy.deepcopy(updated)

    def list_sites(self, auto_publish_only: bool = False) -> list[Site]:
        with self._lock:
            sites = list(self.sites.values())
        if auto_publish_only:
            sites = [s for s in sites if s.auto_publish_enabled]
        return [copy.deepcopy(s) for s in sites]

    # Keywords
    def create_keyword(self, keyword: Keyword) -> Keyword:
        return self._put(self.keywords, keyword)

    def get_keyword(self, keyword_id: str) -> Optional[Keyword]:
        return self._get(self.keywords, keyword_id)

    def get_keywords_for_site(self, site_id: str) -> list[Keyword]:
        with self._lock:
            return [copy.deepcopy(k) for k in self.keywords.values() if k.site_id == site_id]

    # Posts
    def create_post(self, post: Post) -> Post:
        post.check_invariants()
        return self._put(self.posts, post)

    def get_post(self, post_id: str) -> Optional[Post]:
        return self._get(self.posts, post_id)

    def update_post(self, post_id: str, **updates) -> Post:
        with self._lock:
            post = self.posts.get(post_id)
            if post is None:
                raise ValidationError(f"Post not found: {post_id}")
            if "status" in updates:
                updates["status"] = PostStatus(updates["status"])
            updates.setdefault("updated_at", utcnow())
            updated = apply_updates(post, updates)
            updated.check_invariants()
            self.posts[post_id] = updated
            return copy.deepcopy(updated)

    def get_published_posts(self, site_id: str, exclude_post_id: Optional[str] = None) -> list[Post]:
        with self._lock:
            posts = [
                p for p in self.posts.values()
                if p.site_id == site_id
                and p.status == PostStatus.PUBLISHED
                and p.id != exclude_post_id
            ]
            posts.sort(key=lambda p: p.published_at, reverse=True)
            return [copy.deepcopy(p) for p in posts]

    # SEO scores
    def create_seo_score(self, score: SeoScore) -> SeoScore:
        with self._lock:
            self.seo_scores.append(copy.deepcopy(score))
        return copy.deepcopy(score)

    def get_seo_scores(self, post_id: str) -> list[SeoScore]:
        with self._lock:
            return [copy.deepcopy(s) for s in self.seo_scores if s.post_id == post_id]
