"""Tests for record types: job transitions, payload decoding, post invariants."""

import pytest

from autopublish.errors import InvalidTransitionError, ValidationError
from autopublish.models import (
    ContentGenerationPayload,
    Job,
    JobStatus,
    Post,
    PostStatus,
    ScheduledPostPayload,
    Site,
    SiteType,
    SubscriptionPlan,
    User,
    check_transition,
    payload_from_dict,
    utcnow,
)


class TestTransitions:
    @pytest.mark.parametrize("current,new", [
        (JobStatus.PENDING, JobStatus.PROCESSING),
        (JobStatus.PROCESSING, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.FAILED),
    ])
    def test_forward_moves(self, current, new):
        check_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        (JobStatus.PENDING, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.PENDING),
        (JobStatus.COMPLETED, JobStatus.FAILED),
        (JobStatus.FAILED, JobStatus.PENDING),
    ])
    def test_illegal_moves(self, current, new):
        with pytest.raises(InvalidTransitionError):
            check_transition(current, new)


class TestPayloads:
    def test_decode_by_type(self):
        payload = payload_from_dict("content-generation", {
            "post_id": "p", "user_id": "u", "site_id": "s", "word_count": 900, "legacy": True,
        })
        assert payload == ContentGenerationPayload(post_id="p", user_id="u", site_id="s", word_count=900)

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            payload_from_dict("newsletter", {})

    def test_missing_field(self):
        with pytest.raises(ValidationError):
            payload_from_dict("scheduled-post", {"site_id": "s"})

    def test_job_type_follows_payload(self):
        job = Job(payload=ScheduledPostPayload(site_id="s", user_id="u"))
        assert job.type == "scheduled-post"
        assert job.status == JobStatus.PENDING


class TestRecords:
    def test_post_invariant(self):
        Post(user_id="u", site_id="s").check_invariants()
        Post(user_id="u", site_id="s", status=PostStatus.PUBLISHED,
             published_at=utcnow(), external_post_id="1").check_invariants()
        with pytest.raises(ValidationError):
            Post(user_id="u", site_id="s", status=PostStatus.FAILED, external_post_id="1",
                 published_at=utcnow()).check_invariants()

    @pytest.mark.parametrize("publish_fields", [
        {"published_at": utcnow()},
        {"external_post_id": "1"},
    ])
    def test_unpublished_post_with_one_publish_field_is_invalid(self, publish_fields):
        """Either publish field alone on a draft or failed post breaks the invariant."""
        for status in (PostStatus.DRAFT, PostStatus.FAILED):
            with pytest.raises(ValidationError):
                Post(user_id="u", site_id="s", status=status, **publish_fields).check_invariants()

    def test_published_post_missing_one_field_is_invalid(self):
        with pytest.raises(ValidationError):
            Post(user_id="u", site_id="s", status=PostStatus.PUBLISHED, published_at=utcnow()).check_invariants()

    def test_post_hour(self):
        assert Site(user_id="u", url="https://x.com", type=SiteType.WORDPRESS, daily_post_time="07:45").post_hour == 7
        with pytest.raises(ValidationError):
            Site(user_id="u", url="https://x.com", type=SiteType.WORDPRESS, daily_post_time="25:00").post_hour

    def test_image_gate(self):
        assert User(subscription_plan=SubscriptionPlan.PAID).can_generate_images() is True
        assert User(subscription_plan=SubscriptionPlan.FREE).can_generate_images() is False
        assert User(subscription_plan=SubscriptionPlan.FREE, use_own_ai_key=True).can_generate_images() is True
