"""Shared fixtures: in-memory stores seeded with a user, a site and keywords."""

from unittest.mock import MagicMock

import pytest

from autopublish.content_generator import GeneratedContent
from autopublish.job_store import InMemoryJobStore, InMemoryStorage
from autopublish.models import Keyword, Post, Site, SiteType, SubscriptionPlan, User


SAMPLE_CONTENT = (
    "# Coffee Brewing Guide\n\n"
    "Coffee brewing is simple. Good beans make good coffee. "
    "Water temperature matters a lot. Grind size matters too.\n\n"
    "## Choosing Beans\n\n"
    "Fresh beans taste best. Buy whole beans and grind them at home.\n\n"
    "### Roast Levels\n\n"
    "Light roasts are bright. Dark roasts are bold.\n"
)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def queue():
    return InMemoryJobStore()


@pytest.fixture
def user(storage):
    return storage.create_user(User(id="user-1", subscription_plan=SubscriptionPlan.PAID))


@pytest.fixture
def site(storage, user):
    return storage.create_site(Site(
        id="site-1",
        user_id=user.id,
        url="https://blog.example.com",
        type=SiteType.WORDPRESS,
        name="Example Blog",
        credentials={"username": "editor", "app_password": "abcd efgh"},
        auto_publish_enabled=True,
    ))


@pytest.fixture
def keyword(storage, user, site):
    return storage.create_keyword(Keyword(
        id="kw-1", user_id=user.id, site_id=site.id, keyword="coffee brewing", overall_score=85,
    ))


@pytest.fixture
def draft_post(storage, user, site, keyword):
    return storage.create_post(Post(
        id="post-1", user_id=user.id, site_id=site.id, keyword_id=keyword.id, title="Auto-generated: coffee brewing",
    ))


@pytest.fixture
def generated():
    return GeneratedContent(
        title="Coffee Brewing Guide",
        meta_title="Coffee Brewing Guide: Brew Better Coffee at Home Today",
        meta_description="x" * 155,
        content=SAMPLE_CONTENT,
        headings=[
            {"level": 1, "text": "Coffee Brewing Guide"},
            {"level": 2, "text": "Choosing Beans"},
            {"level": 3, "text": "Roast Levels"},
        ],
    )


@pytest.fixture
def content_generator(generated):
    gen = MagicMock()
    gen.generate.return_value = generated
    return gen
