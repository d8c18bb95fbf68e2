"""Platform adapters: publish finished posts to WordPress or Shopify."""

import base64
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import markdown
import requests
from slugify import slugify

from autopublish.errors import AuthenticationError, ExternalServiceError, RateLimitError, ValidationError
from autopublish.models import Site, SiteType

log = logging.getLogger(__name__)

SHOPIFY_API_VERSION = "2024-01"


@dataclass
class PublishResult:
    external_id: str
    url: str


def render_html(content: str, images: list = None) -> str:
    """Markdown to HTML, with remotely hosted images placed above the body."""
    html = markdown.markdown(content or "", extensions=["tables", "fenced_code"])
    figures = []
    for image in images or []:
        url = image.get("url", "")
        if url.startswith(("http://", "https://")):
            alt = image.get("alt_text") or image.get("alt") or ""
            figures.append(f'<figure><img src="{url}" alt="{alt}" /></figure>')
    return "\n".join(figures + [html]) if figures else html


class BasePublisher:
    """Shared HTTP plumbing: retry with exponential backoff and error mapping."""

    platform = "platform"

    def __init__(self, headers: dict, retries: int = 3, timeout: int = 30):
        self.headers = headers
        self.retries = retries
        self.timeout = timeout

    def _request(self, method, url, **kwargs) -> requests.Response:
        """Make an HTTP request with retry logic and error handling."""
        last_exception = None
        for attempt in range(self.retries):
            try:
                start = time.time()
                resp = requests.request(
                    method, url, headers=self.headers, timeout=self.timeout, **kwargs
                )
                elapsed = time.time() - start

                log.info(
                    f"{method} {url} -> {resp.status_code}",
                    extra={
                        "url": url,
                        "status_code": resp.status_code,
                        "response_time": round(elapsed, 3),
                    },
                )

                if resp.status_code in (401, 403):
                    raise AuthenticationError(
                        f"{self.platform} authentication failed ({resp.status_code}): {resp.text}"
                    )
                if resp.status_code == 429:
                    wait = 2 ** attempt
                    log.warning(f"Rate limited, waiting {wait}s")
                    time.sleep(wait)
                    last_exception = RateLimitError(
                        f"{self.platform} rate limit exceeded. Please try again later."
                    )
                    continue
                if resp.status_code >= 500:
                    wait = 2 ** attempt
                    log.warning(f"Server error {resp.status_code}, retry {attempt+1}/{self.retries}")
                    time.sleep(wait)
                    last_exception = ExternalServiceError(
                        f"{self.platform} API error ({resp.status_code}): {resp.text}"
                    )
                    continue
                if resp.status_code >= 400:
                    raise ExternalServiceError(
                        f"{self.platform} API error ({resp.status_code}): {resp.text}"
                    )

                return resp

            except requests.exceptions.Timeout:
                wait = 2 ** attempt
                log.warning(f"Timeout on {url}, retry {attempt+1}/{self.retries}")
                time.sleep(wait)
                last_exception = ExternalServiceError(f"Timeout: {url}")
            except requests.exceptions.ConnectionError as e:
                wait = 2 ** attempt
                log.warning(f"Connection error, retry {attempt+1}/{self.retries}")
                time.sleep(wait)
                last_exception = ExternalServiceError(f"Cannot reach {url}: {e}")

        raise last_exception or ExternalServiceError(f"Request failed after {self.retries} retries")

    def test_connection(self) -> bool:
        raise NotImplementedError

    def publish(self, title, content, meta_title=None, meta_description=None, images=None) -> PublishResult:
        raise NotImplementedError


class WordPressPublisher(BasePublisher):
    """Publishes through the WordPress REST API using an application password."""

    platform = "WordPress"

    def __init__(self, base_url, username, app_password, **kwargs):
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/wp-json/wp/v2"

        credentials = f"{username}:{app_password}"
        token = base64.b64encode(credentials.encode()).decode()
        super().__init__(
            {"Authorization": f"Basic {token}", "Content-Type": "application/json"},
            **kwargs,
        )

    def test_connection(self) -> bool:
        """True when the credentials resolve to a user."""
        try:
            resp = self._request("GET", f"{self.api_base}/users/me")
        except ExternalServiceError as e:
            log.warning(f"WordPress connection test failed: {e}")
            return False
        return resp.status_code == 200

    def publish(self, title, content, meta_title=None, meta_description=None, images=None) -> PublishResult:
        """Create a published post, with Rank Math SEO fields in meta."""
        meta = {}
        if meta_title:
            meta["rank_math_title"] = meta_title
        if meta_description:
            meta["rank_math_description"] = meta_description

        data = {
            "title": title,
            "content": render_html(content, images),
            "status": "publish",
            "slug": slugify(title, max_length=80),
            "meta": meta,
        }
        resp = self._request("POST", f"{self.api_base}/posts", json=data)
        post = resp.json()
        if not post.get("id"):
            raise ExternalServiceError("Invalid response from WordPress API")

        log.info(f"Published WordPress post {post['id']}: {title}")
        return PublishResult(
            external_id=str(post["id"]),
            url=post.get("link") or f"{self.base_url}/?p={post['id']}",
        )


class ShopifyPublisher(BasePublisher):
    """Publishes blog articles through the Shopify Admin REST API."""

    platform = "Shopify"

    def __init__(self, shop_url, access_token, **kwargs):
        host = urlparse(shop_url if "://" in shop_url else f"https://{shop_url}").hostname or ""
        self.shop_domain = host.removeprefix("www.")
        self.api_base = f"https://{self.shop_domain}/admin/api/{SHOPIFY_API_VERSION}"
        super().__init__(
            {"Content-Type": "application/json", "X-Shopify-Access-Token": access_token},
            **kwargs,
        )

    def test_connection(self) -> bool:
        try:
            resp = self._request("GET", f"{self.api_base}/shop.json")
        except ExternalServiceError as e:
            log.warning(f"Shopify connection test failed: {e}")
            return False
        return resp.status_code == 200

    def get_blog_id(self) -> int:
        """The store's first blog."""
        blogs = self._request("GET", f"{self.api_base}/blogs.json").json().get("blogs") or []
        if not blogs:
            raise ExternalServiceError("No blogs found on Shopify store")
        return blogs[0]["id"]

    def publish(self, title, content, meta_title=None, meta_description=None, images=None) -> PublishResult:
        blog_id = self.get_blog_id()

        metafields = []
        if meta_title:
            metafields.append({
                "namespace": "global", "key": "title_tag",
                "value": meta_title, "type": "single_line_text_field",
            })
        if meta_description:
            metafields.append({
                "namespace": "global", "key": "description_tag",
                "value": meta_description, "type": "single_line_text_field",
            })

        article = {
            "title": title,
            "body_html": render_html(content, images),
            "published": True,
            "metafields": metafields,
        }
        resp = self._request("POST", f"{self.api_base}/blogs/{blog_id}/articles.json", json={"article": article})
        result = resp.json().get("article") or {}
        if not result.get("id") or not result.get("handle"):
            raise ExternalServiceError("Invalid response from Shopify API")

        log.info(f"Published Shopify article {result['id']}: {title}")
        return PublishResult(
            external_id=str(result["id"]),
            url=f"https://{self.shop_domain}/blogs/{result.get('blog_id', blog_id)}/articles/{result['handle']}",
        )


def get_publisher(site: Site) -> BasePublisher:
    """Pick the adapter for a site's platform from its stored credentials."""
    creds = site.credentials or {}
    try:
        site_type = SiteType(site.type)
    except ValueError as e:
        raise ValidationError(f"Unsupported site type: {site.type}") from e
    if site_type == SiteType.WORDPRESS:
        return WordPressPublisher(
            site.url,
            creds.get("username", ""),
            creds.get("app_password") or creds.get("appPassword", ""),
        )
    if site_type == SiteType.SHOPIFY:
        return ShopifyPublisher(site.url, creds.get("access_token") or creds.get("accessToken", ""))
    raise ValidationError(f"Unsupported site type: {site.type}")
