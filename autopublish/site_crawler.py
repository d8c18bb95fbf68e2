"""Site crawler: bounded breadth-first crawl of a site's internal links.

Respects robots.txt (allow/disallow prefixes, crawl-delay) and waits between
requests. Each call to ``SiteCrawler.crawl()`` works on its own ``CrawlSession``,
so crawls of different sites can run side by side.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup

from autopublish.errors import CrawlError

log = logging.getLogger(__name__)

USER_AGENT = "SEO-Content-Bot/1.0"
DEFAULT_DELAY_SECONDS = 0.5
MAX_CONTENT_BYTES = 5 * 1024 * 1024
MAX_ERRORS = 100

# name -> (max_depth, max_pages)
CRAWL_PRESETS = {
    "quick": (2, 25),
    "deep": (4, 100),
}

_SKIPPED_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


def normalize_url(url: str) -> str:
    """Canonical form used for de-duplication: no fragment, no trailing slash."""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


@dataclass
class RobotsRules:
    user_agent: str = "*"
    disallow: list[str] = field(default_factory=list)
    allow: list[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None
    sitemaps: list[str] = field(default_factory=list)

    def is_allowed(self, url: str) -> bool:
        """Blocked by the longest matching Disallow unless an Allow at least as specific matches."""
        path = urlsplit(url).path or "/"
        longest_disallow = max((len(p) for p in self.disallow if path.startswith(p)), default=-1)
        if longest_disallow < 0:
            return True
        longest_allow = max((len(p) for p in self.allow if path.startswith(p)), default=-1)
        return longest_allow >= longest_disallow

    def to_dict(self) -> dict:
        return asdict(self)


def parse_robots_txt(text: str, user_agent: str = USER_AGENT) -> RobotsRules:
    """Parse robots.txt, keeping the groups that apply to ``*`` or to our bot."""
    bot_name = user_agent.split("/")[0].lower()
    rules = RobotsRules()
    group_agents: list[str] = []
    group_has_rules = False

    def group_applies() -> bool:
        return any(a in ("*", bot_name) for a in group_agents)

    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            # A User-agent line after rules starts a new group
            if group_has_rules:
                group_agents = []
                group_has_rules = False
            group_agents.append(value.lower())
        elif key == "sitemap":
            if value:
                rules.sitemaps.append(value)
        elif key in ("disallow", "allow", "crawl-delay"):
            group_has_rules = True
            if group_agents and not group_applies():
                continue
            if key == "disallow" and value:
                rules.disallow.append(value)
            elif key == "allow" and value:
                rules.allow.append(value)
            elif key == "crawl-delay":
                try:
                    rules.crawl_delay = float(value)
                except ValueError:
                    log.warning(f"Ignoring malformed Crawl-delay: {value!r}")
    return rules


@dataclass
class PageMetadata:
    url: str
    title: str
    description: str
    meta_keywords: str
    canonical: str
    og_title: str
    og_description: str
    h1: list[str]
    h2: list[str]
    images: list[dict]  # [{"src": ..., "alt": ...}]
    internal_links: list[str]
    external_links: list[str]
    word_count: int
    status_code: int
    load_time: int  # milliseconds

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CrawlResult:
    start_url: str
    total_pages: int
    crawled_pages: list[PageMetadata]
    robots: Optional[RobotsRules]
    sitemaps: list[str]
    site_structure: dict[str, list[str]]
    errors: list[dict]
    completed_at: datetime

    def to_dict(self) -> dict:
        """JSON-ready document stored on ``Site.crawl_data``."""
        return {
            "start_url": self.start_url,
            "total_pages": self.total_pages,
            "crawled_pages": [p.to_dict() for p in self.crawled_pages],
            "robots": self.robots.to_dict() if self.robots else None,
            "sitemaps": list(self.sitemaps),
            "site_structure": {k: list(v) for k, v in self.site_structure.items()},
            "errors": list(self.errors),
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class CrawlSession:
    """Traversal state for one crawl. Never shared between crawls."""

    start_url: str
    max_errors: int = MAX_ERRORS
    visited: set[str] = field(default_factory=set)
    enqueued: set[str] = field(default_factory=set)
    queue: deque = field(default_factory=deque)
    pages: list[PageMetadata] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    robots: Optional[RobotsRules] = None
    requests_made: int = 0

    def enqueue(self, url: str, depth: int):
        if url in self.visited or url in self.enqueued:
            return
        self.enqueued.add(url)
        self.queue.append((url, depth))

    def record_error(self, url: str, message: str):
        if len(self.errors) < self.max_errors:
            self.errors.append({"url": url, "error": message})


class SiteCrawler:
    """Breadth-first crawler bounded by depth and page count."""

    def __init__(
        self,
        start_url: str,
        max_depth: int = 3,
        max_pages: int = 50,
        delay: float = DEFAULT_DELAY_SECONDS,
        user_agent: str = USER_AGENT,
        timeout: float = 10,
        max_errors: int = MAX_ERRORS,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        parts = urlsplit(start_url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"Invalid URL: {start_url}")

        self.start_url = normalize_url(start_url)
        self.origin = f"{parts.scheme.lower()}://{parts.netloc.lower()}"
        self.hostname = parts.hostname.lower()
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.delay = delay
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_errors = max_errors
        self.http = http or requests.Session()
        self.sleep = sleep

    def is_internal(self, url: str) -> bool:
        return (urlsplit(url).hostname or "").lower() == self.hostname

    def fetch_robots(self) -> Optional[RobotsRules]:
        """Fetch and parse robots.txt once. Missing or unreachable means no rules."""
        robots_url = f"{self.origin}/robots.txt"
        try:
            resp = self.http.get(robots_url, timeout=5, headers={"User-Agent": self.user_agent})
        except requests.RequestException as e:
            log.info(f"robots.txt unavailable for {self.origin}: {e}")
            return None
        if resp.status_code != 200:
            log.info(f"robots.txt returned {resp.status_code} for {self.origin}")
            return None
        return parse_robots_txt(resp.text, self.user_agent)

    def _politeness_delay(self, session: CrawlSession) -> float:
        if session.robots and session.robots.crawl_delay and session.robots.crawl_delay > 0:
            return session.robots.crawl_delay
        return self.delay

    def crawl(self) -> CrawlResult:
        session = CrawlSession(start_url=self.start_url, max_errors=self.max_errors)
        session.robots = self.fetch_robots()
        session.enqueue(self.start_url, 0)

        log.info(
            f"Crawling {self.start_url} (depth {self.max_depth}, max {self.max_pages} pages)",
            extra={"url": self.start_url},
        )

        while session.queue and len(session.visited) < self.max_pages:
            url, depth = session.queue.popleft()
            if url in session.visited:
                continue
            session.visited.add(url)

            if session.robots and not session.robots.is_allowed(url):
                session.record_error(url, "Disallowed by robots.txt")
                continue

            if session.requests_made > 0:
                self.sleep(self._politeness_delay(session))
            session.requests_made += 1

            try:
                page = self.crawl_page(url)
            except CrawlError as e:
                log.warning(f"Crawl error on {url}: {e.message}", extra={"url": url})
                session.record_error(url, e.message)
                continue

            session.pages.append(page)
            if depth < self.max_depth:
                for link in page.internal_links:
                    if session.robots is None or session.robots.is_allowed(link):
                        session.enqueue(link, depth + 1)

        site_structure = {p.url: p.internal_links for p in session.pages}
        result = CrawlResult(
            start_url=self.start_url,
            total_pages=len(session.pages),
            crawled_pages=session.pages,
            robots=session.robots,
            sitemaps=list(session.robots.sitemaps) if session.robots else [],
            site_structure=site_structure,
            errors=session.errors,
            completed_at=datetime.now(timezone.utc),
        )
        log.info(
            f"Crawl of {self.start_url} finished: {result.total_pages} pages, {len(result.errors)} errors",
            extra={"url": self.start_url},
        )
        return result

    def crawl_page(self, url: str) -> PageMetadata:
        """Fetch one page and extract its SEO metadata. Raises CrawlError on any failure."""
        start = time.time()
        try:
            resp = self.http.get(
                url, timeout=self.timeout, headers={"User-Agent": self.user_agent}, stream=True
            )
        except requests.RequestException as e:
            raise CrawlError(url, f"Request failed: {e}") from e

        try:
            html = self._read_html(resp, url)
        finally:
            resp.close()
        load_time = int((time.time() - start) * 1000)

        try:
            soup = BeautifulSoup(html, "html.parser")
            internal, external = self._extract_links(soup, url)
        except Exception as e:
            raise CrawlError(url, f"Parse failed: {e}") from e

        body = soup.body or soup

        return PageMetadata(
            url=url,
            title=soup.title.get_text(strip=True) if soup.title else "",
            description=self._meta(soup, name="description"),
            meta_keywords=self._meta(soup, name="keywords"),
            canonical=self._canonical(soup) or url,
            og_title=self._meta(soup, property="og:title"),
            og_description=self._meta(soup, property="og:description"),
            h1=[h.get_text(strip=True) for h in soup.find_all("h1")],
            h2=[h.get_text(strip=True) for h in soup.find_all("h2")],
            images=[
                {"src": self._resolve_src(url, img.get("src")), "alt": img.get("alt", "")}
                for img in soup.find_all("img")
            ],
            internal_links=internal,
            external_links=external,
            word_count=len(body.get_text(" ").split()),
            status_code=resp.status_code,
            load_time=load_time,
        )

    def _read_html(self, resp: requests.Response, url: str) -> str:
        """Validate the response and read its body, stopping once it passes MAX_CONTENT_BYTES."""
        if resp.status_code >= 400:
            raise CrawlError(url, f"HTTP {resp.status_code}")

        content_type = resp.headers.get("Content-Type", "")
        if "text/html" not in content_type:
            raise CrawlError(url, f"Not HTML content: {content_type}")

        declared = resp.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > MAX_CONTENT_BYTES:
            raise CrawlError(url, f"Page too large ({declared} bytes)")

        body = bytearray()
        try:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                body.extend(chunk)
                if len(body) > MAX_CONTENT_BYTES:
                    raise CrawlError(url, f"Page too large (over {MAX_CONTENT_BYTES} bytes)")
        except requests.RequestException as e:
            raise CrawlError(url, f"Request failed: {e}") from e

        try:
            return bytes(body).decode(resp.encoding or "utf-8", errors="replace")
        except LookupError:
            return bytes(body).decode("utf-8", errors="replace")

    def _resolve_src(self, page_url: str, src: Optional[str]) -> str:
        if not src:
            return ""
        try:
            return urljoin(page_url, src)
        except ValueError:
            return src

    def _meta(self, soup: BeautifulSoup, **attrs) -> str:
        tag = soup.find("meta", attrs=attrs)
        return (tag.get("content") or "").strip() if tag else ""

    def _canonical(self, soup: BeautifulSoup) -> str:
        tag = soup.find("link", rel="canonical")
        return (tag.get("href") or "").strip() if tag else ""

    def _extract_links(self, soup: BeautifulSoup, page_url: str) -> tuple[list[str], list[str]]:
        """Split a page's links into internal (normalized) and external, de-duplicated in order."""
        internal: list[str] = []
        external: list[str] = []
        seen: set[str] = set()

        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if not href or href.lower().startswith(_SKIPPED_HREF_PREFIXES):
                continue
            try:
                resolved = urljoin(page_url, href)
                if urlsplit(resolved).scheme not in ("http", "https"):
                    continue
                link = normalize_url(resolved)
            except ValueError:
                log.debug(f"Skipping malformed link {href!r} on {page_url}", extra={"url": page_url})
                continue
            if link in seen:
                continue
            seen.add(link)
            if self.is_internal(link):
                internal.append(link)
            else:
                external.append(link)
        return internal, external


def quick_crawl(url: str, **kwargs) -> CrawlResult:
    max_depth, max_pages = CRAWL_PRESETS["quick"]
    return SiteCrawler(url, max_depth=max_depth, max_pages=max_pages, **kwargs).crawl()


def deep_crawl(url: str, **kwargs) -> CrawlResult:
    max_depth, max_pages = CRAWL_PRESETS["deep"]
    return SiteCrawler(url, max_depth=max_depth, max_pages=max_pages, **kwargs).crawl()
