"""Content generation capability backed by the Claude Messages API."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field

import anthropic
from dotenv import load_dotenv

from autopublish.errors import (
    AuthenticationError,
    ExternalServiceError,
    GenerationError,
    RateLimitError,
)

load_dotenv(override=True)

log = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

SYSTEM_PROMPT = (
    "You are an expert SEO content writer. Create engaging, well-structured, "
    "and SEO-optimized content. Always answer with a single JSON object and nothing else."
)


@dataclass
class GeneratedContent:
    title: str
    meta_title: str
    meta_description: str
    content: str
    headings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def build_internal_links_prompt(links: list[dict]) -> str:
    """Render published sibling posts as linking context. Empty string when there are none."""
    if not links:
        return ""
    lines = [f'{i}. "{link["title"]}" - {link["url"]}' for i, link in enumerate(links, 1)]
    return (
        "\n\nInternal Linking Context:\n"
        "You have the following published articles on this site that you can reference "
        "with internal links where relevant:\n"
        + "\n".join(lines)
        + "\n\nWhen writing the content, naturally incorporate 2-3 internal links to these "
        "articles where contextually appropriate. Use markdown link syntax [text](url)."
    )


def extract_headings(markdown_text: str) -> list[dict]:
    """Pull ``#``-style headings out of markdown, in document order."""
    return [
        {"level": len(hashes), "text": text.strip().strip("#").strip()}
        for hashes, text in re.findall(r"^(#{1,6})\s+(.+)$", markdown_text, re.MULTILINE)
    ]


class ContentGenerator:
    """Generates a structured SEO blog post for a keyword."""

    def __init__(self, api_key=None, model=DEFAULT_MODEL, max_tokens=8192, temperature=0.7, client=None):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY", "")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    @classmethod
    def from_config(cls, config: dict) -> "ContentGenerator":
        claude = config.get("claude", {})
        return cls(
            model=claude.get("model", DEFAULT_MODEL),
            max_tokens=claude.get("max_tokens", 8192),
            temperature=claude.get("temperature", 0.7),
        )

    def _client_for(self, api_key: str | None):
        if api_key:
            return anthropic.Anthropic(api_key=api_key)
        if self._client is None:
            if not self.api_key:
                raise AuthenticationError("ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def build_prompt(self, keyword: str, word_count: int, link_context: str = "") -> str:
        return f"""Create an SEO-optimized blog post for the keyword "{keyword}".

Requirements:
- Target length: {word_count} words
- Include H1, H2, and H3 headings
- Meta title (50-60 characters)
- Meta description (150-160 characters)
- Naturally incorporate LSI keywords related to "{keyword}"
- Make content engaging, informative, and valuable
- Use proper semantic heading hierarchy (never skip a level)

Respond with JSON in this format:
{{
  "title": "Main H1 Title",
  "metaTitle": "SEO Meta Title",
  "metaDescription": "SEO Meta Description",
  "content": "Full article content with proper markdown formatting",
  "headings": [
    {{"level": 1, "text": "Main Title"}},
    {{"level": 2, "text": "Section Title"}},
    {{"level": 3, "text": "Subsection Title"}}
  ]
}}{link_context}"""

    def generate(self, keyword: str, word_count: int, link_context: str = "", api_key: str | None = None) -> GeneratedContent:
        """Call Claude and parse its JSON answer. Raises GenerationError on bad or truncated output."""
        client = self._client_for(api_key)
        prompt = self.build_prompt(keyword, word_count, link_context)

        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AuthenticationError as e:
            raise AuthenticationError(f"Claude authentication failed: {e}") from e
        except anthropic.RateLimitError as e:
            raise RateLimitError(f"Claude rate limit exceeded: {e}") from e
        except anthropic.APIError as e:
            raise ExternalServiceError(f"Content generation failed: {e}") from e

        if response.stop_reason == "max_tokens":
            raise GenerationError("Content too long for generation. Try reducing word count.")

        raw = "".join(
            block.text for block in (response.content or []) if getattr(block, "type", "") == "text"
        )
        if not raw.strip():
            raise GenerationError("Invalid Claude response: no content generated")

        content = self.parse_response(raw)
        log.info(f"Generated '{content.title}' for keyword '{keyword}' ({len(content.content.split())} words)")
        return content

    def parse_response(self, raw: str) -> GeneratedContent:
        """Parse the model's JSON (optionally wrapped in a ```json fence)."""
        text = raw.strip()
        fence = re.match(r"^```(?:json)?\s*\n(.*)\n```$", text, re.DOTALL)
        if fence:
            text = fence.group(1)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GenerationError(f"Generated content is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise GenerationError("Generated content is not a JSON object")

        title = data.get("title")
        body = data.get("content")
        if not isinstance(title, str) or not title.strip() or not isinstance(body, str) or not body.strip():
            raise GenerationError("Generated content missing required fields")

        headings = data.get("headings")
        if not isinstance(headings, list) or not headings:
            headings = extract_headings(body)
        try:
            headings = [{"level": int(h["level"]), "text": str(h["text"])} for h in headings]
        except (KeyError, TypeError, ValueError) as e:
            raise GenerationError(f"Generated headings are malformed: {e}") from e

        return GeneratedContent(
            title=title.strip(),
            meta_title=str(data.get("metaTitle") or data.get("meta_title") or ""),
            meta_description=str(data.get("metaDescription") or data.get("meta_description") or ""),
            content=body,
            headings=headings,
        )
