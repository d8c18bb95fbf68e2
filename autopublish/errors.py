"""Exception types shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass


class PipelineError(Exception):
    pass


class ValidationError(PipelineError):
    """A referenced entity (user, post, site, keyword) is missing or invalid."""


class InvalidTransitionError(PipelineError):
    """A job status change that would move the lifecycle sideways or backwards."""


class ExternalServiceError(PipelineError):
    """A generation or publishing capability failed."""


class GenerationError(ExternalServiceError):
    pass


class AuthenticationError(ExternalServiceError):
    pass


class RateLimitError(ExternalServiceError):
    pass


class CrawlError(PipelineError):
    """A single URL could not be fetched or parsed. Recorded, never fatal to a crawl."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url
        self.message = message


@dataclass
class SchedulingSkip:
    """Not an error: the site was not due or had nothing to publish."""

    reason: str

    def to_dict(self) -> dict:
        return {"skipped": True, "reason": self.reason}
