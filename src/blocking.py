"""
Blocking detector - decides whether a fetched page is an anti-bot challenge
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

BLOCK_INDICATORS = (
    "captcha",
    "cloudflare",
    "access denied",
    "checking your browser",
    "sorry, you have been blocked",
    "just a moment",
    "security check",
    "verify you are human",
    "attention required",
    "unusual traffic",
    "request blocked",
)

# Markup that only appears on real listing or job pages.
JOB_CONTENT_SELECTORS = ('a[href*="/job/"]', "[data-job-did]", "[data-job-id]")

# Top-level JSON fields that carry an error message rather than job data.
JSON_MESSAGE_FIELDS = ("error", "message", "detail", "reason", "title")

DEFAULT_MIN_BODY_BYTES = 512


@dataclass(frozen=True)
class BlockVerdict:
    blocked: bool
    indicator: Optional[str] = None

    def __bool__(self) -> bool:
        return self.blocked


PASS = BlockVerdict(False, None)


def _find_indicator(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for marker in BLOCK_INDICATORS:
        if marker in lowered:
            return marker
    return None


class BlockingDetector:
    """Classifies responses as blocked/challenge pages or usable content."""

    def __init__(self, min_body_bytes: int = DEFAULT_MIN_BODY_BYTES):
        self.min_body_bytes = min_body_bytes

    def _classify_json(self, value: Any) -> BlockVerdict:
        if not isinstance(value, dict):
            return PASS
        for field in JSON_MESSAGE_FIELDS:
            message = value.get(field)
            if isinstance(message, dict):
                message = message.get("message")
            if isinstance(message, str):
                marker = _find_indicator(message)
                if marker:
                    return BlockVerdict(True, f"json:{marker}")
        return PASS

    @staticmethod
    def _has_job_content(soup: BeautifulSoup) -> bool:
        for script in soup.find_all("script", type="application/ld+json"):
            if "JobPosting" in (script.string or script.get_text() or ""):
                return True
        return any(soup.select_one(selector) is not None for selector in JOB_CONTENT_SELECTORS)

    @staticmethod
    def _parse_json(body: str, content_type: str) -> Any:
        stripped = body.lstrip()
        if "json" not in content_type and not stripped.startswith(("{", "[")):
            raise ValueError("not json")
        return json.loads(stripped)

    def classify(self, body: str, title: Optional[str] = None, content_type: str = "") -> BlockVerdict:
        """
        Inspect one response body.

        JSON bodies are judged only by their error/message fields. Markup is
        checked against the indicator list (title and visible text) and the
        minimum body size.
        """
        body = body or ""
        try:
            return self._classify_json(self._parse_json(body, (content_type or "").lower()))
        except ValueError:
            pass

        soup = BeautifulSoup(body, "html.parser")
        page_title = title if title is not None else (soup.title.get_text(" ", strip=True) if soup.title else "")
        marker = _find_indicator(page_title)
        if marker:
            return BlockVerdict(True, f"title:{marker}")

        # job text may legitimately mention "security check" or an employer named Cloudflare
        if not self._has_job_content(soup):
            for tag in soup(["script", "style", "noscript", "template"]):
                tag.decompose()
            marker = _find_indicator(soup.get_text(" ", strip=True))
            if marker:
                return BlockVerdict(True, f"body:{marker}")

        size = len(body.encode("utf-8"))
        if size < self.min_body_bytes:
            return BlockVerdict(True, f"short-body:{size}b")
        return PASS

    def inspect(self, result) -> BlockVerdict:
        """Classify a FetchResult."""
        content_type = ""
        headers = getattr(result, "headers", None) or {}
        for key, value in headers.items():
            if key.lower() == "content-type":
                content_type = value or ""
                break
        verdict = self.classify(result.text, getattr(result, "title", None), content_type)
        if verdict.blocked:
            logger.warning("Blocked response at %s (%s)", result.url, verdict.indicator)
        return verdict
