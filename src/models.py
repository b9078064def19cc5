"""
Data models for the CareerBuilder scraper
Defines the canonical job record, the search query and phase enums
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

NOT_SPECIFIED = "Not specified"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Phase(str, Enum):
    """Retrieval phases, in escalation order"""

    API = "API"
    HTML = "HTML"
    BROWSER = "BROWSER"
    DONE = "DONE"


class PostedWithin(str, Enum):
    ANYTIME = "anytime"
    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"


# Site query code for the `posted` parameter; anytime is omitted entirely.
POSTED_WITHIN_CODES: Dict[PostedWithin, str] = {
    PostedWithin.LAST_24H: "1",
    PostedWithin.LAST_7D: "7",
    PostedWithin.LAST_30D: "30",
}


class JobRecord(BaseModel):
    """Represents a single normalized job posting"""

    title: str = NOT_SPECIFIED
    company: str = NOT_SPECIFIED
    location: str = NOT_SPECIFIED
    date_posted: str = NOT_SPECIFIED
    salary: str = NOT_SPECIFIED
    job_type: str = NOT_SPECIFIED
    description_html: str = NOT_SPECIFIED
    description_text: str = NOT_SPECIFIED
    url: str = NOT_SPECIFIED
    scraped_at: str = Field(default_factory=_utc_now_iso)

    # Metadata
    source: str = NOT_SPECIFIED
    raw: Dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "title", "company", "location", "date_posted", "salary", "job_type",
        "description_html", "description_text", "url", "source",
        mode="before",
    )
    @classmethod
    def _sentinel_for_missing(cls, value: Any) -> str:
        if value is None:
            return NOT_SPECIFIED
        text = str(value).strip()
        return text or NOT_SPECIFIED

    @field_validator("scraped_at", mode="before")
    @classmethod
    def _scraped_at_default(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return _utc_now_iso()
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    @field_validator("raw", mode="before")
    @classmethod
    def _raw_default(cls, value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        return {"value": value}

    def __str__(self) -> str:
        return f"{self.title} at {self.company} ({self.location})"


class SearchQuery(BaseModel):
    """Represents a job search query"""

    keyword: str = ""
    location: str = ""
    posted_within: PostedWithin = PostedWithin.ANYTIME
    results_wanted: int = Field(default=100, ge=1)
    max_pages: int = Field(default=20, ge=1)
    start_url: Optional[str] = None
    cookie_header: Optional[str] = None

    def __str__(self) -> str:
        if self.start_url:
            return self.start_url
        return f"'{self.keyword or '*'}' in {self.location or 'anywhere'}"
