"""
Field alias table and the shared "looks like a job" scoring.

Every extractor and the normalizer read raw job objects through this table so
the notion of a title/company/url field is defined in exactly one place.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

SITE_ORIGIN = "https://www.careerbuilder.com"
SITE_HOST = "careerbuilder.com"

# CareerBuilder detail pages: /job/<DID>, DIDs are alphanumeric.
JOB_DID_RE = re.compile(r"/job/([A-Za-z0-9]{6,})(?:[/?#]|$)")

# Ordered: the first alias present and truthy wins.
FIELD_ALIASES: Dict[str, List[str]] = {
    "title": ["title", "jobTitle", "job_title", "name", "positionTitle", "position"],
    "company": [
        "company", "companyName", "company_name", "hiringOrganization",
        "employer", "employerName", "organization",
    ],
    "location": [
        "location", "locationName", "location_name", "formattedLocation",
        "jobLocationText", "locationText",
    ],
    "structured_location": ["jobLocation", "address", "location"],
    "city": ["city", "addressLocality", "locality"],
    "state": ["state", "addressRegion", "region", "stateCode"],
    "country": ["country", "addressCountry", "countryCode"],
    "date_posted": [
        "datePosted", "date_posted", "postedDate", "posted_date", "postedAt",
        "posted_at", "posted", "publishDate", "createdAt", "created_at",
    ],
    "salary": [
        "baseSalary", "estimatedSalary", "salary", "salaryText", "pay",
        "compensation", "salaryRange",
    ],
    "job_type": ["employmentType", "employment_type", "jobType", "job_type", "type"],
    "description": [
        "description", "descriptionHtml", "description_html", "jobDescription",
        "job_description", "summary", "snippet",
    ],
    "url": [
        "url", "jobUrl", "job_url", "link", "href", "detailUrl", "canonicalUrl",
        "applyUrl", "apply_url",
    ],
    "id": [
        "id", "jobId", "job_id", "did", "jobDid", "job_did", "externalId",
        "external_id", "identifier",
    ],
}


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def first_alias(obj: Dict[str, Any], field: str) -> Any:
    """Return the first present and truthy alias value for `field`, or None."""
    if not isinstance(obj, dict):
        return None
    for key in FIELD_ALIASES.get(field, [field]):
        value = obj.get(key)
        if _truthy(value):
            return value
    return None


def _has_any(obj: Dict[str, Any], fields: Iterable[str]) -> bool:
    return any(first_alias(obj, field) is not None for field in fields)


@dataclass(frozen=True)
class JobSignal:
    has_title: bool
    has_company: bool
    has_link_or_id: bool

    @property
    def score(self) -> int:
        return int(self.has_title) + int(self.has_company) + int(self.has_link_or_id)

    @property
    def is_empty(self) -> bool:
        return self.score == 0


def job_signal(obj: Any) -> JobSignal:
    """Score one candidate object against the alias table."""
    if not isinstance(obj, dict):
        return JobSignal(False, False, False)
    link_or_id = _has_any(obj, ("url", "id"))
    if not link_or_id:
        at_id = obj.get("@id")
        link_or_id = isinstance(at_id, str) and at_id.startswith("http")
    return JobSignal(
        has_title=_has_any(obj, ("title",)),
        has_company=_has_any(obj, ("company",)),
        has_link_or_id=link_or_id,
    )


def looks_like_job_array(items: Any) -> bool:
    """
    True when `items` is a non-empty list of objects where at least one element
    has a title, at least one has a company, and at least one has a url or id.
    """
    if not isinstance(items, list) or not items:
        return False
    if not all(isinstance(item, dict) for item in items):
        return False
    signals = [job_signal(item) for item in items]
    return (
        any(s.has_title for s in signals)
        and any(s.has_company for s in signals)
        and any(s.has_link_or_id for s in signals)
    )


def explicit_job_id(obj: Dict[str, Any]) -> Optional[str]:
    value = first_alias(obj, "id")
    if isinstance(value, dict):
        value = value.get("value") or value.get("name")
    if value is None or isinstance(value, (list, dict, bool)):
        return None
    text = str(value).strip()
    return text or None


def explicit_job_url(obj: Dict[str, Any]) -> Optional[str]:
    value = first_alias(obj, "url")
    if value is None:
        at_id = obj.get("@id") if isinstance(obj, dict) else None
        if isinstance(at_id, str) and at_id.startswith("http"):
            value = at_id
    if not isinstance(value, str):
        return None
    return value.strip() or None


def absolute_url(href: str, base: str = SITE_ORIGIN) -> str:
    return urljoin(base, href.strip())


def normalize_url(url: str) -> Optional[str]:
    """Lowercase scheme and host, drop the fragment and any trailing slash."""
    parsed = urlparse(absolute_url(url))
    if not parsed.scheme or not parsed.netloc:
        return None
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, ""))


def job_did(url: str) -> Optional[str]:
    match = JOB_DID_RE.search(urlparse(absolute_url(url)).path + "/")
    return match.group(1) if match else None


def dedup_key(obj: Dict[str, Any], fallback_url: Optional[str] = None) -> Optional[str]:
    """
    Derive the run-wide dedup key for a raw job.

    Explicit ids win, then the /job/<DID> segment of the job URL, then the
    normalized URL itself. Returns None when no key can be derived.
    """
    job_id = explicit_job_id(obj) if isinstance(obj, dict) else None
    if job_id:
        return f"id:{job_id}"

    url = (explicit_job_url(obj) if isinstance(obj, dict) else None) or fallback_url
    if not url:
        return None
    did = job_did(url)
    if did:
        return f"id:{did}"
    normalized = normalize_url(url)
    return f"url:{normalized}" if normalized else None
