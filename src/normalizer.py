"""
Normalizer - maps any raw job shape into a JobRecord

Field lookups go through the shared alias table in job_fields. Description
cleaning is shared by every source.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString

from job_fields import (
    SITE_ORIGIN,
    absolute_url,
    dedup_key,
    explicit_job_url,
    first_alias,
    job_signal,
)
from models import NOT_SPECIFIED, JobRecord

logger = logging.getLogger(__name__)

DROP_TAGS = ("script", "style", "button", "noscript", "iframe", "form", "nav")
BLOCK_TAGS = (
    "p", "div", "section", "article", "ul", "ol", "li", "h1", "h2", "h3", "h4",
    "h5", "h6", "table", "tr", "blockquote", "header", "footer",
)
JUNK_ATTR_RE = re.compile(
    r"(?:^|[-_\s])(?:ad|ads|advert\w*|banner|promo\w*|sponsor\w*|nav\w*|breadcrumb\w*|share|social|related-jobs)(?:[-_\s]|$)",
    re.IGNORECASE,
)
JUNK_TEXT_RE = re.compile(
    r"^\s*(?:apply now|apply for this job|easy apply|quick apply|report this job|save job|share this job)\s*[.!]?\s*$",
    re.IGNORECASE,
)
CURRENCY_SYMBOLS = {"USD": "$", "CAD": "$", "EUR": "€", "GBP": "£"}
JOB_TYPE_MAP = {
    "full-time": "Full-time",
    "fulltime": "Full-time",
    "part-time": "Part-time",
    "parttime": "Part-time",
    "contract": "Contract",
    "contractor": "Contract",
    "temporary": "Temporary",
    "intern": "Internship",
    "internship": "Internship",
    "seasonal": "Seasonal",
    "per-diem": "Per diem",
}


def _junk_attrs(tag) -> bool:
    if tag.attrs is None:
        return False
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    values = list(classes) + [tag.get("id") or ""]
    return any(value and JUNK_ATTR_RE.search(value) for value in values)


def _text_from_soup(soup: BeautifulSoup) -> str:
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    lines: List[str] = []
    for line in soup.get_text().splitlines():
        line = " ".join(line.split())
        if not line and (not lines or not lines[-1]):
            continue
        lines.append(line)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def clean_description(raw_html: str) -> Tuple[str, str]:
    """Return (description_html, description_text) for a raw description."""
    markup = (raw_html or "").strip()
    if not markup:
        return "", ""
    if "<" not in markup and "&lt;" in markup:
        markup = html.unescape(markup)

    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(DROP_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for tag in soup.find_all(_junk_attrs):
        if not tag.decomposed:
            tag.decompose()
    for fragment in soup.find_all(string=True):
        if isinstance(fragment, NavigableString) and JUNK_TEXT_RE.match(str(fragment)):
            fragment.extract()
    for anchor in soup.find_all("a"):
        anchor.unwrap()
    for tag in reversed(soup.find_all(BLOCK_TAGS)):
        if not tag.get_text(strip=True) and not tag.find("img"):
            tag.decompose()

    cleaned_html = re.sub(r"\s+", " ", str(soup)).strip()
    text = _text_from_soup(BeautifulSoup(cleaned_html, "html.parser"))
    return cleaned_html, text


def _normalize_salary_unit(unit: Optional[str]) -> Optional[str]:
    if not unit:
        return None
    unit_lower = str(unit).strip().lower()
    if unit_lower in ("yr", "year", "yearly", "annual", "annually"):
        return "year"
    if unit_lower in ("hr", "hour", "hourly"):
        return "hour"
    if unit_lower in ("mo", "month", "monthly"):
        return "month"
    if unit_lower in ("wk", "week", "weekly"):
        return "week"
    return unit_lower


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError:
        return None


def _format_amount(symbol: str, value: float) -> str:
    if value.is_integer():
        return f"{symbol}{int(value):,}"
    return f"{symbol}{value:,.2f}"


def format_salary(currency: Optional[str], min_value: Any, max_value: Any, unit: Optional[str]) -> Optional[str]:
    low, high = _to_number(min_value), _to_number(max_value)
    if low is None and high is None:
        return None
    symbol = CURRENCY_SYMBOLS.get((currency or "").upper(), f"{currency} " if currency else "")
    parts = [_format_amount(symbol, v) for v in (low, high) if v is not None]
    if len(parts) == 2 and parts[0] == parts[1]:
        parts = parts[:1]
    salary = " - ".join(parts)
    unit_norm = _normalize_salary_unit(unit)
    if unit_norm:
        article = "an" if unit_norm == "hour" else "a"
        salary = f"{salary} {article} {unit_norm}"
    return salary


def _salary_from_object(obj: Dict[str, Any]) -> Optional[str]:
    currency = obj.get("currency") or obj.get("currencyCode")
    value = obj.get("value")
    if isinstance(value, dict):
        return format_salary(
            currency or value.get("currency"),
            value.get("minValue", value.get("value")),
            value.get("maxValue"),
            value.get("unitText") or obj.get("unitText"),
        )
    if value is not None:
        return format_salary(currency, value, None, obj.get("unitText"))
    formatted = format_salary(
        currency,
        obj.get("minValue", obj.get("min")),
        obj.get("maxValue", obj.get("max")),
        obj.get("unitText") or obj.get("period") or obj.get("unit"),
    )
    if formatted:
        return formatted
    text = obj.get("text") or obj.get("label")
    return str(text).strip() if text else None


def normalize_salary(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_salary("USD", value, None, None)
    if isinstance(value, list):
        for entry in value:
            formatted = normalize_salary(entry)
            if formatted:
                return formatted
        return None
    if isinstance(value, dict):
        return _salary_from_object(value)
    return None


def _normalize_job_type_value(value: str) -> Optional[str]:
    if not value:
        return None
    normalized = str(value).strip().replace("_", "-").replace(" ", "-").lower()
    if normalized in JOB_TYPE_MAP:
        return JOB_TYPE_MAP[normalized]
    return normalized.replace("-", " ").title()


def normalize_job_type(value: Any) -> Optional[str]:
    entries = value if isinstance(value, list) else [value]
    types: List[str] = []
    for entry in entries:
        if entry is None or isinstance(entry, (dict, list)):
            continue
        normalized = _normalize_job_type_value(str(entry))
        if normalized and normalized not in types:
            types.append(normalized)
    return ", ".join(types) if types else None


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name") or value.get("legalName") or value.get("value")
    if isinstance(value, list):
        value = next((_name_of(v) for v in value if _name_of(v)), None)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = " ".join(str(value).split())
    return text or None


def _address_parts(address: Dict[str, Any]) -> List[str]:
    parts: List[str] = []
    for field in ("city", "state", "country"):
        part = _name_of(first_alias(address, field))
        if part and part not in parts:
            parts.append(part)
    return parts


def _structured_location(raw: Dict[str, Any]) -> Optional[str]:
    value = first_alias(raw, "structured_location")
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, dict)), None)
    if not isinstance(value, dict):
        return None
    address = value.get("address", value)
    if isinstance(address, str):
        return address.strip() or None
    if isinstance(address, dict):
        parts = _address_parts(address)
        if parts:
            return ", ".join(parts)
    return _name_of(value)


def normalize_location(raw: Dict[str, Any]) -> Optional[str]:
    location = _structured_location(raw)
    if location:
        return location

    parts = _address_parts(raw)
    if parts:
        return ", ".join(parts)

    flat = first_alias(raw, "location")
    if isinstance(flat, str) and flat.strip():
        return " ".join(flat.split())

    if str(raw.get("jobLocationType") or "").upper() == "TELECOMMUTE":
        return "Remote"
    return None


@dataclass(frozen=True)
class NormalizedJob:
    key: str
    record: JobRecord


class Normalizer:
    """Maps raw job dicts to (dedup key, JobRecord) pairs."""

    def __init__(self, base_url: str = SITE_ORIGIN):
        self.base_url = base_url

    def normalize(self, raw: Any, source: str, fallback_url: Optional[str] = None) -> Optional[NormalizedJob]:
        """Return None when the raw job has no title/company signal or no key."""
        if not isinstance(raw, dict):
            return None
        signal = job_signal(raw)
        if not (signal.has_title or signal.has_company):
            return None
        key = dedup_key(raw, fallback_url)
        if key is None:
            return None

        url = explicit_job_url(raw) or fallback_url
        description = first_alias(raw, "description")
        description_html, description_text = clean_description(
            description if isinstance(description, str) else ""
        )

        record = JobRecord(
            title=_name_of(first_alias(raw, "title")),
            company=_name_of(first_alias(raw, "company")),
            location=normalize_location(raw),
            date_posted=_name_of(first_alias(raw, "date_posted")),
            salary=normalize_salary(first_alias(raw, "salary")),
            job_type=normalize_job_type(first_alias(raw, "job_type")),
            description_html=description_html,
            description_text=description_text,
            url=absolute_url(url, self.base_url) if url else NOT_SPECIFIED,
            source=source,
            raw=raw,
        )
        return NormalizedJob(key=key, record=record)
