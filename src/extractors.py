"""
Extraction strategies - pull raw job objects and job links out of fetched payloads

API payloads are parsed JSON; everything else works on BeautifulSoup trees
(html.parser). Extractors never raise on shape mismatch, they return [].
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from bs4 import BeautifulSoup, Tag

from errors import ParseError
from job_fields import SITE_ORIGIN, absolute_url, looks_like_job_array
from json_tree import DEFAULT_MAX_DEPTH, DEFAULT_MAX_NODES, BoundedJsonVisitor

logger = logging.getLogger(__name__)

RawJob = Dict[str, Any]
Payload = Union[str, bytes, BeautifulSoup]


def make_soup(payload: Payload) -> BeautifulSoup:
    if isinstance(payload, BeautifulSoup):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return BeautifulSoup(payload or "", "html.parser")


def _script_text(script: Tag) -> str:
    return (script.string or script.get_text() or "").strip()


def _dedupe_in_order(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class ApiExtractor:
    """Finds the job array in a JSON API response."""

    PATHS = (
        "data.results",
        "data.jobs",
        "data.items",
        "data.jobResults",
        "results",
        "jobs",
        "items",
        "jobResults",
        "data",
    )

    def parse(self, text: str) -> Any:
        try:
            return json.loads(text)
        except (TypeError, ValueError) as exc:
            raise ParseError(f"Malformed JSON payload: {exc}") from exc

    @staticmethod
    def _lookup(payload: Any, path: str) -> Any:
        value = payload
        for part in path.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value

    def extract(self, payload: Any) -> List[RawJob]:
        if isinstance(payload, dict):
            for path in self.PATHS:
                value = self._lookup(payload, path)
                if isinstance(value, list):
                    return list(value)
            values = list(payload.values())
            if values and all(isinstance(v, dict) for v in values):
                return values
            return []
        if isinstance(payload, list):
            return list(payload)
        return []


class JsonLdExtractor:
    """Collects schema.org JobPosting nodes from ld+json script blocks."""

    def extract(self, payload: Payload) -> List[RawJob]:
        soup = make_soup(payload)
        postings: List[RawJob] = []
        for script in soup.find_all("script", type="application/ld+json"):
            raw = _script_text(script)
            if not raw:
                continue
            try:
                data = json.loads(raw)
            except ValueError as exc:
                logger.debug("Skipping malformed JSON-LD block: %s", exc)
                continue
            self._collect(data, postings)
        return postings

    def _collect(self, node: Any, out: List[RawJob], depth: int = 0) -> None:
        if depth > DEFAULT_MAX_DEPTH:
            return
        if isinstance(node, list):
            for item in node:
                self._collect(item, out, depth + 1)
            return
        if not isinstance(node, dict):
            return
        if self._is_job_posting(node):
            out.append(node)
            return
        graph = node.get("@graph")
        if isinstance(graph, list):
            self._collect(graph, out, depth + 1)
        elements = node.get("itemListElement")
        if isinstance(elements, list):
            for element in elements:
                if isinstance(element, dict) and "item" in element:
                    self._collect(element["item"], out, depth + 1)
                else:
                    self._collect(element, out, depth + 1)

    @staticmethod
    def _is_job_posting(item: Dict[str, Any]) -> bool:
        item_type = item.get("@type", "")
        if isinstance(item_type, str):
            return "JobPosting" in item_type
        if isinstance(item_type, list):
            return any("JobPosting" in str(t) for t in item_type)
        return False


class EmbeddedStateExtractor:
    """
    Finds a job array inside inline application state.

    JSON-typed scripts and the well-known state containers are tried first,
    then `identifier = {...}` assignments inside plain scripts. Each parsed
    value is searched with a bounded visitor for the first array that
    qualifies as a job array.
    """

    STATE_CONTAINERS = ("__NEXT_DATA__", "__NUXT_DATA__", "__INITIAL_STATE__", "__APOLLO_STATE__")
    JSON_SCRIPT_TYPES = ("application/json", "application/ld+json")
    ASSIGNMENT_RE = re.compile(r"(?:^|[\s;,(])((?:window\.)?[A-Za-z_$][\w$.]*)\s*=\s*(?=[\[{])")

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, max_nodes: int = DEFAULT_MAX_NODES):
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self._decoder = json.JSONDecoder()

    def find_job_array(self, value: Any) -> List[RawJob]:
        visitor = BoundedJsonVisitor(max_depth=self.max_depth, max_nodes=self.max_nodes)
        found = visitor.find_first(value, looks_like_job_array)
        if visitor.budget_exhausted:
            logger.debug("Embedded state search stopped after %s nodes", visitor.visited)
        return list(found) if found else []

    def extract(self, payload: Payload) -> List[RawJob]:
        soup = make_soup(payload)
        scripts = soup.find_all("script")

        # Pass 1: declared JSON blocks and named state containers
        for script in scripts:
            script_type = (script.get("type") or "").lower()
            script_id = script.get("id") or ""
            if script_type not in self.JSON_SCRIPT_TYPES and script_id not in self.STATE_CONTAINERS:
                continue
            raw = _script_text(script)
            if not raw:
                continue
            try:
                value = json.loads(raw)
            except ValueError:
                continue
            jobs = self.find_job_array(value)
            if jobs:
                logger.debug("Job array found in <script id=%s type=%s>", script_id, script_type)
                return jobs

        # Pass 2: inline assignments, well-known containers first
        candidates: List[tuple] = []
        for script in scripts:
            if script.get("src"):
                continue
            text = _script_text(script)
            if not text:
                continue
            for match in self.ASSIGNMENT_RE.finditer(text):
                name = match.group(1)
                known = any(container in name for container in self.STATE_CONTAINERS)
                candidates.append((0 if known else 1, name, text, match.end()))

        candidates.sort(key=lambda c: c[0])
        for _, name, text, start in candidates:
            try:
                value, _ = self._decoder.raw_decode(text, start)
            except ValueError:
                continue
            jobs = self.find_job_array(value)
            if jobs:
                logger.debug("Job array found in inline assignment %s", name)
                return jobs
        return []


class HtmlHeuristicExtractor:
    """Harvests job detail links from a listing page."""

    def __init__(self, base_url: str = SITE_ORIGIN):
        self.base_url = base_url

    @staticmethod
    def _direct_links(soup: BeautifulSoup) -> List[str]:
        links = []
        for anchor in soup.select('a[href*="/job/"]'):
            href = anchor.get("href") or ""
            if "/job/" in href and "?" not in href and len(href) > 20:
                links.append(href)
        return links

    @staticmethod
    def _first_job_href(element: Tag) -> Optional[str]:
        href = element.get("href") or ""
        if "/job/" in href:
            return href
        anchor = element.find("a", href=True)
        if anchor and "/job/" in anchor["href"]:
            return anchor["href"]
        return None

    def _data_attribute_links(self, soup: BeautifulSoup) -> List[str]:
        links = []
        for element in soup.select("[data-job-did], [data-job-id]"):
            href = self._first_job_href(element)
            if href:
                links.append(href)
        return links

    @staticmethod
    def _container_links(soup: BeautifulSoup) -> List[str]:
        links = []
        for element in soup.select('div[class*="job"], article[class*="job"], li[class*="job"]'):
            anchor = element.select_one('a[href*="/job/"]')
            if anchor and anchor.get("href"):
                links.append(anchor["href"])
        return links

    def _tagged_links(self, soup: BeautifulSoup) -> List[str]:
        links = []
        for element in soup.select('[onclick*="job"], [data-gtm*="job"]'):
            href = self._first_job_href(element)
            if href:
                links.append(href)
        return links

    def extract(self, payload: Payload) -> List[str]:
        soup = make_soup(payload)
        strategies = (
            self._direct_links,
            self._data_attribute_links,
            self._container_links,
            self._tagged_links,
        )
        for strategy in strategies:
            found = strategy(soup)
            if found:
                logger.debug("Link strategy %s matched %s links", strategy.__name__, len(found))
                return _dedupe_in_order(absolute_url(href, self.base_url) for href in found)
        return []


def _clean_text(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


def _first_text(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    for selector in selectors:
        text = _clean_text(soup.select_one(selector))
        if text:
            return text
    return ""


class DomFieldExtractor:
    """Reads a job detail page straight from its DOM."""

    TITLE_SELECTORS = ("h1", '[class*="title"]')
    COMPANY_SELECTORS = ('[class*="company"]', '[data-testid*="company"]')
    LOCATION_SELECTORS = ('[class*="location"]', '[data-testid*="location"]')
    POSTED_SELECTORS = ("time", '[class*="posted"]')
    DESCRIPTION_SELECTOR = '[class*="description"]'

    def extract(self, payload: Payload, url: Optional[str] = None) -> List[RawJob]:
        soup = make_soup(payload)
        title = _first_text(soup, self.TITLE_SELECTORS)
        if not title:
            return []

        raw: RawJob = {
            "title": title,
            "company": _first_text(soup, self.COMPANY_SELECTORS),
            "location": _first_text(soup, self.LOCATION_SELECTORS),
            "datePosted": _first_text(soup, self.POSTED_SELECTORS),
        }
        description = soup.select_one(self.DESCRIPTION_SELECTOR)
        if description is not None:
            raw["description"] = description.decode_contents()
        if url:
            raw["url"] = url
        return [raw]


class DomCardExtractor:
    """Reads rendered listing cards (browser phase)."""

    def __init__(self, base_url: str = SITE_ORIGIN):
        self.base_url = base_url

    def extract(self, payload: Payload) -> List[RawJob]:
        soup = make_soup(payload)
        results: List[RawJob] = []

        for anchor in soup.select('a[href*="/job/"]'):
            href = anchor.get("href")
            title = _clean_text(anchor)
            if not href or len(title) <= 5:
                continue
            company, location = "", ""
            container = anchor.find_parent(["div", "li", "article"])
            if container is not None:
                for index, span in enumerate(container.find_all("span")):
                    text = _clean_text(span)
                    if index == 0 and text and len(text) < 50:
                        company = text
                    if any(marker in text for marker in ("|", ",", "(")):
                        location = text
            results.append({
                "title": title[:150],
                "company": company,
                "location": location,
                "url": absolute_url(href, self.base_url),
            })

        for element in soup.select("[data-job-did]"):
            link = element.find("a", href=True)
            title = _clean_text(link) or _clean_text(element.select_one('[class*="title"]'))
            if not title or link is None:
                continue
            results.append({
                "id": element.get("data-job-did"),
                "title": title,
                "company": _clean_text(element.select_one('[class*="company"]')),
                "location": _clean_text(element.select_one('[class*="location"]')),
                "url": absolute_url(link["href"], self.base_url),
            })

        return results
