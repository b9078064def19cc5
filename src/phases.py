"""
Retrieval phases.

ApiPhase pages through configured JSON endpoints. CrawlPhase walks listing
(LIST) and job detail (DETAIL) pages and backs both the HTML and the BROWSER
phase; the browser flavour adds captured-JSON and rendered-card extraction.

Fetching and per-item extraction may run on worker threads. RunState, the
dedupe store and the sink are only touched on the calling thread.
"""

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol, Set
from urllib.parse import parse_qsl, quote_plus, urlencode, urlparse, urlunparse

from blocking import BlockingDetector
from errors import (
    BlockedResponse,
    ExtractionMiss,
    FatalConfigError,
    ParseError,
    ScraperError,
    TransportError,
)
from extractors import (
    ApiExtractor,
    DomCardExtractor,
    DomFieldExtractor,
    EmbeddedStateExtractor,
    HtmlHeuristicExtractor,
    JsonLdExtractor,
    make_soup,
)
from http_fetcher import FetchResult, build_headers
from job_fields import SITE_ORIGIN, dedup_key, looks_like_job_array
from models import POSTED_WITHIN_CODES, Phase, SearchQuery
from normalizer import NormalizedJob, Normalizer
from orchestrator import PhaseOutcome
from pagination import PaginationResolver
from proxy_manager import Session, SessionPool
from run_metrics import RunMetrics
from run_state import RunState

logger = logging.getLogger(__name__)

API_STRIKE_LIMIT = 2
BLOCK_STRIKE_LIMIT = 2


class Fetcher(Protocol):
    def fetch(self, url: str, headers: Optional[Dict[str, str]], session: Session) -> FetchResult: ...

    def warm_up(self, session: Session) -> None: ...


def _emit_all(
    state: RunState,
    normalizer: Normalizer,
    items: List[Any],
    source: str,
    fallback_url: Optional[str] = None,
    metrics: Optional[RunMetrics] = None,
) -> int:
    """Normalize and emit raw jobs; returns how many new records reached the sink."""
    emitted = 0
    for raw in items:
        if state.quota_met:
            break
        normalized = normalizer.normalize(raw, source, fallback_url)
        if normalized is None:
            if metrics is not None:
                metrics.inc("rejected")
            continue
        if state.try_emit(normalized.key, normalized.record):
            emitted += 1
    return emitted


def _with_query_param(url: str, name: str, value: str) -> str:
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != name]
    params.append((name, value))
    return urlunparse(parsed._replace(query=urlencode(params)))


class ApiPhase:
    """Pages through JSON search endpoints built from URL templates."""

    def __init__(
        self,
        fetcher: Fetcher,
        pool: SessionPool,
        detector: BlockingDetector,
        normalizer: Normalizer,
        query: SearchQuery,
        templates: List[str],
        page_size: int = 25,
        max_consecutive_failures: int = 5,
        metrics: Optional[RunMetrics] = None,
    ):
        self.fetcher = fetcher
        self.pool = pool
        self.detector = detector
        self.normalizer = normalizer
        self.query = query
        self.templates = templates
        self.page_size = page_size
        self.max_consecutive_failures = max_consecutive_failures
        self.metrics = metrics
        self.extractor = ApiExtractor()

    def _inc(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    def build_url(self, template: str, page: int) -> str:
        values = {
            "keyword": quote_plus(self.query.keyword or ""),
            "location": quote_plus(self.query.location or ""),
            "page": page,
            "page_size": self.page_size,
        }
        try:
            url = template.format_map(values)
        except (KeyError, IndexError, ValueError) as exc:
            raise FatalConfigError(f"Invalid API template {template!r}: {exc}") from exc
        code = POSTED_WITHIN_CODES.get(self.query.posted_within)
        if code:
            url = _with_query_param(url, "posted", code)
        return url

    def _fetch_page(self, url: str) -> Optional[List[Any]]:
        """
        Fetch one API page. Returns the raw items, or None for a failed page
        (transport error, HTTP error, block or malformed JSON).
        """
        # TransportError propagates to run(); only blocked responses retire a session
        session = self.pool.acquire()
        self.fetcher.warm_up(session)
        result = self.fetcher.fetch(url, build_headers("json", referer=f"{SITE_ORIGIN}/jobs"), session)

        verdict = self.detector.inspect(result)
        if verdict.blocked:
            self._inc("blocked")
            self.pool.mark_bad(session, f"blocked:{verdict.indicator}")
            return None
        if not result.ok:
            logger.warning("API page %s returned HTTP %s", url, result.status_code)
            return None

        self.pool.mark_good(session)
        try:
            payload = self.extractor.parse(result.text)
        except ParseError as exc:
            self._inc("parse_errors")
            logger.warning("API page %s: %s", url, exc)
            return None
        return self.extractor.extract(payload)

    def run(self, state: RunState) -> PhaseOutcome:
        if not self.templates:
            return PhaseOutcome.exhausted("no API endpoints configured")

        phase_jobs = 0
        transport_failures = 0
        for template in self.templates:
            strikes = 0
            template_jobs = 0
            page = 1
            while page <= self.query.max_pages and state.try_start_page(Phase.API):
                url = self.build_url(template, page)
                logger.info("📡 API page %s: %s", page, url)
                try:
                    items = self._fetch_page(url)
                    transport_failures = 0
                except TransportError as exc:
                    transport_failures += 1
                    logger.warning("API transport failure (%s in a row): %s", transport_failures, exc)
                    if transport_failures > self.max_consecutive_failures:
                        return PhaseOutcome.blocked("transport failure budget exceeded", phase_jobs, exc)
                    items = None

                new_jobs = _emit_all(state, self.normalizer, items or [], "api", metrics=self.metrics)
                template_jobs += new_jobs
                phase_jobs += new_jobs
                if state.quota_met:
                    return PhaseOutcome.success(jobs=phase_jobs)

                if new_jobs == 0:
                    strikes += 1
                    if strikes >= API_STRIKE_LIMIT:
                        logger.info("API endpoint abandoned after %s empty pages: %s", strikes, template)
                        break
                else:
                    strikes = 0
                page += 1

            if template_jobs > 0:
                return PhaseOutcome.exhausted("API endpoint exhausted", phase_jobs)
            if state.quota_met:
                return PhaseOutcome.success(jobs=phase_jobs)

        return PhaseOutcome.exhausted("no API endpoint produced jobs", phase_jobs)


class ItemKind(str, Enum):
    LIST = "LIST"
    DETAIL = "DETAIL"


@dataclass(frozen=True)
class WorkItem:
    url: str
    kind: ItemKind
    page: int = 1
    attempts: int = 0
    key: Optional[str] = None

    def retry(self) -> "WorkItem":
        return WorkItem(self.url, self.kind, self.page, self.attempts + 1, self.key)


class VisitStatus(str, Enum):
    OK = "ok"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class Visit:
    item: WorkItem
    status: VisitStatus
    result: Optional[FetchResult] = None
    reason: str = ""
    job: Optional[NormalizedJob] = None
    error: Optional[ScraperError] = None


class CrawlPhase:
    """LIST/DETAIL crawl shared by the HTML and BROWSER phases."""

    def __init__(
        self,
        phase: Phase,
        fetcher: Fetcher,
        pool: SessionPool,
        detector: BlockingDetector,
        normalizer: Normalizer,
        query: SearchQuery,
        start_url: str,
        concurrency: int = 1,
        max_item_attempts: int = 2,
        max_consecutive_failures: int = 5,
        metrics: Optional[RunMetrics] = None,
    ):
        self.phase = phase
        self.fetcher = fetcher
        self.pool = pool
        self.detector = detector
        self.normalizer = normalizer
        self.query = query
        self.start_url = start_url
        self.concurrency = max(1, min(int(concurrency), 4))
        self.max_item_attempts = max_item_attempts
        self.max_consecutive_failures = max_consecutive_failures
        self.metrics = metrics
        self.browser_mode = phase is Phase.BROWSER

        self.json_ld = JsonLdExtractor()
        self.embedded = EmbeddedStateExtractor()
        self.links = HtmlHeuristicExtractor()
        self.api = ApiExtractor()
        self.dom_fields = DomFieldExtractor()
        self.cards = DomCardExtractor()
        self.pagination = PaginationResolver()

    @property
    def source_prefix(self) -> str:
        return "browser" if self.browser_mode else "html"

    def _inc(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    # --- fetching (worker-safe) ---

    def _visit(self, item: WorkItem) -> Visit:
        session = self.pool.acquire()
        try:
            self.fetcher.warm_up(session)
            result = self.fetcher.fetch(item.url, build_headers(), session)
        except TransportError as exc:
            return Visit(item, VisitStatus.FAILED, reason=str(exc), error=exc)

        verdict = self.detector.inspect(result)
        if verdict.blocked:
            self.pool.mark_bad(session, f"blocked:{verdict.indicator}")
            return Visit(
                item, VisitStatus.BLOCKED, result,
                reason=verdict.indicator or "blocked",
                error=BlockedResponse(item.url, verdict.indicator),
            )
        if not result.ok:
            return Visit(item, VisitStatus.FAILED, result, reason=f"HTTP {result.status_code}")
        self.pool.mark_good(session)
        return Visit(item, VisitStatus.OK, result)

    def _captured_jobs(self, result: FetchResult) -> List[Any]:
        jobs: List[Any] = []
        for payload in result.captured_json:
            items = self.api.extract(payload)
            if not looks_like_job_array(items):
                items = self.embedded.find_job_array(payload)
            jobs.extend(items)
        return jobs

    def _visit_detail(self, item: WorkItem) -> Visit:
        visit = self._visit(item)
        if visit.status is not VisitStatus.OK:
            return visit

        result = visit.result
        soup = make_soup(result.text)
        candidates = [
            (f"{self.source_prefix}-json-ld", self.json_ld.extract(soup)[:1]),
            (f"{self.source_prefix}-api", self._captured_jobs(result) if self.browser_mode else []),
            (f"{self.source_prefix}-detail", self.dom_fields.extract(soup, item.url)),
        ]
        for source, raws in candidates:
            for raw in raws:
                visit.job = self.normalizer.normalize(raw, source, fallback_url=item.url)
                if visit.job is not None:
                    return visit
        visit.error = ExtractionMiss(f"No job found on {item.url}")
        logger.warning("❌ %s", visit.error)
        return visit

    # --- applying results (calling thread only) ---

    def _process_list(
        self, state: RunState, item: WorkItem, result: FetchResult, queue: Deque[WorkItem], pending: Set[str]
    ) -> int:
        soup = make_soup(result.text)
        prefix = self.source_prefix
        found = 0
        emitted = 0

        batches = []
        if self.browser_mode:
            batches.append((f"{prefix}-api", self._captured_jobs(result)))
        batches.append((f"{prefix}-json-ld", self.json_ld.extract(soup)))
        batches.append((f"{prefix}-embedded-state", self.embedded.extract(soup)))
        if self.browser_mode:
            batches.append((f"{prefix}-card", self.cards.extract(soup)))

        for source, raws in batches:
            if raws:
                logger.info("✨ %s candidate jobs from %s", len(raws), source)
            found += len(raws)
            emitted += _emit_all(state, self.normalizer, raws, source, metrics=self.metrics)

        links = self.links.extract(soup)
        logger.info("🔗 Found %s job URLs on page %s", len(links), item.page)
        enqueued = 0
        for link in links:
            if state.jobs_scraped + len(pending) >= state.results_wanted:
                break
            key = dedup_key({"url": link})
            if key is None or key in pending or state.dedupe.is_claimed(key):
                continue
            pending.add(key)
            queue.append(WorkItem(link, ItemKind.DETAIL, item.page, key=key))
            enqueued += 1
        if enqueued:
            logger.info("➕ Enqueued %s detail pages", enqueued)

        if not links and found == 0:
            logger.warning(
                "⚠️ No jobs found on %s. Possible causes: site structure changed, "
                "being blocked (try a proxy or cookies), or the search returned no results",
                item.url,
            )
            return emitted

        if state.quota_met:
            return emitted
        if item.page >= self.query.max_pages or state.pages_left(self.phase) == 0:
            logger.info("🛑 Max pages limit reached: %s", self.query.max_pages)
            return emitted
        next_url = self.pagination.resolve(soup, item.url, item.page)
        if next_url:
            logger.info("📄 Next page found: %s", item.page + 1)
            queue.append(WorkItem(next_url, ItemKind.LIST, item.page + 1))
        else:
            logger.info("🏁 No more pages to scrape")
        return emitted

    def _close_retired_contexts(self) -> None:
        close_retired = getattr(self.fetcher, "close_retired", None)
        if close_retired is not None:
            close_retired(self.pool.drain_retired())

    def run(self, state: RunState) -> PhaseOutcome:
        queue: Deque[WorkItem] = deque([WorkItem(self.start_url, ItemKind.LIST, 1)])
        pending: Set[str] = set()
        phase_jobs = 0
        consecutive_blocks = 0
        consecutive_failures = 0

        executor = ThreadPoolExecutor(max_workers=self.concurrency) if self.concurrency > 1 else None
        try:
            while queue and not state.quota_met:
                if queue[0].kind is ItemKind.LIST:
                    item = queue.popleft()
                    if item.attempts == 0 and not state.try_start_page(self.phase):
                        logger.info("Page budget spent for %s phase", self.phase.value)
                        continue
                    logger.info("📄 Scraping listing page %s: %s", item.page, item.url)
                    visits = [self._visit(item)]
                else:
                    batch: List[WorkItem] = []
                    while queue and queue[0].kind is ItemKind.DETAIL and len(batch) < self.concurrency:
                        item = queue.popleft()
                        if item.key and state.dedupe.is_claimed(item.key):
                            pending.discard(item.key)
                            continue
                        batch.append(item)
                    if not batch:
                        continue
                    if executor is not None:
                        visits = list(executor.map(self._visit_detail, batch))
                    else:
                        visits = [self._visit_detail(item) for item in batch]

                for visit in visits:
                    item = visit.item
                    if visit.status is VisitStatus.OK:
                        consecutive_blocks = 0
                        consecutive_failures = 0
                        if item.kind is ItemKind.LIST:
                            phase_jobs += self._process_list(state, item, visit.result, queue, pending)
                        else:
                            pending.discard(item.key)
                            if visit.job is None:
                                self._inc("extraction_misses")
                            elif state.try_emit(visit.job.key, visit.job.record):
                                phase_jobs += 1
                        continue

                    if visit.status is VisitStatus.BLOCKED:
                        self._inc("blocked")
                        consecutive_blocks += 1
                        logger.warning("🚫 Blocked on %s (%s)", item.url, visit.reason)
                        if consecutive_blocks >= BLOCK_STRIKE_LIMIT:
                            return PhaseOutcome.blocked(
                                f"{consecutive_blocks} consecutive blocked responses", phase_jobs, visit.error
                            )
                    else:
                        consecutive_failures += 1
                        logger.warning("Request failed for %s: %s", item.url, visit.reason)
                        if consecutive_failures > self.max_consecutive_failures:
                            return PhaseOutcome.blocked("transport failure budget exceeded", phase_jobs, visit.error)

                    if item.attempts + 1 < self.max_item_attempts:
                        logger.info("Re-queueing %s with a fresh session", item.url)
                        queue.append(item.retry())
                    elif item.key:
                        pending.discard(item.key)

                self._close_retired_contexts()
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        if state.quota_met:
            return PhaseOutcome.success(jobs=phase_jobs)
        return PhaseOutcome.exhausted("work queue drained", phase_jobs)
