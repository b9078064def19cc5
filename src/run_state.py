"""
Run state - quota counters shared by every phase

Only the orchestrating thread mutates this object, through try_start_page and
try_emit. jobs_scraped never decreases and never exceeds results_wanted.
"""

import logging
from typing import Dict, Optional, Protocol

from dedupe_store import DedupeStore
from models import JobRecord, Phase
from run_metrics import RunMetrics

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def append(self, record: JobRecord) -> bool: ...


class RunState:
    def __init__(
        self,
        results_wanted: int,
        max_pages: int,
        dedupe: DedupeStore,
        sink: Sink,
        metrics: Optional[RunMetrics] = None,
    ):
        self.results_wanted = results_wanted
        self.max_pages = max_pages
        self.dedupe = dedupe
        self.sink = sink
        self.metrics = metrics
        self.jobs_scraped = 0
        self.page_counts: Dict[Phase, int] = {phase: 0 for phase in Phase}

    def _inc(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    @property
    def quota_met(self) -> bool:
        return self.jobs_scraped >= self.results_wanted

    @property
    def remaining(self) -> int:
        return max(self.results_wanted - self.jobs_scraped, 0)

    def pages_left(self, phase: Phase) -> int:
        return max(self.max_pages - self.page_counts[phase], 0)

    def try_start_page(self, phase: Phase) -> bool:
        """Reserve one page of the phase's budget. False once quota or budget is spent."""
        if self.quota_met or self.page_counts[phase] >= self.max_pages:
            return False
        self.page_counts[phase] += 1
        self._inc(f"pages_{phase.value.lower()}")
        return True

    def try_emit(self, key: str, record: JobRecord) -> bool:
        """Claim the key and hand the record to the sink. True only when it was stored."""
        if self.quota_met:
            return False
        if not self.dedupe.try_claim(key):
            self._inc("duplicates")
            logger.debug("Duplicate skipped: %s", key)
            return False
        if not self.sink.append(record):
            # the key stays claimed so a broken record is not retried forever
            self._inc("sink_failures")
            logger.warning("Sink rejected record %s", key)
            return False

        self.jobs_scraped += 1
        self.dedupe.record(key, record)
        self._inc("emitted")
        logger.info("✅ [%s/%s] %s", self.jobs_scraped, self.results_wanted, record.title)
        return True
