"""
Run metrics - counters, gauges and phase events for one scrape, dumped to JSON
"""

import json
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_METRICS_TEMPLATE = "output/run_metrics_{timestamp}.json"
PAGE_COUNTER_PREFIX = "pages_"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _local_stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass
class RunMetrics:
    """
    Counter names used by the scraper: requests, blocked, transport_errors,
    parse_errors, extraction_misses, rejected, duplicates, emitted,
    sink_failures and pages_<phase>. Events hold phase transitions.

    Fetcher threads increment counters, so every mutation takes the lock.
    """

    site: str
    run_id: str = field(default_factory=_local_stamp)
    started_at: str = field(default_factory=_utc_now_iso)
    ended_at: Optional[str] = None
    counters: Counter = field(default_factory=Counter)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    output_path: Optional[Path] = None
    _t0: float = field(default_factory=time.monotonic, repr=False)
    _t1: Optional[float] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, key: str, amount: int = 1) -> None:
        if key:
            with self._lock:
                self.counters[key] += int(amount)

    def get(self, key: str) -> int:
        return int(self.counters.get(key, 0))

    def set_gauge(self, key: str, value: Any) -> None:
        if key:
            self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        if not kind:
            return
        event = {"t": _utc_now_iso(), "kind": kind}
        event.update((k, v) for k, v in data.items() if v is not None)
        with self._lock:
            self.events.append(event)

    def finish(self) -> None:
        """Freeze the end time; later calls keep the first one."""
        if self._t1 is None:
            self._t1 = time.monotonic()
            self.ended_at = _utc_now_iso()

    @property
    def duration_seconds(self) -> float:
        end = self._t1 if self._t1 is not None else time.monotonic()
        return max(end - self._t0, 0.0)

    def pages_by_phase(self) -> Dict[str, int]:
        return {
            key[len(PAGE_COUNTER_PREFIX):].upper(): count
            for key, count in self.counters.items()
            if key.startswith(PAGE_COUNTER_PREFIX)
        }

    def to_dict(self, *, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            counters = dict(self.counters)
            events = list(self.events)
        payload: Dict[str, Any] = {
            "site": self.site,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "ended_at": self.ended_at or _utc_now_iso(),
            "duration_seconds": round(self.duration_seconds, 3),
            "counters": counters,
            "pages": self.pages_by_phase(),
        }
        if self.gauges:
            payload["gauges"] = dict(self.gauges)
        if events:
            payload["events"] = events
        if extra:
            payload["extra"] = dict(extra)
        return payload

    def write_json(self, *, template: str, extra: Optional[Dict[str, Any]] = None) -> Path:
        path = Path((template or DEFAULT_METRICS_TEMPLATE).replace("{timestamp}", self.run_id))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(extra=extra), indent=2, sort_keys=True), encoding="utf-8")
        self.output_path = path
        return path
