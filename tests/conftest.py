"""Shared fakes: canned fetchers, a list sink and quiet schedulers."""

import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from dedupe_store import DedupeStore
from errors import TransportError
from http_fetcher import FetchResult
from proxy_manager import ProxyManager, ProxyManagerSettings, SessionPool
from run_metrics import RunMetrics
from run_state import RunState

# Keeps test pages above the detector's minimum body size.
FILLER = "<footer><p>" + "Find your next career move with thousands of listings. " * 12 + "</p></footer>"

Page = Union[FetchResult, Exception, Callable[[str], FetchResult]]


def html_page(url: str, body: str, status: int = 200, title: Optional[str] = None) -> FetchResult:
    head = f"<head><title>{title}</title></head>" if title else ""
    return FetchResult(
        url=url,
        status_code=status,
        text=f"<html>{head}<body>{body}{FILLER}</body></html>",
        headers={"Content-Type": "text/html; charset=utf-8"},
    )


def json_page(url: str, payload: Any, status: int = 200) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=status,
        text=json.dumps(payload),
        headers={"Content-Type": "application/json"},
    )


def json_ld(*postings: Dict[str, Any]) -> str:
    return "".join(
        f'<script type="application/ld+json">{json.dumps(posting)}</script>' for posting in postings
    )


class FakeFetcher:
    """Serves canned pages by URL and records every call."""

    def __init__(self, pages: Optional[Dict[str, Page]] = None, default: Optional[Page] = None):
        self.pages: Dict[str, Page] = dict(pages or {})
        self.default = default
        self.calls: List[str] = []

    def fetch(self, url: str, headers: Optional[Dict[str, str]], session) -> FetchResult:
        self.calls.append(url)
        page = self.pages.get(url, self.default)
        if page is None:
            raise TransportError(url, "connection refused")
        if isinstance(page, Exception):
            raise page
        if callable(page):
            return page(url)
        return page

    def warm_up(self, session) -> None:
        session.warmed_up = True


class ListSink:
    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    def append(self, record) -> bool:
        if self.fail:
            return False
        self.records.append(record)
        return True


@pytest.fixture
def metrics() -> RunMetrics:
    return RunMetrics(site="careerbuilder")


@pytest.fixture
def pool() -> SessionPool:
    return SessionPool(ProxyManager(ProxyManagerSettings()), pool_size=3, max_usage_count=50, max_error_score=5.0)


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def make_state(sink, metrics):
    def _make(results_wanted: int = 10, max_pages: int = 5) -> RunState:
        return RunState(results_wanted, max_pages, DedupeStore(), sink, metrics)

    return _make
