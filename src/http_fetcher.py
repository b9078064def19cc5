"""
HTTP fetch backend (requests)

No transport-level retries: every retry decision belongs to the phase that
issued the request. Pacing comes from the shared RequestScheduler.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from errors import TransportError
from job_fields import SITE_ORIGIN
from proxy_manager import ProxyManager, Session
from run_metrics import RunMetrics
from throttle import RequestScheduler

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36"
)

BASE_HEADERS: Dict[str, str] = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Ch-Ua": '"Chromium";v="130", "Google Chrome";v="130", "Not?A_Brand";v="99"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "User-Agent": USER_AGENT,
}

DOCUMENT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

JSON_HEADERS: Dict[str, str] = {
    "Accept": "application/json, text/plain, */*",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
    "X-Requested-With": "XMLHttpRequest",
}


def build_headers(kind: str = "document", referer: Optional[str] = None) -> Dict[str, str]:
    """Browser-like request headers for a document or JSON request."""
    headers = dict(BASE_HEADERS)
    headers.update(JSON_HEADERS if kind == "json" else DOCUMENT_HEADERS)
    if referer:
        headers["Referer"] = referer
    return headers


@dataclass
class FetchResult:
    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    captured_json: List[Any] = field(default_factory=list)
    title: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class HttpFetcher:
    """Plain HTTP fetches through the session's cookie jar and proxy."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        proxy_manager: ProxyManager,
        timeout: float = 30.0,
        metrics: Optional[RunMetrics] = None,
        landing_url: str = SITE_ORIGIN + "/",
    ):
        self.scheduler = scheduler
        self.proxy_manager = proxy_manager
        self.timeout = timeout
        self.metrics = metrics
        self.landing_url = landing_url

    def _inc(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    def fetch(self, url: str, headers: Optional[Dict[str, str]], session: Session) -> FetchResult:
        """Raises TransportError on timeout or connection failure."""
        self.scheduler.wait()
        self._inc("requests")
        try:
            response = requests.get(
                url,
                headers=headers or build_headers(),
                cookies=session.cookies,
                proxies=self.proxy_manager.get_requests_proxies(session.proxy_token),
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.Timeout as exc:
            self._inc("transport_errors")
            raise TransportError(url, f"Timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            self._inc("transport_errors")
            raise TransportError(url, f"{type(exc).__name__}: {exc}") from exc

        session.cookies.update(response.cookies)
        logger.debug("GET %s -> %s (%s bytes)", url, response.status_code, len(response.content))
        return FetchResult(
            url=response.url or url,
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )

    def warm_up(self, session: Session) -> None:
        """Fetch the landing page once per session to pick up baseline cookies."""
        if session.warmed_up:
            return
        session.warmed_up = True
        logger.info("Warming up session %s", session.id)
        result = self.fetch(self.landing_url, build_headers(), session)
        if not result.ok:
            logger.warning("Warm-up for session %s returned HTTP %s", session.id, result.status_code)
