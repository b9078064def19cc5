"""
Browser fetch backend - Playwright (sync API)

One browser per run, one context per pooled session so cookies and proxy
identity follow the session. The sync API is single-threaded: this fetcher is
only ever driven from the orchestrating thread.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from playwright.sync_api import Browser, BrowserContext, Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from errors import TransportError
from http_fetcher import USER_AGENT, FetchResult
from job_fields import SITE_HOST
from proxy_manager import ProxyManager, Session
from run_metrics import RunMetrics
from stealth import PageStealth
from throttle import RequestScheduler

logger = logging.getLogger(__name__)

# Request headers the browser sets itself; only the rest are forwarded.
BROWSER_MANAGED_HEADERS = {"user-agent", "accept-encoding", "cookie", "host"}


class BrowserFetcher:
    """Renders pages in Chromium and captures JSON responses from the target site."""

    def __init__(
        self,
        scheduler: RequestScheduler,
        proxy_manager: ProxyManager,
        stealth: Optional[PageStealth] = None,
        headless: bool = True,
        navigation_timeout_ms: int = 45000,
        page_timeout_ms: int = 30000,
        channel: str = "",
        target_host: str = SITE_HOST,
        metrics: Optional[RunMetrics] = None,
    ):
        self.scheduler = scheduler
        self.proxy_manager = proxy_manager
        self.stealth = stealth or PageStealth()
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.page_timeout_ms = page_timeout_ms
        self.channel = channel
        self.target_host = target_host
        self.metrics = metrics
        self.playwright = None
        self.browser: Optional[Browser] = None
        self._contexts: Dict[str, BrowserContext] = {}

    def __enter__(self) -> "BrowserFetcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        if self.browser is not None:
            return
        logger.info("Starting browser (headless=%s)...", self.headless)
        self.playwright = sync_playwright().start()
        try:
            self.browser = self.playwright.chromium.launch(
                headless=self.headless,
                channel=self.channel or None,
                args=self.stealth.launch_args(),
            )
        except PlaywrightError:
            self.playwright.stop()
            self.playwright = None
            raise
        logger.info("Browser started successfully")

    def stop(self) -> None:
        for session_id in list(self._contexts):
            self.close_context(session_id)
        try:
            if self.browser:
                self.browser.close()
        except Exception:
            logger.debug("Browser close failed", exc_info=True)
        try:
            if self.playwright:
                self.playwright.stop()
        except Exception:
            logger.debug("Playwright stop failed", exc_info=True)
        self.browser = None
        self.playwright = None
        logger.info("Browser closed")

    def close_context(self, session_id: str) -> None:
        context = self._contexts.pop(session_id, None)
        if context is None:
            return
        try:
            context.close()
        except Exception:
            logger.debug("Context close failed for session %s", session_id, exc_info=True)

    def close_retired(self, session_ids: List[str]) -> None:
        for session_id in session_ids:
            self.close_context(session_id)

    @staticmethod
    def _playwright_cookies(session: Session) -> List[Dict[str, Any]]:
        cookies = []
        for cookie in session.cookies:
            cookies.append({
                "name": cookie.name,
                "value": cookie.value or "",
                "domain": cookie.domain or f".{SITE_HOST}",
                "path": cookie.path or "/",
            })
        return cookies

    def _context_for(self, session: Session) -> BrowserContext:
        context = self._contexts.get(session.id)
        if context is not None:
            return context

        self.start()
        context = self.browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=USER_AGENT,
            locale="en-US",
            proxy=self.proxy_manager.get_playwright_proxy(session.proxy_token),
        )
        context.set_default_timeout(self.page_timeout_ms)
        context.set_default_navigation_timeout(self.navigation_timeout_ms)
        self.stealth.apply_to_context(context)
        cookies = self._playwright_cookies(session)
        if cookies:
            context.add_cookies(cookies)
        self._contexts[session.id] = context
        return context

    def _is_target(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return host == self.target_host or host.endswith("." + self.target_host)

    def _sync_cookies(self, context: BrowserContext, session: Session) -> None:
        try:
            for cookie in context.cookies():
                session.cookies.set(
                    cookie["name"], cookie["value"],
                    domain=cookie.get("domain"), path=cookie.get("path", "/"),
                )
        except PlaywrightError as exc:
            logger.debug("Cookie sync failed: %s", exc)

    def warm_up(self, session: Session) -> None:
        # human_like_warmup runs on every rendered page
        session.warmed_up = True

    def fetch(self, url: str, headers: Optional[Dict[str, str]], session: Session) -> FetchResult:
        """Navigate, settle the page and return its DOM plus captured JSON."""
        context = self._context_for(session)
        self.scheduler.wait()
        if self.metrics is not None:
            self.metrics.inc("requests")

        responses = []

        def _on_response(response) -> None:
            content_type = (response.headers.get("content-type") or "").lower()
            if "json" in content_type and self._is_target(response.url):
                responses.append(response)

        page = context.new_page()
        try:
            self.stealth.apply_to_page(page)
            extra = {k: v for k, v in (headers or {}).items() if k.lower() not in BROWSER_MANAGED_HEADERS}
            if extra:
                page.set_extra_http_headers(extra)
            page.on("response", _on_response)

            try:
                response = page.goto(url, wait_until="domcontentloaded")
            except PlaywrightTimeoutError as exc:
                if self.metrics is not None:
                    self.metrics.inc("transport_errors")
                raise TransportError(url, "Navigation timed out") from exc
            except PlaywrightError as exc:
                if self.metrics is not None:
                    self.metrics.inc("transport_errors")
                raise TransportError(url, f"Navigation failed: {exc}") from exc

            self.stealth.wait_for_network_idle(page)
            self.stealth.accept_cookie_consent(page)
            self.stealth.wait_out_interstitial(page)
            self.stealth.human_like_warmup(page)
            self.stealth.scroll_for_lazy_load(page)

            captured: List[Any] = []
            for item in responses:
                try:
                    captured.append(item.json())
                except (PlaywrightError, ValueError) as exc:
                    logger.debug("Skipping unreadable JSON response %s: %s", item.url, exc)

            try:
                html = page.content()
                title = page.title()
            except PlaywrightError as exc:
                raise TransportError(url, f"Page became unreadable: {exc}") from exc
            self._sync_cookies(context, session)
            logger.debug("Rendered %s (%s captured JSON responses)", url, len(captured))
            return FetchResult(
                url=page.url or url,
                status_code=response.status if response is not None else 200,
                text=html,
                headers=dict(response.headers) if response is not None else {},
                captured_json=captured,
                title=title,
            )
        finally:
            try:
                page.close()
            except Exception:
                logger.debug("Page close failed", exc_info=True)
