"""
Browser stealth and page-settling helpers for the Playwright backend.

Provides:
- Launch arguments and an init script that hide automation markers
- Cookie consent handling
- Waiting out "checking your browser" interstitials
- Human-like warmup and lazy-load scrolling
"""

import logging
import random
import time
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


STEALTH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--window-size=1920,1080",
    "--disable-infobars",
    "--disable-notifications",
    "--no-first-run",
    "--no-default-browser-check",
]


STEALTH_INIT_SCRIPT: str = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });

window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };

Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });

const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications' ?
        Promise.resolve({ state: Notification.permission }) :
        originalQuery(parameters)
);
"""

CONSENT_SELECTOR = 'button:has-text("Accept All Cookie Settings"), button:has-text("Accept")'
INTERSTITIAL_MARKERS = ("checking your browser", "just a moment")


class PageStealth:
    """
    Usage:
        stealth = PageStealth(use_stealth=True)
        stealth.apply_to_context(context)
        stealth.accept_cookie_consent(page)
        stealth.wait_out_interstitial(page)
        stealth.scroll_for_lazy_load(page)
    """

    def __init__(
        self,
        use_stealth: bool = True,
        interstitial_rounds: int = 3,
        interstitial_wait_ms: int = 10000,
        scroll_steps: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.use_stealth = use_stealth
        self.interstitial_rounds = interstitial_rounds
        self.interstitial_wait_ms = interstitial_wait_ms
        self.scroll_steps = scroll_steps
        self._sleep = sleep

    def launch_args(self) -> List[str]:
        return STEALTH_ARGS.copy() if self.use_stealth else []

    def apply_to_context(self, context: Any) -> None:
        if not self.use_stealth:
            return
        try:
            context.add_init_script(STEALTH_INIT_SCRIPT)
            logger.debug("Stealth init script added to context")
        except Exception as exc:
            logger.warning("Failed to add stealth to context: %s", exc)

    def apply_to_page(self, page: Any) -> None:
        if not self.use_stealth:
            return
        try:
            from playwright_stealth.stealth import Stealth
            Stealth().apply_stealth_sync(page)
            logger.debug("Playwright-stealth applied to page")
        except Exception as exc:
            logger.warning("Failed to apply playwright-stealth: %s", exc)

    def wait_for_network_idle(self, page: Any, timeout_ms: int = 30000) -> None:
        try:
            page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception:
            logger.debug("Network not idle, continuing...")

    def accept_cookie_consent(self, page: Any) -> bool:
        try:
            button = page.locator(CONSENT_SELECTOR).first
            if button.is_visible(timeout=3000):
                logger.info("🍪 Clicking cookie consent...")
                button.click()
                page.wait_for_timeout(2000)
                return True
        except Exception as exc:
            logger.debug("Cookie consent step skipped: %s", exc)
        return False

    def wait_out_interstitial(self, page: Any) -> bool:
        """Wait while the page shows a challenge interstitial. True when it cleared."""
        for attempt in range(1, self.interstitial_rounds + 1):
            try:
                html = (page.content() or "").lower()
            except Exception as exc:
                logger.debug("Could not read page content: %s", exc)
                return False
            if not any(marker in html for marker in INTERSTITIAL_MARKERS):
                return True
            logger.info("☁️ Challenge interstitial (%s/%s), waiting...", attempt, self.interstitial_rounds)
            page.wait_for_timeout(self.interstitial_wait_ms)
        try:
            html = (page.content() or "").lower()
        except Exception:
            return False
        return not any(marker in html for marker in INTERSTITIAL_MARKERS)

    def scroll_for_lazy_load(self, page: Any) -> None:
        try:
            for _ in range(self.scroll_steps):
                page.evaluate("window.scrollBy(0, document.body.scrollHeight / %d)" % self.scroll_steps)
                page.wait_for_timeout(random.randint(400, 900))
            page.evaluate("window.scrollTo(0, 0)")
        except Exception as exc:
            logger.debug("Scrolling failed (non-critical): %s", exc)

    def human_like_warmup(self, page: Any) -> None:
        try:
            page.mouse.move(random.randint(100, 500), random.randint(100, 300))
            self._sleep(random.uniform(0.3, 0.8))
            page.mouse.move(random.randint(200, 600), random.randint(200, 400))
            self._sleep(random.uniform(0.2, 0.5))
            logger.debug("Human-like warmup completed")
        except Exception as exc:
            logger.debug("Human-like warmup failed (non-critical): %s", exc)
