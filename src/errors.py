"""
Error taxonomy for the scraper.

Recoverable errors (transport, blocking, parse, extraction miss) are turned into
counters and outcome values by the orchestrator. FatalConfigError and its
subclasses abort the run.
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for scraper errors."""


class TransportError(ScraperError):
    """Timeout or connection failure while fetching a URL."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url


class BlockedResponse(ScraperError):
    """Response classified as an anti-bot challenge."""

    def __init__(self, url: str, indicator: Optional[str]):
        super().__init__(f"Blocked response at {url} (indicator={indicator})")
        self.url = url
        self.indicator = indicator


class ParseError(ScraperError):
    """Malformed JSON/HTML payload."""


class ExtractionMiss(ScraperError):
    """Well-formed payload with no recognizable job shape."""


class FatalConfigError(ScraperError):
    """Configuration-level failure. Never retried."""


class NoUsableSessionError(FatalConfigError):
    """No network identity can be produced with the current configuration."""


class NoJobsScrapedError(ScraperError):
    """All phases finished without a single job."""

    TROUBLESHOOTING = (
        "No jobs were scraped after API, HTML and BROWSER phases. Likely causes:\n"
        "  1. Requests are being blocked (enable proxy.enabled with a residential proxy)\n"
        "  2. Missing session cookies (set search.cookies or CAREERBUILDER_COOKIES from a real browser)\n"
        "  3. The search itself returns no results on the website (try other keywords/location)\n"
        "  4. The site structure changed (check output/ debug artifacts and logs)"
    )

    def __init__(self, detail: str = ""):
        message = self.TROUBLESHOOTING
        if detail:
            message = f"{message}\nLast phase result: {detail}"
        super().__init__(message)
