"""
Pagination resolver - finds or synthesizes the next listing page URL
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from extractors import Payload, make_soup

logger = logging.getLogger(__name__)

NEXT_SELECTORS = (
    'a[aria-label*="Next"]',
    "a.next",
    'a[rel="next"]',
    'button[aria-label*="Next"][href]',
    ".pagination a",
    "a.pagination-next",
    'a[data-page="next"]',
)

PAGE_QUERY_PARAMS = ("page_number", "page", "p", "pg")
PAGE_PATH_RE = re.compile(r"/page/(\d+)")


def _is_disabled(element: Tag) -> bool:
    aria_disabled = (element.get("aria-disabled") or "").lower()
    return aria_disabled in ("true", "disabled") or element.has_attr("disabled")


def _usable_href(element: Tag) -> Optional[str]:
    href = (element.get("href") or "").strip()
    if not href or href.startswith("#") or href.lower().startswith("javascript:"):
        return None
    return href


class PaginationResolver:
    """Resolves the next listing page: explicit controls first, then URL synthesis."""

    def _from_next_controls(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in NEXT_SELECTORS:
            for element in soup.select(selector):
                # the generic pagination selector only counts "Next" links
                if selector == ".pagination a" and "next" not in element.get_text(" ", strip=True).lower():
                    continue
                if _is_disabled(element):
                    continue
                href = _usable_href(element)
                if href:
                    logger.debug("Next page found with selector %s", selector)
                    return href
        return None

    @staticmethod
    def _from_page_number(soup: BeautifulSoup, current_page: int) -> Optional[str]:
        wanted = str(current_page + 1)
        for link in soup.select('a[href*="page"]'):
            if link.get_text(strip=True) == wanted:
                href = _usable_href(link)
                if href:
                    logger.debug("Next page found by page number %s", wanted)
                    return href
        return None

    @staticmethod
    def synthesize(current_url: str, current_page: int) -> Optional[str]:
        parsed = urlparse(current_url)
        if not parsed.scheme or not parsed.netloc:
            return None

        path_match = PAGE_PATH_RE.search(parsed.path)
        if path_match:
            next_number = int(path_match.group(1)) + 1
            path = PAGE_PATH_RE.sub(f"/page/{next_number}", parsed.path, count=1)
            return urlunparse(parsed._replace(path=path))

        params = parse_qsl(parsed.query, keep_blank_values=True)
        keys = [key for key, _ in params]
        for name in PAGE_QUERY_PARAMS:
            if name not in keys:
                continue
            updated = []
            for key, value in params:
                if key == name:
                    try:
                        value = str(int(value) + 1)
                    except ValueError:
                        value = str(current_page + 1)
                updated.append((key, value))
            return urlunparse(parsed._replace(query=urlencode(updated)))

        params.append(("page_number", str(current_page + 1)))
        return urlunparse(parsed._replace(query=urlencode(params)))

    def resolve(self, payload: Payload, current_url: str, current_page: int) -> Optional[str]:
        """
        Return the absolute URL of the next listing page, or None when no
        derivation is possible or the result equals the current URL.
        """
        try:
            soup = make_soup(payload)
            href = self._from_next_controls(soup) or self._from_page_number(soup, current_page)
            next_url = urljoin(current_url, href) if href else self.synthesize(current_url, current_page)
        except ValueError as exc:
            logger.debug("Failed to derive next page for %s: %s", current_url, exc)
            return None

        if not next_url or next_url == current_url:
            return None
        if not href:
            logger.info("Constructed next page URL: page %s", current_page + 1)
        return next_url
