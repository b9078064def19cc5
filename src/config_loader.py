"""
Configuration loader for the CareerBuilder scraper
Reads settings.yaml, fills blanks from the environment and validates invariants
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from errors import FatalConfigError
from job_fields import SITE_HOST, SITE_ORIGIN
from models import POSTED_WITHIN_CODES, PostedWithin, SearchQuery
from proxy_manager import ProxyManagerSettings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_API_TEMPLATES = [
    "https://www.careerbuilder.com/api/v2/jobs/search?keywords={keyword}&location={location}&page={page}&size={page_size}",
    "https://www.careerbuilder.com/jobs/search.json?keywords={keyword}&location={location}&page_number={page}",
]

# Fixed filters the site's own search form sends.
DEFAULT_SEARCH_PARAMS = {
    "cb_apply": "false",
    "radius": "50",
    "cb_veterans": "false",
    "cb_workhome": "all",
}


class ConfigValidationError(FatalConfigError, ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _as_number(value: Any, field: str, cast=float) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be a number, got {value!r}"
        ) from exc


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and _as_number(value, field) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and _as_number(value, field) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val for a delay/range pair."""
    if min_val is not None and max_val is not None:
        if _as_number(min_val, min_field) > _as_number(max_val, max_field):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


def _validate_range(value: Any, low: int, high: int, field: str) -> None:
    if value is not None and not (low <= _as_number(value, field, int) <= high):
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be between {low} and {high}, got {value}"
        )


def normalize_start_url(url: str) -> str:
    """Return the URL unchanged if it points at the target site, else raise."""
    parsed = urlparse((url or "").strip())
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise ConfigValidationError(f"Invalid start URL: {url!r}")
    if host != SITE_HOST and not host.endswith("." + SITE_HOST):
        raise ConfigValidationError(f"Start URL is not from {SITE_HOST}: {host}")
    return parsed.geturl()


def build_start_url(keyword: str, location: str, posted_within: Any) -> str:
    """Default listing URL for a keyword/location search."""
    params: Dict[str, str] = {}
    if keyword:
        params["keywords"] = keyword
    if location:
        params["location"] = location
    try:
        code = POSTED_WITHIN_CODES.get(PostedWithin(posted_within))
    except ValueError:
        code = None
    if code:
        params["posted"] = code
    params.update(DEFAULT_SEARCH_PARAMS)
    return f"{SITE_ORIGIN}/jobs?{urlencode(params)}"


def normalize_cookie_header(cookies: Optional[str] = None, cookies_json: Any = None) -> str:
    """
    Build one Cookie header value.

    A raw `cookies` string wins. `cookies_json` may be a JSON string or an
    already-parsed value: a list of "name=value" strings, a list of
    {"name", "value"} objects, or a name -> value mapping.
    """
    if isinstance(cookies, str) and cookies.strip():
        return cookies.strip()
    if cookies_json is None or cookies_json == "":
        return ""

    parsed = cookies_json
    if isinstance(cookies_json, str):
        try:
            parsed = json.loads(cookies_json)
        except json.JSONDecodeError as exc:
            logger.warning("Could not parse cookies_json: %s", exc)
            return ""

    parts: List[str] = []
    if isinstance(parsed, list):
        for item in parsed:
            if isinstance(item, str) and item.strip():
                parts.append(item.strip())
            elif isinstance(item, dict) and item.get("name"):
                value = item.get("value")
                parts.append(f"{item['name']}={'' if value is None else value}")
    elif isinstance(parsed, dict):
        for name, value in parsed.items():
            parts.append(f"{name}={'' if value is None else value}")
    return "; ".join(parts)


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml", overrides: Optional[Dict[str, Any]] = None):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._load()
        for key, value in (overrides or {}).items():
            if value is not None:
                self.set(key, value)
        self._validate_invariants()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                self.config = yaml.safe_load(f) or {}
            logger.info("✓ Config loaded from %s", self.config_path)
        except yaml.YAMLError as e:
            logger.error("Error parsing config file: %s", e)
            raise

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        min_delay = self.get("crawl.min_delay")
        max_delay = self.get("crawl.max_delay")
        _validate_non_negative(min_delay, "crawl.min_delay")
        _validate_non_negative(max_delay, "crawl.max_delay")
        _validate_min_max_pair(min_delay, max_delay, "crawl.min_delay", "crawl.max_delay")

        _validate_positive(self.get("crawl.request_timeout"), "crawl.request_timeout")
        _validate_positive(self.get("browser.page_timeout"), "browser.page_timeout")
        _validate_positive(self.get("browser.navigation_timeout"), "browser.navigation_timeout")
        _validate_non_negative(self.get("crawl.max_requests_per_minute"), "crawl.max_requests_per_minute")

        _validate_range(self.get("crawl.http_concurrency"), 1, 4, "crawl.http_concurrency")
        _validate_positive(self.get("crawl.max_item_attempts"), "crawl.max_item_attempts")
        _validate_non_negative(self.get("crawl.max_consecutive_failures"), "crawl.max_consecutive_failures")

        _validate_positive(self.get("search.results_wanted"), "search.results_wanted")
        _validate_positive(self.get("search.max_pages"), "search.max_pages")
        posted = self.get("search.posted_within")
        if posted is not None and posted not in {p.value for p in PostedWithin}:
            raise ConfigValidationError(
                f"Invalid config: 'search.posted_within' must be one of "
                f"{[p.value for p in PostedWithin]}, got {posted!r}"
            )

        start_url = self.get("search.start_url")
        if start_url:
            normalize_start_url(start_url)

        _validate_positive(self.get("sessions.pool_size"), "sessions.pool_size")
        _validate_positive(self.get("sessions.max_usage_count"), "sessions.max_usage_count")
        _validate_positive(self.get("sessions.max_error_score"), "sessions.max_error_score")
        _validate_positive(self.get("api.page_size"), "api.page_size")

        # Proxy settings (validated only when enabled)
        if self.is_proxy_enabled() and not self._get_proxy_server_raw():
            raise ConfigValidationError(
                "Proxy is enabled but no server is configured. "
                "Set proxy.server or proxy.host+proxy.port (or env PROXY_HOST+PROXY_PORT)."
            )

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'search.keyword')"""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set config value by dot notation, creating sections as needed"""
        keys = key.split(".")
        node = self.config
        for k in keys[:-1]:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[keys[-1]] = value

    # === Search Config ===

    def get_keyword(self) -> str:
        return str(self.get("search.keyword", "") or "").strip()

    def get_location(self) -> str:
        return str(self.get("search.location", "") or "").strip()

    def get_posted_within(self) -> str:
        return self.get("search.posted_within", "anytime") or "anytime"

    def get_results_wanted(self) -> int:
        return int(self.get("search.results_wanted", 100))

    def get_max_pages(self) -> int:
        return int(self.get("search.max_pages", 20))

    def get_start_url(self) -> Optional[str]:
        """Validated start URL, or None when searching by keyword/location"""
        url = (self.get("search.start_url", "") or "").strip()
        return normalize_start_url(url) if url else None

    def get_cookie_header(self) -> str:
        """Cookie header from search.cookies / search.cookies_json, else CAREERBUILDER_COOKIES"""
        header = normalize_cookie_header(self.get("search.cookies"), self.get("search.cookies_json"))
        return header or (os.getenv("CAREERBUILDER_COOKIES") or "").strip()

    def build_search_query(self) -> SearchQuery:
        """Assemble the validated SearchQuery for this run"""
        start_url = self.get_start_url()
        keyword, location = self.get_keyword(), self.get_location()
        if start_url:
            # the API phase needs plain keyword/location even with a start URL
            params = parse_qs(urlparse(start_url).query)
            keyword = keyword or (params.get("keywords") or [""])[0]
            location = location or (params.get("location") or [""])[0]
        try:
            return SearchQuery(
                keyword=keyword,
                location=location,
                posted_within=self.get_posted_within(),
                results_wanted=self.get_results_wanted(),
                max_pages=self.get_max_pages(),
                start_url=start_url,
                cookie_header=self.get_cookie_header() or None,
            )
        except ValidationError as exc:
            raise ConfigValidationError(f"Invalid search settings: {exc}") from exc

    def get_listing_url(self, query: SearchQuery) -> str:
        return query.start_url or build_start_url(query.keyword, query.location, query.posted_within)

    # === API Config ===

    def is_api_enabled(self) -> bool:
        return bool(self.get("api.enabled", True))

    def get_api_templates(self) -> List[str]:
        templates = self.get("api.endpoints")
        if templates is None:
            templates = DEFAULT_API_TEMPLATES
        return [t for t in templates if isinstance(t, str) and t.strip()]

    def get_api_page_size(self) -> int:
        return int(self.get("api.page_size", 25))

    # === Crawl Config ===

    def get_http_concurrency(self) -> int:
        return int(self.get("crawl.http_concurrency", 3))

    def get_max_item_attempts(self) -> int:
        return int(self.get("crawl.max_item_attempts", 2))

    def get_max_consecutive_failures(self) -> int:
        return int(self.get("crawl.max_consecutive_failures", 5))

    def get_request_timeout(self) -> float:
        """HTTP request timeout in seconds"""
        return float(self.get("crawl.request_timeout", 30))

    def get_min_delay(self) -> float:
        return float(self.get("crawl.min_delay", 1.0))

    def get_max_delay(self) -> float:
        return float(self.get("crawl.max_delay", 3.0))

    def get_max_requests_per_minute(self) -> int:
        return int(self.get("crawl.max_requests_per_minute", 60))

    def get_min_body_bytes(self) -> int:
        return int(self.get("crawl.min_body_bytes", 512))

    # === Browser Config ===

    def is_browser_enabled(self) -> bool:
        return bool(self.get("browser.enabled", True))

    def is_headless(self) -> bool:
        return bool(self.get("browser.headless", True))

    def get_page_timeout(self) -> int:
        """Get page timeout in milliseconds"""
        return int(float(self.get("browser.page_timeout", 30)) * 1000)

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(float(self.get("browser.navigation_timeout", 45)) * 1000)

    def use_stealth(self) -> bool:
        return bool(self.get("browser.use_stealth", True))

    def get_browser_channel(self) -> str:
        return self.get("browser.channel", "") or ""

    # === Proxy Config ===

    def is_proxy_enabled(self) -> bool:
        """The enabled flag must come from config; credentials may come from env."""
        return bool(self.get("proxy.enabled", False))

    def is_proxy_required(self) -> bool:
        return bool(self.get("proxy.required", False))

    def _get_proxy_server_raw(self) -> str:
        server = (self.get("proxy.server", "") or "").strip()
        if server:
            return server

        host = (self.get("proxy.host", "") or "").strip() or (os.getenv("PROXY_HOST") or "").strip()
        port = str(self.get("proxy.port", "") or "").strip() or (os.getenv("PROXY_PORT") or "").strip()
        if host and port:
            return f"{host}:{port}"
        return ""

    def get_proxy_manager_settings(self) -> ProxyManagerSettings:
        server = self._get_proxy_server_raw()
        if server and "://" not in server:
            server = f"http://{server}"
        username = (self.get("proxy.username", "") or "").strip() or (os.getenv("PROXY_USER") or "").strip()
        password = (self.get("proxy.password", "") or "").strip() or (os.getenv("PROXY_PASS") or "").strip()
        template = (self.get("proxy.username_template", "") or "").strip() or None
        return ProxyManagerSettings(
            enabled=self.is_proxy_enabled(),
            provider=(self.get("proxy.provider", "") or "generic").strip().lower(),
            server=server,
            username=username,
            password=password,
            username_template=template,
            required=self.is_proxy_required(),
        )

    # === Session Pool Config ===

    def get_session_pool_size(self) -> int:
        return int(self.get("sessions.pool_size", 20))

    def get_session_max_usage(self) -> int:
        return int(self.get("sessions.max_usage_count", 15))

    def get_session_max_error_score(self) -> float:
        return float(self.get("sessions.max_error_score", 1.0))

    # === Output Config ===

    def get_output_path(self, file_type: str = "jsonl") -> Path:
        """Get output file path, one timestamp per run"""
        use_timestamp = self.get("output.use_timestamp", True)
        timestamp = self._timestamp if use_timestamp else ""

        template = self.get(f"output.{file_type}_file", f"output/jobs.{file_type}")
        return Path(template.replace("{timestamp}", timestamp))

    def is_markdown_enabled(self) -> bool:
        return bool(self.get("output.markdown", True))

    def get_metrics_template(self) -> str:
        return self.get("output.metrics_file", "output/run_metrics_{timestamp}.json")

    # === Dedupe Config ===

    def is_dedupe_enabled(self) -> bool:
        """Check if cross-run dedupe is enabled"""
        return bool(self.get("dedupe.enabled", False))

    def get_dedupe_path(self) -> Optional[Path]:
        """Get dedupe hash log path"""
        path = self.get("dedupe.hash_file", "")
        return Path(path) if path else None

    # === Logging Config ===

    def get_log_level(self) -> str:
        return str(self.get("logging.level", "INFO")).upper()

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get("logging.log_file", "logs/scraper_{timestamp}.log")
        return Path(template.replace("{timestamp}", self._timestamp))

    def __repr__(self) -> str:
        return f"<Config: keyword={self.get_keyword()!r}, location={self.get_location()!r}>"


def load_config(config_path: str = "config/settings.yaml", overrides: Optional[Dict[str, Any]] = None) -> ConfigLoader:
    """Load .env (without overriding the real environment), then the YAML config"""
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
    return ConfigLoader(config_path, overrides)
