"""
Session pool with proxy affinity.

Each pooled Session is one network identity: its own cookie jar and, when a
proxy is configured, its own sticky proxy session token. Retiring a session
therefore rotates the exit IP for providers that support session affinity.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from requests.cookies import RequestsCookieJar

from errors import NoUsableSessionError

logger = logging.getLogger(__name__)

COOKIE_DOMAIN = ".careerbuilder.com"


def _looks_like_session_tagged(username: str) -> bool:
    lower = (username or "").lower()
    return "-session-" in lower or "_session_" in lower or "-sessid-" in lower or "_sessid_" in lower


def parse_cookie_header(header: Optional[str]) -> List[tuple]:
    pairs = []
    for part in (header or "").split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip():
            pairs.append((name.strip(), value.strip()))
    return pairs


@dataclass(frozen=True)
class ProxyManagerSettings:
    enabled: bool = False
    provider: str = "generic"
    server: str = ""
    username: str = ""
    password: str = ""
    username_template: Optional[str] = None
    required: bool = False


class ProxyManager:
    """
    Builds proxy settings for a session token.

    Sticky behavior depends on the provider. IPRoyal-style affinity is achieved
    by embedding the token into the username, either through a
    `username_template` containing `{session}` or by auto-appending
    `-session-{token}` for provider == "iproyal".
    """

    def __init__(self, settings: ProxyManagerSettings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled)

    def _build_username(self, token: Optional[str]) -> str:
        base = (self.settings.username or "").strip()
        template = (self.settings.username_template or "").strip() or None
        provider = (self.settings.provider or "generic").strip().lower()

        # Allow users to put `{session}` in username itself.
        if "{session}" in base and not template:
            template = base
            base = ""

        if template and token:
            return template.replace("{session}", token)

        if provider == "iproyal" and token and base and not _looks_like_session_tagged(base):
            return f"{base}-session-{token}"

        return base

    def get_playwright_proxy(self, token: Optional[str] = None) -> Optional[Dict[str, str]]:
        """Return a Playwright proxy dict ({"server", "username", "password"}) or None."""
        if not self.enabled:
            return None

        proxy: Dict[str, str] = {"server": self.settings.server}
        username = self._build_username(token)
        password = (self.settings.password or "").strip()
        if username:
            proxy["username"] = username
        if password:
            proxy["password"] = password
        return proxy

    def get_requests_proxies(self, token: Optional[str] = None) -> Optional[Dict[str, str]]:
        """Return a requests `proxies` mapping or None."""
        proxy = self.get_playwright_proxy(token)
        if proxy is None:
            return None
        scheme, sep, hostport = proxy["server"].partition("://")
        if not sep:
            scheme, hostport = "http", proxy["server"]
        auth = ""
        if proxy.get("username"):
            auth = quote(proxy["username"], safe="")
            if proxy.get("password"):
                auth += ":" + quote(proxy["password"], safe="")
            auth += "@"
        url = f"{scheme}://{auth}{hostport}"
        return {"http": url, "https": url}


@dataclass
class Session:
    id: str
    cookies: RequestsCookieJar = field(default_factory=RequestsCookieJar)
    usage_count: int = 0
    error_score: float = 0.0
    warmed_up: bool = False
    retired: bool = False
    proxy_token: Optional[str] = None

    def cookie_header(self) -> str:
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies)


class SessionPool:
    """
    Owns the live sessions. Callers borrow one per request and report back
    with mark_good / mark_bad.
    """

    def __init__(
        self,
        proxy_manager: ProxyManager,
        pool_size: int = 20,
        max_usage_count: int = 15,
        max_error_score: float = 1.0,
        cookie_header: Optional[str] = None,
        cookie_domain: str = COOKIE_DOMAIN,
    ):
        if proxy_manager.settings.required and not proxy_manager.enabled:
            raise NoUsableSessionError(
                "proxy.required is set but proxy.enabled is false; no usable network identity"
            )
        self.proxy_manager = proxy_manager
        self.pool_size = max(int(pool_size), 1)
        self.max_usage_count = max(int(max_usage_count), 1)
        self.max_error_score = float(max_error_score)
        self.cookie_pairs = parse_cookie_header(cookie_header)
        self.cookie_domain = cookie_domain
        self._sessions: List[Session] = []
        self._retired_ids: List[str] = []
        self._lock = threading.Lock()
        self.created = 0

    def _new_session(self) -> Session:
        session = Session(id=uuid.uuid4().hex[:12])
        if self.proxy_manager.enabled:
            session.proxy_token = uuid.uuid4().hex[:12]
        for name, value in self.cookie_pairs:
            session.cookies.set(name, value, domain=self.cookie_domain, path="/")
        self.created += 1
        logger.debug("Session %s created (%s live)", session.id, len(self._sessions) + 1)
        return session

    def _retire_locked(self, session: Session, reason: str) -> None:
        if session.retired:
            return
        session.retired = True
        self._retired_ids.append(session.id)
        if session in self._sessions:
            self._sessions.remove(session)
        logger.info("Session %s retired (%s)", session.id, reason)

    def acquire(self) -> Session:
        """Fill the pool up to pool_size, then hand out the least-used live session."""
        with self._lock:
            for session in list(self._sessions):
                if session.usage_count >= self.max_usage_count:
                    self._retire_locked(session, "max usage")
            if len(self._sessions) < self.pool_size:
                self._sessions.append(self._new_session())
            session = min(self._sessions, key=lambda s: s.usage_count)
            session.usage_count += 1
            return session

    def mark_good(self, session: Session) -> None:
        with self._lock:
            session.error_score = max(session.error_score - 0.5, 0.0)

    def mark_bad(self, session: Session, reason: str = "error") -> None:
        with self._lock:
            session.error_score += 1.0
            if session.error_score >= self.max_error_score:
                self._retire_locked(session, reason)

    def drain_retired(self) -> List[str]:
        """Ids retired since the last call (used to close browser contexts)."""
        with self._lock:
            retired, self._retired_ids = self._retired_ids, []
            return retired

    @property
    def live_count(self) -> int:
        return len(self._sessions)

    def stats(self) -> Dict[str, Any]:
        return {
            "live": self.live_count,
            "created": self.created,
            "proxy_enabled": self.proxy_manager.enabled,
        }
