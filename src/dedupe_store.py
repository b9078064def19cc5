"""
Dedupe Store - run-wide claim set with optional cross-run hash log
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from models import JobRecord

logger = logging.getLogger(__name__)


class DedupeStore:
    """
    Guarantees each dedup key is claimed at most once.

    With a path, previously recorded hashes are loaded on start and every
    emitted record is appended to the JSONL log, so later runs skip it too.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self.seen_hashes: set[str] = set()
        self._lock = threading.Lock()
        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        payload = json.loads(line)
                        key_hash = payload.get("hash")
                        if key_hash:
                            self.seen_hashes.add(key_hash)
                    except json.JSONDecodeError:
                        logger.warning("Skipping invalid dedupe line")
        except OSError as exc:
            logger.warning("Failed to read dedupe log: %s", exc)
        logger.info("Loaded %s known job keys from %s", len(self.seen_hashes), self.path)

    @staticmethod
    def _hash_key(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def try_claim(self, key: str) -> bool:
        """True the first time a key is seen, False on every later call."""
        key_hash = self._hash_key(key)
        with self._lock:
            if key_hash in self.seen_hashes:
                return False
            self.seen_hashes.add(key_hash)
            return True

    def is_claimed(self, key: str) -> bool:
        with self._lock:
            return self._hash_key(key) in self.seen_hashes

    def record(self, key: str, job: JobRecord) -> None:
        if self.path is None:
            return

        payload = {
            "hash": self._hash_key(key),
            "key": key,
            "url": job.url,
            "title": job.title,
            "company": job.company,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(payload) + "\n")
            except OSError as exc:
                logger.warning("Failed to write dedupe log: %s", exc)

    def __len__(self) -> int:
        return len(self.seen_hashes)
