"""
Provider authentication token for APNs.

APNs accepts an ES256-signed JWT carrying the team id and issue time. Apple
rejects tokens older than an hour and throttles tokens refreshed more often
than every 20 minutes, so one token is cached and reused for 55 minutes.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from jose import jwt
from jose.exceptions import JOSEError

from shared.utils.logging import get_logger

logger = get_logger(__name__)

SIGNING_ALGORITHM = "ES256"
DEFAULT_TOKEN_TTL_S = 55 * 60


class SigningError(Exception):
    """Raised when the signing key cannot be read or used."""


@dataclass(frozen=True)
class CachedToken:
    token: str
    issued_at: float

    def age(self, now: float) -> float:
        return now - self.issued_at


class PushTokenSource:
    """Produces and caches the bearer token sent with every APNs request."""

    def __init__(
        self,
        team_id: str,
        key_id: str,
        key_path: str | Path,
        ttl_s: float = DEFAULT_TOKEN_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._team_id = team_id
        self._key_id = key_id
        self._key_path = Path(key_path)
        self._ttl_s = ttl_s
        self._clock = clock
        self._cached: Optional[CachedToken] = None
        self._lock = threading.Lock()

    @property
    def cached(self) -> Optional[CachedToken]:
        return self._cached

    def get_token(self) -> str:
        """Return the cached token while fresh, otherwise sign a new one."""
        now = self._clock()
        cached = self._cached
        if cached is not None and cached.age(now) < self._ttl_s:
            return cached.token

        token = self._sign(now)
        with self._lock:
            self._cached = CachedToken(token=token, issued_at=now)
        logger.info("push_token_generated", key_id=self._key_id)
        return token

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def _sign(self, now: float) -> str:
        try:
            private_key = self._key_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SigningError(f"Cannot read signing key {self._key_path}: {exc}") from exc

        claims = {"iss": self._team_id, "iat": int(now)}
        try:
            return jwt.encode(
                claims,
                private_key,
                algorithm=SIGNING_ALGORITHM,
                headers={"kid": self._key_id},
            )
        except (JOSEError, ValueError, TypeError) as exc:
            raise SigningError(f"Cannot sign provider token with {self._key_path}: {exc}") from exc
