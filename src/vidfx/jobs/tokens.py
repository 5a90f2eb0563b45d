"""Short-lived access tokens scoped to one transformation's updates."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from vidfx.models.processing import AccessToken

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessTokenIssuer:
    """Issues opaque read-only tokens; each one unlocks a single record."""

    def __init__(
        self,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._tokens: dict[str, AccessToken] = {}

    def issue(self, request_id: str) -> AccessToken:
        self._purge_expired()
        token = AccessToken(
            token=secrets.token_urlsafe(32),
            request_id=request_id,
            expires_at=self._clock() + self.ttl,
        )
        self._tokens[token.token] = token
        logger.debug("Issued access token for %s (expires %s)", request_id, token.expires_at)
        return token

    def verify(self, token: str, request_id: str) -> bool:
        """Check that ``token`` is live and scoped to ``request_id``."""
        issued = self._tokens.get(token)
        if issued is None:
            return False
        if issued.expires_at <= self._clock():
            del self._tokens[token]
            return False
        return secrets.compare_digest(issued.request_id, request_id)

    def _purge_expired(self) -> None:
        now = self._clock()
        for value in [t for t, issued in self._tokens.items() if issued.expires_at <= now]:
            del self._tokens[value]
