"""
Pending-session registry — in-flight logins keyed by ``state``.

``take`` is the anti-replay / anti-CSRF control: a state value is
consumable exactly once, and never after its TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from broker.errors import InvalidOrExpiredStateError
from broker.models import PendingSession
from broker.pkce import PkceGenerator
from connectors.providers import Provider

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 600.0  # seconds


class PendingSessionRegistry:
    """
    Process-local map ``state → PendingSession``.

    Guarded by a plain lock so it is safe from both the event loop and
    worker threads; no method awaits while holding it.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL,
        *,
        clock: Callable[[], float] = time.time,
        generator: Optional[PkceGenerator] = None,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._generator = generator or PkceGenerator()
        self._sessions: Dict[str, PendingSession] = {}
        self._lock = threading.Lock()

    def create(
        self,
        provider: Provider,
        owner_id: str,
        redirect_uri: str,
        scopes: Iterable[str] = (),
    ) -> PendingSession:
        pair = self._generator.generate()
        session = PendingSession(
            state=pair.state,
            code_verifier=pair.code_verifier,
            code_challenge=pair.code_challenge,
            provider=provider,
            owner_id=owner_id,
            redirect_uri=redirect_uri,
            scopes=tuple(scopes),
            created_at=self._clock(),
        )
        with self._lock:
            if session.state in self._sessions:
                # Only reachable with a broken token source.
                raise RuntimeError("PKCE generator produced a duplicate state")
            self._sessions[session.state] = session
        logger.debug("Pending %s login created for owner %s", provider.value, owner_id)
        return session

    def take(self, state: str) -> PendingSession:
        """
        Atomically remove and return the session for *state*.

        Raises
        ------
        InvalidOrExpiredStateError – unknown, already consumed, or past TTL
        """
        with self._lock:
            session = self._sessions.pop(state, None)
        if session is None:
            raise InvalidOrExpiredStateError("OAuth state is invalid or has already been used")
        if session.is_expired(self._clock(), self.ttl_seconds):
            logger.info(
                "Rejected expired %s login for owner %s", session.provider.value, session.owner_id
            )
            raise InvalidOrExpiredStateError("OAuth state has expired; start the login again")
        return session

    def evict_expired(self) -> int:
        """Drop every session past TTL; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                state
                for state, session in self._sessions.items()
                if session.is_expired(now, self.ttl_seconds)
            ]
            for state in expired:
                del self._sessions[state]
        if expired:
            logger.info("Evicted %d abandoned login sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._sessions
