"""
ClientPool — one live platform client per credential fingerprint.

Keys are fingerprints, never raw secrets, so they are safe to log.
A cold key is built exactly once even under concurrent ``acquire``:
the first caller starts a construction task and later callers await the
same task.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Union

from broker.errors import ClientConstructionError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], Union[Any, Awaitable[Any]]]


def fingerprint(secret: str, namespace: str = "") -> str:
    """Stable, non-reversible cache key for *secret* (sha256 hex)."""
    digest = hashlib.sha256(f"{namespace}:{secret}".encode("utf-8")).hexdigest()
    return f"{namespace}:{digest}" if namespace else digest


def short(key: str) -> str:
    """Log-friendly prefix of a fingerprint."""
    return key[:20]


@dataclass
class PooledClient:
    client: Any
    created_at: float
    last_used: float


class ClientPool:
    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, PooledClient] = {}
        self._building: Dict[str, "asyncio.Task[Any]"] = {}
        # key -> time it was retired; retired credentials are never rebuilt
        self._retired: Dict[str, float] = {}

    async def acquire(self, key: str, factory: ClientFactory) -> Any:
        """
        Return the cached client for *key*, building it with *factory* if
        absent.  *factory* may be sync or async.

        Raises
        ------
        ClientConstructionError – factory failed, or *key* was retired;
                                  nothing is cached
        """
        if key in self._retired:
            raise ClientConstructionError("Credential has been superseded; fetch the account again")
        entry = self._entries.get(key)
        if entry is not None:
            entry.last_used = self._clock()
            return entry.client

        task = self._building.get(key)
        if task is None:
            task = asyncio.ensure_future(self._construct(key, factory))
            # Retrieve the outcome even if every waiter was cancelled.
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._building[key] = task
        # shield: a cancelled waiter must not cancel the shared construction
        return await asyncio.shield(task)

    async def _construct(self, key: str, factory: ClientFactory) -> Any:
        me = asyncio.current_task()
        try:
            client = factory()
            if inspect.isawaitable(client):
                client = await client
        except Exception as exc:
            logger.warning("Client construction failed for %s: %s", short(key), type(exc).__name__)
            raise ClientConstructionError(
                f"Could not create platform client ({type(exc).__name__})"
            ) from exc
        finally:
            still_current = self._building.get(key) is me
            if still_current:
                del self._building[key]

        if not still_current or key in self._retired:
            # invalidate() ran while we were building; the credential is stale.
            await _close(client, key)
            raise ClientConstructionError("Credential was invalidated while the client was being built")

        now = self._clock()
        self._entries[key] = PooledClient(client=client, created_at=now, last_used=now)
        logger.debug("Client built for %s", short(key))
        return client

    async def invalidate(self, key: str) -> bool:
        """Drop (and close) the handle for *key*.  Returns True if one existed."""
        self._building.pop(key, None)
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        await _close(entry.client, key)
        logger.info("Client invalidated for %s", short(key))
        return True

    async def retire(self, key: str) -> bool:
        """
        Invalidate *key* and refuse to rebuild it.  Used when a credential
        is rotated or revoked, so a caller holding a stale account cannot
        repopulate the pool with it.
        """
        self._retired[key] = self._clock()
        return await self.invalidate(key)

    def is_retired(self, key: str) -> bool:
        return key in self._retired

    async def evict_idle(self, max_idle: float) -> int:
        """Close handles unused for longer than *max_idle* seconds."""
        cutoff = self._clock() - max_idle
        stale = [k for k, e in self._entries.items() if e.last_used < cutoff]
        for key in stale:
            entry = self._entries.pop(key, None)
            if entry is not None:
                await _close(entry.client, key)
        # A retired key outlives any in-flight operation after one idle window.
        for key in [k for k, at in self._retired.items() if at < cutoff]:
            del self._retired[key]
        if stale:
            logger.info("Evicted %d idle platform clients", len(stale))
        return len(stale)

    async def close(self) -> None:
        for task in list(self._building.values()):
            task.cancel()
        self._building.clear()
        entries, self._entries = self._entries, {}
        for key, entry in entries.items():
            await _close(entry.client, key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


async def _close(client: Any, key: str) -> None:
    closer = getattr(client, "aclose", None) or getattr(client, "close", None)
    if closer is None:
        return
    try:
        result = closer()
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.warning("Error closing client for %s", short(key), exc_info=True)
