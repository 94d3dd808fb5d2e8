"""Process-wide runtime state shared by every bridge component."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .dedup import DedupCache
from .token_cache import TokenCache

DEFAULT_HTTP_TIMEOUT = 15.0


@dataclass
class RuntimeContext:
    """Owns the HTTP client and the volatile token/dedup caches.

    Everything here lives for the process lifetime only; nothing is persisted.
    """

    http: httpx.AsyncClient
    tokens: TokenCache
    dedup: DedupCache
    clock: Callable[[], float] = time.time

    @classmethod
    def create(
        cls,
        *,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> "RuntimeContext":
        http = httpx.AsyncClient(timeout=timeout, transport=transport)
        return cls(
            http=http,
            tokens=TokenCache(http, clock=clock),
            dedup=DedupCache(clock=clock),
            clock=clock,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
