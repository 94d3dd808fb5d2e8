"""
Access token cache.

One bearer token per DingTalk app (keyed by clientId / appKey). Tokens are
refreshed lazily: a cached token is only handed out while it still has more
than REFRESH_MARGIN_SECONDS of life left, so in-flight requests never race
the expiry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from .errors import AuthError

DINGTALK_API = "https://api.dingtalk.com"
TOKEN_URL = f"{DINGTALK_API}/v1.0/oauth2/accessToken"

# Refresh 5 minutes before expiry
REFRESH_MARGIN_SECONDS = 300.0

logger = logging.getLogger("dtbridge.token")


@dataclass
class CachedToken:
    token: str
    expires_at: float


class TokenCache:
    """Lazily refreshed access tokens keyed by client id.

    Concurrent refreshes for the same client id are not coalesced; the
    exchange is idempotent on the platform side, so the last writer wins.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        clock: Callable[[], float] = time.time,
        token_url: str = TOKEN_URL,
    ):
        self._http = http
        self._clock = clock
        self._token_url = token_url
        self._entries: Dict[str, CachedToken] = {}

    def peek(self, client_id: str) -> Optional[CachedToken]:
        return self._entries.get(client_id)

    def invalidate(self, client_id: str) -> None:
        self._entries.pop(client_id, None)

    def _fresh(self, client_id: str) -> Optional[str]:
        cached = self._entries.get(client_id)
        if cached and cached.expires_at > self._clock() + REFRESH_MARGIN_SECONDS:
            return cached.token
        return None

    async def get_token(self, client_id: str, client_secret: str) -> str:
        token = self._fresh(client_id)
        if token is not None:
            return token

        resp = await self._http.post(
            self._token_url,
            json={"appKey": client_id, "appSecret": client_secret},
        )
        if not resp.is_success:
            raise AuthError(resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError:
            data = None
        token = str(data.get("accessToken") or "") if isinstance(data, dict) else ""
        if not token:
            raise AuthError(resp.status_code, resp.text)
        expire_in = float(data.get("expireIn") or 0)
        self._entries[client_id] = CachedToken(token=token, expires_at=self._clock() + expire_in)
        logger.info("[token] Refreshed for %s..., expires in %ss", client_id[:8], int(expire_in))
        return token
