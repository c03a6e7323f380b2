# service/token_manager.py
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import httpx
from config.settings import settings
from model.token import CachedToken, CachedTokenInfo, TokenCacheStats, TokenGrant
from util.errors import AuthRefreshError
from util.functions import token_fingerprint

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Keeps Google access tokens valid for long-running transfers.

    Cache entries are keyed by a fingerprint of the access token. Two distinct
    tokens sharing a fingerprint would make one lookup serve the other cached
    entry; that entry is itself a valid token, so the only cost is using a
    different (still valid) token than the caller held.
    """

    def __init__(
        self,
        *,
        client_id: str = settings.GOOGLE_CLIENT_ID,
        client_secret: str = settings.GOOGLE_CLIENT_SECRET,
        redirect_uri: str = settings.GOOGLE_REDIRECT_URI,
        token_url: str = settings.GOOGLE_TOKEN_URL,
        refresh_skew_seconds: float = settings.TOKEN_REFRESH_SKEW_SECONDS,
        timeout: float = settings.TOKEN_HTTP_TIMEOUT_SECONDS,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._token_url = token_url
        self._skew = float(refresh_skew_seconds)
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))
        self._http = http
        self._clock = clock
        self._cache: Dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    # ---------------- Cache ----------------

    @staticmethod
    def cache_key(access_token: str) -> str:
        return token_fingerprint(access_token)

    def _cached(self, access_token: str) -> Optional[CachedToken]:
        with self._lock:
            return self._cache.get(self.cache_key(access_token))

    def _put(self, token: CachedToken) -> None:
        with self._lock:
            self._cache[self.cache_key(token.access_token)] = token

    def remember(
        self, access_token: str, refresh_token: Optional[str], expires_at: float
    ) -> None:
        """Seed the cache with session-held credentials whose expiry is known."""
        self._put(
            CachedToken(
                access_token=access_token,
                refresh_token=refresh_token,
                expiry=float(expires_at),
                cached_at=datetime.now(timezone.utc),
            )
        )

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, v in self._cache.items() if v.expiry < now]
            for k in stale:
                del self._cache[k]
        if stale:
            logger.info("token.cache.swept count=%d", len(stale))
        return len(stale)

    def cache_stats(self) -> TokenCacheStats:
        with self._lock:
            items = list(self._cache.items())
        return TokenCacheStats(
            total_tokens=len(items),
            tokens=[
                CachedTokenInfo(
                    key=k,
                    expiry=datetime.fromtimestamp(v.expiry, tz=timezone.utc),
                    cached_at=v.cached_at,
                )
                for k, v in items
            ],
        )

    # ---------------- Exchanges ----------------

    async def get_valid_access_token(
        self, refresh_token: str, current_access_token: Optional[str] = None
    ) -> str:
        if current_access_token:
            cached = self._cached(current_access_token)
            if cached and cached.expiry > self._clock() + self._skew:
                logger.debug("token.cache.hit key=%s", self.cache_key(current_access_token))
                return cached.access_token

        if not refresh_token:
            raise AuthRefreshError("Token refresh failed: no refresh credential")

        logger.info("token.refresh.start")
        data = await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            action="refresh",
        )
        grant = self._grant_from(data, fallback_refresh=refresh_token)
        self._put(
            CachedToken(
                access_token=grant.access_token,
                # Google rarely rotates refresh tokens; keep the old one otherwise.
                refresh_token=grant.refresh_token,
                expiry=grant.expires_at,
                cached_at=datetime.now(timezone.utc),
            )
        )
        logger.info("token.refresh.ok key=%s", self.cache_key(grant.access_token))
        return grant.access_token

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        if not code:
            raise AuthRefreshError("Token exchange failed: empty authorization code")
        data = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
            },
            action="exchange",
        )
        grant = self._grant_from(data)
        self._put(
            CachedToken(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expiry=grant.expires_at,
                cached_at=datetime.now(timezone.utc),
            )
        )
        logger.info("token.exchange.ok key=%s", self.cache_key(grant.access_token))
        return grant

    def _grant_from(
        self, data: Dict[str, Any], fallback_refresh: Optional[str] = None
    ) -> TokenGrant:
        access = data.get("access_token")
        if not access:
            raise AuthRefreshError("Token response missing access_token")
        try:
            expires_in = float(data.get("expires_in") or 3600)
        except (TypeError, ValueError):
            expires_in = 3600.0
        return TokenGrant(
            access_token=str(access),
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=self._clock() + expires_in,
        )

    async def _post_token(self, form: Dict[str, str], *, action: str) -> Dict[str, Any]:
        payload = {
            **form,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        try:
            if self._http is not None:
                res = await self._http.post(
                    self._token_url, data=payload, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    res = await client.post(self._token_url, data=payload)
        except httpx.HTTPError as e:
            logger.error("token.%s.request_error err=%s", action, type(e).__name__)
            raise AuthRefreshError(f"Token {action} failed: {type(e).__name__}") from e

        try:
            body = res.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        if res.status_code // 100 != 2:
            reason = (
                body.get("error_description")
                or body.get("error")
                or f"HTTP {res.status_code}"
            )
            logger.warning("token.%s.rejected status=%d", action, res.status_code)
            raise AuthRefreshError(f"Token {action} failed: {reason}")

        if not body:
            raise AuthRefreshError(f"Token {action} failed: malformed response")
        return body
