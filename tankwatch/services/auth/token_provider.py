"""
Broker Credential Provider
Exchanges static client credentials for short-lived bearer tokens and
caches them until shortly before they expire
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from tankwatch.core.error_handling import AuthError, ErrorCode
from tankwatch.core.time_utils import SystemClock

logger = logging.getLogger(__name__)


class TokenProvider:
    """
    OAuth 2.0 client-credentials token cache.

    Features:
    - Cached token reused until `expiry - safety_margin`
    - Forced refresh that bypasses the cache (used before every reconnect)
    - Bounded request timeout; failures surface as AuthError
    - Concurrent callers share a single in-flight exchange
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        safety_margin: float = 300.0,
        default_ttl: float = 7200.0,
        timeout: float = 10.0,
        clock=None
    ):
        """
        Initialize token provider.

        Args:
            token_url: Token endpoint URL
            client_id: Static client id (UAC id)
            client_secret: Static client secret
            safety_margin: Seconds before expiry at which the cache is bypassed
            default_ttl: Lifetime assumed when the endpoint omits expires_in
            timeout: HTTP request timeout in seconds
            clock: Object with now() -> epoch seconds
        """
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.safety_margin = safety_margin
        self.default_ttl = default_ttl
        self.timeout = timeout
        self.clock = clock or SystemClock()

        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

        self._stats = {
            'exchanges': 0,
            'failures': 0,
            'cache_hits': 0,
        }

    def _cached(self) -> Optional[str]:
        if self._token and self.clock.now() < self._expires_at - self.safety_margin:
            return self._token
        return None

    async def get_token(self, force: bool = False) -> str:
        """
        Return a usable bearer token.

        Args:
            force: Skip the cache and always exchange credentials

        Returns:
            Access token string

        Raises:
            AuthError: If the exchange does not yield a usable token
        """
        if not force:
            cached = self._cached()
            if cached:
                self._stats['cache_hits'] += 1
                return cached

        async with self._lock:
            # Another caller may have refreshed while we waited
            if not force:
                cached = self._cached()
                if cached:
                    self._stats['cache_hits'] += 1
                    return cached

            logger.info("Fetching new access token...")
            self._stats['exchanges'] += 1
            try:
                data = await self._exchange()
            except AuthError:
                self._stats['failures'] += 1
                raise

            token = data.get('access_token') if isinstance(data, dict) else None
            if not token:
                self._stats['failures'] += 1
                raise AuthError(
                    f"Failed to get access token: {data!r}",
                    details={'token_url': self.token_url},
                    error_code=ErrorCode.TOKEN_MISSING
                )

            ttl = data.get('expires_in') or self.default_ttl
            try:
                ttl = float(ttl)
            except (TypeError, ValueError):
                ttl = self.default_ttl

            self._token = token
            self._expires_at = self.clock.now() + ttl
            logger.info(f"✓ Got access token (expires in {ttl:g}s)")
            return token

    async def _exchange(self) -> Dict[str, Any]:
        """
        POST grant_type=client_credentials with HTTP Basic auth.

        Raises:
            AuthError: On transport errors, timeouts, non-200 status or non-JSON body
        """
        timeout_config = aiohttp.ClientTimeout(total=self.timeout)
        auth = aiohttp.BasicAuth(self.client_id, self.client_secret)

        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.post(
                    self.token_url,
                    data={'grant_type': 'client_credentials'},
                    auth=auth
                ) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise AuthError(
                            f"Token endpoint returned HTTP {response.status}: {body[:200]}",
                            details={'status': response.status}
                        )
                    return await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise AuthError(f"Connection error: {e}", details={'token_url': self.token_url}) from e
        except asyncio.TimeoutError as e:
            raise AuthError(
                f"Token request timed out after {self.timeout}s",
                details={'token_url': self.token_url}
            ) from e
        except ValueError as e:
            raise AuthError(f"Token endpoint returned invalid JSON: {e}") from e

    def invalidate(self) -> None:
        """Drop the cached token"""
        self._token = None
        self._expires_at = 0.0

    def get_statistics(self) -> dict:
        return {
            'has_token': self._token is not None,
            'expires_at': self._expires_at or None,
            **self._stats
        }
