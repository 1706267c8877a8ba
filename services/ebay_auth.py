"""
eBay Application Token

Client Credentials OAuth2 flow for the Browse and Marketplace Insights APIs.
The token is cached until shortly before it expires; concurrent callers share
a single in-flight refresh.
"""

import asyncio
import base64
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import httpx

from config import (
    EBAY_APP_ID,
    EBAY_CERT_ID,
    EBAY_OAUTH_URL,
    EBAY_OAUTH_SCOPES,
    EBAY_TOKEN_EXPIRY_BUFFER,
    MARKET_TIMEOUT,
)
from services.exceptions import EbayAPIError, MissingAPIKeyError

logger = logging.getLogger(__name__)


class EbayAppToken:
    """
    Cached application access token.

    Usage:
        token_cache = EbayAppToken(http_client)
        token = await token_cache.get_token()
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        app_id: Optional[str] = EBAY_APP_ID,
        cert_id: Optional[str] = EBAY_CERT_ID,
        scopes: Sequence[str] = EBAY_OAUTH_SCOPES,
        oauth_url: str = EBAY_OAUTH_URL,
        timeout: float = MARKET_TIMEOUT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.http_client = http_client
        self.app_id = app_id
        self.cert_id = cert_id
        self.scopes = tuple(scopes)
        self.oauth_url = oauth_url
        self.timeout = timeout
        self._clock = clock

        self._token: Optional[str] = None
        self._expires: Optional[datetime] = None
        self._refresh_lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.cert_id)

    def _cached(self) -> Optional[str]:
        if self._token and self._expires and self._clock() < self._expires:
            return self._token
        return None

    def invalidate(self) -> None:
        """Drop the cached token (e.g. after a 401)"""
        self._token = None
        self._expires = None

    async def get_token(self) -> str:
        """
        Return a valid token, refreshing it if expired.

        Raises MissingAPIKeyError when no keyset is configured and EbayAPIError
        when the token exchange fails.
        """
        token = self._cached()
        if token:
            return token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock
            token = self._cached()
            if token:
                return token
            return await self._request_token()

    async def _request_token(self) -> str:
        if not self.configured:
            raise MissingAPIKeyError("ebay", config_key="EBAY_APP_ID/EBAY_CERT_ID")

        credentials = f"{self.app_id}:{self.cert_id}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {encoded_credentials}",
        }
        data = {
            "grant_type": "client_credentials",
            "scope": " ".join(self.scopes),
        }

        try:
            response = await self.http_client.post(
                self.oauth_url, headers=headers, data=data, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise EbayAPIError(f"Token request failed: {e}", cause=e)

        if response.status_code != 200:
            logger.error(f"[EBAY OAuth] Token request failed: {response.status_code} - {response.text[:200]}")
            raise EbayAPIError("Token request rejected", status_code=response.status_code)

        try:
            token_data = response.json()
        except ValueError as e:
            logger.error(f"[EBAY OAuth] Token response is not JSON: {response.text[:200]}")
            raise EbayAPIError("Token response is not JSON", cause=e)
        if not isinstance(token_data, dict):
            raise EbayAPIError("Token response is not a JSON object")

        access_token = token_data.get("access_token")
        try:
            expires_in = int(token_data.get("expires_in", 7200))  # Default 2 hours
        except (TypeError, ValueError) as e:
            raise EbayAPIError(f"Token response has invalid expires_in: {token_data.get('expires_in')!r}", cause=e)

        if not access_token:
            logger.error("[EBAY OAuth] No access_token in response")
            raise EbayAPIError("Token response missing access_token")

        self._token = access_token
        self._expires = self._clock() + timedelta(seconds=max(0, expires_in - EBAY_TOKEN_EXPIRY_BUFFER))
        self.refresh_count += 1
        logger.info(f"[EBAY OAuth] Token acquired, expires in {expires_in}s")
        return access_token
