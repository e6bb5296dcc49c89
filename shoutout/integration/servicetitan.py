"""ServiceTitan REST API client.

OAuth2 client-credentials authentication with an in-memory token cache,
plus a JSON GET helper that retries throttling and server errors with
exponential backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shoutout.config import ServiceTitanConfig
from shoutout.errors import AuthenticationError, ShoutOutError, UpstreamError

logger = logging.getLogger(__name__)

# Refresh tokens this many seconds before ServiceTitan says they expire
TOKEN_REFRESH_MARGIN_SECONDS = 300
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class RetryableStatusError(UpstreamError):
    """429 or 5xx response; retried before surfacing as UpstreamError."""


class ServiceTitanAuth:
    """Client-credentials token provider with an in-memory cache."""

    def __init__(
        self,
        config: ServiceTitanConfig,
        http: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.http = http
        self.clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self.clock() < self._expires_at

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        """Return a cached token, fetching a new one when near expiry.

        Raises:
            AuthenticationError: Credentials rejected or no token returned
        """
        if self.has_valid_token:
            return self._token  # type: ignore[return-value]

        logger.info("Fetching new ServiceTitan token")
        try:
            response = await self.http.post(
                self.config.auth_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"ServiceTitan auth request failed: {exc}") from exc

        if response.is_error:
            raise AuthenticationError(
                f"Failed to authenticate with ServiceTitan: {response.status_code} {response.text}"
            )

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("ServiceTitan returned an empty access token")

        expires_in = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        self._token = token
        self._expires_at = self.clock() + max(expires_in - TOKEN_REFRESH_MARGIN_SECONDS, 0)

        logger.info("Obtained ServiceTitan token (expires in %ss)", expires_in)
        return token


class ServiceTitanClient:
    """Thin async client over the ServiceTitan tenant APIs.

    Usage:
        async with ServiceTitanClient(config) as client:
            data = await client.get_json(client.tenant_path("sales", "estimates"))
    """

    def __init__(
        self,
        config: ServiceTitanConfig,
        http: httpx.AsyncClient | None = None,
        auth: ServiceTitanAuth | None = None,
        backoff_multiplier: float = 1.0,
    ):
        self.config = config
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=config.timeout_seconds)
        self.auth = auth or ServiceTitanAuth(config, self.http)
        self.backoff_multiplier = backoff_multiplier

    def tenant_path(self, service: str, resource: str) -> str:
        return f"/{service}/v2/tenant/{self.config.tenant_id}/{resource.lstrip('/')}"

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict:
        """GET a tenant resource, retrying 429/5xx and transport errors.

        Raises:
            AuthenticationError: Token fetch failed or request was unauthorized
            UpstreamError: Non-retryable error status, or retries exhausted
        """
        url = f"{self.config.base_url}{path}"
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=10),
            retry=retry_if_exception_type((RetryableStatusError, httpx.TransportError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._get_once(url, params)
        except httpx.TransportError as exc:
            raise UpstreamError(f"ServiceTitan request failed: {exc}", url=url) from exc
        raise UpstreamError("ServiceTitan request made no attempts", url=url)  # pragma: no cover

    async def _get_once(self, url: str, params: dict[str, Any] | None) -> dict:
        token = await self.auth.get_token()
        response = await self.http.get(
            url,
            params=params,
            headers={
                "Authorization": f"Bearer {token}",
                "ST-App-Key": self.config.app_key,
                "Accept": "application/json",
            },
        )

        if response.status_code == 401:
            self.auth.invalidate()
            raise AuthenticationError(f"ServiceTitan rejected token for {url}")
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableStatusError(
                f"ServiceTitan {response.status_code}: {response.text}",
                status_code=response.status_code,
                url=url,
            )
        if response.is_error:
            raise UpstreamError(
                f"ServiceTitan {response.status_code}: {response.text}",
                status_code=response.status_code,
                url=url,
            )
        return response.json()

    async def _get_record(self, path: str) -> dict | None:
        try:
            return await self.get_json(path)
        except UpstreamError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def get_technician(self, technician_id: int) -> dict | None:
        """Technician record, or None if it does not exist."""
        return await self._get_record(self.tenant_path("settings", f"technicians/{technician_id}"))

    async def get_customer(self, customer_id: int) -> dict | None:
        """Customer record, or None if it does not exist."""
        return await self._get_record(self.tenant_path("crm", f"customers/{customer_id}"))

    async def get_technician_name(self, technician_id: int) -> str:
        """Technician display name; ``Technician #<id>`` when unavailable."""
        placeholder = f"Technician #{technician_id}"
        try:
            record = await self.get_technician(technician_id)
        except (ShoutOutError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Technician lookup failed for %s: %s", technician_id, exc)
            return placeholder
        return (record or {}).get("name") or placeholder

    async def get_customer_name(self, customer_id: int) -> str:
        """Customer display name; ``Customer #<id>`` when unavailable."""
        placeholder = f"Customer #{customer_id}"
        try:
            record = await self.get_customer(customer_id)
        except (ShoutOutError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Customer lookup failed for %s: %s", customer_id, exc)
            return placeholder
        return (record or {}).get("name") or placeholder

    async def close(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> ServiceTitanClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
