"""
Xero Accounting API client bound to one token set and one tenant.

A new client is built for every request from the credential the lifecycle
manager hands out; clients are never cached or shared. Each one owns its
own HTTP connection pool, released by ``close()`` or ``async with``.

Xero API docs:
  https://developer.xero.com/documentation/api/accounting/overview
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import httpx

from xeropay.errors import AccountingAPIError

if TYPE_CHECKING:
    from xeropay.auth.tokens import TokenSet

logger = logging.getLogger("xeropay.client")

_XERO_API_URL = "https://api.xero.com/api.xro/2.0"

# Upper bound on a Retry-After wait before giving up on a rate-limited call
_MAX_RETRY_AFTER = 60
_DEFAULT_RETRY_AFTER = 5


def _retry_after_seconds(value: str | None) -> int:
    """Seconds to wait for a Retry-After header in delta or HTTP-date form."""
    if not value:
        return _DEFAULT_RETRY_AFTER
    try:
        seconds = int(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return _DEFAULT_RETRY_AFTER
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = int((when - datetime.now(timezone.utc)).total_seconds())
    return min(max(seconds, 0), _MAX_RETRY_AFTER)


class XeroAccountingClient:
    """Minimal async client for the Xero Accounting API."""

    def __init__(
        self,
        token_set: TokenSet,
        tenant_id: str,
        *,
        timeout: float = 30.0,
        base_url: str = _XERO_API_URL,
    ) -> None:
        self.token_set = token_set
        self.tenant_id = tenant_id
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> XeroAccountingClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # API helpers
    # ------------------------------------------------------------------

    async def _api_get(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make an authenticated GET request to the Xero API."""
        client = await self._get_client()
        url = f"{self.base_url}/{endpoint}"
        headers = {
            "Authorization": f"{self.token_set.token_type} {self.token_set.access_token}",
            "Xero-Tenant-Id": self.tenant_id,
            "Accept": "application/json",
        }

        try:
            resp = await client.get(url, headers=headers, params=params)

            # Handle 429 rate limiting with a single wait-and-retry
            if resp.status_code == 429:
                retry_after = _retry_after_seconds(resp.headers.get("Retry-After"))
                logger.warning("Xero rate limited, waiting %ds", retry_after)
                await asyncio.sleep(retry_after)
                resp = await client.get(url, headers=headers, params=params)
        except httpx.RequestError as e:
            raise AccountingAPIError(f"Xero {endpoint} request failed: {type(e).__name__}") from e

        if resp.status_code >= 400:
            raise AccountingAPIError(
                f"Xero {endpoint} answered HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise AccountingAPIError(f"Xero {endpoint} did not answer with JSON") from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_contacts(self, where: str | None = None) -> list[dict[str, Any]]:
        """Fetch contacts, optionally filtered with a Xero ``where`` clause."""
        params = {"where": where} if where else None
        data = await self._api_get("Contacts", params=params)
        return data.get("Contacts") or []

    async def get_payments(self, where: str | None = None) -> list[dict[str, Any]]:
        """Fetch payments, optionally filtered with a Xero ``where`` clause."""
        params = {"where": where} if where else None
        data = await self._api_get("Payments", params=params)
        return data.get("Payments") or []
