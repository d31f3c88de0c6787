"""
Xero OAuth2 / OpenID Connect provider endpoints.

Covers the three identity round trips the system makes:

- discovery + authorization URL (consent start),
- authorization-code and refresh-token grants on the token endpoint,
- the connections endpoint listing the tenants a token can address.

Client credentials are sent with HTTP basic auth, as Xero expects.

Xero identity docs:
  https://developer.xero.com/documentation/guides/oauth2/auth-flow
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from xeropay.auth.tokens import Tenant, TokenSet
from xeropay.errors import ProviderError

logger = logging.getLogger("xeropay.auth.provider")

_XERO_DISCOVERY_URL = "https://identity.xero.com/.well-known/openid-configuration"
_XERO_AUTH_URL = "https://login.xero.com/identity/connect/authorize"
_XERO_TOKEN_URL = "https://identity.xero.com/connect/token"
_XERO_CONNECTIONS_URL = "https://api.xero.com/connections"


class XeroOAuthProvider:
    """Async wrapper around the Xero identity endpoints.

    Usage::

        provider = XeroOAuthProvider(
            client_id="...",
            client_secret="...",
            redirect_url="http://localhost:5000/xero/callback",
            scopes=["openid", "accounting.transactions", "offline_access"],
        )
        await provider.discover()
        url = provider.build_consent_url(state="...")
        token_set = await provider.exchange_code(code)
        tenants = await provider.fetch_tenants(token_set.access_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        scopes: list[str],
        *,
        timeout: float = 30.0,
        discovery_url: str = _XERO_DISCOVERY_URL,
        connections_url: str = _XERO_CONNECTIONS_URL,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.scopes = list(scopes)
        self.timeout = timeout
        self.discovery_url = discovery_url
        self.connections_url = connections_url
        self.authorization_endpoint = _XERO_AUTH_URL
        self.token_endpoint = _XERO_TOKEN_URL
        self._discovered = False
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Low-level request helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Request to {url} timed out") from e
        except httpx.RequestError as e:
            raise ProviderError(f"Request to {url} failed: {type(e).__name__}") from e

        if resp.status_code >= 400:
            error, description = _parse_error_body(resp)
            detail = description or error or resp.reason_phrase
            raise ProviderError(
                f"{url} answered HTTP {resp.status_code}: {detail}",
                status_code=resp.status_code,
                error=error,
            )
        return resp

    async def _token_grant(self, payload: dict[str, str]) -> dict[str, Any]:
        resp = await self._send(
            "POST",
            self.token_endpoint,
            data=payload,
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        return _json_object(resp, self.token_endpoint)

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def discover(self) -> None:
        """Fetch the OpenID discovery document and cache the endpoints."""
        if self._discovered:
            return
        resp = await self._send("GET", self.discovery_url, headers={"Accept": "application/json"})
        config = _json_object(resp, self.discovery_url)
        self.authorization_endpoint = config.get("authorization_endpoint", self.authorization_endpoint)
        self.token_endpoint = config.get("token_endpoint", self.token_endpoint)
        self._discovered = True
        logger.debug("Discovered Xero endpoints: %s", self.authorization_endpoint)

    def build_consent_url(self, state: str) -> str:
        """Build the authorization URL the admin's browser is sent to."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange a single-use authorization code for the initial token set."""
        data = await self._token_grant({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
        })
        try:
            token_set = TokenSet.from_oauth_response(data)
        except ValueError as e:
            raise ProviderError(f"Token endpoint returned an incomplete token set: {e}") from e
        logger.info("Exchanged authorization code (expires in %ds)", token_set.expires_in)
        return token_set

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new token set."""
        data = await self._token_grant({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        try:
            return TokenSet.from_oauth_response(data, fallback_refresh_token=refresh_token)
        except ValueError as e:
            raise ProviderError(f"Token endpoint returned an incomplete token set: {e}") from e

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    async def fetch_tenants(self, access_token: str) -> list[Tenant]:
        """List the organisations the access token is connected to."""
        resp = await self._send(
            "GET",
            self.connections_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        try:
            connections = resp.json() or []
        except ValueError as e:
            raise ProviderError(f"{self.connections_url} did not answer with JSON") from e
        try:
            tenants = [Tenant.from_dict(c) for c in connections]
        except (ValueError, TypeError, AttributeError) as e:
            raise ProviderError(f"Unexpected connections payload: {e}") from e
        logger.info("Fetched %d Xero tenant(s)", len(tenants))
        return tenants


def _parse_error_body(resp: httpx.Response) -> tuple[str | None, str | None]:
    """Extract the OAuth2 ``error`` / ``error_description`` pair, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    return body.get("error"), body.get("error_description")


def _json_object(resp: httpx.Response, url: str) -> dict[str, Any]:
    """Decode a successful response body that must be a JSON object."""
    try:
        body = resp.json()
    except ValueError as e:
        raise ProviderError(f"{url} did not answer with JSON") from e
    if not isinstance(body, dict):
        raise ProviderError(f"{url} answered with an unexpected {type(body).__name__} payload")
    return body
