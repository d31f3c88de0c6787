"""
Consent flow controller — the one-time authorization-code round trip.

The admin's browser is sent to Xero (``begin_consent``); Xero redirects back
to the callback URL, which ``complete_consent`` turns into the first
credential bundle. Authorization codes are single-use, so failures are
reported to the admin and never retried.

The CSRF ``state`` values handed out by ``begin_consent`` live in this
controller's memory only. The callback must reach the same process that
issued the redirect: after a restart, or behind several workers, the state
is unknown and the admin has to start again at ``/xero/connect``. Nothing
is persisted until the callback succeeds.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any
from urllib.parse import parse_qs, urlparse

import jwt

from xeropay.auth.provider import XeroOAuthProvider
from xeropay.auth.session_store import SessionStore
from xeropay.auth.tokens import CredentialBundle
from xeropay.errors import ConsentExchangeFailed, ProviderError

logger = logging.getLogger("xeropay.auth.consent")

# Consent attempts the controller remembers; older states are forgotten
_MAX_PENDING_STATES = 32


class ConsentFlowController:
    """Drives the authorization-code exchange that creates the session."""

    def __init__(self, store: SessionStore, provider: XeroOAuthProvider) -> None:
        self.store = store
        self.provider = provider
        self._pending_states: list[str] = []

    async def begin_consent(self) -> str:
        """Return the Xero authorization URL to redirect the admin to."""
        try:
            await self.provider.discover()
        except ProviderError as e:
            raise ConsentExchangeFailed(f"Could not reach Xero to start consent: {e}") from e

        state = secrets.token_urlsafe(32)
        self._pending_states.append(state)
        del self._pending_states[:-_MAX_PENDING_STATES]

        logger.info("Starting Xero consent flow")
        return self.provider.build_consent_url(state)

    async def complete_consent(self, callback_url: str) -> CredentialBundle:
        """Exchange the code in ``callback_url`` and persist the new bundle.

        Raises:
            ConsentExchangeFailed: If Xero reported an error, the state is
                unknown, or either remote call failed.
        """
        params = parse_qs(urlparse(callback_url).query)
        code = params.get("code", [None])[0]
        state = params.get("state", [None])[0]

        if "error" in params:
            reason = params.get("error_description", params["error"])[0]
            raise ConsentExchangeFailed(f"Xero authorization failed: {reason}")
        if not code:
            raise ConsentExchangeFailed("No authorization code received")
        if state not in self._pending_states:
            logger.warning("Rejected consent callback with an unknown state")
            raise ConsentExchangeFailed("State mismatch; restart the consent flow at /xero/connect")
        self._pending_states.remove(state)

        try:
            token_set = await self.provider.exchange_code(code)
            tenants = await self.provider.fetch_tenants(token_set.access_token)
        except ProviderError as e:
            logger.warning("Consent exchange failed: %s", e)
            raise ConsentExchangeFailed(f"Xero consent exchange failed: {e}") from e

        if not tenants:
            raise ConsentExchangeFailed("No Xero organisations are connected to this app")

        bundle = CredentialBundle(token_set=token_set, tenants=tuple(tenants))
        await self.store.save(bundle)
        logger.info(
            "Stored Xero session for tenant %s (%d connected)",
            bundle.tenant_id, len(tenants),
        )
        return bundle


def decoded_claims(bundle: CredentialBundle) -> dict[str, Any]:
    """Decode the id and access token claims for display.

    Signatures are not verified; the tokens came straight from the token
    endpoint over TLS.
    """
    claims: dict[str, Any] = {}
    for name, token in (
        ("decodedIdToken", bundle.token_set.id_token),
        ("decodedAccessToken", bundle.token_set.access_token),
    ):
        if not token:
            continue
        try:
            claims[name] = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            logger.debug("%s is not a JWT", name)
    return claims
