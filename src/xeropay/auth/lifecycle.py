"""
Token lifecycle manager — hands out a credential that is valid right now.

On every call the stored bundle is loaded and its remaining access-token
lifetime is recomputed. When less than the refresh threshold remains, the
refresh token is exchanged and the new token set is persisted before the
credential is returned. Refresh-and-save runs under a lock, and the bundle is
re-read once the lock is held, so concurrent callers that raced on the same
near-expiry bundle reuse the refresh that just finished instead of issuing
their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from xeropay.auth.provider import XeroOAuthProvider
from xeropay.auth.session_store import SessionStore
from xeropay.auth.tokens import CredentialBundle, TokenSet, ValidCredential
from xeropay.client import XeroAccountingClient
from xeropay.errors import ProviderError, RefreshFailed

logger = logging.getLogger("xeropay.auth.lifecycle")

REFRESH_THRESHOLD_SECONDS = 60

ClientFactory = Callable[[TokenSet, str], XeroAccountingClient]


class TokenLifecycleManager:
    """Keeps the persisted session usable and builds per-request clients.

    Usage::

        manager = TokenLifecycleManager(store, provider)
        credential = await manager.get_valid_credential()
        async with credential.client as xero:
            contacts = await xero.get_contacts()
    """

    def __init__(
        self,
        store: SessionStore,
        provider: XeroOAuthProvider,
        *,
        refresh_threshold: float = REFRESH_THRESHOLD_SECONDS,
        client_factory: ClientFactory = XeroAccountingClient,
    ) -> None:
        self.store = store
        self.provider = provider
        self.refresh_threshold = refresh_threshold
        self.client_factory = client_factory
        self._refresh_lock = asyncio.Lock()

    async def get_valid_credential(self) -> ValidCredential:
        """Return a client configured with a token set valid for immediate use.

        Raises:
            NotInitialized: If consent has never completed.
            RefreshFailed: If the token was due and could not be refreshed.
        """
        bundle = await self.store.load()
        remaining = bundle.token_set.remaining
        logger.debug("Access token expires in %d secs", remaining)

        if remaining < self.refresh_threshold:
            bundle = await self._refresh()

        return ValidCredential(
            client=self.client_factory(bundle.token_set, bundle.tenant_id),
            tenant_id=bundle.tenant_id,
        )

    async def _refresh(self) -> CredentialBundle:
        async with self._refresh_lock:
            current = await self.store.load()
            if not current.token_set.is_due_for_refresh(self.refresh_threshold):
                logger.debug("Token already refreshed by a concurrent request")
                return current

            try:
                token_set = await self.provider.refresh(current.token_set.refresh_token)
            except ProviderError as e:
                needs_consent = e.is_rejection
                logger.warning(
                    "Token refresh failed (%s): %s",
                    "needs consent" if needs_consent else "transient",
                    e,
                )
                raise RefreshFailed(
                    _refresh_failure_message(e, needs_consent),
                    needs_consent=needs_consent,
                ) from e

            refreshed = current.with_token_set(token_set)
            await self.store.save(refreshed)
            logger.info("Refreshed access token (expires in %ds)", token_set.expires_in)
            return refreshed

    async def status(self) -> dict[str, Any]:
        """Summarise the stored session without exposing token material."""
        bundle = await self.store.load()
        token_set = bundle.token_set
        tenant = bundle.tenants[0]
        return {
            "tenantId": tenant.tenant_id,
            "tenantName": tenant.tenant_name,
            "tenantCount": len(bundle.tenants),
            "expiresIn": int(token_set.remaining),
            "refreshDue": token_set.is_due_for_refresh(self.refresh_threshold),
            "scope": token_set.scope,
        }


def _refresh_failure_message(error: ProviderError, needs_consent: bool) -> str:
    if needs_consent:
        return (
            "Xero rejected the refresh token; an admin must re-authorize via /xero/connect"
        )
    if error.status_code is None:
        return "Could not reach Xero to refresh the access token; try again later"
    return f"Xero token endpoint failed with HTTP {error.status_code}; try again later"
