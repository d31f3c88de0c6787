"""
xeropay authentication and token lifecycle.

Provides the persisted credential bundle, the session store, the Xero
OAuth2 endpoints, the consent flow and the refresh-before-use manager.
"""

from xeropay.auth.consent import ConsentFlowController, decoded_claims
from xeropay.auth.lifecycle import REFRESH_THRESHOLD_SECONDS, TokenLifecycleManager
from xeropay.auth.provider import XeroOAuthProvider
from xeropay.auth.session_store import (
    InMemorySessionStore,
    JSONFileSessionStore,
    SessionStore,
)
from xeropay.auth.tokens import CredentialBundle, Tenant, TokenSet, ValidCredential

__all__ = [
    "REFRESH_THRESHOLD_SECONDS",
    "ConsentFlowController",
    "CredentialBundle",
    "InMemorySessionStore",
    "JSONFileSessionStore",
    "SessionStore",
    "Tenant",
    "TokenLifecycleManager",
    "TokenSet",
    "ValidCredential",
    "XeroOAuthProvider",
    "decoded_claims",
]
