"""
HTTP surface: consent, callback, session status and payments lookup.

Run locally:
    xeropay serve

The admin visits ``/xero/connect`` once to authorize; afterwards
``/payments/{student_id}`` serves lookups, refreshing the stored session as
needed. Errors are always JSON of the form
``{"error": {"type": ..., "message": ...}}``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from xeropay import __version__
from xeropay.auth.consent import ConsentFlowController, decoded_claims
from xeropay.auth.lifecycle import TokenLifecycleManager
from xeropay.auth.provider import XeroOAuthProvider
from xeropay.auth.session_store import JSONFileSessionStore, SessionStore
from xeropay.client import XeroAccountingClient
from xeropay.config import XeroPayConfig
from xeropay.errors import (
    AccountingAPIError,
    AmbiguousOrMissingContact,
    ConsentExchangeFailed,
    NotInitialized,
    RefreshFailed,
    XeroPayError,
)
from xeropay.logging_config import configure_logging
from xeropay.payments import PaymentsLookup

logger = logging.getLogger("xeropay.server")

router = APIRouter()


def _status_for(exc: XeroPayError) -> int:
    if isinstance(exc, AmbiguousOrMissingContact):
        return 404
    if isinstance(exc, NotInitialized):
        return 409
    if isinstance(exc, RefreshFailed):
        return 401 if exc.needs_consent else 503
    if isinstance(exc, ConsentExchangeFailed):
        return 400
    if isinstance(exc, AccountingAPIError):
        return 502
    return 500


async def _xeropay_error_handler(request: Request, exc: XeroPayError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"type": "internal_error", "message": "Internal server error"}},
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/xero/connect")
async def connect(request: Request) -> RedirectResponse:
    """Redirect the admin's browser to the Xero consent page."""
    consent: ConsentFlowController = request.app.state.consent
    return RedirectResponse(await consent.begin_consent())


@router.get("/xero/callback")
async def callback(request: Request) -> dict:
    """Finish consent and confirm the stored session (no raw tokens)."""
    consent: ConsentFlowController = request.app.state.consent
    bundle = await consent.complete_consent(str(request.url))
    return {
        "connected": True,
        "tenantId": bundle.tenant_id,
        "tenants": [t.to_dict() for t in bundle.tenants],
        "expiresIn": bundle.token_set.expires_in,
        "scope": bundle.token_set.scope,
        **decoded_claims(bundle),
    }


@router.get("/xero/status")
async def status(request: Request) -> dict:
    manager: TokenLifecycleManager = request.app.state.manager
    return await manager.status()


@router.get("/payments/{student_id}")
async def payments(student_id: str, request: Request) -> list[dict]:
    """Payments against the invoices of the contact whose Account Number is ``student_id``."""
    lookup: PaymentsLookup = request.app.state.lookup
    return await lookup.payments_for_account_number(student_id)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

@dataclass
class Services:
    """The collaborators one process shares across requests."""

    config: XeroPayConfig
    store: SessionStore
    provider: XeroOAuthProvider
    manager: TokenLifecycleManager
    consent: ConsentFlowController
    lookup: PaymentsLookup


def build_services(
    config: XeroPayConfig,
    *,
    store: SessionStore | None = None,
    provider: XeroOAuthProvider | None = None,
) -> Services:
    """Wire the session store, provider, manager and facades from ``config``."""
    store = store or JSONFileSessionStore(
        Path(config.session_file), encrypt=config.encrypt_session
    )
    provider = provider or XeroOAuthProvider(
        client_id=config.client_id,
        client_secret=config.client_secret,
        redirect_url=config.effective_redirect_url,
        scopes=config.scopes,
        timeout=config.http_timeout,
    )
    manager = TokenLifecycleManager(
        store,
        provider,
        refresh_threshold=config.refresh_threshold_seconds,
        client_factory=partial(XeroAccountingClient, timeout=config.http_timeout),
    )
    return Services(
        config=config,
        store=store,
        provider=provider,
        manager=manager,
        consent=ConsentFlowController(store, provider),
        lookup=PaymentsLookup(manager),
    )


def create_app(
    config: XeroPayConfig | None = None,
    *,
    store: SessionStore | None = None,
    provider: XeroOAuthProvider | None = None,
) -> FastAPI:
    """Build the FastAPI app and its collaborators from ``config``."""
    config = config or XeroPayConfig.load()
    configure_logging(config.log_level)
    services = build_services(config, store=store, provider=provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Server listening at %s", config.port)
        yield
        await services.provider.close()

    app = FastAPI(
        title="xeropay",
        description="Xero payments lookup backed by a single offline OAuth2 session.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(XeroPayError, _xeropay_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.state.config = config
    app.state.store = services.store
    app.state.provider = services.provider
    app.state.manager = services.manager
    app.state.consent = services.consent
    app.state.lookup = services.lookup

    app.include_router(router)
    return app
