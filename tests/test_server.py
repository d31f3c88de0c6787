"""Tests for the HTTP surface, end to end with mocked Xero endpoints."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from xeropay.auth.provider import XeroOAuthProvider
from xeropay.auth.session_store import InMemorySessionStore
from xeropay.auth.tokens import Tenant
from xeropay.client import XeroAccountingClient
from xeropay.config import XeroPayConfig
from xeropay.errors import ProviderError
from xeropay.server import create_app

MOCK_CONTACT = {"ContactID": "c0ffee00-0000-4000-8000-000000001002", "AccountNumber": "STU-1002"}
MOCK_PAYMENTS = [
    {"PaymentID": "pay-1", "Amount": 250.0, "Status": "AUTHORISED", "Invoice": {"InvoiceNumber": "INV-7"}},
    {"PaymentID": "pay-2", "Amount": 125.5, "Status": "AUTHORISED", "Invoice": {"InvoiceNumber": "INV-8"}},
]


@pytest.fixture
def provider(make_tokens) -> XeroOAuthProvider:
    provider = XeroOAuthProvider(
        client_id="test_client",
        client_secret="test_secret",
        redirect_url="http://localhost:5000/xero/callback",
        scopes=["openid", "accounting.transactions", "offline_access"],
    )
    provider.discover = AsyncMock()  # type: ignore[method-assign]
    provider.exchange_code = AsyncMock(  # type: ignore[method-assign]
        return_value=make_tokens(access_token="access-1", refresh_token="refresh-1", scope="openid offline_access"),
    )
    provider.fetch_tenants = AsyncMock(return_value=[  # type: ignore[method-assign]
        Tenant.from_dict({"tenantId": "tenant-aaa", "tenantName": "Demo School"}),
    ])
    provider.refresh = AsyncMock(  # type: ignore[method-assign]
        return_value=make_tokens(access_token="access-2", refresh_token="refresh-2"),
    )
    return provider


def _client(provider: XeroOAuthProvider, store: InMemorySessionStore) -> TestClient:
    config = XeroPayConfig(client_id="test_client", client_secret="test_secret")
    app = create_app(config, store=store, provider=provider)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def xero_api(monkeypatch: pytest.MonkeyPatch) -> tuple[AsyncMock, AsyncMock]:
    get_contacts = AsyncMock(return_value=[MOCK_CONTACT])
    get_payments = AsyncMock(return_value=MOCK_PAYMENTS)
    monkeypatch.setattr(XeroAccountingClient, "get_contacts", get_contacts)
    monkeypatch.setattr(XeroAccountingClient, "get_payments", get_payments)
    return get_contacts, get_payments


class TestConsentRoutes:
    def test_connect_redirects_to_xero(self, provider: XeroOAuthProvider) -> None:
        client = _client(provider, InMemorySessionStore())

        resp = client.get("/xero/connect", follow_redirects=False)

        assert resp.status_code == 307
        location = resp.headers["location"]
        assert location.startswith("https://login.xero.com/identity/connect/authorize?")
        assert parse_qs(urlparse(location).query)["state"][0]

    def test_callback_stores_session_without_echoing_tokens(self, provider: XeroOAuthProvider) -> None:
        store = InMemorySessionStore()
        client = _client(provider, store)
        location = client.get("/xero/connect", follow_redirects=False).headers["location"]
        state = parse_qs(urlparse(location).query)["state"][0]

        resp = client.get("/xero/callback", params={"code": "abc", "state": state})

        assert resp.status_code == 200
        body = resp.json()
        assert body["connected"] is True
        assert body["tenantId"] == "tenant-aaa"
        assert body["scope"] == "openid offline_access"
        assert "access-1" not in resp.text
        assert "refresh-1" not in resp.text
        assert store.save_count == 1

    def test_callback_with_bad_state(self, provider: XeroOAuthProvider) -> None:
        store = InMemorySessionStore()
        client = _client(provider, store)

        resp = client.get("/xero/callback", params={"code": "abc", "state": "forged"})

        assert resp.status_code == 400
        assert resp.json()["error"]["type"] == "consent_exchange_failed"
        assert store.save_count == 0


class TestPaymentsRoute:
    def test_near_expiry_session_is_refreshed_then_payments_returned(
        self, provider: XeroOAuthProvider, make_bundle, xero_api,
    ) -> None:
        store = InMemorySessionStore(make_bundle(expires_in=45, age=10))
        client = _client(provider, store)
        get_contacts, get_payments = xero_api

        resp = client.get("/payments/STU-1002")

        assert resp.status_code == 200
        assert resp.json() == MOCK_PAYMENTS
        provider.refresh.assert_awaited_once_with("refresh-1")
        get_contacts.assert_awaited_once_with(where='AccountNumber=="STU-1002"')
        get_payments.assert_awaited_once_with(
            where=f'Invoice.Contact.ContactID.Equals(GUID("{MOCK_CONTACT["ContactID"]}"))'
        )
        assert store.save_count == 1

    def test_fresh_session_skips_refresh(self, provider: XeroOAuthProvider, make_bundle, xero_api) -> None:
        client = _client(provider, InMemorySessionStore(make_bundle(expires_in=1800, age=60)))

        assert client.get("/payments/STU-1002").status_code == 200
        provider.refresh.assert_not_awaited()

    def test_missing_contact_is_404(self, provider: XeroOAuthProvider, make_bundle, xero_api) -> None:
        get_contacts, get_payments = xero_api
        get_contacts.return_value = []
        client = _client(provider, InMemorySessionStore(make_bundle()))

        resp = client.get("/payments/STU-1002")

        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Expected a unique contact for studentId STU-1002"
        get_payments.assert_not_awaited()

    def test_no_session_is_409(self, provider: XeroOAuthProvider, xero_api) -> None:
        resp = _client(provider, InMemorySessionStore()).get("/payments/STU-1002")

        assert resp.status_code == 409
        assert resp.json()["error"]["type"] == "not_initialized"
        provider.refresh.assert_not_awaited()

    def test_revoked_refresh_token_is_401(self, provider: XeroOAuthProvider, make_bundle, xero_api) -> None:
        provider.refresh.side_effect = ProviderError("rejected", status_code=400, error="invalid_grant")
        client = _client(provider, InMemorySessionStore(make_bundle(expires_in=45, age=10)))

        resp = client.get("/payments/STU-1002")

        assert resp.status_code == 401
        error = resp.json()["error"]
        assert error["type"] == "refresh_failed"
        assert error["needs_consent"] is True

    def test_provider_outage_is_503(self, provider: XeroOAuthProvider, make_bundle, xero_api) -> None:
        provider.refresh.side_effect = ProviderError("timed out")
        client = _client(provider, InMemorySessionStore(make_bundle(expires_in=45, age=10)))

        assert client.get("/payments/STU-1002").status_code == 503

    def test_unexpected_error_is_generic_500(self, provider: XeroOAuthProvider, make_bundle, xero_api) -> None:
        get_contacts, _ = xero_api
        get_contacts.side_effect = RuntimeError("internal detail access-1")
        client = _client(provider, InMemorySessionStore(make_bundle()))

        resp = client.get("/payments/STU-1002")

        assert resp.status_code == 500
        assert resp.json() == {"error": {"type": "internal_error", "message": "Internal server error"}}
        assert "access-1" not in resp.text


class TestStatusRoute:
    def test_status(self, provider: XeroOAuthProvider, make_bundle) -> None:
        client = _client(provider, InMemorySessionStore(make_bundle()))

        resp = client.get("/xero/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["tenantId"] == "tenant-aaa"
        assert body["refreshDue"] is False
        assert "access-1" not in json.dumps(body)

    def test_status_without_session(self, provider: XeroOAuthProvider) -> None:
        resp = _client(provider, InMemorySessionStore()).get("/xero/status")
        assert resp.status_code == 409
