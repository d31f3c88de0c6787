"""Shared fixtures for xeropay tests."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import pytest

from xeropay.auth.tokens import CredentialBundle, Tenant, TokenSet

TENANTS: list[dict[str, Any]] = [
    {
        "id": "conn-1",
        "tenantId": "tenant-aaa",
        "tenantType": "ORGANISATION",
        "tenantName": "Demo School",
    },
    {
        "id": "conn-2",
        "tenantId": "tenant-bbb",
        "tenantType": "ORGANISATION",
        "tenantName": "Second Org",
    },
]


def make_token_set(
    *,
    expires_in: int = 1800,
    age: float = 0.0,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    **kwargs: Any,
) -> TokenSet:
    """Token set issued ``age`` seconds ago."""
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        issued_at=time.time() - age,
        **kwargs,
    )


@pytest.fixture
def make_bundle() -> Callable[..., CredentialBundle]:
    def _make(**token_kwargs: Any) -> CredentialBundle:
        return CredentialBundle(
            token_set=make_token_set(**token_kwargs),
            tenants=tuple(Tenant.from_dict(t) for t in TENANTS),
        )

    return _make


@pytest.fixture
def make_tokens() -> Callable[..., TokenSet]:
    return make_token_set
