"""
Credential data model: token set, tenants and the persisted bundle.

The bundle is the only unit of persisted state. It is serialized as::

    {
        "tokenSet": {"access_token": ..., "refresh_token": ..., ...},
        "tenants": [{"tenantId": ..., "tenantName": ..., ...}]
    }
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from xeropay.client import XeroAccountingClient

_TOKEN_FIELDS = {
    "access_token",
    "refresh_token",
    "id_token",
    "token_type",
    "scope",
    "expires_in",
    "issued_at",
}


@dataclass(frozen=True)
class TokenSet:
    """OAuth2 token set with issuance tracking."""

    access_token: str
    refresh_token: str
    id_token: str | None = None
    token_type: str = "Bearer"
    scope: str = ""
    expires_in: int = 1800
    issued_at: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.access_token or not self.refresh_token:
            raise ValueError("A token set needs both an access token and a refresh token")

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    @property
    def remaining(self) -> float:
        """Seconds of access-token lifetime left as of now."""
        return self.expires_at - time.time()

    def is_due_for_refresh(self, threshold: float) -> bool:
        return self.remaining < threshold

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "expires_in": self.expires_in,
            "issued_at": self.issued_at,
        }
        if self.id_token:
            data["id_token"] = self.id_token
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            id_token=data.get("id_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            expires_in=int(data.get("expires_in", 1800)),
            issued_at=float(data.get("issued_at", 0.0)),
            extra={k: v for k, v in data.items() if k not in _TOKEN_FIELDS},
        )

    @classmethod
    def from_oauth_response(
        cls,
        data: dict[str, Any],
        *,
        issued_at: float | None = None,
        fallback_refresh_token: str = "",
    ) -> TokenSet:
        """Parse a standard OAuth2 token endpoint response.

        Providers that do not rotate refresh tokens omit ``refresh_token`` on
        refresh; ``fallback_refresh_token`` fills that gap.
        """
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token") or fallback_refresh_token,
            id_token=data.get("id_token"),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            expires_in=int(data.get("expires_in", 1800)),
            issued_at=time.time() if issued_at is None else issued_at,
            extra={k: v for k, v in data.items() if k not in _TOKEN_FIELDS},
        )


@dataclass(frozen=True)
class Tenant:
    """A Xero connection (organisation) the access token can query."""

    tenant_id: str
    tenant_name: str = ""
    tenant_type: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        # The connection record is written back exactly as received.
        if self.raw:
            return dict(self.raw)
        data: dict[str, Any] = {"tenantId": self.tenant_id}
        if self.tenant_name:
            data["tenantName"] = self.tenant_name
        if self.tenant_type:
            data["tenantType"] = self.tenant_type
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tenant:
        if not data.get("tenantId"):
            raise ValueError("Tenant record has no tenantId")
        return cls(
            tenant_id=data["tenantId"],
            tenant_name=data.get("tenantName") or "",
            tenant_type=data.get("tenantType") or "",
            raw=dict(data),
        )


@dataclass(frozen=True)
class CredentialBundle:
    """Persisted token set plus the tenant list captured at consent time."""

    token_set: TokenSet
    tenants: tuple[Tenant, ...]

    def __post_init__(self) -> None:
        if not self.tenants:
            raise ValueError("A credential bundle needs at least one tenant")

    @property
    def tenant_id(self) -> str:
        # Always the first connection; there is no tenant selection rule.
        return self.tenants[0].tenant_id

    def with_token_set(self, token_set: TokenSet) -> CredentialBundle:
        return replace(self, token_set=token_set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenSet": self.token_set.to_dict(),
            "tenants": [t.to_dict() for t in self.tenants],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CredentialBundle:
        return cls(
            token_set=TokenSet.from_dict(data["tokenSet"]),
            tenants=tuple(Tenant.from_dict(t) for t in data["tenants"]),
        )


@dataclass
class ValidCredential:
    """A freshly built API client plus the tenant it should address."""

    client: XeroAccountingClient
    tenant_id: str
