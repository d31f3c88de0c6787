"""
xeropay configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

_DEFAULT_SCOPES = [
    "openid",
    "profile",
    "email",
    "accounting.settings",
    "accounting.reports.read",
    "accounting.journals.read",
    "accounting.contacts",
    "accounting.attachments",
    "accounting.transactions",
    "assets",
    "assets.read",
    "projects",
    "projects.read",
    "offline_access",
]

# Environment variable -> config field
_ENV_FIELDS: dict[str, str] = {
    "XERO_CLIENT_ID": "client_id",
    "XERO_CLIENT_SECRET": "client_secret",
    "SERVER": "server",
    "PORT": "port",
    "XERO_REDIRECT_URL": "redirect_url",
    "XERO_REFRESH_THRESHOLD": "refresh_threshold_seconds",
    "XERO_SESSION_FILE": "session_file",
    "XERO_HTTP_TIMEOUT": "http_timeout",
    "XEROPAY_LOG_LEVEL": "log_level",
}


class XeroPayConfig(BaseModel):
    """Root configuration for xeropay."""

    client_id: str = Field(default="", description="Xero app client id")
    client_secret: str = Field(default="", description="Xero app client secret")

    # Listening address, also used to build the redirect URL
    server: str = Field(default="localhost")
    port: int = Field(default=5000, ge=1, le=65535)
    callback_path: str = Field(default="/xero/callback")
    redirect_url: str | None = Field(
        default=None,
        description="Override for the OAuth2 redirect URL registered with Xero",
    )

    scopes: list[str] = Field(default_factory=lambda: list(_DEFAULT_SCOPES))
    refresh_threshold_seconds: float = Field(
        default=60,
        ge=0,
        description="Refresh the access token when less than this many seconds remain",
    )

    session_file: str = Field(default="./data/xeroSession")
    encrypt_session: bool = Field(default=False, description="Encrypt the session file at rest")

    http_timeout: float = Field(default=30.0, gt=0, description="Network timeout in seconds")
    log_level: str = Field(default="INFO")

    @field_validator("scopes")
    @classmethod
    def _require_offline_access(cls, value: list[str]) -> list[str]:
        if "offline_access" not in value:
            raise ValueError("scopes must include offline_access to receive a refresh token")
        return value

    @property
    def effective_redirect_url(self) -> str:
        if self.redirect_url:
            return self.redirect_url
        return f"http://{self.server}:{self.port}{self.callback_path}"

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> XeroPayConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        for env_name, field_name in _ENV_FIELDS.items():
            value = os.environ.get(env_name)
            if value:
                data[field_name] = value

        env_scopes = os.environ.get("XERO_SCOPES")
        if env_scopes:
            data["scopes"] = env_scopes.split()

        env_encrypt = os.environ.get("XERO_ENCRYPT_SESSION")
        if env_encrypt:
            data["encrypt_session"] = env_encrypt.lower() in ("1", "true", "yes")

        # 3. Apply keyword overrides
        data.update({k: v for k, v in overrides.items() if v is not None})

        return cls.model_validate(data)
