"""Centralized configuration for AwareGuard.

Uses Pydantic BaseSettings with environment variable loading and validation.
All AG_* environment variables are validated at import time.
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {"env_prefix": "AG_", "case_sensitive": False, "extra": "ignore"}

    # Storage
    db_path: str = Field(default="awareguard.db", description="SQLite database path")

    # Token verification
    auth_provider: str = Field(default="hs256", description="Token verifier: hs256 or public_key")
    jwt_secret: str | None = Field(default=None, description="Shared secret for HS256 tokens")
    jwt_public_key: str | None = Field(
        default=None, description="PEM public key of the identity provider"
    )
    jwt_issuer: str | None = Field(default=None, description="Expected iss claim (optional)")
    jwt_audience: str | None = Field(default=None, description="Expected aud claim (optional)")
    jwt_leeway_seconds: int = Field(default=0, ge=0, le=300, description="Clock skew allowance")
    session_cookie: str = Field(default="__session", description="Session cookie holding a token")

    # Roles
    default_role: str = Field(default="student", description="Role of unprovisioned principals")
    bootstrap_first_admin: bool = Field(
        default=False, description="Provision the first synced user as admin when none exists"
    )

    # Audit log paging
    audit_page_size: int = Field(default=100, ge=1, description="Default audit page size")
    audit_max_page_size: int = Field(default=500, ge=1, description="Upper bound on page size")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535, description="Server bind port")

    # CORS
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    # Rate limiting
    rate_limit: str = Field(
        default="100/minute",
        description="Default rate limit (e.g., 100/minute). Set to 'none' to disable.",
    )

    @field_validator("auth_provider")
    @classmethod
    def validate_auth_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("hs256", "public_key"):
            msg = f"AG_AUTH_PROVIDER must be 'hs256' or 'public_key', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("default_role")
    @classmethod
    def validate_default_role(cls, v: str) -> str:
        from awareguard.rbac import Role

        v = v.lower()
        if v not in set(Role):
            msg = f"AG_DEFAULT_ROLE must be one of {', '.join(Role)}, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"AG_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        v = v.upper()
        if not hasattr(logging, v):
            msg = f"AG_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_page_sizes(self) -> Settings:
        if self.audit_page_size > self.audit_max_page_size:
            msg = "AG_AUDIT_PAGE_SIZE must not exceed AG_AUDIT_MAX_PAGE_SIZE"
            raise ValueError(msg)
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        """Return parsed list of CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Singleton, validated at import time.
settings = Settings()
