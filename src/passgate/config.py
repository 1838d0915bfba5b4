"""Authentication settings using pydantic-settings.

Loads configuration from ``PASSGATE_*`` environment variables with .env
file support. Components receive the settings object explicitly at
construction time.
"""

import secrets
from functools import lru_cache
from typing import List, Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# COSE algorithm identifiers
ALG_ES256 = -7
ALG_EDDSA = -8
ALG_RS256 = -257

DEFAULT_SESSION_TTL = 24 * 60 * 60            # 24 hours
DEFAULT_REMEMBER_ME_TTL = 30 * 24 * 60 * 60   # 30 days
DEFAULT_CHALLENGE_TTL = 5 * 60                # 5 minutes
DEFAULT_CODE_TTL = 10 * 60                    # 10 minutes
MIN_CHALLENGE_BYTES = 16


class AuthSettings(BaseSettings):
    """Process-wide authentication configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PASSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "testing", "production"] = "development"

    # Sessions
    session_secret: SecretStr = Field(
        default=SecretStr(""),
        description="HMAC signing secret for session tokens (generated per process if empty)",
    )
    session_ttl_seconds: int = Field(default=DEFAULT_SESSION_TTL, ge=60)
    remember_me_ttl_seconds: int = Field(default=DEFAULT_REMEMBER_ME_TTL, ge=60)
    session_cookie_name: str = Field(default="session")

    # WebAuthn relying party
    rp_id: str = Field(default="localhost", description="Relying party ID (domain)")
    rp_name: str = Field(default="Auth Template", description="Relying party display name")
    rp_origin: str = Field(
        default="http://localhost:3000",
        description="Expected origin in clientDataJSON",
    )
    challenge_ttl_seconds: int = Field(default=DEFAULT_CHALLENGE_TTL, ge=1)
    challenge_bytes: int = Field(default=32, ge=MIN_CHALLENGE_BYTES)
    accepted_algorithms: List[int] = Field(
        default_factory=lambda: [ALG_ES256, ALG_EDDSA, ALG_RS256],
        min_length=1,
    )

    # One-time codes
    code_ttl_seconds: int = Field(default=DEFAULT_CODE_TTL, ge=1)
    code_length: int = Field(default=6, ge=4, le=16)

    @field_validator("rp_origin")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _require_secret_in_production(self) -> "AuthSettings":
        if self.is_production and not self.session_secret.get_secret_value():
            raise ValueError("PASSGATE_SESSION_SECRET must be set in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def signing_key(self) -> bytes:
        """
        Secret used to sign session tokens.

        An empty secret is replaced by a random one, generated once per
        settings instance, so tokens do not survive a restart.
        """
        value = self.session_secret.get_secret_value()
        if not value:
            value = secrets.token_hex(32)
            self.session_secret = SecretStr(value)
        return value.encode("utf-8")


@lru_cache
def get_settings() -> AuthSettings:
    """Get cached settings instance."""
    return AuthSettings()
