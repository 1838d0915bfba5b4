"""
Data Model

Value types shared by the ceremony coordinator, the session manager and
the one-time-code verifier:
- User: identity record owned by external persistence
- Credential: a registered WebAuthn public-key credential
- Challenge: pending ceremony state held by the challenge cache
- OneTimeCode: pending email code
- SessionData: the verified contents of a session token
"""

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fido2.utils import websafe_encode


# Role constants
ROLE_ADMIN = "admin"          # Full system access
ROLE_MODERATOR = "moderator"  # Content management
ROLE_USER = "user"            # Basic access
VALID_ROLES = (ROLE_ADMIN, ROLE_MODERATOR, ROLE_USER)

MAX_SIGNATURE_COUNTER = 0xFFFFFFFF


def validate_role(role: str) -> bool:
    """Check if a role is valid."""
    return role in VALID_ROLES


@dataclass(frozen=True)
class User:
    """Identity record. Immutable once loaded for a session."""
    id: int
    email: str
    name: Optional[str] = None
    role: str = ROLE_USER
    is_active: bool = True
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def display_name(self) -> str:
        return self.name or self.email

    @property
    def webauthn_user_handle(self) -> bytes:
        """User handle sent to authenticators (decimal user id)."""
        return str(self.id).encode("ascii")

    def has_permission(self, permission: str) -> bool:
        """Check a permission against the user's role."""
        if self.role == ROLE_ADMIN:
            return True
        if self.role == ROLE_MODERATOR:
            return permission in ("read", "write", "moderate")
        if self.role == ROLE_USER:
            return permission == "read"
        return False

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_moderator(self) -> bool:
        return self.role in (ROLE_MODERATOR, ROLE_ADMIN)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=int(data["id"]),
            email=str(data["email"]),
            name=data.get("name"),
            role=data.get("role", ROLE_USER),
            is_active=bool(data.get("is_active", True)),
            created_at=str(data.get("created_at", "")),
        )


@dataclass(frozen=True)
class Credential:
    """
    A registered WebAuthn credential.

    ``public_key`` holds the CBOR-encoded COSE key exactly as the
    authenticator reported it.
    """
    credential_id: bytes
    public_key: bytes
    owner_user_id: int
    signature_counter: int = 0
    display_name: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not 0 <= self.signature_counter <= MAX_SIGNATURE_COUNTER:
            raise ValueError("signature_counter must be an unsigned 32-bit integer")

    @property
    def credential_id_b64(self) -> str:
        return websafe_encode(self.credential_id)

    def with_counter(self, counter: int) -> "Credential":
        return replace(self, signature_counter=counter)

    def to_summary(self) -> Dict[str, Any]:
        """Wire summary. The public key never leaves the server."""
        return {
            "credential_id": self.credential_id_b64,
            "name": self.display_name,
            "counter": self.signature_counter,
            "created_at": datetime.fromtimestamp(
                self.created_at, tz=timezone.utc
            ).isoformat(),
        }


class Purpose(Enum):
    """Which ceremony a challenge belongs to."""
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class Challenge:
    """Pending ceremony challenge."""
    value: bytes
    purpose: Purpose
    subject_user_id: int
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class OneTimeCode:
    """
    Pending email login code.

    Only an argon2 hash of the code is kept.
    """
    email: str
    code_hash: str
    expires_at: float
    consumed: bool = False
    failed_attempts: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class SessionData:
    """Verified contents of a session token."""
    user: User
    issued_at: int
    expires_at: int

    def remaining_seconds(self, now: float) -> int:
        return max(0, int(self.expires_at - now))
