"""
Session Token Module

Stateless, HMAC-SHA256 signed session tokens.

Token format:
    <base64url(JSON payload)>.<hex HMAC-SHA256 of the payload segment>

The payload carries a snapshot of the User plus integer ``iat``/``exp``
timestamps. Validity is solely a function of signature integrity and
``now < exp``; there is no server-side revocation list, so destroy()
only clears the client's copy.

Security considerations:
- Constant-time signature comparison (hmac.compare_digest)
- Signature checked before the payload is decoded
- Signing secret is read-only after construction
- Never log tokens
"""

import hashlib
import hmac
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from fido2.utils import websafe_decode, websafe_encode

from ..config import DEFAULT_REMEMBER_ME_TTL, DEFAULT_SESSION_TTL, AuthSettings
from ..errors import Expired, InvalidSignature, SessionError
from ..integration.event_logger import EventType, SecurityEventLog
from ..models import SessionData, User


logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "."


def create_hmac_token(data: str, secret_key: bytes) -> str:
    """
    Create an HMAC-SHA256 signature.

    Args:
        data: Data to authenticate
        secret_key: Secret key for HMAC

    Returns:
        Hex-encoded HMAC
    """
    return hmac.new(secret_key, data.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_hmac_token(data: str, token: str, secret_key: bytes) -> bool:
    """
    Verify an HMAC-SHA256 signature using constant-time comparison.

    The hex strings are compared as-is, so a case change in the
    signature is a mismatch.
    """
    expected = create_hmac_token(data, secret_key)
    return hmac.compare_digest(expected.encode("utf-8"), token.encode("utf-8"))


class SessionManager:
    """
    Issues and validates signed session tokens.

    Example:
        >>> sessions = SessionManager.from_settings(settings)
        >>> token = sessions.issue(user, remember_me=True)
        >>> session = sessions.validate(token)
        >>> session.user == user
        True
    """

    def __init__(self, secret_key: bytes,
                 ttl_seconds: int = DEFAULT_SESSION_TTL,
                 remember_me_ttl_seconds: int = DEFAULT_REMEMBER_ME_TTL,
                 clock: Callable[[], float] = time.time,
                 event_log: Optional[SecurityEventLog] = None):
        """
        Initialize session manager.

        Args:
            secret_key: Process-wide HMAC secret
            ttl_seconds: Lifetime of a normal session
            remember_me_ttl_seconds: Lifetime when remember_me is set
            clock: Time source, injectable for tests
            event_log: Optional audit trail
        """
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = bytes(secret_key)
        self._ttl_seconds = ttl_seconds
        self._remember_me_ttl_seconds = remember_me_ttl_seconds
        self._clock = clock
        self._events = event_log if event_log is not None else SecurityEventLog(clock=clock)

    @classmethod
    def from_settings(cls, settings: AuthSettings, **kwargs) -> "SessionManager":
        return cls(
            secret_key=settings.signing_key(),
            ttl_seconds=settings.session_ttl_seconds,
            remember_me_ttl_seconds=settings.remember_me_ttl_seconds,
            **kwargs,
        )

    def ttl_for(self, remember_me: bool) -> int:
        return self._remember_me_ttl_seconds if remember_me else self._ttl_seconds

    def create_session(self, user: User, remember_me: bool = False) -> Tuple[str, SessionData]:
        """
        Sign a new session for a user.

        Returns:
            Tuple of (token, SessionData)
        """
        issued_at = int(self._clock())
        session = SessionData(
            user=user,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl_for(remember_me),
        )
        payload = websafe_encode(json.dumps({
            "user": user.to_dict(),
            "iat": session.issued_at,
            "exp": session.expires_at,
        }, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        token = payload + TOKEN_SEPARATOR + create_hmac_token(payload, self._secret_key)

        self._events.record(EventType.SESSION_ISSUED, user.id,
                            remember_me=remember_me, expires_at=session.expires_at)
        return token, session

    def issue(self, user: User, remember_me: bool = False) -> str:
        """Issue a signed token: 24h by default, 30d with remember_me."""
        token, _ = self.create_session(user, remember_me)
        return token

    def validate(self, token: str) -> SessionData:
        """
        Verify a token and return its contents.

        Never mutates state.

        Raises:
            InvalidSignature: On tamper, wrong secret or garbage input
            Expired: If now >= exp
        """
        if not isinstance(token, str):
            raise self._invalid_signature("token is not a string")
        payload, separator, signature = token.rpartition(TOKEN_SEPARATOR)
        if not separator or not payload:
            raise self._invalid_signature("missing separator")
        if not verify_hmac_token(payload, signature, self._secret_key):
            raise self._invalid_signature("signature mismatch")

        try:
            claims = json.loads(websafe_decode(payload))
            session = SessionData(
                user=User.from_dict(claims["user"]),
                issued_at=int(claims["iat"]),
                expires_at=int(claims["exp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            # Only reachable with a validly signed but foreign payload
            raise self._invalid_signature("undecodable payload") from e

        if not self._clock() < session.expires_at:
            self._events.record(EventType.SESSION_EXPIRED, session.user.id,
                                expired_at=session.expires_at)
            raise Expired("Session has expired")
        return session

    def destroy(self, user_id: Optional[int] = None) -> None:
        """
        Forget a session on the server side.

        Stateless tokens cannot be revoked, so this only records the
        event; callers clear the client copy. Idempotent.
        """
        self._events.record(EventType.SESSION_DESTROYED, user_id)

    def _invalid_signature(self, reason: str) -> InvalidSignature:
        self._events.record(EventType.SESSION_INVALID_SIGNATURE, reason=reason)
        return InvalidSignature("Session token signature is invalid")


# ============================================================================
# Transport
# ============================================================================

@dataclass(frozen=True)
class CookieOptions:
    """Attributes of the client-side token storage."""
    max_age: int
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"
    path: str = "/"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": self.same_site,
            "path": self.path,
            "maxAge": self.max_age,
        }


class TokenStore(Protocol):
    """Client-side token storage capability (a cookie jar)."""

    def set(self, name: str, value: str, options: CookieOptions) -> None: ...

    def get(self, name: str) -> Optional[str]: ...

    def delete(self, name: str) -> None: ...


class InMemoryTokenStore:
    """Dict-backed token store, one per simulated client."""

    def __init__(self):
        self._values: Dict[str, Tuple[str, CookieOptions]] = {}
        self._lock = threading.Lock()

    def set(self, name: str, value: str, options: CookieOptions) -> None:
        with self._lock:
            self._values[name] = (value, options)

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            entry = self._values.get(name)
        return entry[0] if entry else None

    def options(self, name: str) -> Optional[CookieOptions]:
        with self._lock:
            entry = self._values.get(name)
        return entry[1] if entry else None

    def delete(self, name: str) -> None:
        with self._lock:
            self._values.pop(name, None)


class SessionTransport:
    """
    Moves session tokens in and out of client storage.

    Ceremony logic never sees the token; it only receives SessionData.
    """

    def __init__(self, sessions: SessionManager,
                 cookie_name: str = "session",
                 secure: bool = False,
                 clock: Callable[[], float] = time.time):
        self._sessions = sessions
        self._cookie_name = cookie_name
        self._secure = secure
        self._clock = clock

    @classmethod
    def from_settings(cls, sessions: SessionManager, settings: AuthSettings,
                      clock: Callable[[], float] = time.time) -> "SessionTransport":
        return cls(
            sessions,
            cookie_name=settings.session_cookie_name,
            secure=settings.is_production,
            clock=clock,
        )

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def cookie_options(self, session: SessionData) -> CookieOptions:
        return CookieOptions(
            max_age=session.remaining_seconds(self._clock()),
            secure=self._secure,
        )

    def save(self, store: TokenStore, token: str, session: SessionData) -> CookieOptions:
        """Persist a token with maxAge equal to its remaining lifetime."""
        options = self.cookie_options(session)
        store.set(self._cookie_name, token, options)
        return options

    def load(self, store: TokenStore) -> Optional[SessionData]:
        """Current session, or None if absent, tampered or expired."""
        try:
            return self.require(store)
        except SessionError as e:
            logger.debug("No usable session: %s", e.code)
            return None

    def require(self, store: TokenStore) -> SessionData:
        """
        Current session.

        Raises:
            InvalidSignature: If no token is stored or it was tampered with
            Expired: If the token has expired
        """
        token = store.get(self._cookie_name)
        if not token:
            raise InvalidSignature("No session token")
        return self._sessions.validate(token)

    def destroy(self, store: TokenStore) -> None:
        """Clear the client copy. Idempotent, never fails."""
        token = store.get(self._cookie_name)
        user_id = None
        if token:
            try:
                user_id = self._sessions.validate(token).user.id
            except SessionError as e:
                logger.debug("Destroying unusable session: %s", e.code)
        store.delete(self._cookie_name)
        self._sessions.destroy(user_id)
