"""
User Login Module

Ties the two first factors to session issuance:
- Email one-time code: send_code -> verify_code
- Passkey: CeremonyCoordinator authentication -> finish_passkey_login

Either path ends with a signed session token from the SessionManager.

Security considerations:
- Users are created on first code request (role "user", active)
- Inactive users never receive a session
- Emails are never logged in plain text (see event_logger)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..errors import CodeError, InvalidUser, MalformedRequest
from ..integration.event_logger import EventType, SecurityEventLog
from ..models import SessionData, User
from ..webauthn.ceremony import CeremonyCoordinator
from ..webauthn.credentials import UserDirectory
from .one_time_code import OneTimeCodeVerifier, normalize_email
from .session import SessionManager


logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Out-of-band delivery of login codes."""

    def send_login_code(self, email: str, code: str) -> None: ...


@dataclass
class OutboxEmailSender:
    """Collects outgoing codes instead of sending them."""
    messages: List[Dict[str, str]] = field(default_factory=list)

    def send_login_code(self, email: str, code: str) -> None:
        self.messages.append({'email': email, 'code': code})

    def last_code_for(self, email: str) -> Optional[str]:
        wanted = normalize_email(email)
        for message in reversed(self.messages):
            if normalize_email(message['email']) == wanted:
                return message['code']
        return None


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login."""
    user: User
    token: str
    session: SessionData

    def to_dict(self) -> Dict[str, Any]:
        """Wire form. The token travels in client storage, not the body."""
        return {
            'success': True,
            'message': 'Authentication successful',
            'user': self.user.to_dict(),
            'expires_at': self.session.expires_at,
        }


class LoginService:
    """
    Complete login management for both first factors.

    Example:
        >>> service = LoginService(users, codes, sessions, coordinator, sender)
        >>> service.send_code("alice@example.com")
        >>> result = service.verify_code("alice@example.com", code)
        >>> result.token
    """

    def __init__(self, users: UserDirectory,
                 codes: OneTimeCodeVerifier,
                 sessions: SessionManager,
                 coordinator: CeremonyCoordinator,
                 email_sender: EmailSender,
                 event_log: Optional[SecurityEventLog] = None):
        """
        Initialize login service.

        Args:
            users: User lookup / creation capability
            codes: One-time code verifier
            sessions: Session token issuer
            coordinator: WebAuthn ceremony coordinator
            email_sender: Delivers login codes
            event_log: Audit trail (defaults to the coordinator's)
        """
        self._users = users
        self._codes = codes
        self._sessions = sessions
        self._coordinator = coordinator
        self._email_sender = email_sender
        self._events = event_log if event_log is not None else coordinator.event_log

    # ========================================================================
    # Email code
    # ========================================================================

    def send_code(self, email: str, name: Optional[str] = None) -> User:
        """
        Send a login code, creating the user on first contact.

        Returns:
            The user the code was sent for

        Raises:
            MalformedRequest: If the email is not an address
        """
        email = (email or "").strip()
        if "@" not in email:
            raise MalformedRequest("A valid email address is required")

        user = self._users.find_by_email(email)
        if user is None:
            try:
                user = self._users.create(email, name)
                logger.info("Created user %d on first code request", user.id)
            except ValueError:
                # Lost a creation race with a concurrent request
                user = self._users.find_by_email(email)
                if user is None:
                    raise

        code = self._codes.generate(email)
        self._email_sender.send_login_code(email, code)
        self._events.record(EventType.CODE_SENT, email)
        return user

    def verify_code(self, email: str, code: str,
                    remember_me: bool = False) -> LoginResult:
        """
        Verify a login code and issue a session.

        Raises:
            CodeNotFound, CodeExpired, CodeMismatch, InvalidUser
        """
        try:
            self._codes.verify(email, code)
        except CodeError as e:
            self._events.record(EventType.CODE_FAILED, email, error=e.code)
            raise

        user = self._users.find_by_email(email)
        if user is None or not user.is_active:
            self._events.record(EventType.CODE_FAILED, email, error=InvalidUser.code)
            raise InvalidUser("User not found or inactive")

        self._events.record(EventType.CODE_VERIFIED, email)
        return self._login(user, remember_me)

    # ========================================================================
    # Passkey
    # ========================================================================

    def finish_passkey_login(self, user_id: int, assertion: Any,
                             remember_me: bool = True) -> LoginResult:
        """
        Finish a passkey authentication and issue a session.

        Passkey logins are remembered by default.
        """
        user = self._coordinator.finish_authentication(user_id, assertion)
        return self._login(user, remember_me)

    def check_user(self, email: str) -> Dict[str, Any]:
        """Whether an account exists and has passkeys (drives the login UI)."""
        user = self._users.find_by_email(email)
        if user is None:
            return {'user_exists': False, 'has_passkeys': False, 'user_id': None}
        return {
            'user_exists': True,
            'has_passkeys': self._coordinator.has_credentials(email),
            'user_id': user.id,
        }

    def _login(self, user: User, remember_me: bool) -> LoginResult:
        token, session = self._sessions.create_session(user, remember_me)
        return LoginResult(user=user, token=token, session=session)
