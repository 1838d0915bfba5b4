"""
Ceremony Endpoints

JSON-in / dict-out handlers for the passkey ceremonies, credential
management and the email code login. HTTP routing is left to the
embedding framework; each handler takes the decoded request body.

Response conventions:
- Success: {'success': True, ...}
- Failure: {'success': False, 'error': <code>, 'message': <user message>}
- Clone detection adds 'recovery': True so the client routes the user
  to account recovery instead of offering a retry
"""

import functools
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..auth.login import EmailSender, LoginResult, LoginService, OutboxEmailSender
from ..auth.one_time_code import OneTimeCodeVerifier
from ..auth.session import SessionManager, SessionTransport, TokenStore
from ..config import AuthSettings, get_settings
from ..errors import AuthError, CredentialNotFound
from ..integration.event_logger import SecurityEventLog
from ..webauthn.ceremony import CeremonyCoordinator
from ..webauthn.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    InMemoryUserDirectory,
    UserDirectory,
)
from ..webauthn.encoding import b64url_decode
from .schemas import (
    BeginAuthenticationRequest,
    BeginRegistrationRequest,
    CheckUserRequest,
    DeleteCredentialRequest,
    FinishAuthenticationRequest,
    FinishRegistrationRequest,
    ListCredentialsRequest,
    SendCodeRequest,
    VerifyCodeRequest,
    parse_request,
)


logger = logging.getLogger(__name__)


def error_response(error: AuthError) -> Dict[str, Any]:
    """Wire form of a failure."""
    response = {
        'success': False,
        'error': error.code,
        'message': error.user_message,
    }
    if not error.retryable:
        response['recovery'] = True
    return response


def handles_auth_errors(method: Callable[..., Dict[str, Any]]) -> Callable[..., Dict[str, Any]]:
    """Turn AuthError raised by a handler into an error response."""
    @functools.wraps(method)
    def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            return method(*args, **kwargs)
        except AuthError as e:
            logger.info("%s failed: %s", method.__name__, e.code)
            return error_response(e)
    return wrapper


class CeremonyAPI:
    """
    The wire surface of the authentication core.

    Example:
        >>> api = CeremonyAPI.from_settings(settings)
        >>> options = api.begin_registration({'user_id': 42})
        >>> api.finish_registration({'user_id': 42, 'credential': response})
        {'success': True, 'credential_id': '...', ...}
    """

    def __init__(self, coordinator: CeremonyCoordinator,
                 login: LoginService,
                 transport: SessionTransport):
        self._coordinator = coordinator
        self._login = login
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[AuthSettings] = None,
                      users: Optional[UserDirectory] = None,
                      credentials: Optional[CredentialStore] = None,
                      email_sender: Optional[EmailSender] = None,
                      event_log: Optional[SecurityEventLog] = None,
                      clock: Callable[[], float] = time.time) -> "CeremonyAPI":
        """
        Wire up every component from one settings object.

        Missing persistence capabilities default to in-memory stores.
        """
        settings = settings or get_settings()
        events = event_log if event_log is not None else SecurityEventLog(clock=clock)
        users = users if users is not None else InMemoryUserDirectory()
        credentials = credentials if credentials is not None else InMemoryCredentialStore()

        coordinator = CeremonyCoordinator(settings, users, credentials,
                                          event_log=events, clock=clock)
        sessions = SessionManager.from_settings(settings, clock=clock, event_log=events)
        codes = OneTimeCodeVerifier(ttl_seconds=settings.code_ttl_seconds,
                                    length=settings.code_length, clock=clock)
        login = LoginService(users, codes, sessions, coordinator,
                             email_sender or OutboxEmailSender(), event_log=events)
        transport = SessionTransport.from_settings(sessions, settings, clock=clock)
        return cls(coordinator, login, transport)

    @property
    def coordinator(self) -> CeremonyCoordinator:
        return self._coordinator

    @property
    def login(self) -> LoginService:
        return self._login

    @property
    def transport(self) -> SessionTransport:
        return self._transport

    # ========================================================================
    # Passkey registration
    # ========================================================================

    @handles_auth_errors
    def begin_registration(self, body: Any) -> Dict[str, Any]:
        request = parse_request(BeginRegistrationRequest, body)
        options = self._coordinator.begin_registration(request.user_id)
        return {'success': True, **options.to_dict()}

    @handles_auth_errors
    def finish_registration(self, body: Any) -> Dict[str, Any]:
        request = parse_request(FinishRegistrationRequest, body)
        credential = self._coordinator.finish_registration(request.user_id, request.credential)
        return {
            'success': True,
            'message': 'Passkey registered successfully',
            'credential_id': credential.credential_id_b64,
            'credential': credential.to_summary(),
        }

    # ========================================================================
    # Passkey authentication
    # ========================================================================

    @handles_auth_errors
    def begin_authentication(self, body: Any) -> Dict[str, Any]:
        request = parse_request(BeginAuthenticationRequest, body)
        options = self._coordinator.begin_authentication(request.identifier)
        return {'success': True, **options.to_dict()}

    @handles_auth_errors
    def finish_authentication(self, body: Any,
                              store: Optional[TokenStore] = None) -> Dict[str, Any]:
        request = parse_request(FinishAuthenticationRequest, body)
        result = self._login.finish_passkey_login(
            request.user_id, request.assertion, remember_me=request.remember_me
        )
        return self._signed_in(result, store)

    # ========================================================================
    # Credential management
    # ========================================================================

    @handles_auth_errors
    def list_credentials(self, body: Any) -> Dict[str, Any]:
        request = parse_request(ListCredentialsRequest, body)
        credentials = self._coordinator.list_credentials(request.user_id)
        return {
            'success': True,
            'credentials': [c.to_summary() for c in credentials],
        }

    @handles_auth_errors
    def delete_credential(self, body: Any) -> Dict[str, Any]:
        request = parse_request(DeleteCredentialRequest, body)
        credential_id = b64url_decode(request.credential_id, "credential_id")
        if not self._coordinator.delete_credential(request.user_id, credential_id):
            raise CredentialNotFound("No such credential for this user")
        return {'success': True, 'ok': True}

    # ========================================================================
    # Email code login
    # ========================================================================

    @handles_auth_errors
    def check_user(self, body: Any) -> Dict[str, Any]:
        request = parse_request(CheckUserRequest, body)
        return {'success': True, **self._login.check_user(request.email)}

    @handles_auth_errors
    def send_code(self, body: Any) -> Dict[str, Any]:
        request = parse_request(SendCodeRequest, body)
        self._login.send_code(request.email, request.name)
        return {'success': True, 'message': 'Login code sent'}

    @handles_auth_errors
    def verify_code(self, body: Any, store: Optional[TokenStore] = None) -> Dict[str, Any]:
        request = parse_request(VerifyCodeRequest, body)
        result = self._login.verify_code(request.email, request.code,
                                         remember_me=request.remember_me)
        return self._signed_in(result, store)

    # ========================================================================
    # Session
    # ========================================================================

    @handles_auth_errors
    def current_session(self, store: TokenStore) -> Dict[str, Any]:
        session = self._transport.require(store)
        return {
            'success': True,
            'user': session.user.to_dict(),
            'issued_at': session.issued_at,
            'expires_at': session.expires_at,
        }

    def sign_out(self, store: TokenStore) -> Dict[str, Any]:
        self._transport.destroy(store)
        return {'success': True, 'message': 'Signed out'}

    def _signed_in(self, result: LoginResult,
                   store: Optional[TokenStore]) -> Dict[str, Any]:
        response = result.to_dict()
        if store is not None:
            self._transport.save(store, result.token, result.session)
        else:
            response['token'] = result.token
        return response
