"""
WebAuthn Ceremony Coordinator

Drives the two passkey ceremonies:
- Registration: begin_registration -> finish_registration
- Authentication: begin_authentication -> finish_authentication

Per ceremony: Idle -> Challenged -> {Completed | Failed | Expired}.
Only Challenged has state (a challenge in the ChallengeCache). Every
Finish consumes the challenge first, so any outcome returns the subject
to Idle and a retry needs a fresh Begin.

Security considerations:
- Challenges compared in constant time
- clientDataJSON origin and authenticator RP ID hash must both match
- Signature counter of zero means "unsupported" and never trips clone
  detection; otherwise the counter must strictly increase
- The stored counter is written before success is reported
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from fido2 import cbor
from fido2.cose import CoseKey, UnsupportedKey

from ..config import AuthSettings
from ..errors import (
    CeremonyError,
    ChallengeMismatch,
    CredentialAlreadyExists,
    CredentialNotFound,
    InvalidUser,
    OriginMismatch,
    OwnershipMismatch,
    PossibleCloneDetected,
    SignatureVerificationFailed,
    UnsupportedAlgorithm,
)
from ..integration.event_logger import EventType, SecurityEventLog
from ..models import Credential, Purpose, User
from .challenge_cache import ChallengeCache
from .credentials import CredentialStore, UserDirectory
from .encoding import (
    AssertionResponse,
    b64url_encode,
    parse_assertion_response,
    parse_registration_response,
)


logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_NAME = "Default Device"
USER_VERIFICATION = "preferred"


@dataclass(frozen=True)
class RegistrationOptions:
    """Options handed to the browser for credential creation."""
    challenge: bytes
    rp_id: str
    rp_name: str
    user: User
    exclude_credentials: List[bytes]
    algorithms: List[int]
    timeout_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'challenge': b64url_encode(self.challenge),
            'rp': {'id': self.rp_id, 'name': self.rp_name},
            'user': {
                'id': b64url_encode(self.user.webauthn_user_handle),
                'name': self.user.email,
                'displayName': self.user.display_name,
            },
            'excludeCredentials': [b64url_encode(c) for c in self.exclude_credentials],
            'pubKeyCredParams': [
                {'type': 'public-key', 'alg': alg} for alg in self.algorithms
            ],
            'timeout': self.timeout_ms,
            'attestation': 'none',
            'authenticatorSelection': {
                'residentKey': 'preferred',
                'userVerification': USER_VERIFICATION,
            },
        }


@dataclass(frozen=True)
class AuthenticationOptions:
    """
    Options handed to the browser for an assertion.

    An empty allow-list (and no challenge) means the identifier has no
    passkeys; the caller decides whether to fall back to an email code.
    """
    rp_id: str
    timeout_ms: int
    challenge: Optional[bytes] = None
    user_id: Optional[int] = None
    allow_credentials: List[bytes] = field(default_factory=list)

    @property
    def has_credentials(self) -> bool:
        return bool(self.allow_credentials)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'challenge': b64url_encode(self.challenge) if self.challenge else None,
            'allowCredentials': [b64url_encode(c) for c in self.allow_credentials],
            'rpId': self.rp_id,
            'timeout': self.timeout_ms,
            'userVerification': USER_VERIFICATION,
            'user_id': self.user_id,
        }


class CeremonyCoordinator:
    """
    WebAuthn registration and authentication state machines.

    Example:
        >>> coordinator = CeremonyCoordinator(settings, users, credentials)
        >>> options = coordinator.begin_registration(42)
        >>> response = authenticator.create(options.to_dict())
        >>> credential = coordinator.finish_registration(42, response)
    """

    def __init__(self, settings: AuthSettings,
                 users: UserDirectory,
                 credentials: CredentialStore,
                 cache: Optional[ChallengeCache] = None,
                 event_log: Optional[SecurityEventLog] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the coordinator.

        Args:
            settings: Relying party identity, TTLs and accepted algorithms
            users: User lookup capability
            credentials: Credential persistence capability
            cache: Challenge cache (created from settings if None)
            event_log: Optional audit trail
            clock: Time source for a cache created here
        """
        self._settings = settings
        self._users = users
        self._credentials = credentials
        self._cache = cache if cache is not None else ChallengeCache(
            ttl_seconds=settings.challenge_ttl_seconds,
            challenge_bytes=settings.challenge_bytes,
            clock=clock,
        )
        self._events = event_log if event_log is not None else SecurityEventLog(clock=clock)
        self._rp_id_hash = hashlib.sha256(settings.rp_id.encode("utf-8")).digest()

    @property
    def cache(self) -> ChallengeCache:
        return self._cache

    @property
    def event_log(self) -> SecurityEventLog:
        return self._events

    # ========================================================================
    # Registration
    # ========================================================================

    def begin_registration(self, user_id: int) -> RegistrationOptions:
        """
        Start a registration ceremony.

        Overwrites any pending registration challenge for the user.

        Raises:
            InvalidUser: If user_id does not resolve to an active user
        """
        user = self._resolve_user(user_id)
        existing = self._credentials.get(user.id)
        challenge = self._cache.issue(user.id, Purpose.REGISTRATION)

        self._events.record(EventType.REGISTRATION_BEGIN, user.id,
                            existing_credentials=len(existing))
        return RegistrationOptions(
            challenge=challenge.value,
            rp_id=self._settings.rp_id,
            rp_name=self._settings.rp_name,
            user=user,
            exclude_credentials=[c.credential_id for c in existing],
            algorithms=list(self._settings.accepted_algorithms),
            timeout_ms=self._settings.challenge_ttl_seconds * 1000,
        )

    def finish_registration(self, user_id: int, payload: Any) -> Credential:
        """
        Complete a registration ceremony.

        Validation order: challenge present and fresh, challenge bytes,
        origin / RP ID, public key algorithm, credential id uniqueness.
        The challenge is consumed before any of these checks run.

        Args:
            user_id: User who began the ceremony
            payload: Browser credential {id, rawId, response: {...}}

        Returns:
            The stored Credential

        Raises:
            MalformedRequest, ChallengeNotFound, ChallengeExpired,
            ChallengeMismatch, OriginMismatch, UnsupportedAlgorithm,
            CredentialAlreadyExists, InvalidUser
        """
        response = parse_registration_response(payload)
        try:
            challenge = self._cache.take_if_valid(user_id, Purpose.REGISTRATION)
            user = self._resolve_user(user_id)

            self._check_challenge(response.client_data.challenge, challenge.value)
            self._check_origin(response.client_data.origin, response.auth_data.rp_id_hash)

            public_key = response.credential_data.public_key
            if (isinstance(public_key, UnsupportedKey)
                    or public_key.ALGORITHM not in self._settings.accepted_algorithms):
                raise UnsupportedAlgorithm(
                    f"COSE algorithm {public_key.get(3)} is not accepted"
                )

            if self._credentials.find(response.credential_id) is not None:
                raise CredentialAlreadyExists("Credential is already registered")

            credential = Credential(
                credential_id=response.credential_id,
                public_key=cbor.encode(dict(public_key)),
                owner_user_id=user.id,
                signature_counter=response.auth_data.counter,
                display_name=DEFAULT_CREDENTIAL_NAME,
            )
            try:
                self._credentials.put(credential)
            except ValueError as e:
                raise CredentialAlreadyExists("Credential is already registered") from e
        except (CeremonyError, InvalidUser) as e:
            self._events.record(EventType.REGISTRATION_FAILED, user_id, error=e.code)
            raise

        self._events.record(EventType.REGISTRATION_SUCCESS, user.id,
                            credential=credential.credential_id_b64[:16],
                            alg=public_key.ALGORITHM)
        return credential

    # ========================================================================
    # Authentication
    # ========================================================================

    def begin_authentication(self, identifier: Union[int, str]) -> AuthenticationOptions:
        """
        Start an authentication ceremony.

        Args:
            identifier: User id, or an email address

        Returns:
            AuthenticationOptions. Unknown identifiers and users without
            passkeys get an empty allow-list and no challenge is stored.
        """
        user = self._lookup(identifier)
        empty = AuthenticationOptions(
            rp_id=self._settings.rp_id,
            timeout_ms=self._settings.challenge_ttl_seconds * 1000,
        )
        if user is None or not user.is_active:
            return empty

        credentials = self._credentials.get(user.id)
        if not credentials:
            return empty

        challenge = self._cache.issue(user.id, Purpose.AUTHENTICATION)
        self._events.record(EventType.AUTHENTICATION_BEGIN, user.id,
                            credentials=len(credentials))
        return AuthenticationOptions(
            rp_id=self._settings.rp_id,
            timeout_ms=self._settings.challenge_ttl_seconds * 1000,
            challenge=challenge.value,
            user_id=user.id,
            allow_credentials=[c.credential_id for c in credentials],
        )

    def finish_authentication(self, user_id: int, payload: Any) -> User:
        """
        Complete an authentication ceremony.

        Args:
            user_id: User who began the ceremony
            payload: Browser assertion {id, rawId, response: {...}}

        Returns:
            The authenticated User

        Raises:
            MalformedRequest, ChallengeNotFound, ChallengeExpired,
            ChallengeMismatch, OriginMismatch, CredentialNotFound,
            OwnershipMismatch, SignatureVerificationFailed,
            PossibleCloneDetected, InvalidUser
        """
        response = parse_assertion_response(payload)
        try:
            challenge = self._cache.take_if_valid(user_id, Purpose.AUTHENTICATION)
            user = self._resolve_user(user_id)

            self._check_challenge(response.client_data.challenge, challenge.value)
            self._check_origin(response.client_data.origin,
                               response.authenticator_data.rp_id_hash)

            credential = self._credentials.find(response.credential_id)
            if credential is None:
                raise CredentialNotFound("Credential is not registered")
            if credential.owner_user_id != user.id:
                raise OwnershipMismatch("Credential belongs to another user")
            if (response.user_handle is not None
                    and response.user_handle != user.webauthn_user_handle):
                raise OwnershipMismatch("User handle does not match")

            self._verify_signature(credential, response)
            new_counter = self._check_counter(credential, response)
            if new_counter is not None:
                try:
                    self._credentials.update_counter(credential.credential_id, new_counter)
                except KeyError as e:
                    raise CredentialNotFound("Credential was removed mid-ceremony") from e
        except PossibleCloneDetected:
            self._events.record(EventType.CLONE_DETECTED, user_id,
                                credential=b64url_encode(response.credential_id)[:16],
                                received=response.authenticator_data.counter)
            raise
        except (CeremonyError, InvalidUser) as e:
            self._events.record(EventType.AUTHENTICATION_FAILED, user_id, error=e.code)
            raise

        self._events.record(EventType.AUTHENTICATION_SUCCESS, user.id,
                            counter=response.authenticator_data.counter)
        return user

    # ========================================================================
    # Credential management
    # ========================================================================

    def list_credentials(self, user_id: int) -> List[Credential]:
        """List a user's registered passkeys."""
        return self._credentials.get(self._resolve_user(user_id).id)

    def delete_credential(self, user_id: int, credential_id: bytes) -> bool:
        """
        Delete one of the user's passkeys.

        Returns:
            True if a credential owned by the user was removed
        """
        deleted = self._credentials.delete(user_id, credential_id)
        if deleted:
            self._events.record(EventType.CREDENTIAL_DELETED, user_id,
                                credential=b64url_encode(credential_id)[:16])
        return deleted

    def has_credentials(self, email: str) -> bool:
        user = self._users.find_by_email(email)
        if user is None:
            return False
        return len(self._credentials.get(user.id)) > 0

    # ========================================================================
    # Checks
    # ========================================================================

    def _resolve_user(self, user_id: int) -> User:
        user = self._users.get(user_id)
        if user is None or not user.is_active:
            raise InvalidUser(f"User {user_id} not found")
        return user

    def _lookup(self, identifier: Union[int, str]) -> Optional[User]:
        if isinstance(identifier, int):
            return self._users.get(identifier)
        identifier = identifier.strip()
        if "@" in identifier:
            return self._users.find_by_email(identifier)
        if identifier.isdigit():
            return self._users.get(int(identifier))
        return None

    @staticmethod
    def _check_challenge(received: bytes, expected: bytes) -> None:
        if not hmac.compare_digest(bytes(received), expected):
            raise ChallengeMismatch("Challenge does not match")

    def _check_origin(self, origin: str, rp_id_hash: bytes) -> None:
        if origin.rstrip("/") != self._settings.rp_origin:
            raise OriginMismatch(f"Unexpected origin {origin!r}")
        if not hmac.compare_digest(bytes(rp_id_hash), self._rp_id_hash):
            raise OriginMismatch("Relying party ID hash does not match")

    @staticmethod
    def _verify_signature(credential: Credential, response: AssertionResponse) -> None:
        try:
            public_key = CoseKey.parse(cbor.decode(credential.public_key))
            public_key.verify(response.signed_payload, response.signature)
        except (CryptoInvalidSignature, NotImplementedError, ValueError) as e:
            raise SignatureVerificationFailed("Assertion signature is invalid") from e

    @staticmethod
    def _check_counter(credential: Credential,
                       response: AssertionResponse) -> Optional[int]:
        """
        Apply the signature counter rule.

        Returns:
            The counter to persist, or None if the stored value stays
        """
        received = response.authenticator_data.counter
        stored = credential.signature_counter
        if received == 0:
            return None
        if received <= stored:
            raise PossibleCloneDetected(
                f"Signature counter {received} did not increase past {stored}"
            )
        return received
