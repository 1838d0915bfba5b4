# WebAuthn Module
"""
Passkey ceremony implementations including:
- Challenge cache with at-most-once consumption - challenge_cache.py
- Credential / user persistence contracts - credentials.py
- Wire decoding of browser payloads - encoding.py
- Registration and authentication state machines - ceremony.py
- Software authenticator for tests and demos - authenticator.py
"""

from .challenge_cache import ChallengeCache

from .credentials import (
    UserDirectory,
    CredentialStore,
    InMemoryUserDirectory,
    InMemoryCredentialStore,
)

from .encoding import (
    b64url_encode,
    b64url_decode,
    parse_registration_response,
    parse_assertion_response,
)

from .ceremony import (
    CeremonyCoordinator,
    RegistrationOptions,
    AuthenticationOptions,
)

from .authenticator import (
    Authenticator,
    SoftwareAuthenticator,
)

__all__ = [
    'ChallengeCache',
    'UserDirectory',
    'CredentialStore',
    'InMemoryUserDirectory',
    'InMemoryCredentialStore',
    'b64url_encode',
    'b64url_decode',
    'parse_registration_response',
    'parse_assertion_response',
    'CeremonyCoordinator',
    'RegistrationOptions',
    'AuthenticationOptions',
    'Authenticator',
    'SoftwareAuthenticator',
]
