"""
passgate - passkey and email-code authentication core.

Modules:
- webauthn: challenge cache, ceremony coordinator, software authenticator
- auth: session tokens, one-time codes, login flows
- integration: security audit trail
- api: JSON endpoint handlers
"""

__version__ = "0.1.0"

from .config import AuthSettings, get_settings
from .models import User, Credential, Challenge, Purpose, SessionData
from .errors import AuthError, CeremonyError, SessionError, CodeError

__all__ = [
    'AuthSettings',
    'get_settings',
    'User',
    'Credential',
    'Challenge',
    'Purpose',
    'SessionData',
    'AuthError',
    'CeremonyError',
    'SessionError',
    'CodeError',
]
