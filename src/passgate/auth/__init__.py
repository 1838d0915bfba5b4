# Authentication Module
"""
Session and first-factor implementations including:
- HMAC-SHA256 signed session tokens - session.py
- Session transport (cookie options, token store) - session.py
- Email one-time codes (Argon2id hashed) - one_time_code.py
- Login flows for codes and passkeys - login.py

Security features:
- Constant-time signature and challenge comparison
- Stateless sessions: validity = signature + expiry
- One-shot codes with bounded guesses
"""

from .session import (
    SessionManager,
    SessionTransport,
    CookieOptions,
    TokenStore,
    InMemoryTokenStore,
    create_hmac_token,
    verify_hmac_token,
)

from .one_time_code import (
    OneTimeCodeVerifier,
    generate_code,
    normalize_email,
)

from .login import (
    LoginService,
    LoginResult,
    EmailSender,
    OutboxEmailSender,
)

__all__ = [
    # Sessions
    'SessionManager',
    'SessionTransport',
    'CookieOptions',
    'TokenStore',
    'InMemoryTokenStore',
    'create_hmac_token',
    'verify_hmac_token',
    # One-time codes
    'OneTimeCodeVerifier',
    'generate_code',
    'normalize_email',
    # Login
    'LoginService',
    'LoginResult',
    'EmailSender',
    'OutboxEmailSender',
]
