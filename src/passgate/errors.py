"""
Error Taxonomy

Every failure surfaced by the ceremony coordinator, the session manager
and the one-time-code verifier is a subclass of AuthError carrying a
stable machine-readable ``code``.

Callers never retry inside the core: a failed ceremony is re-run from
Begin, producing a fresh challenge. PossibleCloneDetected is the single
non-retryable failure and routes to account recovery.
"""

from typing import Optional


GENERIC_MESSAGE = "Authentication failed. Please try again."
RECOVERY_MESSAGE = (
    "This security key may have been copied. Your account has been flagged; "
    "please contact support to recover access."
)


class AuthError(Exception):
    """Base class for all authentication failures."""

    code = "auth_error"
    retryable = True
    user_message = GENERIC_MESSAGE

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)


class MalformedRequest(AuthError):
    """Wire payload could not be decoded. Raised before any cache/store access."""
    code = "malformed_request"


class InvalidUser(AuthError):
    """User id did not resolve to an active user."""
    code = "invalid_user"


# ============================================================================
# Ceremony errors
# ============================================================================

class CeremonyError(AuthError):
    """Base class for WebAuthn ceremony failures."""
    code = "ceremony_error"


class ChallengeNotFound(CeremonyError):
    code = "challenge_not_found"


class ChallengeExpired(CeremonyError):
    code = "challenge_expired"


class ChallengeMismatch(CeremonyError):
    code = "challenge_mismatch"


class OriginMismatch(CeremonyError):
    code = "origin_mismatch"


class UnsupportedAlgorithm(CeremonyError):
    code = "unsupported_algorithm"


class CredentialAlreadyExists(CeremonyError):
    code = "credential_already_exists"


class CredentialNotFound(CeremonyError):
    code = "credential_not_found"


class OwnershipMismatch(CeremonyError):
    code = "ownership_mismatch"


class SignatureVerificationFailed(CeremonyError):
    """Assertion signature did not verify against the stored public key."""
    code = "signature_verification_failed"


class PossibleCloneDetected(CeremonyError):
    """
    Signature counter did not increase.

    Terminal: the credential may have been duplicated and the account
    needs out-of-band remediation.
    """
    code = "possible_clone_detected"
    retryable = False
    user_message = RECOVERY_MESSAGE


# ============================================================================
# Session errors
# ============================================================================

class SessionError(AuthError):
    """Base class for session token failures (both mean "no session")."""
    code = "session_error"


class InvalidSignature(SessionError):
    code = "invalid_signature"


class Expired(SessionError):
    code = "expired"


# ============================================================================
# One-time code errors
# ============================================================================

class CodeError(AuthError):
    """Base class for one-time code failures."""
    code = "code_error"


class CodeNotFound(CodeError):
    code = "code_not_found"


class CodeExpired(CodeError):
    code = "code_expired"


class CodeMismatch(CodeError):
    code = "code_mismatch"
