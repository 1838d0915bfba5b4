"""
One-Time Code Module

Short-lived email login codes, an alternate first factor to passkeys.

Features:
- Uppercase base32 codes (A-Z, 2-7), default length 6
- 10 minute default lifetime, one pending code per email
- Codes stored only as Argon2id hashes
- One-shot: a verified code never validates again
- Pending code discarded after too many wrong guesses

Security considerations:
- Emails are normalized (trimmed, lower-cased) before use as keys
- Never log codes
"""

import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from ..config import DEFAULT_CODE_TTL
from ..errors import CodeExpired, CodeMismatch, CodeNotFound
from ..models import OneTimeCode


logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
DEFAULT_CODE_LENGTH = 6
MAX_FAILED_ATTEMPTS = 5

# Codes live for minutes, so hashing can be much lighter than for passwords
CODE_HASH_CONFIG = {
    'time_cost': 1,
    'memory_cost': 8192,     # 8 MiB
    'parallelism': 1,
    'hash_len': 32,
    'salt_len': 16,
    'type': Type.ID,
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Generate a random uppercase base32 code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class OneTimeCodeVerifier:
    """
    Issues and verifies one-time login codes.

    Example:
        >>> verifier = OneTimeCodeVerifier()
        >>> code = verifier.generate("alice@example.com")
        >>> verifier.verify("alice@example.com", code)  # a repeat raises CodeNotFound
    """

    def __init__(self, ttl_seconds: int = DEFAULT_CODE_TTL,
                 length: int = DEFAULT_CODE_LENGTH,
                 max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
                 clock: Callable[[], float] = time.time,
                 **hash_kwargs):
        """
        Initialize the verifier.

        Args:
            ttl_seconds: Code lifetime
            length: Number of characters per code
            max_failed_attempts: Wrong guesses before the code is discarded
            clock: Time source, injectable for tests
            **hash_kwargs: Override default Argon2 parameters
        """
        config = CODE_HASH_CONFIG.copy()
        config.update(hash_kwargs)
        self._hasher = PasswordHasher(**config)
        self._ttl_seconds = ttl_seconds
        self._length = length
        self._max_failed_attempts = max_failed_attempts
        self._clock = clock
        self._codes: Dict[str, OneTimeCode] = {}
        self._lock = threading.Lock()

    def generate(self, email: str) -> str:
        """
        Create a code for an email, replacing any pending one.

        Returns:
            The plaintext code, to be delivered out-of-band
        """
        code = generate_code(self._length)
        entry = OneTimeCode(
            email=normalize_email(email),
            code_hash=self._hasher.hash(code),
            expires_at=self._clock() + self._ttl_seconds,
        )
        with self._lock:
            self._codes[entry.email] = entry
        return code

    def verify(self, email: str, code: str) -> None:
        """
        Verify and consume a code.

        Raises:
            CodeNotFound: No pending code (never issued, or already used)
            CodeExpired: The pending code is past its lifetime
            CodeMismatch: Wrong code; the pending code stays until
                max_failed_attempts is reached
        """
        key = normalize_email(email)
        candidate = (code or "").strip().upper()

        with self._lock:
            entry = self._codes.get(key)
            if entry is None or entry.consumed:
                raise CodeNotFound("No pending code for this email")

            if entry.is_expired(self._clock()):
                del self._codes[key]
                raise CodeExpired("Code has expired")

        # Argon2 runs unlocked; the entry is re-checked before it is changed
        matched = self._matches(entry, candidate)

        with self._lock:
            current = self._codes.get(key) is entry and not entry.consumed
            if not matched:
                if current:
                    entry.failed_attempts += 1
                    if entry.failed_attempts >= self._max_failed_attempts:
                        logger.warning("Discarding code after %d failed attempts",
                                       entry.failed_attempts)
                        del self._codes[key]
                raise CodeMismatch("Code does not match")

            if not current:
                raise CodeNotFound("No pending code for this email")
            entry.consumed = True
            del self._codes[key]

    def pending(self, email: str) -> Optional[OneTimeCode]:
        """Pending entry for an email, if any."""
        with self._lock:
            return self._codes.get(normalize_email(email))

    def has_pending(self, email: str) -> bool:
        with self._lock:
            entry = self._codes.get(normalize_email(email))
            return entry is not None and not entry.is_expired(self._clock())

    def purge_expired(self) -> int:
        """
        Remove expired codes.

        Returns:
            Number of codes removed
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._codes.items() if v.is_expired(now)]
            for key in expired:
                del self._codes[key]
        return len(expired)

    def _matches(self, entry: OneTimeCode, candidate: str) -> bool:
        if not candidate:
            return False
        try:
            return self._hasher.verify(entry.code_hash, candidate)
        except (VerificationError, InvalidHashError):
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)

