"""
Challenge Cache

Process-wide ephemeral store of pending WebAuthn ceremony challenges.

- One slot per (subject, purpose): a new Begin overwrites an unfinished one
- take_if_valid retrieves and deletes in one step under a lock, so each
  challenge is consumed by at most one Finish call
- Expired entries are only released by purge_expired, which keeps a
  marker per slot; a late Finish always observes ChallengeExpired
"""

import logging
import secrets
import threading
import time
from typing import Callable, Dict, Set, Tuple

from ..config import DEFAULT_CHALLENGE_TTL, MIN_CHALLENGE_BYTES
from ..errors import ChallengeExpired, ChallengeNotFound
from ..models import Challenge, Purpose


logger = logging.getLogger(__name__)

CacheKey = Tuple[int, Purpose]


class ChallengeCache:
    """
    In-memory challenge store with TTL expiry.

    Example:
        >>> cache = ChallengeCache(ttl_seconds=300)
        >>> challenge = cache.issue(42, Purpose.REGISTRATION)
        >>> cache.take_if_valid(42, Purpose.REGISTRATION) == challenge
        True
    """

    def __init__(self, ttl_seconds: int = DEFAULT_CHALLENGE_TTL,
                 challenge_bytes: int = 32,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an unconsumed challenge
            challenge_bytes: Random bytes per challenge (at least 16)
            clock: Time source, injectable for tests
        """
        if challenge_bytes < MIN_CHALLENGE_BYTES:
            raise ValueError(f"Challenges must be at least {MIN_CHALLENGE_BYTES} bytes")
        self._ttl = ttl_seconds
        self._challenge_bytes = challenge_bytes
        self._clock = clock
        self._entries: Dict[CacheKey, Challenge] = {}
        # Slots whose challenge was purged after expiry
        self._expired: Set[CacheKey] = set()
        self._lock = threading.Lock()

    def issue(self, subject_user_id: int, purpose: Purpose) -> Challenge:
        """Create a fresh random challenge and store it."""
        now = self._clock()
        challenge = Challenge(
            value=secrets.token_bytes(self._challenge_bytes),
            purpose=purpose,
            subject_user_id=subject_user_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        self.put(challenge)
        return challenge

    def put(self, challenge: Challenge) -> None:
        """Store a challenge, replacing any pending one for the same key."""
        key = (challenge.subject_user_id, challenge.purpose)
        with self._lock:
            if key in self._entries:
                logger.debug("Replacing pending %s challenge", challenge.purpose.value)
            self._entries[key] = challenge
            self._expired.discard(key)

    def take_if_valid(self, subject_user_id: int, purpose: Purpose) -> Challenge:
        """
        Atomically remove and return the pending challenge.

        The entry is deleted whether or not it is still valid.

        Raises:
            ChallengeNotFound: No pending challenge (or already consumed)
            ChallengeExpired: The challenge outlived its TTL
        """
        key = (subject_user_id, purpose)
        with self._lock:
            challenge = self._entries.pop(key, None)
            purged = key in self._expired
            self._expired.discard(key)
        if challenge is None:
            if purged:
                raise ChallengeExpired(f"{purpose.value.capitalize()} challenge expired")
            raise ChallengeNotFound(f"No pending {purpose.value} challenge")
        if challenge.is_expired(self._clock()):
            raise ChallengeExpired(f"{purpose.value.capitalize()} challenge expired")
        return challenge

    def discard(self, subject_user_id: int, purpose: Purpose) -> bool:
        """Drop a pending challenge. Returns True if one existed."""
        key = (subject_user_id, purpose)
        with self._lock:
            self._expired.discard(key)
            return self._entries.pop(key, None) is not None

    def has_pending(self, subject_user_id: int, purpose: Purpose) -> bool:
        with self._lock:
            return (subject_user_id, purpose) in self._entries

    def purge_expired(self) -> int:
        """
        Release every expired challenge.

        The slot is remembered, so the next take for it still raises
        ChallengeExpired. At most one marker is kept per slot.

        Returns:
            Number of challenges released
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, c in self._entries.items() if c.is_expired(now)]
            for key in expired:
                del self._entries[key]
                self._expired.add(key)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
