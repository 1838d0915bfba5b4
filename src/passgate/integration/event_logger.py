"""
Event Logger Module

Security audit trail for authentication ceremonies and sessions.
Every security-relevant outcome is recorded as a SecurityEvent and
mirrored to the standard logging hierarchy.

Features:
- Registration / authentication events (begin, success, failure)
- Clone detection events
- Session issue / rejection / destroy events
- One-time code events
- Privacy-preserving user hashes (SHA-256), never plaintext emails
"""

import hashlib
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union


logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

DEFAULT_MAX_EVENTS = 10000
EVENT_VERSION = "1.0"


# ============================================================================
# Privacy Functions
# ============================================================================

def get_user_hash(subject: Union[int, str]) -> str:
    """
    Compute privacy-preserving hash of a user id or email.

    Emails are lower-cased first so the same address always correlates.

    Args:
        subject: User id or email address

    Returns:
        Hex-encoded SHA-256 hash
    """
    normalized = str(subject).strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def get_user_hash_short(subject: Union[int, str]) -> str:
    """First 16 characters of the user hash, for display and log lines."""
    return get_user_hash(subject)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of security events that can be logged."""

    # Passkey registration
    REGISTRATION_BEGIN = "registration_begin"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_FAILED = "registration_failed"

    # Passkey authentication
    AUTHENTICATION_BEGIN = "authentication_begin"
    AUTHENTICATION_SUCCESS = "authentication_success"
    AUTHENTICATION_FAILED = "authentication_failed"
    CLONE_DETECTED = "clone_detected"
    CREDENTIAL_DELETED = "credential_deleted"

    # Sessions
    SESSION_ISSUED = "session_issued"
    SESSION_INVALID_SIGNATURE = "session_invalid_signature"
    SESSION_EXPIRED = "session_expired"
    SESSION_DESTROYED = "session_destroyed"

    # One-time codes
    CODE_SENT = "code_sent"
    CODE_VERIFIED = "code_verified"
    CODE_FAILED = "code_failed"


WARNING_EVENTS = frozenset({
    EventType.REGISTRATION_FAILED,
    EventType.AUTHENTICATION_FAILED,
    EventType.SESSION_INVALID_SIGNATURE,
    EventType.CODE_FAILED,
})


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class SecurityEvent:
    """
    Represents a security event to be logged.

    All user-identifying information is hashed for privacy.
    """
    event_type: EventType
    user_hash: str
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'user': self.user_hash[:16],
            'time': self.timestamp,
            'details': self.details,
        }, separators=(',', ':'))

    @classmethod
    def from_json(cls, data: str) -> 'SecurityEvent':
        parsed = json.loads(data)
        return cls(
            event_type=EventType(parsed['type']),
            user_hash=parsed['user'],
            timestamp=parsed['time'],
            details=parsed.get('details', {}),
        )

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"user:{self.user_hash[:8]}..."
        )


# ============================================================================
# Event Logger
# ============================================================================

class SecurityEventLog:
    """
    Bounded, thread-safe audit trail of security events.

    Events are kept in memory (oldest dropped first) and each one is
    also emitted on the module logger.
    """

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the event log.

        Args:
            max_events: Maximum number of events retained in memory
            clock: Time source, injectable for tests
        """
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)
        self._clock = clock
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[SecurityEvent], None]] = []

    def record(self, event_type: EventType,
               subject: Optional[Union[int, str]] = None,
               **details: Any) -> SecurityEvent:
        """
        Record an event.

        Args:
            event_type: What happened
            subject: User id or email (hashed before storage)
            **details: Small, non-sensitive context values

        Returns:
            The logged event
        """
        event = SecurityEvent(
            event_type=event_type,
            user_hash=get_user_hash(subject) if subject is not None else "anonymous",
            timestamp=self._clock(),
            details={k: v for k, v in details.items() if v is not None},
        )
        with self._lock:
            self._events.append(event)
            callbacks = list(self._callbacks)

        level = logging.WARNING if event_type in WARNING_EVENTS else logging.INFO
        if event_type == EventType.CLONE_DETECTED:
            level = logging.ERROR
        logger.log(level, "%s user=%s %s", event_type.value,
                   event.user_hash[:16], event.details or "")

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Security event callback failed")
        return event

    def add_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        with self._lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[SecurityEvent], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def get_user_events(self, subject: Union[int, str]) -> List[SecurityEvent]:
        """Get all events for a user id or email."""
        user_hash = get_user_hash(subject)
        return [e for e in self.get_all_events() if e.user_hash == user_hash]

    def get_events_by_type(self, event_type: EventType) -> List[SecurityEvent]:
        return [e for e in self.get_all_events() if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[SecurityEvent]:
        events = self.get_all_events()
        return events[-count:]

    def export_log(self) -> str:
        """Export the audit trail as a JSON array."""
        return "[" + ",".join(e.to_json() for e in self.get_all_events()) + "]"

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
