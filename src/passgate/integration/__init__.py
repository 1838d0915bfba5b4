# Integration Module
"""
Security audit trail for ceremonies, sessions and codes.

All events are logged with privacy-preserving user hashes.
"""

from .event_logger import (
    EventType,
    SecurityEvent,
    SecurityEventLog,
    get_user_hash,
    get_user_hash_short,
)

__all__ = [
    'EventType',
    'SecurityEvent',
    'SecurityEventLog',
    'get_user_hash',
    'get_user_hash_short',
]
