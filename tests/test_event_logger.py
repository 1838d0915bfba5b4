"""
Unit tests for the security audit trail.

Tests:
- Privacy hashing
- Recording, filtering and export
- Callbacks and bounded retention
"""

import json
import logging

from passgate.integration.event_logger import (
    EventType,
    SecurityEvent,
    SecurityEventLog,
    get_user_hash,
    get_user_hash_short,
)

from tests.helpers import FakeClock


class TestUserHash:
    """Tests for privacy-preserving identifiers."""

    def test_hash_is_normalized(self):
        assert get_user_hash("Alice@Example.com ") == get_user_hash("alice@example.com")

    def test_hash_format(self):
        digest = get_user_hash(42)
        assert len(digest) == 64
        assert get_user_hash_short(42) == digest[:16]
        assert get_user_hash(42) != get_user_hash(43)


class TestSecurityEventLog:
    """Tests for recording and retrieval."""

    def test_record_and_filter(self):
        log = SecurityEventLog(clock=FakeClock(100.0))
        log.record(EventType.REGISTRATION_BEGIN, 42)
        log.record(EventType.REGISTRATION_SUCCESS, 42, alg=-7)
        log.record(EventType.CODE_SENT, "bob@example.com")

        assert len(log) == 3
        assert len(log.get_user_events(42)) == 2
        assert len(log.get_user_events("BOB@example.com")) == 1
        success = log.get_events_by_type(EventType.REGISTRATION_SUCCESS)[0]
        assert success.details == {'alg': -7}
        assert success.timestamp == 100.0
        assert log.get_recent_events(1)[0].event_type == EventType.CODE_SENT

    def test_none_details_dropped(self):
        log = SecurityEventLog()
        event = log.record(EventType.SESSION_DESTROYED, None, reason=None)
        assert event.user_hash == "anonymous"
        assert event.details == {}

    def test_bounded(self):
        log = SecurityEventLog(max_events=3)
        for i in range(5):
            log.record(EventType.CODE_SENT, i)
        assert len(log) == 3
        assert log.get_all_events()[0].user_hash == get_user_hash(2)

    def test_export_round_trip(self):
        log = SecurityEventLog(clock=FakeClock(5.0))
        log.record(EventType.AUTHENTICATION_FAILED, 42, error="origin_mismatch")
        exported = json.loads(log.export_log())

        assert exported[0]['type'] == "authentication_failed"
        assert exported[0]['details'] == {'error': "origin_mismatch"}
        restored = SecurityEvent.from_json(json.dumps(exported[0]))
        assert restored.event_type == EventType.AUTHENTICATION_FAILED
        assert "authentication_failed" in str(restored)

    def test_callbacks(self):
        log = SecurityEventLog()
        seen = []
        log.add_callback(seen.append)
        log.record(EventType.CODE_SENT, 1)
        log.remove_callback(seen.append)
        log.record(EventType.CODE_SENT, 2)
        assert len(seen) == 1

    def test_failing_callback_does_not_break_recording(self, caplog):
        log = SecurityEventLog()

        def broken(event):
            raise RuntimeError("sink offline")

        log.add_callback(broken)
        with caplog.at_level(logging.ERROR):
            log.record(EventType.CODE_SENT, 1)
        assert len(log) == 1
        assert "callback failed" in caplog.text

    def test_log_levels(self, caplog):
        log = SecurityEventLog()
        with caplog.at_level(logging.INFO, logger="passgate.integration.event_logger"):
            log.record(EventType.SESSION_ISSUED, 1)
            log.record(EventType.AUTHENTICATION_FAILED, 1)
            log.record(EventType.CLONE_DETECTED, 1)
        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.INFO, logging.WARNING, logging.ERROR]
