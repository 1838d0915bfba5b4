"""
Unit tests for the challenge cache.

Tests:
- At-most-once consumption (sequential and concurrent)
- TTL expiry and purging
- One pending challenge per subject and purpose
"""

import threading

import pytest

from passgate.errors import ChallengeExpired, ChallengeNotFound
from passgate.models import Purpose
from passgate.webauthn.challenge_cache import ChallengeCache

from tests.helpers import FakeClock


class TestChallengeCache:
    """Tests for put / take semantics."""

    def test_issue_and_take(self):
        cache = ChallengeCache(ttl_seconds=300, clock=FakeClock())
        challenge = cache.issue(42, Purpose.REGISTRATION)

        assert len(challenge.value) == 32
        assert challenge.expires_at - challenge.created_at == 300
        assert cache.take_if_valid(42, Purpose.REGISTRATION) == challenge

    def test_take_is_at_most_once(self):
        cache = ChallengeCache(clock=FakeClock())
        cache.issue(42, Purpose.AUTHENTICATION)
        cache.take_if_valid(42, Purpose.AUTHENTICATION)
        with pytest.raises(ChallengeNotFound):
            cache.take_if_valid(42, Purpose.AUTHENTICATION)

    def test_purposes_are_separate_slots(self):
        cache = ChallengeCache(clock=FakeClock())
        registration = cache.issue(42, Purpose.REGISTRATION)
        authentication = cache.issue(42, Purpose.AUTHENTICATION)

        assert cache.take_if_valid(42, Purpose.AUTHENTICATION) == authentication
        assert cache.take_if_valid(42, Purpose.REGISTRATION) == registration

    def test_put_overwrites(self):
        cache = ChallengeCache(clock=FakeClock())
        cache.issue(42, Purpose.REGISTRATION)
        newer = cache.issue(42, Purpose.REGISTRATION)
        assert len(cache) == 1
        assert cache.take_if_valid(42, Purpose.REGISTRATION) == newer

    def test_challenges_are_random(self):
        cache = ChallengeCache(clock=FakeClock())
        values = {cache.issue(i, Purpose.REGISTRATION).value for i in range(50)}
        assert len(values) == 50

    def test_minimum_challenge_size(self):
        with pytest.raises(ValueError):
            ChallengeCache(challenge_bytes=8)
        assert len(ChallengeCache(challenge_bytes=16).issue(1, Purpose.REGISTRATION).value) == 16

    def test_discard(self):
        cache = ChallengeCache(clock=FakeClock())
        cache.issue(42, Purpose.REGISTRATION)
        assert cache.discard(42, Purpose.REGISTRATION)
        assert not cache.discard(42, Purpose.REGISTRATION)
        assert not cache.has_pending(42, Purpose.REGISTRATION)


class TestChallengeExpiry:
    """Tests for TTL handling."""

    def test_expired_challenge_is_consumed(self):
        """An expired take reports ChallengeExpired once, then NotFound."""
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.REGISTRATION)
        clock.advance(300)

        with pytest.raises(ChallengeExpired):
            cache.take_if_valid(42, Purpose.REGISTRATION)
        with pytest.raises(ChallengeNotFound):
            cache.take_if_valid(42, Purpose.REGISTRATION)

    def test_valid_just_before_ttl(self):
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        challenge = cache.issue(42, Purpose.REGISTRATION)
        clock.advance(299)
        assert cache.take_if_valid(42, Purpose.REGISTRATION) == challenge

    def test_recently_expired_survives_put(self):
        """Another subject's Begin does not hide a recent expiry."""
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.REGISTRATION)
        clock.advance(400)
        cache.issue(43, Purpose.REGISTRATION)

        with pytest.raises(ChallengeExpired):
            cache.take_if_valid(42, Purpose.REGISTRATION)

    def test_long_expired_survives_put(self):
        """However late the Finish, it reports ChallengeExpired."""
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.REGISTRATION)
        clock.advance(601)
        cache.issue(43, Purpose.REGISTRATION)
        clock.advance(10 ** 6)
        cache.issue(44, Purpose.REGISTRATION)

        with pytest.raises(ChallengeExpired):
            cache.take_if_valid(42, Purpose.REGISTRATION)
        with pytest.raises(ChallengeNotFound):
            cache.take_if_valid(42, Purpose.REGISTRATION)

    def test_purge_expired(self):
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.REGISTRATION)
        cache.issue(43, Purpose.AUTHENTICATION)
        clock.advance(200)
        cache.issue(44, Purpose.REGISTRATION)
        clock.advance(150)

        assert cache.purge_expired() == 2
        assert len(cache) == 1
        assert cache.has_pending(44, Purpose.REGISTRATION)
        assert not cache.has_pending(42, Purpose.REGISTRATION)

    def test_purged_slot_still_reports_expired(self):
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.AUTHENTICATION)
        clock.advance(300)
        cache.purge_expired()

        with pytest.raises(ChallengeExpired):
            cache.take_if_valid(42, Purpose.AUTHENTICATION)
        with pytest.raises(ChallengeNotFound):
            cache.take_if_valid(42, Purpose.AUTHENTICATION)

    def test_new_challenge_clears_expired_marker(self):
        clock = FakeClock()
        cache = ChallengeCache(ttl_seconds=300, clock=clock)
        cache.issue(42, Purpose.AUTHENTICATION)
        clock.advance(300)
        cache.purge_expired()

        fresh = cache.issue(42, Purpose.AUTHENTICATION)
        assert cache.take_if_valid(42, Purpose.AUTHENTICATION) == fresh
        with pytest.raises(ChallengeNotFound):
            cache.take_if_valid(42, Purpose.AUTHENTICATION)


class TestChallengeConcurrency:
    """Tests for atomic take under contention."""

    def test_many_threads_one_winner(self):
        cache = ChallengeCache(clock=FakeClock())
        challenge = cache.issue(42, Purpose.AUTHENTICATION)

        workers = 16
        barrier = threading.Barrier(workers)
        winners = []
        losers = []
        lock = threading.Lock()

        def take():
            barrier.wait()
            try:
                got = cache.take_if_valid(42, Purpose.AUTHENTICATION)
                with lock:
                    winners.append(got)
            except ChallengeNotFound:
                with lock:
                    losers.append(1)

        threads = [threading.Thread(target=take) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert winners == [challenge]
        assert len(losers) == workers - 1
