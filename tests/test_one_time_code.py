"""
Unit tests for one-time login codes.

Tests:
- Code format
- One-shot verification
- Expiry, mismatch and attempt limits
- Concurrent verification
"""

import threading
from unittest.mock import patch

import pytest
from argon2 import PasswordHasher

from passgate.auth.one_time_code import (
    CODE_ALPHABET,
    OneTimeCodeVerifier,
    generate_code,
)
from passgate.errors import CodeExpired, CodeMismatch, CodeNotFound

from tests.helpers import FakeClock


def wrong_code(code: str) -> str:
    """Same length, guaranteed different."""
    first = "A" if code[0] != "A" else "B"
    return first + code[1:]


class TestCodeGeneration:
    """Tests for code format."""

    def test_default_format(self):
        code = generate_code()
        assert len(code) == 6
        assert all(c in CODE_ALPHABET for c in code)

    def test_custom_length(self):
        verifier = OneTimeCodeVerifier(length=8, clock=FakeClock())
        assert len(verifier.generate("alice@example.com")) == 8

    def test_only_hash_is_stored(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        code = verifier.generate("alice@example.com")
        pending = verifier.pending("alice@example.com")

        assert pending.code_hash.startswith("$argon2id$")
        assert code not in pending.code_hash


class TestCodeVerification:
    """Tests for verify semantics."""

    def test_verify_once(self):
        """A code succeeds once; the repeat fails CodeNotFound."""
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        code = verifier.generate("alice@example.com")

        verifier.verify("alice@example.com", code)
        with pytest.raises(CodeNotFound):
            verifier.verify("alice@example.com", code)

    def test_never_issued(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        with pytest.raises(CodeNotFound):
            verifier.verify("nobody@example.com", "ABCDEF")

    def test_email_and_code_normalized(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        code = verifier.generate("Alice@Example.com")
        verifier.verify("  alice@example.COM ", code.lower())

    def test_mismatch_keeps_code_pending(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        code = verifier.generate("alice@example.com")

        with pytest.raises(CodeMismatch):
            verifier.verify("alice@example.com", wrong_code(code))
        with pytest.raises(CodeMismatch):
            verifier.verify("alice@example.com", "")
        verifier.verify("alice@example.com", code)

    def test_new_code_replaces_old(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        old = verifier.generate("alice@example.com")
        new = verifier.generate("alice@example.com")
        if old != new:
            with pytest.raises(CodeMismatch):
                verifier.verify("alice@example.com", old)
        verifier.verify("alice@example.com", new)
        assert len(verifier) == 0

    def test_too_many_failures_discards_code(self):
        verifier = OneTimeCodeVerifier(max_failed_attempts=3, clock=FakeClock())
        code = verifier.generate("alice@example.com")

        for _ in range(3):
            with pytest.raises(CodeMismatch):
                verifier.verify("alice@example.com", wrong_code(code))
        with pytest.raises(CodeNotFound):
            verifier.verify("alice@example.com", code)


class TestCodeExpiry:
    """Tests for the code lifetime."""

    def test_expired_code(self):
        clock = FakeClock()
        verifier = OneTimeCodeVerifier(ttl_seconds=600, clock=clock)
        code = verifier.generate("alice@example.com")
        clock.advance(600)

        with pytest.raises(CodeExpired):
            verifier.verify("alice@example.com", code)
        with pytest.raises(CodeNotFound):
            verifier.verify("alice@example.com", code)

    def test_valid_before_expiry(self):
        clock = FakeClock()
        verifier = OneTimeCodeVerifier(ttl_seconds=600, clock=clock)
        code = verifier.generate("alice@example.com")
        clock.advance(599)
        assert verifier.has_pending("alice@example.com")
        verifier.verify("alice@example.com", code)

    def test_purge_expired(self):
        clock = FakeClock()
        verifier = OneTimeCodeVerifier(ttl_seconds=600, clock=clock)
        verifier.generate("alice@example.com")
        clock.advance(300)
        verifier.generate("bob@example.com")
        clock.advance(300)

        assert verifier.purge_expired() == 1
        assert not verifier.has_pending("alice@example.com")
        assert verifier.has_pending("bob@example.com")


class TestConcurrentVerification:
    """Tests for verification from several threads."""

    def test_hash_check_does_not_block_other_emails(self):
        """Bob's code verifies while Alice's hash check is still running."""
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        alice_code = verifier.generate("alice@example.com")
        bob_code = verifier.generate("bob@example.com")
        alice_hash = verifier.pending("alice@example.com").code_hash

        entered = threading.Event()
        release = threading.Event()
        real_verify = PasswordHasher.verify

        def slow_verify(hasher, hash, password):
            if hash == alice_hash:
                entered.set()
                release.wait(5)
            return real_verify(hasher, hash, password)

        with patch.object(PasswordHasher, 'verify', new=slow_verify):
            alice = threading.Thread(
                target=verifier.verify, args=("alice@example.com", alice_code)
            )
            alice.start()
            assert entered.wait(5)

            bob = threading.Thread(
                target=verifier.verify, args=("bob@example.com", bob_code)
            )
            bob.start()
            bob.join(5)
            finished_while_alice_blocked = not bob.is_alive()

            release.set()
            alice.join(5)

        assert finished_while_alice_blocked
        assert not verifier.has_pending("alice@example.com")
        assert not verifier.has_pending("bob@example.com")

    def test_many_emails_in_parallel(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        emails = [f"user{i}@example.com" for i in range(4)]
        codes = {email: verifier.generate(email) for email in emails}
        barrier = threading.Barrier(len(emails))
        errors = []

        def check(email):
            barrier.wait()
            try:
                verifier.verify(email, codes[email])
            except CodeNotFound as e:
                errors.append(e)

        threads = [threading.Thread(target=check, args=(e,)) for e in emails]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(verifier) == 0

    def test_same_code_race_one_winner(self):
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        code = verifier.generate("alice@example.com")

        workers = 4
        barrier = threading.Barrier(workers)
        winners = []
        losers = []
        lock = threading.Lock()

        def check():
            barrier.wait()
            try:
                verifier.verify("alice@example.com", code)
                with lock:
                    winners.append(1)
            except CodeNotFound:
                with lock:
                    losers.append(1)

        threads = [threading.Thread(target=check) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == workers - 1

    def test_code_replaced_during_check(self):
        """A code superseded mid-check is not consumed by the old guess."""
        verifier = OneTimeCodeVerifier(clock=FakeClock())
        old = verifier.generate("alice@example.com")
        real_verify = PasswordHasher.verify
        replacement = []

        def verify_then_replace(hasher, hash, password):
            result = real_verify(hasher, hash, password)
            if not replacement:
                replacement.append(verifier.generate("alice@example.com"))
            return result

        with patch.object(PasswordHasher, 'verify', new=verify_then_replace):
            with pytest.raises(CodeNotFound):
                verifier.verify("alice@example.com", old)

        verifier.verify("alice@example.com", replacement[0])
