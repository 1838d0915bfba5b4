"""
Shared test helpers: a controllable clock and a pre-wired coordinator.
"""

from passgate.config import AuthSettings
from passgate.models import User
from passgate.webauthn.ceremony import CeremonyCoordinator
from passgate.webauthn.credentials import InMemoryCredentialStore, InMemoryUserDirectory
from passgate.webauthn.encoding import b64url_decode, b64url_encode


ORIGIN = "https://app.example"
RP_ID = "app.example"
SECRET = "test-session-secret"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> AuthSettings:
    values = {
        'environment': 'testing',
        'rp_id': RP_ID,
        'rp_origin': ORIGIN,
        'session_secret': SECRET,
    }
    values.update(overrides)
    return AuthSettings(**values)


def make_users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([
        User(id=42, email="alice@example.com", name="Alice"),
        User(id=43, email="bob@example.com", name="Bob"),
        User(id=44, email="carol@example.com", is_active=False),
    ])


def make_coordinator(clock=None, **settings_overrides):
    """
    Build a coordinator over in-memory stores.

    Returns:
        Tuple of (coordinator, credential store, clock)
    """
    clock = clock if clock is not None else FakeClock()
    credentials = InMemoryCredentialStore()
    coordinator = CeremonyCoordinator(
        make_settings(**settings_overrides), make_users(), credentials, clock=clock
    )
    return coordinator, credentials, clock


def register(coordinator, authenticator, user_id: int = 42):
    """Run a full registration ceremony and return the stored credential."""
    options = coordinator.begin_registration(user_id)
    return coordinator.finish_registration(user_id, authenticator.create(options.to_dict()))


def begin_login(coordinator, user_id: int = 42) -> dict:
    return coordinator.begin_authentication(user_id).to_dict()


def flip_last_byte(value: str) -> str:
    """Corrupt a base64url field."""
    raw = bytearray(b64url_decode(value, "value"))
    raw[-1] ^= 0x01
    return b64url_encode(bytes(raw))
