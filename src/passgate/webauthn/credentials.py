"""
Credential and User Persistence Contracts

The core never owns users or credentials; it talks to external
persistence through two small capabilities:
- UserDirectory: resolve users by id or email, create on first login
- CredentialStore: read/write WebAuthn credentials

In-memory implementations are provided for tests and the demo.
"""

import itertools
import threading
from typing import Dict, List, Optional, Protocol

from ..models import Credential, User, ROLE_USER


class UserDirectory(Protocol):
    """Read/create contract for user records."""

    def get(self, user_id: int) -> Optional[User]: ...

    def find_by_email(self, email: str) -> Optional[User]: ...

    def create(self, email: str, name: Optional[str] = None) -> User: ...


class CredentialStore(Protocol):
    """Read/write contract for WebAuthn credentials."""

    def get(self, user_id: int) -> List[Credential]: ...

    def find(self, credential_id: bytes) -> Optional[Credential]: ...

    def put(self, credential: Credential) -> None: ...

    def update_counter(self, credential_id: bytes, counter: int) -> None: ...

    def delete(self, user_id: int, credential_id: bytes) -> bool: ...


class InMemoryUserDirectory:
    """Dict-backed user directory. Emails are matched case-insensitively."""

    def __init__(self, users: Optional[List[User]] = None):
        self._users: Dict[int, User] = {}
        self._lock = threading.Lock()
        for user in users or []:
            self._users[user.id] = user
        self._ids = itertools.count(max(self._users, default=0) + 1)

    def get(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def find_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return self._find_locked(email)

    def create(self, email: str, name: Optional[str] = None) -> User:
        with self._lock:
            existing = self._find_locked(email)
            if existing:
                raise ValueError("User already exists")
            user = User(id=next(self._ids), email=email.strip(), name=name, role=ROLE_USER)
            self._users[user.id] = user
        return user

    def add(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user
        return user

    def _find_locked(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        for user in self._users.values():
            if user.email.lower() == wanted:
                return user
        return None


class InMemoryCredentialStore:
    """
    Dict-backed credential store keyed by credential id.

    Credential ids are globally unique; put() refuses duplicates.
    """

    def __init__(self):
        self._credentials: Dict[bytes, Credential] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> List[Credential]:
        with self._lock:
            return [c for c in self._credentials.values() if c.owner_user_id == user_id]

    def find(self, credential_id: bytes) -> Optional[Credential]:
        with self._lock:
            return self._credentials.get(bytes(credential_id))

    def put(self, credential: Credential) -> None:
        key = bytes(credential.credential_id)
        with self._lock:
            if key in self._credentials:
                raise ValueError("Credential id already registered")
            self._credentials[key] = credential

    def update_counter(self, credential_id: bytes, counter: int) -> None:
        key = bytes(credential_id)
        with self._lock:
            credential = self._credentials.get(key)
            if credential is None:
                raise KeyError("Unknown credential")
            self._credentials[key] = credential.with_counter(counter)

    def delete(self, user_id: int, credential_id: bytes) -> bool:
        key = bytes(credential_id)
        with self._lock:
            credential = self._credentials.get(key)
            if credential is None or credential.owner_user_id != user_id:
                return False
            del self._credentials[key]
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)
