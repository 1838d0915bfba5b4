"""
Authenticator Capability

The browser and the user's authenticator are an external, untrusted
collaborator: the core only sees the JSON payloads they produce. This
module names that capability and ships a software implementation used
by the tests and the demo script.

SoftwareAuthenticator:
- P-256 (ES256) or Ed25519 (EdDSA) keys via the cryptography package
- Real authenticator data / attestation objects built with fido2
- Optional signature counter (disabled -> always reports 0)
- Configurable origin, to play a phishing page
- clone() to simulate a duplicated authenticator
"""

import copy
import hashlib
import json
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from fido2.cose import ES256, EdDSA
from fido2.webauthn import (
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
)

from ..config import ALG_EDDSA, ALG_ES256
from .encoding import b64url_decode, b64url_encode


CURVE = ec.SECP256R1()
CREDENTIAL_ID_BYTES = 32
AAGUID_NONE = b"\x00" * 16


class Authenticator(Protocol):
    """Browser-side credential creation / assertion."""

    def create(self, options: Dict[str, Any]) -> Dict[str, Any]: ...

    def get(self, options: Dict[str, Any]) -> Dict[str, Any]: ...


@dataclass
class _KeyRecord:
    """One credential held by the software authenticator."""
    private_key: Any
    algorithm: int
    user_handle: bytes
    rp_id: str
    counter: int = 0

    def sign(self, data: bytes) -> bytes:
        if self.algorithm == ALG_ES256:
            return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        return self.private_key.sign(data)


class SoftwareAuthenticator:
    """
    In-process authenticator producing real WebAuthn payloads.

    It does not negotiate algorithms: every credential uses the
    algorithm given at construction, so servers must enforce their own
    accepted list.

    Example:
        >>> authenticator = SoftwareAuthenticator(origin="https://app.example")
        >>> response = authenticator.create(options.to_dict())
        >>> assertion = authenticator.get(auth_options.to_dict())
    """

    def __init__(self, origin: str,
                 algorithm: int = ALG_ES256,
                 counter_enabled: bool = True,
                 user_verified: bool = True):
        """
        Initialize the authenticator.

        Args:
            origin: Origin written into clientDataJSON
            algorithm: ALG_ES256 or ALG_EDDSA
            counter_enabled: If False, every assertion reports counter 0
            user_verified: Whether to set the UV flag
        """
        if algorithm not in (ALG_ES256, ALG_EDDSA):
            raise ValueError(f"Unsupported algorithm {algorithm}")
        self.origin = origin
        self._algorithm = algorithm
        self._counter_enabled = counter_enabled
        self._user_verified = user_verified
        self._keys: Dict[bytes, _KeyRecord] = {}

    @property
    def credential_ids(self) -> List[bytes]:
        return list(self._keys)

    def counter(self, credential_id: bytes) -> int:
        return self._keys[credential_id].counter

    def set_counter(self, credential_id: bytes, value: int) -> None:
        self._keys[credential_id].counter = value

    def clone(self) -> "SoftwareAuthenticator":
        """Duplicate the authenticator, private keys and counters included."""
        twin = SoftwareAuthenticator(
            self.origin, self._algorithm, self._counter_enabled, self._user_verified
        )
        twin._keys = {cid: copy.copy(record) for cid, record in self._keys.items()}
        return twin

    def create(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a credential from registration options.

        Raises:
            ValueError: If this authenticator already holds an excluded credential
        """
        rp_id = options["rp"]["id"]
        excluded = {b64url_decode(c, "excludeCredentials") for c in options.get("excludeCredentials", [])}
        if excluded & set(self._keys):
            raise ValueError("Authenticator already registered for this account")

        private_key, cose_key = self._generate_key()
        credential_id = secrets.token_bytes(CREDENTIAL_ID_BYTES)
        record = _KeyRecord(
            private_key=private_key,
            algorithm=self._algorithm,
            user_handle=b64url_decode(options["user"]["id"], "user.id"),
            rp_id=rp_id,
        )
        self._keys[credential_id] = record

        auth_data = AuthenticatorData.create(
            hashlib.sha256(rp_id.encode("utf-8")).digest(),
            self._flags() | AuthenticatorData.FLAG.AT,
            record.counter,
            AttestedCredentialData.create(AAGUID_NONE, credential_id, cose_key),
        )
        attestation = AttestationObject.create("none", auth_data, {})
        client_data = self._client_data("webauthn.create", options["challenge"])

        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": {
                "attestationObject": b64url_encode(bytes(attestation)),
                "clientDataJSON": b64url_encode(client_data),
            },
        }

    def get(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """
        Produce an assertion for the first allowed credential held.

        Raises:
            ValueError: If no allowed credential is held
        """
        allowed = [b64url_decode(c, "allowCredentials") for c in options.get("allowCredentials", [])]
        credential_id = next((c for c in allowed if c in self._keys), None)
        if credential_id is None:
            raise ValueError("No matching credential on this authenticator")
        record = self._keys[credential_id]

        if self._counter_enabled:
            record.counter += 1
        auth_data = AuthenticatorData.create(
            hashlib.sha256(record.rp_id.encode("utf-8")).digest(),
            self._flags(),
            record.counter if self._counter_enabled else 0,
        )
        client_data = self._client_data("webauthn.get", options["challenge"])
        signature = record.sign(bytes(auth_data) + hashlib.sha256(client_data).digest())

        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": {
                "authenticatorData": b64url_encode(bytes(auth_data)),
                "clientDataJSON": b64url_encode(client_data),
                "signature": b64url_encode(signature),
                "userHandle": b64url_encode(record.user_handle),
            },
        }

    def _generate_key(self):
        if self._algorithm == ALG_ES256:
            private_key = ec.generate_private_key(CURVE)
            return private_key, ES256.from_cryptography_key(private_key.public_key())
        private_key = ed25519.Ed25519PrivateKey.generate()
        return private_key, EdDSA.from_cryptography_key(private_key.public_key())

    def _flags(self) -> int:
        flags = AuthenticatorData.FLAG.UP
        if self._user_verified:
            flags |= AuthenticatorData.FLAG.UV
        return flags

    def _client_data(self, ceremony_type: str, challenge: Optional[str]) -> bytes:
        return json.dumps({
            "type": ceremony_type,
            "challenge": challenge,
            "origin": self.origin,
            "crossOrigin": False,
        }, separators=(",", ":")).encode("utf-8")
