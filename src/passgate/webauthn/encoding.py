"""
WebAuthn Wire Decoding

Turns the JSON credential payloads produced by the browser into parsed
fido2 structures. Every byte field is base64url without padding.

Anything that fails to decode raises MalformedRequest; callers parse
before touching the challenge cache or the credential store, so a
garbage payload never consumes a pending ceremony.
"""

import binascii
import re
import struct
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)

from ..errors import MalformedRequest


# Library decoders raise a variety of exceptions on bad input
DECODE_ERRORS = (
    ValueError,
    KeyError,
    TypeError,
    IndexError,
    AttributeError,
    struct.error,
    binascii.Error,
    UnicodeDecodeError,
)

B64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return websafe_encode(data)


def b64url_decode(value: Any, field: str) -> bytes:
    """
    Decode an unpadded base64url string.

    Args:
        value: Wire value
        field: Field name, used in the error message

    Raises:
        MalformedRequest: If the value is missing or not base64url
    """
    if not isinstance(value, str) or not value:
        raise MalformedRequest(f"{field} must be a non-empty base64url string")
    if not B64URL_PATTERN.match(value):
        raise MalformedRequest(f"{field} must be unpadded base64url")
    try:
        return websafe_decode(value)
    except DECODE_ERRORS as e:
        raise MalformedRequest(f"{field} is not valid base64url") from e


def _require_mapping(value: Any, field: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise MalformedRequest(f"{field} must be an object")
    return value


def parse_client_data(raw: bytes, expected_type: str) -> CollectedClientData:
    """Parse clientDataJSON and check the ceremony type."""
    try:
        client_data = CollectedClientData(raw)
        client_type = client_data.type
        origin = client_data.origin
    except DECODE_ERRORS as e:
        raise MalformedRequest("clientDataJSON could not be parsed") from e
    if client_type != expected_type:
        raise MalformedRequest(f"clientDataJSON type must be {expected_type}")
    if not isinstance(origin, str):
        raise MalformedRequest("clientDataJSON origin must be a string")
    return client_data


def _read_credential_id(payload: Mapping) -> bytes:
    raw_id = b64url_decode(payload.get("rawId"), "rawId")
    declared = payload.get("id")
    if declared is not None and declared != b64url_encode(raw_id):
        raise MalformedRequest("id does not match rawId")
    return raw_id


@dataclass(frozen=True)
class RegistrationResponse:
    """Decoded attestation (registration) response."""
    credential_id: bytes
    client_data: CollectedClientData
    attestation: AttestationObject

    @property
    def auth_data(self) -> AuthenticatorData:
        return self.attestation.auth_data

    @property
    def credential_data(self) -> AttestedCredentialData:
        return self.attestation.auth_data.credential_data


@dataclass(frozen=True)
class AssertionResponse:
    """Decoded assertion (authentication) response."""
    credential_id: bytes
    client_data: CollectedClientData
    authenticator_data: AuthenticatorData
    signature: bytes
    user_handle: Optional[bytes] = None

    @property
    def signed_payload(self) -> bytes:
        """authenticatorData || SHA-256(clientDataJSON)."""
        return bytes(self.authenticator_data) + self.client_data.hash


def parse_registration_response(payload: Any) -> RegistrationResponse:
    """
    Decode a registration credential.

    Expected shape:
        {id, rawId, response: {attestationObject, clientDataJSON}}

    Raises:
        MalformedRequest: On any structural or encoding problem
    """
    payload = _require_mapping(payload, "credential")
    response = _require_mapping(payload.get("response"), "credential.response")
    credential_id = _read_credential_id(payload)

    client_data = parse_client_data(
        b64url_decode(response.get("clientDataJSON"), "clientDataJSON"),
        CollectedClientData.TYPE.CREATE.value,
    )
    raw_attestation = b64url_decode(response.get("attestationObject"), "attestationObject")
    try:
        attestation = AttestationObject(raw_attestation)
        auth_data = attestation.auth_data
        credential_data = auth_data.credential_data
    except DECODE_ERRORS as e:
        raise MalformedRequest("attestationObject could not be parsed") from e

    if credential_data is None:
        raise MalformedRequest("attestationObject carries no attested credential data")
    if not auth_data.is_user_present():
        raise MalformedRequest("user presence flag not set")
    if bytes(credential_data.credential_id) != credential_id:
        raise MalformedRequest("rawId does not match attested credential id")

    return RegistrationResponse(
        credential_id=credential_id,
        client_data=client_data,
        attestation=attestation,
    )


def parse_assertion_response(payload: Any) -> AssertionResponse:
    """
    Decode an authentication assertion.

    Expected shape:
        {id, rawId, response: {authenticatorData, clientDataJSON,
                               signature, userHandle?}}

    Raises:
        MalformedRequest: On any structural or encoding problem
    """
    payload = _require_mapping(payload, "assertion")
    response = _require_mapping(payload.get("response"), "assertion.response")
    credential_id = _read_credential_id(payload)

    client_data = parse_client_data(
        b64url_decode(response.get("clientDataJSON"), "clientDataJSON"),
        CollectedClientData.TYPE.GET.value,
    )
    raw_auth_data = b64url_decode(response.get("authenticatorData"), "authenticatorData")
    try:
        authenticator_data = AuthenticatorData(raw_auth_data)
    except DECODE_ERRORS as e:
        raise MalformedRequest("authenticatorData could not be parsed") from e
    if not authenticator_data.is_user_present():
        raise MalformedRequest("user presence flag not set")

    signature = b64url_decode(response.get("signature"), "signature")

    user_handle = None
    if response.get("userHandle"):
        user_handle = b64url_decode(response["userHandle"], "userHandle")

    return AssertionResponse(
        credential_id=credential_id,
        client_data=client_data,
        authenticator_data=authenticator_data,
        signature=signature,
        user_handle=user_handle,
    )
