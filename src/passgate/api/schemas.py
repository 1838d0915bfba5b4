"""Request models for the JSON ceremony endpoints.

Bodies are validated with pydantic before any ceremony logic runs; a
validation failure becomes MalformedRequest.
"""

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, StrictInt, ValidationError, model_validator

from ..errors import MalformedRequest


B64URL_REGEX = r"^[A-Za-z0-9_-]+$"

RequestT = TypeVar("RequestT", bound=BaseModel)


class BeginRegistrationRequest(BaseModel):
    """Start passkey registration for a signed-in user."""

    user_id: StrictInt


class FinishRegistrationRequest(BaseModel):
    """WebAuthn registration response from the browser."""

    user_id: StrictInt
    credential: Dict[str, Any]


class BeginAuthenticationRequest(BaseModel):
    """Start passkey sign-in by email or user id."""

    email: Optional[str] = Field(default=None, min_length=3, max_length=254)
    user_id: Optional[StrictInt] = None

    @model_validator(mode="after")
    def _require_identifier(self) -> "BeginAuthenticationRequest":
        if self.email is None and self.user_id is None:
            raise ValueError("email or user_id is required")
        return self

    @property
    def identifier(self):
        return self.user_id if self.user_id is not None else self.email


class FinishAuthenticationRequest(BaseModel):
    """WebAuthn assertion from the browser."""

    user_id: StrictInt
    assertion: Dict[str, Any]
    remember_me: bool = True


class ListCredentialsRequest(BaseModel):
    user_id: StrictInt


class DeleteCredentialRequest(BaseModel):
    user_id: StrictInt
    credential_id: str = Field(pattern=B64URL_REGEX)


class CheckUserRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)


class SendCodeRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    name: Optional[str] = Field(default=None, max_length=100)


class VerifyCodeRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    code: str = Field(min_length=1, max_length=32)
    remember_me: bool = False


def parse_request(model: Type[RequestT], payload: Any) -> RequestT:
    """
    Validate a request body.

    Raises:
        MalformedRequest: If the body does not fit the model
    """
    if not isinstance(payload, dict):
        raise MalformedRequest("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "body" for err in e.errors())
        raise MalformedRequest(f"Invalid request: {fields}") from e
