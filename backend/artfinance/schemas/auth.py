"""Authentication-related Pydantic schemas. JSON bodies use camelCase."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateRegistrationRequest(CamelModel):
    """Request to start a registration."""
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    continue_url: str = Field(min_length=1, max_length=2048)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name must not be empty")
        return value


class CreateSignInRequest(CamelModel):
    """Request to send a sign-in link to an existing user."""
    email: EmailStr
    continue_url: str = Field(min_length=1, max_length=2048)


class AuthRequestCreatedResponse(CamelModel):
    """Acknowledgment after a link was created. token is diagnostics-only."""
    success: bool = True
    message: str
    expires_at: datetime
    token: Optional[str] = None


class VerifyTokenRequest(CamelModel):
    """Request to verify a registration or sign-in token."""
    token: str = Field(min_length=1, max_length=128)


class VerifyTokenResponse(CamelModel):
    """Response after a token was consumed."""
    success: bool = True
    email: str
    name: Optional[str]
    continue_url: str
    uid: str
    custom_token: str
    is_new_user: bool


class CleanupResponse(CamelModel):
    success: bool = True
    deleted: int


class SessionRequest(CamelModel):
    """Exchange a custom token for a session cookie."""
    custom_token: str


class ProfileResponse(CamelModel):
    uid: str
    email: str
    name: Optional[str]
    created_at: datetime
    last_login_at: Optional[datetime]
    login_count: int
