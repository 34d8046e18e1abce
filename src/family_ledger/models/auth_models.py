"""Pydantic models for registration, login and the resolved principal."""

from pydantic import EmailStr, Field, field_validator

from family_ledger.models.ledger_models import CamelModel

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72  # bcrypt only reads the first 72 bytes


class Principal(CamelModel):
    """The authenticated identity behind a request."""

    id: str
    email: str
    name: str


class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        return v


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserResponse(CamelModel):
    id: str
    email: str
    name: str


class RegisterResponse(CamelModel):
    success: bool = True
    user: UserResponse


class MobileLoginResponse(CamelModel):
    user: UserResponse
    access_token: str


class LoginResponse(CamelModel):
    user: UserResponse
