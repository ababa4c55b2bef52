"""Pydantic models validating REST bodies and WebSocket messages at the boundary."""
from pydantic import BaseModel, ConfigDict, Field, field_validator

USERNAME_MIN = 2
USERNAME_MAX = 20
_EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class _Inbound(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)


class SubmitRequest(_Inbound):
    answer: float = Field(..., strict=True, allow_inf_nan=False)
    username: str = Field(..., min_length=USERNAME_MIN, max_length=USERNAME_MAX)
    user_id: str | None = Field(None, alias="userId")


class CreateUserRequest(_Inbound):
    username: str = Field(..., min_length=USERNAME_MIN, max_length=USERNAME_MAX)
    email: str | None = Field(None, pattern=_EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class JoinMessage(_Inbound):
    username: str = Field(..., min_length=USERNAME_MIN, max_length=USERNAME_MAX)
    user_id: str | None = Field(None, alias="userId")
    token: str | None = None


class SubmitMessage(_Inbound):
    answer: float = Field(..., strict=True, allow_inf_nan=False)
    timestamp: float | None = None
