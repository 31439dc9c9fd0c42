"""Request payload validation.

Bodies are parsed with pydantic models. Validators never raise on bad input:
they return a :class:`ValidationResult` holding either the parsed model or the
list of field errors, one per offending field.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

MIN_PASSWORD_LENGTH = 8

T = TypeVar("T", bound="_RequestModel")


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True, slots=True)
class ValidationResult(Generic[T]):
    value: T | None = None
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        """First error message, used as the user-facing 400 text."""
        return self.errors[0].message if self.errors else ""


class _RequestModel(BaseModel):
    # User-facing message per field, whatever pydantic's own error was
    messages: ClassVar[dict[str, str]] = {}

    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def _strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class SendOtpRequest(_RequestModel):
    messages: ClassVar[dict[str, str]] = {"email": "Invalid email address"}

    email: EmailStr


class VerifyOtpRequest(_RequestModel):
    messages: ClassVar[dict[str, str]] = {
        "email": "Invalid email address",
        "otp": "OTP must be 6 digits",
    }

    email: EmailStr
    otp: str = Field(pattern=r"^[0-9]{6}$")


class SignUpRequest(_RequestModel):
    messages: ClassVar[dict[str, str]] = {
        "email": "Invalid email address",
        "password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        "name": "Name must be a string",
    }

    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    name: str = ""
    application: str

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return "" if value is None else value


class SignInRequest(_RequestModel):
    messages: ClassVar[dict[str, str]] = {
        "email": "Invalid email address",
        "password": "Password is required",
    }

    email: EmailStr
    password: str = Field(min_length=1)


def _as_dict(body: Any) -> dict[str, Any]:
    return body if isinstance(body, dict) else {}


def _field_errors(model: type[_RequestModel], exc: ValidationError) -> tuple[FieldError, ...]:
    errors: list[FieldError] = []
    seen: set[str] = set()
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else ""
        if field in seen:
            continue
        seen.add(field)
        errors.append(FieldError(field, model.messages.get(field, error["msg"])))
    return tuple(errors)


def _parse(model: type[T], data: dict[str, Any]) -> ValidationResult[T]:
    try:
        return ValidationResult(value=model.model_validate(data))
    except ValidationError as exc:
        return ValidationResult(errors=_field_errors(model, exc))


def validate_email_payload(body: Any) -> ValidationResult[SendOtpRequest]:
    return _parse(SendOtpRequest, _as_dict(body))


def validate_verify_payload(body: Any) -> ValidationResult[VerifyOtpRequest]:
    return _parse(VerifyOtpRequest, _as_dict(body))


def validate_sign_up(body: Any, application: str) -> ValidationResult[SignUpRequest]:
    """Validate a sign-up body, stamping the caller's application onto it.

    Any ``application`` field supplied in the body is ignored.
    """
    return _parse(SignUpRequest, {**_as_dict(body), "application": application})


def validate_sign_in(body: Any) -> ValidationResult[SignInRequest]:
    return _parse(SignInRequest, _as_dict(body))
