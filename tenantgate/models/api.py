"""API response schemas for FastAPI endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserResponse(_CamelModel):
    id: str
    email: str
    name: str
    application: str
    email_verified: bool
    image: str | None
    created_at: datetime
    updated_at: datetime


class SessionResponse(_CamelModel):
    id: str
    user_id: str
    token: str
    expires_at: datetime
    ip_address: str
    user_agent: str


class ErrorResponse(BaseModel):
    error: str
    message: str
