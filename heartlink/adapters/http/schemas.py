"""Request bodies accepted by the HTTP adapter."""

from datetime import datetime

from pydantic import BaseModel, Field


class RegistrationRequest(BaseModel):
    full_name: str
    email: str
    phone: str
    password: str
    username: str
    role: int = Field(description="1 = monitored user, 2 = responsible party")


class LoginRequest(BaseModel):
    email: str
    password: str


class ConnectRequest(BaseModel):
    user_id: int
    party_id: int


class SampleRequest(BaseModel):
    heart_rate: float
    timestamp: datetime | None = None
