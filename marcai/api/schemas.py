from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marcai.storage.models import CredentialPair


class Envelope(BaseModel):
    """Response wrapper used by every backend endpoint."""

    success: bool = True
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    code: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class TokenPair(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    def to_credentials(self) -> CredentialPair:
        return CredentialPair(self.access_token, self.refresh_token)


class RefreshPayload(BaseModel):
    tokens: TokenPair


class AuthPayload(BaseModel):
    """Body of ``data`` for login and registration responses."""

    user: dict
    tenant: Optional[dict] = None
    tokens: TokenPair


class ProfilePayload(BaseModel):
    """Body of ``data`` for ``GET /auth/me``."""

    user: dict
    tenant: Optional[dict] = None


class Schedule(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")
    day_of_week: int = Field(alias="dayOfWeek", ge=0, le=6)
    label: Optional[str] = None
    is_active: bool = Field(default=True, alias="isActive")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    break_start_time: Optional[str] = Field(default=None, alias="breakStartTime")
    break_end_time: Optional[str] = Field(default=None, alias="breakEndTime")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("start_time", "end_time", "break_start_time", "break_end_time")
    @classmethod
    def _validate_clock(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        hours, sep, minutes = value.partition(":")
        if not sep or not (hours.isdigit() and minutes.isdigit()):
            raise ValueError("time must be formatted as HH:MM")
        if not (0 <= int(hours) <= 23 and 0 <= int(minutes) <= 59):
            raise ValueError("time out of range")
        return value


class AppointmentClient(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")
    nome: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Appointment(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")
    data_hora: str = Field(alias="dataHora")
    cliente: Optional[AppointmentClient] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScheduleOverview(BaseModel):
    disponibilidade: List[Schedule] = Field(default_factory=list)
    agendamentos: List[Appointment] = Field(default_factory=list)


class AvailableSlots(BaseModel):
    date: str
    slots: List[str] = Field(default_factory=list)
