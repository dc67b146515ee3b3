"""
Pydantic schemas for the check-in API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    # Optional here so a missing token gets our 400 rather than a 422.
    qrCode: Optional[str] = None
    volunteerId: Optional[str] = None


class ScanResult(BaseModel):
    participantId: str
    participantName: str
    scanTime: str
    status: Literal["success"] = "success"
    message: str
    volunteerId: Optional[str] = None


class ScanResponse(BaseModel):
    success: bool
    scanResult: ScanResult
    participant: dict


class ScanStatsPayload(BaseModel):
    total: int
    scanned: int
    checkedIn: int
    registered: int
    scanRate: str


class ScanStatsResponse(BaseModel):
    stats: ScanStatsPayload


class ParticipantRegistration(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    phone: str = Field(..., min_length=1, max_length=50)
    age: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    special_needs: Optional[str] = None


class ParticipantResponse(BaseModel):
    participant: dict


class ParticipantListResponse(BaseModel):
    participants: list[dict]


class AssignedDuty(BaseModel):
    id: str
    title: str
    description: str = ""
    location: str = ""
    status: str = ""
    priority: str = ""
    route: str = ""
    icon: str = ""
    shift: str = ""


class VolunteerCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    role: Optional[str] = None
    tasks: list[str] = Field(default_factory=list)
    assigned_duty: Optional[AssignedDuty] = None


class VolunteerResponse(BaseModel):
    volunteer: dict


class VolunteerListResponse(BaseModel):
    volunteers: list[dict]


class VolunteerApplicationCreate(BaseModel):
    duty_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, max_length=200)
    reason: Optional[str] = Field(default=None, max_length=2000)


class VolunteerApplicationResponse(BaseModel):
    application: dict


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    date: str
    time: str
    venue: str
    description: Optional[str] = None
    capacity: int = Field(..., ge=0)


class EventResponse(BaseModel):
    event: dict


class EventListResponse(BaseModel):
    events: list[dict]
