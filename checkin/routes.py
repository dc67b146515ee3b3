"""
HTTP routes for the check-in API.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends

from checkin.auth import SessionUser
from checkin.data import CheckinData
from checkin.db import (
    EventRecord,
    ParticipantRecord,
    ScanLogRecord,
    VolunteerApplicationRecord,
    VolunteerRecord,
)
from checkin.dependencies import get_checkin_data, require_user
from checkin.errors import ApiError, ScanError
from checkin.schemas import (
    EventCreate,
    EventListResponse,
    EventResponse,
    ParticipantListResponse,
    ParticipantRegistration,
    ParticipantResponse,
    ScanRequest,
    ScanResponse,
    ScanResult,
    ScanStatsPayload,
    ScanStatsResponse,
    VolunteerApplicationCreate,
    VolunteerApplicationResponse,
    VolunteerCreate,
    VolunteerListResponse,
    VolunteerResponse,
)
from checkin.types import ParticipantStatus, ScanOutcome

logger = logging.getLogger(__name__)

router = APIRouter()


def record_scan_log(data: CheckinData, scan_log: ScanLogRecord) -> None:
    """Write the audit entry for a scan; failures are logged, never raised."""
    try:
        _, error = data.create_scan_log(scan_log)
    except Exception:
        logger.warning(
            "Scan log write failed for participant %s",
            scan_log.participant_id,
            exc_info=True,
        )
        return
    if error:
        logger.warning(
            "Scan log write failed for participant %s: %s",
            scan_log.participant_id,
            error,
        )


@router.post("/scan", response_model=ScanResponse)
def scan(
    payload: ScanRequest,
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    """
    Mark a participant as scanned.

    The status update is conditional on the participant not already being
    scanned, so two volunteers scanning the same badge at once cannot both
    succeed. The audit log entry is written after the response is sent.
    """
    if not payload.qrCode:
        raise ScanError(400, "QR code is required")

    participant, error = data.get_participant_by_qr(payload.qrCode)
    if error:
        raise ScanError(500, "Failed to process scan")
    if participant is None:
        raise ScanError(404, "Participant not found")

    if participant.status == ParticipantStatus.SCANNED:
        raise ScanError(409, "Participant already scanned", participant.as_dict())

    updated, error = data.update_participant_status(
        participant.id,
        ParticipantStatus.SCANNED,
        unless_status=ParticipantStatus.SCANNED,
    )
    if error:
        raise ScanError(500, "Failed to update participant status")
    if updated is None:
        # Lost the race against another scan of the same token.
        already = replace(participant, status=ParticipantStatus.SCANNED)
        raise ScanError(409, "Participant already scanned", already.as_dict())

    scan_time = datetime.now(timezone.utc)
    message = f"Successfully scanned {participant.name}"
    background_tasks.add_task(
        record_scan_log,
        data,
        ScanLogRecord(
            participant_id=participant.id,
            volunteer_id=payload.volunteerId,
            scan_time=scan_time,
            status=ScanOutcome.SUCCESS,
            message=message,
        ),
    )
    logger.info("Participant %s scanned by %s", participant.id, user.email)

    return ScanResponse(
        success=True,
        scanResult=ScanResult(
            participantId=participant.id,
            participantName=participant.name,
            scanTime=scan_time.isoformat(),
            message=message,
            volunteerId=payload.volunteerId,
        ),
        participant=updated.as_dict(),
    )


@router.get("/scan", response_model=ScanStatsResponse)
@router.get("/scan/stats", response_model=ScanStatsResponse)
def scan_stats(data: CheckinData = Depends(get_checkin_data)):
    stats = data.get_scan_stats()
    return ScanStatsResponse(
        stats=ScanStatsPayload(
            total=stats.total,
            scanned=stats.scanned,
            checkedIn=stats.checked_in,
            registered=stats.registered,
            scanRate=stats.scan_rate,
        )
    )


@router.post("/participants", response_model=ParticipantResponse, status_code=201)
def register_participant(
    payload: ParticipantRegistration,
    data: CheckinData = Depends(get_checkin_data),
):
    record = ParticipantRecord(
        **payload.model_dump(),
        qr_code=secrets.token_urlsafe(16),
        status=ParticipantStatus.REGISTERED,
        registration_time=datetime.now(timezone.utc),
    )
    created, error = data.create_participant(record)
    if error:
        raise ApiError(500, "Failed to register participant")
    return ParticipantResponse(participant=created.as_dict())


@router.get("/participants", response_model=ParticipantListResponse)
def list_participants(
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    participants, error = data.get_participants()
    if error:
        raise ApiError(500, "Failed to fetch participants")
    return ParticipantListResponse(participants=[p.as_dict() for p in participants])


@router.get("/volunteers", response_model=VolunteerListResponse)
def list_volunteers(
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    volunteers, error = data.get_volunteers()
    if error:
        raise ApiError(500, "Failed to fetch volunteers")
    return VolunteerListResponse(volunteers=[v.as_dict() for v in volunteers])


@router.get("/volunteers/me", response_model=VolunteerResponse)
def current_volunteer(
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    volunteer, error = data.get_volunteer_by_email(user.email)
    if error:
        raise ApiError(500, "Failed to fetch volunteer")
    if volunteer is None:
        raise ApiError(404, "Volunteer not found")
    return VolunteerResponse(volunteer=volunteer.as_dict())


@router.post("/volunteers", response_model=VolunteerResponse, status_code=201)
def create_volunteer(
    payload: VolunteerCreate,
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    now = datetime.now(timezone.utc)
    record = VolunteerRecord(
        user_id=user.user_id,
        name=payload.name or user.name or user.email,
        email=user.email,
        phone=payload.phone,
        role=payload.role,
        tasks=payload.tasks,
        assigned_duty=(
            payload.assigned_duty.model_dump() if payload.assigned_duty else None
        ),
        join_date=now,
    )
    created, error = data.create_volunteer(record)
    if error:
        raise ApiError(500, "Failed to create volunteer")
    return VolunteerResponse(volunteer=created.as_dict())


@router.post(
    "/volunteer-applications",
    response_model=VolunteerApplicationResponse,
    status_code=201,
)
def apply_to_volunteer(
    payload: VolunteerApplicationCreate,
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    record = VolunteerApplicationRecord(
        user_id=user.user_id,
        name=payload.name or user.name or user.email,
        email=user.email,
        duty_id=payload.duty_id,
        reason=payload.reason,
    )
    created, error = data.create_volunteer_application(record)
    if error:
        raise ApiError(500, "Failed to submit application")
    return VolunteerApplicationResponse(application=created.as_dict())


@router.get("/events", response_model=EventListResponse)
def list_events(data: CheckinData = Depends(get_checkin_data)):
    events, error = data.get_events()
    if error:
        raise ApiError(500, "Failed to fetch events")
    return EventListResponse(events=[e.as_dict() for e in events])


@router.post("/events", response_model=EventResponse, status_code=201)
def create_event(
    payload: EventCreate,
    user: SessionUser = Depends(require_user),
    data: CheckinData = Depends(get_checkin_data),
):
    created, error = data.create_event(EventRecord(**payload.model_dump()))
    if error:
        raise ApiError(500, "Failed to create event")
    return EventResponse(event=created.as_dict())
