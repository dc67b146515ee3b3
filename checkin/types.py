"""
Shared enums for the check-in backend.
"""

from enum import Enum


class ParticipantStatus(str, Enum):
    REGISTERED = "registered"
    SCANNED = "scanned"
    CHECKED_IN = "checked-in"


class VolunteerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ScanOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    DUPLICATE = "duplicate"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Table(str, Enum):
    """Database tables, also used as change feed channel names."""

    PARTICIPANTS = "participants"
    VOLUNTEERS = "volunteers"
    SCAN_LOGS = "scan_logs"
    VOLUNTEER_APPLICATIONS = "volunteer_applications"
    EVENTS = "events"
