"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from checkin.types import (
    ApplicationStatus,
    ParticipantStatus,
    ScanOutcome,
    VolunteerStatus,
)


class DbError(RuntimeError):
    """Raised by database clients when a query or mutation fails."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _serialize(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _record_dict(record) -> dict:
    return {key: _serialize(value) for key, value in asdict(record).items()}


@dataclass
class ParticipantRecord:
    name: str
    email: str
    phone: str
    qr_code: str
    status: ParticipantStatus = ParticipantStatus.REGISTERED
    age: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    special_needs: Optional[str] = None
    registration_time: Optional[datetime] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return _record_dict(self)


@dataclass
class VolunteerRecord:
    name: str
    email: str
    user_id: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    tasks: list[str] = field(default_factory=list)
    assigned_duty: Optional[dict] = None
    status: VolunteerStatus = VolunteerStatus.ACTIVE
    join_date: Optional[datetime] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return _record_dict(self)


@dataclass
class ScanLogRecord:
    participant_id: str
    scan_time: datetime
    status: ScanOutcome
    volunteer_id: Optional[str] = None
    message: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return _record_dict(self)


@dataclass
class VolunteerApplicationRecord:
    user_id: str
    name: str
    email: str
    duty_id: str
    reason: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.PENDING
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return _record_dict(self)


@dataclass
class EventRecord:
    name: str
    date: str
    time: str
    venue: str
    capacity: int
    description: Optional[str] = None
    registered_count: int = 0
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return _record_dict(self)


class DbClient(Protocol):
    """Interface for database access."""

    def list_participants(self) -> list[ParticipantRecord]:
        ...

    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        ...

    def get_participant_by_qr(self, qr_code: str) -> Optional[ParticipantRecord]:
        ...

    def insert_participant(self, participant: ParticipantRecord) -> ParticipantRecord:
        ...

    def update_participant_status(
        self,
        participant_id: str,
        status: ParticipantStatus,
        *,
        unless_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        ...

    def bulk_update_participant_status(
        self, updates: Iterable[tuple[str, ParticipantStatus]]
    ) -> list[ParticipantRecord]:
        ...

    def list_participant_statuses(self) -> list[ParticipantStatus]:
        ...

    def list_volunteers(self) -> list[VolunteerRecord]:
        ...

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        ...

    def insert_volunteer(self, volunteer: VolunteerRecord) -> VolunteerRecord:
        ...

    def insert_scan_log(self, scan_log: ScanLogRecord) -> ScanLogRecord:
        ...

    def list_scan_logs(
        self, participant_id: Optional[str] = None
    ) -> list[ScanLogRecord]:
        ...

    def insert_volunteer_application(
        self, application: VolunteerApplicationRecord
    ) -> VolunteerApplicationRecord:
        ...

    def list_volunteer_applications(self) -> list[VolunteerApplicationRecord]:
        ...

    def insert_event(self, event: EventRecord) -> EventRecord:
        ...

    def list_events(self) -> list[EventRecord]:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.participants: Dict[str, ParticipantRecord] = {}
        self.volunteers: Dict[str, VolunteerRecord] = {}
        self.scan_logs: Dict[str, ScanLogRecord] = {}
        self.applications: Dict[str, VolunteerApplicationRecord] = {}
        self.events: Dict[str, EventRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.participants.clear()
        self.volunteers.clear()
        self.scan_logs.clear()
        self.applications.clear()
        self.events.clear()

    def list_participants(self) -> list[ParticipantRecord]:
        rows = sorted(
            self.participants.values(), key=lambda p: p.created_at, reverse=True
        )
        return [replace(row) for row in rows]

    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        row = self.participants.get(participant_id)
        return replace(row) if row else None

    def get_participant_by_qr(self, qr_code: str) -> Optional[ParticipantRecord]:
        for row in self.participants.values():
            if row.qr_code == qr_code:
                return replace(row)
        return None

    def insert_participant(self, participant: ParticipantRecord) -> ParticipantRecord:
        if participant.id in self.participants:
            raise DbError(f"participant {participant.id} already exists")
        if any(p.qr_code == participant.qr_code for p in self.participants.values()):
            raise DbError("duplicate qr_code")
        self.participants[participant.id] = replace(participant)
        return replace(participant)

    def update_participant_status(
        self,
        participant_id: str,
        status: ParticipantStatus,
        *,
        unless_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        row = self.participants.get(participant_id)
        if not row:
            return None
        if unless_status is not None and row.status == unless_status:
            return None
        row.status = status
        row.updated_at = _utcnow()
        return replace(row)

    def bulk_update_participant_status(
        self, updates: Iterable[tuple[str, ParticipantStatus]]
    ) -> list[ParticipantRecord]:
        updated: list[ParticipantRecord] = []
        for participant_id, status in updates:
            record = self.update_participant_status(
                participant_id, status, unless_status=ParticipantStatus.SCANNED
            )
            if record:
                updated.append(record)
        return updated

    def list_participant_statuses(self) -> list[ParticipantStatus]:
        return [row.status for row in self.participants.values()]

    def list_volunteers(self) -> list[VolunteerRecord]:
        rows = sorted(
            self.volunteers.values(), key=lambda v: v.created_at, reverse=True
        )
        return [replace(row) for row in rows]

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        for row in self.volunteers.values():
            if row.email == email:
                return replace(row)
        return None

    def insert_volunteer(self, volunteer: VolunteerRecord) -> VolunteerRecord:
        if any(v.email == volunteer.email for v in self.volunteers.values()):
            raise DbError("duplicate volunteer email")
        self.volunteers[volunteer.id] = replace(volunteer)
        return replace(volunteer)

    def insert_scan_log(self, scan_log: ScanLogRecord) -> ScanLogRecord:
        self.scan_logs[scan_log.id] = replace(scan_log)
        return replace(scan_log)

    def list_scan_logs(
        self, participant_id: Optional[str] = None
    ) -> list[ScanLogRecord]:
        return [
            replace(row)
            for row in self.scan_logs.values()
            if participant_id is None or row.participant_id == participant_id
        ]

    def insert_volunteer_application(
        self, application: VolunteerApplicationRecord
    ) -> VolunteerApplicationRecord:
        self.applications[application.id] = replace(application)
        return replace(application)

    def list_volunteer_applications(self) -> list[VolunteerApplicationRecord]:
        return [replace(row) for row in self.applications.values()]

    def insert_event(self, event: EventRecord) -> EventRecord:
        self.events[event.id] = replace(event)
        return replace(event)

    def list_events(self) -> list[EventRecord]:
        rows = sorted(self.events.values(), key=lambda e: e.date)
        return [replace(row) for row in rows]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.Session() as session:
            try:
                yield session
            except IntegrityError as exc:
                session.rollback()
                raise DbError(f"constraint violated: {exc.orig}") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise DbError(str(exc)) from exc

    def _to_participant(self, row: "ParticipantRow") -> ParticipantRecord:
        return ParticipantRecord(
            id=row.id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            qr_code=row.qr_code,
            status=ParticipantStatus(row.status),
            age=row.age,
            address=row.address,
            emergency_contact=row.emergency_contact,
            dietary_restrictions=row.dietary_restrictions,
            special_needs=row.special_needs,
            registration_time=row.registration_time,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_volunteer(self, row: "VolunteerRow") -> VolunteerRecord:
        return VolunteerRecord(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            role=row.role,
            tasks=list(row.tasks or []),
            assigned_duty=row.assigned_duty,
            status=VolunteerStatus(row.status),
            join_date=row.join_date,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_scan_log(self, row: "ScanLogRow") -> ScanLogRecord:
        return ScanLogRecord(
            id=row.id,
            participant_id=row.participant_id,
            volunteer_id=row.volunteer_id,
            scan_time=row.scan_time,
            status=ScanOutcome(row.status),
            message=row.message,
            created_at=row.created_at,
        )

    def _to_application(
        self, row: "VolunteerApplicationRow"
    ) -> VolunteerApplicationRecord:
        return VolunteerApplicationRecord(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            duty_id=row.duty_id,
            reason=row.reason,
            status=ApplicationStatus(row.status),
            created_at=row.created_at,
        )

    def _to_event(self, row: "EventRow") -> EventRecord:
        return EventRecord(
            id=row.id,
            name=row.name,
            date=row.date,
            time=row.time,
            venue=row.venue,
            description=row.description,
            capacity=row.capacity,
            registered_count=row.registered_count,
            created_at=row.created_at,
        )

    def list_participants(self) -> list[ParticipantRecord]:
        with self._session() as session:
            stmt = select(ParticipantRow).order_by(ParticipantRow.created_at.desc())
            rows = session.execute(stmt).scalars().all()
            return [self._to_participant(row) for row in rows]

    def get_participant(self, participant_id: str) -> Optional[ParticipantRecord]:
        with self._session() as session:
            row = session.get(ParticipantRow, participant_id)
            return self._to_participant(row) if row else None

    def get_participant_by_qr(self, qr_code: str) -> Optional[ParticipantRecord]:
        with self._session() as session:
            stmt = select(ParticipantRow).where(ParticipantRow.qr_code == qr_code)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_participant(row) if row else None

    def insert_participant(self, participant: ParticipantRecord) -> ParticipantRecord:
        with self._session() as session:
            row = ParticipantRow(
                id=participant.id,
                name=participant.name,
                email=participant.email,
                phone=participant.phone,
                qr_code=participant.qr_code,
                status=participant.status.value,
                age=participant.age,
                address=participant.address,
                emergency_contact=participant.emergency_contact,
                dietary_restrictions=participant.dietary_restrictions,
                special_needs=participant.special_needs,
                registration_time=participant.registration_time,
                created_at=participant.created_at,
                updated_at=participant.updated_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_participant(row)

    def update_participant_status(
        self,
        participant_id: str,
        status: ParticipantStatus,
        *,
        unless_status: Optional[ParticipantStatus] = None,
    ) -> Optional[ParticipantRecord]:
        with self._session() as session:
            stmt = update(ParticipantRow).where(ParticipantRow.id == participant_id)
            if unless_status is not None:
                stmt = stmt.where(ParticipantRow.status != unless_status.value)
            stmt = stmt.values(status=status.value, updated_at=_utcnow())
            result = session.execute(stmt.execution_options(synchronize_session=False))
            session.commit()
            if not result.rowcount:
                return None
            row = session.get(ParticipantRow, participant_id, populate_existing=True)
            return self._to_participant(row) if row else None

    def bulk_update_participant_status(
        self, updates: Iterable[tuple[str, ParticipantStatus]]
    ) -> list[ParticipantRecord]:
        now = _utcnow()
        updated_ids: list[str] = []
        with self._session() as session:
            for participant_id, status in updates:
                stmt = (
                    update(ParticipantRow)
                    .where(
                        ParticipantRow.id == participant_id,
                        ParticipantRow.status != ParticipantStatus.SCANNED.value,
                    )
                    .values(status=status.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if session.execute(stmt).rowcount:
                    updated_ids.append(participant_id)
            session.commit()
            if not updated_ids:
                return []
            rows = (
                session.execute(
                    select(ParticipantRow)
                    .where(ParticipantRow.id.in_(updated_ids))
                    .execution_options(populate_existing=True)
                )
                .scalars()
                .all()
            )
            return [self._to_participant(row) for row in rows]

    def list_participant_statuses(self) -> list[ParticipantStatus]:
        with self._session() as session:
            values = session.execute(select(ParticipantRow.status)).scalars().all()
            return [ParticipantStatus(value) for value in values]

    def list_volunteers(self) -> list[VolunteerRecord]:
        with self._session() as session:
            stmt = select(VolunteerRow).order_by(VolunteerRow.created_at.desc())
            rows = session.execute(stmt).scalars().all()
            return [self._to_volunteer(row) for row in rows]

    def get_volunteer_by_email(self, email: str) -> Optional[VolunteerRecord]:
        with self._session() as session:
            stmt = select(VolunteerRow).where(VolunteerRow.email == email)
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_volunteer(row) if row else None

    def insert_volunteer(self, volunteer: VolunteerRecord) -> VolunteerRecord:
        with self._session() as session:
            row = VolunteerRow(
                id=volunteer.id,
                user_id=volunteer.user_id,
                name=volunteer.name,
                email=volunteer.email,
                phone=volunteer.phone,
                role=volunteer.role,
                tasks=list(volunteer.tasks),
                assigned_duty=volunteer.assigned_duty,
                status=volunteer.status.value,
                join_date=volunteer.join_date,
                created_at=volunteer.created_at,
                updated_at=volunteer.updated_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_volunteer(row)

    def insert_scan_log(self, scan_log: ScanLogRecord) -> ScanLogRecord:
        with self._session() as session:
            row = ScanLogRow(
                id=scan_log.id,
                participant_id=scan_log.participant_id,
                volunteer_id=scan_log.volunteer_id,
                scan_time=scan_log.scan_time,
                status=scan_log.status.value,
                message=scan_log.message,
                created_at=scan_log.created_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_scan_log(row)

    def list_scan_logs(
        self, participant_id: Optional[str] = None
    ) -> list[ScanLogRecord]:
        with self._session() as session:
            stmt = select(ScanLogRow).order_by(ScanLogRow.scan_time.asc())
            if participant_id is not None:
                stmt = stmt.where(ScanLogRow.participant_id == participant_id)
            rows = session.execute(stmt).scalars().all()
            return [self._to_scan_log(row) for row in rows]

    def insert_volunteer_application(
        self, application: VolunteerApplicationRecord
    ) -> VolunteerApplicationRecord:
        with self._session() as session:
            row = VolunteerApplicationRow(
                id=application.id,
                user_id=application.user_id,
                name=application.name,
                email=application.email,
                duty_id=application.duty_id,
                reason=application.reason,
                status=application.status.value,
                created_at=application.created_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_application(row)

    def list_volunteer_applications(self) -> list[VolunteerApplicationRecord]:
        with self._session() as session:
            stmt = select(VolunteerApplicationRow).order_by(
                VolunteerApplicationRow.created_at.desc()
            )
            rows = session.execute(stmt).scalars().all()
            return [self._to_application(row) for row in rows]

    def insert_event(self, event: EventRecord) -> EventRecord:
        with self._session() as session:
            row = EventRow(
                id=event.id,
                name=event.name,
                date=event.date,
                time=event.time,
                venue=event.venue,
                description=event.description,
                capacity=event.capacity,
                registered_count=event.registered_count,
                created_at=event.created_at,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_event(row)

    def list_events(self) -> list[EventRecord]:
        with self._session() as session:
            stmt = select(EventRow).order_by(EventRow.date.asc())
            rows = session.execute(stmt).scalars().all()
            return [self._to_event(row) for row in rows]


Base = declarative_base()


class ParticipantRow(Base):
    __tablename__ = "participants"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=False)
    age = Column(String, nullable=True)
    address = Column(String, nullable=True)
    emergency_contact = Column(String, nullable=True)
    dietary_restrictions = Column(String, nullable=True)
    special_needs = Column(String, nullable=True)
    registration_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        String, nullable=False, index=True, default=ParticipantStatus.REGISTERED.value
    )
    qr_code = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class VolunteerRow(Base):
    __tablename__ = "volunteers"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=True)
    tasks = Column(JSON, nullable=False, default=list)
    assigned_duty = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=VolunteerStatus.ACTIVE.value)
    join_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class ScanLogRow(Base):
    __tablename__ = "scan_logs"

    id = Column(String, primary_key=True)
    participant_id = Column(String, nullable=False, index=True)
    volunteer_id = Column(String, nullable=True)
    scan_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)
    message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class VolunteerApplicationRow(Base):
    __tablename__ = "volunteer_applications"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    duty_id = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    status = Column(String, nullable=False, default=ApplicationStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), nullable=False)


class EventRow(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    date = Column(String, nullable=False)
    time = Column(String, nullable=False)
    venue = Column(String, nullable=False)
    description = Column(String, nullable=True)
    capacity = Column(Integer, nullable=False)
    registered_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
