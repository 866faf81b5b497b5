"""SQLAlchemy 2.0 async database layer.

This module provides:

- ``Base`` -- declarative base class shared by all ORM models.
- ``Host`` -- a car owner listing vehicles on the platform.
- ``Car`` -- a listed vehicle with the attributes the gate reads.
- ``Booking`` -- the rental booking carrying every risk signal.
- ``TripCharge`` -- post-trip charge record, only ever status-transitioned.
- ``Dispute`` -- guest- or host-raised contestation of a booking outcome.
- ``RiskAuditEntry`` -- immutable audit trail of admin and workflow actions.
- ``HostBackgroundCheck`` -- one stage of a host's background check.
- ``engine`` -- shared ``AsyncEngine`` instance.
- ``async_session`` -- ``async_sessionmaker`` factory bound to ``engine``.
- ``get_db`` -- async generator for use with FastAPI ``Depends``.
- ``get_session_factory`` -- dependency exposing the session factory for fan-out reads.
- ``create_tables`` -- coroutine that issues ``CREATE TABLE IF NOT EXISTS`` for all models.

SQLite is configured to run in WAL (Write-Ahead Logging) mode so that the
concurrent reads issued by a risk analysis are never blocked by an admin
action or ingestion write.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from riskgate.config import settings


def utcnow() -> datetime:
    """Timezone-aware current UTC time used for every stored timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------


def _set_sqlite_wal(dbapi_connection: Any, connection_record: Any) -> None:  # noqa: ANN401
    """Switch every new SQLite connection to write-ahead logging.

    The risk analysis fan-out reads on several connections at once while the
    queue or an admin action may be writing.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, registering WAL mode for SQLite backends."""
    new_engine = create_async_engine(database_url, echo=False, future=True)
    if "sqlite" in database_url:
        event.listen(new_engine.sync_engine, "connect", _set_sqlite_wal)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


engine: AsyncEngine = build_engine(settings.DATABASE_URL)

async_session: async_sessionmaker[AsyncSession] = build_session_factory(engine)

# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Declarative base; ``create_tables`` walks its metadata."""


# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------


class Host(Base):
    """ORM model for the ``rental_hosts`` table.

    ``is_verified`` is the platform trust flag read by the verification
    gate.  It only becomes ``True`` once every background check stage passes.
    """

    __tablename__ = "rental_hosts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="True once the host has passed every background check stage.",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    cars: Mapped[list[Car]] = relationship("Car", back_populates="host", lazy="select")
    background_checks: Mapped[list[HostBackgroundCheck]] = relationship(
        "HostBackgroundCheck",
        back_populates="host",
        lazy="select",
    )


class Car(Base):
    """ORM model for the ``rental_cars`` table."""

    __tablename__ = "rental_cars"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    host_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("rental_hosts.id"),
        nullable=False,
    )
    make: Mapped[str] = mapped_column(String, nullable=False)
    model: Mapped[str] = mapped_column(String, nullable=False)
    car_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="economy",
        doc="Vehicle class, e.g. economy, suv, luxury, exotic.",
    )
    daily_rate: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        doc="Listed price per day in USD; the price tier read by the gate.",
    )
    instant_book: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="False when every booking needs host approval.",
    )

    host: Mapped[Host] = relationship("Host", back_populates="cars", lazy="select")


class Booking(Base):
    """ORM model for the ``rental_bookings`` table.

    Each row is one rental booking and doubles as the signal store read by
    every risk analysis component.

    Indexed columns:
        - ``device_fingerprint`` -- relationship linking and velocity.
        - ``booking_ip_address`` -- relationship linking and velocity.
        - ``guest_email`` -- relationship linking and velocity.
        - ``verification_status`` -- verification queue scans.
    """

    __tablename__ = "rental_bookings"

    __table_args__ = (
        Index("ix_rental_bookings_device_fingerprint", "device_fingerprint"),
        Index("ix_rental_bookings_booking_ip_address", "booking_ip_address"),
        Index("ix_rental_bookings_guest_email", "guest_email"),
        Index("ix_rental_bookings_verification_status", "verification_status"),
        Index("ix_rental_bookings_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    booking_code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    car_id: Mapped[str] = mapped_column(String, ForeignKey("rental_cars.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="PENDING",
        doc="Commercial status: PENDING, CONFIRMED, ACTIVE, COMPLETED, CANCELLED, BLOCKED.",
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Guest
    guest_name: Mapped[str | None] = mapped_column(String, nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String, nullable=True)
    email_domain: Mapped[str | None] = mapped_column(String, nullable=True)

    # Risk attributes
    risk_score: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        doc="Composite risk score in [0, 100]; null until computed.",
    )
    risk_flags: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Ordered list of risk flag strings supplied by upstream signal producers.",
    )
    device_fingerprint: Mapped[str | None] = mapped_column(String, nullable=True)
    booking_ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    booking_country: Mapped[str | None] = mapped_column(String, nullable=True)
    booking_city: Mapped[str | None] = mapped_column(String, nullable=True)
    session_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    interaction_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    copy_paste_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validation_error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    license_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    selfie_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    license_photo_url: Mapped[str | None] = mapped_column(String, nullable=True)
    selfie_photo_url: Mapped[str | None] = mapped_column(String, nullable=True)

    # Commercial attributes
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    daily_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    number_of_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Verification lifecycle
    verification_status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="NOT_REQUIRED",
        doc="Verification state machine position.",
    )
    documents_submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_fraudulent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Post-trip attributes
    trip_status: Mapped[str | None] = mapped_column(String, nullable=True)
    trip_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    trip_ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    start_mileage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_mileage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fuel_level_start: Mapped[str | None] = mapped_column(String, nullable=True)
    fuel_level_end: Mapped[str | None] = mapped_column(String, nullable=True)
    actual_end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    damage_reported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    damage_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending_charges_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    car: Mapped[Car] = relationship("Car", lazy="select")
    trip_charges: Mapped[list[TripCharge]] = relationship(
        "TripCharge",
        back_populates="booking",
        lazy="select",
        order_by="TripCharge.created_at.desc()",
    )
    disputes: Mapped[list[Dispute]] = relationship(
        "Dispute",
        back_populates="booking",
        lazy="select",
    )


class TripCharge(Base):
    """ORM model for the ``trip_charges`` table.

    Valid ``charge_status`` values:
        - ``PENDING`` -- computed, awaiting review.
        - ``UNDER_REVIEW`` -- guest asked for a review.
        - ``DISPUTED`` -- guest disputed one or more components.
        - ``FAILED`` -- an upstream capture attempt failed.
        - ``APPROVED`` -- an operator cleared the charges for capture.
        - ``FULLY_WAIVED`` -- an operator waived the whole amount.
        - ``PARTIALLY_WAIVED`` -- an operator waived a percentage.
    """

    __tablename__ = "trip_charges"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    booking_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("rental_bookings.id"),
        nullable=False,
        index=True,
    )
    mileage_charge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fuel_charge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    late_charge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    damage_charge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cleaning_charge: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_charges: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    charge_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    waived_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    waive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    waived_by: Mapped[str | None] = mapped_column(String, nullable=True)
    waived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=utcnow, nullable=True)

    booking: Mapped[Booking] = relationship("Booking", back_populates="trip_charges")


class Dispute(Base):
    """ORM model for the ``rental_disputes`` table."""

    __tablename__ = "rental_disputes"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    booking_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("rental_bookings.id"),
        nullable=False,
        index=True,
    )
    dispute_type: Mapped[str] = mapped_column(String, nullable=False, default="OTHER")
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="OPEN",
        doc="OPEN, UNDER_REVIEW or RESOLVED.",
    )
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    review_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    booking: Mapped[Booking] = relationship("Booking", back_populates="disputes")


class RiskAuditEntry(Base):
    """ORM model for the ``risk_audit_log`` table.

    Rows are written in the same transaction as the booking mutation they
    describe and are never updated afterwards.
    """

    __tablename__ = "risk_audit_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    booking_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("rental_bookings.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    event: Mapped[str] = mapped_column(
        String,
        nullable=False,
        doc="Signal emitted by the action, e.g. risk_override or whitelist_added.",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    admin_id: Mapped[str | None] = mapped_column(String, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class HostBackgroundCheck(Base):
    """ORM model for the ``host_background_checks`` table.

    One row per (host, stage).  Stages are advanced independently by an
    external scheduler or task queue.
    """

    __tablename__ = "host_background_checks"

    __table_args__ = (
        Index("ix_host_background_checks_host_stage", "host_id", "stage", unique=True),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    host_id: Mapped[str] = mapped_column(String, ForeignKey("rental_hosts.id"), nullable=False)
    stage: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    host: Mapped[Host] = relationship("Host", back_populates="background_checks")


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Issue ``CREATE TABLE`` for every mapped model that is missing.

    Runs ``create_all`` through ``run_sync`` and is idempotent, so startup
    calls it unconditionally.

    Args:
        bind: Engine to create the tables on.  Defaults to the shared engine.

    Example::

        from riskgate.models.database import create_tables
        import asyncio
        asyncio.run(create_tables())
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for ``Depends``.

    Whatever transaction is still open when the request finishes is rolled
    back as the session closes.

    Yields:
        AsyncSession: Session from the shared factory.
    """
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory used by components that fan out reads.

    ``AsyncSession`` is not safe for concurrent use, so every concurrent
    read opens its own session from this factory.
    """
    return async_session
