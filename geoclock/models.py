from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from geoclock.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CaptureType(str, enum.Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


class LocationSource(str, enum.Enum):
    GPS = "gps"
    NETWORK = "network"
    PASSIVE = "passive"
    MANUAL = "manual"


class VerificationStatus(str, enum.Enum):
    APPROVED = "approved"
    FLAGGED = "flagged"
    REJECTED = "rejected"


class PermissionStatus(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    NOT_REQUESTED = "not_requested"


class PermissionType(str, enum.Enum):
    PRECISE = "precise"
    APPROXIMATE = "approximate"
    DENIED = "denied"


class AuditActorType(str, enum.Enum):
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class ClinicalSite(Base):
    __tablename__ = "clinical_sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    locations: Mapped[list[ClinicalSiteLocation]] = relationship(back_populates="clinical_site")


class ClinicalSiteLocation(Base):
    __tablename__ = "clinical_site_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    clinical_site_id: Mapped[int] = mapped_column(
        ForeignKey("clinical_sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    strict_geofence: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    clinical_site: Mapped[ClinicalSite] = relationship(back_populates="locations")


class TimeRecord(Base):
    __tablename__ = "time_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    clinical_site_id: Mapped[int | None] = mapped_column(
        ForeignKey("clinical_sites.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    clock_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clock_in_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_in_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_in_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_in_source: Mapped[LocationSource | None] = mapped_column(
        Enum(LocationSource, name="location_source", values_callable=_enum_values),
        nullable=True,
    )
    clock_out_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_source: Mapped[LocationSource | None] = mapped_column(
        Enum(LocationSource, name="location_source", values_callable=_enum_values),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    clinical_site: Mapped[ClinicalSite | None] = relationship()
    verifications: Mapped[list[LocationVerification]] = relationship(back_populates="time_record")


class LocationVerification(Base):
    __tablename__ = "location_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    time_record_id: Mapped[int] = mapped_column(
        ForeignKey("time_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    verification_type: Mapped[CaptureType] = mapped_column(
        Enum(CaptureType, name="location_verification_type", values_callable=_enum_values),
        nullable=False,
    )
    # Encrypted payload; user_longitude holds the encryption marker.
    user_latitude: Mapped[str] = mapped_column(Text, nullable=False)
    user_longitude: Mapped[str] = mapped_column(String(64), nullable=False)
    encryption_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    user_accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    location_source: Mapped[LocationSource] = mapped_column(
        Enum(LocationSource, name="location_source", values_callable=_enum_values),
        nullable=False,
    )
    clinical_site_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("clinical_site_locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    distance_from_site: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_within_geofence: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, name="location_verification_status", values_callable=_enum_values),
        nullable=False,
    )
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    verification_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    time_record: Mapped[TimeRecord] = relationship(back_populates="verifications")


class LocationAccuracyLog(Base):
    __tablename__ = "location_accuracy_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    time_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("time_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    latitude: Mapped[str] = mapped_column(Text, nullable=False)
    longitude: Mapped[str] = mapped_column(String(64), nullable=False)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    location_source: Mapped[LocationSource] = mapped_column(
        Enum(LocationSource, name="location_source", values_callable=_enum_values),
        nullable=False,
    )
    verification_type: Mapped[CaptureType | None] = mapped_column(
        Enum(CaptureType, name="location_verification_type", values_callable=_enum_values),
        nullable=True,
    )
    verification_status: Mapped[VerificationStatus | None] = mapped_column(
        Enum(VerificationStatus, name="location_verification_status", values_callable=_enum_values),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )


class LocationPermission(Base):
    __tablename__ = "location_permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    permission_status: Mapped[PermissionStatus] = mapped_column(
        Enum(PermissionStatus, name="location_permission_status", values_callable=_enum_values),
        nullable=False,
    )
    permission_type: Mapped[PermissionType | None] = mapped_column(
        Enum(PermissionType, name="location_permission_type", values_callable=_enum_values),
        nullable=True,
    )
    browser_info: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    permission_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
