"""
============================================================================
LIVENESS SWEEP - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for the device registry plus the immutable records
the sweep works on.

The sweep never holds ORM instances across a phase: the repository
converts rows into frozen DeviceRecord / FamilyRecord values, so a
phase computes over a stable snapshot while writes go back to the
database as single-row field updates.
============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from config.constants import LivenessState
from utils.helpers import ChannelHelper, TimeHelper


class Base(DeclarativeBase):
    """Declarative base for all registry tables."""


# ============================================================================
# ORM MODELS
# ============================================================================

class Family(Base):
    """
    A guardian group. Guardian channels are spread across the current
    ``parent_tokens`` list and two legacy fields that may repeat entries.
    """
    __tablename__ = "families"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    parent_tokens: Mapped[list] = mapped_column(JSON, default=list)
    creator_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    partner_tokens: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=TimeHelper.get_utc_now
    )

    devices: Mapped[List["Device"]] = relationship(
        back_populates="family",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_record(self) -> "FamilyRecord":
        return FamilyRecord(
            id=self.id,
            name=self.name,
            parent_tokens=tuple(self.parent_tokens or ()),
            creator_token=self.creator_token,
            partner_tokens=tuple(self.partner_tokens or ()),
            devices=tuple(device.to_record() for device in self.devices),
        )

    def __repr__(self) -> str:
        return f"<Family id={self.id!r} devices={len(self.devices)}>"


class Device(Base):
    """
    A monitored child device. Addressed by ``(family_id, id)``.
    """
    __tablename__ = "devices"

    family_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("families.id", ondelete="CASCADE"),
        primary_key=True,
    )
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    notification_channel: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    channel_invalid: Mapped[bool] = mapped_column(Boolean, default=False)
    channel_invalid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Written by the dispatcher only
    last_probe_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_probe_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Send time of the oldest probe not yet answered; a probe response clears it
    first_unanswered_probe_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Written by the inbound report endpoint only
    last_probe_responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_heartbeat_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Written by the evaluator only
    liveness_state: Mapped[LivenessState] = mapped_column(
        SAEnum(LivenessState, native_enum=False, length=16),
        default=LivenessState.UNKNOWN,
    )
    blocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    family: Mapped[Family] = relationship(back_populates="devices")

    def to_record(self) -> "DeviceRecord":
        return DeviceRecord(
            family_id=self.family_id,
            id=self.id,
            name=self.name,
            notification_channel=self.notification_channel,
            channel_invalid=bool(self.channel_invalid),
            last_probe_sent_at=self.last_probe_sent_at,
            last_probe_id=self.last_probe_id,
            first_unanswered_probe_at=self.first_unanswered_probe_at,
            last_probe_responded_at=self.last_probe_responded_at,
            last_heartbeat_at=self.last_heartbeat_at,
            liveness_state=self.liveness_state or LivenessState.UNKNOWN,
            blocked_at=self.blocked_at,
        )

    def __repr__(self) -> str:
        return (
            f"<Device family={self.family_id!r} id={self.id!r} "
            f"state={self.liveness_state}>"
        )


# ============================================================================
# IMMUTABLE SNAPSHOT RECORDS
# ============================================================================

class DeviceKey(NamedTuple):
    """Registry address of a device."""
    family_id: str
    device_id: str

    def __str__(self) -> str:
        return f"{self.family_id}/{self.device_id}"


@dataclass(frozen=True)
class DeviceRecord:
    """Read-only view of a device row taken at snapshot time."""
    family_id: str
    id: str
    name: Optional[str] = None
    notification_channel: Optional[str] = None
    channel_invalid: bool = False
    last_probe_sent_at: Optional[datetime] = None
    last_probe_id: Optional[str] = None
    first_unanswered_probe_at: Optional[datetime] = None
    last_probe_responded_at: Optional[datetime] = None
    last_heartbeat_at: Optional[datetime] = None
    liveness_state: LivenessState = LivenessState.UNKNOWN
    blocked_at: Optional[datetime] = None

    @property
    def key(self) -> DeviceKey:
        return DeviceKey(self.family_id, self.id)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def has_usable_channel(self) -> bool:
        """Non-empty channel that has not been flagged as revoked."""
        return bool(self.notification_channel) and not self.channel_invalid

    @property
    def outstanding_since(self) -> Optional[datetime]:
        """
        When the current run of unanswered probes began. Rows written
        before the marker existed fall back to the latest probe.
        """
        return self.first_unanswered_probe_at or self.last_probe_sent_at

    @property
    def is_blocked(self) -> bool:
        return self.liveness_state is LivenessState.BLOCKED

    @property
    def is_responding(self) -> bool:
        return self.liveness_state.is_responding


@dataclass(frozen=True)
class FamilyRecord:
    """Read-only view of a family and its devices."""
    id: str
    name: Optional[str] = None
    parent_tokens: Tuple[str, ...] = ()
    creator_token: Optional[str] = None
    partner_tokens: Tuple[str, ...] = ()
    devices: Tuple[DeviceRecord, ...] = field(default_factory=tuple)

    def guardian_channels(self) -> List[str]:
        """
        Every known guardian channel, current field first, deduplicated.
        """
        return ChannelHelper.unique(
            [*self.parent_tokens, self.creator_token, *self.partner_tokens]
        )


@dataclass(frozen=True)
class RegistrySnapshot:
    """All families and their devices as read at one point in time."""
    families: Dict[str, FamilyRecord] = field(default_factory=dict)
    taken_at: Optional[datetime] = None

    @property
    def devices(self) -> List[DeviceRecord]:
        return [device for family in self.families.values() for device in family.devices]

    def __len__(self) -> int:
        return sum(len(family.devices) for family in self.families.values())
