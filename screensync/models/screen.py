"""
Screen-side database models.

Defines: Location, Screen
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from screensync.models.base import Base, Status, TimestampMixin


class Location(Base, TimestampMixin):
    """Physical venue hosting one or more screens."""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region_code: Mapped[str | None] = mapped_column(
        String(8), nullable=True, comment="Province code, e.g. ZH"
    )
    status: Mapped[int] = mapped_column(Integer, default=Status.ACTIVE)

    screens: Mapped[list["Screen"]] = relationship(
        "Screen", back_populates="location", lazy="selectin"
    )


class Screen(Base, TimestampMixin):
    """
    A physical display linked to a remote player.

    The three playlist columns hold remote playlist IDs and are populated
    lazily by the first reconciliation. A remote playlist ID is never
    referenced by more than one screen.
    """

    __tablename__ = "screens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    player_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, comment="Remote player ID"
    )
    location_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("locations.id"), nullable=True
    )
    city: Mapped[str | None] = mapped_column(
        String(128), nullable=True, comment="Overrides the location city"
    )
    status: Mapped[int] = mapped_column(Integer, default=Status.ACTIVE)

    # Canonical playlist triplet (remote IDs)
    baseline_playlist_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ads_playlist_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    combined_playlist_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Push / verify audit
    last_push_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_push_result: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_push_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_verify_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_verify_result: Mapped[str | None] = mapped_column(String(16), nullable=True)
    last_verify_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    location: Mapped["Location | None"] = relationship(
        "Location", back_populates="screens", lazy="selectin"
    )

    @property
    def effective_city(self) -> str | None:
        """Screen city, falling back to the location city."""
        if self.city:
            return self.city
        return self.location.city if self.location else None

    @property
    def region_code(self) -> str | None:
        return self.location.region_code if self.location else None

    @property
    def playlist_ids(self) -> tuple[str | None, str | None, str | None]:
        return (self.baseline_playlist_id, self.ads_playlist_id, self.combined_playlist_id)

    @property
    def is_provisioned(self) -> bool:
        return all(self.playlist_ids)
