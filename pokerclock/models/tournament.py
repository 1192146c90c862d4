"""Tournament and tournament clock models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pokerclock.models.base import Base, JSONType, TimestampMixin


class TournamentStatus(str, Enum):
    """Tournament status."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"  # Only active tournaments are reconciled
    PAUSED = "paused"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class Tournament(Base, TimestampMixin):
    """Tournament row.

    Owned by the tournament CRUD service; the clock engine only reads it,
    except for the optional auto-finish on schedule exhaustion.
    """

    __tablename__ = "tournaments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20),
        default=TournamentStatus.SCHEDULED.value,
        nullable=False,
        index=True,
    )

    # Level schedule
    blind_structure: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    """
    blind_structure:
    [
        {"level": 1, "small_blind": 25, "big_blind": 50, "ante": 0, "duration_minutes": 20},
        {"level": 2, "small_blind": 0, "big_blind": 0, "duration_minutes": 10, "is_break": true},
        ...
    ]
    """

    last_level_rebuy: Mapped[int | None] = mapped_column(Integer, nullable=True)

    clock: Mapped["TournamentClock | None"] = relationship(
        "TournamentClock",
        back_populates="tournament",
        uselist=False,
        cascade="all, delete-orphan",
    )


class TournamentClock(Base):
    """Persisted clock snapshot, one row per tournament."""

    __tablename__ = "tournament_clocks"

    tournament_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        primary_key=True,
    )
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    time_remaining_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_pause_time_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Some writers store naive timestamps; the store reads those as UTC
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="clock")
