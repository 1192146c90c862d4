"""Database models."""

from pokerclock.models.base import Base, TimestampMixin
from pokerclock.models.tournament import Tournament, TournamentClock, TournamentStatus

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Tournament
    "Tournament",
    "TournamentClock",
    "TournamentStatus",
]
