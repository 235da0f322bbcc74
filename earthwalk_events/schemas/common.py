"""
Common Schema Types
==================

Bounded Context: Shared Data Structures

Design Principles:
- Immutability: frozen=True prevents accidental mutation
- Serialization: to_dict() for JSON export
- Validation: Constructor validates invariants

Types:
- Timestamp: ISO 8601 timestamp wrapper
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class Timestamp:
    """
    Immutable ISO 8601 timestamp wrapper.

    Attributes:
        value: ISO 8601 formatted timestamp string

    Example:
        >>> Timestamp.from_epoch(0).value
        '1970-01-01T00:00:00+00:00'
    """
    value: str

    def __post_init__(self):
        """Validate ISO format."""
        try:
            datetime.fromisoformat(self.value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ISO timestamp: {self.value!r}") from e

    @classmethod
    def now(cls) -> 'Timestamp':
        """Create timestamp from current UTC time."""
        return cls(value=datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_datetime(cls, dt: datetime) -> 'Timestamp':
        """Create timestamp from datetime object."""
        return cls(value=dt.isoformat())

    @classmethod
    def from_epoch(cls, seconds: float) -> 'Timestamp':
        """Create timestamp from POSIX seconds (UTC)."""
        return cls(value=datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat())

    def to_datetime(self) -> datetime:
        """Parse to datetime object."""
        return datetime.fromisoformat(self.value)

    def to_dict(self) -> str:
        """Serialize to JSON (as string)."""
        return self.value


def finite_or_none(value: Optional[float]) -> Optional[float]:
    """Map inf/NaN to None so payloads stay strict JSON."""
    if value is None or not math.isfinite(value):
        return None
    return value
