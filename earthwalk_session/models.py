"""
Session value types: POIs, loot items, exploration results.

POIs are read-only inputs except for the status transitions an exploration
session applies locally (undiscovered → discovered → looted).
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from earthwalk_geo import GeoPoint, RewardTier, Rarity


class POIType(str, Enum):
    SUPERMARKET = "supermarket"
    HOSPITAL = "hospital"
    GAS_STATION = "gas_station"
    PHARMACY = "pharmacy"
    FACTORY = "factory"
    WAREHOUSE = "warehouse"
    RESTAURANT = "restaurant"
    POLICE_STATION = "police_station"
    SCHOOL = "school"
    RESIDENTIAL = "residential"


class POIStatus(str, Enum):
    UNDISCOVERED = "undiscovered"
    DISCOVERED = "discovered"
    LOOTED = "looted"


@dataclass(frozen=True)
class POI:
    """
    Point of interest from the POI source.

    Coordinates are in the provider's frame (GCJ-02 inside mainland China).
    """

    poi_id: str
    name: str
    coordinate: GeoPoint
    poi_type: POIType = POIType.RESIDENTIAL
    trigger_radius_m: float = 50.0
    danger_level: int = 1
    status: POIStatus = POIStatus.UNDISCOVERED
    has_loot: bool = True
    description: str = ""
    discovered_at: Optional[float] = None
    looted_at: Optional[float] = None

    def __post_init__(self):
        if not 1 <= self.danger_level <= 5:
            raise ValueError(f"danger_level must be in [1, 5], got {self.danger_level}")
        if self.trigger_radius_m <= 0:
            raise ValueError(f"trigger_radius_m must be > 0, got {self.trigger_radius_m}")

    def discovered(self, at: float) -> 'POI':
        if self.status is not POIStatus.UNDISCOVERED:
            return self
        return replace(self, status=POIStatus.DISCOVERED, discovered_at=at)

    def looted(self, at: float) -> 'POI':
        return replace(self, status=POIStatus.LOOTED, has_loot=False, looted_at=at)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_radius_m: float = 50.0) -> 'POI':
        """
        Build from a fixture mapping.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        try:
            return cls(
                poi_id=str(data['id']),
                name=str(data.get('name', data['id'])),
                coordinate=GeoPoint.from_dict(data),
                poi_type=POIType(data.get('type', POIType.RESIDENTIAL.value)),
                trigger_radius_m=float(data.get('trigger_radius_m', default_radius_m)),
                danger_level=int(data.get('danger_level', 1)),
                description=str(data.get('description', '')),
            )
        except KeyError as e:
            raise ValueError(f"Missing required POI field: {e}") from e


@dataclass(frozen=True)
class LootItem:
    """An item granted by exploration rewards or POI scavenging."""

    definition_id: str
    name: str
    category: str
    rarity: Rarity = Rarity.COMMON
    quantity: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.definition_id,
            'name': self.name,
            'category': self.category,
            'rarity': self.rarity.value,
            'quantity': self.quantity,
        }


@dataclass(frozen=True)
class ExplorationResult:
    """Summary shown when an exploration session completes."""

    session_id: str
    user_id: str
    start_time: float
    end_time: float
    distance_m: float
    reward_tier: RewardTier
    items: Tuple[LootItem, ...] = field(default_factory=tuple)

    @property
    def duration_s(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SessionRecord:
    """Row handed to the session store."""

    user_id: str
    start_time: float
    end_time: float
    distance_m: float
    duration_s: float
    reward_tier: RewardTier
    items: List[Dict[str, Any]]

    @classmethod
    def from_result(cls, result: ExplorationResult) -> 'SessionRecord':
        return cls(
            user_id=result.user_id,
            start_time=result.start_time,
            end_time=result.end_time,
            distance_m=result.distance_m,
            duration_s=result.duration_s,
            reward_tier=result.reward_tier,
            items=[item.to_dict() for item in result.items],
        )
