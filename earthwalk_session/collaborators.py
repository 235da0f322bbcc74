"""
External collaborator contracts and their local implementations.

The session layer talks to the outside world only through these Protocols:

    TerritoryStore   upload / load / delete territories (idempotent upload)
    POISource        nearby POI search
    LootGenerator    exploration rewards and POI loot
    SessionStore     best-effort persistence of finished explorations

In-memory implementations double as test fakes and as the offline backend
used by the CLI replays. LocalLootGenerator is the deterministic fallback
used whenever a remote generator fails.
"""

import random
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from earthwalk_events.logging import LogEvent, StructuredLogger, create_logger
from earthwalk_geo import GeoPoint, Rarity, RewardTier, Territory, haversine_m
from earthwalk_geo.analytics import roll_rarity, tier_for_distance

from .models import LootItem, POI, POIType, SessionRecord


class CollaboratorError(Exception):
    """Base class for external collaborator failures."""


class TerritoryStoreError(CollaboratorError):
    pass


class POISourceError(CollaboratorError):
    pass


class LootGenerationError(CollaboratorError):
    pass


class SessionStoreError(CollaboratorError):
    pass


class TerritoryStore(Protocol):
    def upload_territory(
        self,
        owner_id: str,
        path: Sequence[GeoPoint],
        area_m2: float,
        started_at: float,
    ) -> Territory:
        """Idempotent by (owner_id, started_at)."""
        ...

    def load_active_territories(self) -> List[Territory]:
        ...

    def delete_territory(self, territory_id: str) -> None:
        ...


class POISource(Protocol):
    def search_nearby(self, center: GeoPoint, radius_m: float, max_results: int) -> List[POI]:
        ...


class LootGenerator(Protocol):
    def generate_rewards(self, distance_m: float) -> Tuple[RewardTier, List[LootItem]]:
        ...

    def generate_loot(self, poi: POI) -> List[LootItem]:
        ...


class SessionStore(Protocol):
    def save_session(self, record: SessionRecord) -> None:
        ...


class InMemoryTerritoryStore:
    """
    Thread-safe in-memory territory store.

    Uploads are keyed by (owner_id, started_at): a retry returns the
    territory stored by the first attempt.
    """

    def __init__(self, territories: Optional[Iterable[Territory]] = None):
        self._territories: Dict[str, Territory] = {}
        self._by_claim: Dict[Tuple[str, float], str] = {}
        self._lock = threading.Lock()
        for territory in territories or ():
            self._territories[territory.territory_id] = territory
            self._by_claim[(territory.owner_id, territory.created_at)] = territory.territory_id

    def upload_territory(
        self,
        owner_id: str,
        path: Sequence[GeoPoint],
        area_m2: float,
        started_at: float,
    ) -> Territory:
        if len(path) < 3:
            raise TerritoryStoreError(f"Territory needs at least 3 points, got {len(path)}")

        key = (owner_id, started_at)
        with self._lock:
            existing_id = self._by_claim.get(key)
            if existing_id is not None:
                return self._territories[existing_id]

            territory = Territory.from_path(
                owner_id=owner_id,
                path=path,
                started_at=started_at,
                territory_id=uuid.uuid4().hex,
            )
            self._territories[territory.territory_id] = territory
            self._by_claim[key] = territory.territory_id
            return territory

    def load_active_territories(self) -> List[Territory]:
        with self._lock:
            return [t for t in self._territories.values() if t.is_active]

    def delete_territory(self, territory_id: str) -> None:
        with self._lock:
            territory = self._territories.pop(territory_id, None)
            if territory is None:
                raise TerritoryStoreError(f"Territory '{territory_id}' not found")
            self._by_claim.pop((territory.owner_id, territory.created_at), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._territories)


class StaticPOISource:
    """
    POI source over a fixed list.

    Results are deduplicated by coordinate (5 decimals), sorted by distance
    and truncated to max_results.
    """

    def __init__(self, pois: Iterable[POI]):
        self._pois = list(pois)

    def search_nearby(self, center: GeoPoint, radius_m: float, max_results: int) -> List[POI]:
        seen = set()
        ranked: List[Tuple[float, POI]] = []
        for poi in self._pois:
            key = (round(poi.coordinate.latitude, 5), round(poi.coordinate.longitude, 5))
            if key in seen:
                continue
            seen.add(key)
            distance = haversine_m(center, poi.coordinate)
            if distance <= radius_m:
                ranked.append((distance, poi))
        ranked.sort(key=lambda pair: pair[0])
        return [poi for _, poi in ranked[:max_results]]


class InMemorySessionStore:
    """Keeps saved session records in a list."""

    def __init__(self):
        self.records: List[SessionRecord] = []

    def save_session(self, record: SessionRecord) -> None:
        self.records.append(record)


# (definition_id, name, category, rarity)
ITEM_CATALOGUE: Tuple[Tuple[str, str, str, Rarity], ...] = (
    ("item_bandage", "Bandage", "medical", Rarity.COMMON),
    ("item_first_aid_kit", "First Aid Kit", "medical", Rarity.RARE),
    ("item_antibiotics", "Antibiotics", "medical", Rarity.EPIC),
    ("item_canned_food", "Canned Food", "food", Rarity.COMMON),
    ("item_water_bottle", "Bottled Water", "water", Rarity.COMMON),
    ("item_energy_bar", "Energy Bar", "food", Rarity.RARE),
    ("item_wrench", "Wrench", "tool", Rarity.COMMON),
    ("item_flashlight", "Flashlight", "tool", Rarity.RARE),
    ("item_generator_part", "Generator Part", "tool", Rarity.EPIC),
    ("item_baton", "Baton", "weapon", Rarity.RARE),
    ("item_riot_shield", "Riot Shield", "weapon", Rarity.EPIC),
    ("item_scrap_metal", "Scrap Metal", "material", Rarity.COMMON),
    ("item_wood_plank", "Wood Plank", "material", Rarity.COMMON),
    ("item_electronics", "Electronic Parts", "material", Rarity.RARE),
)

POI_LOOT_CATEGORIES: Dict[POIType, Tuple[str, ...]] = {
    POIType.HOSPITAL: ("medical",),
    POIType.PHARMACY: ("medical",),
    POIType.SUPERMARKET: ("food", "water"),
    POIType.RESTAURANT: ("food", "water"),
    POIType.GAS_STATION: ("tool",),
    POIType.POLICE_STATION: ("weapon", "medical"),
}
DEFAULT_LOOT_CATEGORIES = ("material", "tool")

# danger level -> inclusive item count range
DANGER_ITEM_COUNTS: Dict[int, Tuple[int, int]] = {
    1: (1, 2),
    2: (1, 3),
    3: (2, 3),
    4: (2, 4),
    5: (3, 5),
}

# danger level -> tier whose rarity odds are used for POI loot
DANGER_RARITY_TIER: Dict[int, RewardTier] = {
    1: RewardTier.BRONZE,
    2: RewardTier.BRONZE,
    3: RewardTier.SILVER,
    4: RewardTier.GOLD,
    5: RewardTier.DIAMOND,
}

_RARITY_FALLBACK = {
    Rarity.EPIC: (Rarity.EPIC, Rarity.RARE, Rarity.COMMON),
    Rarity.RARE: (Rarity.RARE, Rarity.COMMON),
    Rarity.COMMON: (Rarity.COMMON,),
}


class LocalLootGenerator:
    """
    Deterministic loot generation from a preset catalogue.

    The random stream is seeded from the inputs (tier and rounded distance,
    or POI id), so the same request always yields the same items.
    """

    def __init__(
        self,
        catalogue: Sequence[Tuple[str, str, str, Rarity]] = ITEM_CATALOGUE,
        seed: str = "earthwalk",
    ):
        if not catalogue:
            raise ValueError("catalogue cannot be empty")
        self.catalogue = tuple(catalogue)
        self.seed = seed

    def generate_rewards(self, distance_m: float) -> Tuple[RewardTier, List[LootItem]]:
        tier = tier_for_distance(distance_m)
        rng = random.Random(f"{self.seed}:reward:{tier.value}:{round(distance_m)}")
        picks = [
            self._pick(rng, roll_rarity(tier, rng.random()), None)
            for _ in range(tier.item_count)
        ]
        return tier, _merge(picks)

    def generate_loot(self, poi: POI) -> List[LootItem]:
        low, high = DANGER_ITEM_COUNTS.get(poi.danger_level, (1, 3))
        rng = random.Random(f"{self.seed}:poi:{poi.poi_id}")
        count = rng.randint(low, high)
        categories = POI_LOOT_CATEGORIES.get(poi.poi_type, DEFAULT_LOOT_CATEGORIES)
        tier = DANGER_RARITY_TIER.get(poi.danger_level, RewardTier.BRONZE)
        picks = [
            self._pick(rng, roll_rarity(tier, rng.random()), categories)
            for _ in range(count)
        ]
        return _merge(picks)

    def _pick(
        self,
        rng: random.Random,
        rarity: Rarity,
        categories: Optional[Tuple[str, ...]],
    ) -> LootItem:
        pool = [
            entry for entry in self.catalogue
            if categories is None or entry[2] in categories
        ] or list(self.catalogue)

        for candidate_rarity in _RARITY_FALLBACK[rarity]:
            candidates = [entry for entry in pool if entry[3] is candidate_rarity]
            if candidates:
                break
        else:
            candidates = pool

        definition_id, name, category, item_rarity = rng.choice(candidates)
        return LootItem(definition_id, name, category, item_rarity, 1)


def _merge(items: Iterable[LootItem]) -> List[LootItem]:
    """Collapse duplicate definitions into one item with summed quantity."""
    merged: Dict[str, LootItem] = {}
    for item in items:
        existing = merged.get(item.definition_id)
        if existing is None:
            merged[item.definition_id] = item
        else:
            merged[item.definition_id] = LootItem(
                existing.definition_id,
                existing.name,
                existing.category,
                existing.rarity,
                existing.quantity + item.quantity,
            )
    return list(merged.values())


class FallbackLootGenerator:
    """
    Tries a primary (usually remote) generator, falling back to the local
    one on any failure. Never raises for generator errors.
    """

    def __init__(
        self,
        primary: LootGenerator,
        fallback: Optional[LootGenerator] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.primary = primary
        self.fallback = fallback or LocalLootGenerator()
        self.logger = logger or create_logger("loot")
        self.fallback_count = 0

    def generate_rewards(self, distance_m: float) -> Tuple[RewardTier, List[LootItem]]:
        try:
            return self.primary.generate_rewards(distance_m)
        except Exception as e:
            self._log_fallback("generate_rewards", e)
            return self.fallback.generate_rewards(distance_m)

    def generate_loot(self, poi: POI) -> List[LootItem]:
        try:
            return self.primary.generate_loot(poi)
        except Exception as e:
            self._log_fallback("generate_loot", e, poi_id=poi.poi_id)
            return self.fallback.generate_loot(poi)

    def _log_fallback(self, operation: str, error: Exception, **metadata) -> None:
        self.fallback_count += 1
        self.logger.warning(
            event=LogEvent.LOOT_FALLBACK,
            message=f"Loot generator failed in {operation}, using local fallback",
            metadata={'operation': operation, 'error': str(error), **metadata},
        )
