"""
Earthwalk Session
=================

Bounded Context: Orchestration of claim and exploration sessions.

Architecture:

    earthwalk_session/
    ├── config.py          # SessionConfig (YAML) + sections
    ├── scheduler.py       # EventLoop, ThreadScheduler, ManualScheduler
    ├── location.py        # LocationSource contract, replay + MQTT sources
    ├── models.py          # POI, LootItem, ExplorationResult
    ├── collaborators.py   # Store / POI / loot contracts + local implementations
    ├── registry.py        # TerritoryRegistry (atomic snapshots)
    ├── claim.py           # ClaimSession state machine
    └── exploration.py     # ExplorationSession state machine

Threading Model:

    location thread ──┐
    timer threads ────┼──▶ EventLoop (single consumer) ──▶ session state machine ──▶ EventBus
    executor results ─┘

Usage (threaded):

    loop = EventLoop.from_config(config)
    scheduler = ThreadScheduler(dispatch=loop.submit)
    session = ExplorationSession(
        location_source, poi_source, LocalLootGenerator(), session_store,
        bus=bus, scheduler=scheduler, config=config,
        executor=ThreadPoolExecutor(max_workers=2), dispatch=loop.submit,
    )
    loop.start()
    loop.submit(session.start)
"""

from .claim import ClaimSession, ClaimState
from .collaborators import (
    CollaboratorError,
    FallbackLootGenerator,
    InMemorySessionStore,
    InMemoryTerritoryStore,
    LocalLootGenerator,
    LootGenerationError,
    LootGenerator,
    POISource,
    POISourceError,
    SessionStore,
    SessionStoreError,
    StaticPOISource,
    TerritoryStore,
    TerritoryStoreError,
)
from .config import ClaimConfig, ExplorationConfig, MQTTConfig, SessionConfig
from .exploration import ExplorationSession, ExplorationState, FailureReason
from .location import (
    AuthorizationStatus,
    LocationError,
    LocationSource,
    MQTTLocationSource,
    ReplayLocationSource,
)
from .models import POI, POIStatus, POIType, ExplorationResult, LootItem, SessionRecord
from .registry import TerritoryRegistry
from .scheduler import (
    EventLoop,
    InlineExecutor,
    ManualScheduler,
    Scheduler,
    ThreadScheduler,
    TimerHandle,
)

__all__ = [
    # Sessions
    "ClaimSession",
    "ClaimState",
    "ExplorationSession",
    "ExplorationState",
    "FailureReason",
    # Config
    "SessionConfig",
    "ClaimConfig",
    "ExplorationConfig",
    "MQTTConfig",
    # Scheduling
    "EventLoop",
    "InlineExecutor",
    "ManualScheduler",
    "Scheduler",
    "ThreadScheduler",
    "TimerHandle",
    # Location
    "AuthorizationStatus",
    "LocationError",
    "LocationSource",
    "MQTTLocationSource",
    "ReplayLocationSource",
    # Models
    "POI",
    "POIStatus",
    "POIType",
    "ExplorationResult",
    "LootItem",
    "SessionRecord",
    # Collaborators
    "CollaboratorError",
    "TerritoryStoreError",
    "POISourceError",
    "LootGenerationError",
    "SessionStoreError",
    "TerritoryStore",
    "POISource",
    "LootGenerator",
    "SessionStore",
    "InMemoryTerritoryStore",
    "StaticPOISource",
    "InMemorySessionStore",
    "LocalLootGenerator",
    "FallbackLootGenerator",
    "TerritoryRegistry",
]
