"""
Configuration schema for claim and exploration sessions.

This module defines the configuration structure for the session layer:
tracker thresholds, claim rules, exploration timers and POI settings, and
the optional MQTT transport. All sections are frozen dataclasses validated
at construction.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml

from earthwalk_geo.analytics import TrackerConfig

T = TypeVar("T")


@dataclass(frozen=True)
class ClaimConfig:
    """Territory claim rules and collaborator retry policy."""

    min_total_distance_m: float = 50.0
    min_area_m2: float = 50.0
    collision_check_interval_s: float = 10.0
    load_retries: int = 2
    retry_backoff_s: float = 0.5

    def __post_init__(self):
        """Validate claim configuration."""
        if self.min_total_distance_m < 0:
            raise ValueError(
                f"min_total_distance_m must be >= 0, got {self.min_total_distance_m}"
            )
        if self.min_area_m2 < 0:
            raise ValueError(f"min_area_m2 must be >= 0, got {self.min_area_m2}")
        if self.collision_check_interval_s <= 0:
            raise ValueError(
                f"collision_check_interval_s must be > 0, got {self.collision_check_interval_s}"
            )
        if self.load_retries < 0:
            raise ValueError(f"load_retries must be >= 0, got {self.load_retries}")


@dataclass(frozen=True)
class ExplorationConfig:
    """Exploration session timers and POI settings."""

    debounce_s: float = 0.5
    min_duration_s: float = 3.0
    tick_interval_s: float = 1.0
    status_log_interval_s: float = 10.0
    poi_search_radius_m: float = 1000.0
    poi_max_results: int = 20
    poi_trigger_radius_m: float = 50.0
    transform_user_position: bool = True

    def __post_init__(self):
        """Validate exploration configuration."""
        if self.debounce_s < 0:
            raise ValueError(f"debounce_s must be >= 0, got {self.debounce_s}")
        if self.min_duration_s < 0:
            raise ValueError(f"min_duration_s must be >= 0, got {self.min_duration_s}")
        if self.tick_interval_s <= 0:
            raise ValueError(f"tick_interval_s must be > 0, got {self.tick_interval_s}")
        if self.status_log_interval_s <= 0:
            raise ValueError(
                f"status_log_interval_s must be > 0, got {self.status_log_interval_s}"
            )
        if self.poi_search_radius_m <= 0:
            raise ValueError(
                f"poi_search_radius_m must be > 0, got {self.poi_search_radius_m}"
            )
        if self.poi_max_results < 1:
            raise ValueError(f"poi_max_results must be >= 1, got {self.poi_max_results}")
        if self.poi_trigger_radius_m <= 0:
            raise ValueError(
                f"poi_trigger_radius_m must be > 0, got {self.poi_trigger_radius_m}"
            )


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    qos: int = 0

    event_topic: str = "earthwalk/events/{session_id}"
    location_topic: str = "earthwalk/location/{device_id}"

    def __post_init__(self):
        """Validate MQTT configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(f"MQTT port must be in [1, 65535], got {self.port}")
        if self.qos not in {0, 1, 2}:
            raise ValueError(f"MQTT QoS must be 0, 1, or 2, got {self.qos}")


@dataclass(frozen=True)
class SessionConfig:
    """
    Root configuration.

    Loaded from YAML and validated at startup. Immutable after construction.
    """

    owner_id: str = "local-player"
    device_id: str = "device-01"
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    claim: ClaimConfig = field(default_factory=ClaimConfig)
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    mqtt: Optional[MQTTConfig] = None
    event_queue_size: int = 256

    def __post_init__(self):
        """Validate session configuration."""
        if not self.owner_id:
            raise ValueError("owner_id cannot be empty")
        if self.event_queue_size < 1:
            raise ValueError(f"event_queue_size must be >= 1, got {self.event_queue_size}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionConfig":
        """
        Build from a parsed mapping. Unknown keys raise ValueError.
        """
        data = dict(data or {})
        mqtt_data = data.pop("mqtt", None)
        return cls(
            owner_id=data.pop("owner_id", "local-player"),
            device_id=data.pop("device_id", "device-01"),
            tracker=_section(TrackerConfig, data.pop("tracker", None)),
            claim=_section(ClaimConfig, data.pop("claim", None)),
            exploration=_section(ExplorationConfig, data.pop("exploration", None)),
            mqtt=_section(MQTTConfig, mqtt_data) if mqtt_data is not None else None,
            event_queue_size=data.pop("event_queue_size", 256),
            **_reject_unknown("session", data),
        )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "SessionConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            owner_id: "player-42"
            device_id: "pixel-7"

            tracker:
              max_accuracy_m: 50
              max_speed_kmh: 30
              closure_distance_m: 30

            claim:
              min_area_m2: 50
              collision_check_interval_s: 10

            exploration:
              min_duration_s: 3
              poi_trigger_radius_m: 50

            mqtt:
              broker: "localhost"
              port: 1883
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)


def _section(section_cls: Type[T], data: Optional[Dict[str, Any]]) -> T:
    if data is None:
        return section_cls()
    if not isinstance(data, dict):
        raise ValueError(f"{section_cls.__name__} section must be a mapping, got {data!r}")
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**data)


def _reject_unknown(section: str, leftover: Dict[str, Any]) -> Dict[str, Any]:
    if leftover:
        raise ValueError(f"Unknown {section} keys: {sorted(leftover)}")
    return {}
