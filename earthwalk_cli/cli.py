"""
Earthwalk CLI - Main entry point.

Replays recorded tracks through the sessions on a virtual clock, converts
coordinates, and publishes tracks to a broker as a simulated device.
"""

import argparse
import logging
import sys
import yaml
from collections import Counter
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from earthwalk_events import EventBus, EventRecorder, SessionEventPublisher, create_logger
from earthwalk_geo import GeoPoint, Territory, TimedPoint, to_local_projection
from earthwalk_geo.geometry import is_in_correction_region
from earthwalk_session import (
    ClaimSession,
    ClaimState,
    ExplorationSession,
    ExplorationState,
    InMemorySessionStore,
    InMemoryTerritoryStore,
    LocalLootGenerator,
    ManualScheduler,
    POI,
    ReplayLocationSource,
    SessionConfig,
    StaticPOISource,
    TerritoryRegistry,
)

from .mqtt_client import TrackPublisher

logger = logging.getLogger(__name__)


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    """
    Load a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML is invalid
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")


def load_track(track_path: str) -> List[TimedPoint]:
    """Track file: `samples: [{lat, lon, t, accuracy, speed}, ...]`."""
    data = load_yaml_config(track_path)
    samples = [TimedPoint.from_dict(s) for s in data.get('samples', [])]
    if not samples:
        raise ValueError(f"Track {track_path} has no samples")
    return sorted(samples, key=lambda s: s.timestamp)


def load_territories(path: Optional[str]) -> List[Territory]:
    """Territory file: `territories: [{id, owner_id, path: [{lat, lon}, ...]}, ...]`."""
    if path is None:
        return []
    data = load_yaml_config(path)
    return [Territory.from_dict(t) for t in data.get('territories', [])]


def load_pois(path: Optional[str], default_radius_m: float = 50.0) -> List[POI]:
    """POI file: `pois: [{id, name, lat, lon, type, danger_level}, ...]`."""
    if path is None:
        return []
    data = load_yaml_config(path)
    return [POI.from_dict(p, default_radius_m=default_radius_m) for p in data.get('pois', [])]


def load_session_config(path: Optional[str]) -> SessionConfig:
    if path is None:
        return SessionConfig()
    return SessionConfig.from_yaml(Path(path))


@dataclass
class Replay:
    """Outcome of a replayed session."""

    session: Any
    recorder: EventRecorder
    delivered: int


def run_claim(
    samples: List[TimedPoint],
    territories: List[Territory],
    config: SessionConfig,
    log_level: int = logging.WARNING,
    bus: Optional[EventBus] = None
) -> Replay:
    """Replay samples through a ClaimSession; uploads if the claim closes valid."""
    scheduler = ManualScheduler(start=samples[0].timestamp)
    store = InMemoryTerritoryStore(territories)
    registry = TerritoryRegistry(
        store,
        retries=config.claim.load_retries,
        backoff_s=config.claim.retry_backoff_s,
        sleep=lambda seconds: None,
        logger=create_logger("registry", level=log_level),
    )
    registry.refresh()

    bus = bus or EventBus(logger=create_logger("bus", level=log_level))
    recorder = EventRecorder(bus)
    source = ReplayLocationSource(samples)
    session = ClaimSession(
        registry, store, source,
        bus=bus,
        scheduler=scheduler,
        config=config,
        logger=create_logger("claim", level=log_level),
    )

    result = session.start(samples[0].point)
    if result is None or result.has_collision:
        return Replay(session, recorder, 0)

    delivered = source.replay(before_each=lambda s: scheduler.advance_to(s.timestamp))

    if session.state is ClaimState.CLOSED and session.validation.is_valid:
        session.upload()
    return Replay(session, recorder, delivered)


def run_explore(
    samples: List[TimedPoint],
    pois: List[POI],
    config: SessionConfig,
    log_level: int = logging.WARNING,
    bus: Optional[EventBus] = None
) -> Replay:
    """Replay samples through an ExplorationSession, then stop it."""
    scheduler = ManualScheduler(start=samples[0].timestamp)
    bus = bus or EventBus(logger=create_logger("bus", level=log_level))
    recorder = EventRecorder(bus)
    source = ReplayLocationSource(samples)
    session = ExplorationSession(
        source,
        StaticPOISource(pois),
        LocalLootGenerator(),
        InMemorySessionStore(),
        bus=bus,
        scheduler=scheduler,
        config=config,
        logger=create_logger("exploration", level=log_level),
    )

    if not session.start():
        return Replay(session, recorder, 0)

    def before_each(sample: TimedPoint) -> None:
        scheduler.advance_to(sample.timestamp)
        # open popups are scavenged before the next sample
        if session.current_poi is not None:
            session.scavenge_poi()

    delivered = source.replay(before_each=before_each)

    if session.state in (ExplorationState.EXPLORING, ExplorationState.SPEED_WARNING):
        ready_at = max(
            scheduler.now() + config.exploration.debounce_s,
            samples[0].timestamp + config.exploration.min_duration_s,
        )
        scheduler.advance_to(ready_at)
        session.stop()
    return Replay(session, recorder, delivered)


def _print_events(recorder: EventRecorder) -> None:
    counts = Counter(event.event_type.value for event in recorder.events)
    for event_type, count in sorted(counts.items()):
        print(f"   {event_type}: {count}")


def print_claim(replay: Replay) -> None:
    session: ClaimSession = replay.session
    print(f"📍 Claim state: {session.state.value}")
    print(f"   Samples delivered: {replay.delivered}, path points: {len(session.path)}")
    print(f"   Distance walked: {session.tracker.total_distance_m:.1f} m")
    print(f"   Collision level: {session.warning_level.label}")
    if session.validation is not None:
        print(f"   Area: {session.validation.area_m2:.1f} m²")
    if session.territory is not None:
        print(f"✅ Territory uploaded: {session.territory.territory_id}")
    if session.error:
        print(f"⚠️ {session.error}")
    _print_events(replay.recorder)


def print_explore(replay: Replay) -> None:
    session: ExplorationSession = replay.session
    print(f"🧭 Exploration state: {session.state.value}")
    result = session.result
    if result is not None:
        print(f"   Distance: {result.distance_m:.1f} m in {result.duration_s:.0f} s")
        print(f"   Reward tier: {result.reward_tier.value}")
        for item in result.items:
            print(f"   🎁 {item.name} x{item.quantity} ({item.rarity.value})")
    else:
        print(f"   Distance: {session.distance_m:.1f} m")
    for item in session.poi_loot:
        print(f"   📦 {item.name} x{item.quantity} ({item.rarity.value})")
    if session.failure_reason is not None:
        print(f"❌ Failed: {session.failure_reason.value}")
    _print_events(replay.recorder)


def connect_event_publisher(
    config: SessionConfig,
    bus: EventBus,
    log_level: int = logging.WARNING
) -> SessionEventPublisher:
    """
    Connect a SessionEventPublisher for config.mqtt and attach it to bus.

    Raises:
        ValueError: If the config has no mqtt section
        ConnectionError: If the broker is unreachable
    """
    mqtt_config = config.mqtt
    if mqtt_config is None:
        raise ValueError("--publish-events needs an 'mqtt' section in the config")

    publisher = SessionEventPublisher(
        broker_host=mqtt_config.broker,
        broker_port=mqtt_config.port,
        topic=mqtt_config.event_topic,
        username=mqtt_config.username,
        password=mqtt_config.password,
        qos=mqtt_config.qos,
        logger=create_logger("publisher", level=log_level),
    )
    if not publisher.connect():
        publisher.disconnect()
        raise ConnectionError(
            f"Unable to connect to MQTT broker at {mqtt_config.broker}:{mqtt_config.port}"
        )
    publisher.attach(bus)
    return publisher


def setup_logging(level: str) -> int:
    numeric = getattr(logging, level.upper())
    logging.basicConfig(
        level=numeric,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return numeric


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="earthwalk",
        description="Earthwalk CLI - Replay GPS tracks through claim and exploration sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert a WGS-84 coordinate to the local map projection
  earthwalk convert 39.9087 116.3975

  # Replay a walk as a territory claim against existing territories
  earthwalk claim config/tracks/square_walk.yaml --territories config/territories.yaml

  # Replay a walk as an exploration with POIs
  earthwalk explore config/tracks/square_walk.yaml --pois config/pois.yaml

  # Publish a track to the broker as a simulated device
  earthwalk publish-track config/tracks/square_walk.yaml --device-id pixel-7
"""
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    convert = subparsers.add_parser('convert', help='Convert a coordinate to the local projection')
    convert.add_argument('lat', type=float, help='Latitude (WGS-84)')
    convert.add_argument('lon', type=float, help='Longitude (WGS-84)')

    claim = subparsers.add_parser('claim', help='Replay a track as a territory claim')
    claim.add_argument('track', help='Path to track YAML')
    claim.add_argument('--territories', help='Path to territories YAML')
    claim.add_argument('--owner', help='Claiming player id (overrides config)')
    claim.add_argument('--config', help='Path to session config YAML')
    claim.add_argument('--publish-events', action='store_true',
                       help='Forward session events to the MQTT broker from config')

    explore = subparsers.add_parser('explore', help='Replay a track as an exploration')
    explore.add_argument('track', help='Path to track YAML')
    explore.add_argument('--pois', help='Path to POIs YAML')
    explore.add_argument('--config', help='Path to session config YAML')
    explore.add_argument('--publish-events', action='store_true',
                         help='Forward session events to the MQTT broker from config')

    publish = subparsers.add_parser('publish-track', help='Publish a track as a simulated device')
    publish.add_argument('track', help='Path to track YAML')
    publish.add_argument('--device-id', default=None, help='Device id (default: from config)')
    publish.add_argument('--broker', default=None, help='MQTT broker host (default: from config)')
    publish.add_argument('--port', type=int, default=None, help='MQTT broker port')
    publish.add_argument('--speedup', type=float, default=1.0,
                         help='Replay rate, 0 = as fast as possible (default: 1.0)')
    publish.add_argument('--config', help='Path to session config YAML')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    level = setup_logging(args.log_level)

    try:
        if args.command == 'convert':
            point = GeoPoint(latitude=args.lat, longitude=args.lon)
            local = to_local_projection(point)
            region = "inside" if is_in_correction_region(point) else "outside"
            print(f"{local.latitude:.6f}, {local.longitude:.6f} ({region} correction region)")

        elif args.command == 'claim':
            config = load_session_config(args.config)
            if args.owner:
                config = replace(config, owner_id=args.owner)
            bus = EventBus(logger=create_logger("bus", level=level))
            publisher = connect_event_publisher(config, bus, level) if args.publish_events else None
            try:
                replay = run_claim(
                    load_track(args.track), load_territories(args.territories), config, level, bus
                )
            finally:
                if publisher is not None:
                    publisher.detach()
                    publisher.disconnect()
            print_claim(replay)

        elif args.command == 'explore':
            config = load_session_config(args.config)
            pois = load_pois(args.pois, config.exploration.poi_trigger_radius_m)
            bus = EventBus(logger=create_logger("bus", level=level))
            publisher = connect_event_publisher(config, bus, level) if args.publish_events else None
            try:
                replay = run_explore(load_track(args.track), pois, config, level, bus)
            finally:
                if publisher is not None:
                    publisher.detach()
                    publisher.disconnect()
            print_explore(replay)

        elif args.command == 'publish-track':
            config = load_session_config(args.config)
            mqtt_config = config.mqtt
            broker = args.broker or (mqtt_config.broker if mqtt_config else "localhost")
            port = args.port or (mqtt_config.port if mqtt_config else 1883)
            device_id = args.device_id or config.device_id
            template = mqtt_config.location_topic if mqtt_config else "earthwalk/location/{device_id}"
            publisher = TrackPublisher(
                broker=broker,
                port=port,
                username=mqtt_config.username if mqtt_config else None,
                password=mqtt_config.password if mqtt_config else None,
            )
            publisher.publish_track(
                template.format(device_id=device_id),
                load_track(args.track),
                speedup=args.speedup,
            )

    except (OSError, ValueError) as e:
        # FileNotFoundError and ConnectionError are OSErrors
        logger.debug("Command failed", exc_info=True)
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
