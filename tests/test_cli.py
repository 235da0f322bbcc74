"""Tests for the earthwalk command line."""
import json
import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from earthwalk_cli.cli import (
    connect_event_publisher,
    load_track,
    main,
    run_claim,
    run_explore,
)
from earthwalk_cli.mqtt_client import TrackPublisher, sample_payload
from earthwalk_events import EventBus
from earthwalk_session import (
    ClaimConfig,
    ClaimState,
    ExplorationState,
    InMemoryTerritoryStore,
    SessionConfig,
    TerritoryStoreError,
)

from helpers import SQUARE_LOOP, T0, sample, square_territory, walk

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
SQUARE_WALK = str(CONFIG_DIR / "tracks" / "square_walk.yaml")


class FlakyTerritoryStore(InMemoryTerritoryStore):
    """First two loads time out."""

    failures = 2

    def __init__(self, territories=None):
        super().__init__(territories)
        self.load_calls = 0

    def load_active_territories(self):
        self.load_calls += 1
        if self.load_calls <= self.failures:
            raise TerritoryStoreError("timeout")
        return super().load_active_territories()


# ----------------------------------------------------------------
# Commands
# ----------------------------------------------------------------

class TestMain:
    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_convert_inside_region(self, capsys):
        assert main(["convert", "39.9087", "116.3975"]) == 0
        assert "inside correction region" in capsys.readouterr().out

    def test_convert_outside_region(self, capsys):
        assert main(["convert", "48.8566", "2.3522"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("48.856600, 2.352200")
        assert "outside correction region" in out

    def test_claim(self, capsys):
        code = main([
            "claim", SQUARE_WALK,
            "--territories", str(CONFIG_DIR / "territories.yaml"),
            "--config", str(CONFIG_DIR / "earthwalk.yaml"),
        ])
        assert code == 0
        out = capsys.readouterr().out
        assert "📍 Claim state: uploaded" in out
        assert "✅ Territory uploaded" in out

    def test_explore(self, capsys):
        code = main(["explore", SQUARE_WALK, "--pois", str(CONFIG_DIR / "pois.yaml")])
        assert code == 0
        out = capsys.readouterr().out
        assert "🧭 Exploration state: completed" in out
        assert "📦" in out

    def test_missing_track(self, capsys):
        assert main(["claim", "does/not/exist.yaml"]) == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_publish_track_uses_location_topic(self, monkeypatch, tmp_path):
        publisher_cls = MagicMock()
        monkeypatch.setattr("earthwalk_cli.cli.TrackPublisher", publisher_cls)
        config = tmp_path / "device.yaml"
        config.write_text(
            "device_id: pixel-7\n"
            "mqtt:\n"
            "  broker: broker.local\n"
            "  location_topic: \"devices/{device_id}/gps\"\n"
        )
        assert main(["publish-track", SQUARE_WALK, "--config", str(config)]) == 0

        assert publisher_cls.call_args.kwargs['broker'] == "broker.local"
        topic = publisher_cls.return_value.publish_track.call_args.args[0]
        assert topic == "devices/pixel-7/gps"

    def test_publish_track_device_id_flag(self, monkeypatch):
        publisher_cls = MagicMock()
        monkeypatch.setattr("earthwalk_cli.cli.TrackPublisher", publisher_cls)
        assert main(["publish-track", SQUARE_WALK, "--device-id", "watch-3"]) == 0
        topic = publisher_cls.return_value.publish_track.call_args.args[0]
        assert topic == "earthwalk/location/watch-3"

    def test_publish_events_requires_mqtt_section(self, capsys, tmp_path):
        config = tmp_path / "no_mqtt.yaml"
        config.write_text("owner_id: someone\n")
        code = main(["claim", SQUARE_WALK, "--config", str(config), "--publish-events"])
        assert code == 1
        assert "mqtt" in capsys.readouterr().err


class TestLoaders:
    def test_load_track_sorted(self, tmp_path):
        path = tmp_path / "track.yaml"
        path.write_text(
            "samples:\n"
            "  - {lat: 48.0, lon: 2.0, t: 20}\n"
            "  - {lat: 48.0, lon: 2.0, t: 10}\n"
        )
        assert [s.timestamp for s in load_track(str(path))] == [10, 20]

    def test_empty_track(self, tmp_path):
        path = tmp_path / "track.yaml"
        path.write_text("samples: []\n")
        with pytest.raises(ValueError, match="no samples"):
            load_track(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "track.yaml"
        path.write_text("samples: [\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_track(str(path))


# ----------------------------------------------------------------
# Replays
# ----------------------------------------------------------------

class TestReplays:
    def test_run_claim_uploads(self):
        replay = run_claim(walk(SQUARE_LOOP), [], SessionConfig(), logging.CRITICAL)
        assert replay.session.state is ClaimState.UPLOADED
        assert replay.delivered == 11

    def test_run_claim_blocked(self):
        replay = run_claim(
            [sample(20, 20, T0)], [square_territory(0, 0, 40, 40)],
            SessionConfig(), logging.CRITICAL,
        )
        assert replay.delivered == 0
        assert replay.session.state is ClaimState.IDLE
        assert replay.session.last_collision.has_collision

    @pytest.mark.parametrize("retries, blocked", [(2, True), (1, False)])
    def test_run_claim_applies_load_retries(self, monkeypatch, retries, blocked):
        monkeypatch.setattr("earthwalk_cli.cli.InMemoryTerritoryStore", FlakyTerritoryStore)
        config = SessionConfig(claim=ClaimConfig(load_retries=retries, retry_backoff_s=2.0))
        replay = run_claim(
            [sample(20, 20, T0)], [square_territory(0, 0, 40, 40)],
            config, logging.CRITICAL,
        )
        registry = replay.session.registry
        assert registry.retries == retries
        assert registry.backoff_s == 2.0
        # the rival only blocks the start if a retry got the territories loaded
        collision = replay.session.last_collision
        assert (collision is not None and collision.has_collision) is blocked

    def test_run_explore_short_walk_waits_for_minimum_duration(self):
        replay = run_explore([sample(0, 0, T0)], [], SessionConfig(), logging.CRITICAL)
        assert replay.session.state is ExplorationState.COMPLETED
        assert replay.session.result.duration_s == pytest.approx(3.0)

    def test_shared_bus(self):
        bus = EventBus()
        seen = []
        bus.subscribe(None, seen.append)
        run_claim(walk(SQUARE_LOOP), [], SessionConfig(), logging.CRITICAL, bus)
        assert seen


class TestConnectEventPublisher:
    def test_requires_mqtt_section(self):
        with pytest.raises(ValueError):
            connect_event_publisher(SessionConfig(), EventBus())


# ----------------------------------------------------------------
# Track publisher
# ----------------------------------------------------------------

class TestTrackPublisher:
    def test_payload(self):
        payload = sample_payload(sample(0, 0, T0, speed=1.5))
        assert payload['timestamp'] == T0
        assert payload['speed'] == 1.5
        assert 'speed' not in sample_payload(sample(0, 0, T0))

    def test_publish_paced_by_timestamps(self, capsys):
        sleeps = []
        publisher = TrackPublisher(sleep=sleeps.append)
        publisher.client = MagicMock()
        samples = walk([(0, 0), (10, 0), (20, 0)])

        assert publisher.publish_track("earthwalk/location/test", samples, speedup=5.0) == 3
        assert sleeps == [1.0, 1.0]
        topic, body = publisher.client.publish.call_args_list[0].args
        assert topic == "earthwalk/location/test"
        assert json.loads(body)['timestamp'] == T0
        publisher.client.disconnect.assert_called_once()

    def test_connect_failure(self):
        publisher = TrackPublisher()
        publisher.client = MagicMock()
        publisher.client.connect.side_effect = OSError("refused")
        with pytest.raises(ConnectionError):
            publisher.publish_track("t", walk([(0, 0)]))
