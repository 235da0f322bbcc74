"""Tests for the location sources."""
import json
from unittest.mock import MagicMock

import pytest

from earthwalk_session import (
    AuthorizationStatus,
    LocationError,
    MQTTLocationSource,
    ReplayLocationSource,
)

from helpers import T0, walk


def _message(payload):
    if not isinstance(payload, bytes):
        payload = json.dumps(payload).encode('utf-8')
    return MagicMock(payload=payload)


# ----------------------------------------------------------------
# Replay source
# ----------------------------------------------------------------

class TestReplayLocationSource:
    def test_delivers_only_while_updating(self):
        source = ReplayLocationSource(walk([(0, 0), (10, 0)]))
        seen = []
        assert not source.emit(source.samples[0])
        source.start_updating(seen.append, lambda e: None)
        assert source.replay() == 2
        source.stop_updating()
        assert not source.emit(source.samples[0])
        assert len(seen) == 2

    def test_replay_stops_when_updates_stop(self):
        source = ReplayLocationSource(walk([(0, 0), (10, 0), (20, 0)]))
        seen = []

        def on_sample(sample):
            seen.append(sample)
            source.stop_updating()

        source.start_updating(on_sample, lambda e: None)
        assert source.replay() == 1

    def test_before_each_hook(self):
        source = ReplayLocationSource(walk([(0, 0), (10, 0)]))
        times = []
        source.start_updating(lambda s: None, lambda e: None)
        source.replay(before_each=lambda s: times.append(s.timestamp))
        assert times == [T0, T0 + 5]

    def test_fail_reports_error(self):
        source = ReplayLocationSource()
        errors = []
        source.start_updating(lambda s: None, errors.append)
        assert source.fail(LocationError("no fix"))
        assert str(errors[0]) == "no fix"

    def test_permission_request(self):
        source = ReplayLocationSource(authorization=AuthorizationStatus.NOT_DETERMINED,
                                      grant_on_request=False)
        changes = []
        source.watch_authorization(changes.append)
        source.request_permission()
        assert source.authorization is AuthorizationStatus.DENIED
        assert changes == [AuthorizationStatus.DENIED]
        assert source.permission_requests == 1

    def test_blocked_statuses(self):
        assert AuthorizationStatus.DENIED.is_blocked
        assert AuthorizationStatus.RESTRICTED.is_blocked
        assert not AuthorizationStatus.NOT_DETERMINED.is_blocked


# ----------------------------------------------------------------
# MQTT source (callbacks driven directly, no broker)
# ----------------------------------------------------------------

@pytest.fixture
def mqtt_source():
    source = MQTTLocationSource(broker_host="localhost", topic="earthwalk/location/test")
    samples, errors = [], []
    source.start_updating(samples.append, errors.append)
    return source, samples, errors


class TestMQTTLocationSource:
    def test_sample_payload(self, mqtt_source):
        source, samples, errors = mqtt_source
        source._on_message(None, None, _message(
            {'lat': 48.8566, 'lon': 2.3522, 'timestamp': T0, 'accuracy': 6.0, 'speed': 1.3}
        ))
        assert len(samples) == 1
        assert samples[0].timestamp == T0
        assert samples[0].speed_mps == 1.3
        assert errors == []

    def test_authorization_payload(self, mqtt_source):
        source, samples, errors = mqtt_source
        changes = []
        source.watch_authorization(changes.append)
        source._on_message(None, None, _message({'authorization': 'denied'}))
        assert source.authorization is AuthorizationStatus.DENIED
        assert changes == [AuthorizationStatus.DENIED]
        assert samples == []

    @pytest.mark.parametrize("payload", [
        b"not json",
        b"\xff\xfe",
        [1, 2, 3],
        {'lat': 48.0, 'lon': 2.0},
        {'lat': 123.0, 'lon': 2.0, 'timestamp': T0},
        {'authorization': 'maybe'},
    ])
    def test_malformed_payloads(self, mqtt_source, payload):
        source, samples, errors = mqtt_source
        source._on_message(None, None, _message(payload))
        assert samples == []
        assert source.malformed_count == 1
        assert isinstance(errors[0], LocationError)

    def test_no_delivery_after_stop(self, mqtt_source):
        source, samples, errors = mqtt_source
        source.stop_updating()
        source._on_message(None, None, _message({'lat': 48.0, 'lon': 2.0, 'timestamp': T0}))
        assert samples == []

    def test_unexpected_disconnect_reports_error(self, mqtt_source):
        source, samples, errors = mqtt_source
        source._on_disconnect(None, None, None, MagicMock(is_failure=True), None)
        assert isinstance(errors[0], LocationError)

    def test_clean_disconnect_is_silent(self, mqtt_source):
        source, samples, errors = mqtt_source
        source._on_disconnect(None, None, None, MagicMock(is_failure=False), None)
        assert errors == []

    def test_connect_resubscribes_when_updating(self, mqtt_source):
        source, _, _ = mqtt_source
        client = MagicMock()
        source._on_connect(client, None, None, MagicMock(is_failure=False), None)
        client.subscribe.assert_called_once_with("earthwalk/location/test", qos=0)


class TestMQTTLocationPermission:
    def _source(self):
        source = MQTTLocationSource(broker_host="broker.local", topic="earthwalk/location/test",
                                    broker_port=1884)
        source.client = MagicMock()
        changes = []
        source.watch_authorization(changes.append)
        return source, changes

    def test_request_connects_in_background(self):
        source, changes = self._source()
        source.request_permission()
        source.client.connect_async.assert_called_once_with("broker.local", 1884, keepalive=60)
        source.client.loop_start.assert_called_once()
        source.client.connect.assert_not_called()
        assert source.authorization is AuthorizationStatus.NOT_DETERMINED
        assert changes == []

    def test_repeated_request_connects_once(self):
        source, _ = self._source()
        source.request_permission()
        source.request_permission()
        source.client.connect_async.assert_called_once()

    def test_broker_accepts(self):
        source, changes = self._source()
        source.request_permission()
        source._on_connect(source.client, None, None, MagicMock(is_failure=False), None)
        assert source.authorization is AuthorizationStatus.AUTHORIZED
        assert changes == [AuthorizationStatus.AUTHORIZED]

        # already connected: answered without touching the network
        source.request_permission()
        source.client.connect_async.assert_called_once()

    def test_broker_refuses(self):
        source, changes = self._source()
        source.request_permission()
        source._on_connect(source.client, None, None, MagicMock(is_failure=True), None)
        assert source.authorization is AuthorizationStatus.DENIED
        assert changes == [AuthorizationStatus.DENIED]

    def test_broker_unreachable_then_recovers(self):
        source, changes = self._source()
        source.request_permission()
        source._on_connect_fail(source.client, None)
        assert source.authorization is AuthorizationStatus.DENIED
        source._on_connect(source.client, None, None, MagicMock(is_failure=False), None)
        assert changes == [AuthorizationStatus.DENIED, AuthorizationStatus.AUTHORIZED]

    def test_device_status_wins_over_connection(self):
        source, _ = self._source()
        source._on_message(None, None, _message({'authorization': 'restricted'}))
        source._on_connect(source.client, None, None, MagicMock(is_failure=False), None)
        assert source.authorization is AuthorizationStatus.RESTRICTED

    def test_disconnect_stops_loop(self):
        source, _ = self._source()
        source.connect()
        source.disconnect()
        source.client.loop_stop.assert_called_once()
        source.client.disconnect.assert_called_once()
        source.disconnect()
        source.client.loop_stop.assert_called_once()
