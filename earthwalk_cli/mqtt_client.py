"""
MQTT client wrapper for publishing recorded tracks as a simulated device.

Payloads match what MQTTLocationSource decodes.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Sequence

import paho.mqtt.client as mqtt

from earthwalk_geo import TimedPoint


def sample_payload(sample: TimedPoint) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        'lat': sample.latitude,
        'lon': sample.longitude,
        'timestamp': sample.timestamp,
        'accuracy': sample.horizontal_accuracy_m,
    }
    if sample.speed_mps is not None:
        payload['speed'] = sample.speed_mps
    return payload


class TrackPublisher:
    """
    Publishes location samples to a device topic with QoS 1.
    """

    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.broker = broker
        self.port = port
        self._sleep = sleep

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if username and password:
            self.client.username_pw_set(username, password)

    def publish_track(
        self,
        topic: str,
        samples: Sequence[TimedPoint],
        speedup: float = 1.0,
        qos: int = 1
    ) -> int:
        """
        Publish samples in order, pacing them by their timestamps.

        Args:
            topic: Device location topic (e.g., "earthwalk/location/pixel-7")
            samples: Recorded track
            speedup: Replay rate; 0 disables pacing

        Returns:
            Number of samples published

        Raises:
            ConnectionError: If unable to connect to the broker
        """
        try:
            self.client.connect(self.broker, self.port, keepalive=60)
        except OSError as e:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.broker}:{self.port}. "
                "Is mosquitto running?"
            ) from e

        self.client.loop_start()
        published = 0
        try:
            previous: Optional[TimedPoint] = None
            for sample in samples:
                if previous is not None and speedup > 0:
                    self._sleep(max(0.0, sample.timestamp - previous.timestamp) / speedup)
                result = self.client.publish(topic, json.dumps(sample_payload(sample)), qos=qos)
                result.wait_for_publish()
                published += 1
                previous = sample
        finally:
            self.client.loop_stop()
            self.client.disconnect()

        print(f"✅ Published {published} samples to {topic}")
        return published
