"""
Location sources - deliver TimedPoint samples to a session.

Contract (LocationSource):
  - authorization: current permission state
  - request_permission(): ask for permission (may change authorization)
  - start_updating(on_sample, on_error): begin delivering samples
  - stop_updating(): stop delivering; no callback fires after it returns
  - watch_authorization(listener): authorization-change notifications

Callbacks fire on the source's own thread. Sessions wrap them with
EventLoop.submit so every sample is applied on the owning context.

Implementations:
  - ReplayLocationSource: recorded samples, pushed on demand (CLI, tests)
  - MQTTLocationSource: JSON samples from a device topic (paho-mqtt)
"""

import json
import logging
import threading
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol

import paho.mqtt.client as mqtt

from earthwalk_geo import TimedPoint

logger = logging.getLogger(__name__)

SampleCallback = Callable[[TimedPoint], None]
ErrorCallback = Callable[[Exception], None]


class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "notDetermined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    AUTHORIZED = "authorized"

    @property
    def is_blocked(self) -> bool:
        return self in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED)


class LocationError(Exception):
    """Error reported by a location source (recoverable)."""


AuthorizationListener = Callable[[AuthorizationStatus], None]


class LocationSource(Protocol):
    @property
    def authorization(self) -> AuthorizationStatus:
        ...

    def request_permission(self) -> None:
        ...

    def start_updating(self, on_sample: SampleCallback, on_error: ErrorCallback) -> None:
        ...

    def stop_updating(self) -> None:
        ...

    def watch_authorization(self, listener: Optional[AuthorizationListener]) -> None:
        ...


class ReplayLocationSource:
    """
    Feeds a recorded list of samples.

    Samples are only delivered while updating; emit()/replay() outside that
    window are ignored.
    """

    def __init__(
        self,
        samples: Iterable[TimedPoint] = (),
        authorization: AuthorizationStatus = AuthorizationStatus.AUTHORIZED,
        grant_on_request: bool = True,
    ):
        self.samples: List[TimedPoint] = list(samples)
        self._authorization = authorization
        self.grant_on_request = grant_on_request
        self._on_sample: Optional[SampleCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._listener: Optional[AuthorizationListener] = None
        self.permission_requests = 0

    @property
    def authorization(self) -> AuthorizationStatus:
        return self._authorization

    @property
    def is_updating(self) -> bool:
        return self._on_sample is not None

    def request_permission(self) -> None:
        self.permission_requests += 1
        if self._authorization is AuthorizationStatus.NOT_DETERMINED:
            self.set_authorization(
                AuthorizationStatus.AUTHORIZED if self.grant_on_request
                else AuthorizationStatus.DENIED
            )

    def set_authorization(self, status: AuthorizationStatus) -> None:
        self._authorization = status
        if self._listener is not None:
            self._listener(status)

    def watch_authorization(self, listener: Optional[AuthorizationListener]) -> None:
        self._listener = listener

    def start_updating(self, on_sample: SampleCallback, on_error: ErrorCallback) -> None:
        self._on_sample = on_sample
        self._on_error = on_error

    def stop_updating(self) -> None:
        self._on_sample = None
        self._on_error = None

    def emit(self, sample: TimedPoint) -> bool:
        """Deliver one sample. Returns False if not updating."""
        if self._on_sample is None:
            return False
        self._on_sample(sample)
        return True

    def fail(self, error: Exception) -> bool:
        if self._on_error is None:
            return False
        self._on_error(error)
        return True

    def replay(self, before_each: Optional[Callable[[TimedPoint], None]] = None) -> int:
        """
        Deliver every recorded sample in order, stopping early if updates stop.

        Args:
            before_each: Hook run before each delivery (e.g. advance a clock)

        Returns:
            Number of samples delivered
        """
        delivered = 0
        for sample in self.samples:
            if self._on_sample is None:
                break
            if before_each is not None:
                before_each(sample)
                if self._on_sample is None:
                    break
            self.emit(sample)
            delivered += 1
        return delivered


class MQTTLocationSource:
    """
    Location samples from an MQTT device topic.

    Payloads:
        {"lat": 48.85, "lon": 2.35, "timestamp": 1767225600.0,
         "accuracy": 8.0, "speed": 1.3}
        {"authorization": "denied"}

    Permission:
      - authorized once the broker accepts the connection, unless the
        device reported its own status; denied if the broker refuses or
        cannot be reached

    Threading:
      - paho-mqtt network loop runs in its own thread (loop_start)
      - Callbacks run in that thread; keep handlers fast (enqueue only)
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        broker_port: int = 1883,
        client_id: str = "earthwalk_location",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic = topic
        self.client_id = client_id
        self.qos = qos

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self.client.on_connect_fail = self._on_connect_fail
        if username and password:
            self.client.username_pw_set(username, password)

        self._connected = threading.Event()
        self._running = False
        self._authorization = AuthorizationStatus.NOT_DETERMINED
        # last status the device itself reported, if any
        self._device_authorization: Optional[AuthorizationStatus] = None
        self._lock = threading.Lock()
        self._on_sample: Optional[SampleCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._listener: Optional[AuthorizationListener] = None
        self.malformed_count = 0

    @property
    def authorization(self) -> AuthorizationStatus:
        return self._authorization

    def watch_authorization(self, listener: Optional[AuthorizationListener]) -> None:
        self._listener = listener

    def _set_authorization(self, status: AuthorizationStatus) -> None:
        if status is self._authorization:
            return
        self._authorization = status
        logger.info(f"🔐 Location authorization: {status.value}")
        if self._listener is not None:
            self._listener(status)

    def connect(self) -> None:
        """
        Start connecting in the background (connect_async + loop_start).

        Returns at once; paho retries until the broker answers. The outcome
        arrives through _on_connect / _on_connect_fail.
        """
        if self._running:
            return
        logger.info(f"🔌 Connecting to MQTT broker: {self.broker_host}:{self.broker_port}")
        self.client.connect_async(self.broker_host, self.broker_port, keepalive=60)
        self.client.loop_start()
        self._running = True

    def disconnect(self) -> None:
        """Safe to call multiple times."""
        if self._running:
            self.stop_updating()
            self.client.loop_stop()
            self.client.disconnect()
            self._running = False
            self._connected.clear()
            logger.info("✅ Location source disconnected")

    def request_permission(self) -> None:
        """
        For a broker feed, permission means a live connection.

        Never blocks the caller: an unconnected source starts connecting
        and stays not determined until the broker answers.
        """
        if self._connected.is_set():
            self._set_authorization(self._device_authorization or AuthorizationStatus.AUTHORIZED)
            return
        self.connect()

    def start_updating(self, on_sample: SampleCallback, on_error: ErrorCallback) -> None:
        with self._lock:
            self._on_sample = on_sample
            self._on_error = on_error
        if self._connected.is_set():
            self.client.subscribe(self.topic, qos=self.qos)
            logger.info(f"📥 Subscribed to: {self.topic}")

    def stop_updating(self) -> None:
        with self._lock:
            was_updating = self._on_sample is not None
            self._on_sample = None
            self._on_error = None
        if was_updating and self._connected.is_set():
            self.client.unsubscribe(self.topic)
            logger.info(f"📤 Unsubscribed from: {self.topic}")

    # ===== MQTT Callbacks (run in MQTT thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"❌ Connection failed ({reason_code})")
            self._connected.clear()
            self._set_authorization(AuthorizationStatus.DENIED)
            return

        logger.info(f"✅ Connected to broker ({reason_code})")
        self._connected.set()
        self._set_authorization(self._device_authorization or AuthorizationStatus.AUTHORIZED)
        with self._lock:
            updating = self._on_sample is not None
        if updating:
            client.subscribe(self.topic, qos=self.qos)

    def _on_connect_fail(self, client, userdata):
        # broker unreachable; paho keeps retrying in the loop thread
        logger.warning(f"⚠️ Cannot reach broker {self.broker_host}:{self.broker_port}")
        self._set_authorization(AuthorizationStatus.DENIED)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning(f"⚠️ Unexpected disconnection ({reason_code})")
            self._report_error(LocationError(f"Location feed disconnected ({reason_code})"))
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        """Decode one payload and hand it to the session."""
        try:
            data = json.loads(msg.payload.decode('utf-8'))
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")

            if 'authorization' in data:
                self._device_authorization = AuthorizationStatus(data['authorization'])
                self._set_authorization(self._device_authorization)
                return

            sample = TimedPoint.from_dict(data)
        except (UnicodeDecodeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            self.malformed_count += 1
            logger.debug(f"📦 Dropped malformed location payload: {e}")
            self._report_error(LocationError(f"Malformed location payload: {e}"))
            return

        with self._lock:
            on_sample = self._on_sample
        if on_sample is not None:
            on_sample(sample)

    def _report_error(self, error: Exception) -> None:
        with self._lock:
            on_error = self._on_error
        if on_error is not None:
            on_error(error)
