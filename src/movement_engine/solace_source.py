"""
Solace Geo Sample Source.

Receives position fix events from the Solace event mesh and pushes them to
subscribed callbacks. Devices publish to
{topic_prefix}/location/{device_id}/update with payloads such as:

    {"latitude": 51.5, "longitude": -0.12, "timestamp": "2025-01-01T10:00:00Z",
     "accuracy": 6.0, "speed": 1.4, "altitude": 35.0}

or, for a sensor failure:

    {"error": "timeout"}            # or {"error_code": 3}
"""

import json
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from solace.messaging.config.transport_security_strategy import TLS
from solace.messaging.messaging_service import MessagingService
from solace.messaging.receiver.message_receiver import InboundMessage, MessageHandler
from solace.messaging.resources.topic_subscription import TopicSubscription

from .config import Settings, get_settings
from .models import ErrorKind, PositionFix
from .sources import OnError, OnFix, SubscriptionHandle, new_handle
from .track_io import parse_timestamp

logger = logging.getLogger(__name__)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def fix_from_event(event: Dict[str, Any]) -> PositionFix:
    """
    Decode a fix event payload.

    Raises:
        KeyError: A required field is missing
        ValueError: A field cannot be converted
    """
    speed = _optional_float(event.get("speed"))
    # Browsers report a negative or missing speed when it is unknown
    if speed is not None and speed < 0:
        speed = None
    return PositionFix(
        latitude=float(event["latitude"]),
        longitude=float(event["longitude"]),
        timestamp=parse_timestamp(event["timestamp"]),
        accuracy_m=float(event.get("accuracy", 0.0)),
        speed_mps=speed,
        altitude_m=_optional_float(event.get("altitude")),
    )


def error_from_event(event: Dict[str, Any]) -> Optional[ErrorKind]:
    """Return the ErrorKind of an error event, or None for a fix event."""
    if "error_code" in event:
        return ErrorKind.from_geolocation_code(int(event["error_code"]))
    if "error" in event:
        try:
            return ErrorKind(event["error"])
        except ValueError:
            return ErrorKind.FIX_UNAVAILABLE
    return None


class FixEventHandler(MessageHandler):
    """Decodes inbound messages and forwards them to the source's subscribers."""

    def __init__(self, source: "SolaceGeoSampleSource"):
        self.source = source

    def on_message(self, message: InboundMessage):
        try:
            payload = message.get_payload_as_string()
            event = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"[SOURCE] Failed to parse fix event: {e}")
            return

        logger.debug(f"[SOURCE] Event on {message.get_destination_name()}: {payload}")
        self.source.dispatch_event(event)


class SolaceGeoSampleSource:
    """
    Geo Sample Source backed by a Solace direct-message receiver.

    The broker connection is opened by check_availability() and the receiver
    runs while at least one subscription is active.
    """

    def __init__(self, settings: Optional[Settings] = None, topic_pattern: Optional[str] = None):
        self.settings = settings or get_settings()
        self.topic_pattern = topic_pattern or self.settings.fix_topic_pattern
        self.messaging_service: Optional[MessagingService] = None
        self.receiver = None
        self._subscriptions: Dict[str, Tuple[OnFix, OnError]] = {}
        self._lock = threading.Lock()
        self.event_count = 0

    def _connect(self) -> None:
        settings = self.settings
        broker_props = {
            "solace.messaging.transport.host": settings.solace_broker_url,
            "solace.messaging.service.vpn-name": settings.solace_broker_vpn,
            "solace.messaging.authentication.scheme.basic.username": settings.solace_broker_username,
            "solace.messaging.authentication.scheme.basic.password": settings.solace_broker_password,
        }
        builder = MessagingService.builder().from_properties(broker_props)

        # Solace Cloud (wss://) needs TLS
        if settings.solace_broker_url.startswith("wss://"):
            tls_strategy = TLS.create().without_certificate_validation()
            builder = builder.with_transport_security_strategy(tls_strategy)
            logger.info("[SOURCE] TLS enabled (development mode)")

        self.messaging_service = builder.build()
        self.messaging_service.connect()
        logger.info(f"[SOURCE] Connected to Solace broker at {settings.solace_broker_url}")

    async def check_availability(self) -> bool:
        """Connect to the broker; False when it cannot be reached."""
        if self.messaging_service is not None:
            return True
        try:
            self._connect()
            return True
        except Exception as e:
            logger.error(f"[SOURCE] Solace broker unavailable: {e}")
            self.messaging_service = None
            return False

    def _start_receiver(self) -> None:
        if self.messaging_service is None:
            self._connect()
        self.receiver = (
            self.messaging_service.create_direct_message_receiver_builder()
            .with_subscriptions([TopicSubscription.of(self.topic_pattern)])
            .build()
        )
        # Start receiver first, then register handler
        self.receiver.start()
        self.receiver.receive_async(FixEventHandler(self))
        logger.info(f"[SOURCE] Receiving fixes on {self.topic_pattern}")

    def subscribe(self, on_fix: OnFix, on_error: OnError) -> SubscriptionHandle:
        handle = new_handle()
        with self._lock:
            self._subscriptions[handle.id] = (on_fix, on_error)
            if self.receiver is None:
                try:
                    self._start_receiver()
                except Exception:
                    del self._subscriptions[handle.id]
                    raise
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        with self._lock:
            self._subscriptions.pop(handle.id, None)
            if self._subscriptions or self.receiver is None:
                return
            receiver, self.receiver = self.receiver, None
        # Terminate outside the lock: the handler thread takes it in dispatch_event
        self._terminate_receiver(receiver)

    def _terminate_receiver(self, receiver) -> None:
        receiver.terminate(grace_period=self.settings.receiver_grace_period_ms)
        logger.info("[SOURCE] Receiver terminated")

    def close(self) -> None:
        """Terminate the receiver and disconnect from the broker."""
        with self._lock:
            self._subscriptions.clear()
            receiver, self.receiver = self.receiver, None
            service, self.messaging_service = self.messaging_service, None
        try:
            if receiver:
                self._terminate_receiver(receiver)
            if service:
                service.disconnect()
                logger.info("[SOURCE] Disconnected from Solace broker")
        except Exception as e:
            logger.error(f"[SOURCE] Cleanup error: {e}")
        logger.info(f"[SOURCE] Closed. Total events received: {self.event_count}")

    def dispatch_event(self, event: Dict[str, Any]) -> None:
        """Route a decoded event to every subscriber."""
        self.event_count += 1
        with self._lock:
            callbacks = list(self._subscriptions.values())

        kind = error_from_event(event)
        if kind is not None:
            for _, on_error in callbacks:
                on_error(kind)
            return

        try:
            fix = fix_from_event(event)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"[SOURCE] Malformed fix event {event}: {e}")
            return
        for on_fix, _ in callbacks:
            on_fix(fix)
