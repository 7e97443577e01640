#!/usr/bin/env python3
"""
GPS Fix Simulator for the Movement Analytics Engine.

Publishes simulated position fixes to the Solace broker so a tracking session
can be exercised without a device. Uses the Solace PubSub+ Python SDK for
direct messaging.

Usage:
    python scripts/gps_simulator.py --scenario walk --count 30 --interval 2
    python scripts/gps_simulator.py --scenario stationary
    python scripts/gps_simulator.py --scenario low-accuracy
    python scripts/gps_simulator.py --scenario errors --speed 6
"""

import os
import sys
import json
import math
import time
import random
import argparse
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from dotenv import load_dotenv

from solace.messaging.messaging_service import MessagingService
from solace.messaging.resources.topic import Topic
from solace.messaging.publisher.direct_message_publisher import PublishFailureListener
from solace.messaging.config.transport_security_strategy import TLS


# Load environment variables
load_dotenv()

EARTH_RADIUS_M = 6_371_000.0

DEVICES = ["pixel-8", "iphone-15", "galaxy-s24", "browser"]

# Simulated fix quality by scenario
FIX_SPECS = {
    "good_accuracy_range": (3.0, 12.0),     # meters, accepted by the filter
    "poor_accuracy_range": (25.0, 80.0),    # meters, rejected by the filter
    "jitter_radius_m": 3.0,                 # stationary scatter
    "walk_speed_kmh": 5.0,
    "default_start": (51.5007, -0.1246),
}

# Geolocation error codes as reported by browsers
ERROR_CODES = {
    "permission_denied": 1,
    "fix_unavailable": 2,
    "timeout": 3,
}


class EventPublishFailureListener(PublishFailureListener):
    """Handler for publish failures."""

    def on_failed_publish(self, failed_publish_event):
        print(f"[ERROR] Failed to publish: {failed_publish_event}")


def create_messaging_service():
    """Create and connect to Solace broker messaging service."""
    broker_url = os.getenv("MOVEMENT_SOLACE_BROKER_URL", "ws://localhost:8008")
    vpn_name = os.getenv("MOVEMENT_SOLACE_BROKER_VPN", "default")
    username = os.getenv("MOVEMENT_SOLACE_BROKER_USERNAME", "default")
    password = os.getenv("MOVEMENT_SOLACE_BROKER_PASSWORD", "default")

    print(f"[INFO] Connecting to Solace broker: {broker_url}")
    print(f"[INFO] VPN: {vpn_name}, Username: {username}")

    broker_props = {
        "solace.messaging.transport.host": broker_url,
        "solace.messaging.service.vpn-name": vpn_name,
        "solace.messaging.authentication.scheme.basic.username": username,
        "solace.messaging.authentication.scheme.basic.password": password,
    }

    builder = MessagingService.builder().from_properties(broker_props)

    # For Solace Cloud (wss://), configure TLS
    if broker_url.startswith("wss://"):
        tls_strategy = TLS.create().without_certificate_validation()
        builder = builder.with_transport_security_strategy(tls_strategy)
        print("[INFO] TLS enabled (development mode)")

    messaging_service = builder.build()
    messaging_service.connect()
    print("[INFO] Connected to Solace broker successfully!")

    return messaging_service


def offset_position(lat: float, lon: float, north_m: float, east_m: float) -> tuple:
    """Move a lat/lon point by a small north/east offset in meters."""
    d_lat = north_m / EARTH_RADIUS_M
    d_lon = east_m / (EARTH_RADIUS_M * math.cos(math.radians(lat)))
    return lat + math.degrees(d_lat), lon + math.degrees(d_lon)


def create_fix_event(
    latitude: float,
    longitude: float,
    timestamp: datetime,
    accuracy: float,
    speed: Optional[float] = None,
    altitude: Optional[float] = None,
    device_id: str = None,
) -> dict:
    """Create a position fix event."""
    if device_id is None:
        device_id = random.choice(DEVICES)

    event = {
        "event_type": "position_fix",
        "device_id": device_id,
        "latitude": round(latitude, 7),
        "longitude": round(longitude, 7),
        "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
        "accuracy": round(accuracy, 1),
        "source": "simulator",
    }
    if speed is not None:
        event["speed"] = round(speed, 2)
    if altitude is not None:
        event["altitude"] = round(altitude, 1)
    return event


def create_error_event(error: str, device_id: str = None) -> dict:
    """Create a sensor error event carrying the browser error code."""
    return {
        "event_type": "position_error",
        "device_id": device_id or random.choice(DEVICES),
        "error": error,
        "error_code": ERROR_CODES.get(error, 2),
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "source": "simulator",
    }


def generate_walk(
    count: int = 20,
    interval_s: float = 5.0,
    speed_kmh: float = FIX_SPECS["walk_speed_kmh"],
    heading_deg: float = 0.0,
    start: tuple = FIX_SPECS["default_start"],
    start_time: datetime = None,
    device_id: str = "simulator",
) -> List[dict]:
    """Generate a straight-line walk with good accuracy."""
    if start_time is None:
        start_time = datetime.now(timezone.utc)

    step_m = speed_kmh / 3.6 * interval_s
    heading = math.radians(heading_deg)
    events = []
    for i in range(count):
        lat, lon = offset_position(
            start[0], start[1],
            north_m=math.cos(heading) * step_m * i,
            east_m=math.sin(heading) * step_m * i,
        )
        events.append(create_fix_event(
            lat, lon,
            start_time + timedelta(seconds=interval_s * i),
            accuracy=random.uniform(*FIX_SPECS["good_accuracy_range"]),
            speed=speed_kmh / 3.6,
            device_id=device_id,
        ))
    return events


def generate_stationary(
    count: int = 10,
    interval_s: float = 5.0,
    start: tuple = FIX_SPECS["default_start"],
    start_time: datetime = None,
    device_id: str = "simulator",
) -> List[dict]:
    """Generate GPS jitter around a fixed point, all within the jitter radius."""
    if start_time is None:
        start_time = datetime.now(timezone.utc)

    # Half the radius each way keeps any two points within the radius of each other
    radius = FIX_SPECS["jitter_radius_m"] / 2
    events = []
    for i in range(count):
        angle = random.uniform(0, 2 * math.pi)
        r = random.uniform(0, radius)
        lat, lon = offset_position(start[0], start[1], r * math.cos(angle), r * math.sin(angle))
        events.append(create_fix_event(
            lat, lon,
            start_time + timedelta(seconds=interval_s * i),
            accuracy=5.0,
            speed=0.0,
            device_id=device_id,
        ))
    return events


def generate_low_accuracy(count: int = 10, **kwargs) -> List[dict]:
    """Generate a walk where every fix is too imprecise to accept."""
    events = generate_walk(count=count, **kwargs)
    for event in events:
        event["accuracy"] = round(random.uniform(*FIX_SPECS["poor_accuracy_range"]), 1)
    return events


def generate_out_of_order(count: int = 10, **kwargs) -> List[dict]:
    """Generate a walk with each pair of consecutive fixes delivered swapped."""
    events = generate_walk(count=count, **kwargs)
    for i in range(0, len(events) - 1, 2):
        events[i], events[i + 1] = events[i + 1], events[i]
    return events


def generate_with_errors(count: int = 20, error_every: int = 5, **kwargs) -> List[dict]:
    """Generate a walk with a sensor error injected every few fixes."""
    events = []
    errors = list(ERROR_CODES.keys())
    for i, event in enumerate(generate_walk(count=count, **kwargs)):
        if i and i % error_every == 0:
            events.append(create_error_event(errors[(i // error_every) % len(errors)], event["device_id"]))
        events.append(event)
    return events


def fix_topic(device_id: str, topic_prefix: str = "movement/events") -> str:
    return f"{topic_prefix}/location/{device_id}/update"


def publish_event(publisher, event: dict, topic_prefix: str = "movement/events"):
    """Publish an event to the device's location topic."""
    topic_string = fix_topic(event["device_id"], topic_prefix)
    topic = Topic.of(topic_string)

    message_body = json.dumps(event)

    print(f"\n[PUBLISH] Topic: {topic_string}")
    print(f"[PAYLOAD] {message_body}")

    publisher.publish(destination=topic, message=message_body)

    return topic_string


def run_scenario(publisher, events: List[dict], interval: float, topic_prefix: str):
    """Publish events in order, pausing between them."""
    print(f"\n[SCENARIO] Publishing {len(events)} events every {interval} seconds")
    sent = 0
    try:
        for event in events:
            publish_event(publisher, event, topic_prefix)
            sent += 1
            if sent < len(events):
                time.sleep(interval)
    except KeyboardInterrupt:
        print(f"\n[INFO] Stopped after {sent} events")
    return sent


SCENARIOS = {
    "walk": generate_walk,
    "stationary": generate_stationary,
    "low-accuracy": generate_low_accuracy,
    "out-of-order": generate_out_of_order,
    "errors": generate_with_errors,
}


def build_events(scenario: str, count: int, interval: float, speed: float, device_id: str) -> List[dict]:
    """Build the event list for a scenario."""
    generator = SCENARIOS[scenario]
    if scenario == "stationary":
        return generator(count=count, interval_s=interval, device_id=device_id)
    return generator(count=count, interval_s=interval, speed_kmh=speed, device_id=device_id)


def main():
    parser = argparse.ArgumentParser(
        description="GPS Fix Simulator for the Movement Analytics Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 30 fixes of a 5 km/h walk, one every 2 seconds
  python scripts/gps_simulator.py --scenario walk --count 30 --interval 2

  # Standing still: only the first fix should be accepted
  python scripts/gps_simulator.py --scenario stationary

  # Every fix above the accuracy threshold
  python scripts/gps_simulator.py --scenario low-accuracy

  # Walk with permission/unavailable/timeout errors mixed in
  python scripts/gps_simulator.py --scenario errors
        """,
    )

    parser.add_argument(
        "--scenario",
        choices=list(SCENARIOS.keys()),
        default="walk",
        help="Scenario to run (default: walk)",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=20,
        help="Number of fixes to send (default: 20)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between fixes, both simulated and real (default: 5)",
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=FIX_SPECS["walk_speed_kmh"],
        help="Walking speed in km/h (default: 5)",
    )
    parser.add_argument(
        "--device-id",
        default="simulator",
        help="Device id used in the topic (default: simulator)",
    )
    parser.add_argument(
        "--topic-prefix",
        default=os.getenv("MOVEMENT_TOPIC_PREFIX", "movement/events"),
        help="Topic prefix for events (default: movement/events)",
    )

    args = parser.parse_args()

    print("=" * 60)
    print("GPS Fix Simulator")
    print("=" * 60)

    events = build_events(args.scenario, args.count, args.interval, args.speed, args.device_id)

    messaging_service = None
    publisher = None

    try:
        messaging_service = create_messaging_service()

        publisher = (
            messaging_service.create_direct_message_publisher_builder()
            .on_back_pressure_reject(buffer_capacity=100)
            .build()
        )

        publisher.set_publish_failure_listener(EventPublishFailureListener())
        publisher.start()

        print("[INFO] Publisher started")

        run_scenario(publisher, events, args.interval, args.topic_prefix)

        print("\n[INFO] Simulation complete")

    except KeyboardInterrupt:
        print("\n[INFO] Interrupted by user")
    except Exception as e:
        print(f"\n[ERROR] {e}")
        sys.exit(1)
    finally:
        if publisher:
            publisher.terminate()
            print("[INFO] Publisher terminated")
        if messaging_service:
            messaging_service.disconnect()
            print("[INFO] Disconnected from Solace broker")


if __name__ == "__main__":
    main()
