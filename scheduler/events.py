"""Booking domain events and the real-time channel they are published on.

Events are published only after the booking transaction commits. Delivery is
best-effort and at-most-once: a failing publisher is logged and skipped.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Protocol, Tuple

import pika

from common.config import Settings, get_settings
from common.models import Booking

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"


def owner_topic(owner_id: int) -> str:
    return f"owner:{owner_id}"


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


@dataclass
class BookingEvent:
    name: str
    booking_id: int
    court_id: int
    facility_id: int
    owner_id: int
    user_id: int
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_booking(cls, name: str, booking: Booking, facility_id: int, owner_id: int) -> "BookingEvent":
        return cls(
            name=name,
            booking_id=booking.id,
            court_id=booking.court_id,
            facility_id=facility_id,
            owner_id=owner_id,
            user_id=booking.user_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
        )

    @property
    def topics(self) -> Tuple[str, str]:
        return owner_topic(self.owner_id), user_topic(self.user_id)

    def payload(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "bookingId": self.booking_id,
            "courtId": self.court_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "facilityId": self.facility_id,
        }


class EventPublisher(Protocol):
    def publish(self, topic: str, payload: Dict[str, Any]) -> None: ...


class LoggingEventPublisher:
    """Writes events to the log; used when no broker is configured."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        logger.info("event %s -> %s: %s", payload.get("event"), topic, payload)


class InMemoryEventPublisher:
    def __init__(self) -> None:
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.published.append((topic, payload))

    def for_topic(self, topic: str) -> List[Dict[str, Any]]:
        return [payload for published_topic, payload in self.published if published_topic == topic]

    def clear(self) -> None:
        self.published.clear()


class RabbitMQEventPublisher:
    """Publishes to a topic exchange; the routing key is the logical topic."""

    def __init__(self, host: str, exchange: str) -> None:
        self.host = host
        self.exchange = exchange

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=self.host))
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=self.exchange, exchange_type="topic", durable=True)
            channel.basic_publish(
                exchange=self.exchange,
                routing_key=topic,
                body=json.dumps(payload),
                properties=pika.BasicProperties(content_type="application/json"),
            )
        finally:
            connection.close()


def publish_event(publisher: EventPublisher, event: BookingEvent) -> None:
    """Send ``event`` to the facility owner's and the booker's topics."""

    payload = event.payload()
    for topic in event.topics:
        try:
            publisher.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish %s for booking %s to %s", event.name, event.booking_id, topic)


def build_event_publisher(settings: Settings | None = None) -> EventPublisher:
    settings = settings or get_settings()
    if settings.event_backend == "rabbitmq":
        return RabbitMQEventPublisher(settings.rabbitmq_host, settings.rabbitmq_exchange)
    if settings.event_backend == "memory":
        return InMemoryEventPublisher()
    return LoggingEventPublisher()
