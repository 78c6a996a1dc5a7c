"""Owner notifications about bookings.

The scheduler calls a dispatcher after a booking commits. Dispatch is
fire-and-forget: errors are logged by the caller and never undo the booking.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Protocol

import pika

from common.config import Settings, get_settings
from common.models import Booking, Court, Facility

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    user_id: int
    type: str
    title: str
    message: str
    metadata: Dict[str, Any]


def booking_created_notification(owner_id: int, booking: Booking, court: Court, facility: Facility) -> Notification:
    return Notification(
        user_id=owner_id,
        type="BOOKING_CREATED",
        title="New Booking Received",
        message=(
            f"A new booking has been made for {court.name} at {facility.name} "
            f"on {booking.start_time:%Y-%m-%d}."
        ),
        metadata={
            "bookingId": booking.id,
            "courtId": court.id,
            "facilityId": facility.id,
            "startTime": booking.start_time.isoformat(),
            "endTime": booking.end_time.isoformat(),
            "price": str(booking.price),
        },
    )


def booking_cancelled_notification(owner_id: int, booking: Booking, court: Court, facility: Facility) -> Notification:
    return Notification(
        user_id=owner_id,
        type="BOOKING_CANCELLED",
        title="Booking Cancelled",
        message=f"A booking for {court.name} at {facility.name} has been cancelled.",
        metadata={"bookingId": booking.id, "courtId": court.id, "facilityId": facility.id},
    )


class NotificationDispatcher(Protocol):
    def notify_booking_created(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None: ...

    def notify_booking_cancelled(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None: ...


class LoggingNotificationDispatcher:
    def notify_booking_created(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None:
        self._emit(booking_created_notification(owner_id, booking, court, facility))

    def notify_booking_cancelled(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None:
        self._emit(booking_cancelled_notification(owner_id, booking, court, facility))

    def _emit(self, notification: Notification) -> None:
        logger.info("Notification for user %s: %s", notification.user_id, notification.title)


class RabbitMQNotificationDispatcher:
    """Queues notifications for the delivery worker on a durable queue."""

    def __init__(self, host: str, queue: str) -> None:
        self.host = host
        self.queue = queue

    def notify_booking_created(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None:
        self._send(booking_created_notification(owner_id, booking, court, facility))

    def notify_booking_cancelled(self, owner_id: int, booking: Booking, court: Court, facility: Facility) -> None:
        self._send(booking_cancelled_notification(owner_id, booking, court, facility))

    def _send(self, notification: Notification) -> None:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=self.host))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=self.queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=self.queue,
                body=json.dumps(asdict(notification)),
                properties=pika.BasicProperties(delivery_mode=2),  # make message persistent
            )
            logger.info("Queued %s notification for user %s", notification.type, notification.user_id)
        finally:
            connection.close()


def build_notification_dispatcher(settings: Settings | None = None) -> NotificationDispatcher:
    settings = settings or get_settings()
    if settings.notification_backend == "rabbitmq":
        return RabbitMQNotificationDispatcher(settings.rabbitmq_host, settings.rabbitmq_notification_queue)
    return LoggingNotificationDispatcher()
