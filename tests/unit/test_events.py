"""Unit tests for booking events and owner notifications."""
import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

from common.config import Settings
from common.models import Booking, Court, Facility
from scheduler.events import (
    BOOKING_CREATED,
    BookingEvent,
    InMemoryEventPublisher,
    LoggingEventPublisher,
    RabbitMQEventPublisher,
    build_event_publisher,
    publish_event,
)
from scheduler.notifications import (
    LoggingNotificationDispatcher,
    RabbitMQNotificationDispatcher,
    booking_cancelled_notification,
    booking_created_notification,
    build_notification_dispatcher,
)


def _booking() -> Booking:
    return Booking(
        id=11,
        user_id=3,
        court_id=5,
        start_time=datetime(2030, 6, 3, 9),
        end_time=datetime(2030, 6, 3, 10),
        price=Decimal("500.00"),
    )


def _event() -> BookingEvent:
    return BookingEvent.from_booking(BOOKING_CREATED, _booking(), facility_id=2, owner_id=1)


class ExplodingPublisher:
    def __init__(self) -> None:
        self.attempts = []

    def publish(self, topic, payload):
        self.attempts.append(topic)
        raise RuntimeError("socket closed")


class TestBookingEvents:
    """Test event payloads and topic fan-out."""

    def test_payload_shape(self):
        """Test the payload carries the documented keys."""
        assert _event().payload() == {
            "event": "booking.created",
            "bookingId": 11,
            "courtId": 5,
            "startTime": "2030-06-03T09:00:00",
            "endTime": "2030-06-03T10:00:00",
            "facilityId": 2,
        }

    def test_published_to_owner_and_user(self):
        """Test one event reaches the owner's and the booker's topics."""
        publisher = InMemoryEventPublisher()

        publish_event(publisher, _event())

        assert [topic for topic, _ in publisher.published] == ["owner:1", "user:3"]

    def test_publisher_failure_is_swallowed(self):
        """Test a broken publisher is logged and every topic is still attempted."""
        publisher = ExplodingPublisher()

        publish_event(publisher, _event())

        assert publisher.attempts == ["owner:1", "user:3"]

    @patch("scheduler.events.pika.BlockingConnection")
    def test_rabbitmq_publisher(self, mock_connection):
        """Test events go to the topic exchange keyed by topic."""
        channel = MagicMock()
        mock_connection.return_value.channel.return_value = channel

        RabbitMQEventPublisher("rabbitmq", "booking-events").publish("owner:1", {"event": "booking.created"})

        channel.exchange_declare.assert_called_once_with(exchange="booking-events", exchange_type="topic", durable=True)
        kwargs = channel.basic_publish.call_args.kwargs
        assert kwargs["routing_key"] == "owner:1"
        assert json.loads(kwargs["body"]) == {"event": "booking.created"}
        mock_connection.return_value.close.assert_called_once()

    def test_build_event_publisher(self):
        """Test the configured backend is selected."""
        assert isinstance(build_event_publisher(Settings(event_backend="memory")), InMemoryEventPublisher)
        assert isinstance(build_event_publisher(Settings(event_backend="log")), LoggingEventPublisher)
        assert isinstance(build_event_publisher(Settings(event_backend="rabbitmq")), RabbitMQEventPublisher)


class TestNotifications:
    """Test owner notification content and transports."""

    def _context(self):
        facility = Facility(id=2, name="Riverside Arena", location="Pune", owner_id=1)
        court = Court(id=5, facility_id=2, name="Court C", price_per_hour=Decimal("500.00"))
        return _booking(), court, facility

    def test_created_notification(self):
        """Test the new-booking notification."""
        booking, court, facility = self._context()

        notification = booking_created_notification(1, booking, court, facility)

        assert notification.user_id == 1
        assert notification.type == "BOOKING_CREATED"
        assert notification.title == "New Booking Received"
        assert "Court C at Riverside Arena on 2030-06-03" in notification.message
        assert notification.metadata["price"] == "500.00"

    def test_cancelled_notification(self):
        """Test the cancellation notification."""
        booking, court, facility = self._context()

        notification = booking_cancelled_notification(1, booking, court, facility)

        assert notification.title == "Booking Cancelled"
        assert notification.metadata == {"bookingId": 11, "courtId": 5, "facilityId": 2}

    @patch("scheduler.notifications.pika.BlockingConnection")
    def test_rabbitmq_dispatcher_uses_durable_queue(self, mock_connection):
        """Test notifications are queued persistently."""
        channel = MagicMock()
        mock_connection.return_value.channel.return_value = channel
        booking, court, facility = self._context()

        RabbitMQNotificationDispatcher("rabbitmq", "notifications").notify_booking_created(1, booking, court, facility)

        channel.queue_declare.assert_called_once_with(queue="notifications", durable=True)
        kwargs = channel.basic_publish.call_args.kwargs
        assert kwargs["routing_key"] == "notifications"
        assert kwargs["properties"].delivery_mode == 2
        assert json.loads(kwargs["body"])["type"] == "BOOKING_CREATED"

    def test_build_notification_dispatcher(self):
        """Test the configured backend is selected."""
        assert isinstance(build_notification_dispatcher(Settings()), LoggingNotificationDispatcher)
        assert isinstance(
            build_notification_dispatcher(Settings(notification_backend="rabbitmq")),
            RabbitMQNotificationDispatcher,
        )
