"""Payment rows owned by the payment subsystem, as seen by the scheduler.

The scheduler only opens a placeholder when a booking is created and asks for
refunds after a cancellation has committed. Refunds run as a compensating
action in their own transaction so a payment provider outage never blocks a
cancellation.
"""
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import List, Protocol

from circuitbreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.models import Booking, Payment, PaymentStatus

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.SUCCEEDED)


def open_payment(session: Session, booking: Booking, amount: Decimal, currency: str, captured: bool) -> Payment:
    payment = Payment(
        booking=booking,
        amount=amount,
        currency=currency,
        status=PaymentStatus.SUCCEEDED if captured else PaymentStatus.PENDING,
    )
    session.add(payment)
    return payment


class PaymentGateway(Protocol):
    def refund(self, payment: Payment) -> str:
        """Refund ``payment`` with the provider and return the provider reference."""
        ...


class LedgerPaymentGateway:
    """Records refunds locally; no external provider is contacted."""

    def refund(self, payment: Payment) -> str:
        return f"refund_{payment.id}_{secrets.token_hex(6)}"


class RefundProcessor:
    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway | None = None,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway or LedgerPaymentGateway()
        breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name="payment-refunds",
        )
        self._refund_with_provider = breaker(self._gateway.refund)

    def refund_booking(self, booking_id: int) -> bool:
        """Refund every open payment of a cancelled booking.

        Returns False when any refund could not be completed; the failure is
        logged and the payment is left in its previous state.
        """
        try:
            with self._session_factory() as session, session.begin():
                payments: List[Payment] = list(
                    session.scalars(
                        select(Payment).where(
                            Payment.booking_id == booking_id,
                            Payment.status.in_(REFUNDABLE_STATUSES),
                        )
                    )
                )
                for payment in payments:
                    payment.provider_ref = self._refund_with_provider(payment)
                    payment.status = PaymentStatus.REFUNDED
                    logger.info("Refunded payment %s for booking %s", payment.id, booking_id)
        except CircuitBreakerError:
            logger.error("Refund for booking %s skipped: payment provider circuit is open", booking_id)
            return False
        except SQLAlchemyError:
            logger.exception("Refund for booking %s could not be recorded", booking_id)
            return False
        except Exception:
            logger.exception("Refund for booking %s failed at the payment provider", booking_id)
            return False
        return True
