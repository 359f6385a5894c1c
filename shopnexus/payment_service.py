"""
Payment service: payment intents and reconciliation of payment results.

The payment mode is configuration (PaymentMode), never inferred from the shape
of a payment intent id. In MOCK mode every confirmation succeeds without an
external call; in LIVE mode the gateway is asked for the intent's status and
only "succeeded" counts.
"""
import enum
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from shopnexus.config import Config
from shopnexus.db import CartItem, Order, OrderStatus, PaymentStatus, transaction
from shopnexus.exceptions import (
    ConflictError,
    ForbiddenError,
    OrderNotFoundError,
    PaymentConfigurationError,
    PaymentGatewayError,
    ValidationError,
    WebhookSignatureError,
)
from shopnexus.middleware import hash_identifier
from shopnexus.models import OrderOut, PaymentIntentResponse, PaymentOutcome
from shopnexus.order_service import load_order

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


class PaymentMode(str, enum.Enum):
    MOCK = "mock"
    LIVE = "live"


@dataclass
class IntentInfo:
    """The parts of a gateway payment intent reconciliation needs"""
    id: str
    status: str
    amount: Optional[int] = None
    client_secret: Optional[str] = None
    payment_method_types: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class GatewayEvent:
    """A verified webhook event"""
    type: str
    data: Dict[str, Any]


def to_minor_units(amount: Decimal) -> int:
    """Amount in the smallest currency unit (paise, cents)"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    """Payment gateway backed by the Stripe API"""

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @staticmethod
    def _intent_info(intent) -> IntentInfo:
        return IntentInfo(
            id=intent["id"],
            status=intent["status"],
            amount=intent["amount"],
            client_secret=intent["client_secret"],
            payment_method_types=list(intent["payment_method_types"] or []),
            metadata=dict(intent["metadata"] or {}),
        )

    def create_intent(self, amount: int, currency: str, metadata: Dict[str, str]) -> IntentInfo:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Failed to create payment intent: {e}") from e
        return self._intent_info(intent)

    def retrieve_intent(self, intent_id: str) -> IntentInfo:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Failed to retrieve payment intent: {e}") from e
        return self._intent_info(intent)

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        if not self.webhook_secret:
            raise PaymentConfigurationError("Stripe webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e}") from e
        return GatewayEvent(type=event["type"], data=dict(event["data"]["object"]))


class PaymentService:
    """Service for payment intents and payment reconciliation"""

    def __init__(
        self,
        session_factory: sessionmaker,
        mode: PaymentMode = PaymentMode.LIVE,
        gateway=None,
        currency: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.mode = mode
        self.gateway = gateway
        self.currency = currency or Config.PAYMENT_CURRENCY

    def _require_gateway(self):
        if self.gateway is None:
            raise PaymentConfigurationError(
                "Stripe is not configured. Set STRIPE_SECRET_KEY or use PAYMENT_MODE=mock"
            )
        return self.gateway

    @staticmethod
    def _owned_order(session: Session, user_id: str, order_id: str, lock: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if lock:
            stmt = stmt.with_for_update()
        order = session.scalar(stmt)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.user_id != user_id:
            raise ForbiddenError("You do not have permission to pay for this order")
        return order

    def create_payment_intent(
        self,
        user_id: str,
        order_id: str,
        amount: Optional[Decimal] = None,
        mode: Optional[PaymentMode] = None,
    ) -> PaymentIntentResponse:
        """
        Start a payment for an order.

        The charged amount is the order total; a caller-supplied amount must
        match it. MOCK mode returns placeholder ids derived from the order id.
        """
        mode = mode or self.mode
        with transaction(self.session_factory) as session:
            order = self._owned_order(session, user_id, order_id)
            if order.payment_status == PaymentStatus.PAID:
                raise ConflictError("Order is already paid")
            if order.payment_status == PaymentStatus.REFUNDED:
                raise ConflictError("Order has been refunded")
            total = order.total_amount

        if amount is not None and Decimal(amount) != total:
            raise ValidationError(f"Amount {amount} does not match order total {total}")

        if mode == PaymentMode.MOCK:
            logger.info(f"Mock payment mode: creating mock payment intent for order {order_id}")
            return PaymentIntentResponse(
                client_secret=f"mock_secret_{order_id}",
                payment_intent_id=f"mock_pi_{order_id}",
                mock_mode=True,
            )

        intent = self._require_gateway().create_intent(
            amount=to_minor_units(total),
            currency=self.currency,
            metadata={"orderId": order_id, "userId": user_id},
        )
        logger.info(
            f"Payment intent created for order {order_id}",
            extra={"order_id": order_id, "hashed_user_id": hash_identifier(user_id)},
        )
        return PaymentIntentResponse(client_secret=intent.client_secret or "", payment_intent_id=intent.id)

    def confirm_payment(
        self,
        user_id: str,
        order_id: str,
        payment_intent_id: str,
        mode: Optional[PaymentMode] = None,
    ) -> PaymentOutcome:
        """
        Reconcile a payment the client reports as done.

        Returns a PaymentOutcome; a payment that did not succeed is reported
        with success=False rather than raised. Safe to call repeatedly: stock
        is never touched here and a paid order stays paid.

        Raises:
            ConflictError: the order has been refunded
        """
        mode = mode or self.mode
        with transaction(self.session_factory) as session:
            order = self._owned_order(session, user_id, order_id)
            expected_amount = to_minor_units(order.total_amount)

        reason = None
        if mode == PaymentMode.MOCK:
            logger.info(f"Mock payment mode: confirming payment for order {order_id}")
            succeeded, payment_method = True, "mock_card"
        else:
            intent = self._require_gateway().retrieve_intent(payment_intent_id)
            payment_method = intent.payment_method_types[0] if intent.payment_method_types else "card"
            succeeded = intent.status == SUCCEEDED
            if not succeeded:
                reason = f"Payment intent status is {intent.status}"
            elif intent.metadata.get("orderId") not in (None, order_id):
                succeeded, reason = False, "Payment intent belongs to a different order"
            elif intent.amount is not None and intent.amount != expected_amount:
                succeeded, reason = False, "Payment amount does not match order total"
            logger.info(
                f"Payment verification result for order {order_id}: {intent.status}",
                extra={"order_id": order_id, "status": intent.status, "succeeded": succeeded},
            )

        if succeeded:
            with transaction(self.session_factory) as session:
                order = self._mark_paid(session, order_id, payment_intent_id, payment_method)
                return PaymentOutcome(success=True, order_id=order_id, order=OrderOut.model_validate(order))

        with transaction(self.session_factory) as session:
            self._mark_failed(session, order_id)
        logger.warning(f"Payment failed for order {order_id}: {reason}", extra={"order_id": order_id})
        return PaymentOutcome(success=False, order_id=order_id, reason=reason or "Payment was not successful")

    def _mark_paid(self, session: Session, order_id: str, payment_intent_id: str, payment_method: str) -> Order:
        order = session.scalar(select(Order).where(Order.id == order_id).with_for_update())
        if order is None:
            raise OrderNotFoundError(order_id)

        # Refunded is final
        if order.payment_status == PaymentStatus.REFUNDED:
            raise ConflictError("Order has been refunded")

        if order.payment_status in (PaymentStatus.UNPAID, PaymentStatus.FAILED):
            order.payment_status = PaymentStatus.PAID
            order.payment_intent_id = payment_intent_id
            order.payment_method = payment_method
        if order.status == OrderStatus.PENDING:
            order.status = OrderStatus.PROCESSING

        # Order placement already emptied the cart; clear anything added since
        cleared = session.execute(delete(CartItem).where(CartItem.user_id == order.user_id)).rowcount
        session.flush()

        logger.info(
            f"Order {order_id} paid, cart cleared: {cleared or 0} items removed",
            extra={"order_id": order_id, "hashed_user_id": hash_identifier(order.user_id)},
        )
        return load_order(session, order_id)

    @staticmethod
    def _mark_failed(session: Session, order_id: str) -> None:
        order = session.scalar(select(Order).where(Order.id == order_id).with_for_update())
        if order is None:
            raise OrderNotFoundError(order_id)
        # A failed retry never overrides a settled payment
        if order.payment_status in (PaymentStatus.UNPAID, PaymentStatus.FAILED):
            order.payment_status = PaymentStatus.FAILED

    def handle_webhook(self, payload: bytes, signature: str) -> str:
        """
        Apply a signed gateway event; returns the event type.

        Events for orders that cannot be found are logged and acknowledged.
        """
        event = self._require_gateway().construct_event(payload, signature)
        data = event.data
        metadata = data.get("metadata") or {}
        order_id = metadata.get("orderId")

        if event.type == "payment_intent.succeeded":
            if order_id:
                methods = data.get("payment_method_types") or []
                payment_method = methods[0] if methods else "card"
                with transaction(self.session_factory) as session:
                    try:
                        self._mark_paid(session, order_id, data.get("id"), payment_method)
                    except OrderNotFoundError:
                        logger.warning(f"Webhook for unknown order {order_id}")
                    except ConflictError as e:
                        logger.warning(f"Ignoring payment success for order {order_id}: {e}")

        elif event.type == "payment_intent.payment_failed":
            if order_id:
                with transaction(self.session_factory) as session:
                    try:
                        self._mark_failed(session, order_id)
                    except OrderNotFoundError:
                        logger.warning(f"Webhook for unknown order {order_id}")

        elif event.type == "charge.refunded":
            self._mark_refunded(data.get("payment_intent"), order_id)

        else:
            logger.info(f"Unhandled event type {event.type}")

        return event.type

    def _mark_refunded(self, payment_intent_id: Optional[str], order_id: Optional[str]) -> None:
        with transaction(self.session_factory) as session:
            if payment_intent_id:
                stmt = select(Order).where(Order.payment_intent_id == payment_intent_id)
            elif order_id:
                stmt = select(Order).where(Order.id == order_id)
            else:
                logger.warning("Refund event without payment intent or order reference")
                return

            order = session.scalar(stmt.with_for_update())
            if order is None:
                logger.warning(f"Refund for unknown payment intent {payment_intent_id}")
                return
            if order.payment_status == PaymentStatus.PAID:
                order.payment_status = PaymentStatus.REFUNDED
                logger.info(f"Order {order.id} refunded", extra={"order_id": order.id})
