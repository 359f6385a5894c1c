"""
Order service: turns a cart or an explicit item list into an order.

Placing an order is one database transaction. Every product row is locked
while its stock is checked, prices are snapshotted onto the order items, stock
is decremented with a conditional UPDATE and the user's cart is emptied. Any
failure rolls all of it back.
"""
import logging
from decimal import Decimal
from typing import Dict, FrozenSet, List, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, joinedload, selectinload, sessionmaker

from shopnexus.db import CartItem, Order, OrderItem, OrderStatus, PaymentStatus, Product, transaction
from shopnexus.exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from shopnexus.middleware import hash_identifier
from shopnexus.models import OrderItemRequest, OrderOut

logger = logging.getLogger(__name__)


# Legal order status moves; setting the current status again is always allowed
STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return current == requested or requested in STATUS_TRANSITIONS[current]


def load_order(session: Session, order_id: str) -> Order:
    """Fetch an order with items, products and owner, refreshed from the store"""
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(
            selectinload(Order.items).joinedload(OrderItem.product),
            joinedload(Order.user),
        )
        .execution_options(populate_existing=True)
    )
    order = session.scalar(stmt)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


class OrderService:
    """Service for order placement and order reads"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_order(self, user_id: str, items: Sequence[OrderItemRequest]) -> OrderOut:
        """
        Place an order for the given items.

        Raises:
            ValidationError: empty item list or non-positive quantity
            ProductNotFoundError: an item names an unknown product
            InsufficientStockError: an item asks for more than is in stock
            TransactionFailureError: the store aborted the transaction
        """
        self._validate_items(items)
        with transaction(self.session_factory) as session:
            order = self._place(session, user_id, items)
            return OrderOut.model_validate(order)

    def create_order_from_cart(self, user_id: str) -> OrderOut:
        """Place an order for everything in the user's cart"""
        with transaction(self.session_factory) as session:
            rows = session.scalars(
                select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at.asc())
            ).all()
            if not rows:
                raise ValidationError("Cannot checkout empty cart")

            items = [OrderItemRequest(product_id=row.product_id, quantity=row.quantity) for row in rows]
            order = self._place(session, user_id, items)
            return OrderOut.model_validate(order)

    @staticmethod
    def _validate_items(items: Sequence[OrderItemRequest]) -> None:
        if not items:
            raise ValidationError("Order must contain at least one item")
        for item in items:
            if item.quantity < 1:
                raise ValidationError("Quantity must be a positive integer")

    def _place(self, session: Session, user_id: str, items: Sequence[OrderItemRequest]) -> Order:
        # 1-2. Lock and check every product before writing anything
        lines = []
        for item in items:
            product = session.scalar(
                select(Product).where(Product.id == item.product_id).with_for_update()
            )
            if product is None:
                raise ProductNotFoundError(item.product_id)

            if product.stock < item.quantity:
                raise InsufficientStockError(product.name, item.quantity, product.stock)

            lines.append((product, item.quantity, Decimal(product.price)))

        # 3. Total from snapshot prices
        total_amount = sum((price * quantity for _, quantity, price in lines), Decimal("0"))

        # 4. Order row
        order = Order(
            user_id=user_id,
            total_amount=total_amount,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
        )
        session.add(order)
        session.flush()

        # 5. Items and stock
        for position, (product, quantity, price) in enumerate(lines):
            session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    position=position,
                    quantity=quantity,
                    price=price,
                )
            )
            result = session.execute(
                update(Product)
                .where(Product.id == product.id, Product.stock >= quantity)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another order took the stock after our check
                available = session.scalar(select(Product.stock).where(Product.id == product.id))
                raise InsufficientStockError(product.name, quantity, available or 0)

        # 6. The whole cart becomes the order
        session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        session.flush()

        logger.info(
            f"Order created: {order.id}, Total: {total_amount}",
            extra={"order_id": order.id, "hashed_user_id": hash_identifier(user_id), "items": len(lines)},
        )

        # 7. Fully materialized order
        return load_order(session, order.id)

    def get_order_by_id(self, order_id: str) -> OrderOut:
        with transaction(self.session_factory) as session:
            return OrderOut.model_validate(load_order(session, order_id))

    def get_user_orders(self, user_id: str) -> List[OrderOut]:
        return self._list_orders(user_id)

    def get_all_orders(self) -> List[OrderOut]:
        """Every order in the shop; callers must hold the admin role"""
        return self._list_orders(None)

    def _list_orders(self, user_id) -> List[OrderOut]:
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items).joinedload(OrderItem.product),
                joinedload(Order.user),
            )
            .order_by(Order.created_at.desc())
        )
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        with transaction(self.session_factory) as session:
            return [OrderOut.model_validate(order) for order in session.scalars(stmt).unique()]

    def update_order_status(self, order_id: str, status: OrderStatus) -> OrderOut:
        """
        Move an order along its lifecycle.

        Raises:
            OrderNotFoundError: unknown order
            InvalidStatusTransitionError: the move is not in STATUS_TRANSITIONS
        """
        with transaction(self.session_factory) as session:
            order = session.scalar(select(Order).where(Order.id == order_id).with_for_update())
            if order is None:
                raise OrderNotFoundError(order_id)

            if not can_transition(order.status, status):
                raise InvalidStatusTransitionError(order.status.value, status.value)

            if order.status != status:
                logger.info(
                    f"Order {order_id} status {order.status.value} -> {status.value}",
                    extra={"order_id": order_id},
                )
                order.status = status
                session.flush()

            return OrderOut.model_validate(load_order(session, order_id))
