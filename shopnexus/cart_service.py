"""
Cart service for authenticated and guest shopping carts.

Both kinds of cart implement CartStorage: a PersistedCart is the set of a
user's cart rows in the relational store, a GuestCart is a Redis hash keyed by
the client's cart id. Logging in merges the guest cart into the persisted one
exactly once.
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from shopnexus import atomic_scripts
from shopnexus.config import Config
from shopnexus.db import CartItem, Product, transaction
from shopnexus.exceptions import (
    CartItemNotFoundError,
    InsufficientStockError,
    LimitExceededError,
    ProductNotFoundError,
    ShopError,
    StoreConnectionError,
    ValidationError,
)
from shopnexus.middleware import hash_identifier
from shopnexus.models import CartItemOut, CartResponse, GuestCartItem, GuestCartResponse, MergeResult
from shopnexus.redis_client import RedisClient

logger = logging.getLogger(__name__)


class CartStorage(ABC):
    """Common surface of guest and persisted carts"""

    @abstractmethod
    def lines(self) -> List[GuestCartItem]:
        """Current (product, quantity) pairs"""

    @abstractmethod
    def add(self, product_id: str, quantity: int):
        """Add quantity to a product's line, creating it if needed"""

    @abstractmethod
    def clear(self) -> int:
        """Remove every line; returns the number removed"""


class PersistedCart(CartStorage):
    """A user's cart rows, bound to an open session"""

    def __init__(self, session: Session, user_id: str):
        self.session = session
        self.user_id = user_id

    def _rows(self) -> List[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.user_id == self.user_id)
            .options(selectinload(CartItem.product))
            .order_by(CartItem.created_at.asc())
        )
        return list(self.session.scalars(stmt))

    def _owned_row(self, item_id: str) -> CartItem:
        row = self.session.scalar(
            select(CartItem).where(CartItem.id == item_id, CartItem.user_id == self.user_id)
        )
        if row is None:
            raise CartItemNotFoundError(item_id)
        return row

    def lines(self) -> List[GuestCartItem]:
        return [GuestCartItem(product_id=row.product_id, quantity=row.quantity) for row in self._rows()]

    def add(self, product_id: str, quantity: int) -> CartItem:
        """
        Add to the cart, checking the combined quantity against stock.

        The product row is locked so the check sees the stock an order would.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be a positive integer")

        product = self.session.scalar(
            select(Product).where(Product.id == product_id).with_for_update()
        )
        if product is None:
            raise ProductNotFoundError(product_id)

        existing = self.session.scalar(
            select(CartItem).where(CartItem.user_id == self.user_id, CartItem.product_id == product_id)
        )
        current = existing.quantity if existing else 0
        if current + quantity > product.stock:
            raise InsufficientStockError(product.name, current + quantity, product.stock)

        if existing:
            existing.quantity = current + quantity
            row = existing
        else:
            row = CartItem(user_id=self.user_id, product_id=product_id, quantity=quantity)
            self.session.add(row)
        self.session.flush()
        return row

    def update(self, item_id: str, quantity: int) -> CartItem:
        if quantity < 1:
            raise ValidationError("Quantity must be a positive integer")

        row = self._owned_row(item_id)
        product = self.session.scalar(
            select(Product).where(Product.id == row.product_id).with_for_update()
        )
        if product.stock < quantity:
            raise InsufficientStockError(product.name, quantity, product.stock)

        row.quantity = quantity
        self.session.flush()
        return row

    def remove(self, item_id: str) -> None:
        self.session.delete(self._owned_row(item_id))

    def clear(self) -> int:
        result = self.session.execute(delete(CartItem).where(CartItem.user_id == self.user_id))
        return result.rowcount or 0


class GuestCart(CartStorage):
    """Guest cart held in a Redis hash of product_id -> quantity"""

    def __init__(
        self,
        redis: RedisClient,
        cart_id: str,
        ttl: Optional[int] = None,
        max_items: Optional[int] = None,
        max_quantity: Optional[int] = None,
    ):
        if not cart_id or not cart_id.strip():
            raise ValidationError("Cart ID is required")
        self.redis = redis
        self.cart_id = cart_id.strip()
        self.ttl = ttl or Config.GUEST_CART_TTL_SECONDS
        self.max_items = max_items or Config.MAX_ITEMS_PER_CART
        self.max_quantity = max_quantity or Config.MAX_QUANTITY_PER_ITEM

    @property
    def key(self) -> str:
        """Redis key for this cart"""
        return f"guest_cart:{self.cart_id}"

    def lines(self) -> List[GuestCartItem]:
        items = []
        for product_id, raw_quantity in self.redis.hgetall(self.key).items():
            try:
                quantity = int(raw_quantity)
            except (TypeError, ValueError):
                logger.warning(
                    f"Skipping unreadable guest cart line {product_id}",
                    extra={"hashed_cart_id": hash_identifier(self.cart_id)},
                )
                continue
            items.append(GuestCartItem(product_id=product_id, quantity=quantity))
        return items

    def add(self, product_id: str, quantity: int) -> GuestCartItem:
        """Add to a line; both cart limits are checked and applied atomically"""
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        if quantity > self.max_quantity:
            raise LimitExceededError(f"Quantity {quantity} exceeds maximum {self.max_quantity}")

        status, value = self.redis.run_script(
            atomic_scripts.ADD_LINE_SCRIPT,
            keys=[self.key],
            args=[product_id, quantity, self.max_items, self.max_quantity, self.ttl],
        )
        if status == atomic_scripts.MAX_QUANTITY_EXCEEDED:
            raise LimitExceededError(f"Quantity exceeds maximum {value}")
        if status == atomic_scripts.MAX_ITEMS_EXCEEDED:
            raise LimitExceededError(f"Cart exceeds maximum items {value}")

        return GuestCartItem(product_id=product_id, quantity=int(value))

    def set_quantity(self, product_id: str, quantity: int) -> Optional[GuestCartItem]:
        """Overwrite a line's quantity; zero removes the line"""
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")

        if quantity > self.max_quantity:
            raise LimitExceededError(f"Quantity {quantity} exceeds maximum {self.max_quantity}")

        status, _ = self.redis.run_script(
            atomic_scripts.SET_LINE_SCRIPT,
            keys=[self.key],
            args=[product_id, quantity, self.ttl],
        )
        if status == atomic_scripts.LINE_NOT_FOUND:
            raise CartItemNotFoundError(product_id)

        if quantity == 0:
            return None
        return GuestCartItem(product_id=product_id, quantity=quantity)

    def remove(self, product_id: str) -> bool:
        deleted = self.redis.hdel(self.key, product_id)
        if deleted > 0 and self.redis.hlen(self.key) > 0:
            self.redis.expire(self.key, self.ttl)
        return deleted > 0

    def clear(self) -> int:
        return self.redis.delete(self.key)

    def snapshot(self) -> GuestCartResponse:
        items = self.lines()
        return GuestCartResponse(
            cart_id=self.cart_id,
            items=items,
            total_items=sum(item.quantity for item in items),
        )


class CartService:
    """Service for authenticated cart operations"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_cart(self, user_id: str) -> CartResponse:
        with transaction(self.session_factory) as session:
            rows = PersistedCart(session, user_id)._rows()
            items = [CartItemOut.model_validate(row) for row in rows]

        total_price = sum((item.product.price * item.quantity for item in items), Decimal("0"))
        return CartResponse(
            items=items,
            total_items=sum(item.quantity for item in items),
            total_price=total_price,
        )

    def add_to_cart(self, user_id: str, product_id: str, quantity: int) -> CartItemOut:
        with transaction(self.session_factory) as session:
            row = PersistedCart(session, user_id).add(product_id, quantity)
            return CartItemOut.model_validate(row)

    def update_cart_item(self, user_id: str, item_id: str, quantity: int) -> CartItemOut:
        with transaction(self.session_factory) as session:
            row = PersistedCart(session, user_id).update(item_id, quantity)
            return CartItemOut.model_validate(row)

    def remove_from_cart(self, user_id: str, item_id: str) -> None:
        with transaction(self.session_factory) as session:
            PersistedCart(session, user_id).remove(item_id)

    def clear_cart(self, user_id: str) -> int:
        with transaction(self.session_factory) as session:
            return PersistedCart(session, user_id).clear()

    def merge_guest_cart(
        self,
        user_id: str,
        items: Iterable[GuestCartItem] = (),
        guest_cart: Optional[GuestCart] = None,
    ) -> MergeResult:
        """
        Replay guest cart lines into the user's cart.

        Each line is added in its own transaction; lines that fail (unknown
        product, not enough stock, malformed) are skipped and reported, never
        raised. The guest cart is cleared afterwards whatever the outcome.
        """
        lines = list(items)
        if guest_cart is not None:
            try:
                lines.extend(guest_cart.lines())
            except StoreConnectionError as e:
                logger.warning(f"Guest cart unavailable during merge: {e}")
                guest_cart = None

        merged: List[CartItemOut] = []
        skipped: List[str] = []
        try:
            for line in lines:
                if not line.product_id or line.quantity < 1:
                    skipped.append(line.product_id)
                    continue
                try:
                    merged.append(self.add_to_cart(user_id, line.product_id, line.quantity))
                except ShopError as e:
                    logger.warning(
                        f"Failed to merge item {line.product_id}: {e}",
                        extra={"hashed_user_id": hash_identifier(user_id), "error_type": type(e).__name__},
                    )
                    skipped.append(line.product_id)
        finally:
            if guest_cart is not None:
                guest_cart.clear()

        logger.info(
            f"Guest cart merged: {len(merged)} merged, {len(skipped)} skipped",
            extra={"hashed_user_id": hash_identifier(user_id)},
        )
        return MergeResult(merged_count=len(merged), skipped=skipped, items=merged)
