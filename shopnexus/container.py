"""
Process-wide wiring: the store handles and the services built on them.

Created once at application start-up and closed at shutdown; request handlers
receive it through get_services.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from shopnexus.cart_service import CartService, GuestCart
from shopnexus.catalog_service import ProductService
from shopnexus.config import Config
from shopnexus.db import Database
from shopnexus.exceptions import PaymentConfigurationError, StoreConnectionError
from shopnexus.order_service import OrderService
from shopnexus.payment_service import PaymentMode, PaymentService, StripeGateway
from shopnexus.redis_client import RedisClient
from shopnexus.storage import ImageStorage
from shopnexus.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    database: Database
    redis: Optional[RedisClient]
    products: ProductService
    carts: CartService
    orders: OrderService
    payments: PaymentService
    users: UserService
    images: Optional[ImageStorage] = None

    def guest_cart(self, cart_id: str) -> GuestCart:
        if self.redis is None:
            raise StoreConnectionError("Guest cart store is not available")
        return GuestCart(self.redis, cart_id)

    def close(self) -> None:
        if self.redis is not None:
            self.redis.close()
        self.database.close()


def build_services(
    database: Optional[Database] = None,
    redis: Optional[RedisClient] = None,
    payment_gateway=None,
    payment_mode: Optional[PaymentMode] = None,
    images: Optional[ImageStorage] = None,
) -> Services:
    """Assemble services, filling any missing collaborator from Config"""
    if database is None:
        database = Database()
        database.create_all()

    if redis is None:
        try:
            redis = RedisClient()
        except StoreConnectionError as e:
            # Guest cart endpoints report 503 until Redis is reachable
            logger.warning(f"Redis unavailable at start-up: {e}")

    if payment_mode is None:
        try:
            payment_mode = PaymentMode(Config.PAYMENT_MODE.lower())
        except ValueError:
            raise PaymentConfigurationError(f"Unknown PAYMENT_MODE {Config.PAYMENT_MODE!r}")

    if payment_gateway is None and Config.STRIPE_SECRET_KEY:
        payment_gateway = StripeGateway(Config.STRIPE_SECRET_KEY, Config.STRIPE_WEBHOOK_SECRET)

    if images is None and Config.IMAGE_BUCKET:
        images = ImageStorage(Config.IMAGE_BUCKET)

    session_factory = database.session_factory
    return Services(
        database=database,
        redis=redis,
        products=ProductService(session_factory),
        carts=CartService(session_factory),
        orders=OrderService(session_factory),
        payments=PaymentService(session_factory, mode=payment_mode, gateway=payment_gateway),
        users=UserService(session_factory),
        images=images,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
