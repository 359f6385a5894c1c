"""Pytest fixtures for ShopNexus tests."""

import json
from decimal import Decimal

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from shopnexus.cart_service import CartService
from shopnexus.catalog_service import ProductService
from shopnexus.container import build_services
from shopnexus.db import CartItem, Database, Order, Product, Role, User, transaction
from shopnexus.exceptions import PaymentGatewayError, WebhookSignatureError
from shopnexus.order_service import OrderService
from shopnexus.payment_service import GatewayEvent, IntentInfo, PaymentMode, PaymentService
from shopnexus.redis_client import RedisClient

VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway:
    """In-process stand-in for the Stripe gateway"""

    def __init__(self):
        self.intents = {}
        self.valid_signature = VALID_SIGNATURE
        self.created = []
        self.retrieved = []

    def add_intent(self, intent_id, order_id, amount, status="succeeded", methods=("card",)):
        intent = IntentInfo(
            id=intent_id,
            status=status,
            amount=amount,
            client_secret=f"{intent_id}_secret",
            payment_method_types=list(methods),
            metadata={"orderId": order_id},
        )
        self.intents[intent_id] = intent
        return intent

    def create_intent(self, amount, currency, metadata):
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append({"amount": amount, "currency": currency, "metadata": dict(metadata)})
        intent = IntentInfo(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            client_secret=f"{intent_id}_secret",
            payment_method_types=["card"],
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id):
        self.retrieved.append(intent_id)
        if intent_id not in self.intents:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}")
        return self.intents[intent_id]

    def construct_event(self, payload, signature):
        if signature != self.valid_signature:
            raise WebhookSignatureError("Webhook signature verification failed")
        body = json.loads(payload)
        return GatewayEvent(type=body["type"], data=body["data"]["object"])


@pytest.fixture
def database():
    """Fresh in-memory database with the schema created."""
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def session_factory(database):
    return database.session_factory


def _add_user(database, name, email, role=Role.USER):
    with transaction(database.session_factory) as session:
        user = User(name=name, email=email, role=role)
        session.add(user)
        session.flush()
        return user.id


@pytest.fixture
def user_id(database):
    return _add_user(database, "Test User", "user@shopnexus.com")


@pytest.fixture
def other_user_id(database):
    return _add_user(database, "Other User", "other@shopnexus.com")


@pytest.fixture
def admin_id(database):
    return _add_user(database, "Admin User", "admin@shopnexus.com", Role.ADMIN)


@pytest.fixture
def make_product(database):
    """Factory creating a product and returning its id."""

    def _make(name="Widget", price="25.00", stock=10):
        with transaction(database.session_factory) as session:
            product = Product(name=name, description=f"{name} description", price=Decimal(price), stock=stock)
            session.add(product)
            session.flush()
            return product.id

    return _make


@pytest.fixture
def stock_of(database):
    def _stock(product_id):
        with transaction(database.session_factory) as session:
            return session.scalar(select(Product.stock).where(Product.id == product_id))

    return _stock


@pytest.fixture
def count_rows(database):
    """Count rows of a table, optionally filtered by user."""

    def _count(model, user_id=None):
        stmt = select(func.count()).select_from(model)
        if user_id is not None:
            stmt = stmt.where(model.user_id == user_id)
        with transaction(database.session_factory) as session:
            return session.scalar(stmt)

    return _count


@pytest.fixture
def cart_rows(count_rows):
    return lambda user_id: count_rows(CartItem, user_id)


@pytest.fixture
def order_rows(count_rows):
    return lambda user_id=None: count_rows(Order, user_id)


@pytest.fixture
def products(session_factory):
    return ProductService(session_factory)


@pytest.fixture
def carts(session_factory):
    return CartService(session_factory)


@pytest.fixture
def orders(session_factory):
    return OrderService(session_factory)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def payments(session_factory, gateway):
    return PaymentService(session_factory, mode=PaymentMode.MOCK, gateway=gateway, currency="inr")


@pytest.fixture
def live_payments(session_factory, gateway):
    return PaymentService(session_factory, mode=PaymentMode.LIVE, gateway=gateway, currency="inr")


@pytest.fixture
def redis_client():
    return RedisClient(client=fakeredis.FakeRedis(decode_responses=True))


@pytest.fixture
def services(database, redis_client, gateway):
    return build_services(
        database=database,
        redis=redis_client,
        payment_gateway=gateway,
        payment_mode=PaymentMode.MOCK,
    )


@pytest.fixture
def client(services):
    from shopnexus.main import create_app

    with TestClient(create_app(services)) as test_client:
        yield test_client