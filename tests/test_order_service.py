"""Tests for order placement and order lifecycle."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from shopnexus.db import Database, Order, OrderItem, OrderStatus, PaymentStatus, Product, Role, User, transaction
from shopnexus.exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    TransactionFailureError,
    ValidationError,
)
from shopnexus.models import OrderItemRequest, ProductUpdateRequest
from shopnexus.order_service import OrderService, can_transition


def item(product_id, quantity):
    return OrderItemRequest(product_id=product_id, quantity=quantity)


class TestCreateOrder:
    def test_cart_to_order_scenario(self, carts, orders, make_product, stock_of, cart_rows, user_id):
        product_id = make_product(price="25.00", stock=10)

        carts.add_to_cart(user_id, product_id, 3)
        row = carts.add_to_cart(user_id, product_id, 4)
        assert row.quantity == 7
        assert cart_rows(user_id) == 1

        order = orders.create_order(user_id, [item(product_id, 7)])

        assert stock_of(product_id) == 3
        assert order.total_amount == Decimal("175.00")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.UNPAID
        assert cart_rows(user_id) == 0
        assert len(order.items) == 1
        assert order.items[0].quantity == 7
        assert order.items[0].price == Decimal("25.00")
        assert order.items[0].product.id == product_id
        assert order.user.id == user_id

    def test_insufficient_stock_changes_nothing(self, orders, make_product, stock_of, order_rows, user_id):
        product_id = make_product(stock=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            orders.create_order(user_id, [item(product_id, 5)])

        assert exc_info.value.product_name == "Widget"
        assert exc_info.value.available == 2
        assert stock_of(product_id) == 2
        assert order_rows() == 0

    def test_missing_product_rolls_back(self, carts, orders, make_product, stock_of, order_rows, cart_rows, user_id):
        product_id = make_product(stock=10)
        carts.add_to_cart(user_id, product_id, 1)

        with pytest.raises(ProductNotFoundError) as exc_info:
            orders.create_order(user_id, [item(product_id, 2), item("missing-product", 1)])

        assert exc_info.value.product_id == "missing-product"
        assert stock_of(product_id) == 10
        assert cart_rows(user_id) == 1
        assert order_rows() == 0

    def test_late_stock_failure_rolls_back_earlier_items(self, orders, make_product, stock_of, order_rows, database, user_id):
        first = make_product(name="First", stock=10)
        second = make_product(name="Second", stock=1)

        with pytest.raises(InsufficientStockError):
            orders.create_order(user_id, [item(first, 4), item(second, 2)])

        assert stock_of(first) == 10
        assert stock_of(second) == 1
        assert order_rows() == 0
        with transaction(database.session_factory) as session:
            assert session.scalar(select(func.count()).select_from(OrderItem)) == 0

    def test_repeated_lines_cannot_overdraw_stock(self, orders, make_product, stock_of, order_rows, user_id):
        product_id = make_product(stock=5)

        with pytest.raises(InsufficientStockError):
            orders.create_order(user_id, [item(product_id, 3), item(product_id, 3)])

        assert stock_of(product_id) == 5
        assert order_rows() == 0

    def test_total_is_exact_decimal_sum(self, orders, make_product, user_id):
        dime = make_product(name="Dime", price="0.10", stock=10)
        fifth = make_product(name="Fifth", price="0.20", stock=10)

        order = orders.create_order(user_id, [item(dime, 3), item(fifth, 1)])

        assert order.total_amount == Decimal("0.50")
        assert sum(i.price * i.quantity for i in order.items) == order.total_amount

    def test_price_snapshot_survives_price_change(self, orders, products, make_product, user_id):
        product_id = make_product(price="25.00", stock=10)
        order = orders.create_order(user_id, [item(product_id, 2)])

        products.update_product(product_id, ProductUpdateRequest(price=Decimal("99.99")))
        reloaded = orders.get_order_by_id(order.id)

        assert reloaded.total_amount == Decimal("50.00")
        assert reloaded.items[0].price == Decimal("25.00")
        assert reloaded.items[0].product.price == Decimal("99.99")

    def test_whole_cart_is_cleared(self, carts, orders, make_product, cart_rows, user_id):
        ordered = make_product(name="Ordered")
        other = make_product(name="Other")
        carts.add_to_cart(user_id, ordered, 1)
        carts.add_to_cart(user_id, other, 1)

        orders.create_order(user_id, [item(ordered, 1)])

        assert cart_rows(user_id) == 0

    def test_other_users_cart_untouched(self, carts, orders, make_product, cart_rows, user_id, other_user_id):
        product_id = make_product()
        carts.add_to_cart(other_user_id, product_id, 2)

        orders.create_order(user_id, [item(product_id, 1)])

        assert cart_rows(other_user_id) == 1

    def test_items_keep_request_order(self, orders, make_product, user_id):
        names = ["Alpha", "Bravo", "Charlie"]
        ids = [make_product(name=name) for name in names]

        order = orders.create_order(user_id, [item(pid, 1) for pid in reversed(ids)])

        assert [i.product.name for i in order.items] == list(reversed(names))

    def test_empty_item_list_rejected(self, orders, user_id):
        with pytest.raises(ValidationError):
            orders.create_order(user_id, [])

    def test_non_positive_quantity_rejected(self, orders, make_product, user_id):
        product_id = make_product()
        bad = OrderItemRequest.model_construct(product_id=product_id, quantity=0)

        with pytest.raises(ValidationError):
            orders.create_order(user_id, [bad])


class TestCreateOrderFromCart:
    def test_places_cart_contents(self, carts, orders, make_product, stock_of, cart_rows, user_id):
        first = make_product(name="First", price="10.00", stock=5)
        second = make_product(name="Second", price="2.50", stock=5)
        carts.add_to_cart(user_id, first, 2)
        carts.add_to_cart(user_id, second, 4)

        order = orders.create_order_from_cart(user_id)

        assert order.total_amount == Decimal("30.00")
        assert {i.product_id: i.quantity for i in order.items} == {first: 2, second: 4}
        assert stock_of(first) == 3
        assert stock_of(second) == 1
        assert cart_rows(user_id) == 0

    def test_empty_cart_rejected(self, orders, order_rows, user_id):
        with pytest.raises(ValidationError):
            orders.create_order_from_cart(user_id)
        assert order_rows() == 0

    def test_stock_drop_after_add_fails_whole_checkout(self, carts, orders, products, make_product, cart_rows, user_id):
        product_id = make_product(stock=5)
        carts.add_to_cart(user_id, product_id, 4)
        products.update_product(product_id, ProductUpdateRequest(stock=3))

        with pytest.raises(InsufficientStockError):
            orders.create_order_from_cart(user_id)

        assert cart_rows(user_id) == 1


class TestOrderReads:
    def test_user_orders_newest_first(self, orders, make_product, user_id, other_user_id):
        product_id = make_product(stock=10)
        first = orders.create_order(user_id, [item(product_id, 1)])
        second = orders.create_order(user_id, [item(product_id, 2)])
        orders.create_order(other_user_id, [item(product_id, 1)])

        result = orders.get_user_orders(user_id)

        assert [o.id for o in result] == [second.id, first.id]

    def test_all_orders_include_owner(self, orders, make_product, user_id, other_user_id):
        product_id = make_product(stock=10)
        orders.create_order(user_id, [item(product_id, 1)])
        orders.create_order(other_user_id, [item(product_id, 1)])

        result = orders.get_all_orders()

        assert len(result) == 2
        assert {o.user.email for o in result} == {"user@shopnexus.com", "other@shopnexus.com"}
        assert all(o.items and o.items[0].product.name == "Widget" for o in result)

    def test_missing_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            orders.get_order_by_id("no-such-order")


class TestOrderStatus:
    @pytest.fixture
    def order_id(self, orders, make_product, user_id):
        product_id = make_product()
        return orders.create_order(user_id, [item(product_id, 1)]).id

    def test_forward_lifecycle(self, orders, order_id):
        for status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            assert orders.update_order_status(order_id, status).status == status

    def test_backwards_move_rejected(self, orders, order_id):
        orders.update_order_status(order_id, OrderStatus.PROCESSING)
        orders.update_order_status(order_id, OrderStatus.SHIPPED)
        orders.update_order_status(order_id, OrderStatus.DELIVERED)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            orders.update_order_status(order_id, OrderStatus.PENDING)

        assert exc_info.value.current == "DELIVERED"
        assert orders.get_order_by_id(order_id).status == OrderStatus.DELIVERED

    def test_cancel_from_pending(self, orders, order_id):
        assert orders.update_order_status(order_id, OrderStatus.CANCELLED).status == OrderStatus.CANCELLED

    def test_same_status_is_noop(self, orders, order_id):
        assert orders.update_order_status(order_id, OrderStatus.PENDING).status == OrderStatus.PENDING

    def test_cancel_does_not_restock(self, orders, order_id, stock_of):
        order = orders.get_order_by_id(order_id)
        before = stock_of(order.items[0].product_id)

        orders.update_order_status(order_id, OrderStatus.CANCELLED)

        assert stock_of(order.items[0].product_id) == before

    def test_unknown_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            orders.update_order_status("no-such-order", OrderStatus.PROCESSING)

    @pytest.mark.parametrize(
        "current,requested,allowed",
        [
            (OrderStatus.PENDING, OrderStatus.SHIPPED, False),
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED, True),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED, False),
            (OrderStatus.CANCELLED, OrderStatus.PROCESSING, False),
        ],
    )
    def test_transition_graph(self, current, requested, allowed):
        assert can_transition(current, requested) is allowed


class TestConcurrentOrders:
    def test_at_most_one_of_two_overlapping_orders_wins(self, tmp_path):
        database = Database(f"sqlite:///{tmp_path / 'orders.db'}")
        database.create_all()
        try:
            with transaction(database.session_factory) as session:
                buyers = [User(name=f"Buyer {n}", email=f"buyer{n}@shopnexus.com", role=Role.USER) for n in range(2)]
                product = Product(name="Limited", description="", price=Decimal("10.00"), stock=5)
                session.add_all(buyers + [product])
                session.flush()
                buyer_ids = [b.id for b in buyers]
                product_id = product.id

            service = OrderService(database.session_factory)
            barrier = threading.Barrier(2)
            results = []

            def place(buyer_id):
                barrier.wait()
                try:
                    service.create_order(buyer_id, [item(product_id, 3)])
                    results.append("ok")
                except (InsufficientStockError, TransactionFailureError) as e:
                    results.append(type(e).__name__)

            threads = [threading.Thread(target=place, args=(buyer_id,)) for buyer_id in buyer_ids]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=60)

            successes = results.count("ok")
            assert len(results) == 2
            assert successes <= 1

            with transaction(database.session_factory) as session:
                stock = session.scalar(select(Product.stock).where(Product.id == product_id))
                order_count = session.scalar(select(func.count()).select_from(Order))
            assert stock == 5 - 3 * successes
            assert stock >= 0
            assert order_count == successes
        finally:
            database.close()
