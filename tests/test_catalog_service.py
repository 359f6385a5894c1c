"""Tests for the product catalog."""

from decimal import Decimal

import pytest

from shopnexus.exceptions import ConflictError, ProductNotFoundError
from shopnexus.models import OrderItemRequest, ProductCreateRequest, ProductUpdateRequest


class TestProductService:
    def test_create_and_get(self, products):
        created = products.create_product(
            ProductCreateRequest(name="Lamp", description="Desk lamp", price=Decimal("39.90"), stock=4)
        )

        fetched = products.get_product(created.id)

        assert fetched.name == "Lamp"
        assert fetched.price == Decimal("39.90")
        assert fetched.stock == 4
        assert fetched.image is None

    def test_list_in_creation_order(self, products, make_product):
        make_product(name="First")
        make_product(name="Second")

        assert [p.name for p in products.list_products()] == ["First", "Second"]

    def test_partial_update(self, products, make_product):
        product_id = make_product(name="Mug", price="8.00", stock=3)

        updated = products.update_product(product_id, ProductUpdateRequest(stock=12))

        assert updated.stock == 12
        assert updated.name == "Mug"
        assert updated.price == Decimal("8.00")

    def test_get_missing(self, products):
        with pytest.raises(ProductNotFoundError):
            products.get_product("no-such-product")

    def test_update_missing(self, products):
        with pytest.raises(ProductNotFoundError):
            products.update_product("no-such-product", ProductUpdateRequest(stock=1))

    def test_delete_removes_cart_lines(self, products, carts, make_product, cart_rows, user_id):
        product_id = make_product()
        carts.add_to_cart(user_id, product_id, 1)

        products.delete_product(product_id)

        assert cart_rows(user_id) == 0
        with pytest.raises(ProductNotFoundError):
            products.get_product(product_id)

    def test_delete_ordered_product_conflicts(self, products, orders, make_product, user_id):
        product_id = make_product()
        orders.create_order(user_id, [OrderItemRequest(product_id=product_id, quantity=1)])

        with pytest.raises(ConflictError):
            products.delete_product(product_id)

        assert products.get_product(product_id).id == product_id

    def test_check_stock(self, products, make_product):
        product_id = make_product(stock=3)

        assert products.check_stock(product_id, 3) is True
        assert products.check_stock(product_id, 4) is False
        assert products.check_stock("no-such-product", 1) is False
