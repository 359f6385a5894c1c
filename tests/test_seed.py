"""Tests for demo data seeding."""

from shopnexus.db import Product, User
from shopnexus.seed import PRODUCTS, USERS, seed


def test_seed_is_idempotent(database, count_rows):
    first = seed(database)
    second = seed(database)

    assert first == {"users": len(USERS), "products": len(PRODUCTS)}
    assert second == {"users": 0, "products": 0}
    assert count_rows(User) == len(USERS)
    assert count_rows(Product) == len(PRODUCTS)
