"""
Seed the database with demo users and products.

Usage:
    python -m shopnexus.seed
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

from shopnexus.db import Database, Product, Role, User, transaction

logger = logging.getLogger(__name__)

USERS = [
    {"name": "Admin User", "email": "admin@shopnexus.com", "role": Role.ADMIN},
    {"name": "Test User", "email": "user@shopnexus.com", "role": Role.USER},
]

PRODUCTS = [
    {
        "name": "Wireless Headphones",
        "description": "High-quality wireless headphones with noise cancellation",
        "price": Decimal("199.99"),
        "stock": 50,
    },
    {
        "name": "Smart Watch",
        "description": "Fitness tracking smart watch with heart rate monitor",
        "price": Decimal("299.99"),
        "stock": 30,
    },
    {
        "name": "Laptop Stand",
        "description": "Ergonomic aluminium laptop stand",
        "price": Decimal("49.99"),
        "stock": 100,
    },
    {
        "name": "Mechanical Keyboard",
        "description": "Hot-swappable mechanical keyboard with RGB lighting",
        "price": Decimal("129.99"),
        "stock": 40,
    },
]


def seed(database: Optional[Database] = None) -> dict:
    """Create tables and upsert the demo data; safe to run repeatedly"""
    database = database or Database()
    database.create_all()

    created = {"users": 0, "products": 0}
    with transaction(database.session_factory) as session:
        for data in USERS:
            if session.scalar(select(User).where(User.email == data["email"])) is None:
                session.add(User(**data))
                created["users"] += 1

        for data in PRODUCTS:
            if session.scalar(select(Product).where(Product.name == data["name"])) is None:
                session.add(Product(**data))
                created["products"] += 1

    logger.info(f"Seed complete: {created['users']} users, {created['products']} products created")
    return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    seed()
