"""
Catalog service for product reads and admin product management.
"""
import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from shopnexus.db import CartItem, OrderItem, Product, transaction
from shopnexus.exceptions import ConflictError, ProductNotFoundError
from shopnexus.models import ProductCreateRequest, ProductOut, ProductUpdateRequest

logger = logging.getLogger(__name__)


class ProductService:
    """Service for product operations"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_products(self) -> List[ProductOut]:
        with transaction(self.session_factory) as session:
            products = session.scalars(select(Product).order_by(Product.created_at.asc()))
            return [ProductOut.model_validate(p) for p in products]

    def get_product(self, product_id: str) -> ProductOut:
        with transaction(self.session_factory) as session:
            product = session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            return ProductOut.model_validate(product)

    def create_product(self, data: ProductCreateRequest) -> ProductOut:
        with transaction(self.session_factory) as session:
            product = Product(**data.model_dump())
            session.add(product)
            session.flush()
            logger.info(f"Product created: {product.id}", extra={"product_id": product.id})
            return ProductOut.model_validate(product)

    def update_product(self, product_id: str, data: ProductUpdateRequest) -> ProductOut:
        """Apply the fields present in the request; omitted fields are left alone"""
        with transaction(self.session_factory) as session:
            product = session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            for field, value in data.model_dump(exclude_unset=True).items():
                setattr(product, field, value)
            session.flush()
            return ProductOut.model_validate(product)

    def delete_product(self, product_id: str) -> None:
        """Delete a product that no order references"""
        with transaction(self.session_factory) as session:
            product = session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            has_orders = session.scalar(
                select(OrderItem.id).where(OrderItem.product_id == product_id).limit(1)
            )
            if has_orders:
                raise ConflictError("Cannot delete product with associated orders")

            session.execute(delete(CartItem).where(CartItem.product_id == product_id))
            session.delete(product)
            logger.info(f"Product deleted: {product_id}", extra={"product_id": product_id})

    def check_stock(self, product_id: str, quantity: int) -> bool:
        with transaction(self.session_factory) as session:
            stock = session.scalar(select(Product.stock).where(Product.id == product_id))
            if stock is None:
                return False
            return stock >= quantity
