"""
Pydantic models for catalog, cart, order and payment requests and responses.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from shopnexus.db import OrderStatus, PaymentStatus, Role


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Catalog

class ProductOut(ORMModel):
    """Product as shown to shoppers and admins"""
    id: str
    name: str
    description: str
    price: Decimal
    stock: int
    image: Optional[str] = None
    created_at: datetime


class ProductCreateRequest(BaseModel):
    """Request model for creating a product"""
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field("", description="Product description")
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, description="Unit price")
    stock: int = Field(0, ge=0, description="Available inventory")
    image: Optional[str] = Field(None, description="Image URL")


class ProductUpdateRequest(BaseModel):
    """Partial update of a product; omitted fields are left unchanged"""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None


class UploadResponse(BaseModel):
    message: str
    image_url: str


# Users

class UserSummary(ORMModel):
    """Owning-user projection attached to orders"""
    id: str
    name: str
    email: str


class RegisterRequest(BaseModel):
    """Request model for self-registration"""
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Email address")


class UserOut(ORMModel):
    id: str
    name: str
    email: str
    role: Role


class Identity(BaseModel):
    """Verified caller identity supplied by the access gate"""
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# Cart

class CartItemOut(ORMModel):
    """Cart row with product detail"""
    id: str
    product_id: str
    quantity: int
    created_at: datetime
    product: ProductOut


class CartResponse(BaseModel):
    """Response model for cart retrieval"""
    items: List[CartItemOut] = Field(default_factory=list)
    total_items: int = Field(0, description="Total number of units")
    total_price: Decimal = Field(Decimal("0"), description="Total at current prices")


class AddCartItemRequest(BaseModel):
    """Request model for adding cart items"""
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1, description="Quantity to add")


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., ge=1, description="New quantity")


class GuestCartItem(BaseModel):
    """Guest cart line; validated per item during merge rather than per request"""
    product_id: str = Field("", description="Product identifier")
    quantity: int = Field(0, description="Item quantity")


class GuestCartQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=0, description="New quantity; 0 removes the line")


class GuestCartResponse(BaseModel):
    cart_id: str
    items: List[GuestCartItem] = Field(default_factory=list)
    total_items: int = 0


class MergeCartRequest(BaseModel):
    """Request model for merging a guest cart on login"""
    items: List[GuestCartItem] = Field(default_factory=list, description="Client-held guest cart items")


class MergeResult(BaseModel):
    message: str = "Cart merged successfully"
    merged_count: int
    skipped: List[str] = Field(default_factory=list, description="Product ids that could not be merged")
    items: List[CartItemOut] = Field(default_factory=list)


# Orders

class OrderItemRequest(BaseModel):
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1, description="Quantity to order")


class CreateOrderRequest(BaseModel):
    items: List[OrderItemRequest] = Field(..., min_length=1, description="Order must contain at least one item")


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class OrderItemOut(ORMModel):
    id: str
    product_id: str
    quantity: int
    price: Decimal
    product: ProductOut


class OrderOut(ORMModel):
    """Order with items, products and owning user"""
    id: str
    user_id: str
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime
    items: List[OrderItemOut] = Field(default_factory=list)
    user: Optional[UserSummary] = None


# Payment

class CreatePaymentIntentRequest(BaseModel):
    order_id: str
    amount: Optional[Decimal] = Field(None, gt=0, description="Must match the order total when given")


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    mock_mode: bool = False


class ConfirmPaymentRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_intent_id: str = Field(..., min_length=1)


class PaymentOutcome(BaseModel):
    """Result of a payment reconciliation; failure is a value, not an exception"""
    success: bool
    order_id: str
    order: Optional[OrderOut] = None
    reason: Optional[str] = None
