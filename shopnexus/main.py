"""
FastAPI application for the ShopNexus store.
"""
import time
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shopnexus.auth import ensure_owner_or_admin, get_identity, require_admin
from shopnexus.config import Config
from shopnexus.container import Services, build_services, get_services
from shopnexus.exceptions import (
    CartItemNotFoundError,
    PaymentFailedError,
    ShopError,
    StoreConnectionError,
    WebhookSignatureError,
)
from shopnexus.middleware import RequestLoggingMiddleware
from shopnexus.models import (
    AddCartItemRequest,
    CartItemOut,
    CartResponse,
    ConfirmPaymentRequest,
    CreateOrderRequest,
    CreatePaymentIntentRequest,
    GuestCartItem,
    GuestCartQuantityRequest,
    GuestCartResponse,
    Identity,
    MergeCartRequest,
    MergeResult,
    OrderOut,
    PaymentIntentResponse,
    ProductCreateRequest,
    ProductOut,
    ProductUpdateRequest,
    RegisterRequest,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
    UploadResponse,
    UserOut,
)

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application; services default to the Config-driven ones"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services()
        yield
        if owned:
            app.state.services.close()

    app = FastAPI(
        title="ShopNexus API",
        description="Catalog, cart, orders and payments",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    register_routes(app)
    register_error_handlers(app)
    return app


def register_routes(app: FastAPI) -> None:

    # Health check endpoint for the load balancer
    @app.get("/health")
    def health_check(services: Services = Depends(get_services)):
        """
        Always returns HTTP 200 if the application is running, reporting the
        state of the relational store and Redis alongside.
        """
        ping_start = time.time()
        database_ok = services.database.ping()
        database_latency_ms = round((time.time() - ping_start) * 1000, 2)
        redis_ok = services.redis.ping() if services.redis is not None else False

        return {
            "status": "healthy",
            "service": "shopnexus-api",
            "database": {
                "status": "healthy" if database_ok else "unhealthy",
                "latency_ms": database_latency_ms,
            },
            "redis": {"status": "healthy" if redis_ok else "unhealthy"},
            "timestamp": time.time(),
        }

    # Account endpoints
    @app.post("/register", response_model=UserOut, status_code=201)
    def register(request: RegisterRequest, services: Services = Depends(get_services)):
        return services.users.register(request)

    # Catalog endpoints
    @app.get("/products", response_model=List[ProductOut])
    def list_products(services: Services = Depends(get_services)):
        return services.products.list_products()

    @app.get("/products/{product_id}", response_model=ProductOut)
    def get_product(product_id: str, services: Services = Depends(get_services)):
        return services.products.get_product(product_id)

    @app.get("/products/{product_id}/stock")
    def check_stock(
        product_id: str,
        quantity: int = Query(1, ge=1, description="Quantity wanted"),
        services: Services = Depends(get_services),
    ):
        """Whether the product can currently cover the requested quantity"""
        services.products.get_product(product_id)
        return {
            "product_id": product_id,
            "quantity": quantity,
            "available": services.products.check_stock(product_id, quantity),
        }

    @app.post("/products", response_model=ProductOut, status_code=201)
    def create_product(
        request: ProductCreateRequest,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.products.create_product(request)

    @app.patch("/products/{product_id}", response_model=ProductOut)
    def update_product(
        product_id: str,
        request: ProductUpdateRequest,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.products.update_product(product_id, request)

    @app.delete("/products/{product_id}")
    def delete_product(
        product_id: str,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        services.products.delete_product(product_id)
        return {"success": True, "message": "Product deleted", "product_id": product_id}

    @app.post("/upload", response_model=UploadResponse)
    async def upload_image(
        file: UploadFile = File(...),
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        """Upload a product image and return its URL"""
        if services.images is None:
            raise StoreConnectionError("Image storage is not configured")
        data = await file.read()
        image_url = services.images.upload(data, file.content_type)
        return UploadResponse(message="File uploaded successfully", image_url=image_url)

    # Cart endpoints
    @app.get("/cart", response_model=CartResponse)
    def get_cart(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        return services.carts.get_cart(identity.user_id)

    @app.post("/cart/items", response_model=CartItemOut, status_code=201)
    def add_cart_item(
        request: AddCartItemRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.carts.add_to_cart(identity.user_id, request.product_id, request.quantity)

    @app.patch("/cart/items/{item_id}", response_model=CartItemOut)
    def update_cart_item(
        item_id: str,
        request: UpdateCartItemRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.carts.update_cart_item(identity.user_id, item_id, request.quantity)

    @app.delete("/cart/items/{item_id}")
    def remove_cart_item(
        item_id: str,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        services.carts.remove_from_cart(identity.user_id, item_id)
        return {"success": True, "message": "Item removed from cart", "item_id": item_id}

    @app.delete("/cart")
    def clear_cart(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        removed = services.carts.clear_cart(identity.user_id)
        return {"success": True, "message": "Cart cleared", "removed": removed}

    @app.post("/cart/merge", response_model=MergeResult)
    def merge_carts(
        request: Optional[MergeCartRequest] = None,
        cart_id: Optional[str] = Header(None, alias="X-Cart-ID", description="Guest cart identifier"),
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        """
        Merge a guest cart into the signed-in user's cart.
        Accepts client-held items in the body and/or a server-held guest cart id.
        """
        items = request.items if request is not None else []
        guest_cart = services.guest_cart(cart_id) if cart_id and cart_id.strip() and services.redis else None
        return services.carts.merge_guest_cart(identity.user_id, items, guest_cart=guest_cart)

    # Guest cart endpoints
    @app.get("/guest-cart", response_model=GuestCartResponse)
    def get_guest_cart(
        cart_id: str = Header(..., alias="X-Cart-ID", description="Guest cart identifier"),
        services: Services = Depends(get_services),
    ):
        return services.guest_cart(cart_id).snapshot()

    @app.post("/guest-cart/items", response_model=GuestCartItem, status_code=201)
    def add_guest_cart_item(
        request: AddCartItemRequest,
        cart_id: str = Header(..., alias="X-Cart-ID", description="Guest cart identifier"),
        services: Services = Depends(get_services),
    ):
        return services.guest_cart(cart_id).add(request.product_id, request.quantity)

    @app.patch("/guest-cart/items/{product_id}")
    def update_guest_cart_item(
        product_id: str,
        request: GuestCartQuantityRequest,
        cart_id: str = Header(..., alias="X-Cart-ID", description="Guest cart identifier"),
        services: Services = Depends(get_services),
    ):
        item = services.guest_cart(cart_id).set_quantity(product_id, request.quantity)
        return {"success": True, "product_id": product_id, "quantity": item.quantity if item else 0}

    @app.delete("/guest-cart/items/{product_id}")
    def remove_guest_cart_item(
        product_id: str,
        cart_id: str = Header(..., alias="X-Cart-ID", description="Guest cart identifier"),
        services: Services = Depends(get_services),
    ):
        if not services.guest_cart(cart_id).remove(product_id):
            raise CartItemNotFoundError(product_id)
        return {"success": True, "message": "Item removed from cart", "product_id": product_id}

    # Order endpoints
    @app.get("/orders", response_model=List[OrderOut])
    def list_orders(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        """Admins see every order; everyone else sees their own"""
        if identity.is_admin:
            return services.orders.get_all_orders()
        return services.orders.get_user_orders(identity.user_id)

    @app.post("/orders", response_model=OrderOut, status_code=201)
    def create_order(
        request: CreateOrderRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.orders.create_order(identity.user_id, request.items)

    @app.post("/orders/checkout", response_model=OrderOut, status_code=201)
    def checkout_cart(identity: Identity = Depends(get_identity), services: Services = Depends(get_services)):
        """Place an order for the whole cart"""
        return services.orders.create_order_from_cart(identity.user_id)

    @app.get("/orders/{order_id}", response_model=OrderOut)
    def get_order(
        order_id: str,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        order = services.orders.get_order_by_id(order_id)
        ensure_owner_or_admin(identity, order.user_id)
        return order

    @app.patch("/orders/{order_id}", response_model=OrderOut)
    def update_order_status(
        order_id: str,
        request: UpdateOrderStatusRequest,
        admin: Identity = Depends(require_admin),
        services: Services = Depends(get_services),
    ):
        return services.orders.update_order_status(order_id, request.status)

    # Payment endpoints
    @app.post("/payment/create-intent", response_model=PaymentIntentResponse)
    def create_payment_intent(
        request: CreatePaymentIntentRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        return services.payments.create_payment_intent(identity.user_id, request.order_id, request.amount)

    @app.post("/payment/confirm")
    def confirm_payment(
        request: ConfirmPaymentRequest,
        identity: Identity = Depends(get_identity),
        services: Services = Depends(get_services),
    ):
        outcome = services.payments.confirm_payment(identity.user_id, request.order_id, request.payment_intent_id)
        if not outcome.success:
            raise PaymentFailedError(outcome.order_id, outcome.reason)
        return {"success": True, "order": outcome.order.model_dump(mode="json")}

    @app.post("/payment/webhook")
    async def payment_webhook(request: Request, services: Services = Depends(get_services)):
        """Payment gateway callback, authenticated by its signature header"""
        signature = request.headers.get("stripe-signature")
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        payload = await request.body()
        event_type = services.payments.handle_webhook(payload, signature)
        return {"received": True, "type": event_type}


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message},
        )

    # Generic exception handler for unhandled errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "type": type(exc).__name__
            }
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
