"""
Configuration management for the ShopNexus application.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "shopnexus")
    REGION: str = os.getenv("REGION", "ap-south-1")

    # Relational store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./shopnexus.db")
    DB_ECHO: bool = os.getenv("DB_ECHO", "false").lower() == "true"

    # Redis settings (guest carts)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() == "true"

    # Cart settings
    GUEST_CART_TTL_SECONDS: int = int(os.getenv("GUEST_CART_TTL_SECONDS", str(1 * 24 * 60 * 60)))  # 1 day for guests
    MAX_ITEMS_PER_CART: int = int(os.getenv("MAX_ITEMS_PER_CART", "200"))
    MAX_QUANTITY_PER_ITEM: int = int(os.getenv("MAX_QUANTITY_PER_ITEM", "99"))

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    # Payment settings
    PAYMENT_MODE: str = os.getenv("PAYMENT_MODE", "live")
    PAYMENT_CURRENCY: str = os.getenv("PAYMENT_CURRENCY", "inr")
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Product image storage
    IMAGE_BUCKET: Optional[str] = os.getenv("IMAGE_BUCKET")
    IMAGE_PREFIX: str = os.getenv("IMAGE_PREFIX", "shop-nexus/products")
    IMAGE_MAX_BYTES: int = int(os.getenv("IMAGE_MAX_BYTES", str(5 * 1024 * 1024)))  # 5MB
    IMAGE_PUBLIC_BASE_URL: Optional[str] = os.getenv("IMAGE_PUBLIC_BASE_URL")

    @classmethod
    def redis_url(cls) -> str:
        """Build the Redis connection URL"""
        scheme = "rediss" if cls.REDIS_SSL else "redis"
        auth = f":{cls.REDIS_AUTH_TOKEN}@" if cls.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB}"

    @classmethod
    def load_app_secrets(cls) -> None:
        """Overlay database, Redis and Stripe credentials from AWS Secrets Manager"""
        secret_name = os.getenv("APP_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, environment only

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])
        except Exception as e:
            logger.warning(f"Could not load secrets from Secrets Manager: {e}")
            return

        cls.DATABASE_URL = secret_data.get("database_url", cls.DATABASE_URL)
        cls.REDIS_AUTH_TOKEN = secret_data.get("redis_auth_token", cls.REDIS_AUTH_TOKEN)
        if "redis_endpoint" in secret_data:
            cls.REDIS_HOST = secret_data["redis_endpoint"]
        cls.STRIPE_SECRET_KEY = secret_data.get("stripe_secret_key", cls.STRIPE_SECRET_KEY)
        cls.STRIPE_WEBHOOK_SECRET = secret_data.get("stripe_webhook_secret", cls.STRIPE_WEBHOOK_SECRET)


# Load secrets at module import
Config.load_app_secrets()
