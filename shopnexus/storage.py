"""
Product image storage on S3.
"""
import logging
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shopnexus.config import Config
from shopnexus.exceptions import StoreConnectionError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class ImageStorage:
    """Uploads product images and returns their durable URL"""

    def __init__(
        self,
        bucket: str,
        client=None,
        prefix: Optional[str] = None,
        max_bytes: Optional[int] = None,
        public_base_url: Optional[str] = None,
        region: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region or Config.REGION
        self.client = client or boto3.client("s3", region_name=self.region)
        self.prefix = (prefix if prefix is not None else Config.IMAGE_PREFIX).strip("/")
        self.max_bytes = max_bytes or Config.IMAGE_MAX_BYTES
        self.public_base_url = public_base_url or Config.IMAGE_PUBLIC_BASE_URL

    def validate(self, data: bytes, content_type: Optional[str]) -> None:
        if not data:
            raise ValidationError("No file provided")
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError("Invalid file type. Only JPEG, PNG, WebP, and GIF are allowed.")
        if len(data) > self.max_bytes:
            raise ValidationError(f"File size exceeds {self.max_bytes // (1024 * 1024)}MB limit")

    def object_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, data: bytes, content_type: Optional[str]) -> str:
        """Store an image under a fresh key and return its URL"""
        self.validate(data, content_type)

        key = f"{uuid.uuid4().hex}{ALLOWED_CONTENT_TYPES[content_type]}"
        if self.prefix:
            key = f"{self.prefix}/{key}"

        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Image upload failed: {e}", exc_info=True)
            raise StoreConnectionError(f"Image upload failed: {e}") from e

        url = self.object_url(key)
        logger.info(f"Image uploaded: {url}", extra={"bucket": self.bucket, "key": key, "size": len(data)})
        return url
