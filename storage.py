"""
Blob storage for Campus Bites images.
Supports AWS S3 (production) and local disk (development).

Two buckets are used: food_pictures (post images) and profile-images
(avatars). Each bucket is a key namespace: a directory on disk or a key
prefix in S3.
"""
import os
import logging

from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from constants import FOOD_IMAGES_BUCKET, AVATAR_BUCKET, IMAGE_CACHE_CONTROL
from errors import StorageError

logger = logging.getLogger(__name__)


class LocalStorage:
    """Store blobs on local disk under <upload_folder>/<bucket>/."""

    def __init__(self, upload_folder: str, bucket: str):
        self.bucket = bucket
        self.root = os.path.join(upload_folder, bucket)
        os.makedirs(self.root, exist_ok=True)

    def is_s3(self) -> bool:
        return False

    def _path(self, key: str) -> str:
        path = os.path.normpath(os.path.join(self.root, key))
        if not path.startswith(os.path.normpath(self.root) + os.sep):
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def upload(self, data: bytes, key: str, content_type: str = None, upsert: bool = False) -> str:
        """Write bytes under key. Returns key. Raises StorageError on failure."""
        path = self._path(key)
        if not upsert and os.path.exists(path):
            raise StorageError(f"Object already exists: {self.bucket}/{key}")
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Error writing file {path}: {e}", exc_info=True)
            raise StorageError(f"Storage upload failed: {e}") from e
        return key

    def remove(self, keys) -> bool:
        """Delete keys from disk. Returns False if any removal failed."""
        ok = True
        for key in keys:
            try:
                path = self._path(key)
                if os.path.exists(path):
                    os.remove(path)
            except (OSError, StorageError) as e:
                logger.error(f"Error deleting file {self.bucket}/{key}: {e}", exc_info=True)
                ok = False
        return ok

    def get_public_url(self, key: str) -> str:
        """Return URL served by the /uploads route."""
        return f"/uploads/{self.bucket}/{key}"

    def exists(self, key: str) -> bool:
        return os.path.exists(self._path(key))

    def get_bytes(self, key: str) -> bytes | None:
        """Load blob bytes from disk. Returns None if not found."""
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return f.read()


class S3Storage:
    """Store blobs in AWS S3 under the <bucket>/ key prefix."""

    def __init__(self, s3_bucket: str, region: str, bucket: str, cdn_url: str = None, client=None):
        import boto3
        self.s3_bucket = s3_bucket
        self.region = region
        self.bucket = bucket
        self.cdn_url = cdn_url.rstrip("/") if cdn_url else None
        self.client = client or boto3.client("s3", region_name=region)

    def is_s3(self) -> bool:
        return True

    def _key(self, key: str) -> str:
        """S3 object key with bucket prefix."""
        return f"{self.bucket}/{key}"

    def exists(self, key: str) -> bool:
        """Check if object exists in S3."""
        try:
            self.client.head_object(Bucket=self.s3_bucket, Key=self._key(key))
            return True
        except ClientError:
            return False

    def upload(self, data: bytes, key: str, content_type: str = None, upsert: bool = False) -> str:
        """Put bytes under key. Returns key. Raises StorageError on failure."""
        s3_key = self._key(key)
        try:
            if not upsert and self.exists(key):
                raise StorageError(f"Object already exists: {s3_key}")
            self.client.put_object(
                Bucket=self.s3_bucket,
                Key=s3_key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
                CacheControl=IMAGE_CACHE_CONTROL,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error uploading S3 object {s3_key}: {e}", exc_info=True)
            raise StorageError(f"Storage upload failed: {e}") from e
        return key

    def remove(self, keys) -> bool:
        """Bulk delete keys from S3. Returns False if any removal failed."""
        objects = [{"Key": self._key(k)} for k in keys]
        if not objects:
            return True
        try:
            resp = self.client.delete_objects(Bucket=self.s3_bucket, Delete={"Objects": objects})
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error deleting S3 objects {objects}: {e}", exc_info=True)
            return False
        errors = resp.get("Errors") or []
        for err in errors:
            logger.error(f"Error deleting S3 object {err.get('Key')}: {err.get('Message')}")
        return not errors

    def get_public_url(self, key: str) -> str:
        """Return public URL for the object."""
        if self.cdn_url:
            return f"{self.cdn_url}/{self._key(key)}"
        return f"https://{self.s3_bucket}.s3.{self.region}.amazonaws.com/{self._key(key)}"

    def get_bytes(self, key: str) -> bytes | None:
        """Load object bytes from S3. Returns None if not found."""
        try:
            resp = self.client.get_object(Bucket=self.s3_bucket, Key=self._key(key))
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to get S3 object {key}: {e}", exc_info=True)
            return None


def init_storage(app):
    """
    Initialize one backend per bucket and attach them to the app.
    If AWS_S3_BUCKET is set, use S3. Otherwise use UPLOAD_FOLDER on local disk.
    """
    s3_bucket = os.environ.get("AWS_S3_BUCKET")
    backends = {}
    for bucket in (FOOD_IMAGES_BUCKET, AVATAR_BUCKET):
        if s3_bucket:
            region = os.environ.get("AWS_S3_REGION", "us-east-1")
            cdn_url = os.environ.get("AWS_S3_CDN_URL")
            backends[bucket] = S3Storage(s3_bucket=s3_bucket, region=region, bucket=bucket, cdn_url=cdn_url)
        else:
            upload_folder = app.config.get("UPLOAD_FOLDER", "static/uploads")
            backends[bucket] = LocalStorage(upload_folder=upload_folder, bucket=bucket)
    app.extensions["storage"] = backends
    logger.info(f"Storage initialized ({'S3' if s3_bucket else 'local disk'})")
    return backends


def get_storage(bucket: str = FOOD_IMAGES_BUCKET):
    """Storage backend for bucket on the current app. Must call init_storage first."""
    return current_app.extensions["storage"][bucket]
