"""S3-compatible object storage for user uploads.

Objects live under `<uploads folder>/<user_id>/<name>.<ext>`; the user
folder segment is what identifies the owner of a stored file.
"""

from __future__ import annotations

import hashlib
import io
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image

from ..config import Settings, get_settings
from ..errors import UpstreamError, ValidationError

logger = logging.getLogger("content_api.cdn")

FILE_TYPES = ("image", "document")
_IMAGE_FORMATS = {"JPEG": ("jpg", "image/jpeg"), "PNG": ("png", "image/png")}


@dataclass
class StoredObject:
    key: str
    etag: str
    size: int
    version_id: Optional[str] = None


def sniff_file_kind(payload: bytes, file_type: str) -> tuple[str, str]:
    """Return `(extension, content_type)` for an upload or raise `ValidationError`.

    Images must be JPG, PNG or SVG; documents must be PDF.
    """
    if not payload:
        raise ValidationError("file has no size (zero bytes)", scope="file")
    if file_type == "image":
        head = payload[:1024].lstrip()
        if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
            return "svg", "image/svg+xml"
        try:
            with Image.open(io.BytesIO(payload)) as img:
                fmt = img.format
                img.verify()
        except Exception:
            raise ValidationError("only images are supported", scope="file")
        if fmt not in _IMAGE_FORMATS:
            raise ValidationError("only images with *.jpg, *.png, or *.svg extensions are supported", scope="file")
        return _IMAGE_FORMATS[fmt]
    if file_type == "document":
        if payload[:4] != b"%PDF":
            raise ValidationError("only documents with *.pdf extension are supported", scope="file")
        return "pdf", "application/pdf"
    raise ValidationError(f"wrong or unsupported file type ({file_type})", scope="file")


def generate_file_name(user_id: uuid.UUID) -> str:
    """Hash of the user id and the current time; unique enough per upload."""
    return hashlib.sha256(f"{user_id}{time.time_ns()}".encode("utf-8")).hexdigest()


def owner_from_key(key: str, uploads_folder: str) -> uuid.UUID:
    """Extract the owning user id from an object key."""
    prefix = f"{uploads_folder}/" if uploads_folder else ""
    if not key.startswith(prefix):
        raise ValidationError("file key is outside the uploads folder", scope="file")
    parts = key[len(prefix):].split("/")
    if len(parts) != 2 or not parts[1]:
        raise ValidationError("cannot get user ID from file key", scope="file")
    try:
        return uuid.UUID(parts[0])
    except ValueError:
        raise ValidationError("cannot get user ID from file key", scope="file")


class ObjectStore:
    """Thin wrapper around a boto3 S3 client bound to one bucket."""

    def __init__(self, client, bucket: str, uploads_folder: str = "uploads", public_url: str = ""):
        self.client = client
        self.bucket = bucket
        self.uploads_folder = uploads_folder.strip("/")
        self.public_url = public_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.CDN_ENDPOINT_URL or None,
            region_name=settings.CDN_REGION,
            aws_access_key_id=settings.CDN_ACCESS_KEY or None,
            aws_secret_access_key=settings.CDN_SECRET_KEY or None,
            config=Config(retries={"max_attempts": 1, "mode": "standard"}),
        )
        return cls(client, settings.CDN_BUCKET_NAME, settings.CDN_UPLOADS_FOLDER, settings.CDN_PUBLIC_URL)

    def user_prefix(self, user_id: uuid.UUID) -> str:
        return f"{self.uploads_folder}/{user_id}/" if self.uploads_folder else f"{user_id}/"

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}" if self.public_url else key

    def upload(self, user_id: uuid.UUID, payload: bytes, file_type: str) -> StoredObject:
        ext, content_type = sniff_file_kind(payload, file_type)
        key = f"{self.user_prefix(user_id)}{generate_file_name(user_id)}.{ext}"
        try:
            resp = self.client.put_object(Bucket=self.bucket, Key=key, Body=payload, ContentType=content_type)
        except (BotoCoreError, ClientError):
            logger.exception("cdn_upload_failed key=%s", key)
            raise UpstreamError("could not upload file to CDN", scope="cdn")
        logger.info("cdn_uploaded key=%s size=%d", key, len(payload))
        return StoredObject(
            key=key,
            etag=str(resp.get("ETag", "")).strip('"'),
            size=len(payload),
            version_id=resp.get("VersionId"),
        )

    def remove(self, key: str, version_id: Optional[str] = None) -> None:
        kwargs = {"Bucket": self.bucket, "Key": key}
        if version_id:
            kwargs["VersionId"] = version_id
        try:
            self.client.delete_object(**kwargs)
        except (BotoCoreError, ClientError):
            logger.exception("cdn_remove_failed key=%s", key)
            raise UpstreamError("could not remove file from CDN", scope="cdn")
        logger.info("cdn_removed key=%s", key)

    def list_for_user(self, user_id: uuid.UUID) -> list[dict]:
        """List every object in the user's folder (folder markers skipped)."""
        objects = []
        kwargs = {"Bucket": self.bucket, "Prefix": self.user_prefix(user_id)}
        try:
            while True:
                resp = self.client.list_objects_v2(**kwargs)
                for obj in resp.get("Contents", []):
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    objects.append({
                        "key": key,
                        "etag": str(obj.get("ETag", "")).strip('"'),
                        "size": obj.get("Size", 0),
                        "url": self.url_for(key),
                    })
                if not resp.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = resp["NextContinuationToken"]
        except (BotoCoreError, ClientError):
            logger.exception("cdn_list_failed user_id=%s", user_id)
            raise UpstreamError("could not list files on CDN", scope="cdn")
        return objects


_store: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
    """FastAPI dependency returning the process-wide store (created lazily)."""
    global _store
    if _store is None:
        _store = ObjectStore.from_settings(get_settings())
    return _store
