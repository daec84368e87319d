# object_store.py
# Storage for uploaded defect images: local directory or S3 bucket.

import base64
import binascii
import logging
import os
import re
import time
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config

from config import Settings
from errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 120
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*,", re.IGNORECASE)
_UNSAFE_CHARS = re.compile(r"[^\w.\-]")


def sanitize_filename(filename: Optional[str], default: str = "upload.bin") -> str:
    """Keep word characters, dots and hyphens; cap the length."""
    cleaned = _UNSAFE_CHARS.sub("_", (filename or "").strip())
    cleaned = cleaned.lstrip(".")[:MAX_FILENAME_LENGTH]
    return cleaned or default


def decode_base64_payload(payload: str) -> bytes:
    """Decode base64 data, dropping a leading `data:<mime>;base64,` header if present."""
    if not isinstance(payload, str) or not payload.strip():
        raise ValueError("empty payload")
    body = _DATA_URL_PREFIX.sub("", payload.strip(), count=1)
    body = "".join(body.split())
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


def analysis_upload_key(filename: Optional[str], now_ms: Optional[int] = None) -> str:
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"uploads/{ts}_{sanitize_filename(filename, default='defect.jpg')}"


def client_upload_key(filename: str) -> str:
    return f"clients/{sanitize_filename(filename)}"


class LocalObjectStore:
    """Writes objects as files under a root directory, one file per key."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"key escapes the store root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
        logger.info("Stored %d bytes at %s (%s)", len(data), key, content_type)
        return key

    def get(self, key: str) -> bytes:
        return self._path_for(key).read_bytes()


class S3ObjectStore:
    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or DEFAULT_CONTENT_TYPE,
        )
        logger.info("Stored %d bytes at s3://%s/%s", len(data), self.bucket, key)
        return key


def build_object_store(settings: Settings):
    """Return the configured store, or None when image storage is off."""
    if settings.object_store == "none":
        return None
    if settings.object_store == "local":
        return LocalObjectStore(settings.object_store_dir)
    if settings.object_store == "s3":
        if not settings.s3_bucket:
            raise ConfigurationError("OBJECT_STORE=s3 requires S3_BUCKET")
        client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            config=Config(
                connect_timeout=settings.external_timeout,
                read_timeout=settings.external_timeout,
                retries={"max_attempts": 1},
            ),
        )
        return S3ObjectStore(settings.s3_bucket, client)
    raise ConfigurationError(f"Unknown object store backend: {settings.object_store}")
