# app/utils/aws.py
from __future__ import annotations

"""
🧊 StudioPass • Object Storage (R2, S3-compatible)
==================================================

Thin boto3 wrapper used by the capability issuer to mint short-lived
presigned GETs for audio and image objects.

🎯 Goals
--------
- SigV4 presigned GET against the R2 endpoint (`region="auto"`)
- Explicit timeouts + bounded retries
- Defensive key normalization (no leading slash, no `..`)
- Zero secret leakage in logs or `repr`

🔗 Contract
-----------
- Class: `S3Client`, `S3StorageError`
- Methods: `S3Client.presigned_get(...)`

Presigning is a local computation in boto3 (no network), but it is still
blocking CPU work; async callers should run it via `anyio.to_thread`.
"""

from typing import Any, Dict, Optional
import logging
import re

import boto3
from botocore.config import Config as BotoConfig

from app.core.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# 🧱 Exceptions
# ─────────────────────────────────────────────────────────────────────────────

class S3StorageError(RuntimeError):
    """Raised when a storage operation fails (config, signing, invalid key)."""


# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Key validation
# ─────────────────────────────────────────────────────────────────────────────

_KEY_ALLOWED_RE = re.compile(r"[A-Za-z0-9._\-/+=@() ]+")

def _normalize_key(key: str) -> str:
    """
    Normalize and validate object keys.

    Steps
    -----
    1) Coerce to str, strip whitespace
    2) Remove leading '/'
    3) Collapse '//' runs
    4) Reject path traversal ('..') and disallowed characters

    Raises
    ------
    S3StorageError
        If key is empty or contains unsafe characters.
    """
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise S3StorageError("Invalid storage key: empty")
    if ".." in k:
        raise S3StorageError("Invalid storage key: path traversal detected")
    if not _KEY_ALLOWED_RE.fullmatch(k):
        raise S3StorageError("Invalid storage key: contains forbidden characters")
    return k


# ─────────────────────────────────────────────────────────────────────────────
# 📦 S3 Client
# ─────────────────────────────────────────────────────────────────────────────

class S3Client:
    """
    R2 client with safe defaults.

    Parameters
    ----------
    bucket : str | None
        Bucket. Defaults to `settings.R2_BUCKET_NAME`.
    endpoint_url : str | None
        S3-compatible endpoint. Defaults to `settings.r2_endpoint`
        (derived from `CLOUDFLARE_ACCOUNT_ID` when not set explicitly).

    Raises
    ------
    S3StorageError
        When bucket, endpoint or credentials are missing.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self.bucket = bucket or settings.R2_BUCKET_NAME
        if not self.bucket:
            raise S3StorageError("R2_BUCKET_NAME not configured")

        endpoint = endpoint_url or settings.r2_endpoint
        if not endpoint:
            raise S3StorageError("R2 endpoint not configured (set CLOUDFLARE_ACCOUNT_ID or R2_ENDPOINT_URL)")

        ak = settings.R2_ACCESS_KEY_ID
        sk = settings.R2_SECRET_ACCESS_KEY.get_secret_value() if settings.R2_SECRET_ACCESS_KEY else None
        if not (ak and sk):
            raise S3StorageError("R2 credentials not configured")

        cfg = BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
            connect_timeout=3,
            read_timeout=10,
            s3={"addressing_style": "path"},
        )
        client_kwargs: Dict[str, Any] = {
            "config": cfg,
            "region_name": "auto",
            "endpoint_url": endpoint,
            "aws_access_key_id": ak,
            "aws_secret_access_key": sk,
        }
        try:
            self.client = boto3.client("s3", **client_kwargs)
        except Exception as e:  # pragma: no cover
            raise S3StorageError(f"Failed to create S3 client: {e}") from e

        self._repr = f"S3Client(bucket={self.bucket}, endpoint=r2)"

    # ────────────────────────────────────────────────────────────────────────
    # 🔐 Signed URL helpers
    # ────────────────────────────────────────────────────────────────────────

    def presigned_get(
        self,
        key: str,
        *,
        expires_in: int = 300,
        response_content_type: Optional[str] = None,
        response_content_disposition: Optional[str] = None,
    ) -> str:
        """
        Generate a short-lived **presigned GET** URL.

        Parameters
        ----------
        key : str
            Object key (normalized).
        expires_in : int
            TTL seconds.
        response_content_type : str | None
            Optional override for the `Content-Type` returned to the client.
        response_content_disposition : str | None
            Signed into the URL; the issuer uses it to carry the binding token.

        Returns
        -------
        str
            Fully signed URL for HTTP GET.
        """
        k = _normalize_key(key)
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": k}
        if response_content_type:
            params["ResponseContentType"] = response_content_type
        if response_content_disposition:
            params["ResponseContentDisposition"] = response_content_disposition

        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=int(expires_in),
            )
        except Exception as e:
            raise S3StorageError(f"Failed to create presigned GET: {e}") from e

    def __repr__(self) -> str:  # pragma: no cover
        return self._repr
