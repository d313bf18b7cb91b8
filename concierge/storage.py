"""Signed URL generation against the object storage REST API.

Provides:
- get_http_client: Shared httpx.AsyncClient for storage calls.
- create_signed_url: Request a time-limited URL for one stored object.

Endpoint: POST {STORAGE_URL}/storage/v1/object/sign/{bucket}/{path} with
{"expiresIn": seconds}; the response carries a relative "signedURL".
"""
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from concierge.config import settings
from concierge.errors import ConfigurationError, StorageError

logger = logging.getLogger(__name__)

_http: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient(timeout=10.0)
    return _http


async def close_http_client() -> None:
    global _http
    if _http is not None:
        await _http.aclose()
        _http = None


async def create_signed_url(bucket: str, path: str, expires_in: Optional[int] = None) -> str:
    """Create a signed URL for a stored object.

    Args:
        bucket: Storage bucket name.
        path: Object path within the bucket.
        expires_in: Lifetime in seconds (defaults to SIGNED_URL_TTL_SECONDS).

    Returns:
        str: Absolute URL valid for expires_in seconds.

    Raises:
        ConfigurationError: If STORAGE_URL or STORAGE_SERVICE_KEY is not set.
        StorageError: If the storage service rejects or fails the request.
    """
    if not settings.STORAGE_URL or not settings.STORAGE_SERVICE_KEY:
        raise ConfigurationError("STORAGE_URL and STORAGE_SERVICE_KEY must be configured")
    ttl = expires_in if expires_in is not None else settings.SIGNED_URL_TTL_SECONDS
    base = settings.STORAGE_URL.rstrip("/")
    url = f"{base}/storage/v1/object/sign/{quote(bucket)}/{quote(path.lstrip('/'))}"
    headers = {
        "Authorization": f"Bearer {settings.STORAGE_SERVICE_KEY}",
        "apikey": settings.STORAGE_SERVICE_KEY,
    }
    try:
        resp = await get_http_client().post(url, json={"expiresIn": ttl}, headers=headers)
        resp.raise_for_status()
        signed = resp.json().get("signedURL")
    except (httpx.HTTPError, ValueError) as e:
        raise StorageError(f"Failed to sign {bucket}/{path}: {e}") from e
    if not signed:
        raise StorageError(f"Storage returned no signedURL for {bucket}/{path}")
    return f"{base}/storage/v1{signed}"
