import logging
from typing import Optional

import httpx

from cast_office.config import R2_ACCOUNT_ID, R2_API_TOKEN, R2_BUCKET_NAME

logger = logging.getLogger("cast-office")

_OBJECT_URL = "https://api.cloudflare.com/client/v4/accounts/{account}/r2/buckets/{bucket}/objects/{key}"

CAST_PHOTO_PREFIX = "cast-photos"
SCHEDULE_TEMPLATE_PREFIX = "schedule-templates"
TWITTER_IMAGE_PREFIX = "twitter-images"


def object_key(prefix: str, path: str) -> str:
    """Stored paths may or may not carry their prefix already."""
    path = path.lstrip("/")
    if path.startswith(f"{prefix}/"):
        return path
    return f"{prefix}/{path}"


def _object_url(key: str) -> str:
    return _OBJECT_URL.format(account=R2_ACCOUNT_ID, bucket=R2_BUCKET_NAME, key=key)


def _auth_headers(content_type: Optional[str] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {R2_API_TOKEN}"}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def r2_upload(key: str, data: bytes, content_type: str) -> None:
    resp = httpx.put(_object_url(key), headers=_auth_headers(content_type), content=data, timeout=30)
    resp.raise_for_status()
    logger.info("R2 upload %s (%s bytes)", key, len(data))


def r2_download(key: str) -> bytes:
    resp = httpx.get(_object_url(key), headers=_auth_headers(), timeout=30)
    resp.raise_for_status()
    return resp.content


def r2_delete(keys: list[str]) -> None:
    # failures are logged, never raised
    for key in keys:
        if not key:
            continue
        try:
            resp = httpx.delete(_object_url(key), headers=_auth_headers(), timeout=10)
            if resp.status_code >= 400 and resp.status_code != 404:
                logger.warning("R2 delete %s failed: HTTP %s", key, resp.status_code)
        except httpx.HTTPError as exc:
            logger.warning("R2 delete %s failed: %s", key, exc)
