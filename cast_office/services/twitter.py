"""
Twitter (X) posting: OAuth 1.0a signing, media upload, the due-post
dispatcher and recurring post generation.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from cast_office.config import (
    JST,
    TWITTER_MEDIA_UPLOAD_URL,
    TWITTER_POST_BATCH_SIZE,
    TWITTER_POST_INTERVAL_SECONDS,
    TWITTER_TWEET_URL,
)
from cast_office.r2 import TWITTER_IMAGE_PREFIX, object_key, r2_delete, r2_download, r2_upload
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import ensure_utc_datetime, to_jst_datetime, utc_now


logger = logging.getLogger("cast-office")

POST_PENDING = "pending"
POST_POSTED = "posted"
POST_FAILED = "failed"
FREQUENCIES = ("daily", "weekly")

MISSING_CREDENTIALS_MESSAGE = "Twitter認証情報がありません"
TWEET_FAILED_MESSAGE = "ツイートの投稿に失敗しました"


# ---------------------------------------------------------------------------
# OAuth 1.0a
# ---------------------------------------------------------------------------

def percent_encode(value: str) -> str:
    return quote(str(value), safe="~")


def oauth_signature(
    method: str,
    url: str,
    params: dict[str, str],
    consumer_secret: str,
    token_secret: str,
) -> str:
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in params.items())
    param_string = "&".join(f"{k}={v}" for k, v in encoded)
    base_string = "&".join([method.upper(), percent_encode(url), percent_encode(param_string)])
    signing_key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(signing_key.encode(), base_string.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def oauth_header(params: dict[str, str]) -> str:
    pairs = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"'
        for k, v in sorted(params.items())
        if k.startswith("oauth_")
    )
    return f"OAuth {pairs}"


class TwitterClient:
    """Posts tweets with user-context OAuth 1.0a credentials of one store."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        access_token: str,
        access_token_secret: str,
        http_client: Any = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.access_token = access_token
        self.access_token_secret = access_token_secret
        self._http = http_client or httpx

    def _authorization(self, method: str, url: str, extra: Optional[dict[str, str]] = None) -> str:
        params = {
            "oauth_consumer_key": self.api_key,
            "oauth_nonce": secrets.token_hex(16),
            "oauth_signature_method": "HMAC-SHA1",
            "oauth_timestamp": str(int(time.time())),
            "oauth_token": self.access_token,
            "oauth_version": "1.0",
        }
        signed = dict(params, **(extra or {}))
        params["oauth_signature"] = oauth_signature(method, url, signed, self.api_secret, self.access_token_secret)
        return oauth_header(params)

    def upload_media(self, image: bytes) -> Optional[str]:
        resp = self._http.post(
            TWITTER_MEDIA_UPLOAD_URL,
            headers={"Authorization": self._authorization("POST", TWITTER_MEDIA_UPLOAD_URL)},
            data={"media_data": base64.b64encode(image).decode("ascii")},
            timeout=60,
        )
        if resp.status_code >= 400:
            logger.error("Media upload error: %s %s", resp.status_code, resp.text)
            return None
        return resp.json().get("media_id_string")

    def post_tweet(self, text: str, media_ids: Optional[list[str]] = None) -> dict[str, Any]:
        body: dict[str, Any] = {"text": text}
        if media_ids:
            body["media"] = {"media_ids": media_ids}
        resp = self._http.post(
            TWITTER_TWEET_URL,
            headers={
                "Authorization": self._authorization("POST", TWITTER_TWEET_URL),
                "Content-Type": "application/json",
            },
            content=json.dumps(body),
            timeout=30,
        )
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            return {"success": False, "tweet_id": None, "error": data.get("detail") or data.get("title") or TWEET_FAILED_MESSAGE}
        return {"success": True, "tweet_id": (data.get("data") or {}).get("id"), "error": None}


# ---------------------------------------------------------------------------
# Scheduled posts
# ---------------------------------------------------------------------------

def parse_image_keys(image_url: Optional[str]) -> list[str]:
    if not image_url:
        return []
    try:
        parsed = json.loads(image_url)
    except ValueError:
        return [image_url]
    if isinstance(parsed, list):
        return [str(v) for v in parsed if v]
    return [str(parsed)]


def _load_image(key: str) -> bytes:
    if key.startswith(("http://", "https://")):
        resp = httpx.get(key, timeout=30)
        resp.raise_for_status()
        return resp.content
    return r2_download(object_key(TWITTER_IMAGE_PREFIX, key))


def client_for_store(db: SupabaseDB, store_id: int, http_client: Any = None) -> Optional[TwitterClient]:
    settings = db.query("store_twitter_settings").filter(("store_id", "=", store_id)).first()
    if settings is None or not settings.get("access_token"):
        return None
    return TwitterClient(
        settings.get("api_key"),
        settings.get("api_secret"),
        settings.access_token,
        settings.get("access_token_secret"),
        http_client=http_client,
    )


def publish_post(db: SupabaseDB, post, client: Optional[TwitterClient]) -> bool:
    """Upload media, tweet and record the outcome on the scheduled_posts row."""
    if client is None:
        post.status = POST_FAILED
        post.error_message = MISSING_CREDENTIALS_MESSAGE
        db.update(post)
        return False

    keys = parse_image_keys(post.get("image_url"))
    media_ids = []
    for key in keys:
        try:
            media_id = client.upload_media(_load_image(key))
        except httpx.HTTPError:
            logger.exception("Image fetch/upload failed for post %s: %s", post.id, key)
            continue
        if media_id:
            media_ids.append(media_id)

    result = client.post_tweet(post.content, media_ids)
    post.status = POST_POSTED if result["success"] else POST_FAILED
    post.posted_at = utc_now() if result["success"] else None
    post.twitter_post_id = result["tweet_id"]
    post.error_message = result["error"]
    db.update(post)

    if result["success"] and keys:
        r2_delete([object_key(TWITTER_IMAGE_PREFIX, k) for k in keys if not k.startswith(("http://", "https://"))])
    return result["success"]


def process_due_posts(
    db: SupabaseDB,
    now: Optional[datetime] = None,
    http_client: Any = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, int]:
    now = now or utc_now()
    posts = (
        db.query("scheduled_posts")
        .filter(("status", "=", POST_PENDING), ("scheduled_at", "<=", now))
        .order_by("scheduled_at ASC")
        .limit(TWITTER_POST_BATCH_SIZE)
        .all()
    )
    clients: dict[int, Optional[TwitterClient]] = {}
    success = 0
    failed = 0
    for index, post in enumerate(posts):
        if index:
            sleep(TWITTER_POST_INTERVAL_SECONDS)
        if post.store_id not in clients:
            clients[post.store_id] = client_for_store(db, post.store_id, http_client)
        try:
            ok = publish_post(db, post, clients[post.store_id])
        except Exception as exc:
            logger.exception("Scheduled post %s failed", post.id)
            post.status = POST_FAILED
            post.error_message = str(exc)
            db.update(post)
            ok = False
        if ok:
            success += 1
        else:
            failed += 1

    if posts:
        logger.info("Scheduled posts processed=%s success=%s failed=%s", len(posts), success, failed)
    return {"processed": len(posts), "success": success, "failed": failed}


def list_scheduled_posts(db: SupabaseDB, store_id: int, status: Optional[str] = None) -> list[dict]:
    q = db.query("scheduled_posts").filter(("store_id", "=", store_id))
    if status:
        q = q.filter(("status", "=", status))
    return [row.to_dict() for row in q.order_by("scheduled_at DESC").all()]


def _validate_content(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise ValueError("投稿内容を入力してください")
    return content


def _normalize_images(image_keys: Optional[list[str]]) -> Optional[str]:
    keys = [k for k in (image_keys or []) if k]
    return json.dumps(keys) if keys else None


def create_scheduled_post(
    db: SupabaseDB, store_id: int, content: str, scheduled_at, image_keys: Optional[list[str]] = None,
) -> dict:
    return db.insert("scheduled_posts", {
        "store_id": store_id,
        "content": _validate_content(content),
        "image_url": _normalize_images(image_keys),
        "scheduled_at": ensure_utc_datetime(scheduled_at),
        "status": POST_PENDING,
    }).to_dict()


def delete_scheduled_post(db: SupabaseDB, store_id: int, post_id: int) -> None:
    post = db.get("scheduled_posts", "id", post_id)
    if post is None or post.get("store_id") != store_id:
        raise LookupError("Scheduled post not found")
    if post.get("status") != POST_PENDING:
        raise ValueError("Only pending posts can be deleted")
    db.delete_row("scheduled_posts", "id", post.id)


# ---------------------------------------------------------------------------
# Recurring posts
# ---------------------------------------------------------------------------

def jst_day_of_week(value: datetime) -> int:
    """0 = Sunday."""
    return (to_jst_datetime(value).weekday() + 1) % 7


def should_run_today(post: dict, now: datetime) -> bool:
    if post.get("frequency") == "daily":
        return True
    if post.get("frequency") == "weekly":
        return jst_day_of_week(now) in (post.get("days_of_week") or [])
    return False


def already_generated_today(post: dict, now: datetime) -> bool:
    last = post.get("last_generated_at")
    if not last:
        return False
    return to_jst_datetime(last).date() == to_jst_datetime(now).date()


def scheduled_time_today(post_time: str, now: datetime) -> datetime:
    hours, minutes = (int(part) for part in post_time[:5].split(":"))
    today = to_jst_datetime(now).date()
    return datetime(today.year, today.month, today.day, hours, minutes, tzinfo=JST)


def generate_recurring_posts(db: SupabaseDB, now: Optional[datetime] = None) -> dict[str, int]:
    now = now or utc_now()
    posts = db.query("recurring_posts").filter(("is_active", "=", True)).all()
    generated = 0
    skipped = 0
    for post in posts:
        record = post.to_dict()
        if not should_run_today(record, now) or already_generated_today(record, now):
            skipped += 1
            continue
        try:
            db.insert("scheduled_posts", {
                "store_id": post.store_id,
                "content": post.content,
                "image_url": post.get("image_url"),
                "scheduled_at": ensure_utc_datetime(scheduled_time_today(post.post_time, now)),
                "status": POST_PENDING,
                "recurring_post_id": post.id,
            })
        except Exception:
            logger.exception("Recurring post %s could not be scheduled", post.id)
            continue
        post.last_generated_at = now
        db.update(post)
        generated += 1

    logger.info("Recurring posts generated=%s skipped=%s", generated, skipped)
    return {"generated": generated, "skipped": skipped, "total": len(posts)}


def next_run_hint(post: dict, now: Optional[datetime] = None) -> Optional[str]:
    """Next JST datetime the recurring post would be generated for, as text."""
    now = now or utc_now()
    for offset in range(8):
        day = now + timedelta(days=offset)
        if not should_run_today(post, day):
            continue
        candidate = scheduled_time_today(post.get("post_time") or "00:00", day)
        if offset == 0 and already_generated_today(post, now):
            continue
        return candidate.strftime("%Y-%m-%d %H:%M")
    return None


def list_recurring_posts(db: SupabaseDB, store_id: int) -> list[dict]:
    rows = db.query("recurring_posts").filter(("store_id", "=", store_id)).order_by("id ASC").all()
    return [row.to_dict() for row in rows]


def _validate_recurring(values: dict) -> dict:
    if "content" in values:
        values["content"] = _validate_content(values["content"])
    if "frequency" in values and values["frequency"] not in FREQUENCIES:
        raise ValueError("frequency must be daily or weekly")
    if "post_time" in values:
        post_time = values["post_time"] or ""
        try:
            hours, minutes = (int(part) for part in post_time[:5].split(":"))
        except ValueError as exc:
            raise ValueError("Invalid post_time: must be HH:MM") from exc
        if not (0 <= hours <= 23 and 0 <= minutes <= 59):
            raise ValueError("Invalid post_time: must be HH:MM")
    if "days_of_week" in values:
        days = [int(d) for d in values["days_of_week"] or []]
        if any(d < 0 or d > 6 for d in days):
            raise ValueError("days_of_week must be between 0 (Sunday) and 6")
        values["days_of_week"] = sorted(set(days))
    if values.get("frequency") == "weekly" and "days_of_week" in values and not values["days_of_week"]:
        raise ValueError("Weekly posts need at least one day")
    if "image_keys" in values:
        values["image_url"] = _normalize_images(values.pop("image_keys"))
    return values


RECURRING_FIELDS = ("content", "frequency", "post_time", "days_of_week", "is_active", "image_keys")


def create_recurring_post(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _validate_recurring({k: data[k] for k in RECURRING_FIELDS if k in data})
    for required in ("content", "frequency", "post_time"):
        if required not in values:
            raise ValueError(f"{required} is required")
    values["store_id"] = store_id
    values.setdefault("days_of_week", [])
    values.setdefault("is_active", True)
    return db.insert("recurring_posts", values).to_dict()


def update_recurring_post(db: SupabaseDB, store_id: int, post_id: int, data: dict) -> dict:
    row = db.get("recurring_posts", "id", post_id)
    if row is None or row.get("store_id") != store_id:
        raise LookupError("Recurring post not found")
    values = _validate_recurring({k: data[k] for k in RECURRING_FIELDS if k in data})
    for key, value in values.items():
        setattr(row, key, value)
    db.update(row)
    return row.to_dict()


def delete_recurring_post(db: SupabaseDB, store_id: int, post_id: int) -> None:
    row = db.get("recurring_posts", "id", post_id)
    if row is None or row.get("store_id") != store_id:
        raise LookupError("Recurring post not found")
    db.delete_row("recurring_posts", "id", row.id)


# ---------------------------------------------------------------------------
# Store credentials and images
# ---------------------------------------------------------------------------

TWITTER_SETTING_FIELDS = ("api_key", "api_secret", "access_token", "access_token_secret")
_SECRET_FIELDS = ("api_secret", "access_token_secret")
IMAGE_CONTENT_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


def get_twitter_settings(db: SupabaseDB, store_id: int) -> dict[str, Any]:
    """Credentials with the secrets reduced to a configured flag."""
    row = db.query("store_twitter_settings").filter(("store_id", "=", store_id)).first()
    record = row.to_dict() if row else {"store_id": store_id}
    for key in _SECRET_FIELDS:
        record[f"has_{key}"] = bool(record.pop(key, None))
    record["connected"] = bool(record.get("access_token")) and record["has_access_token_secret"]
    return record


def upsert_twitter_settings(db: SupabaseDB, store_id: int, data: dict) -> dict[str, Any]:
    # blank secrets keep the stored value
    values = {k: data[k] for k in TWITTER_SETTING_FIELDS if k in data and (data[k] or k not in _SECRET_FIELDS)}
    values["store_id"] = store_id
    db.upsert("store_twitter_settings", values, on_conflict="store_id")
    return get_twitter_settings(db, store_id)


def upload_twitter_image(store_id: int, data: bytes, content_type: Optional[str]) -> str:
    suffix = IMAGE_CONTENT_TYPES.get(content_type or "")
    if suffix is None:
        raise ValueError("画像ファイルを選択してください")
    key = f"{store_id}/{utc_now().strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(4)}{suffix}"
    r2_upload(object_key(TWITTER_IMAGE_PREFIX, key), data, content_type)
    return key
