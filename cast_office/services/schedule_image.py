"""
Schedule image: cast photos and names composited onto a store template.
"""
from __future__ import annotations

import base64
import io
import logging
import uuid
from typing import Any, Optional

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps

from cast_office.config import SCHEDULE_FONT_PATH
from cast_office.r2 import CAST_PHOTO_PREFIX, SCHEDULE_TEMPLATE_PREFIX, object_key, r2_delete, r2_download, r2_upload
from cast_office.supabase_client import SupabaseDB


logger = logging.getLogger("cast-office")

DEFAULT_NAME_STYLE = {
    "font_size": 24,
    "color": "#FFFFFF",
    "stroke_color": "#000000",
    "stroke_width": 2,
    "offset_y": 10,
}
IMAGE_CONTENT_TYPES = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


class TemplateNotConfigured(LookupError):
    pass


def resolve_name_style(style: Optional[dict]) -> dict[str, Any]:
    merged = dict(DEFAULT_NAME_STYLE)
    merged.update({k: v for k, v in (style or {}).items() if v is not None})
    return merged


def _load_font(size: int):
    if SCHEDULE_FONT_PATH:
        return ImageFont.truetype(SCHEDULE_FONT_PATH, size)
    return ImageFont.load_default(size=size)


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGBA")


def _draw_name(canvas: Image.Image, name: str, frame: dict, style: dict, font) -> None:
    draw = ImageDraw.Draw(canvas)
    stroke_width = int(style["stroke_width"])
    left, top, right, _ = draw.textbbox((0, 0), name, font=font, stroke_width=stroke_width)
    text_width = right - left
    x = int(frame["x"]) + (int(frame["width"]) - text_width) / 2 - left
    y = int(frame["y"]) + int(frame["height"]) + int(style["offset_y"]) - top
    draw.text(
        (x, y),
        name,
        font=font,
        fill=style["color"],
        stroke_width=stroke_width,
        stroke_fill=style["stroke_color"],
    )


def compose_schedule_image(
    template_bytes: bytes,
    frames: list[dict],
    casts: list[dict],
    placeholder_bytes: Optional[bytes] = None,
    name_style: Optional[dict] = None,
) -> bytes:
    """Fill frames in order with ``casts`` ({name, photo: bytes|None}); returns PNG bytes."""
    style = resolve_name_style(name_style)
    font = _load_font(int(style["font_size"]))
    canvas = _open(template_bytes)
    placeholder = _open(placeholder_bytes) if placeholder_bytes else None

    for frame, cast in zip(frames, casts):
        size = (int(frame["width"]), int(frame["height"]))
        photo = _open(cast["photo"]) if cast.get("photo") else placeholder
        if photo is not None:
            fitted = ImageOps.fit(photo, size, method=Image.Resampling.LANCZOS)
            canvas.alpha_composite(fitted, (int(frame["x"]), int(frame["y"])))
        _draw_name(canvas, cast["name"], frame, style, font)

    buf = io.BytesIO()
    canvas.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def get_template(db: SupabaseDB, store_id: int) -> Optional[dict]:
    row = db.query("store_schedule_templates").filter(("store_id", "=", store_id)).first()
    return row.to_dict() if row else None


def _validate_frames(frames: list) -> list[dict]:
    cleaned = []
    for frame in frames:
        try:
            cleaned.append({key: int(frame[key]) for key in ("x", "y", "width", "height")})
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError("Invalid frame: x, y, width and height are required") from exc
        if cleaned[-1]["width"] <= 0 or cleaned[-1]["height"] <= 0:
            raise ValueError("Invalid frame: width and height must be positive")
    return cleaned


def _store_image(store_id: int, kind: str, data: bytes, content_type: Optional[str]) -> str:
    suffix = IMAGE_CONTENT_TYPES.get(content_type or "")
    if suffix is None:
        raise ValueError("画像ファイルを選択してください")
    path = f"{store_id}/{kind}_{uuid.uuid4().hex[:8]}{suffix}"
    r2_upload(object_key(SCHEDULE_TEMPLATE_PREFIX, path), data, content_type)
    return path


def upsert_template(
    db: SupabaseDB,
    store_id: int,
    frames: Optional[list] = None,
    name_style: Optional[dict] = None,
    frame_size: Optional[dict] = None,
    image: Optional[tuple[bytes, str]] = None,
    placeholder: Optional[tuple[bytes, str]] = None,
) -> dict:
    """Update frames/style and optionally replace the template or placeholder image."""
    existing = get_template(db, store_id) or {}
    values: dict[str, Any] = {"store_id": store_id}
    if frames is not None:
        values["frames"] = _validate_frames(frames)
    if name_style is not None:
        values["name_style"] = resolve_name_style(name_style)
    if frame_size is not None:
        values["frame_size"] = frame_size

    old_paths = []
    if image is not None:
        values["image_path"] = _store_image(store_id, "template", *image)
        old_paths.append(existing.get("image_path"))
    if placeholder is not None:
        values["placeholder_path"] = _store_image(store_id, "placeholder", *placeholder)
        old_paths.append(existing.get("placeholder_path"))

    saved = db.upsert("store_schedule_templates", values, on_conflict="store_id")
    stale = [object_key(SCHEDULE_TEMPLATE_PREFIX, p) for p in old_paths if p]
    if stale:
        r2_delete(stale)
    return saved[0].to_dict() if saved else get_template(db, store_id)


def _download_optional(key: str) -> Optional[bytes]:
    try:
        return r2_download(key)
    except httpx.HTTPError:
        logger.exception("Image download failed: %s", key)
        return None


def generate_schedule_image(db: SupabaseDB, store_id: int, cast_ids: list[int]) -> bytes:
    template = get_template(db, store_id)
    if not template or not template.get("image_path"):
        raise TemplateNotConfigured("Template not found or not configured")

    rows = db.query("casts").filter(("store_id", "=", store_id), ("id", "IN", cast_ids)).all()
    by_id = {row.id: row for row in rows}
    casts = []
    for cast_id in cast_ids:
        row = by_id.get(cast_id)
        if row is None:
            continue
        photo = None
        if row.get("photo_path"):
            photo = _download_optional(object_key(CAST_PHOTO_PREFIX, row.photo_path))
        casts.append({"name": row.name, "photo": photo})

    template_bytes = r2_download(object_key(SCHEDULE_TEMPLATE_PREFIX, template["image_path"]))
    placeholder_bytes = None
    if template.get("placeholder_path"):
        placeholder_bytes = _download_optional(object_key(SCHEDULE_TEMPLATE_PREFIX, template["placeholder_path"]))

    return compose_schedule_image(
        template_bytes,
        template.get("frames") or [],
        casts,
        placeholder_bytes,
        template.get("name_style"),
    )
