import hmac
from typing import Optional

import bcrypt
from fastapi import HTTPException, Request, status

from cast_office.config import CRON_SECRET, DEFAULT_STORE_ID, MIN_PASSWORD_LENGTH
from cast_office.supabase_client import SupabaseDB


ROLE_SUPER_ADMIN = "super_admin"
ROLE_STORE_ADMIN = "store_admin"
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_STORE_ADMIN)

PERMISSION_LABELS = {
    "casts": "キャスト管理",
    "attendance": "勤怠管理",
    "payslip": "給与明細",
    "payslip_list": "報酬明細一覧",
    "cast_sales": "キャスト売上",
    "cast_back_rates": "バック率設定",
    "compensation_settings": "手当設定",
    "deduction_settings": "控除設定",
    "sales_settings": "売上設定",
    "products": "商品管理",
    "categories": "カテゴリ管理",
    "store_settings": "店舗設定",
    "settings": "システム設定",
    "shifts": "シフト管理",
    "schedule": "出勤表作成",
    "twitter": "Twitter管理",
    "wage_settings": "時給ステータス設定",
}


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in the table
        return False


def authenticate(db: SupabaseDB, username: str, password: str) -> dict:
    """Check admin credentials and return the session payload."""
    username = (username or "").strip()
    if not username or not password:
        raise HTTPException(status_code=400, detail="ユーザー名とパスワードを入力してください")

    user = db.query("admin_users").filter(("username", "=", username)).first()
    if user is None:
        raise HTTPException(status_code=401, detail="ユーザー名またはパスワードが正しくありません")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="このアカウントは無効化されています")
    if not verify_password(password, user.password_hash):
        raise HTTPException(status_code=401, detail="ユーザー名またはパスワードが正しくありません")
    if user.role == ROLE_STORE_ADMIN and not user.get("store_id"):
        raise HTTPException(status_code=403, detail="店舗が設定されていません。管理者に連絡してください。")

    return {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "store_id": user.get("store_id") or DEFAULT_STORE_ID,
        "is_all_store": user.role == ROLE_SUPER_ADMIN,
        "permissions": user.get("permissions") or {},
    }


def get_current_admin(request: Request) -> dict:
    admin = request.session.get("admin")
    if not admin:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return admin


def resolve_store_id(admin: dict, requested_store_id: Optional[int] = None) -> int:
    if requested_store_id is None:
        return int(admin["store_id"])
    if admin.get("is_all_store") or admin.get("role") == ROLE_SUPER_ADMIN:
        return int(requested_store_id)
    if int(requested_store_id) != int(admin["store_id"]):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: other store")
    return int(requested_store_id)


def has_permission(permissions: Optional[dict], key: str, role: Optional[str] = None) -> bool:
    if role == ROLE_SUPER_ADMIN:
        return True
    if not permissions:
        return True
    return permissions.get(key) is not False


def require_permission(admin: dict, key: str) -> None:
    if not has_permission(admin.get("permissions"), key, admin.get("role")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Permission denied: {key}")


def is_cron_request(request: Request) -> bool:
    if not CRON_SECRET:
        return False
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header, f"Bearer {CRON_SECRET}")


def change_password(db: SupabaseDB, admin_id, current_password: str, new_password: str) -> None:
    user = db.get("admin_users", "id", admin_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="現在のパスワードが正しくありません")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"パスワードは{MIN_PASSWORD_LENGTH}文字以上で入力してください",
        )
    user.password_hash = hash_password(new_password)
    db.update(user)
