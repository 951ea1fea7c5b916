from pathlib import Path
import os
from zoneinfo import ZoneInfo


BASE_DIR = Path(__file__).resolve().parent.parent
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
IS_PRODUCTION = APP_ENV in {"prod", "production"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

SECRET_KEY = os.getenv("APP_SECRET_KEY", "dev-secret-change-me")
SESSION_HTTPS_ONLY = _env_bool("SESSION_HTTPS_ONLY", IS_PRODUCTION)
SESSION_SAME_SITE = os.getenv("SESSION_SAME_SITE", "strict").strip().lower() or "strict"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24)))

CRON_SECRET = os.getenv("CRON_SECRET", "")
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", IS_PRODUCTION)

TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

JST = ZoneInfo("Asia/Tokyo")

DEFAULT_BUSINESS_DAY_CUTOFF_HOUR = 6
DEFAULT_TAX_RATE = 10
DEFAULT_SERVICE_FEE_RATE = 0
DEFAULT_STORE_ID = 1

CRON_LOCK_TTL_SECONDS = 300
TWITTER_POST_BATCH_SIZE = 10
TWITTER_POST_INTERVAL_SECONDS = 1.0
MIN_PASSWORD_LENGTH = 8

R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_API_TOKEN = os.getenv("R2_API_TOKEN", os.getenv("CLOUDFLARE_API_TOKEN", ""))
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "cast-office")

SCHEDULE_FONT_PATH = os.getenv("SCHEDULE_FONT_PATH", "")

TWITTER_MEDIA_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWITTER_TWEET_URL = "https://api.twitter.com/2/tweets"
