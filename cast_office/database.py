from collections.abc import Generator

from cast_office.config import SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL
from cast_office.supabase_client import SupabaseDB


def open_db() -> SupabaseDB:
    return SupabaseDB(url=SUPABASE_URL, service_role_key=SUPABASE_SERVICE_ROLE_KEY)


def get_db() -> Generator[SupabaseDB, None, None]:
    db = open_db()
    try:
        yield db
    finally:
        db.close()
