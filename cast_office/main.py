import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from cast_office.auth import (
    PERMISSION_LABELS,
    ROLE_SUPER_ADMIN,
    authenticate,
    change_password,
    get_current_admin,
    has_permission,
    is_cron_request,
    require_permission,
    resolve_store_id,
)
from cast_office.config import (
    JST,
    SCHEDULER_ENABLED,
    SECRET_KEY,
    SESSION_HTTPS_ONLY,
    SESSION_MAX_AGE,
    SESSION_SAME_SITE,
    STATIC_DIR,
    TEMPLATES_DIR,
)
from cast_office.database import get_db, open_db
from cast_office.display import (
    display_deduction_type,
    display_hours,
    display_payslip_status,
    display_role,
    display_sales_type,
    payslip_status_pill_class,
)
from cast_office.schemas import (
    AttendancePayload,
    BackRatesRequest,
    CastPayload,
    CategoryPayload,
    CompensationSettingPayload,
    CostumePayload,
    DeductionTypePayload,
    FinalizeDailyStatsRequest,
    LatePenaltyRulePayload,
    PasswordChangeRequest,
    PayslipActionRequest,
    PayslipRecalculateRequest,
    PayslipSummaryResponse,
    ProductPayload,
    RecalculateSalesRequest,
    RecurringPostPayload,
    ScheduledPostPayload,
    ScheduleGenerateRequest,
    ShiftLockPayload,
    ShiftPayload,
    SpecialWageDayPayload,
    StorePayload,
    SystemSettingPayload,
    TwitterSettingsPayload,
    WageSettingsPayload,
    WageStatusConditionPayload,
    WageStatusPayload,
)
from cast_office.services import attendance as attendance_service
from cast_office.services import catalog
from cast_office.services import schedule_image
from cast_office.services import shifts as shift_service
from cast_office.services import twitter
from cast_office.services import wages
from cast_office.services.cron_lock import with_cron_lock
from cast_office.services.daily_sales import (
    finalize_daily_stats,
    load_daily_stats,
    recalculate_current_business_day,
    recalculate_for_date,
)
from cast_office.services.payslip import (
    calculate_payslip_for_cast,
    finalize_payslip,
    get_payslip,
    list_payslip_summaries,
    payslip_summaries_csv,
    recalculate_payslips,
    split_deductions,
    unfinalize_payslip,
)
from cast_office.services.settings import (
    list_system_settings,
    load_sales_settings,
    upsert_sales_settings,
    upsert_system_setting,
)
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import (
    current_year_month,
    date_to_ymd,
    format_yen,
    parse_date_value,
    to_jst_datetime,
    validate_year_month,
)


app = FastAPI(title="Cast Office")
app.add_middleware(
    SessionMiddleware,
    secret_key=SECRET_KEY,
    https_only=SESSION_HTTPS_ONLY,
    same_site=SESSION_SAME_SITE,
    max_age=SESSION_MAX_AGE,
)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["yen"] = format_yen
templates.env.filters["hours"] = display_hours

logger = logging.getLogger("cast-office")

import traceback as _tb

@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, _tb.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc), "type": type(exc).__name__})


JOB_SKIPPED_MESSAGE = "Job is already running, skipped"
JOB_COMPLETED_MESSAGE = "Cron job completed"
SCHEDULER_TICK_SECONDS = 300
PAYSLIP_RECALC_HOUR_JST = 5
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


@contextmanager
def service_errors():
    """Map service-level ValueError/LookupError onto 400/404."""
    try:
        yield
    except (KeyError, IndexError):
        raise
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def ensure_admin(request: Request, permission: Optional[str] = None) -> dict:
    admin = get_current_admin(request)
    if permission:
        require_permission(admin, permission)
    return admin


def ensure_super_admin(request: Request) -> dict:
    admin = get_current_admin(request)
    if admin.get("role") != ROLE_SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: super admin only")
    return admin


def ensure_cron(request: Request) -> None:
    if not is_cron_request(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def read_upload(upload: UploadFile) -> bytes:
    data = upload.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="ファイルが空です")
    return data


def read_csv_upload(upload: UploadFile) -> str:
    """UTF-8 first, then cp932 (Shift_JIS)."""
    data = read_upload(upload)
    for encoding in ("utf-8", "cp932"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise HTTPException(status_code=400, detail="CSVの文字コードを判別できません（UTF-8またはShift_JIS）")


def csv_response(text: str, filename: str) -> Response:
    return Response(
        content=text.encode("utf-8"),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


def checked_year_month(value: Optional[str]) -> str:
    year_month = value or current_year_month()
    with service_errors():
        validate_year_month(year_month)
    return year_month


def build_menu(admin: dict) -> list[tuple[str, str]]:
    return [
        (key, label)
        for key, label in PERMISSION_LABELS.items()
        if has_permission(admin.get("permissions"), key, admin.get("role"))
    ]


def template_helpers() -> dict:
    return {
        "display_payslip_status": display_payslip_status,
        "payslip_status_pill_class": payslip_status_pill_class,
        "display_sales_type": display_sales_type,
        "display_deduction_type": display_deduction_type,
        "display_role": display_role,
        "to_jst_datetime": to_jst_datetime,
    }


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

def run_locked_job(job_name: str, job) -> Optional[dict]:
    db = open_db()
    try:
        result = with_cron_lock(db, job_name, lambda: job(db))
        if result is None:
            logger.info("%s skipped: already running", job_name)
        else:
            logger.info("%s: %s", job_name, result)
        return result
    finally:
        db.close()


def _payslip_job(db: SupabaseDB) -> dict:
    return recalculate_payslips(db, None, current_year_month())


def _scheduler() -> None:
    """Background thread: posts every tick, recurring posts and wage statuses daily, sales hourly, payslips daily at 05:00 JST."""
    last_recurring_day = None
    last_sales_hour = None
    last_payslip_day = None
    while True:
        now = datetime.now(JST)
        jobs = [("twitter-posts", twitter.process_due_posts)]
        if now.date() != last_recurring_day:
            jobs.append(("generate-recurring-posts", twitter.generate_recurring_posts))
            jobs.append(("wage-status-update", wages.update_wage_statuses))
            last_recurring_day = now.date()
        hour_key = now.strftime("%Y-%m-%d %H")
        if hour_key != last_sales_hour:
            jobs.append(("recalculate-sales", recalculate_current_business_day))
            last_sales_hour = hour_key
        if now.hour >= PAYSLIP_RECALC_HOUR_JST and now.date() != last_payslip_day:
            jobs.append(("recalculate-payslips", _payslip_job))
            last_payslip_day = now.date()

        for job_name, job in jobs:
            try:
                run_locked_job(job_name, job)
            except Exception:
                logger.exception("Scheduled job failed: %s", job_name)
        time.sleep(SCHEDULER_TICK_SECONDS)


@app.on_event("startup")
def on_startup() -> None:
    if not SCHEDULER_ENABLED:
        return
    t = threading.Thread(target=_scheduler, daemon=True)
    t.start()
    logger.info("Scheduler started (posts every %ss)", SCHEDULER_TICK_SECONDS)


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

@app.get("/", response_class=HTMLResponse)
def root() -> RedirectResponse:
    return RedirectResponse(url="/dashboard")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse("login.html", {"request": request, "error": None})


@app.post("/login", response_class=HTMLResponse)
def login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    db: SupabaseDB = Depends(get_db),
):
    try:
        admin = authenticate(db, username, password)
    except HTTPException as exc:
        return templates.TemplateResponse(
            "login.html",
            {"request": request, "error": exc.detail, "username": username},
            status_code=exc.status_code,
        )
    request.session["admin"] = admin
    logger.info("Admin login: %s (%s)", admin["username"], admin["role"])
    return RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)


@app.get("/logout")
def logout(request: Request) -> RedirectResponse:
    request.session.clear()
    return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
):
    admin = request.session.get("admin")
    if not admin:
        return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    require_permission(admin, "payslip_list")
    sid = resolve_store_id(admin, store_id)
    year_month = checked_year_month(year_month)
    summaries = list_payslip_summaries(db, sid, year_month)
    totals = {
        key: sum(s[key] for s in summaries)
        for key in ("gross_total", "total_deduction", "net_payment")
    }
    return templates.TemplateResponse(
        "dashboard.html",
        {
            "request": request,
            "admin": admin,
            "menu_items": build_menu(admin),
            "store_id": sid,
            "stores": catalog.list_stores(db, active_only=True) if admin.get("is_all_store") else [],
            "year_month": year_month,
            "summaries": summaries,
            "totals": totals,
            **template_helpers(),
        },
    )


@app.get("/payslips/{cast_id}", response_class=HTMLResponse)
def payslip_page(
    request: Request,
    cast_id: int,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
):
    admin = request.session.get("admin")
    if not admin:
        return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    require_permission(admin, "payslip")
    sid = resolve_store_id(admin, store_id)
    year_month = checked_year_month(year_month)
    cast = db.get("casts", "id", cast_id)
    if cast is None or cast.get("store_id") != sid:
        raise HTTPException(status_code=404, detail="Cast not found")

    payslip = get_payslip(db, sid, cast_id, year_month)
    items = [
        row.to_dict()
        for row in db.query("payslip_items")
        .filter(("cast_id", "=", cast_id), ("store_id", "=", sid), ("year_month", "=", year_month))
        .order_by("date ASC")
        .all()
    ]
    return templates.TemplateResponse(
        "payslip.html",
        {
            "request": request,
            "admin": admin,
            "cast": cast.to_dict(),
            "year_month": year_month,
            "payslip": payslip,
            "items": items,
            "deductions": split_deductions((payslip or {}).get("deduction_details") or []),
            **template_helpers(),
        },
    )


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

@app.get("/api/me")
def me(request: Request) -> dict:
    admin = ensure_admin(request)
    return {**admin, "menu": [key for key, _ in build_menu(admin)]}


@app.post("/api/auth/password")
def password_change(
    request: Request,
    payload: PasswordChangeRequest,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request)
    change_password(db, admin["id"], payload.current_password, payload.new_password)
    return {"success": True}


# ---------------------------------------------------------------------------
# Payslips
# ---------------------------------------------------------------------------

@app.post("/api/payslips/recalculate")
def payslips_recalculate(
    request: Request,
    payload: Optional[PayslipRecalculateRequest] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    payload = payload or PayslipRecalculateRequest()
    cron = is_cron_request(request)
    admin = None if cron else request.session.get("admin")
    if not cron and not admin:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    store_id = payload.store_id
    if store_id is not None and (isinstance(store_id, bool) or not isinstance(store_id, int) or store_id <= 0):
        raise HTTPException(status_code=400, detail="Invalid store_id: must be a positive integer")

    year_month = payload.year_month
    if year_month is None:
        year_month = current_year_month()
    with service_errors():
        validate_year_month(year_month)

    if admin is not None:
        require_permission(admin, "payslip")
        if store_id is None:
            raise HTTPException(status_code=400, detail="store_id is required")
        resolve_store_id(admin, store_id)

    result = recalculate_payslips(db, store_id, year_month)
    return {"success": True, "store_id": store_id, "year_month": year_month, **result}


@app.get("/api/payslips", response_model=list[PayslipSummaryResponse])
def payslips_list(
    request: Request,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
):
    admin = ensure_admin(request, "payslip_list")
    sid = resolve_store_id(admin, store_id)
    return list_payslip_summaries(db, sid, checked_year_month(year_month))


@app.get("/api/payslips/export")
def payslips_export(
    request: Request,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> Response:
    admin = ensure_admin(request, "payslip_list")
    sid = resolve_store_id(admin, store_id)
    year_month = checked_year_month(year_month)
    text = payslip_summaries_csv(list_payslip_summaries(db, sid, year_month))
    return csv_response(text, f"報酬明細一覧_{year_month}.csv")


@app.get("/api/payslips/{cast_id}")
def payslip_detail(
    request: Request,
    cast_id: int,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    calculate: bool = False,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "payslip")
    sid = resolve_store_id(admin, store_id)
    year_month = checked_year_month(year_month)
    cast = db.get("casts", "id", cast_id)
    if cast is None or cast.get("store_id") != sid:
        raise HTTPException(status_code=404, detail="Cast not found")
    if calculate:
        with service_errors():
            calculate_payslip_for_cast(db, sid, cast.to_dict(), year_month)
    payslip = get_payslip(db, sid, cast_id, year_month)
    if payslip is None:
        raise HTTPException(status_code=404, detail="Payslip not found")
    return payslip


@app.post("/api/payslips/finalize")
def payslip_finalize(
    request: Request,
    payload: PayslipActionRequest,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "payslip")
    sid = resolve_store_id(admin, store_id)
    with service_errors():
        return finalize_payslip(db, sid, payload.cast_id, payload.year_month)


@app.post("/api/payslips/unfinalize")
def payslip_unfinalize(
    request: Request,
    payload: PayslipActionRequest,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "payslip")
    sid = resolve_store_id(admin, store_id)
    with service_errors():
        return unfinalize_payslip(db, sid, payload.cast_id, payload.year_month)


# ---------------------------------------------------------------------------
# Cast daily sales
# ---------------------------------------------------------------------------

@app.get("/api/cast-sales")
def cast_sales(
    request: Request,
    date_from: str,
    date_to: str,
    cast_id: Optional[int] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "cast_sales")
    sid = resolve_store_id(admin, store_id)
    return load_daily_stats(db, sid, parse_date_value(date_from), parse_date_value(date_to), cast_id)


@app.post("/api/cast-sales/recalculate")
def cast_sales_recalculate(
    request: Request,
    payload: RecalculateSalesRequest,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "cast_sales")
    sid = resolve_store_id(admin, payload.store_id)
    business_date = date_to_ymd(parse_date_value(payload.date))
    with service_errors():
        result = recalculate_for_date(db, sid, business_date)
    return {"success": True, "date": business_date, **result}


@app.post("/api/cast-sales/finalize")
def cast_sales_finalize(
    request: Request,
    payload: FinalizeDailyStatsRequest,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "cast_sales")
    sid = resolve_store_id(admin, payload.store_id)
    with service_errors():
        result = finalize_daily_stats(
            db, sid, payload.year_month, payload.date_from, payload.date_to, payload.unfinalize,
        )
    return {"success": True, **result}


# ---------------------------------------------------------------------------
# Casts
# ---------------------------------------------------------------------------

@app.get("/api/casts")
def casts_list(
    request: Request,
    store_id: Optional[int] = None,
    include_inactive: bool = False,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "casts")
    return catalog.list_casts(db, resolve_store_id(admin, store_id), include_inactive)


@app.post("/api/casts")
def casts_create(
    request: Request,
    payload: CastPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "casts")
    with service_errors():
        return catalog.create_cast(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/casts/{cast_id}")
def casts_update(
    request: Request,
    cast_id: int,
    payload: CastPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "casts")
    with service_errors():
        return catalog.update_cast(db, resolve_store_id(admin, store_id), cast_id, payload.model_dump(exclude_unset=True))


@app.delete("/api/casts/{cast_id}")
def casts_delete(
    request: Request,
    cast_id: int,
    store_id: Optional[int] = None,
    hard: bool = False,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "casts")
    sid = resolve_store_id(admin, store_id)
    with service_errors():
        if hard:
            catalog.delete_cast(db, sid, cast_id)
            return {"success": True, "deleted": True}
        catalog.deactivate_cast(db, sid, cast_id)
    return {"success": True, "deleted": False}


@app.post("/api/casts/{cast_id}/photo")
def casts_photo(
    request: Request,
    cast_id: int,
    file: UploadFile = File(...),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "casts")
    sid = resolve_store_id(admin, store_id)
    data = read_upload(file)
    with service_errors():
        return catalog.upload_cast_photo(db, sid, cast_id, data, file.content_type)


@app.get("/api/casts/{cast_id}/compensation")
def compensation_get(
    request: Request,
    cast_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "compensation_settings")
    sid = resolve_store_id(admin, store_id)
    return catalog.get_compensation_setting(db, sid, cast_id, year, month) or {}


@app.put("/api/casts/{cast_id}/compensation")
def compensation_put(
    request: Request,
    cast_id: int,
    payload: CompensationSettingPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "compensation_settings")
    sid = resolve_store_id(admin, store_id)
    values = payload.model_dump(exclude_unset=True)
    year = values.pop("year", None)
    month = values.pop("month", None)
    with service_errors():
        return catalog.upsert_compensation_setting(db, sid, cast_id, year, month, values)


@app.get("/api/back-rates")
def back_rates_list(
    request: Request,
    cast_id: Optional[int] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "cast_back_rates")
    return catalog.list_back_rates(db, resolve_store_id(admin, store_id), cast_id)


@app.put("/api/casts/{cast_id}/back-rates")
def back_rates_put(
    request: Request,
    cast_id: int,
    payload: BackRatesRequest,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "cast_back_rates")
    sid = resolve_store_id(admin, store_id)
    rates = [rate.model_dump(exclude_unset=True) for rate in payload.rates]
    with service_errors():
        saved = catalog.upsert_back_rates(db, sid, cast_id, rates)
    return {"success": True, "saved": saved}


# ---------------------------------------------------------------------------
# Categories / products
# ---------------------------------------------------------------------------

@app.get("/api/categories")
def categories_list(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "categories")
    return catalog.list_categories(db, resolve_store_id(admin, store_id))


@app.post("/api/categories")
def categories_create(
    request: Request,
    payload: CategoryPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "categories")
    with service_errors():
        return catalog.create_category(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/categories/{category_id}")
def categories_update(
    request: Request,
    category_id: int,
    payload: CategoryPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "categories")
    with service_errors():
        return catalog.update_category(
            db, resolve_store_id(admin, store_id), category_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/categories/{category_id}")
def categories_delete(
    request: Request,
    category_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "categories")
    with service_errors():
        catalog.delete_category(db, resolve_store_id(admin, store_id), category_id)
    return {"success": True}


@app.get("/api/categories/export")
def categories_export(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> Response:
    admin = ensure_admin(request, "categories")
    sid = resolve_store_id(admin, store_id)
    return csv_response(catalog.categories_to_csv(catalog.list_categories(db, sid)), "categories.csv")


@app.post("/api/categories/import")
def categories_import(
    request: Request,
    file: UploadFile = File(...),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
):
    admin = ensure_admin(request, "categories")
    sid = resolve_store_id(admin, store_id)
    result = catalog.import_categories_csv(db, sid, read_csv_upload(file))
    if not result["success"]:
        return JSONResponse(status_code=400, content=result)
    return result


@app.get("/api/products")
def products_list(
    request: Request,
    category_id: Optional[int] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "products")
    return catalog.list_products(db, resolve_store_id(admin, store_id), category_id)


@app.post("/api/products")
def products_create(
    request: Request,
    payload: ProductPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "products")
    with service_errors():
        return catalog.create_product(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/products/{product_id}")
def products_update(
    request: Request,
    product_id: int,
    payload: ProductPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "products")
    with service_errors():
        return catalog.update_product(
            db, resolve_store_id(admin, store_id), product_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/products/{product_id}")
def products_delete(
    request: Request,
    product_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "products")
    with service_errors():
        catalog.delete_product(db, resolve_store_id(admin, store_id), product_id)
    return {"success": True}


@app.get("/api/products/export")
def products_export(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> Response:
    admin = ensure_admin(request, "products")
    sid = resolve_store_id(admin, store_id)
    text = catalog.products_to_csv(catalog.list_products(db, sid), catalog.list_categories(db, sid))
    return csv_response(text, "products.csv")


@app.post("/api/products/import")
def products_import(
    request: Request,
    file: UploadFile = File(...),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "products")
    sid = resolve_store_id(admin, store_id)
    with service_errors():
        return catalog.import_products_csv(db, sid, read_csv_upload(file))


# ---------------------------------------------------------------------------
# Deductions
# ---------------------------------------------------------------------------

@app.get("/api/deduction-types")
def deduction_types_list(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "deduction_settings")
    return catalog.list_deduction_types(db, resolve_store_id(admin, store_id))


@app.post("/api/deduction-types")
def deduction_types_create(
    request: Request,
    payload: DeductionTypePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "deduction_settings")
    with service_errors():
        return catalog.create_deduction_type(
            db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True),
        )


@app.patch("/api/deduction-types/{deduction_id}")
def deduction_types_update(
    request: Request,
    deduction_id: int,
    payload: DeductionTypePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "deduction_settings")
    with service_errors():
        return catalog.update_deduction_type(
            db, resolve_store_id(admin, store_id), deduction_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/deduction-types/{deduction_id}")
def deduction_types_delete(
    request: Request,
    deduction_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "deduction_settings")
    with service_errors():
        catalog.delete_deduction_type(db, resolve_store_id(admin, store_id), deduction_id)
    return {"success": True}


@app.get("/api/deduction-types/{deduction_id}/late-rule")
def late_rule_get(
    request: Request,
    deduction_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "deduction_settings")
    with service_errors():
        return catalog.get_late_penalty_rule(db, resolve_store_id(admin, store_id), deduction_id) or {}


@app.put("/api/deduction-types/{deduction_id}/late-rule")
def late_rule_put(
    request: Request,
    deduction_id: int,
    payload: LatePenaltyRulePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "deduction_settings")
    with service_errors():
        return catalog.upsert_late_penalty_rule(
            db, resolve_store_id(admin, store_id), deduction_id, payload.model_dump(exclude_unset=True),
        )


# ---------------------------------------------------------------------------
# Stores and settings
# ---------------------------------------------------------------------------

@app.get("/api/stores")
def stores_list(request: Request, active_only: bool = False, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request)
    stores = catalog.list_stores(db, active_only)
    if admin.get("role") == ROLE_SUPER_ADMIN:
        return stores
    return [s for s in stores if s["id"] == admin["store_id"]]


@app.post("/api/stores")
def stores_create(request: Request, payload: StorePayload, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_super_admin(request)
    with service_errors():
        return catalog.create_store(db, payload.model_dump(exclude_unset=True))


@app.patch("/api/stores/{store_id}")
def stores_update(request: Request, store_id: int, payload: StorePayload, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_super_admin(request)
    with service_errors():
        return catalog.update_store(db, store_id, payload.model_dump(exclude_unset=True))


@app.get("/api/settings/system")
def system_settings_get(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> dict:
    admin = ensure_admin(request, "settings")
    return list_system_settings(db, resolve_store_id(admin, store_id))


@app.put("/api/settings/system")
def system_settings_put(
    request: Request,
    payload: SystemSettingPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "settings")
    sid = resolve_store_id(admin, store_id)
    upsert_system_setting(db, sid, payload.setting_key, payload.setting_value)
    return list_system_settings(db, sid)


@app.get("/api/settings/sales")
def sales_settings_get(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> dict:
    admin = ensure_admin(request, "sales_settings")
    return load_sales_settings(db, resolve_store_id(admin, store_id))


@app.put("/api/settings/sales")
def sales_settings_put(
    request: Request,
    payload: dict = Body(...),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "sales_settings")
    return upsert_sales_settings(db, resolve_store_id(admin, store_id), payload)


# ---------------------------------------------------------------------------
# Wage settings
# ---------------------------------------------------------------------------

@app.get("/api/wage-settings")
def wage_settings_get(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> dict:
    admin = ensure_admin(request, "wage_settings")
    return wages.get_wage_settings(db, resolve_store_id(admin, store_id))


@app.put("/api/wage-settings")
def wage_settings_put(
    request: Request,
    payload: WageSettingsPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.upsert_wage_settings(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.get("/api/wage-statuses")
def wage_statuses_list(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "wage_settings")
    return wages.list_wage_statuses(db, resolve_store_id(admin, store_id))


@app.post("/api/wage-statuses")
def wage_statuses_create(
    request: Request,
    payload: WageStatusPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.create_wage_status(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/wage-statuses/{status_id}")
def wage_statuses_update(
    request: Request,
    status_id: int,
    payload: WageStatusPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.update_wage_status(
            db, resolve_store_id(admin, store_id), status_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/wage-statuses/{status_id}")
def wage_statuses_delete(
    request: Request,
    status_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        wages.delete_wage_status(db, resolve_store_id(admin, store_id), status_id)
    return {"success": True}


@app.post("/api/wage-statuses/{status_id}/conditions")
def wage_status_conditions_create(
    request: Request,
    status_id: int,
    payload: WageStatusConditionPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.create_status_condition(db, resolve_store_id(admin, store_id), status_id, payload.model_dump())


@app.delete("/api/wage-status-conditions/{condition_id}")
def wage_status_conditions_delete(
    request: Request,
    condition_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        wages.delete_status_condition(db, resolve_store_id(admin, store_id), condition_id)
    return {"success": True}


@app.get("/api/costumes")
def costumes_list(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "wage_settings")
    return wages.list_costumes(db, resolve_store_id(admin, store_id))


@app.post("/api/costumes")
def costumes_create(
    request: Request,
    payload: CostumePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.create_costume(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/costumes/{costume_id}")
def costumes_update(
    request: Request,
    costume_id: int,
    payload: CostumePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.update_costume(
            db, resolve_store_id(admin, store_id), costume_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/costumes/{costume_id}")
def costumes_delete(
    request: Request,
    costume_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        wages.delete_costume(db, resolve_store_id(admin, store_id), costume_id)
    return {"success": True}


@app.get("/api/special-wage-days")
def special_days_list(
    request: Request,
    store_id: Optional[int] = None,
    year_month: Optional[str] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "wage_settings")
    if year_month:
        year_month = checked_year_month(year_month)
    return wages.list_special_days(db, resolve_store_id(admin, store_id), year_month)


@app.post("/api/special-wage-days")
def special_days_create(
    request: Request,
    payload: SpecialWageDayPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.create_special_day(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.patch("/api/special-wage-days/{day_id}")
def special_days_update(
    request: Request,
    day_id: int,
    payload: SpecialWageDayPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        return wages.update_special_day(
            db, resolve_store_id(admin, store_id), day_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/special-wage-days/{day_id}")
def special_days_delete(
    request: Request,
    day_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "wage_settings")
    with service_errors():
        wages.delete_special_day(db, resolve_store_id(admin, store_id), day_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------

@app.get("/api/attendance")
def attendance_list(
    request: Request,
    date: Optional[str] = None,
    year_month: Optional[str] = None,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "attendance")
    with service_errors():
        return attendance_service.list_attendance(db, resolve_store_id(admin, store_id), date, year_month)


@app.put("/api/attendance")
def attendance_put(
    request: Request,
    payload: AttendancePayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "attendance")
    sid = resolve_store_id(admin, store_id)
    attendance_date = date_to_ymd(parse_date_value(payload.date))
    values = payload.model_dump(exclude_unset=True, exclude={"cast_name", "date"})
    with service_errors():
        return attendance_service.upsert_attendance(db, sid, payload.cast_name, attendance_date, values)


@app.delete("/api/attendance/{attendance_id}")
def attendance_delete(
    request: Request,
    attendance_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "attendance")
    with service_errors():
        attendance_service.delete_attendance(db, resolve_store_id(admin, store_id), attendance_id)
    return {"success": True}


@app.get("/api/attendance-statuses")
def attendance_statuses(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "attendance")
    return attendance_service.list_attendance_statuses(db, resolve_store_id(admin, store_id))


# ---------------------------------------------------------------------------
# Shifts
# ---------------------------------------------------------------------------

@app.get("/api/shifts")
def shifts_list(
    request: Request,
    year: int,
    month: int,
    half: str = Query("first", pattern="^(first|second)$"),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    sid = resolve_store_id(admin, store_id)
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Invalid month")
    date_from, date_to = shift_service.period_dates(year, month, half == "first")
    return {
        "period": {"from": date_from, "to": date_to},
        "shifts": shift_service.list_shifts(db, sid, date_from, date_to),
        "locks": shift_service.list_shift_locks(db, sid, date_from, date_to),
        "requests": shift_service.list_shift_requests(db, sid, date_from, date_to),
    }


@app.put("/api/shifts")
def shifts_put(
    request: Request,
    payload: ShiftPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    sid = resolve_store_id(admin, store_id)
    shift_date = date_to_ymd(parse_date_value(payload.date))
    with service_errors():
        return shift_service.upsert_shift(db, sid, payload.cast_id, shift_date, payload.start_time, payload.end_time)


@app.delete("/api/shifts/{shift_id}")
def shifts_delete(
    request: Request,
    shift_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    with service_errors():
        shift_service.delete_shift(db, resolve_store_id(admin, store_id), shift_id)
    return {"success": True}


@app.post("/api/shift-locks/toggle")
def shift_lock_toggle(
    request: Request,
    payload: ShiftLockPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    sid = resolve_store_id(admin, store_id)
    lock_date = date_to_ymd(parse_date_value(payload.date))
    with service_errors():
        lock_type = shift_service.toggle_shift_lock(db, sid, payload.cast_id, lock_date, payload.lock_type)
    return {"success": True, "lock_type": lock_type}


@app.post("/api/shift-requests")
def shift_requests_create(
    request: Request,
    payload: ShiftPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    sid = resolve_store_id(admin, store_id)
    request_date = date_to_ymd(parse_date_value(payload.date))
    with service_errors():
        return shift_service.create_shift_request(
            db, sid, payload.cast_id, request_date, payload.start_time, payload.end_time,
        )


@app.post("/api/shift-requests/{request_id}/approve")
def shift_requests_approve(
    request: Request,
    request_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    with service_errors():
        return shift_service.approve_shift_request(db, resolve_store_id(admin, store_id), request_id)


@app.post("/api/shift-requests/{request_id}/reject")
def shift_requests_reject(
    request: Request,
    request_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "shifts")
    with service_errors():
        return shift_service.reject_shift_request(db, resolve_store_id(admin, store_id), request_id)


# ---------------------------------------------------------------------------
# Schedule image
# ---------------------------------------------------------------------------

@app.get("/api/schedule/template")
def schedule_template_get(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> dict:
    admin = ensure_admin(request, "schedule")
    return schedule_image.get_template(db, resolve_store_id(admin, store_id)) or {}


def _json_form(value: Optional[str], label: str):
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}: must be JSON") from exc


@app.post("/api/schedule/template")
def schedule_template_post(
    request: Request,
    frames: Optional[str] = Form(None),
    name_style: Optional[str] = Form(None),
    frame_size: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    placeholder: Optional[UploadFile] = File(None),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "schedule")
    sid = resolve_store_id(admin, store_id)
    image_part = (read_upload(image), image.content_type) if image is not None and image.filename else None
    placeholder_part = (
        (read_upload(placeholder), placeholder.content_type)
        if placeholder is not None and placeholder.filename else None
    )
    with service_errors():
        return schedule_image.upsert_template(
            db,
            sid,
            frames=_json_form(frames, "frames"),
            name_style=_json_form(name_style, "name_style"),
            frame_size=_json_form(frame_size, "frame_size"),
            image=image_part,
            placeholder=placeholder_part,
        )


@app.post("/api/schedule/generate")
def schedule_generate(
    request: Request,
    payload: ScheduleGenerateRequest,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "schedule")
    if payload.store_id is None:
        raise HTTPException(status_code=400, detail="store_id is required")
    if not payload.cast_ids:
        raise HTTPException(status_code=400, detail="cast_ids is required")
    sid = resolve_store_id(admin, payload.store_id)
    with service_errors():
        png = schedule_image.generate_schedule_image(db, sid, payload.cast_ids)
    return {"success": True, "image": schedule_image.to_data_url(png)}


# ---------------------------------------------------------------------------
# Twitter
# ---------------------------------------------------------------------------

@app.get("/api/twitter/settings")
def twitter_settings_get(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> dict:
    admin = ensure_admin(request, "twitter")
    return twitter.get_twitter_settings(db, resolve_store_id(admin, store_id))


@app.put("/api/twitter/settings")
def twitter_settings_put(
    request: Request,
    payload: TwitterSettingsPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    return twitter.upsert_twitter_settings(db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True))


@app.post("/api/twitter/images")
def twitter_image_upload(
    request: Request,
    file: UploadFile = File(...),
    store_id: Optional[int] = None,
) -> dict:
    admin = ensure_admin(request, "twitter")
    sid = resolve_store_id(admin, store_id)
    with service_errors():
        key = twitter.upload_twitter_image(sid, read_upload(file), file.content_type)
    return {"success": True, "key": key}


@app.get("/api/twitter/scheduled-posts")
def scheduled_posts_list(
    request: Request,
    status_filter: Optional[str] = Query(None, alias="status"),
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> list[dict]:
    admin = ensure_admin(request, "twitter")
    return twitter.list_scheduled_posts(db, resolve_store_id(admin, store_id), status_filter)


@app.post("/api/twitter/scheduled-posts")
def scheduled_posts_create(
    request: Request,
    payload: ScheduledPostPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    with service_errors():
        return twitter.create_scheduled_post(
            db, resolve_store_id(admin, store_id), payload.content, payload.scheduled_at, payload.image_keys,
        )


@app.delete("/api/twitter/scheduled-posts/{post_id}")
def scheduled_posts_delete(
    request: Request,
    post_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    with service_errors():
        twitter.delete_scheduled_post(db, resolve_store_id(admin, store_id), post_id)
    return {"success": True}


@app.get("/api/twitter/recurring-posts")
def recurring_posts_list(request: Request, store_id: Optional[int] = None, db: SupabaseDB = Depends(get_db)) -> list[dict]:
    admin = ensure_admin(request, "twitter")
    posts = twitter.list_recurring_posts(db, resolve_store_id(admin, store_id))
    for post in posts:
        post["next_run"] = twitter.next_run_hint(post) if post.get("is_active") else None
    return posts


@app.post("/api/twitter/recurring-posts")
def recurring_posts_create(
    request: Request,
    payload: RecurringPostPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    with service_errors():
        return twitter.create_recurring_post(
            db, resolve_store_id(admin, store_id), payload.model_dump(exclude_unset=True),
        )


@app.patch("/api/twitter/recurring-posts/{post_id}")
def recurring_posts_update(
    request: Request,
    post_id: int,
    payload: RecurringPostPayload,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    with service_errors():
        return twitter.update_recurring_post(
            db, resolve_store_id(admin, store_id), post_id, payload.model_dump(exclude_unset=True),
        )


@app.delete("/api/twitter/recurring-posts/{post_id}")
def recurring_posts_delete(
    request: Request,
    post_id: int,
    store_id: Optional[int] = None,
    db: SupabaseDB = Depends(get_db),
) -> dict:
    admin = ensure_admin(request, "twitter")
    with service_errors():
        twitter.delete_recurring_post(db, resolve_store_id(admin, store_id), post_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Cron
# ---------------------------------------------------------------------------

def _cron_response(db: SupabaseDB, job_name: str, job) -> dict:
    result = with_cron_lock(db, job_name, lambda: job(db))
    if result is None:
        return {"message": JOB_SKIPPED_MESSAGE}
    return {"message": JOB_COMPLETED_MESSAGE, **result}


@app.get("/api/cron/recalculate-sales")
def cron_recalculate_sales(request: Request, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_cron(request)
    return _cron_response(db, "recalculate-sales", recalculate_current_business_day)


@app.get("/api/cron/recalculate-payslips")
def cron_recalculate_payslips(request: Request, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_cron(request)
    return _cron_response(db, "recalculate-payslips", _payslip_job)


@app.get("/api/cron/twitter-posts")
def cron_twitter_posts(request: Request, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_cron(request)
    return _cron_response(db, "twitter-posts", twitter.process_due_posts)


@app.get("/api/cron/generate-recurring-posts")
def cron_generate_recurring_posts(request: Request, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_cron(request)
    return _cron_response(db, "generate-recurring-posts", twitter.generate_recurring_posts)


@app.get("/api/cron/wage-status-update")
def cron_wage_status_update(request: Request, db: SupabaseDB = Depends(get_db)) -> dict:
    ensure_cron(request)
    return _cron_response(db, "wage-status-update", wages.update_wage_statuses)
