from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class PayslipRecalculateRequest(BaseModel):
    # validated by hand so malformed values answer 400 with a readable message
    store_id: Any = None
    year_month: Any = None


class PayslipActionRequest(BaseModel):
    cast_id: int
    year_month: str


class FinalizeDailyStatsRequest(BaseModel):
    store_id: Optional[int] = None
    year_month: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    unfinalize: bool = False


class RecalculateSalesRequest(BaseModel):
    store_id: Optional[int] = None
    date: str


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


class CastPayload(BaseModel):
    name: Optional[str] = None
    employee_name: Optional[str] = None
    status: Optional[str] = None
    hire_date: Optional[str] = None
    resignation_date: Optional[str] = None
    birthday: Optional[str] = None
    twitter: Optional[str] = None
    instagram: Optional[str] = None
    show_in_pos: Optional[bool] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class CategoryPayload(BaseModel):
    name: Optional[str] = None
    display_order: Optional[int] = None
    show_oshi_first: Optional[bool] = None


class ProductPayload(BaseModel):
    name: Optional[str] = None
    price: Optional[int] = None
    category_id: Optional[int] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None
    needs_cast: Optional[bool] = None


class DeductionTypePayload(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    percentage: Optional[float] = None
    default_amount: Optional[int] = None
    attendance_status_id: Optional[int] = None
    penalty_amount: Optional[int] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


class LatePenaltyTier(BaseModel):
    minutes: int
    amount: int


class LatePenaltyRulePayload(BaseModel):
    calculation_type: str
    fixed_amount: Optional[int] = None
    interval_minutes: Optional[int] = None
    amount_per_interval: Optional[int] = None
    max_amount: Optional[int] = None
    tiers: Optional[list[LatePenaltyTier]] = None


class StorePayload(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None


class SystemSettingPayload(BaseModel):
    setting_key: str
    setting_value: str


class CompensationSettingPayload(BaseModel):
    year: Optional[int] = None
    month: Optional[int] = None
    status_id: Optional[int] = None
    status_locked: Optional[bool] = None
    hourly_wage_override: Optional[int] = None
    min_days_rule_enabled: Optional[bool] = None
    first_month_exempt_override: Optional[bool] = None
    enabled_deduction_ids: Optional[list[int]] = None
    compensation_types: Optional[list[dict[str, Any]]] = None
    payment_selection_method: Optional[str] = None
    selected_compensation_type_id: Any = None
    help_back_calculation_method: Optional[str] = None
    is_active: Optional[bool] = None


class WageSettingsPayload(BaseModel):
    default_hourly_wage: Optional[int] = None
    min_hours_for_full_day: Optional[float] = None
    min_days_for_back: Optional[int] = None
    wage_only_max_days: Optional[int] = None
    first_month_exempt: Optional[bool] = None


class WageStatusPayload(BaseModel):
    name: Optional[str] = None
    hourly_wage: Optional[int] = None
    priority: Optional[int] = None
    is_default: Optional[bool] = None


class WageStatusConditionPayload(BaseModel):
    condition_type: str
    operator: str
    value: int
    condition_direction: str


class CostumePayload(BaseModel):
    name: Optional[str] = None
    wage_adjustment: Optional[int] = None
    display_order: Optional[int] = None


class SpecialWageDayPayload(BaseModel):
    date: Optional[str] = None
    name: Optional[str] = None
    wage_adjustment: Optional[int] = None


class BackRatePayload(BaseModel):
    category: Optional[str] = None
    product_name: Optional[str] = None
    back_type: Optional[str] = None
    back_ratio: Optional[float] = None
    back_fixed_amount: Optional[int] = None
    self_back_ratio: Optional[float] = None
    help_back_ratio: Optional[float] = None
    is_active: Optional[bool] = None


class BackRatesRequest(BaseModel):
    rates: list[BackRatePayload]


class AttendancePayload(BaseModel):
    cast_name: str
    date: str
    check_in_datetime: Optional[datetime] = None
    check_out_datetime: Optional[datetime] = None
    status_id: Optional[int] = None
    late_minutes: Optional[int] = None
    break_minutes: Optional[int] = None
    daily_payment: Optional[int] = None
    costume_id: Optional[int] = None


class ShiftPayload(BaseModel):
    cast_id: int
    date: str
    start_time: str
    end_time: str


class ShiftLockPayload(BaseModel):
    cast_id: int
    date: str
    lock_type: str


class ScheduleGenerateRequest(BaseModel):
    store_id: Optional[int] = None
    cast_ids: list[int] = []


class ScheduledPostPayload(BaseModel):
    content: str
    scheduled_at: datetime
    image_keys: list[str] = []


class RecurringPostPayload(BaseModel):
    content: Optional[str] = None
    frequency: Optional[str] = None
    post_time: Optional[str] = None
    days_of_week: Optional[list[int]] = None
    is_active: Optional[bool] = None
    image_keys: Optional[list[str]] = None


class TwitterSettingsPayload(BaseModel):
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    access_token: Optional[str] = None
    access_token_secret: Optional[str] = None


class PayslipSummaryResponse(BaseModel):
    cast_id: int
    cast_name: str
    status: Optional[str]
    work_days: int
    total_hours: float
    hourly_income: float
    sales_back: float
    product_back: float
    fixed_amount: float
    gross_total: float
    daily_payment: float
    withholding_tax: float
    other_deductions: float
    total_deduction: float
    net_payment: float
