from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .models import AccountType, BudgetPeriod, CategoryType, Role, TxnType

T = TypeVar("T")

MAX_AMOUNT = Decimal("999999999999")


class Envelope(BaseModel, Generic[T]):
    data: T


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class Page(BaseModel, Generic[T]):
    data: list[T]
    pagination: Pagination


class DeletedOut(BaseModel):
    id: int
    deleted: bool = True


# ===== Currencies =====

class CurrencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    symbol: str
    decimals: int


class ExchangeRateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base_currency: str
    target_currency: str
    rate: Decimal
    fetched_at: datetime


class ExchangeRateUpsert(BaseModel):
    """Rates relative to EUR, e.g. ``{"USD": 1.08, "CLP": 1010}``."""

    rates: dict[str, Decimal] = Field(..., min_length=1)

    @field_validator("rates")
    @classmethod
    def _validate_rates(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        cleaned: dict[str, Decimal] = {}
        for code, rate in v.items():
            key = code.strip().upper()
            if len(key) != 3 or not key.isalpha():
                raise ValueError(f"invalid currency code: {code}")
            if rate <= 0:
                raise ValueError(f"rate for {key} must be positive")
            cleaned[key] = rate
        return cleaned


class ConvertIn(BaseModel):
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    from_currency: str = Field(..., min_length=3, max_length=3, validation_alias=AliasChoices("from_currency", "from"))
    to_currency: str = Field(..., min_length=3, max_length=3, validation_alias=AliasChoices("to_currency", "to"))


class ConvertOut(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    rate: Decimal
    converted: Decimal


# ===== Accounts =====

class AccountBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    currency_id: Optional[int] = None
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    initial_balance: Decimal = Field(default=Decimal("0"), ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    is_default: bool = False
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)
    sort_order: int = 0

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class AccountUpdate(BaseModel):
    # Balances move only through transactions
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)
    sort_order: Optional[int] = None
    is_default: Optional[bool] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    currency: CurrencyOut
    initial_balance: Decimal
    current_balance: Decimal
    is_default: bool
    is_active: bool
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: int
    created_at: datetime
    updated_at: datetime


class ReconcileOut(BaseModel):
    account_id: int
    stored_balance: Decimal
    computed_balance: Decimal
    drift: Decimal
    transaction_count: int
    in_sync: bool


# ===== Categories & rules =====

class CategoryBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    icon: Optional[str] = None
    color: Optional[str] = None


class CategoryOut(CategoryBrief):
    keywords: list[str] = Field(default_factory=list)
    parent_id: Optional[int] = None
    sort_order: int
    is_active: bool
    is_global: bool


def _clean_keywords(values: list[str]) -> list[str]:
    seen: list[str] = []
    for kw in values:
        token = kw.strip().lower()
        if token and token not in seen:
            seen.append(token)
    return seen


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)
    keywords: list[str] = Field(default_factory=list, max_length=100)
    parent_id: Optional[int] = None
    sort_order: int = 0

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, v: list[str]) -> list[str]:
        return _clean_keywords(v)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)
    keywords: Optional[list[str]] = Field(default=None, max_length=100)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _clean_keywords(v)


class RuleCreate(BaseModel):
    category_id: int
    merchant_pattern: Optional[str] = Field(default=None, max_length=120)
    description_pattern: Optional[str] = Field(default=None, max_length=200)
    priority: int = Field(default=100, ge=0, le=10000)

    @model_validator(mode="after")
    def _require_pattern(self) -> "RuleCreate":
        self.merchant_pattern = (self.merchant_pattern or "").strip() or None
        self.description_pattern = (self.description_pattern or "").strip() or None
        if not self.merchant_pattern and not self.description_pattern:
            raise ValueError("merchant_pattern or description_pattern is required")
        return self


class RuleUpdate(BaseModel):
    category_id: Optional[int] = None
    merchant_pattern: Optional[str] = Field(default=None, max_length=120)
    description_pattern: Optional[str] = Field(default=None, max_length=200)
    priority: Optional[int] = Field(default=None, ge=0, le=10000)
    is_active: Optional[bool] = None


class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    merchant_pattern: Optional[str] = None
    description_pattern: Optional[str] = None
    priority: int
    is_active: bool
    category: CategoryBrief


class CategorizeIn(BaseModel):
    description: str = Field(default="", max_length=200)
    merchant: Optional[str] = Field(
        default=None, max_length=120, validation_alias=AliasChoices("merchant", "merchant_name", "merchantName")
    )
    type: TxnType = TxnType.EXPENSE

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _require_text(self) -> "CategorizeIn":
        if not self.description.strip() and not (self.merchant or "").strip():
            raise ValueError("description or merchant is required")
        return self


class CategorizeBatchIn(BaseModel):
    transactions: list[CategorizeIn] = Field(..., min_length=1, max_length=100)


class SuggestionOut(BaseModel):
    category_id: int
    category_name: str
    confidence: float
    source: Literal["rule", "keyword"]
    matched: Optional[str] = None


# ===== Transactions =====

class TransactionItemIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(..., ge=0, le=MAX_AMOUNT)
    total_price: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)

    @model_validator(mode="after")
    def _fill_total(self) -> "TransactionItemIn":
        if self.total_price is None:
            self.total_price = self.quantity * self.unit_price
        return self


class TransactionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


class TransactionCreate(BaseModel):
    type: TxnType
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    account_id: int
    to_account_id: Optional[int] = None
    category_id: Optional[int] = None
    # Currency of ``amount``; defaults to the account currency
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=2000)
    transaction_date: Optional[date] = None
    source: Literal["manual", "ocr", "import"] = "manual"
    document_type: Optional[str] = Field(default=None, max_length=20)
    document_number: Optional[str] = Field(default=None, max_length=50)
    merchant_rut: Optional[str] = Field(default=None, max_length=15)
    items: list[TransactionItemIn] = Field(default_factory=list, max_length=200)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class TransactionUpdate(BaseModel):
    type: Optional[TxnType] = None
    amount: Optional[Decimal] = Field(default=None, gt=0, le=MAX_AMOUNT)
    account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=2000)
    transaction_date: Optional[date] = None
    document_type: Optional[str] = Field(default=None, max_length=20)
    document_number: Optional[str] = Field(default=None, max_length=50)
    merchant_rut: Optional[str] = Field(default=None, max_length=15)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TxnType
    amount: Decimal
    original_amount: Optional[Decimal] = None
    original_currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    currency: CurrencyOut
    account: AccountBrief
    to_account: Optional[AccountBrief] = None
    category: Optional[CategoryBrief] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: date
    source: str
    auto_categorization_score: Optional[float] = None
    was_manually_edited: bool
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    merchant_rut: Optional[str] = None
    items: list[TransactionItemOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# ===== Budgets =====

class BudgetCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    category_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_at_75: bool = True
    alert_at_90: bool = True
    alert_at_100: bool = True


class BudgetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    amount: Optional[Decimal] = Field(default=None, gt=0, le=MAX_AMOUNT)
    period: Optional[BudgetPeriod] = None
    alert_at_75: Optional[bool] = None
    alert_at_90: Optional[bool] = None
    alert_at_100: Optional[bool] = None
    is_active: Optional[bool] = None


class BudgetOut(BaseModel):
    id: int
    name: Optional[str] = None
    category: Optional[CategoryBrief] = None
    amount: Decimal
    period: BudgetPeriod
    period_start: date
    period_end: date
    alert_at_75: bool
    alert_at_90: bool
    alert_at_100: bool
    is_active: bool
    spent: Decimal
    remaining: Decimal
    percentage: float
    status: Literal["ok", "warning", "danger", "exceeded"]


class BudgetDetailOut(BudgetOut):
    transactions: list[TransactionOut] = Field(default_factory=list)


class BudgetSummary(BaseModel):
    total_budgeted: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    overall_percentage: float
    budgets_over_limit: int
    budgets_in_warning: int


class BudgetListOut(BaseModel):
    data: list[BudgetOut]
    meta: BudgetSummary


# ===== Goals =====

class GoalCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_AMOUNT)
    deadline: Optional[date] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)


class GoalUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount: Optional[Decimal] = Field(default=None, gt=0, le=MAX_AMOUNT)
    current_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    deadline: Optional[date] = None
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=16)


class GoalContribute(BaseModel):
    # Negative amounts withdraw from the goal
    amount: Decimal = Field(..., ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    note: Optional[str] = Field(default=None, max_length=200)

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must not be zero")
        return v


class GoalOut(BaseModel):
    id: int
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    target_amount: Decimal
    current_amount: Decimal
    deadline: Optional[date] = None
    milestone_25: bool
    milestone_50: bool
    milestone_75: bool
    completed: bool
    percentage: float
    remaining: Decimal
    days_left: Optional[int] = None
    required_daily: Optional[Decimal] = None
    required_monthly: Optional[Decimal] = None
    is_overdue: bool


class GoalDetailOut(GoalOut):
    pending_milestones: list[int] = Field(default_factory=list)


class GoalContributionOut(GoalOut):
    milestones_reached: list[int] = Field(default_factory=list)
    just_completed: bool = False


class GoalSummary(BaseModel):
    total_goals: int
    completed_goals: int
    active_goals: int
    total_target: Decimal
    total_saved: Decimal
    overall_percentage: float


class GoalListOut(BaseModel):
    data: list[GoalOut]
    meta: GoalSummary


# ===== OCR =====

class OcrRequest(BaseModel):
    # Length and content checks run after the rate limit, see OcrService
    image: str


class OcrLineItem(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Optional[Decimal] = None
    total_price: Decimal


class ReceiptData(BaseModel):
    """Structured fields returned by a receipt scanner."""

    is_valid_document: bool
    document_type: Optional[str] = None
    validation_message: Optional[str] = None
    document_number: Optional[str] = None
    emission_date: Optional[date] = None
    merchant_name: Optional[str] = None
    merchant_rut: Optional[str] = None
    payment_method: Optional[str] = None
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
    items: list[OcrLineItem] = Field(default_factory=list)
    suggested_category: Optional[str] = None
    confidence: Optional[float] = None


class OcrResult(BaseModel):
    receipt: ReceiptData
    suggested_category: Optional[CategoryBrief] = None
    default_account: Optional[AccountBrief] = None


# ===== Admin =====

class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    category: str
    user_id: Optional[int] = None
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    created_at: datetime


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: Optional[str] = None
    category: str
    default_roles: list[str] = Field(default_factory=list)


class PermissionOverrideIn(BaseModel):
    # ``null`` removes the override and falls back to the role default
    granted: Optional[bool]


class PermissionOverrideOut(BaseModel):
    user_id: int
    code: str
    granted: Optional[bool]
    effective: bool


class UserPermissionsOut(BaseModel):
    user_id: int
    role: Role
    permissions: list[str]


# ===== Dashboard =====

class CategorySpending(BaseModel):
    category: Optional[CategoryBrief] = None
    amount: Decimal
    percentage: float
    transaction_count: int


class DashboardSummary(BaseModel):
    currency: str
    period_start: date
    period_end: date
    total_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    net_flow: Decimal
    savings_rate: float
    previous_expenses: Decimal
    expense_change_pct: Optional[float] = None
    days_elapsed: int
    days_in_period: int
    daily_average: Decimal
    projected_expenses: Decimal
    account_count: int


class DashboardOut(BaseModel):
    summary: DashboardSummary
    expenses_by_category: list[CategorySpending]
    recent_transactions: list[TransactionOut]
    budget_alerts: list[BudgetOut]
    expense_spike: bool
