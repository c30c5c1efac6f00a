from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.ext.mutable import MutableList, MutableDict

from .core.config import settings
from .core.database import Base


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "America/Santiago"))
except Exception:
    LOCAL_ZONE = ZoneInfo("America/Santiago")


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def today_local() -> date:
    return now_local_naive().date()


Money = Numeric(18, 4)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


# ===== Users & permissions =====

class Role(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    USER = "USER"


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Salted SHA-256 of the normalized address, used for lookups
    email_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # AES-256-GCM copy, only decrypted for display
    email_encrypted: Mapped[str | None] = mapped_column(Text)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(120))
    role: Mapped[Role] = mapped_column(SAEnum(Role, name="user_role"), nullable=False, default=Role.USER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    permission_overrides: Mapped[list["UserPermission"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Permission(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    default_roles: Mapped[list[str]] = mapped_column(MutableList.as_mutable(JSON), default=list, nullable=False)


class UserPermission(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permission.id", ondelete="CASCADE"), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)

    user: Mapped[User] = relationship(back_populates="permission_overrides")
    permission: Mapped[Permission] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )


# ===== Currencies =====

class Currency(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(60), nullable=False)
    symbol: Mapped[str] = mapped_column(String(5), nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ExchangeRate(Base, TimestampMixin):
    """Rate snapshot: 1 ``base_currency`` = ``rate`` ``target_currency``."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    target_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)

    __table_args__ = (
        UniqueConstraint("base_currency", "target_currency", name="uq_exchange_rate_pair"),
        CheckConstraint("rate > 0", name="ck_exchange_rate_positive"),
    )


# ===== Accounts =====

class AccountType(str, Enum):
    CASH = "CASH"
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"


class Account(Base, TimestampMixin):
    """Money container owned by a user; ``current_balance`` is maintained per mutation."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType, name="account_type"), nullable=False)
    currency_id: Mapped[int] = mapped_column(ForeignKey("currency.id"), nullable=False)
    initial_balance: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    # At most one default per user; kept by AccountService, not by a constraint
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16))
    color: Mapped[str | None] = mapped_column(String(16))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    currency: Mapped[Currency] = relationship()


# ===== Categories =====

class TxnType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    @classmethod
    def for_transaction(cls, txn_type: TxnType | str) -> "CategoryType":
        value = txn_type.value if isinstance(txn_type, TxnType) else str(txn_type)
        return cls.INCOME if value == TxnType.INCOME.value else cls.EXPENSE


class Category(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # NULL owner = global category shared by every user
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user.id"), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType, name="category_type"), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16))
    color: Mapped[str | None] = mapped_column(String(16))
    keywords: Mapped[list[str]] = mapped_column(MutableList.as_mutable(JSON), default=list, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_global(self) -> bool:
        return self.user_id is None


class CategorizationRule(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    merchant_pattern: Mapped[str | None] = mapped_column(String(120))
    description_pattern: Mapped[str | None] = mapped_column(String(200))
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Category] = relationship()

    __table_args__ = (
        CheckConstraint(
            "merchant_pattern IS NOT NULL OR description_pattern IS NOT NULL",
            name="ck_rule_has_pattern",
        ),
    )


# ===== Transactions =====

class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    type: Mapped[TxnType] = mapped_column(SAEnum(TxnType, name="txn_type"), nullable=False)
    # Always positive, expressed in the source account currency
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    original_amount: Mapped[Decimal | None] = mapped_column(Money)
    original_currency: Mapped[str | None] = mapped_column(String(3))
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(20, 8))
    currency_id: Mapped[int] = mapped_column(ForeignKey("currency.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("account.id"), nullable=False)
    to_account_id: Mapped[int | None] = mapped_column(ForeignKey("account.id"))
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    description: Mapped[str | None] = mapped_column(String(200))
    merchant: Mapped[str | None] = mapped_column(String(120))
    notes: Mapped[str | None] = mapped_column(Text)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str] = mapped_column(String(20), default="manual", nullable=False)
    auto_categorization_score: Mapped[float | None] = mapped_column(Numeric(5, 4))
    was_manually_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    document_type: Mapped[str | None] = mapped_column(String(20))
    document_number: Mapped[str | None] = mapped_column(String(50))
    merchant_rut: Mapped[str | None] = mapped_column(String(15))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)

    account: Mapped[Account] = relationship(foreign_keys=[account_id])
    to_account: Mapped[Account | None] = relationship(foreign_keys=[to_account_id])
    category: Mapped[Category | None] = relationship()
    currency: Mapped[Currency] = relationship()
    items: Mapped[list["TransactionItem"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        CheckConstraint(
            "to_account_id IS NULL OR to_account_id != account_id",
            name="ck_transaction_transfer_distinct",
        ),
        Index("ix_transaction_user_active_date", "user_id", "is_deleted", "transaction_date"),
    )

    @hybrid_property
    def is_active(self) -> bool:
        return not self.is_deleted

    @is_active.expression
    def is_active(cls):  # type: ignore[no-redef]
        return cls.is_deleted.is_(False)

    @property
    def status(self) -> str:
        return "DELETED" if self.is_deleted else "ACTIVE"


class TransactionItem(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transaction.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    transaction: Mapped[Transaction] = relationship(back_populates="items")


# ===== Budgets & goals =====

class BudgetPeriod(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class Budget(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(100))
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id", ondelete="SET NULL"))
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod, name="budget_period"), nullable=False)
    alert_at_75: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_at_90: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_at_100: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Category | None] = relationship()

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_budget_amount_positive"),
    )


class SavingsGoal(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(16))
    color: Mapped[str | None] = mapped_column(String(16))
    target_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Money, default=0, nullable=False)
    deadline: Mapped[date | None] = mapped_column(Date)
    milestone_25: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    milestone_50: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    milestone_75: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount >= 0", name="ck_goal_current_non_negative"),
    )


# ===== Audit =====

class AuditCategory(str, Enum):
    AUTH = "auth"
    USERS = "users"
    SECURITY = "security"
    FINANCE = "finance"
    SYSTEM = "system"


class AuditLog(Base):
    """Append-only record of security and finance events."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # Plain column: the log must outlive the user row
    user_id: Mapped[int | None] = mapped_column(Integer, index=True)
    target_id: Mapped[str | None] = mapped_column(String(64))
    target_type: Mapped[str | None] = mapped_column(String(40))
    details: Mapped[dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), default=dict, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False, index=True)


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):  # type: ignore[no-untyped-def]
    raise AuditLogImmutableError("audit log entries cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):  # type: ignore[no-untyped-def]
    raise AuditLogImmutableError("audit log entries cannot be deleted")
