"""SQLModel data models.

This module defines the petty-cash tables using SQLModel. Money columns
are `Decimal` values with two decimal places; the ledger arithmetic in
`services` relies on that to stay exact.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(SQLModel, table=True):
    """An employee account.

    Fields:
    - `email`: unique login name, stored lower-case
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: one of `Role`; drives every permission check
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    role: str = Field(default=Role.STAFF.value, index=True)
    is_active: bool = True
    password_hash: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class Category(SQLModel, table=True):
    """An expense category. Inactive categories are hidden from listings."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class Expense(SQLModel, table=True):
    """A claim against the submitter's petty cash.

    `status` moves from pending to approved or rejected exactly once.
    `approved_by`/`approved_at` record whoever made that decision, for
    rejections as well.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    category_id: int = Field(foreign_key='category.id', index=True)
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    description: str
    remarks: Optional[str] = None
    receipt_url: Optional[str] = None
    expense_date: date = Field(index=True)
    status: str = Field(default=ExpenseStatus.PENDING.value, index=True)
    approved_by: Optional[int] = Field(default=None, foreign_key='user.id')
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    has_gst: bool = False
    gst_amount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def total_amount(self) -> Decimal:
        return (self.amount or Decimal("0")) + (self.gst_amount or Decimal("0"))


class UserBalance(SQLModel, table=True):
    """Denormalised per-user cash position.

    `current_balance` tracks `total_allocated - total_spent`;
    `pending_amount` is the part of `total_spent` still awaiting a decision.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', unique=True)
    total_allocated: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_spent: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    pending_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    current_balance: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CashTopUp(SQLModel, table=True):
    """Cash handed to `user_id`. `source` names the giver."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    source: str
    reference: Optional[str] = None
    remarks: Optional[str] = None
    date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
