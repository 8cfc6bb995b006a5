"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Business rules (positive amounts, known
roles) are checked in `services` so they surface as 400 responses.
"""

import datetime as dt
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str = ""
    password: str = ""


class CategoryIn(BaseModel):
    name: str
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    """Partial category update; omitted fields are left unchanged."""
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ExpenseStatusIn(BaseModel):
    """Approval decision for a pending expense."""
    status: Literal["approved", "rejected"]
    rejection_reason: Optional[str] = None


class UserCreateIn(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str = "staff"
    department: Optional[str] = ""


class RoleUpdateIn(BaseModel):
    role: str


class CashTopUpIn(BaseModel):
    """Admin top-up record. `user_id` defaults to the caller."""
    amount: Decimal
    source: str
    user_id: Optional[int] = None
    reference: Optional[str] = None
    remarks: Optional[str] = None
    date: Optional[dt.date] = None


class AddCashIn(BaseModel):
    """Cash handed from the caller to `user_id`."""
    user_id: int
    amount: Decimal
    date: Optional[dt.date] = None
