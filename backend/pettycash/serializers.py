"""Turn SQLModel rows into JSON-ready dictionaries.

Money is emitted as floats and dates as ISO strings so responses look
the same whatever database backs the session. Password hashes never
leave this module.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from . import models


def money(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def _iso(value) -> Optional[str]:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def user_out(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {
        'id': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'department': user.department,
        'role': user.role,
        'is_active': user.is_active,
        'created_at': _iso(user.created_at),
        'updated_at': _iso(user.updated_at),
    }


def category_out(category: Optional[models.Category]) -> Optional[dict]:
    if category is None:
        return None
    return {
        'id': category.id,
        'name': category.name,
        'description': category.description,
        'is_active': category.is_active,
        'created_at': _iso(category.created_at),
    }


def expense_out(expense: models.Expense, db: Optional[Session] = None) -> dict:
    """Serialize an expense; with `db`, embed submitter, category and approver."""
    out = {
        'id': expense.id,
        'user_id': expense.user_id,
        'category_id': expense.category_id,
        'amount': money(expense.amount),
        'gst_amount': money(expense.gst_amount),
        'has_gst': expense.has_gst,
        'total_amount': money(expense.total_amount),
        'description': expense.description,
        'remarks': expense.remarks,
        'receipt_url': expense.receipt_url,
        'expense_date': _iso(expense.expense_date),
        'status': expense.status,
        'approved_by': expense.approved_by,
        'approved_at': _iso(expense.approved_at),
        'rejection_reason': expense.rejection_reason,
        'created_at': _iso(expense.created_at),
        'updated_at': _iso(expense.updated_at),
    }
    if db is not None:
        out['user'] = user_out(db.get(models.User, expense.user_id))
        out['category'] = category_out(db.get(models.Category, expense.category_id))
        out['approver'] = user_out(db.get(models.User, expense.approved_by)) if expense.approved_by else None
    return out


def balance_out(balance: Optional[models.UserBalance], user_id: int) -> dict:
    """Serialize a balance row; a missing row reads as all zeros."""
    if balance is None:
        return {
            'user_id': user_id,
            'total_allocated': 0.0,
            'total_spent': 0.0,
            'pending_amount': 0.0,
            'current_balance': 0.0,
            'updated_at': None,
        }
    return {
        'user_id': balance.user_id,
        'total_allocated': money(balance.total_allocated),
        'total_spent': money(balance.total_spent),
        'pending_amount': money(balance.pending_amount),
        'current_balance': money(balance.current_balance),
        'updated_at': _iso(balance.updated_at),
    }


def top_up_out(top_up: models.CashTopUp) -> dict:
    return {
        'id': top_up.id,
        'user_id': top_up.user_id,
        'amount': money(top_up.amount),
        'source': top_up.source,
        'reference': top_up.reference,
        'remarks': top_up.remarks,
        'date': _iso(top_up.date),
        'created_at': _iso(top_up.created_at),
    }


def plain(value):
    """Recursively convert Decimals and dates inside service dictionaries."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [plain(v) for v in value]
    return value
