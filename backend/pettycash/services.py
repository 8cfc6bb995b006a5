"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
the balance ledger. Services perform validation, execute domain logic and
persist rows via repositories. They raise `ValueError` for bad input,
`NotFoundError` for missing rows, `ConflictError` when a request clashes
with stored state and `PermissionError` when the caller may not see a row;
controllers map those onto HTTP status codes.
"""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Expense amounts are stored as NUMERIC(10, 2).
MAX_AMOUNT = Decimal("100000000")
HISTORY_LIMIT = 50
MANAGING_ROLES = (models.Role.ADMIN.value, models.Role.MANAGER.value)

ledger_logger = logging.getLogger("pettycash.ledger")
auth_logger = logging.getLogger("pettycash.auth")


class NotFoundError(LookupError):
    """A referenced row does not exist."""


class ConflictError(Exception):
    """The request clashes with the current state of a row."""


def to_money(value) -> Decimal:
    """Coerce `value` to a Decimal rounded to cents, rejecting garbage."""
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise ValueError(f"invalid amount: {value!r}")
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"invalid amount: {value!r}") from e


def positive_money(value) -> Decimal:
    """Parse a user-supplied amount: positive and below `MAX_AMOUNT`."""
    amount = to_money(value)
    if amount <= 0:
        raise ValueError("amount must be greater than zero")
    if amount >= MAX_AMOUNT:
        raise ValueError(f"amount must be less than {MAX_AMOUNT}")
    return amount


def gst_for(amount: Decimal, has_gst: bool) -> Decimal:
    """Return the GST component for `amount` at the configured rate."""
    if not has_gst:
        return ZERO
    return (amount * Decimal(settings.GST_RATE)).quantize(CENT, rounding=ROUND_HALF_UP)


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Authentication related operations (login + session tokens)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Verify credentials and return the matching user.

        Returns `None` if the email is unknown or the password does not
        match. Inactive users are returned as-is; the caller decides how to
        refuse them.
        """
        user = self.user_repo.get_by_email(email)
        if not user:
            auth_logger.info("login rejected: unknown email %s", email)
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            auth_logger.info("login rejected: bad password for user %s", user.id)
            return None
        return user

    @staticmethod
    def issue_token(user: models.User) -> str:
        """Return a signed session token for `user`."""
        expire = _now() + timedelta(hours=settings.SESSION_EXPIRE_HOURS)
        payload = {"user_id": user.id, "role": user.role, "exp": int(expire.timestamp()), "jti": uuid.uuid4().hex}
        return jwt.encode(payload, settings.SESSION_SECRET, algorithm=settings.SESSION_ALGORITHM)


class LedgerService:
    """Apply expense and top-up events to `UserBalance` rows.

    Methods stage their changes on the session without committing, so the
    caller commits the balance together with the row that caused it.
    """
    def __init__(self, session: Session):
        self.session = session
        self.balance_repo = repositories.BalanceRepository(session)

    def _touch(self, balance: models.UserBalance) -> models.UserBalance:
        balance.updated_at = _now()
        self.session.add(balance)
        return balance

    def allocate(self, user_id: int, amount: Decimal) -> models.UserBalance:
        """Credit a top-up to the user's balance."""
        balance = self.balance_repo.get_or_add(user_id)
        balance.total_allocated = to_money(balance.total_allocated + amount)
        balance.current_balance = to_money(balance.current_balance + amount)
        ledger_logger.info("allocate user=%s amount=%s balance=%s", user_id, amount, balance.current_balance)
        return self._touch(balance)

    def charge(self, user_id: int, total: Decimal) -> models.UserBalance:
        """Debit a newly submitted expense; the balance may go negative."""
        balance = self.balance_repo.get_or_add(user_id)
        balance.total_spent = to_money(balance.total_spent + total)
        balance.pending_amount = to_money(balance.pending_amount + total)
        balance.current_balance = to_money(balance.current_balance - total)
        ledger_logger.info("charge user=%s total=%s balance=%s", user_id, total, balance.current_balance)
        return self._touch(balance)

    def settle(self, user_id: int, total: Decimal, status: str) -> models.UserBalance:
        """Release a pending claim; rejected claims are refunded."""
        balance = self.balance_repo.get_or_add(user_id)
        balance.pending_amount = to_money(balance.pending_amount - total)
        if status == models.ExpenseStatus.REJECTED.value:
            balance.total_spent = to_money(balance.total_spent - total)
            balance.current_balance = to_money(balance.current_balance + total)
        ledger_logger.info("settle user=%s total=%s status=%s balance=%s", user_id, total, status, balance.current_balance)
        return self._touch(balance)

    def reset_cycle(self, user_ids: List[int]) -> int:
        """Start a fresh cash cycle for `user_ids`.

        Allocations drop to zero; claims still pending carry over as the
        only spending of the new cycle. Returns the number of balances reset.
        """
        count = 0
        for user_id in user_ids:
            balance = self.balance_repo.get_or_add(user_id)
            pending = to_money(balance.pending_amount)
            balance.total_allocated = ZERO
            balance.total_spent = pending
            balance.current_balance = ZERO - pending
            self._touch(balance)
            count += 1
        ledger_logger.info("reset cash cycle for %d balances", count)
        return count


class UserService:
    """Administrative user management."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.balance_repo = repositories.BalanceRepository(session)
        self.expense_repo = repositories.ExpenseRepository(session)

    @staticmethod
    def _validate_role(role: str) -> str:
        valid = [r.value for r in models.Role]
        if role not in valid:
            raise ValueError(f"invalid role: {role}")
        return role

    def _require(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError(f"user not found: {user_id}")
        return user

    def create_user(self, email: str, first_name: str, last_name: str, role: str = "staff",
                    department: Optional[str] = None) -> models.User:
        """Create an active user with the shared demo password and a zero balance."""
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValueError("a valid email is required")
        if not (first_name or "").strip() or not (last_name or "").strip():
            raise ValueError("first_name and last_name are required")
        self._validate_role(role)
        if self.user_repo.get_by_email(email):
            raise ConflictError(f"a user with email {email} already exists")
        user = models.User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            role=role,
            department=(department or "").strip(),
            password_hash=hash_password(settings.DEMO_PASSWORD),
        )
        self.user_repo.add(user)
        self.session.add(models.UserBalance(user_id=user.id))
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_role(self, user_id: int, role: str) -> models.User:
        self._validate_role(role)
        user = self._require(user_id)
        user.role = role
        user.updated_at = _now()
        return self.user_repo.save(user)

    def toggle_status(self, user_id: int, acting_user_id: int) -> models.User:
        """Flip `is_active`. Admins cannot deactivate themselves."""
        user = self._require(user_id)
        if user.id == acting_user_id and user.is_active:
            raise ValueError("you cannot deactivate your own account")
        user.is_active = not user.is_active
        user.updated_at = _now()
        return self.user_repo.save(user)

    def list_with_stats(self) -> List[dict]:
        """Return every user with balance and per-status expense counts."""
        users = self.user_repo.list_all()
        balances = {b.user_id: b for b in self.balance_repo.list_for_users([u.id for u in users])}
        counts: Dict[int, Dict[str, int]] = {}
        for expense in self.expense_repo.list():
            per_user = counts.setdefault(expense.user_id, {s.value: 0 for s in models.ExpenseStatus})
            per_user[expense.status] = per_user.get(expense.status, 0) + 1
        out = []
        for u in users:
            c = counts.get(u.id, {})
            balance = balances.get(u.id)
            out.append({
                'user': u,
                'balance': balance.current_balance if balance else ZERO,
                'total_expenses': sum(c.values()),
                'approved_expenses': c.get(models.ExpenseStatus.APPROVED.value, 0),
                'pending_expenses': c.get(models.ExpenseStatus.PENDING.value, 0),
                'rejected_expenses': c.get(models.ExpenseStatus.REJECTED.value, 0),
            })
        return out


class CategoryService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CategoryRepository(session)

    def create(self, name: str, description: Optional[str] = None) -> models.Category:
        name = (name or "").strip()
        if not name:
            raise ValueError("category name is required")
        if self.repo.get_by_name(name):
            raise ConflictError(f"category already exists: {name}")
        return self.repo.create(models.Category(name=name, description=description))

    def update(self, category_id: int, name: Optional[str] = None, description: Optional[str] = None,
               is_active: Optional[bool] = None) -> models.Category:
        category = self.repo.get(category_id)
        if not category:
            raise NotFoundError(f"category not found: {category_id}")
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("category name is required")
            other = self.repo.get_by_name(name)
            if other and other.id != category.id:
                raise ConflictError(f"category already exists: {name}")
            category.name = name
        if description is not None:
            category.description = description
        if is_active is not None:
            category.is_active = is_active
        return self.repo.save(category)


class ExpenseService:
    """Submit, review and query expenses."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ExpenseRepository(session)
        self.category_repo = repositories.CategoryRepository(session)
        self.ledger = LedgerService(session)

    def submit(self, user: models.User, category_id: int, amount, description: str,
               expense_date: date, has_gst: bool = False, remarks: Optional[str] = None,
               receipt_url: Optional[str] = None) -> models.Expense:
        """Record a pending expense and charge its total to the submitter.

        GST, when flagged, is computed from `amount` at the configured rate.
        """
        amount = positive_money(amount)
        description = (description or "").strip()
        if not description:
            raise ValueError("description is required")
        category = self.category_repo.get(category_id)
        if not category or not category.is_active:
            raise ValueError(f"unknown category: {category_id}")
        expense = models.Expense(
            user_id=user.id,
            category_id=category.id,
            amount=amount,
            description=description,
            remarks=remarks or None,
            receipt_url=receipt_url,
            expense_date=expense_date,
            has_gst=has_gst,
            gst_amount=gst_for(amount, has_gst),
        )
        self.repo.add(expense)
        self.ledger.charge(user.id, expense.total_amount)
        self.session.commit()
        self.session.refresh(expense)
        ledger_logger.info("expense %s submitted by user %s total=%s", expense.id, user.id, expense.total_amount)
        return expense

    def decide(self, expense_id: int, status: str, approver: models.User,
               rejection_reason: Optional[str] = None) -> models.Expense:
        """Approve or reject a pending expense and settle the ledger."""
        if status not in (models.ExpenseStatus.APPROVED.value, models.ExpenseStatus.REJECTED.value):
            raise ValueError(f"invalid status: {status}")
        expense = self.repo.get(expense_id)
        if not expense:
            raise NotFoundError(f"expense not found: {expense_id}")
        if expense.status != models.ExpenseStatus.PENDING.value:
            raise ConflictError(f"expense {expense_id} is already {expense.status}")
        now = _now()
        expense.status = status
        expense.approved_by = approver.id
        expense.approved_at = now
        expense.updated_at = now
        if status == models.ExpenseStatus.REJECTED.value and rejection_reason:
            expense.rejection_reason = rejection_reason
        self.session.add(expense)
        self.ledger.settle(expense.user_id, expense.total_amount, status)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def list_visible(self, viewer: models.User, user_id: Optional[int] = None, **filters) -> List[models.Expense]:
        """List expenses the viewer may see; staff only ever get their own."""
        if viewer.role == models.Role.STAFF.value:
            user_id = viewer.id
        return self.repo.list(user_id=user_id, **filters)

    def get_visible(self, viewer: models.User, expense_id: int) -> models.Expense:
        expense = self.repo.get(expense_id)
        if not expense:
            raise NotFoundError(f"expense not found: {expense_id}")
        if viewer.role == models.Role.STAFF.value and expense.user_id != viewer.id:
            raise PermissionError("access denied")
        return expense

    def can_view_receipt(self, viewer: models.User, receipt_url: str) -> bool:
        """Return True if `viewer` may download the receipt at `receipt_url`."""
        expense = self.repo.get_by_receipt_url(receipt_url)
        if not expense:
            return False
        return viewer.role in MANAGING_ROLES or expense.user_id == viewer.id


class CashService:
    """Cash top-ups and their history."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TopUpRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.ledger = LedgerService(session)

    def _recipient(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError(f"user not found: {user_id}")
        return user

    @staticmethod
    def _as_datetime(value: Optional[date]) -> Optional[datetime]:
        if value is None:
            return None
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    def record_top_up(self, recipient_id: int, amount, source: str, reference: Optional[str] = None,
                      remarks: Optional[str] = None, on: Optional[date] = None) -> models.CashTopUp:
        """Store a top-up for `recipient_id` and credit it to their balance."""
        amount = positive_money(amount)
        source = (source or "").strip()
        if not source:
            raise ValueError("source is required")
        recipient = self._recipient(recipient_id)
        top_up = models.CashTopUp(
            user_id=recipient.id,
            amount=amount,
            source=source,
            reference=reference,
            remarks=remarks,
            date=self._as_datetime(on),
        )
        self.repo.add(top_up)
        self.ledger.allocate(recipient.id, amount)
        self.session.commit()
        self.session.refresh(top_up)
        return top_up

    def add_cash(self, giver: models.User, recipient_id: int, amount, on: Optional[date] = None) -> models.UserBalance:
        """Hand cash from `giver` to a user and return the updated balance."""
        giver_name = giver.display_name
        self.record_top_up(
            recipient_id,
            amount,
            source=giver_name,
            reference=f"Cash transfer from {giver_name}",
            remarks=f"Cash allocated by {giver_name}",
            on=on,
        )
        return self.ledger.balance_repo.get(recipient_id)

    def list_all(self) -> List[models.CashTopUp]:
        return self.repo.list()

    def history(self, user_id: Optional[int] = None, limit: int = HISTORY_LIMIT) -> List[dict]:
        """Return recent top-ups with recipient and giver names."""
        out = []
        for t in self.repo.list(user_id=user_id, limit=limit):
            recipient = self.user_repo.get(t.user_id)
            out.append({
                'id': t.id,
                'user_id': t.user_id,
                'amount': t.amount,
                'date': t.date,
                'created_at': t.created_at,
                'recipient_name': recipient.display_name if recipient else 'Unknown',
                'added_by_name': t.source or 'Admin',
            })
        return out

    def transactions_for(self, viewer: models.User) -> List[dict]:
        """Top-up history scoped to the viewer; staff only see cash they received."""
        if viewer.role == models.Role.STAFF.value:
            return self.history(user_id=viewer.id)
        return self.history()

    def reset_worker_top_ups(self) -> int:
        """Reset staff and manager balances to a fresh cash cycle."""
        workers = self.user_repo.list_by_roles([models.Role.STAFF.value, models.Role.MANAGER.value])
        count = self.ledger.reset_cycle([u.id for u in workers])
        self.session.commit()
        return count


def _sum_totals(expenses: List[models.Expense]) -> Decimal:
    return sum((e.total_amount for e in expenses), ZERO)


class DashboardService:
    """Role-scoped summary statistics."""
    def __init__(self, session: Session):
        self.session = session
        self.expense_repo = repositories.ExpenseRepository(session)
        self.category_repo = repositories.CategoryRepository(session)
        self.topup_repo = repositories.TopUpRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.balance_repo = repositories.BalanceRepository(session)

    def category_breakdown(self, expenses: List[models.Expense]) -> List[dict]:
        """Group non-rejected expenses by category, largest spend first."""
        groups: Dict[int, dict] = {}
        for e in expenses:
            if e.status == models.ExpenseStatus.REJECTED.value:
                continue
            entry = groups.get(e.category_id)
            if entry is None:
                category = self.category_repo.get(e.category_id)
                entry = groups[e.category_id] = {
                    'category_id': e.category_id,
                    'category_name': category.name if category else 'Unknown',
                    'total_spent': ZERO,
                    'expense_count': 0,
                }
            entry['total_spent'] += e.total_amount
            entry['expense_count'] += 1
        return sorted(groups.values(), key=lambda g: g['total_spent'], reverse=True)

    def stats(self, viewer: models.User, start_date: Optional[date] = None,
              end_date: Optional[date] = None, today: Optional[date] = None) -> dict:
        """Return the dashboard figures for `viewer`.

        Staff get their own numbers; managers and admins get system-wide
        numbers plus a per-staff `user_breakdown`.
        """
        today = today or date.today()
        is_staff = viewer.role == models.Role.STAFF.value
        scope_user = viewer.id if is_staff else None
        expenses = self.expense_repo.list(user_id=scope_user, start_date=start_date, end_date=end_date)
        counted = [e for e in expenses if e.status != models.ExpenseStatus.REJECTED.value]
        pending = [e for e in expenses if e.status == models.ExpenseStatus.PENDING.value]
        this_month = [e for e in counted
                      if e.expense_date.year == today.year and e.expense_date.month == today.month]
        cash_in = sum((t.amount for t in self.topup_repo.list(user_id=scope_user)), ZERO)
        spent = _sum_totals(counted)
        out = {
            'total_cash_in': cash_in,
            'total_balance': cash_in - spent,
            'total_spent': spent,
            'pending_expenses': _sum_totals(pending),
            'this_month_expenses': _sum_totals(this_month),
            'total_expenses_count': len(expenses),
            'pending_approvals_count': 0 if is_staff else len(pending),
            'category_breakdown': self.category_breakdown(expenses),
        }
        if not is_staff:
            out['user_breakdown'] = self.user_breakdown(start_date, end_date)
        return out

    def user_breakdown(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[dict]:
        """Per staff user: ledger position plus pending claims in range."""
        out = []
        for u in self.user_repo.list_by_roles([models.Role.STAFF.value]):
            balance = self.balance_repo.get(u.id)
            expenses = self.expense_repo.list(user_id=u.id, start_date=start_date, end_date=end_date)
            pending = [e for e in expenses if e.status == models.ExpenseStatus.PENDING.value]
            out.append({
                'user_id': u.id,
                'name': u.display_name,
                'email': u.email,
                'current_balance': balance.current_balance if balance else ZERO,
                'total_spent': balance.total_spent if balance else ZERO,
                'pending_amount': _sum_totals(pending),
                'expense_count': len(expenses),
            })
        return out


class ReportService:
    """Flat expense reports for managers and admins."""
    def __init__(self, session: Session):
        self.session = session
        self.expense_repo = repositories.ExpenseRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.category_repo = repositories.CategoryRepository(session)

    def expense_rows(self, start_date: Optional[date] = None, end_date: Optional[date] = None,
                     category_id: Optional[int] = None, status: Optional[str] = None) -> List[dict]:
        """Return one flat row per matching expense, newest first."""
        rows = []
        for e in self.expense_repo.list(category_id=category_id, status=status,
                                        start_date=start_date, end_date=end_date):
            user = self.user_repo.get(e.user_id)
            category = self.category_repo.get(e.category_id)
            approver = self.user_repo.get(e.approved_by) if e.approved_by else None
            rows.append({
                'id': e.id,
                'expense_date': e.expense_date,
                'employee': user.display_name if user else 'Unknown',
                'category': category.name if category else 'Unknown',
                'description': e.description,
                'amount': e.amount,
                'gst_amount': e.gst_amount,
                'total_amount': e.total_amount,
                'status': e.status,
                'approved_by': approver.display_name if approver else '',
                'approved_at': e.approved_at,
            })
        return rows
