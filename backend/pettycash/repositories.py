"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users,
categories, expenses, balances, top-ups). Repositories return SQLModel
objects. Methods named `create` commit immediately; `add` only stages the
row so a service can commit it together with a ledger change.
"""

from datetime import date
from typing import List, Optional

from sqlmodel import Session, col, or_, select

from . import models


def _escape_like(term: str) -> str:
    """Escape LIKE wildcards so `term` matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, user: models.User) -> models.User:
        """Stage a new user and flush so its id is available."""
        self.session.add(user)
        self.session.flush()
        return user

    def save(self, user: models.User) -> models.User:
        """Commit changes to an existing user and refresh it."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None`."""
        stmt = select(models.User).where(models.User.email == email.strip().lower())
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def list_all(self) -> List[models.User]:
        stmt = select(models.User).order_by(models.User.created_at, models.User.id)
        return self.session.exec(stmt).all()

    def list_by_roles(self, roles: List[str]) -> List[models.User]:
        stmt = select(models.User).where(col(models.User.role).in_(roles)).order_by(models.User.id)
        return self.session.exec(stmt).all()


class CategoryRepository:
    """CRUD operations for `Category` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, category: models.Category) -> models.Category:
        """Persist a new category and return the managed instance."""
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def save(self, category: models.Category) -> models.Category:
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get(self, category_id: int) -> Optional[models.Category]:
        return self.session.get(models.Category, category_id)

    def get_by_name(self, name: str) -> Optional[models.Category]:
        stmt = select(models.Category).where(models.Category.name == name)
        return self.session.exec(stmt).first()

    def list_active(self) -> List[models.Category]:
        """Return active categories ordered by name."""
        stmt = select(models.Category).where(models.Category.is_active == True).order_by(models.Category.name)  # noqa: E712
        return self.session.exec(stmt).all()


class ExpenseRepository:
    """Query helpers for `Expense` rows."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, expense: models.Expense) -> models.Expense:
        self.session.add(expense)
        return expense

    def get(self, expense_id: int) -> Optional[models.Expense]:
        return self.session.get(models.Expense, expense_id)

    def get_by_receipt_url(self, receipt_url: str) -> Optional[models.Expense]:
        stmt = select(models.Expense).where(models.Expense.receipt_url == receipt_url)
        return self.session.exec(stmt).first()

    def list(
        self,
        user_id: Optional[int] = None,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
    ) -> List[models.Expense]:
        """Return expenses matching every supplied filter, newest first.

        `start_date`/`end_date` are inclusive bounds on `expense_date`.
        `search` is a case-insensitive substring match on description or
        remarks.
        """
        stmt = select(models.Expense)
        if user_id is not None:
            stmt = stmt.where(models.Expense.user_id == user_id)
        if category_id is not None:
            stmt = stmt.where(models.Expense.category_id == category_id)
        if status:
            stmt = stmt.where(models.Expense.status == status)
        if start_date is not None:
            stmt = stmt.where(models.Expense.expense_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(models.Expense.expense_date <= end_date)
        if search:
            pattern = f"%{_escape_like(search.strip())}%"
            stmt = stmt.where(or_(
                col(models.Expense.description).ilike(pattern, escape="\\"),
                col(models.Expense.remarks).ilike(pattern, escape="\\"),
            ))
        stmt = stmt.order_by(col(models.Expense.created_at).desc(), col(models.Expense.id).desc())
        return self.session.exec(stmt).all()


class BalanceRepository:
    """Access to the per-user `UserBalance` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> Optional[models.UserBalance]:
        stmt = select(models.UserBalance).where(models.UserBalance.user_id == user_id)
        return self.session.exec(stmt).first()

    def get_or_add(self, user_id: int) -> models.UserBalance:
        """Return the balance row for `user_id`, staging a zeroed one if missing."""
        balance = self.get(user_id)
        if balance is None:
            balance = models.UserBalance(user_id=user_id)
            self.session.add(balance)
            self.session.flush()
        return balance

    def list_for_users(self, user_ids: List[int]) -> List[models.UserBalance]:
        if not user_ids:
            return []
        stmt = select(models.UserBalance).where(col(models.UserBalance.user_id).in_(user_ids))
        return self.session.exec(stmt).all()


class TopUpRepository:
    """Persist and query `CashTopUp` records."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, top_up: models.CashTopUp) -> models.CashTopUp:
        self.session.add(top_up)
        return top_up

    def list(self, user_id: Optional[int] = None, limit: Optional[int] = None) -> List[models.CashTopUp]:
        """Return top-ups newest first, optionally for one recipient."""
        stmt = select(models.CashTopUp)
        if user_id is not None:
            stmt = stmt.where(models.CashTopUp.user_id == user_id)
        stmt = stmt.order_by(col(models.CashTopUp.created_at).desc(), col(models.CashTopUp.id).desc())
        if limit:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()
