"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
session dependency plus the demo-data seeding used on first start.
"""

import logging

from sqlmodel import SQLModel, create_engine, Session, select

from .config import settings
from . import models

logger = logging.getLogger("pettycash.database")

DB_URL = settings.DATABASE_URL
_connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
engine = create_engine(DB_URL, echo=False, connect_args=_connect_args)

DEFAULT_CATEGORIES = (
    ("Transport", "Taxi, fuel, parking and tolls"),
    ("Meals", "Team meals and client refreshments"),
    ("Office Supplies", "Stationery and small office items"),
    ("Tools & Equipment", "Hand tools, spare parts and consumables"),
    ("Miscellaneous", "Anything that does not fit elsewhere"),
)

DEMO_USERS = (
    ("admin@pettycash.local", "Ada", "Admin", models.Role.ADMIN, "Finance"),
    ("manager@pettycash.local", "Max", "Manager", models.Role.MANAGER, "Operations"),
    ("staff@pettycash.local", "Sam", "Staff", models.Role.STAFF, "Field Service"),
)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This is enough for SQLite demos and tests; production deployments
    should manage the schema with a migration tool instead.
    """
    SQLModel.metadata.create_all(engine)


def seed_demo_data(session: Session, password_hash: str) -> bool:
    """Populate an empty database with demo users and categories.

    Every demo user shares `password_hash` and starts with a zero balance.
    Returns False without touching anything when users already exist.
    """
    if session.exec(select(models.User.id)).first() is not None:
        return False
    for email, first, last, role, department in DEMO_USERS:
        user = models.User(
            email=email,
            first_name=first,
            last_name=last,
            role=role.value,
            department=department,
            password_hash=password_hash,
        )
        session.add(user)
        session.flush()
        session.add(models.UserBalance(user_id=user.id))
    existing = set(session.exec(select(models.Category.name)).all())
    for name, description in DEFAULT_CATEGORIES:
        if name not in existing:
            session.add(models.Category(name=name, description=description))
    session.commit()
    logger.info("seeded demo data: %d users, %d categories", len(DEMO_USERS), len(DEFAULT_CATEGORIES))
    return True


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
