"""CLI script to seed the backend DB with demo users and categories.
Usage: python scripts/seed_demo.py [--password PASSWORD]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `pettycash` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from pettycash.config import settings
from pettycash.database import engine, create_db_and_tables, seed_demo_data, DEMO_USERS
from pettycash import services


def main(password: Optional[str] = None):
    """Create tables and seed demo data if the database has no users yet.

    Every demo account shares `password` (default: the configured demo
    password). Results are printed to stdout for a quick CLI feedback loop.
    """
    print('Using database:', settings.DATABASE_URL)
    create_db_and_tables()
    with Session(engine) as session:
        seeded = seed_demo_data(session, services.hash_password(password or settings.DEMO_PASSWORD))
    if not seeded:
        print('Users already exist; nothing seeded')
        return
    for email, _first, _last, role, _dept in DEMO_USERS:
        print(f'Seeded {role.value}: {email}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--password', help='Password shared by the demo accounts')
    args = parser.parse_args()
    main(password=args.password)
