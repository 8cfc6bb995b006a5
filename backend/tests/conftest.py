import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway database and upload folder before it is imported.
_TMP = Path(tempfile.mkdtemp(prefix="pettycash-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["SEED_DEMO_DATA"] = "true"

from fastapi.testclient import TestClient  # noqa: E402

from pettycash.config import settings  # noqa: E402
from pettycash.main import app  # noqa: E402

ADMIN_EMAIL = "admin@pettycash.local"
MANAGER_EMAIL = "manager@pettycash.local"


def login(email, password=None):
    """Return a TestClient holding a session cookie for `email`."""
    client = TestClient(app)
    r = client.post('/api/login', json={'email': email, 'password': password or settings.DEMO_PASSWORD})
    assert r.status_code == 200, r.text
    return client


@pytest.fixture(scope="session")
def admin_client():
    return login(ADMIN_EMAIL)


@pytest.fixture(scope="session")
def manager_client():
    return login(MANAGER_EMAIL)


@pytest.fixture
def make_user(admin_client):
    """Create a fresh user through the API and return `(logged_in_client, user_json)`."""
    def _make(role='staff', first_name='Test', last_name=None):
        email = f"{role}-{uuid.uuid4().hex[:10]}@example.com"
        r = admin_client.post('/api/users', json={
            'email': email,
            'first_name': first_name,
            'last_name': last_name or uuid.uuid4().hex[:6],
            'role': role,
            'department': 'Field Service',
        })
        assert r.status_code == 200, r.text
        return login(email), r.json()
    return _make


@pytest.fixture(scope="session")
def category_id(admin_client):
    cats = admin_client.get('/api/categories').json()
    assert cats, "demo categories should be seeded"
    return cats[0]['id']


def submit_expense(client, category_id, amount, description='Taxi to site', has_gst=False,
                   expense_date=None, files=None, remarks=None):
    data = {
        'category_id': str(category_id),
        'amount': str(amount),
        'description': description,
        'expense_date': expense_date or '2025-06-15',
        'has_gst': 'true' if has_gst else 'false',
    }
    if remarks:
        data['remarks'] = remarks
    return client.post('/api/expenses', data=data, files=files)
