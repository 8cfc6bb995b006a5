import uuid

import pytest

from conftest import submit_expense


def test_add_cash_credits_balance_and_records_giver(manager_client, make_user):
    _, user = make_user(first_name='Priya', last_name='Field')
    r = manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': '75.50'})
    assert r.status_code == 200, r.text
    bal = r.json()
    assert bal['user_id'] == user['id']
    assert bal['total_allocated'] == pytest.approx(75.5)
    assert bal['current_balance'] == pytest.approx(75.5)

    history = manager_client.get('/api/cash-topups-history').json()
    entry = next(h for h in history if h['user_id'] == user['id'])
    assert entry['recipient_name'] == 'Priya Field'
    assert entry['added_by_name'] == 'Max Manager'
    assert entry['amount'] == pytest.approx(75.5)


def test_add_cash_validation(manager_client, make_user):
    _, user = make_user()
    assert manager_client.post('/api/add-cash', json={'user_id': 999999, 'amount': 5}).status_code == 404
    assert manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': 0}).status_code == 400
    assert manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': -3}).status_code == 400
    assert manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': '1e30'}).status_code == 400
    assert manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': 100000000}).status_code == 400
    assert manager_client.get(f"/api/user-balance/{user['id']}").json()['total_allocated'] == pytest.approx(0.0)


def test_staff_cannot_add_cash_or_read_balances(make_user):
    staff, user = make_user()
    assert staff.post('/api/add-cash', json={'user_id': user['id'], 'amount': 5}).status_code == 403
    assert staff.get(f"/api/user-balance/{user['id']}").status_code == 403


def test_unknown_user_balance_is_404(manager_client):
    assert manager_client.get('/api/user-balance/999999').status_code == 404


def test_admin_cash_top_ups(admin_client, manager_client, make_user):
    _, user = make_user()
    r = admin_client.post('/api/cash-topups', json={
        'user_id': user['id'],
        'amount': 120,
        'source': 'Bank withdrawal',
        'reference': 'CHQ-1042',
        'date': '2025-05-02',
    })
    assert r.status_code == 200, r.text
    top_up = r.json()
    assert top_up['user_id'] == user['id']
    assert top_up['amount'] == pytest.approx(120.0)
    assert top_up['date'].startswith('2025-05-02')

    listed = admin_client.get('/api/cash-topups').json()
    assert any(t['id'] == top_up['id'] for t in listed)
    bal = admin_client.get(f"/api/user-balance/{user['id']}").json()
    assert bal['total_allocated'] == pytest.approx(120.0)

    assert manager_client.get('/api/cash-topups').status_code == 403
    bad = admin_client.post('/api/cash-topups', json={'user_id': user['id'], 'amount': 5, 'source': ''})
    assert bad.status_code == 400


def test_cash_top_up_defaults_to_caller(admin_client):
    me = admin_client.get('/api/auth/user').json()
    before = admin_client.get(f"/api/user-balance/{me['id']}").json()['total_allocated']
    r = admin_client.post('/api/cash-topups', json={'amount': 10, 'source': 'Petty cash float'})
    assert r.status_code == 200
    assert r.json()['user_id'] == me['id']
    after = admin_client.get(f"/api/user-balance/{me['id']}").json()['total_allocated']
    assert after == pytest.approx(before + 10)


def test_transactions_are_scoped_for_staff(manager_client, make_user):
    alice, alice_user = make_user()
    _, bob_user = make_user()
    manager_client.post('/api/add-cash', json={'user_id': alice_user['id'], 'amount': 10})
    manager_client.post('/api/add-cash', json={'user_id': bob_user['id'], 'amount': 20})

    mine = alice.get('/api/transactions').json()
    assert [t['user_id'] for t in mine] == [alice_user['id']]
    everyone = {t['user_id'] for t in manager_client.get('/api/transactions').json()}
    assert {alice_user['id'], bob_user['id']} <= everyone


def test_reset_keeps_pending_claims(admin_client, manager_client, make_user, category_id):
    staff, user = make_user()
    admin_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': 100})
    exp = submit_expense(staff, category_id, 10).json()

    r = admin_client.post('/api/reset-cash-topups')
    assert r.status_code == 200
    assert r.json()['reset_count'] >= 1

    bal = admin_client.get(f"/api/user-balance/{user['id']}").json()
    assert bal['total_allocated'] == pytest.approx(0.0)
    assert bal['total_spent'] == pytest.approx(10.0)
    assert bal['pending_amount'] == pytest.approx(10.0)
    assert bal['current_balance'] == pytest.approx(-10.0)

    manager_client.put(f"/api/expenses/{exp['id']}/status", json={'status': 'rejected'})
    bal = admin_client.get(f"/api/user-balance/{user['id']}").json()
    assert bal['current_balance'] == pytest.approx(0.0)
    assert bal['total_spent'] == pytest.approx(0.0)


def test_reset_is_admin_only(manager_client):
    assert manager_client.post('/api/reset-cash-topups').status_code == 403


def test_create_user_and_duplicates(admin_client):
    email = f"new-{uuid.uuid4().hex[:8]}@example.com"
    payload = {'email': email, 'first_name': 'Nia', 'last_name': 'Driver', 'role': 'staff'}
    r = admin_client.post('/api/users', json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body['is_active'] is True
    assert 'password_hash' not in body

    dup = admin_client.post('/api/users', json={**payload, 'email': email.upper()})
    assert dup.status_code == 409


@pytest.mark.parametrize('payload', [
    {'email': 'x@example.com', 'first_name': 'A', 'last_name': 'B', 'role': 'owner'},
    {'email': 'not-an-email', 'first_name': 'A', 'last_name': 'B'},
    {'email': 'y@example.com', 'first_name': ' ', 'last_name': 'B'},
])
def test_create_user_validation(admin_client, payload):
    assert admin_client.post('/api/users', json=payload).status_code == 400


def test_change_role_validation(admin_client, make_user):
    _, user = make_user()
    assert admin_client.put(f"/api/users/{user['id']}/role", json={'role': 'boss'}).status_code == 400
    assert admin_client.put('/api/users/999999/role', json={'role': 'staff'}).status_code == 404
    r = admin_client.put(f"/api/users/{user['id']}/role", json={'role': 'admin'})
    assert r.json()['role'] == 'admin'


def test_user_list_includes_stats(admin_client, manager_client, make_user, category_id):
    staff, user = make_user()
    manager_client.post('/api/add-cash', json={'user_id': user['id'], 'amount': 60})
    a = submit_expense(staff, category_id, 10).json()
    submit_expense(staff, category_id, 5)
    manager_client.put(f"/api/expenses/{a['id']}/status", json={'status': 'approved'})

    rows = admin_client.get('/api/users').json()
    row = next(u for u in rows if u['id'] == user['id'])
    assert row['total_expenses'] == 2
    assert row['approved_expenses'] == 1
    assert row['pending_expenses'] == 1
    assert row['rejected_expenses'] == 0
    assert row['balance'] == pytest.approx(45.0)


def test_categories_lifecycle(admin_client, make_user):
    staff, _ = make_user()
    name = f"Parking {uuid.uuid4().hex[:6]}"
    r = admin_client.post('/api/categories', json={'name': name, 'description': 'Meters and car parks'})
    assert r.status_code == 200
    cat = r.json()
    assert any(c['id'] == cat['id'] for c in staff.get('/api/categories').json())

    assert admin_client.post('/api/categories', json={'name': name}).status_code == 409
    assert admin_client.post('/api/categories', json={'name': '  '}).status_code == 400
    assert staff.post('/api/categories', json={'name': 'Sneaky'}).status_code == 403

    r = admin_client.put(f"/api/categories/{cat['id']}", json={'is_active': False})
    assert r.status_code == 200
    assert r.json()['is_active'] is False
    assert all(c['id'] != cat['id'] for c in staff.get('/api/categories').json())
    # inactive categories no longer accept expenses
    assert submit_expense(staff, cat['id'], 5).status_code == 400

    assert admin_client.put('/api/categories/999999', json={'name': 'Ghost'}).status_code == 404
