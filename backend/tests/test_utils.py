import csv
import io
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from pettycash.services import MAX_AMOUNT, positive_money, to_money
from pettycash.utils import receipts
from pettycash.utils.csv_export import HEADERS, expense_rows_to_csv
from pettycash.utils.receipts import (ReceiptRejected, media_type_for, resolve_stored, safe_name, sniff_kind,
                                      store_receipt)


def test_safe_name_strips_unsafe_characters():
    assert safe_name('my receipt (1).JPG') == 'my_receipt_1_.JPG'
    assert safe_name('../../etc/passwd') == 'passwd'
    assert safe_name('...') == 'receipt'


def test_sniff_kind_pdf_and_rejections():
    assert sniff_kind(b'%PDF-1.7 body', 'application/pdf') == 'pdf'
    assert sniff_kind(b'%PDF-1.7 body', 'application/octet-stream') == 'pdf'
    with pytest.raises(ReceiptRejected) as exc:
        sniff_kind(b'hello', 'image/png')
    assert exc.value.status_code == 415
    with pytest.raises(ReceiptRejected) as exc:
        sniff_kind(b'%PDF-1.7', 'text/html')
    assert exc.value.status_code == 415


def test_store_receipt_limits(tmp_path):
    with pytest.raises(ReceiptRejected) as exc:
        store_receipt(b'%PDF' + b'0' * 100, 'big.pdf', 'application/pdf', tmp_path, max_bytes=50)
    assert exc.value.status_code == 413
    with pytest.raises(ReceiptRejected):
        store_receipt(b'', 'empty.pdf', 'application/pdf', tmp_path, max_bytes=50)
    with pytest.raises(ReceiptRejected):
        store_receipt(b'%PDF', 'a/b.pdf', 'application/pdf', tmp_path, max_bytes=50)

    url = store_receipt(b'%PDF-1.4', 'fuel.pdf', 'application/pdf', tmp_path, max_bytes=50)
    assert url.startswith('/uploads/') and url.endswith('-fuel.pdf')
    stored = resolve_stored(tmp_path, url.rsplit('/', 1)[-1])
    assert stored is not None and stored.read_bytes() == b'%PDF-1.4'
    assert media_type_for(stored) == 'application/pdf'


def test_resolve_stored_refuses_traversal(tmp_path):
    uploads = tmp_path / 'uploads'
    uploads.mkdir()
    (tmp_path / 'secret.txt').write_text('x')
    assert resolve_stored(uploads, '../secret.txt') is None
    assert resolve_stored(uploads, 'missing.png') is None


def test_csv_export_quotes_and_formats():
    rows = [{
        'expense_date': date(2025, 3, 4),
        'employee': 'Sam Staff',
        'category': 'Meals',
        'description': 'Lunch, team "kickoff"',
        'amount': Decimal('10'),
        'gst_amount': Decimal('0.90'),
        'total_amount': Decimal('10.90'),
        'status': 'approved',
        'approved_by': 'Max Manager',
        'approved_at': datetime(2025, 3, 5, 14, 30),
    }]
    text = expense_rows_to_csv(rows)
    parsed = list(csv.reader(io.StringIO(text)))
    assert parsed[0] == HEADERS
    assert parsed[1] == ['2025-03-04', 'Sam Staff', 'Meals', 'Lunch, team "kickoff"', '10.00', '0.90',
                         '10.90', 'approved', 'Max Manager', '2025-03-05']
    assert '"Lunch, team ""kickoff"""' in text


def test_same_name_uploads_in_one_millisecond_keep_both_files(tmp_path, monkeypatch):
    monkeypatch.setattr(receipts, 'time', SimpleNamespace(time=lambda: 1700000000.0))
    first = store_receipt(b'%PDF-first', 'slip.pdf', 'application/pdf', tmp_path, max_bytes=50)
    second = store_receipt(b'%PDF-second', 'slip.pdf', 'application/pdf', tmp_path, max_bytes=50)
    assert first != second
    assert resolve_stored(tmp_path, first.rsplit('/', 1)[-1]).read_bytes() == b'%PDF-first'
    assert resolve_stored(tmp_path, second.rsplit('/', 1)[-1]).read_bytes() == b'%PDF-second'


@pytest.mark.parametrize('value', ['1e30', '9' * 40, 'Infinity', 'NaN', None, 'ten'])
def test_to_money_rejects_unrepresentable_values(value):
    with pytest.raises(ValueError):
        to_money(value)


def test_positive_money_enforces_column_range():
    assert positive_money('99999999.99') == Decimal('99999999.99')
    assert positive_money('0.005') == Decimal('0.01')
    with pytest.raises(ValueError):
        positive_money(MAX_AMOUNT)
    with pytest.raises(ValueError):
        positive_money('0.004')
