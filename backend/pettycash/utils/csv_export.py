"""CSV rendering for expense reports."""

import csv
import io
from typing import Dict, Iterable

HEADERS = ['Date', 'Employee', 'Category', 'Description', 'Amount', 'GST', 'Total', 'Status',
           'Approved By', 'Approved Date']


def _day(value) -> str:
    if value is None:
        return ''
    if hasattr(value, 'date') and callable(value.date):
        value = value.date()
    return value.isoformat()


def _amount(value) -> str:
    return f"{value:.2f}" if value is not None else ''


def expense_rows_to_csv(rows: Iterable[Dict]) -> str:
    """Render report rows (as built by `ReportService.expense_rows`) to CSV text."""
    sio = io.StringIO()
    writer = csv.writer(sio, lineterminator='\n')
    writer.writerow(HEADERS)
    for r in rows:
        writer.writerow([
            _day(r.get('expense_date')),
            r.get('employee', ''),
            r.get('category', ''),
            r.get('description', ''),
            _amount(r.get('amount')),
            _amount(r.get('gst_amount')),
            _amount(r.get('total_amount')),
            r.get('status', ''),
            r.get('approved_by', ''),
            _day(r.get('approved_at')),
        ])
    return sio.getvalue()
