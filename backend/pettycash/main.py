"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the petty-cash backend.
Controllers are intentionally thin: they check the caller's role, delegate
to services, and return JSON responses.

Endpoints implemented:
- POST /api/login, POST /api/logout, GET /api/auth/user
- GET /api/dashboard/stats
- GET, POST /api/categories; PUT /api/categories/{id}
- GET, POST /api/expenses; GET /api/expenses/{id}; PUT /api/expenses/{id}/status
- GET, POST /api/cash-topups; GET /api/cash-topups-history; POST /api/reset-cash-topups
- GET, POST /api/users; PUT /api/users/{id}/role; PUT /api/users/{id}/toggle-status
- GET /api/reports/expenses; GET /api/reports/expenses/csv
- GET /api/user-balance/{user_id}; POST /api/add-cash; GET /api/transactions
- GET /uploads/{filename}
"""

import json
import logging
import os
import time
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Security, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from . import models, repositories, services
from .auth import bearer_scheme, get_current_user, require_role, revoke_session
from .config import settings
from .database import create_db_and_tables, engine, get_session, seed_demo_data
from .schemas import (AddCashIn, CashTopUpIn, CategoryIn, CategoryUpdate, ExpenseStatusIn, LoginIn,
                      RoleUpdateIn, UserCreateIn)
from .serializers import (balance_out, category_out, expense_out, plain, top_up_out, user_out)
from .utils.csv_export import expense_rows_to_csv
from .utils.rate_limit import InMemoryRateLimiter
from .utils.receipts import ReceiptRejected, media_type_for, resolve_stored, store_receipt

app = FastAPI(title="Petty Cash API")
logger = logging.getLogger("pettycash.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_login_rate_limiter = InMemoryRateLimiter()

Role = models.Role
admin_only = require_role(Role.ADMIN)
approvers = require_role(Role.MANAGER, Role.ADMIN)

# Wide-open CORS keeps a separately served SPA working in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# A built SPA can be dropped into backend/static and served from /static.
static_dir = Path(__file__).resolve().parent.parent / "static"
if static_dir.exists():
    app.mount("/static", StaticFiles(directory=static_dir), name="static")

create_db_and_tables()
settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
if settings.SEED_DEMO_DATA:
    with Session(engine) as _seed_session:
        seed_demo_data(_seed_session, services.hash_password(settings.DEMO_PASSWORD))


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(services.NotFoundError)
async def not_found_handler(request: Request, exc: services.NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(services.ConflictError)
async def conflict_handler(request: Request, exc: services.ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
async def permission_handler(request: Request, exc: PermissionError):
    return JSONResponse(status_code=403, content={"detail": str(exc) or "access denied"})


def _enforce_login_rate_limit(request: Request, email: str) -> str:
    max_per_min = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "10"))
    window = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "60"))
    key = f"{request.client.host if request.client else 'unknown'}:{email}"
    allowed, retry_after = _login_rate_limiter.allow(key, max_per_min, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many login attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _parse_user_filter(user_id: Optional[str]) -> Optional[int]:
    if user_id is None or user_id in ("", "all"):
        return None
    try:
        return int(user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid user_id: {user_id}") from e


# ---- auth ----

@app.post('/api/login')
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Authenticate with email + shared demo password and start a cookie session.

    The session token is also returned in the body for API clients that
    prefer a bearer header.
    """
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail='email and password are required')
    key = _enforce_login_rate_limit(request, email)
    auth = services.AuthService(db)
    user = auth.authenticate(email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail='invalid credentials')
    if not user.is_active:
        raise HTTPException(status_code=403, detail='account is deactivated')
    _login_rate_limiter.reset(key)
    token = auth.issue_token(user)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_EXPIRE_HOURS * 3600,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )
    return {**user_out(user), 'access_token': token}


@app.post('/api/logout')
def logout(request: Request, response: Response,
           credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)):
    """Revoke the current session token and clear the session cookie."""
    revoke_session(request, credentials)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {'message': 'logged out'}


@app.get('/api/auth/user')
def current_user(user: models.User = Depends(get_current_user)):
    return user_out(user)


@app.get('/api/health')
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ---- dashboard ----

@app.get('/api/dashboard/stats')
def dashboard_stats(start_date: Optional[date] = None, end_date: Optional[date] = None,
                    db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return role-scoped dashboard figures.

    Staff see their own numbers; managers and admins see system totals
    plus a per-staff `user_breakdown`.
    """
    stats = services.DashboardService(db).stats(user, start_date=start_date, end_date=end_date)
    return plain(stats)


# ---- categories ----

@app.get('/api/categories')
def list_categories(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return [category_out(c) for c in repositories.CategoryRepository(db).list_active()]


@app.post('/api/categories')
def create_category(payload: CategoryIn, db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    try:
        category = services.CategoryService(db).create(payload.name, payload.description)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return category_out(category)


@app.put('/api/categories/{category_id}')
def update_category(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_session),
                    user: models.User = Depends(admin_only)):
    try:
        category = services.CategoryService(db).update(
            category_id, name=payload.name, description=payload.description, is_active=payload.is_active)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return category_out(category)


# ---- expenses ----

@app.get('/api/expenses')
def list_expenses(
    user_id: Optional[str] = None,
    category_id: Optional[int] = None,
    status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List expenses with optional filters.

    Staff only ever see their own expenses; managers and admins may pass
    `user_id` (or `all`) to narrow the list.
    """
    expenses = services.ExpenseService(db).list_visible(
        user,
        user_id=_parse_user_filter(user_id),
        category_id=category_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    return [expense_out(e, db) for e in expenses]


@app.get('/api/expenses/{expense_id}')
def get_expense(expense_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    expense = services.ExpenseService(db).get_visible(user, expense_id)
    return expense_out(expense, db)


@app.post('/api/expenses')
def create_expense(
    category_id: int = Form(...),
    amount: str = Form(...),
    description: str = Form(...),
    expense_date: date = Form(...),
    has_gst: bool = Form(False),
    remarks: Optional[str] = Form(None),
    receipt: Optional[UploadFile] = File(None),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Submit an expense (multipart form) with an optional receipt file.

    The expense total (amount plus GST when flagged) is charged to the
    submitter's balance immediately and stays pending until reviewed.
    """
    receipt_url = None
    if receipt is not None and receipt.filename:
        payload = receipt.file.read(settings.MAX_UPLOAD_BYTES + 1)
        try:
            receipt_url = store_receipt(payload, receipt.filename, receipt.content_type,
                                        settings.UPLOAD_DIR, settings.MAX_UPLOAD_BYTES)
        except ReceiptRejected as e:
            raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    svc = services.ExpenseService(db)
    try:
        expense = svc.submit(
            user,
            category_id=category_id,
            amount=amount,
            description=description,
            expense_date=expense_date,
            has_gst=has_gst,
            remarks=remarks,
            receipt_url=receipt_url,
        )
    except ValueError as e:
        if receipt_url:
            (settings.UPLOAD_DIR / receipt_url.rsplit('/', 1)[-1]).unlink(missing_ok=True)
        raise HTTPException(status_code=400, detail=str(e)) from e
    return expense_out(expense, db)


@app.put('/api/expenses/{expense_id}/status')
def update_expense_status(expense_id: int, payload: ExpenseStatusIn, db: Session = Depends(get_session),
                          user: models.User = Depends(approvers)):
    """Approve or reject a pending expense; the submitter's ledger is settled."""
    try:
        expense = services.ExpenseService(db).decide(
            expense_id, payload.status, approver=user, rejection_reason=payload.rejection_reason)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return expense_out(expense, db)


# ---- cash ----

@app.get('/api/cash-topups')
def list_cash_top_ups(db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    return [top_up_out(t) for t in services.CashService(db).list_all()]


@app.post('/api/cash-topups')
def create_cash_top_up(payload: CashTopUpIn, db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    """Record a top-up; the recipient defaults to the calling admin."""
    try:
        top_up = services.CashService(db).record_top_up(
            payload.user_id or user.id,
            payload.amount,
            source=payload.source,
            reference=payload.reference,
            remarks=payload.remarks,
            on=payload.date,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return top_up_out(top_up)


@app.get('/api/cash-topups-history')
def cash_top_up_history(db: Session = Depends(get_session), user: models.User = Depends(approvers)):
    return plain(services.CashService(db).history())


@app.post('/api/reset-cash-topups')
def reset_cash_top_ups(db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    """Zero the allocations of every staff and manager balance."""
    count = services.CashService(db).reset_worker_top_ups()
    logger.info("user %s reset cash top-ups for %d balances", user.id, count)
    return {'message': 'All worker cash top-ups have been reset to zero', 'reset_count': count}


@app.get('/api/user-balance/{user_id}')
def user_balance(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(approvers)):
    if not repositories.UserRepository(db).get(user_id):
        raise HTTPException(status_code=404, detail=f'user not found: {user_id}')
    return balance_out(repositories.BalanceRepository(db).get(user_id), user_id)


@app.post('/api/add-cash')
def add_cash(payload: AddCashIn, db: Session = Depends(get_session), user: models.User = Depends(approvers)):
    """Hand cash from the caller to another user and return their new balance."""
    try:
        balance = services.CashService(db).add_cash(user, payload.user_id, payload.amount, on=payload.date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return balance_out(balance, payload.user_id)


@app.get('/api/transactions')
def transactions(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Cash received by workers; staff only see their own."""
    return plain(services.CashService(db).transactions_for(user))


# ---- users ----

@app.get('/api/users')
def list_users(db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    out = []
    for entry in services.UserService(db).list_with_stats():
        row = user_out(entry.pop('user'))
        row.update(plain(entry))
        out.append(row)
    return out


@app.post('/api/users')
def create_user(payload: UserCreateIn, db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    """Create a user who can log in with the shared demo password."""
    try:
        created = services.UserService(db).create_user(
            payload.email, payload.first_name, payload.last_name, role=payload.role, department=payload.department)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return user_out(created)


@app.put('/api/users/{user_id}/role')
def update_user_role(user_id: int, payload: RoleUpdateIn, db: Session = Depends(get_session),
                     user: models.User = Depends(admin_only)):
    try:
        updated = services.UserService(db).change_role(user_id, payload.role)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return user_out(updated)


@app.put('/api/users/{user_id}/toggle-status')
def toggle_user_status(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(admin_only)):
    try:
        updated = services.UserService(db).toggle_status(user_id, acting_user_id=user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return user_out(updated)


# ---- reports ----

@app.get('/api/reports/expenses')
def expense_report(start_date: Optional[date] = None, end_date: Optional[date] = None,
                   category_id: Optional[int] = None, status: Optional[str] = None,
                   db: Session = Depends(get_session), user: models.User = Depends(approvers)):
    rows = services.ReportService(db).expense_rows(
        start_date=start_date, end_date=end_date, category_id=category_id, status=status)
    return plain(rows)


@app.get('/api/reports/expenses/csv')
def expense_report_csv(start_date: Optional[date] = None, end_date: Optional[date] = None,
                       category_id: Optional[int] = None, status: Optional[str] = None,
                       db: Session = Depends(get_session), user: models.User = Depends(approvers)):
    """Download the filtered expense report as a CSV attachment."""
    rows = services.ReportService(db).expense_rows(
        start_date=start_date, end_date=end_date, category_id=category_id, status=status)
    return Response(
        content=expense_rows_to_csv(rows),
        media_type='text/csv',
        headers={'Content-Disposition': 'attachment; filename="expenses-report.csv"'},
    )


# ---- receipts ----

@app.get('/uploads/{filename}')
def get_receipt(filename: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Serve a stored receipt to its submitter or to a manager/admin."""
    path = resolve_stored(settings.UPLOAD_DIR, filename)
    if path is None:
        raise HTTPException(status_code=404, detail='file not found')
    if not services.ExpenseService(db).can_view_receipt(user, f"/uploads/{path.name}"):
        raise HTTPException(status_code=403, detail='access denied')
    return FileResponse(path, media_type=media_type_for(path))


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Petty Cash</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #0a6; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Petty Cash API</h1>
        <p>Quick links for local testing:</p>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/api/health">Health check</a></li>
        </ul>
        <p>Use <code>/api/login</code> with a demo account to start a session, then try
        <code>/api/dashboard/stats</code> or <code>/api/expenses</code>.</p>
      </div>
    </body>
    </html>
    """
