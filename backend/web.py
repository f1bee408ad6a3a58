"""Rendering boundary, flash messages and authorization dependencies shared
by the HTML controllers."""
import logging
from pathlib import Path
from urllib.parse import urlencode

from fastapi import Depends, Header, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

import catalog
import ledger
import models as M
import roster
import schemas as S
import staff as staff_ops
from db import get_db
from security import decode_token

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

def _dt(value, fmt="%d.%m.%Y %H:%M"):
    return value.strftime(fmt) if value else ""

def _query_without(request, key="page"):
    return urlencode([(k, v) for k, v in request.query_params.multi_items() if k != key])

templates.env.filters.update(
    dt=_dt,
    price=catalog.format_price,
    phone=roster.format_phone,
    short_address=roster.short_address,
    short_annotation=catalog.short_annotation,
)
templates.env.globals.update(
    role_name=staff_ops.role_name,
    issue_status=ledger.issue_status,
    days_on_loan=ledger.days_on_loan,
    overdue_days=ledger.overdue_days,
    is_overdue=ledger.is_overdue,
    active_issues=ledger.active_issues,
    availability_status=catalog.availability_status,
    loan_period=ledger.LOAN_PERIOD_DAYS,
    query_without=_query_without,
)

class LoginRequired(Exception):
    pass

class AccessDenied(Exception):
    def __init__(self, redirect_to: str):
        self.redirect_to = redirect_to
        super().__init__(redirect_to)

# --- flash messages: one value per kind, consumed by the next rendered page ---

def flash(request: Request, kind: str, message: str) -> None:
    messages = dict(request.session.get("flash", {}))
    messages[kind] = message
    request.session["flash"] = messages

def pop_flash(request: Request) -> dict:
    return request.session.pop("flash", None) or {}

def render(request: Request, name: str, context: dict | None = None, status_code: int = 200):
    ctx = {
        "flash": pop_flash(request),
        "current_user": getattr(request.state, "staff", None),
    }
    ctx.update(context or {})
    return templates.TemplateResponse(request, name, ctx, status_code=status_code)

def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)

# --- forms ---

async def form_data(request: Request) -> dict:
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}

def parse_form(model: type[BaseModel], data: dict):
    """-> (parsed model, None) or (None, field errors)."""
    try:
        return model.model_validate(data), None
    except ValidationError as e:
        return None, S.form_errors(e)

# --- current staff member ---

def _token(request: Request, authorization: str) -> str | None:
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return request.session.get("token")

def get_current_staff(
    request: Request,
    authorization: str = Header(default=""),
    db: Session = Depends(get_db),
) -> S.CurrentStaff:
    token = _token(request, authorization)
    if not token:
        raise LoginRequired()
    try:
        payload = decode_token(token)
    except ValueError:
        request.session.pop("token", None)
        raise LoginRequired()
    user_id = payload.get("user_id")
    u = db.get(M.User, user_id) if user_id is not None else None
    if not u:
        request.session.pop("token", None)
        raise LoginRequired()
    current = S.CurrentStaff.model_validate(u)
    request.state.staff = current
    return current

def require_library(redirect_to: str):
    """Staff who may change books, readers and issues; others are sent to
    ``redirect_to`` without the action being performed."""
    def _dep(current: S.CurrentStaff = Depends(get_current_staff)) -> S.CurrentStaff:
        if not current.can_manage_library:
            raise AccessDenied(redirect_to)
        return current
    return _dep

def require_user_admin(redirect_to: str = "/books"):
    def _dep(current: S.CurrentStaff = Depends(get_current_staff)) -> S.CurrentStaff:
        if not current.can_manage_users:
            raise AccessDenied(redirect_to)
        return current
    return _dep
