import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import schemas as S
import staff as staff_ops
from db import get_db
from errors import LibraryError, NotFound, DuplicateLogin
from web import render, redirect, flash, form_data, parse_form, require_user_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])
admin_only = require_user_admin("/books")

def _form(request: Request, **ctx):
    ctx.setdefault("user_data", {})
    ctx.setdefault("errors", {})
    return render(request, "users/form.html", {"roles": staff_ops.ROLE_NAMES, **ctx})

@router.get("")
def index(request: Request, db: Session = Depends(get_db), user=Depends(admin_only)):
    try:
        users = staff_ops.list_users(db)
    except SQLAlchemyError as e:
        logger.exception("user list failed")
        return render(request, "users/index.html", {
            "error": f"Ошибка при загрузке пользователей: {e}", "users": [],
        })
    return render(request, "users/index.html", {"users": users})

@router.get("/create")
def create(request: Request, user=Depends(admin_only)):
    return _form(request)

@router.post("")
def store(request: Request, data: dict = Depends(form_data), db: Session = Depends(get_db),
          user: S.CurrentStaff = Depends(admin_only)):
    user_in, errors = parse_form(S.UserIn, data)
    shown = {k: v for k, v in data.items() if k != "password"}
    if errors:
        return _form(request, errors=errors, user_data=shown)
    try:
        u = staff_ops.create_user(db, user, user_in)
    except DuplicateLogin as e:
        return _form(request, errors={"login": [e.message]}, user_data=shown)
    except LibraryError as e:
        return _form(request, error=e.message, user_data=shown)
    except SQLAlchemyError as e:
        logger.exception("user create failed")
        return _form(request, error=f"Ошибка при создании пользователя: {e}", user_data=shown)
    flash(request, "success", f'Пользователь "{u.name}" успешно создан!')
    return redirect("/users")

@router.get("/{user_id}")
def show(request: Request, user_id: int, db: Session = Depends(get_db), user=Depends(admin_only)):
    try:
        u = staff_ops.get_user(db, user_id)
        stats = staff_ops.user_issue_stats(db, user_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/users")
    except SQLAlchemyError as e:
        logger.exception("user %s load failed", user_id)
        flash(request, "error", f"Ошибка при загрузке пользователя: {e}")
        return redirect("/users")
    return render(request, "users/show.html", {"user": u, "stats": stats})
