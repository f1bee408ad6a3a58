"""Staff accounts (admins and librarians) and password authentication."""
import logging

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models as M
import schemas as S
from db import settings
from errors import NotFound, DuplicateLogin, PermissionDenied
from normalize import normalize_login
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

ROLE_NAMES = {
    M.ROLE_ADMIN: "Администратор",
    M.ROLE_LIBRARIAN: "Библиотекарь",
}

def role_name(role: str) -> str:
    return ROLE_NAMES.get(role, role)

def authenticate(db: Session, login: str, password: str) -> M.User | None:
    u = db.scalar(select(M.User).where(M.User.login == normalize_login(login)))
    if not u or not verify_password(password, u.password_hash):
        return None
    return u

def list_users(db: Session) -> list[M.User]:
    return db.scalars(select(M.User).order_by(M.User.role, M.User.name)).all()

def get_user(db: Session, user_id: int) -> M.User:
    u = db.get(M.User, user_id)
    if not u:
        raise NotFound("Пользователь не найден")
    return u

def create_user(db: Session, actor: S.CurrentStaff | None, data: S.UserIn) -> M.User:
    """Create a staff account. Only admins manage users, and only an admin
    may create another admin. ``actor=None`` is the startup bootstrap."""
    if actor is not None and not actor.can_manage_users:
        raise PermissionDenied()
    if data.role == M.ROLE_ADMIN and actor is not None and not actor.is_admin:
        raise PermissionDenied("Недостаточно прав для создания администратора")
    if db.scalar(select(M.User.user_id).where(M.User.login == data.login)) is not None:
        raise DuplicateLogin()
    u = M.User(
        login=data.login,
        password_hash=hash_password(data.password),
        name=data.name,
        role=data.role,
    )
    db.add(u)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateLogin()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(u)
    logger.info("user %s (%s) created by %s", u.login, u.role, actor.login if actor else "bootstrap")
    return u

def user_issue_stats(db: Session, user_id: int) -> dict:
    active = func.sum(case((M.BookIssue.date_returned.is_(None), 1), else_=0))
    total, active_count = db.execute(
        select(func.count(M.BookIssue.issue_id), active).where(M.BookIssue.librarian_id == user_id)
    ).one()
    total = int(total or 0)
    active_count = int(active_count or 0)
    return {
        "total_issues": total,
        "active_issues": active_count,
        "returned_issues": total - active_count,
    }

def ensure_admin(db: Session) -> M.User | None:
    """Create the configured admin when no staff account exists yet."""
    if not settings.ADMIN_PASSWORD:
        return None
    if db.scalar(select(func.count(M.User.user_id))):
        return None
    data = S.UserIn(
        login=settings.ADMIN_LOGIN,
        password=settings.ADMIN_PASSWORD,
        name="Администратор",
        role=M.ROLE_ADMIN,
    )
    return create_user(db, None, data)
