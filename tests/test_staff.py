import pytest

import models as M
import schemas as S
import staff
from db import settings
from errors import DuplicateLogin, PermissionDenied
from security import create_access_token, decode_token, hash_password, verify_password


def user_in(login="new", role="librarian"):
    return S.UserIn(login=login, password="password1", name="Новый", role=role)


def test_password_hash_is_salted():
    h1, h2 = hash_password("secret123"), hash_password("secret123")
    assert h1 != h2
    assert verify_password("secret123", h1)
    assert not verify_password("wrong", h1)
    assert not verify_password("secret123", "5ebe2294ecd0e0f08eab7690d2a6ee69")
    assert not verify_password("secret123", "")


def test_token_roundtrip():
    token = create_access_token({"sub": "admin", "user_id": 1})
    assert decode_token(token)["user_id"] == 1
    with pytest.raises(ValueError):
        decode_token(token + "x")


def test_authenticate(db, librarian):
    assert staff.authenticate(db, " Librarian ", "secret123").user_id == librarian.user_id
    assert staff.authenticate(db, "librarian", "nope") is None
    assert staff.authenticate(db, "ghost", "secret123") is None


def test_only_admin_creates_users(db, admin, librarian):
    as_admin = S.CurrentStaff.model_validate(admin)
    as_librarian = S.CurrentStaff.model_validate(librarian)
    with pytest.raises(PermissionDenied):
        staff.create_user(db, as_librarian, user_in())
    u = staff.create_user(db, as_admin, user_in(login="  NEW "))
    assert u.login == "new"
    assert u.role == M.ROLE_LIBRARIAN
    with pytest.raises(DuplicateLogin):
        staff.create_user(db, as_admin, user_in(login="new"))


def test_user_issue_stats(db, librarian, make_book, make_reader, make_issue):
    make_issue(make_book(), make_reader())
    assert staff.user_issue_stats(db, librarian.user_id) == {
        "total_issues": 1, "active_issues": 1, "returned_issues": 0,
    }


def test_ensure_admin(db, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "")
    assert staff.ensure_admin(db) is None
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "bootstrap1")
    u = staff.ensure_admin(db)
    assert u.role == M.ROLE_ADMIN
    assert staff.authenticate(db, "admin", "bootstrap1") is not None
    # only when no account exists yet
    assert staff.ensure_admin(db) is None


def test_role_names():
    assert staff.role_name("admin") == "Администратор"
    assert staff.role_name("librarian") == "Библиотекарь"
