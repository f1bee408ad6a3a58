import os

# keep the module-level engine off MySQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import models as M
import schemas as S
import staff
from db import Base, get_db, make_engine
from security import create_access_token

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    # a fresh database file per test
    eng = make_engine(f"sqlite:///{tmp_path / 'library_test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _user(db, login, role):
    return staff.create_user(db, None, S.UserIn(
        login=login, password=PASSWORD, name=login.title(), role=role,
    ))


@pytest.fixture
def admin(db):
    return _user(db, "admin", M.ROLE_ADMIN)


@pytest.fixture
def librarian(db):
    return _user(db, "librarian", M.ROLE_LIBRARIAN)


@pytest.fixture
def librarian_staff(librarian):
    return S.CurrentStaff.model_validate(librarian)


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def login(client, user_login):
    r = client.post("/login", data={"login": user_login, "password": PASSWORD},
                    follow_redirects=False)
    assert r.status_code == 303
    return client


@pytest.fixture
def librarian_client(client, librarian):
    return login(client, "librarian")


@pytest.fixture
def admin_client(client, admin):
    return login(client, "admin")


def bearer(user) -> dict:
    token = create_access_token({"sub": user.login, "role": user.role, "user_id": user.user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_book(db):
    import catalog

    def _make(title="Война и мир", author="Лев Толстой", **kw):
        data = {"title": title, "author": author, "publish_year": 1869, "price": "450.00", **kw}
        return catalog.create_book(db, S.BookIn(**data))
    return _make


@pytest.fixture
def make_reader(db):
    import roster

    def _make(card="ЧБ-00001", name="Иванов Иван", **kw):
        data = {"library_card_id": card, "name": name,
                "address": "г. Москва, ул. Ленина, д. 1", "phone": "+7 (900) 123-45-67", **kw}
        return roster.create_reader(db, S.ReaderIn(**data))
    return _make


@pytest.fixture
def make_issue(db, librarian_staff):
    import ledger

    def _make(book, reader, date_issued=None):
        return ledger.create_issue(db, librarian_staff, S.IssueIn(
            book_id=book.book_id, reader_id=reader.reader_id, date_issued=date_issued,
        ))
    return _make
