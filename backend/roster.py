"""Roster: reader records, library card numbers and who holds books."""
import logging
import re

from sqlalchemy import select, func, or_, exists, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

import models as M
import schemas as S
from catalog import paginate, AUTOCOMPLETE_LIMIT
from db import settings
from errors import NotFound, DuplicateCard, ReaderHasBooks

logger = logging.getLogger(__name__)

READER_SORT_FIELDS = {
    "name": M.Reader.name,
    "library_card_id": M.Reader.library_card_id,
    "created_at": M.Reader.created_at,
}
CARD_DIGITS = 5

def _holds_books():
    return exists().where(
        M.BookIssue.reader_id == M.Reader.reader_id, M.BookIssue.date_returned.is_(None)
    )

def list_readers(db: Session, f: S.ReaderFilter) -> S.Page:
    q = select(M.Reader)
    if f.search:
        pattern = f"%{f.search}%"
        q = q.where(or_(M.Reader.name.like(pattern), M.Reader.library_card_id.like(pattern)))
    if f.has_books is True:
        q = q.where(_holds_books())
    elif f.has_books is False:
        q = q.where(~_holds_books())
    column = READER_SORT_FIELDS.get(f.sort_by or "")
    if column is not None:
        q = q.order_by(column.desc() if f.sort_order == "desc" else column.asc())
    return paginate(db, q, f.page, settings.READERS_PER_PAGE)

def readers_with_books(db: Session, page: int = 1) -> S.Page:
    q = (
        select(M.Reader)
        .where(_holds_books())
        .options(selectinload(M.Reader.issues).selectinload(M.BookIssue.book))
        .order_by(M.Reader.name)
    )
    return paginate(db, q, page, settings.READERS_PER_PAGE)

def issue_counts(db: Session, reader_ids=None) -> dict[int, tuple[int, int]]:
    """reader_id -> (active issues, total issues)."""
    active = func.sum(case((M.BookIssue.date_returned.is_(None), 1), else_=0))
    q = select(M.BookIssue.reader_id, active, func.count(M.BookIssue.issue_id)).group_by(
        M.BookIssue.reader_id
    )
    if reader_ids is not None:
        q = q.where(M.BookIssue.reader_id.in_(list(reader_ids)))
    return {rid: (int(a or 0), int(t)) for rid, a, t in db.execute(q).all() if rid is not None}

def get_reader(db: Session, reader_id: int) -> M.Reader:
    """Reader with the full issue history (newest first) and its books."""
    r = db.scalar(
        select(M.Reader)
        .where(M.Reader.reader_id == reader_id)
        .options(selectinload(M.Reader.issues).selectinload(M.BookIssue.book))
    )
    if not r:
        raise NotFound("Читатель не найден")
    return r

def reader_stats(reader: M.Reader) -> dict:
    active = sum(1 for i in reader.issues if i.date_returned is None)
    total = len(reader.issues)
    return {"active_issues": active, "total_issues": total, "returned_issues": total - active}

def _card_taken(db: Session, card_id: str, exclude_id: int | None = None) -> bool:
    q = select(M.Reader.reader_id).where(M.Reader.library_card_id == card_id)
    if exclude_id is not None:
        q = q.where(M.Reader.reader_id != exclude_id)
    return db.scalar(q.limit(1)) is not None

def _commit(db: Session, card_id: str):
    try:
        db.commit()
    except IntegrityError:
        # lost a race on the unique card number
        db.rollback()
        logger.warning("duplicate library card %s rejected by the database", card_id)
        raise DuplicateCard()
    except SQLAlchemyError:
        db.rollback()
        raise

def create_reader(db: Session, data: S.ReaderIn) -> M.Reader:
    if _card_taken(db, data.library_card_id):
        logger.warning("duplicate library card %s", data.library_card_id)
        raise DuplicateCard()
    r = M.Reader(**data.model_dump())
    db.add(r)
    _commit(db, data.library_card_id)
    db.refresh(r)
    logger.info("reader %s created with card %s", r.reader_id, r.library_card_id)
    return r

def update_reader(db: Session, reader_id: int, data: S.ReaderIn) -> M.Reader:
    r = db.get(M.Reader, reader_id)
    if not r:
        raise NotFound("Читатель не найден")
    if _card_taken(db, data.library_card_id, exclude_id=reader_id):
        raise DuplicateCard()
    for k, v in data.model_dump().items():
        setattr(r, k, v)
    _commit(db, data.library_card_id)
    db.refresh(r)
    logger.info("reader %s updated", reader_id)
    return r

def delete_reader(db: Session, reader_id: int) -> str:
    r = db.get(M.Reader, reader_id, with_for_update=True)
    if not r:
        raise NotFound("Читатель не найден")
    active = select(M.BookIssue.issue_id).where(
        M.BookIssue.reader_id == reader_id, M.BookIssue.date_returned.is_(None)
    )
    if db.scalar(active.limit(1)) is not None:
        db.rollback()
        logger.warning("refused to delete reader %s: holds books", reader_id)
        raise ReaderHasBooks()
    name = r.name
    try:
        db.delete(r)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("reader %s deleted", reader_id)
    return name

def search_readers(db: Session, q: str | None, field: str = "name") -> list[dict]:
    if not q:
        return []
    column = M.Reader.library_card_id if field == "card" else M.Reader.name
    rows = db.scalars(select(M.Reader).where(column.like(f"%{q}%")).limit(AUTOCOMPLETE_LIMIT)).all()
    return [
        {
            "value": r.reader_id,
            "label": f"{r.name} ({r.library_card_id})",
            "reader": S.ReaderOut.model_validate(r).model_dump(mode="json"),
        }
        for r in rows
    ]

def next_card_id(db: Session, prefix: str | None = None) -> str:
    """Suggest the next card number: highest ``<prefix>-<digits>`` in use + 1.

    Nothing is reserved; a concurrent create with the same number fails
    with ``DuplicateCard``.
    """
    prefix = prefix or settings.CARD_PREFIX
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    cards = db.scalars(
        select(M.Reader.library_card_id).where(M.Reader.library_card_id.like(f"{prefix}-%"))
    ).all()
    last = max((int(m.group(1)) for m in map(pattern.match, cards) if m), default=0)
    return f"{prefix}-{last + 1:0{CARD_DIGITS}d}"

# display helpers

_PHONE = re.compile(r"^(\d)(\d{3})(\d{3})(\d{2})(\d{2})$")
_CITY = re.compile(r"г\.\s*[^,]+")
_STREET = re.compile(r"ул\.\s*[^,]+")

def format_phone(phone: str) -> str:
    m = _PHONE.match(re.sub(r"\D", "", phone or ""))
    if not m:
        return phone
    return "+{} ({}) {}-{}-{}".format(*m.groups())

def short_address(address: str) -> str:
    city = _CITY.search(address or "")
    if city:
        street = _STREET.search(address)
        return f"{city.group(0)}, {street.group(0)}" if street else city.group(0)
    return address[:50] + ("..." if len(address) > 50 else "")
