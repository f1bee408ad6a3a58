"""Catalog: book records, their search and statistics."""
import logging
from decimal import Decimal

from sqlalchemy import select, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

import models as M
import schemas as S
from db import settings
from errors import NotFound, BookOnLoan

logger = logging.getLogger(__name__)

BOOK_SORT_FIELDS = {
    "title": M.Book.title,
    "author": M.Book.author,
    "publish_year": M.Book.publish_year,
    "price": M.Book.price,
    "created_at": M.Book.created_at,
}
AUTOCOMPLETE_LIMIT = 10
TOP_N = 5

def _active_issues(book_id):
    return select(M.BookIssue.issue_id).where(
        M.BookIssue.book_id == book_id, M.BookIssue.date_returned.is_(None)
    )

def paginate(db: Session, q, page: int, per_page: int) -> S.Page:
    total = db.scalar(select(func.count()).select_from(q.order_by(None).subquery()))
    items = db.scalars(q.limit(per_page).offset((page - 1) * per_page)).unique().all()
    return S.Page(items=list(items), total=total or 0, page=page, per_page=per_page)

def list_books(db: Session, f: S.BookFilter) -> S.Page:
    q = select(M.Book)
    if f.search:
        q = q.where(M.Book.title.like(f"%{f.search}%"))
    if f.author:
        q = q.where(M.Book.author.like(f"%{f.author}%"))
    if f.is_new is not None:
        q = q.where(M.Book.is_new == f.is_new)
    # unknown sort fields are ignored rather than rejected
    column = BOOK_SORT_FIELDS.get(f.sort_by or "")
    if column is not None:
        q = q.order_by(column.desc() if f.sort_order == "desc" else column.asc())
    return paginate(db, q, f.page, settings.BOOKS_PER_PAGE)

def get_book(db: Session, book_id: int) -> M.Book:
    book = db.scalar(
        select(M.Book)
        .where(M.Book.book_id == book_id)
        .options(selectinload(M.Book.issues).selectinload(M.BookIssue.reader))
    )
    if not book:
        raise NotFound("Книга не найдена")
    return book

def create_book(db: Session, data: S.BookIn) -> M.Book:
    b = M.Book(**data.model_dump())
    db.add(b)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(b)
    logger.info("book %s created: %s", b.book_id, b.title)
    return b

def update_book(db: Session, book_id: int, data: S.BookIn) -> M.Book:
    b = db.get(M.Book, book_id)
    if not b:
        raise NotFound("Книга не найдена")
    for k, v in data.model_dump().items():
        setattr(b, k, v)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(b)
    logger.info("book %s updated", book_id)
    return b

def delete_book(db: Session, book_id: int) -> str:
    """Delete a book that is not on loan.

    The book row is locked for the duration of the check so a concurrent
    issue cannot slip in between the check and the delete.
    """
    b = db.get(M.Book, book_id, with_for_update=True)
    if not b:
        raise NotFound("Книга не найдена")
    if db.scalar(_active_issues(book_id).limit(1)) is not None:
        db.rollback()
        logger.warning("refused to delete book %s: on loan", book_id)
        raise BookOnLoan()
    title = b.title
    try:
        db.delete(b)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("book %s deleted", book_id)
    return title

def is_available(db: Session, book_id: int) -> bool:
    return db.scalar(_active_issues(book_id).limit(1)) is None

def search_books(db: Session, q: str | None, field: str = "title") -> list[dict]:
    """Autocomplete suggestions as ``{value, label}`` pairs."""
    if not q:
        return []
    pattern = f"%{q}%"
    if field in ("author", "title"):
        column = getattr(M.Book, field)
        rows = db.scalars(
            select(column).where(column.like(pattern)).distinct().limit(AUTOCOMPLETE_LIMIT)
        ).all()
        return [{"value": v, "label": v} for v in rows]
    rows = db.scalars(
        select(M.Book)
        .where(or_(M.Book.author.like(pattern), M.Book.title.like(pattern)))
        .limit(AUTOCOMPLETE_LIMIT)
    ).all()
    return [{"value": b.book_id, "label": f'{b.author} - "{b.title}"'} for b in rows]

def book_stats(db: Session) -> dict:
    issues_count = func.count(M.BookIssue.issue_id).label("issues_count")
    popular = db.execute(
        select(M.Book, issues_count)
        .join(M.BookIssue, M.BookIssue.book_id == M.Book.book_id, isouter=True)
        .group_by(M.Book.book_id)
        .order_by(issues_count.desc(), M.Book.book_id)
        .limit(TOP_N)
    ).all()
    total = db.scalar(select(func.count(M.Book.book_id))) or 0
    new = db.scalar(select(func.count(M.Book.book_id)).where(M.Book.is_new.is_(True))) or 0
    return {
        "total_books": total,
        "new_books": new,
        "old_books": total - new,
        "most_popular": [(book, count) for book, count in popular],
        "recently_added": db.scalars(
            select(M.Book).order_by(M.Book.created_at.desc(), M.Book.book_id.desc()).limit(TOP_N)
        ).all(),
    }

# display helpers

def format_price(price) -> str:
    value = Decimal(price or 0).quantize(Decimal("0.01"))
    whole, frac = f"{value:.2f}".split(".")
    grouped = f"{int(whole):,}".replace(",", " ")
    return f"{grouped},{frac} ₽"

def availability_status(available: bool) -> str:
    return "Доступна" if available else "На руках"

def short_annotation(text: str | None, limit: int = 100) -> str:
    if not text:
        return ""
    return text[:limit] + "..." if len(text) > limit else text
