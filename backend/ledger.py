"""Lending ledger: issue records and their ACTIVE -> RETURNED lifecycle.

An issue is ACTIVE while ``date_returned`` is NULL. Returning sets the
timestamp exactly once; RETURNED is terminal and rows are never deleted.
Loan duration and overdue figures are computed on read, never stored.
"""
import logging
from datetime import datetime, timedelta, time

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

import models as M
import schemas as S
from catalog import paginate
from db import settings
from errors import NotFound, BookUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

LOAN_PERIOD_DAYS = 30

ACTIVE = "active"
RETURNED = "returned"

# --- derived fields ---

def issue_status(issue: M.BookIssue) -> str:
    return RETURNED if issue.date_returned is not None else ACTIVE

def days_on_loan(issue: M.BookIssue, now: datetime | None = None) -> int:
    """Whole days between issue and return (or ``now`` while on loan)."""
    end = issue.date_returned or now or datetime.utcnow()
    return max(0, (end - issue.date_issued).days)

def overdue_days(issue: M.BookIssue, now: datetime | None = None) -> int:
    if issue.date_returned is not None:
        return 0
    return max(0, days_on_loan(issue, now) - LOAN_PERIOD_DAYS)

def is_overdue(issue: M.BookIssue, now: datetime | None = None) -> bool:
    return overdue_days(issue, now) > 0

def active_issues(issues) -> list:
    return [i for i in issues if i.date_returned is None]

def _fmt(dt: datetime | None) -> str:
    return dt.strftime("%d.%m.%Y %H:%M") if dt else ""

def issue_info(issue: M.BookIssue, now: datetime | None = None) -> dict:
    book, reader, librarian = issue.book, issue.reader, issue.librarian
    return {
        "issue_id": issue.issue_id,
        "book_title": book.title if book else None,
        "book_author": book.author if book else None,
        "reader_name": reader.name if reader else None,
        "reader_card": reader.library_card_id if reader else None,
        "librarian_name": librarian.name if librarian else None,
        "date_issued": _fmt(issue.date_issued),
        "date_returned": _fmt(issue.date_returned),
        "days_issued": days_on_loan(issue, now),
        "status": issue_status(issue),
        "is_overdue": is_overdue(issue, now),
        "overdue_days": overdue_days(issue, now),
    }

def overdue_cutoff(now: datetime | None = None) -> datetime:
    """Issues dated at or before this instant are overdue when still active.

    Overdue means more than LOAN_PERIOD_DAYS whole days have elapsed.
    """
    return (now or datetime.utcnow()) - timedelta(days=LOAN_PERIOD_DAYS + 1)

# --- operations ---

def _with_refs(q):
    return q.options(
        selectinload(M.BookIssue.book),
        selectinload(M.BookIssue.reader),
        selectinload(M.BookIssue.librarian),
    )

def list_issues(db: Session, f: S.IssueFilter, now: datetime | None = None) -> S.Page:
    q = select(M.BookIssue)
    if f.status == ACTIVE:
        q = q.where(M.BookIssue.date_returned.is_(None))
    elif f.status == RETURNED:
        q = q.where(M.BookIssue.date_returned.is_not(None))
    elif f.status == "overdue":
        q = q.where(
            M.BookIssue.date_returned.is_(None),
            M.BookIssue.date_issued <= overdue_cutoff(now),
        )
    if f.book_id is not None:
        q = q.where(M.BookIssue.book_id == f.book_id)
    if f.reader_id is not None:
        q = q.where(M.BookIssue.reader_id == f.reader_id)
    if f.librarian_id is not None:
        q = q.where(M.BookIssue.librarian_id == f.librarian_id)
    if f.issued_from is not None:
        q = q.where(M.BookIssue.date_issued >= datetime.combine(f.issued_from, time.min))
    if f.issued_to is not None:
        q = q.where(M.BookIssue.date_issued <= datetime.combine(f.issued_to, time.max))
    q = _with_refs(q).order_by(M.BookIssue.date_issued.desc(), M.BookIssue.issue_id.desc())
    return paginate(db, q, f.page, settings.ISSUES_PER_PAGE)

def get_issue(db: Session, issue_id: int) -> M.BookIssue:
    issue = db.scalar(_with_refs(select(M.BookIssue).where(M.BookIssue.issue_id == issue_id)))
    if not issue:
        raise NotFound("Выдача не найдена")
    return issue

def create_issue(db: Session, staff: S.CurrentStaff, data: S.IssueIn) -> M.BookIssue:
    """Lend a book to a reader on behalf of ``staff``.

    A book with an active issue cannot be issued again; the book row is
    locked while that is checked.
    """
    if not staff.can_manage_library:
        raise PermissionDenied()
    book = db.get(M.Book, data.book_id, with_for_update=True)
    if not book:
        db.rollback()
        raise NotFound("Книга не найдена")
    reader = db.get(M.Reader, data.reader_id)
    if not reader:
        db.rollback()
        raise NotFound("Читатель не найден")
    on_loan = select(M.BookIssue.issue_id).where(
        M.BookIssue.book_id == book.book_id, M.BookIssue.date_returned.is_(None)
    )
    if db.scalar(on_loan.limit(1)) is not None:
        db.rollback()
        logger.warning("book %s is already on loan", book.book_id)
        raise BookUnavailable()

    issue = M.BookIssue(
        book_id=book.book_id,
        reader_id=reader.reader_id,
        librarian_id=staff.user_id,
        date_issued=data.date_issued or datetime.utcnow(),
    )
    db.add(issue)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(issue)
    logger.info(
        "issue %s: book %s to reader %s by %s",
        issue.issue_id, book.book_id, reader.reader_id, staff.login,
    )
    return issue

def return_issue(db: Session, issue_id: int, now: datetime | None = None) -> bool:
    """Mark an issue returned. False if it already was; the first return
    timestamp is never overwritten."""
    if db.get(M.BookIssue, issue_id) is None:
        raise NotFound("Выдача не найдена")
    result = db.execute(
        update(M.BookIssue)
        .where(M.BookIssue.issue_id == issue_id, M.BookIssue.date_returned.is_(None))
        .values(date_returned=now or datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        logger.warning("issue %s already returned", issue_id)
        return False
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("issue %s returned", issue_id)
    return True
