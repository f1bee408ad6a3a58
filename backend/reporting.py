"""Read-only reports over the ledger, the catalog and the roster."""
import csv
import io
from datetime import date, datetime

from sqlalchemy import select, func, case
from sqlalchemy.orm import Session, selectinload

import models as M
from ledger import overdue_cutoff
from roster import issue_counts

CSV_HEADER = [
    "Номер билета",
    "ФИО",
    "Адрес",
    "Телефон",
    "Дата регистрации",
    "Книг на руках",
    "Всего книг взято",
]
CSV_DELIMITER = ";"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"

def _top(db: Session, entity, pk, fk, limit: int):
    count = func.count(M.BookIssue.issue_id).label("issues_count")
    return db.execute(
        select(entity, count)
        .join(M.BookIssue, fk == pk)
        .group_by(pk)
        .order_by(count.desc(), pk)
        .limit(limit)
    ).all()

def book_issue_counts(db: Session, limit: int = 5) -> list[tuple[M.Book, int]]:
    """Most issued books, ties broken by id."""
    return [(b, n) for b, n in _top(db, M.Book, M.Book.book_id, M.BookIssue.book_id, limit)]

def reader_issue_counts(db: Session, limit: int = 5) -> list[tuple[M.Reader, int]]:
    return [(r, n) for r, n in _top(db, M.Reader, M.Reader.reader_id, M.BookIssue.reader_id, limit)]

def staff_issue_stats(db: Session) -> list[dict]:
    """Issues recorded by each staff member, including those with none."""
    active = func.sum(case((M.BookIssue.date_returned.is_(None), 1), else_=0))
    rows = db.execute(
        select(M.User, func.count(M.BookIssue.issue_id), active)
        .join(M.BookIssue, M.BookIssue.librarian_id == M.User.user_id, isouter=True)
        .group_by(M.User.user_id)
        .order_by(M.User.name)
    ).all()
    out = []
    for user, total, active_count in rows:
        total, active_count = int(total or 0), int(active_count or 0)
        out.append({
            "user": user,
            "total_issues": total,
            "active_issues": active_count,
            "returned_issues": total - active_count,
        })
    return out

def overdue_issues(db: Session, now: datetime | None = None) -> list[M.BookIssue]:
    return db.scalars(
        select(M.BookIssue)
        .where(M.BookIssue.date_returned.is_(None), M.BookIssue.date_issued <= overdue_cutoff(now))
        .options(selectinload(M.BookIssue.book), selectinload(M.BookIssue.reader))
        .order_by(M.BookIssue.date_issued)
    ).all()

def readers_csv(db: Session) -> str:
    """The whole roster as ``;``-separated CSV with a header row."""
    readers = db.scalars(select(M.Reader).order_by(M.Reader.reader_id)).all()
    counts = issue_counts(db)
    buf = io.StringIO()
    w = csv.writer(buf, delimiter=CSV_DELIMITER, lineterminator="\n")
    w.writerow(CSV_HEADER)
    for r in readers:
        active, total = counts.get(r.reader_id, (0, 0))
        w.writerow([
            r.library_card_id,
            r.name,
            r.address,
            r.phone,
            r.created_at.strftime("%d.%m.%Y") if r.created_at else "",
            active,
            total,
        ])
    return buf.getvalue()

def export_filename(today: date | None = None) -> str:
    return f"readers_{(today or date.today()).isoformat()}.csv"
