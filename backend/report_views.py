import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import reporting
from db import get_db
from web import render, require_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

@router.get("")
def index(request: Request, db: Session = Depends(get_db), user=Depends(require_library("/books"))):
    try:
        ctx = {
            "popular_books": reporting.book_issue_counts(db, limit=10),
            "active_readers": reporting.reader_issue_counts(db, limit=10),
            "staff": reporting.staff_issue_stats(db),
            "overdue": reporting.overdue_issues(db),
        }
    except SQLAlchemyError as e:
        logger.exception("reports failed")
        ctx = {
            "error": f"Ошибка при построении отчётов: {e}",
            "popular_books": [], "active_readers": [], "staff": [], "overdue": [],
        }
    return render(request, "reports.html", ctx)
