import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import ledger
import schemas as S
from db import get_db
from errors import LibraryError, NotFound
from web import render, redirect, flash, form_data, parse_form, get_current_staff, require_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/issues", tags=["issues"])
can_manage = require_library("/issues")

def _form(request: Request, **ctx):
    ctx.setdefault("issue_data", {})
    ctx.setdefault("errors", {})
    return render(request, "issues/form.html", ctx)

@router.get("")
def index(request: Request, db: Session = Depends(get_db), user=Depends(get_current_staff)):
    f = S.IssueFilter.model_validate(dict(request.query_params))
    try:
        page = ledger.list_issues(db, f)
    except SQLAlchemyError as e:
        logger.exception("issue list failed")
        return render(request, "issues/index.html", {
            "error": f"Ошибка при загрузке списка выдач: {e}",
            "issues": S.Page(items=[], total=0, page=1, per_page=1),
            "filter": f,
        })
    return render(request, "issues/index.html", {"issues": page, "filter": f})

@router.get("/create")
def create(request: Request, user=Depends(can_manage)):
    prefill = {k: request.query_params[k] for k in ("book_id", "reader_id") if k in request.query_params}
    return _form(request, issue_data=prefill)

@router.post("")
def store(request: Request, data: dict = Depends(form_data), db: Session = Depends(get_db),
          user: S.CurrentStaff = Depends(can_manage)):
    issue_in, errors = parse_form(S.IssueIn, data)
    if errors:
        return _form(request, errors=errors, issue_data=data)
    try:
        issue = ledger.create_issue(db, user, issue_in)
    except LibraryError as e:
        return _form(request, error=e.message, issue_data=data)
    except SQLAlchemyError as e:
        logger.exception("issue create failed")
        return _form(request, error=f"Ошибка при оформлении выдачи: {e}", issue_data=data)
    flash(request, "success", f'Книга "{issue.book.title}" выдана читателю {issue.reader.name}')
    return redirect(f"/issues/{issue.issue_id}")

@router.get("/{issue_id}")
def show(request: Request, issue_id: int, db: Session = Depends(get_db),
         user=Depends(get_current_staff)):
    try:
        issue = ledger.get_issue(db, issue_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/issues")
    except SQLAlchemyError as e:
        logger.exception("issue %s load failed", issue_id)
        flash(request, "error", f"Ошибка при загрузке выдачи: {e}")
        return redirect("/issues")
    return render(request, "issues/show.html", {"issue": issue, "info": ledger.issue_info(issue)})

@router.get("/{issue_id}/info")
def info(issue_id: int, db: Session = Depends(get_db), user=Depends(get_current_staff)):
    try:
        return ledger.issue_info(ledger.get_issue(db, issue_id))
    except NotFound as e:
        return {"error": e.message}
    except SQLAlchemyError as e:
        logger.exception("issue %s info failed", issue_id)
        return {"error": str(e)}

@router.post("/{issue_id}/return")
def return_book(request: Request, issue_id: int, db: Session = Depends(get_db),
                user=Depends(can_manage)):
    back = request.query_params.get("next") or f"/issues/{issue_id}"
    if not back.startswith("/") or back.startswith("//"):
        back = f"/issues/{issue_id}"
    try:
        returned = ledger.return_issue(db, issue_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/issues")
    except SQLAlchemyError as e:
        logger.exception("issue %s return failed", issue_id)
        flash(request, "error", f"Ошибка при оформлении возврата: {e}")
        return redirect(back)
    if returned:
        flash(request, "success", "Возврат книги оформлен")
    else:
        flash(request, "error", "Книга уже возвращена")
    return redirect(back)
