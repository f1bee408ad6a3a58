import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import reporting
import roster
import schemas as S
from db import get_db
from errors import LibraryError, NotFound, DuplicateCard
from web import render, redirect, flash, form_data, parse_form, get_current_staff, require_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/readers", tags=["readers"])
can_manage = require_library("/readers")

EMPTY = S.Page(items=[], total=0, page=1, per_page=1)

def _form(request: Request, **ctx):
    ctx.setdefault("reader", None)
    ctx.setdefault("reader_data", {})
    ctx.setdefault("errors", {})
    return render(request, "readers/form.html", ctx)

@router.get("")
def index(request: Request, db: Session = Depends(get_db), user=Depends(get_current_staff)):
    f = S.ReaderFilter.model_validate(dict(request.query_params))
    try:
        page = roster.list_readers(db, f)
        counts = roster.issue_counts(db, [r.reader_id for r in page.items])
    except SQLAlchemyError as e:
        logger.exception("reader list failed")
        return render(request, "readers/index.html", {
            "error": f"Ошибка при загрузке списка читателей: {e}",
            "readers": EMPTY, "counts": {}, "filter": f,
        })
    return render(request, "readers/index.html", {"readers": page, "counts": counts, "filter": f})

@router.get("/create")
def create(request: Request, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        card_id = roster.next_card_id(db)
    except SQLAlchemyError as e:
        logger.exception("card id generation failed")
        return _form(request, error=f"Ошибка при генерации номера билета: {e}")
    return _form(request, reader_data={"library_card_id": card_id})

@router.post("")
def store(request: Request, data: dict = Depends(form_data), db: Session = Depends(get_db),
          user=Depends(can_manage)):
    reader_in, errors = parse_form(S.ReaderIn, data)
    if errors:
        return _form(request, errors=errors, reader_data=data)
    try:
        r = roster.create_reader(db, reader_in)
    except DuplicateCard as e:
        return _form(request, errors={"library_card_id": [e.message]}, reader_data=data)
    except SQLAlchemyError as e:
        logger.exception("reader create failed")
        return _form(request, error=f"Ошибка при создании читателя: {e}", reader_data=data)
    flash(request, "success", f'Читатель "{r.name}" успешно добавлен!')
    return redirect("/readers")

@router.get("/search")
def search(q: str = "", field: str = "name", db: Session = Depends(get_db),
           user=Depends(get_current_staff)):
    try:
        return roster.search_readers(db, q, field)
    except SQLAlchemyError as e:
        logger.exception("reader search failed")
        return {"error": str(e)}

@router.get("/with-books")
def with_books(request: Request, page: str = "1", db: Session = Depends(get_db),
               user=Depends(get_current_staff)):
    f = S.ListFilter(page=page)
    try:
        readers = roster.readers_with_books(db, f.page)
    except SQLAlchemyError as e:
        logger.exception("readers with books failed")
        return render(request, "readers/with_books.html", {
            "error": f"Ошибка при загрузке списка: {e}", "readers": EMPTY,
        })
    return render(request, "readers/with_books.html", {"readers": readers})

@router.get("/export")
def export(request: Request, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        body = reporting.readers_csv(db)
    except SQLAlchemyError as e:
        logger.exception("reader export failed")
        flash(request, "error", f"Ошибка при экспорте данных: {e}")
        return redirect("/readers")
    return Response(
        content=body.encode("utf-8"),
        media_type=reporting.CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={reporting.export_filename()}"},
    )

@router.get("/generate-card-id")
def generate_card_id(db: Session = Depends(get_db), user=Depends(get_current_staff)):
    try:
        return {"card_id": roster.next_card_id(db)}
    except SQLAlchemyError:
        logger.exception("card id generation failed")
        return {"error": "Ошибка при генерации номера билета"}

@router.get("/{reader_id}")
def show(request: Request, reader_id: int, db: Session = Depends(get_db),
         user=Depends(get_current_staff)):
    try:
        reader = roster.get_reader(db, reader_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/readers")
    except SQLAlchemyError as e:
        logger.exception("reader %s load failed", reader_id)
        flash(request, "error", f"Ошибка при загрузке читателя: {e}")
        return redirect("/readers")
    return render(request, "readers/show.html", {
        "reader": reader,
        "stats": roster.reader_stats(reader),
        "active_tab": request.query_params.get("tab", "info"),
    })

@router.get("/{reader_id}/edit")
def edit(request: Request, reader_id: int, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        reader = roster.get_reader(db, reader_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/readers")
    except SQLAlchemyError as e:
        logger.exception("reader %s load failed", reader_id)
        flash(request, "error", f"Ошибка при загрузке читателя: {e}")
        return redirect("/readers")
    return _form(request, reader=reader)

@router.post("/{reader_id}")
def update(request: Request, reader_id: int, data: dict = Depends(form_data),
           db: Session = Depends(get_db), user=Depends(can_manage)):
    reader_in, errors = parse_form(S.ReaderIn, data)
    try:
        reader = roster.get_reader(db, reader_id)
        if errors:
            return _form(request, reader=reader, errors=errors, reader_data=data)
        r = roster.update_reader(db, reader_id, reader_in)
    except DuplicateCard as e:
        return _form(request, reader=reader,
                     errors={"library_card_id": [e.message]}, reader_data=data)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/readers")
    except SQLAlchemyError as e:
        logger.exception("reader %s update failed", reader_id)
        flash(request, "error", f"Ошибка при обновлении читателя: {e}")
        return redirect(f"/readers/{reader_id}/edit")
    flash(request, "success", f'Информация о читателе "{r.name}" успешно обновлена!')
    return redirect(f"/readers/{reader_id}")

@router.post("/{reader_id}/delete")
def destroy(request: Request, reader_id: int, db: Session = Depends(get_db),
            user=Depends(can_manage)):
    try:
        name = roster.delete_reader(db, reader_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/readers")
    except LibraryError as e:
        flash(request, "error", e.message)
        return redirect(f"/readers/{reader_id}")
    except SQLAlchemyError as e:
        logger.exception("reader %s delete failed", reader_id)
        flash(request, "error", f"Ошибка при удалении читателя: {e}")
        return redirect(f"/readers/{reader_id}")
    flash(request, "success", f'Читатель "{name}" успешно удален!')
    return redirect("/readers")
