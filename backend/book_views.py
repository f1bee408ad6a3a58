import logging
from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import catalog
import schemas as S
from db import get_db
from errors import LibraryError, NotFound
from web import render, redirect, flash, form_data, parse_form, get_current_staff, require_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])
can_manage = require_library("/books")

def _form(request: Request, **ctx):
    ctx.setdefault("book", None)
    ctx.setdefault("book_data", {})
    ctx.setdefault("errors", {})
    return render(request, "books/form.html", {"current_year": date.today().year, **ctx})

@router.get("")
def index(request: Request, db: Session = Depends(get_db), user=Depends(get_current_staff)):
    f = S.BookFilter.model_validate(dict(request.query_params))
    try:
        page = catalog.list_books(db, f)
    except SQLAlchemyError as e:
        logger.exception("book list failed")
        return render(request, "books/index.html", {
            "error": f"Ошибка при загрузке списка книг: {e}",
            "books": S.Page(items=[], total=0, page=1, per_page=1),
            "filter": f,
        })
    return render(request, "books/index.html", {"books": page, "filter": f})

@router.get("/create")
def create(request: Request, user=Depends(can_manage)):
    return _form(request)

@router.post("")
def store(request: Request, data: dict = Depends(form_data), db: Session = Depends(get_db),
          user=Depends(can_manage)):
    book_in, errors = parse_form(S.BookIn, data)
    if errors:
        return _form(request, errors=errors, book_data=data)
    try:
        b = catalog.create_book(db, book_in)
    except SQLAlchemyError as e:
        logger.exception("book create failed")
        return _form(request, error=f"Ошибка при создании книги: {e}", book_data=data)
    flash(request, "success", f'Книга "{b.title}" успешно добавлена!')
    return redirect("/books")

@router.get("/search")
def search(q: str = "", field: str = "title", db: Session = Depends(get_db),
           user=Depends(get_current_staff)):
    try:
        return catalog.search_books(db, q, field)
    except SQLAlchemyError as e:
        logger.exception("book search failed")
        return {"error": str(e)}

@router.get("/stats")
def stats(request: Request, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        data = catalog.book_stats(db)
    except SQLAlchemyError as e:
        logger.exception("book stats failed")
        return render(request, "books/stats.html", {
            "error": f"Ошибка при загрузке статистики: {e}", "stats": {},
        })
    return render(request, "books/stats.html", {"stats": data})

@router.get("/{book_id}")
def show(request: Request, book_id: int, db: Session = Depends(get_db),
         user=Depends(get_current_staff)):
    try:
        book = catalog.get_book(db, book_id)
        available = catalog.is_available(db, book_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/books")
    except SQLAlchemyError as e:
        logger.exception("book %s load failed", book_id)
        flash(request, "error", f"Ошибка при загрузке книги: {e}")
        return redirect("/books")
    return render(request, "books/show.html", {
        "book": book,
        "available": available,
        "active_tab": request.query_params.get("tab", "info"),
    })

@router.get("/{book_id}/edit")
def edit(request: Request, book_id: int, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        book = catalog.get_book(db, book_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/books")
    except SQLAlchemyError as e:
        logger.exception("book %s load failed", book_id)
        flash(request, "error", f"Ошибка при загрузке книги: {e}")
        return redirect("/books")
    return _form(request, book=book)

@router.post("/{book_id}")
def update(request: Request, book_id: int, data: dict = Depends(form_data),
           db: Session = Depends(get_db), user=Depends(can_manage)):
    book_in, errors = parse_form(S.BookIn, data)
    try:
        if errors:
            return _form(request, book=catalog.get_book(db, book_id), errors=errors, book_data=data)
        b = catalog.update_book(db, book_id, book_in)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/books")
    except SQLAlchemyError as e:
        logger.exception("book %s update failed", book_id)
        flash(request, "error", f"Ошибка при обновлении книги: {e}")
        return redirect(f"/books/{book_id}/edit")
    flash(request, "success", f'Информация о книге "{b.title}" успешно обновлена!')
    return redirect(f"/books/{book_id}")

@router.post("/{book_id}/delete")
def destroy(request: Request, book_id: int, db: Session = Depends(get_db), user=Depends(can_manage)):
    try:
        title = catalog.delete_book(db, book_id)
    except NotFound as e:
        flash(request, "error", e.message)
        return redirect("/books")
    except LibraryError as e:
        flash(request, "error", e.message)
        return redirect(f"/books/{book_id}")
    except SQLAlchemyError as e:
        logger.exception("book %s delete failed", book_id)
        flash(request, "error", f"Ошибка при удалении книги: {e}")
        return redirect(f"/books/{book_id}")
    flash(request, "success", f'Книга "{title}" успешно удалена!')
    return redirect("/books")
