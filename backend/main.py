import logging

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from db import Base, SessionLocal, engine, get_db, settings
import schemas as S
import staff as staff_ops
from security import create_access_token
from web import (
    AccessDenied, LoginRequired, form_data, get_current_staff, parse_form, redirect, render,
)
import book_views
import issue_views
import reader_views
import report_views
import user_views

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Library Back Office")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET)

app.include_router(book_views.router)
app.include_router(reader_views.router)
app.include_router(issue_views.router)
app.include_router(user_views.router)
app.include_router(report_views.router)

# --- init tables ---
@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin = staff_ops.ensure_admin(db)
        if admin:
            logger.info("bootstrap admin account %r created", admin.login)
    finally:
        db.close()

# --- auth failures ---
@app.exception_handler(LoginRequired)
def login_required(request: Request, exc: LoginRequired):
    if request.url.path.startswith("/api/"):
        return JSONResponse({"detail": "Missing token"}, status_code=401)
    return redirect("/login")

@app.exception_handler(AccessDenied)
def access_denied(request: Request, exc: AccessDenied):
    return redirect(exc.redirect_to)

def _token_for(u) -> str:
    return create_access_token({
        "sub": u.login,
        "role": u.role,
        "user_id": u.user_id,
    })

# --- browser login ---
@app.get("/")
def home():
    return redirect("/books")

@app.get("/login")
def login_form(request: Request):
    return render(request, "login.html", {"login_data": {}, "errors": {}})

@app.post("/login")
def login(request: Request, data: dict = Depends(form_data), db: Session = Depends(get_db)):
    creds, errors = parse_form(S.LoginIn, data)
    if errors:
        return render(request, "login.html", {"login_data": data, "errors": errors})
    try:
        u = staff_ops.authenticate(db, creds.login, creds.password)
    except SQLAlchemyError as e:
        logger.exception("login lookup failed")
        return render(request, "login.html", {
            "login_data": data, "errors": {}, "error": f"Ошибка при входе: {e}",
        })
    if not u:
        logger.warning("failed login for %r", creds.login)
        return render(request, "login.html", {
            "login_data": data, "errors": {}, "error": "Неверный логин или пароль",
        })
    request.session["token"] = _token_for(u)
    logger.info("%s logged in", u.login)
    return redirect("/books")

@app.post("/logout")
def logout(request: Request):
    request.session.clear()
    return redirect("/login")

# --- token API ---
@app.post("/api/auth/login", response_model=S.TokenOut)
def api_login(data: S.LoginIn, db: Session = Depends(get_db)):
    u = staff_ops.authenticate(db, data.login, data.password)
    if not u:
        raise HTTPException(status_code=400, detail="Неверный логин или пароль")
    return S.TokenOut(access_token=_token_for(u), role=u.role, login=u.login, name=u.name)

@app.get("/api/auth/me", response_model=S.CurrentStaff)
def me(user: S.CurrentStaff = Depends(get_current_staff)):
    return user
