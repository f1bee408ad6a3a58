from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from math import ceil
from pydantic import BaseModel, BeforeValidator, Field, StringConstraints, ValidationError, field_validator
from pydantic_core import PydanticCustomError
from typing import Annotated, Any, Optional, List, Literal

from normalize import normalize_card_id, normalize_phone, normalize_login

Role = Literal["admin", "librarian"]
Required = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

MIN_PUBLISH_YEAR = 1800
ANNOTATION_MAX = 1000

def _str_only(fn):
    return lambda v: fn(v) if isinstance(v, str) else v

Login = Annotated[Required, BeforeValidator(_str_only(normalize_login))]
CardId = Annotated[Required, BeforeValidator(_str_only(normalize_card_id))]
Phone = Annotated[Required, BeforeValidator(_str_only(normalize_phone))]

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role
    login: str
    name: str

class LoginIn(BaseModel):
    login: Login
    password: Required

class CurrentStaff(BaseModel):
    """Who is acting. Passed explicitly into every operation that needs an
    authorization decision."""
    user_id: int
    login: str
    name: str
    role: Role

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_manage_library(self) -> bool:
        return self.role in ("admin", "librarian")

    @property
    def can_manage_users(self) -> bool:
        return self.role == "admin"

# --- books ---
class BookIn(BaseModel):
    author: Required
    title: Required
    publish_year: int
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    is_new: bool = False
    annotation: Optional[str] = Field(default=None, max_length=ANNOTATION_MAX)

    @field_validator("publish_year")
    @classmethod
    def check_year(cls, v: int) -> int:
        if v < MIN_PUBLISH_YEAR:
            raise PydanticCustomError(
                "greater_than_equal", "too early", {"ge": MIN_PUBLISH_YEAR}
            )
        latest = date.today().year + 1
        if v > latest:
            raise PydanticCustomError("less_than_equal", "too late", {"le": latest})
        return v

    @field_validator("annotation", mode="before")
    @classmethod
    def blank_annotation(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

class BookOut(BaseModel):
    book_id: int
    author: str
    title: str
    publish_year: int
    price: Decimal
    is_new: bool
    annotation: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# --- readers ---
class ReaderIn(BaseModel):
    library_card_id: CardId
    name: Required
    address: Required
    phone: Phone

class ReaderOut(BaseModel):
    reader_id: int
    library_card_id: str
    name: str
    address: str
    phone: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# --- issues ---
class IssueIn(BaseModel):
    book_id: int
    reader_id: int
    date_issued: Optional[datetime] = None

    @field_validator("date_issued", mode="before")
    @classmethod
    def blank_date(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

# --- staff ---
class UserIn(BaseModel):
    login: Login
    password: str = Field(min_length=6)
    name: Required
    role: Role = "librarian"

    @field_validator("role", mode="before")
    @classmethod
    def default_role(cls, v):
        return v or "librarian"

class UserOut(BaseModel):
    user_id: int
    login: str
    name: str
    role: Role

    class Config:
        from_attributes = True

# --- list filters ---
# Every field is optional; set fields are combined with AND.
# Junk query values fall back to "no filter" instead of failing the read.

def _tristate(v):
    if isinstance(v, bool) or v is None:
        return v
    s = str(v).strip().lower()
    if s in ("1", "true", "on", "yes"):
        return True
    if s in ("0", "false", "off", "no"):
        return False
    return None

def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v

def _positive_int(v, default=1):
    try:
        n = int(v)
    except (TypeError, ValueError):
        return default
    return n if n >= 1 else default

def _optional_id(v):
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None

class ListFilter(BaseModel):
    sort_by: Optional[str] = None
    sort_order: str = "asc"
    page: int = 1

    @field_validator("page", mode="before")
    @classmethod
    def valid_page(cls, v):
        return _positive_int(v)

    @field_validator("sort_order", mode="before")
    @classmethod
    def valid_order(cls, v):
        return "desc" if str(v).lower() == "desc" else "asc"

TriState = Annotated[Optional[bool], BeforeValidator(_tristate)]
Text = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptionalId = Annotated[Optional[int], BeforeValidator(_optional_id)]

class BookFilter(ListFilter):
    """``search`` matches the title, ``author`` the author (both substrings)."""
    search: Text = None
    author: Text = None
    is_new: TriState = None
    sort_by: Text = "title"

class ReaderFilter(ListFilter):
    """``search`` matches the name OR the card number."""
    search: Text = None
    has_books: TriState = None
    sort_by: Text = "name"

class IssueFilter(ListFilter):
    status: Optional[Literal["active", "returned", "overdue"]] = None
    book_id: OptionalId = None
    reader_id: OptionalId = None
    librarian_id: OptionalId = None
    issued_from: Optional[date] = None
    issued_to: Optional[date] = None

    @field_validator("status", mode="before")
    @classmethod
    def valid_status(cls, v):
        return v if v in ("active", "returned", "overdue") else None

    @field_validator("issued_from", "issued_to", mode="before")
    @classmethod
    def valid_date(cls, v):
        if isinstance(v, (date, type(None))):
            return v
        try:
            return date.fromisoformat(str(v).strip())
        except ValueError:
            return None

@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return max(1, ceil(self.total / self.per_page))

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

# --- form error reporting ---
FIELD_LABELS = {
    "author": "Автор",
    "title": "Название",
    "publish_year": "Год издания",
    "price": "Цена",
    "is_new": "Новинка",
    "annotation": "Аннотация",
    "library_card_id": "Номер билета",
    "name": "ФИО",
    "address": "Адрес",
    "phone": "Телефон",
    "book_id": "Книга",
    "reader_id": "Читатель",
    "date_issued": "Дата выдачи",
    "login": "Логин",
    "password": "Пароль",
    "role": "Роль",
}

def _message(err: dict, label: str) -> str:
    kind = err["type"]
    ctx = err.get("ctx") or {}
    if kind in ("missing", "string_too_short") and not ctx.get("min_length", 1) > 1:
        return f"Поле {label} обязательно для заполнения"
    if kind == "string_too_short":
        return f"Поле {label} должно содержать не менее {ctx['min_length']} символов"
    if kind in ("int_parsing", "int_from_float", "decimal_parsing", "float_parsing", "decimal_type"):
        return f"Поле {label} должно быть числом"
    if kind in ("greater_than_equal", "greater_than"):
        return f"Поле {label} должно быть не менее {ctx.get('ge', ctx.get('gt'))}"
    if kind in ("less_than_equal", "less_than"):
        return f"Поле {label} должно быть не более {ctx.get('le', ctx.get('lt'))}"
    if kind == "string_too_long":
        return f"Поле {label} должно быть не более {ctx['max_length']} символов"
    if kind == "bool_parsing":
        return f"Поле {label} должно быть логическим значением"
    if kind in ("datetime_parsing", "datetime_from_date_parsing", "date_parsing"):
        return f"Поле {label} должно быть датой"
    return f"Поле {label} заполнено неверно"

def form_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Field name -> user-facing messages, in the order pydantic reported them."""
    out: dict[str, list[str]] = {}
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else "__all__"
        label = FIELD_LABELS.get(field, field)
        out.setdefault(field, []).append(_message(err, label))
    return out
