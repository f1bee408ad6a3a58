from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Enum, Text, DECIMAL, ForeignKey, Boolean
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from db import Base

# sqlite only autoincrements INTEGER PRIMARY KEY
ID = BigInteger().with_variant(Integer, "sqlite")

ROLE_ADMIN = "admin"
ROLE_LIBRARIAN = "librarian"
ROLES = (ROLE_ADMIN, ROLE_LIBRARIAN)

# role: admin / librarian
class User(Base):
    __tablename__ = "users"
    user_id = Column(ID, primary_key=True, autoincrement=True)
    login = Column(String(50), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(Enum(*ROLES, name="user_role"), nullable=False, default=ROLE_LIBRARIAN)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    issued = relationship("BookIssue", back_populates="librarian")

class Book(Base):
    __tablename__ = "books"
    book_id = Column(ID, primary_key=True, autoincrement=True)
    author = Column(String(200), nullable=False)
    title = Column(String(255), nullable=False)
    publish_year = Column(Integer, nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False, default=0)
    is_new = Column(Boolean, nullable=False, default=False)
    annotation = Column(Text)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    issues = relationship(
        "BookIssue", back_populates="book", order_by="BookIssue.date_issued.desc()"
    )

class Reader(Base):
    __tablename__ = "readers"
    reader_id = Column(ID, primary_key=True, autoincrement=True)
    library_card_id = Column(String(30), unique=True, nullable=False)
    name = Column(String(150), nullable=False)
    address = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    issues = relationship(
        "BookIssue", back_populates="reader", order_by="BookIssue.date_issued.desc()"
    )

# append-only; status is derived from date_returned (NULL = on loan)
class BookIssue(Base):
    __tablename__ = "book_issues"
    issue_id = Column(ID, primary_key=True, autoincrement=True)
    # SET NULL keeps the ledger row when a returned book or reader is deleted
    book_id = Column(BigInteger, ForeignKey("books.book_id", ondelete="SET NULL"), nullable=True, index=True)
    reader_id = Column(BigInteger, ForeignKey("readers.reader_id", ondelete="SET NULL"), nullable=True, index=True)
    librarian_id = Column(BigInteger, ForeignKey("users.user_id"), nullable=False, index=True)

    date_issued = Column(DateTime, nullable=False, server_default=func.now())
    date_returned = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="issues")
    reader = relationship("Reader", back_populates="issues")
    librarian = relationship("User", back_populates="issued")
