from pydantic_settings import BaseSettings
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

class Settings(BaseSettings):
    MYSQL_HOST: str = "127.0.0.1"
    MYSQL_PORT: int = 3306
    MYSQL_USER: str = "root"
    MYSQL_PASSWORD: str = ""
    MYSQL_DB: str = "library_db"
    # overrides the MySQL DSN when set (e.g. sqlite:///library.db)
    DATABASE_URL: str = ""

    JWT_SECRET: str = "please_change_me"
    JWT_EXPIRE_MINUTES: int = 720
    SESSION_SECRET: str = "please_change_me_too"

    LOG_LEVEL: str = "INFO"
    # comma separated; for clients of the /api token endpoints
    CORS_ORIGINS: str = "*"

    CARD_PREFIX: str = "ЧБ"
    BOOKS_PER_PAGE: int = 15
    READERS_PER_PAGE: int = 20
    ISSUES_PER_PAGE: int = 20

    ADMIN_LOGIN: str = "admin"
    ADMIN_PASSWORD: str = ""

    class Config:
        env_file = ".env"

settings = Settings()

MYSQL_DSN = (
    f"mysql+pymysql://{settings.MYSQL_USER}:{settings.MYSQL_PASSWORD}"
    f"@{settings.MYSQL_HOST}:{settings.MYSQL_PORT}/{settings.MYSQL_DB}"
    "?charset=utf8mb4"
)

def make_engine(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, pool_pre_ping=True, echo=False)

engine = make_engine(settings.DATABASE_URL or MYSQL_DSN)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

class Base(DeclarativeBase):
    pass

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
