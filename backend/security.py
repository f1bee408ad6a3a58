from datetime import datetime, timedelta
from jose import jwt, JWTError
from werkzeug.security import generate_password_hash, check_password_hash
from db import settings

ALGO = "HS256"

def hash_password(p: str) -> str:
    """
    Salted slow hash (werkzeug's scrypt/pbkdf2 format, salt embedded):
    ``<method>$<salt>$<hex>``
    """
    return generate_password_hash(p)

def verify_password(p: str, h: str) -> bool:
    if not h:
        return False
    try:
        return check_password_hash(h, p)
    except ValueError:
        # unknown hash format (e.g. a legacy md5 row): treat as a mismatch
        return False

def create_access_token(data: dict, minutes: int | None = None) -> str:
    expire = datetime.utcnow() + timedelta(minutes=minutes or settings.JWT_EXPIRE_MINUTES)
    payload = {**data, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGO])
    except JWTError:
        raise ValueError("Invalid token")
