"""Trainer authentication — bcrypt password hashes and JWT bearer tokens."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from trainercrm.config import get_settings

settings = get_settings()

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    import bcrypt

    pwd = password.encode("utf-8")[:72]  # bcrypt max 72 bytes
    return bcrypt.hashpw(pwd, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    import bcrypt

    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        return False


def create_trainer_token(trainer_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    return jwt.encode({"sub": trainer_id, "exp": expire}, settings.secret_key, algorithm=ALGORITHM)


def decode_trainer_id(token: str) -> Optional[str]:
    """Trainer id from a valid token, None for anything else."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub") or None
