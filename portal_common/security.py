"""Password hashing for members signing in to the self-hosted backend."""

from passlib.context import CryptContext
from passlib.exc import PasswordSizeError

# pbkdf2 is pure Python in passlib, so no native hashing backend is required.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_MIN_PASSWORD_LEN = 8
_MAX_PASSWORD_LEN = 256


def _validate_password(password: str) -> str:
    if not isinstance(password, str):
        raise ValueError("Password must be a string")
    if len(password) < _MIN_PASSWORD_LEN:
        raise ValueError("Password must be at least 8 characters long")
    if len(password) > _MAX_PASSWORD_LEN:
        raise ValueError("Password must be 256 characters or fewer")
    return password


def hash_password(password: str) -> str:
    """Return a salted hash suitable for storage."""

    normalized = _validate_password(password)
    try:
        return pwd_context.hash(normalized)
    except PasswordSizeError as exc:
        raise ValueError("Password must be 256 characters or fewer") from exc


def verify_password(password: str, hashed: str | None) -> bool:
    """Compare a raw password against a stored hash; unknown hash formats never match."""

    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, PasswordSizeError):
        return False
