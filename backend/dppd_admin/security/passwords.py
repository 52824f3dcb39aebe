"""Password hashing for static admin accounts."""
import hmac

from passlib.context import CryptContext

HASH_PREFIX = "$pbkdf2-sha256$"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def is_hashed(stored: str) -> bool:
    return stored.startswith(HASH_PREFIX)


def verify_password(plain_password: str, stored: str) -> bool:
    """Check a password against a stored hash.

    Accounts created before hashing was introduced hold the plaintext
    password; those are compared directly and should be rehashed by the
    caller once the login succeeds (see ``needs_rehash``).
    """
    if not stored:
        return False
    if not is_hashed(stored):
        return hmac.compare_digest(plain_password.encode("utf-8"), stored.encode("utf-8"))
    return pwd_context.verify(plain_password, stored)


def needs_rehash(stored: str) -> bool:
    return not is_hashed(stored) or pwd_context.needs_update(stored)
