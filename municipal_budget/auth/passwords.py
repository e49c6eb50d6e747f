"""Salted password hashing (werkzeug) with an optional server-side pepper."""

from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from municipal_budget.config import AuthSettings, get_settings


class PasswordHasher:
    """Hashes and checks passwords. Comparison is constant time."""

    def __init__(self, settings: Optional[AuthSettings] = None):
        self._pepper = (settings or get_settings().auth).password_pepper

    def hash(self, password: str) -> str:
        return generate_password_hash(password + self._pepper)

    def verify(self, password_hash: str, password: str) -> bool:
        return check_password_hash(password_hash, password + self._pepper)
