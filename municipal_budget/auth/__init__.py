"""Authentication: accounts, password hashing and one-time codes."""

from municipal_budget.auth.directory import UserDirectory
from municipal_budget.auth.otp import OtpManager
from municipal_budget.auth.passwords import PasswordHasher

__all__ = ["OtpManager", "PasswordHasher", "UserDirectory"]
