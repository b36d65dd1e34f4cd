"""
Caller capability resolution
"""
from enum import Enum
from typing import Optional


class Role(Enum):
    ADMIN = "admin"
    STUDENT = "student"


def resolve_role(email: Optional[str], admin_email: Optional[str]) -> Role:
    """
    Resolve a caller's role once per request

    The comparison is case-insensitive and ignores surrounding whitespace;
    an unset admin email makes everyone a student.
    """
    if not email or not admin_email:
        return Role.STUDENT
    if email.strip().lower() == admin_email.strip().lower():
        return Role.ADMIN
    return Role.STUDENT
