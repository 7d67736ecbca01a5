"""Password strength rules shared by registration and password reset."""

import re

MIN_LENGTH = 8


def password_problems(password: str) -> list:
    """Return human readable reasons why `password` is too weak.

    A password is strong when it has at least eight characters, an
    uppercase letter, a lowercase letter, and a digit or symbol.
    """
    problems = []
    if len(password or "") < MIN_LENGTH:
        problems.append(f"at least {MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password or ""):
        problems.append("an uppercase letter")
    if not re.search(r"[a-z]", password or ""):
        problems.append("a lowercase letter")
    if not re.search(r"[0-9]|[^A-Za-z0-9]", password or ""):
        problems.append("a number or special character")
    return problems


def is_strong_password(password: str) -> bool:
    return not password_problems(password)
