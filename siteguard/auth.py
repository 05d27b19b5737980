"""
Password management for the single admin account.
"""

from typing import Optional

from werkzeug.security import generate_password_hash, check_password_hash
from siteguard.models import User


def hash_password(password: str) -> str:
    """Hash a password using werkzeug's pbkdf2:sha256."""
    return generate_password_hash(password, method='pbkdf2:sha256')


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def validate_password_strength(password: str) -> tuple[bool, str]:
    """
    Validate password meets security requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if not any(c.isupper() for c in password):
        return False, "Password must contain at least one uppercase letter"

    if not any(c.islower() for c in password):
        return False, "Password must contain at least one lowercase letter"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one digit"

    return True, ""


def authenticate(username: str, password: str) -> Optional[User]:
    """Return the user matching the credentials, or None."""
    if not username or not password:
        return None

    user = User.query.filter_by(username=username).first()
    if user is None or not verify_password(user.password_hash, password):
        return None
    return user
