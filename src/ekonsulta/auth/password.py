"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt generates a random
salt per hash and embeds it, together with the work factor, in the
"$2b$<rounds>$..." string. Each extra round doubles the cost; the default
of 12 takes ~100ms per hash on modern hardware.

bcrypt only looks at the first 72 bytes of its input, so two passwords
sharing that prefix would hash alike. Longer passwords are refused when
hashing and never verify; the request schemas reject them up front.

These functions are CPU-bound and blocking. Async callers run them in a
worker thread (see services.user_service).
"""

import bcrypt

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with a fresh random salt."""
    if password_too_long(password):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes never match."""
    if password_too_long(password):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False
