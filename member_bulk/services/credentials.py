from __future__ import annotations

import bcrypt


def hash_password(password: str, rounds: int = 10) -> str:
    """bcrypt hash of a plaintext password (only ever called for new members)."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")
