"""Token and session code helpers."""

from __future__ import annotations

import hashlib
import secrets

from .config import MIN_CODE_LENGTH

# Excludes 0, O, 1, I and L.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def hash_token(token: str, server_salt: str) -> str:
    """Create deterministic token hash via sha256(token + server_salt)."""
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def generate_session_code(length: int = MIN_CODE_LENGTH) -> str:
    """Generate a shareable session code from the unambiguous alphabet."""
    length = max(MIN_CODE_LENGTH, length)
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()
