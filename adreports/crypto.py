from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .env_settings import get_env


def _fernet(secret: Optional[str] = None) -> Fernet:
    raw = (secret if secret is not None else get_env().secret_key).encode("utf-8")
    key = base64.urlsafe_b64encode(hashlib.sha256(raw).digest())
    return Fernet(key)


def encrypt_str(value: str, secret: Optional[str] = None) -> str:
    if not value:
        return ""
    return _fernet(secret).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_str(token: str, secret: Optional[str] = None) -> str:
    """Decrypt a stored secret. A token encrypted under another key yields ''."""
    if not token:
        return ""
    try:
        return _fernet(secret).decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        return ""
