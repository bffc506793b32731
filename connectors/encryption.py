"""
Credential encryption for connection tokens and pending request tokens.

Fernet (AES-128-CBC + HMAC-SHA256) from ``cryptography``. Keys come from
``config.token_encryption_key`` (env var: ``TOKEN_ENCRYPTION_KEY``) as a
comma-separated list: the first key encrypts, every key is tried on
decrypt, so a new key can be put in front while old rows are still
readable.

Covers access tokens, secrets and refresh tokens in the connection table
and the request-token secret parked in the session cookie during an
OAuth1 flow. With no key configured, values are stored as plaintext.

Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config.settings import config

logger = logging.getLogger(__name__)

_cipher: Optional[MultiFernet] = None
_loaded = False


def _parse_keys(raw: Optional[str]) -> List[Fernet]:
    return [Fernet(k.strip().encode()) for k in (raw or "").split(",") if k.strip()]


def configure(keys: Optional[str]) -> None:
    """Install the key list; ``None`` or empty turns encryption off."""
    global _cipher, _loaded
    _loaded = True
    fernets = _parse_keys(keys)
    _cipher = MultiFernet(fernets) if fernets else None


def _ensure_loaded() -> Optional[MultiFernet]:
    if not _loaded:
        try:
            configure(config.token_encryption_key)
        except (ValueError, TypeError) as exc:
            logger.error("TOKEN_ENCRYPTION_KEY is not a valid Fernet key list: %s", exc)
            configure(None)
        if _cipher is None:
            logger.warning("TOKEN_ENCRYPTION_KEY not set — connection tokens will be stored as plaintext.")
        else:
            logger.info("Token encryption enabled (Fernet)")
    return _cipher


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt with the primary key. ``None`` passes through."""
    cipher = _ensure_loaded()
    if plaintext is None or cipher is None:
        return plaintext
    return cipher.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    """
    Decrypt with any configured key.

    Values written before encryption was enabled are not Fernet tokens
    and come back unchanged.
    """
    cipher = _ensure_loaded()
    if ciphertext is None or cipher is None:
        return ciphertext
    try:
        return cipher.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    return _ensure_loaded() is not None
