"""
Shopify credential encryption at rest (Fernet).
When token_encryption_key is set, encrypt/decrypt access_token and webhook_secret
before they are written to the credential store so DB compromise does not expose plaintext secrets.
"""

from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

logger = structlog.get_logger()

SECRET_FIELDS = ("access_token", "webhook_secret")


def _get_fernet() -> Fernet | None:
    """Return Fernet instance if encryption key is configured; else None."""
    key = (settings.token_encryption_key or "").strip()
    if not key:
        return None
    if len(key) != 44:  # Fernet key is 44 bytes base64
        logger.warning(
            "token_encryption_key must be a 44-char Fernet key; encryption disabled",
            key_len=len(key),
        )
        return None
    try:
        return Fernet(key.encode("utf-8"))
    except ValueError as e:
        logger.warning("Invalid token_encryption_key; encryption disabled", error=str(e))
        return None


def encrypt_secrets_for_storage(row: dict[str, Any]) -> dict[str, Any]:
    """
    Return a copy of a credential row with secret fields encrypted.
    If encryption is not configured, return a copy unchanged.
    """
    out = dict(row)
    fernet = _get_fernet()
    if not fernet:
        return out
    for field in SECRET_FIELDS:
        val = out.get(field)
        if val and isinstance(val, str):
            out[field] = fernet.encrypt(val.encode("utf-8")).decode("ascii")
    return out


def decrypt_secrets_from_storage(row: dict[str, Any] | None) -> dict[str, Any]:
    """
    Return a copy of a credential row with secret fields decrypted.
    Values that are not Fernet tokens are returned as-is so rows written
    before encryption was enabled keep working.
    """
    if not row:
        return {}

    out = dict(row)
    fernet = _get_fernet()
    if not fernet:
        return out

    for field in SECRET_FIELDS:
        val = out.get(field)
        if not val or not isinstance(val, str) or not val.startswith("gAAAAA"):
            continue
        try:
            out[field] = fernet.decrypt(val.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.warning(
                "Credential decryption failed with InvalidToken; leaving value unchanged",
                field=field,
            )

    return out
