import base64
import hashlib
import os

from cryptography.fernet import Fernet

from .config import settings

MASK = "***********"


def _load_encryption_key() -> bytes:
    path = settings.console_encryption_key_file
    if not os.path.exists(path):
        raise RuntimeError("Encryption key file missing")
    with open(path, "rb") as handle:
        raw = handle.read().strip()
    digest = hashlib.sha256(raw).digest()
    return base64.urlsafe_b64encode(digest)


def get_fernet() -> Fernet:
    return Fernet(_load_encryption_key())


def encrypt_value(value: str) -> str:
    return get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_value(value: str) -> str:
    return get_fernet().decrypt(value.encode("utf-8")).decode("utf-8")


def mask_value(value: str | None) -> str | None:
    return MASK if value else None
