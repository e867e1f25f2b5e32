"""
offline/crypto.py -- AES-256-GCM field encryption for the offline store.

Ciphertext format: base64(iv || ciphertext || tag), with a fresh random
12-byte IV per call. Keys travel as base64 text so they can live in an env
var or a sqlite row.

The integrity hash is an HMAC-SHA256 over the record's canonical JSON
(sorted keys, compact separators), keyed with the raw master key and cut to
the first 16 hex characters. It detects edits made to stored records outside
OfflineStore; it is not a signature clients can verify.
"""

import base64
import binascii
import hashlib
import hmac
import json
import os
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

IV_LENGTH = 12
KEY_BITS = 256
INTEGRITY_HASH_LENGTH = 16


class DecryptionError(Exception):
    """Ciphertext is malformed, was produced with another key, or was altered."""


def generate_key() -> str:
    return base64.b64encode(AESGCM.generate_key(bit_length=KEY_BITS)).decode("ascii")


def _key_bytes(key: str) -> bytes:
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Encryption key is not valid base64") from e
    if len(raw) != KEY_BITS // 8:
        raise ValueError(f"Encryption key must be {KEY_BITS // 8} bytes, got {len(raw)}")
    return raw


def encrypt(plaintext: str, key: str) -> str:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_key_bytes(key)).encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(iv + sealed).decode("ascii")


def decrypt(token: str, key: str) -> str:
    """Reverse encrypt(). Raises DecryptionError on any failure."""
    try:
        combined = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Ciphertext is not valid base64") from e
    if len(combined) <= IV_LENGTH:
        raise DecryptionError("Ciphertext is too short")
    iv, sealed = combined[:IV_LENGTH], combined[IV_LENGTH:]
    try:
        return AESGCM(_key_bytes(key)).decrypt(iv, sealed, None).decode("utf-8")
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch") from e
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted bytes are not UTF-8") from e


def sha256_b64(data: Union[bytes, str]) -> str:
    """Base64 SHA-256 digest. Used for document checksums."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def canonical_json(data: dict) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def integrity_hash(data: dict, key: str) -> str:
    digest = hmac.new(_key_bytes(key), canonical_json(data).encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()[:INTEGRITY_HASH_LENGTH]
