"""
Goal: Small crypto/encoding helpers shared by the OAuth flow and the token store.
- base64url without padding (PKCE wants it that way)
- AES-256-GCM sealing of the token blob, key = SHA-256(secret)
- redirect URI sanity checks, epoch-ms clock, async sleep
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import os
import secrets
import time
from typing import Tuple
from urllib.parse import urlparse

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_LEN = 12
_TAG_LEN = 16


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def new_verifier_and_challenge(nbytes: int = 32) -> Tuple[str, str]:
    """
    PKCE pair: verifier from `nbytes` random bytes, challenge = b64url(SHA-256(verifier)).
    """
    verifier = b64url(secrets.token_bytes(nbytes))
    return verifier, code_challenge(verifier)


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def new_state(nbytes: int = 16) -> str:
    return b64url(secrets.token_bytes(nbytes))


def derive_key(seed: str) -> bytes:
    """One-way 32-byte key from whatever secret is configured."""
    return hashlib.sha256(seed.encode("utf-8")).digest()


def encrypt_payload(content: str, seed: str) -> str:
    """
    Seal `content` and return base64(nonce || tag || ciphertext).
    AESGCM appends the tag to the ciphertext; we move it up front so the
    layout stays nonce/tag/body.
    """
    nonce = os.urandom(_NONCE_LEN)
    sealed = AESGCM(derive_key(seed)).encrypt(nonce, content.encode("utf-8"), None)
    body, tag = sealed[:-_TAG_LEN], sealed[-_TAG_LEN:]
    return base64.b64encode(nonce + tag + body).decode("ascii")


def decrypt_payload(payload: str, seed: str) -> str:
    """
    Reverse of encrypt_payload. Raises ValueError on malformed input and
    cryptography.exceptions.InvalidTag on tampering or a wrong key.
    """
    raw = base64.b64decode(payload.encode("ascii"), validate=True)
    if len(raw) < _NONCE_LEN + _TAG_LEN:
        raise ValueError("payload too short")
    nonce = raw[:_NONCE_LEN]
    tag = raw[_NONCE_LEN:_NONCE_LEN + _TAG_LEN]
    body = raw[_NONCE_LEN + _TAG_LEN:]
    plain = AESGCM(derive_key(seed)).decrypt(nonce, body + tag, None)
    return plain.decode("utf-8")


def is_http_redirect(uri: str) -> bool:
    try:
        parsed = urlparse(uri)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def now_ms() -> int:
    return int(time.time() * 1000)


async def sleep_ms(ms: int) -> None:
    await asyncio.sleep(max(ms, 0) / 1000)
