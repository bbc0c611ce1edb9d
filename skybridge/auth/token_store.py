"""
Goal: Keep the Spotify TokenSet on disk, encrypted, one file per install.
A missing or broken file just means "not connected"; it must never crash the overlay.
"""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from loguru import logger

from skybridge.auth.helpers import decrypt_payload, encrypt_payload
from skybridge.models.schemas import TokenSet


class TokenStore:
    def __init__(self, path: Path, secret: str) -> None:
        if not secret:
            raise ValueError("token store needs a non-empty secret")
        self.path = Path(path)
        self._secret = secret

    def load(self) -> Optional[TokenSet]:
        if not self.path.exists():
            return None
        try:
            contents = self.path.read_text(encoding="utf-8")
            decrypted = decrypt_payload(contents.strip(), self._secret)
            return TokenSet.model_validate(json.loads(decrypted))
        except (OSError, InvalidTag, ValueError):
            # ValueError covers bad base64, JSON, utf-8 and schema errors
            logger.warning("Stored Spotify session at {} is unreadable; treating as logged out", self.path)
            return None

    def save(self, tokens: Optional[TokenSet]) -> None:
        if tokens is None:
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        sealed = encrypt_payload(tokens.model_dump_json(), self._secret)
        self.path.write_text(sealed, encoding="utf-8")
        if os.name == "posix":
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
