"""
Goal: The encrypted token file round-trips, survives corruption, and stays private.
"""
import base64
import os
import stat

import pytest

from skybridge.auth.token_store import TokenStore
from skybridge.models.schemas import TokenSet


def _tokens() -> TokenSet:
    return TokenSet(access_token="a", refresh_token="r", expires_at=123, scope="s1 s2")


def test_save_then_load(store):
    store.save(_tokens())
    assert store.load() == _tokens()


def test_file_is_not_plaintext(store):
    store.save(_tokens())
    text = store.path.read_text()
    assert "refresh_token" not in text
    base64.b64decode(text, validate=True)


@pytest.mark.skipif(os.name != "posix", reason="permission bits are POSIX only")
def test_file_is_owner_only(store):
    store.save(_tokens())
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


def test_missing_file_loads_none(store):
    assert store.load() is None


def test_wrong_key_loads_none(store):
    store.save(_tokens())
    assert TokenStore(store.path, "someone-else").load() is None


def test_garbage_loads_none(store):
    store.path.write_text("definitely not base64 !!")
    assert store.load() is None


def test_tampered_file_loads_none(store):
    store.save(_tokens())
    raw = bytearray(base64.b64decode(store.path.read_text()))
    raw[20] ^= 0xFF
    store.path.write_text(base64.b64encode(bytes(raw)).decode())
    assert store.load() is None


def test_save_none_deletes_file(store):
    store.save(_tokens())
    store.save(None)
    assert not store.path.exists()
    store.clear()  # already gone is fine


def test_empty_secret_rejected(tmp_path):
    with pytest.raises(ValueError):
        TokenStore(tmp_path / "t", "")
