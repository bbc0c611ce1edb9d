"""
Goal: The loopback redirect listener answers only its path, tells the truth on the page,
and closes itself.
"""
import asyncio

import httpx
import pytest

from skybridge.auth.listener import CallbackListener
from skybridge.errors import ConfigurationError, StateMismatchError


class Recorder:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def __call__(self, code, state, error):
        self.calls.append((code, state, error))
        if self.error:
            raise self.error


def _client(listener):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=listener.app), base_url="http://127.0.0.1")


def test_rejects_non_http_redirect():
    with pytest.raises(ConfigurationError):
        CallbackListener("https://127.0.0.1:5036/callback", Recorder())


@pytest.mark.anyio
async def test_success_page_and_params_forwarded():
    rec = Recorder()
    listener = CallbackListener("http://127.0.0.1:0/callback", rec, close_delay=0)
    async with _client(listener) as c:
        r = await c.get("/callback", params={"code": "abc", "state": "xyz"})
    assert r.status_code == 200
    assert "Spotify connected" in r.text
    assert rec.calls == [("abc", "xyz", None)]
    await listener.stop()


@pytest.mark.anyio
async def test_failure_page_escapes_message():
    rec = Recorder(StateMismatchError("State <mismatch>"))
    listener = CallbackListener("http://127.0.0.1:0/callback", rec, close_delay=0)
    async with _client(listener) as c:
        r = await c.get("/callback", params={"code": "abc", "state": "bad"})
    assert r.status_code == 400
    assert "Something went wrong" in r.text
    assert "State &lt;mismatch&gt;" in r.text
    await listener.stop()


@pytest.mark.anyio
async def test_other_paths_are_404_and_never_call_back():
    rec = Recorder()
    listener = CallbackListener("http://127.0.0.1:0/callback", rec)
    async with _client(listener) as c:
        r = await c.get("/favicon.ico")
    assert r.status_code == 404
    assert rec.calls == []


@pytest.mark.anyio
async def test_real_socket_serves_then_closes_after_callback():
    rec = Recorder()
    listener = CallbackListener("http://127.0.0.1:0/callback", rec, close_delay=0.05)
    await listener.ensure_listening()
    try:
        assert listener.running and listener.port != 0
        async with httpx.AsyncClient() as c:
            r = await c.get(f"http://127.0.0.1:{listener.port}/callback", params={"code": "c", "state": "s"})
        assert r.status_code == 200
        for _ in range(100):
            if not listener.running:
                break
            await asyncio.sleep(0.05)
        assert not listener.running
    finally:
        await listener.stop()


@pytest.mark.anyio
async def test_times_out_and_notifies():
    timed_out = []
    listener = CallbackListener(
        "http://127.0.0.1:0/callback", Recorder(), lambda: timed_out.append(True), timeout=0.1
    )
    await listener.ensure_listening()
    try:
        for _ in range(100):
            if timed_out:
                break
            await asyncio.sleep(0.05)
        assert timed_out == [True]
        assert not listener.running
    finally:
        await listener.stop()


@pytest.mark.anyio
async def test_stop_is_idempotent():
    listener = CallbackListener("http://127.0.0.1:0/callback", Recorder())
    await listener.stop()
    await listener.ensure_listening()
    await listener.stop()
    await listener.stop()
    assert not listener.running


def test_redirect_port_parsing():
    assert CallbackListener("http://127.0.0.1/callback", Recorder()).port == 80
    assert CallbackListener("http://127.0.0.1:5036/callback", Recorder()).port == 5036


@pytest.mark.anyio
async def test_port_zero_binds_an_ephemeral_port():
    listener = CallbackListener("http://127.0.0.1:0/callback", Recorder())
    assert listener.port == 0
    await listener.ensure_listening()
    try:
        assert listener.port not in (0, 80)
    finally:
        await listener.stop()
