"""
Goal: Short-lived loopback HTTP server for the Spotify OAuth redirect.

- Binds the redirect URI's host:port itself, then hands the socket to uvicorn, so a busy port
  surfaces as ListenerError instead of uvicorn exiting the process.
- Routes only GET <redirect path>; anything else is a plain 404/405.
- The callback handler runs the token exchange before answering; the page reflects the outcome.
- Closes itself: shortly after a callback, or after `timeout` seconds with no callback.
  stop() is idempotent and safe to call from anywhere on the loop.
"""

from __future__ import annotations

import asyncio
import html
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from loguru import logger

from skybridge.errors import ConfigurationError, ListenerError, SkyBridgeError

# code, state, error -> raises SkyBridgeError on failure
CallbackHandler = Callable[[Optional[str], Optional[str], Optional[str]], Awaitable[None]]
TimeoutHandler = Callable[[], None]

CLOSE_DELAY = 0.25
START_TIMEOUT = 5.0

_PAGE = """<html><body style="font-family: -apple-system, BlinkMacSystemFont, sans-serif; \
background:#0f172a; color:white; text-align:center; padding-top:40px;">
<h1>{title}</h1>
{body}
</body></html>"""


def success_page() -> str:
    return _PAGE.format(
        title="Spotify connected",
        body="<p>You can close this tab and return to Sky.</p>",
    )


def failure_page(message: str) -> str:
    return _PAGE.format(
        title="Something went wrong",
        body=f"<p>{html.escape(message)}</p><p>You can close this tab and try connecting again.</p>",
    )


class CallbackListener:
    def __init__(
        self,
        redirect_uri: str,
        on_callback: CallbackHandler,
        on_timeout: Optional[TimeoutHandler] = None,
        *,
        timeout: float = 300.0,
        close_delay: float = CLOSE_DELAY,
    ) -> None:
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or not parsed.hostname:
            raise ConfigurationError("Local callback server only supports http:// redirects")
        self.host = parsed.hostname
        self.port = parsed.port if parsed.port is not None else 80
        self.path = parsed.path or "/"
        self.timeout = timeout
        self.close_delay = close_delay
        self._on_callback = on_callback
        self._on_timeout = on_timeout
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self.app = self._build_app()

    @property
    def running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get(self.path, response_class=HTMLResponse)
        async def callback(request: Request):
            params = request.query_params
            try:
                await self._on_callback(params.get("code"), params.get("state"), params.get("error"))
            except SkyBridgeError as exc:
                message = str(exc)
            except Exception:  # noqa: BLE001
                logger.exception("Spotify callback handling failed")
                message = "Unexpected error while connecting Spotify"
            else:
                self.schedule_close()
                return HTMLResponse(success_page())
            self.schedule_close()
            return HTMLResponse(failure_page(message), status_code=400)

        return app

    async def ensure_listening(self) -> None:
        if self.running:
            return
        sock = self._bind()
        self.port = sock.getsockname()[1]
        config = uvicorn.Config(
            self.app,
            log_config=None,  # loguru handles logs
            access_log=False,
            lifespan="off",
        )
        server = uvicorn.Server(config)
        self._server = server
        self._serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        waited = 0.0
        while not server.started:
            if self._serve_task.done():
                failed = self._serve_task
                sock.close()
                self._server, self._serve_task = None, None
                cause = None if failed.cancelled() else failed.exception()
                raise ListenerError("Spotify callback server stopped during startup") from cause
            if waited >= START_TIMEOUT:
                await self.stop()
                raise ListenerError("Spotify callback server did not start in time")
            await asyncio.sleep(0.02)
            waited += 0.02

        self._watchdog = asyncio.create_task(self._expire_after(self.timeout))
        logger.info("Spotify callback server listening on {}:{}{}", self.host, self.port, self.path)

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise ListenerError(f"Cannot listen on {self.host}:{self.port}: {exc}") from exc
        return sock

    def schedule_close(self) -> None:
        """Close a moment after the current response is flushed."""
        if self._closer is None or self._closer.done():
            self._closer = asyncio.create_task(self._close_after(self.close_delay))

    async def _close_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._shutdown_server()
        self._cancel(self._watchdog)
        self._watchdog = None

    async def _expire_after(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        logger.warning("No Spotify callback within {}s; closing callback server", timeout)
        await self._shutdown_server()
        if self._on_timeout:
            self._on_timeout()

    async def stop(self) -> None:
        for task in (self._watchdog, self._closer):
            self._cancel(task)
        self._watchdog, self._closer = None, None
        await self._shutdown_server()

    async def _shutdown_server(self) -> None:
        server, task = self._server, self._serve_task
        self._server, self._serve_task = None, None
        if server is None or task is None:
            return
        server.should_exit = True
        # uvicorn finishes its shutdown even if the caller is cancelled
        await asyncio.shield(task)
        logger.info("Spotify callback server closed")

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def __aenter__(self) -> "CallbackListener":
        await self.ensure_listening()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
