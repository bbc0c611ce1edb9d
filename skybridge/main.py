"""
SkyBridge Agent (FastAPI + Uvicorn)

Goals
- Local HTTP surface for the Sky overlay: Spotify auth, status, playback commands, catalog.
- Auth: / and /health are open; /v1/* requires X-Sky-Token (file-persisted per install).
- One SpotifySession per agent, built in the lifespan and closed on shutdown.
- SkyBridgeError -> {"ok": false, "error": code, "message": ...} with the error's status;
  anything unexpected is logged with a traceback and returned as a 500.
- Session events are kept in a small ring buffer so the overlay can poll /v1/spotify/events.

Notes
- The OAuth redirect is NOT served here: the session runs its own loopback listener
  on the redirect URI's port while an authorization is pending.
"""

from __future__ import annotations

import itertools
import secrets
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Callable, Deque, Dict, List, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from skybridge import settings
from skybridge.auth import spotify_config
from skybridge.auth.helpers import now_ms
from skybridge.errors import SkyBridgeError
from skybridge.models.schemas import (PlaybackCommand, PlaybackRequest,
                                      QueueRequest)
from skybridge.services.events import (AuthError, AuthUpdated,
                                       PlaybackUpdated, SessionEvent)
from skybridge.services.logs import configure_logging
from skybridge.services.session import SpotifySession

EVENT_BUFFER_SIZE = 100

_COMMANDS: TypeAdapter = TypeAdapter(PlaybackCommand)

SessionFactory = Callable[[], SpotifySession]


def _get_or_create_token() -> str:
    """Read token from file; if absent, create and persist."""
    path = settings.AGENT_TOKEN_PATH
    if path.exists():
        t = path.read_text(encoding="utf-8").strip()
        if t:
            return t
    return _reset_token()


def _reset_token() -> str:
    """Generate and persist a new token."""
    t = secrets.token_urlsafe(24)
    path = settings.AGENT_TOKEN_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(t, encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError:
        logger.warning("Could not restrict permissions on {}", path)
    return t


def _default_session() -> SpotifySession:
    return SpotifySession(spotify_config.load_options())


def _event_record(event: SessionEvent) -> Dict[str, Any]:
    if isinstance(event, AuthUpdated):
        return {"type": "auth-updated", "at": now_ms(), "data": event.status.model_dump()}
    if isinstance(event, PlaybackUpdated):
        data = event.playback.model_dump() if event.playback else None
        return {"type": "playback-updated", "at": now_ms(), "data": data}
    return {"type": "auth-error", "at": now_ms(), "data": {"message": event.message}}


def _error_body(code: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": code, "message": message}


def create_app(session_factory: SessionFactory = _default_session, *, log_setup: bool = True) -> FastAPI:
    recent: Deque[Dict[str, Any]] = deque(maxlen=EVENT_BUFFER_SIZE)
    seq = itertools.count(1)

    def _remember(event: SessionEvent) -> None:
        recent.append({"id": next(seq), **_event_record(event)})

    async def _install_session(app: FastAPI) -> SpotifySession:
        session = session_factory()
        for event_type in (AuthUpdated, PlaybackUpdated, AuthError):
            session.events.subscribe(event_type, _remember)
        app.state.session = session
        await session.initialize()
        return session

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if log_setup:
            configure_logging()
        logger.info("Agent startup; logs at {}", settings.LOG_DIR)
        await _install_session(app)
        try:
            yield
        finally:
            await app.state.session.aclose()
            logger.info("Agent shutdown")

    app = FastAPI(title="SkyBridge Agent", version="0.1.0", lifespan=lifespan)

    def _session(request: Request) -> SpotifySession:
        return request.app.state.session

    @app.exception_handler(SkyBridgeError)
    async def _skybridge_error(_: Request, exc: SkyBridgeError):
        logger.warning("Request failed: {} ({})", exc, exc.code)
        return JSONResponse(_error_body(exc.code, str(exc)), status_code=exc.http_status)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on {}", request.url.path)
        return JSONResponse(_error_body("internal_error", str(exc) or "internal error"), status_code=500)

    @app.middleware("http")
    async def dispatch(request: Request, call_next: Callable[..., Any]):
        """
        - Allow / and /health without token.
        - Require X-Sky-Token for /v1/*.
        """
        path = request.url.path or "/"
        if path.startswith("/v1"):
            hdr = request.headers.get("x-sky-token") or ""
            if not secrets.compare_digest(hdr, _get_or_create_token()):
                logger.warning("Rejected request: missing/invalid X-Sky-Token")
                return JSONResponse({"error": "unauthorized"}, status_code=401)
        return await call_next(request)

    # ---- Health & Ping -------------------------------------------------------

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "name": "SkyBridge Agent", "port": settings.SKY_PORT}

    @app.get("/v1/ping")
    async def ping() -> Dict[str, Any]:
        t = _get_or_create_token()
        return {"pong": "pong", "token_last4": t[-4:]}

    @app.post("/v1/token")
    async def token_post(body: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
        """Body: {"op": "ensure"} or {"op": "reset"}; reset takes effect immediately."""
        op = str((body or {}).get("op", "ensure")).lower()
        if op == "reset":
            return {"token": _reset_token()}
        return {"token": _get_or_create_token()}

    # ---- Spotify session -----------------------------------------------------

    @app.get("/v1/spotify/status")
    async def spotify_status(request: Request, refresh: bool = Query(True)) -> Dict[str, Any]:
        status = await _session(request).get_status(refresh=refresh)
        return {"ok": True, "status": status.model_dump()}

    @app.post("/v1/spotify/auth")
    async def spotify_auth(request: Request) -> Dict[str, Any]:
        result = await _session(request).begin_auth()
        return {"ok": True, **result.model_dump()}

    @app.post("/v1/spotify/disconnect")
    async def spotify_disconnect(request: Request) -> Dict[str, Any]:
        status = await _session(request).disconnect()
        return {"ok": True, "status": status.model_dump()}

    @app.post("/v1/spotify/command")
    async def spotify_command(request: Request, body: Dict[str, Any] = Body(...)):
        try:
            command = _COMMANDS.validate_python(body)
        except ValidationError as exc:
            return JSONResponse(_error_body("invalid_command", str(exc)), status_code=422)
        snapshot = await _session(request).dispatch(command)
        return {"ok": True, "playback": snapshot.model_dump() if snapshot else None}

    @app.get("/v1/spotify/playback")
    async def spotify_playback(request: Request) -> Dict[str, Any]:
        snapshot = await _session(request).fetch_playback()
        return {"ok": True, "playback": snapshot.model_dump() if snapshot else None}

    @app.get("/v1/spotify/devices")
    async def spotify_devices(request: Request) -> Dict[str, Any]:
        devices = await _session(request).list_devices()
        return {"ok": True, "devices": [d.model_dump() for d in devices]}

    @app.get("/v1/spotify/search")
    async def spotify_search(
        request: Request,
        q: str = Query(""),
        types: Optional[List[str]] = Query(None),
    ) -> Dict[str, Any]:
        results = await _session(request).search(q, types)
        return {"ok": True, "results": results.model_dump()}

    @app.get("/v1/spotify/library")
    async def spotify_library(request: Request) -> Dict[str, Any]:
        library = await _session(request).library()
        return {"ok": True, "library": library.model_dump()}

    @app.post("/v1/spotify/play-uri")
    async def spotify_play_uri(request: Request, body: PlaybackRequest) -> Dict[str, Any]:
        snapshot = await _session(request).play_uri(body)
        return {"ok": True, "playback": snapshot.model_dump() if snapshot else None}

    @app.post("/v1/spotify/queue")
    async def spotify_queue(request: Request, body: QueueRequest) -> Dict[str, Any]:
        await _session(request).queue(body.uri)
        return {"ok": True, "uri": body.uri}

    @app.get("/v1/spotify/events")
    async def spotify_events(since: int = Query(0)) -> Dict[str, Any]:
        """Events newer than `since` (an event id), oldest first."""
        return {"ok": True, "events": [e for e in recent if e["id"] > since]}

    # ---- Spotify client-id store (public client id only) ---------------------

    @app.get("/v1/spotify/client-id")
    async def spotify_client_id_get() -> Dict[str, Any]:
        return {"ok": True, "client_id_set": bool(spotify_config.get_client_id())}

    @app.post("/v1/spotify/client-id")
    async def spotify_client_id(request: Request, body: Dict[str, Any] = Body(...)):
        """
        Body:
          { "op": "set", "client_id": "..." }
          { "op": "clear" }
          or {} -> returns whether a client_id is stored.
        The session is rebuilt after a change so the next auth uses the new id.
        """
        op = str(body.get("op") or "").lower()
        if op == "set":
            cid = str(body.get("client_id") or "").strip()
            if not cid:
                return JSONResponse(_error_body("invalid_request", "missing client_id"), status_code=400)
            spotify_config.set_client_id(cid)
        elif op == "clear":
            spotify_config.clear_client_id()
        else:
            return {"ok": True, "client_id_set": bool(spotify_config.get_client_id())}

        await request.app.state.session.aclose()
        await _install_session(request.app)
        logger.info("Spotify Client ID {}; session rebuilt", "updated" if op == "set" else "cleared")
        return {"ok": True, "client_id_set": op == "set"}

    return app


app = create_app()


# --------------- Runner -------------------


def main() -> None:
    """Run uvicorn with external logging disabled (Loguru handles logs)."""
    import uvicorn

    config = uvicorn.Config(
        app,
        host=settings.SKY_HOST,
        port=settings.SKY_PORT,
        log_config=None,
        access_log=False,
        loop="asyncio",
        lifespan="on",
    )

    server = uvicorn.Server(config)
    logger.info("Starting Uvicorn on {}:{}", settings.SKY_HOST, settings.SKY_PORT)
    try:
        server.run()  # blocking
    except Exception:  # noqa: BLE001
        logger.exception("Fatal error starting SkyBridge Agent")
        raise
    finally:
        logger.info("Uvicorn exited (graceful={})", getattr(server, "should_exit", None))


if __name__ == "__main__":
    main()
