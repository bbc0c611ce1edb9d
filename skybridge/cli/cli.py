r"""
Goal: Friendly, typed CLI for the SkyBridge agent.

- Export `app` (tests import this).
- Show "Sky Bridge CLI" in --help output.
- Talks to the local agent over httpx; /v1 calls send X-Sky-Token from env or the token file.
- Playback commands go through POST /v1/spotify/command with {"type": ...}.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

import httpx
import typer

from skybridge import settings

app = typer.Typer(
    help="Sky Bridge CLI",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _base_url() -> str:
    return os.getenv("SKY_URL", f"http://{settings.SKY_HOST}:{settings.SKY_PORT}")


def _headers() -> Dict[str, str]:
    tok = os.getenv("SKY_TOKEN")
    if not tok and settings.AGENT_TOKEN_PATH.exists():
        tok = settings.AGENT_TOKEN_PATH.read_text(encoding="utf-8").strip()
    return {"X-Sky-Token": tok or ""}


def _client(timeout: float = 15.0) -> httpx.Client:
    return httpx.Client(base_url=_base_url(), timeout=timeout, headers=_headers())


def _echo(r: httpx.Response) -> None:
    try:
        data: Any = r.json()
    except ValueError:
        data = {"ok": False, "status": r.status_code, "body": r.text}
    typer.echo(json.dumps(data, indent=2))
    if r.status_code >= 400:
        raise typer.Exit(1)


def _get(path: str, params: Optional[Dict[str, Any]] = None) -> None:
    try:
        with _client() as c:
            _echo(c.get(path, params=params))
    except httpx.TransportError as e:
        typer.echo(json.dumps({"ok": False, "error": f"agent unreachable: {e}"}, indent=2))
        raise typer.Exit(1)


def _post(path: str, payload: Optional[Dict[str, Any]] = None) -> None:
    try:
        with _client() as c:
            _echo(c.post(path, json=payload or {}))
    except httpx.TransportError as e:
        typer.echo(json.dumps({"ok": False, "error": f"agent unreachable: {e}"}, indent=2))
        raise typer.Exit(1)


def _command(payload: Dict[str, Any]) -> None:
    _post("/v1/spotify/command", payload)


@app.callback(help="Sky Bridge CLI")
def _root_callback() -> None:
    return None


# -----------------------
# Basic
# -----------------------
@app.command("health")
def health() -> None:
    _get("/health")


@app.command("token")
def token(
    op: Optional[str] = typer.Option(None, help="'show', 'ensure', or 'reset'")
) -> None:
    if op in (None, "show", "ensure"):
        payload = {"op": "ensure"}
    elif op == "reset":
        payload = {"op": "reset"}
    else:
        typer.echo("invalid op")
        raise typer.Exit(2)
    with _client() as c:
        r = c.post("/v1/token", json=payload)
    data = r.json()
    if "token" in data:
        settings.AGENT_TOKEN_PATH.parent.mkdir(parents=True, exist_ok=True)
        settings.AGENT_TOKEN_PATH.write_text(data["token"], encoding="utf-8")
    typer.echo(json.dumps(data, indent=2))


# -----------------------
# Spotify
# -----------------------
spotify = typer.Typer(help="Spotify account and playback")
app.add_typer(spotify, name="spotify")


@spotify.command("status")
def spotify_status(
    no_refresh: bool = typer.Option(False, "--no-refresh", help="Skip the profile/playback fetch")
) -> None:
    _get("/v1/spotify/status", {"refresh": str(not no_refresh).lower()})


@spotify.command("login")
def spotify_login() -> None:
    """Start authorization; the agent opens the browser and prints the URL too."""
    _post("/v1/spotify/auth")


@spotify.command("disconnect")
def spotify_disconnect() -> None:
    _post("/v1/spotify/disconnect")


@spotify.command("play")
def spotify_play(
    uri: Optional[str] = typer.Argument(None, help="Track or context URI; resume if omitted"),
    context: bool = typer.Option(False, "--context", help="Treat URI as an album/playlist/show"),
) -> None:
    if uri:
        _post("/v1/spotify/play-uri", {"uri": uri, "type": "context" if context else "track"})
    else:
        _command({"type": "play"})


@spotify.command("pause")
def spotify_pause() -> None:
    _command({"type": "pause"})


@spotify.command("toggle")
def spotify_toggle() -> None:
    _command({"type": "toggle-play"})


@spotify.command("next")
def spotify_next() -> None:
    _command({"type": "next"})


@spotify.command("previous")
def spotify_previous() -> None:
    _command({"type": "previous"})


@spotify.command("volume")
def spotify_volume(value: float = typer.Argument(..., help="0-100; out of range is clamped")) -> None:
    _command({"type": "set-volume", "value": value})


@spotify.command("shuffle")
def spotify_shuffle(state: str = typer.Argument(..., help="on or off")) -> None:
    if state.lower() not in ("on", "off"):
        typer.echo("state must be 'on' or 'off'")
        raise typer.Exit(2)
    _command({"type": "set-shuffle", "value": state.lower() == "on"})


@spotify.command("now")
def spotify_now() -> None:
    _get("/v1/spotify/playback")


@spotify.command("devices")
def spotify_devices() -> None:
    _get("/v1/spotify/devices")


@spotify.command("search")
def spotify_search(
    query: str,
    types: Optional[List[str]] = typer.Option(None, "--type", help="tracks, albums, artists, playlists, shows, episodes"),
) -> None:
    _get("/v1/spotify/search", {"q": query, "types": types or []})


@spotify.command("library")
def spotify_library() -> None:
    _get("/v1/spotify/library")


@spotify.command("queue")
def spotify_queue(uri: str) -> None:
    _post("/v1/spotify/queue", {"uri": uri})


@spotify.command("events")
def spotify_events(since: int = typer.Option(0, help="Only events after this id")) -> None:
    _get("/v1/spotify/events", {"since": since})


@spotify.command("client-id")
def spotify_client_id(
    client_id: Optional[str] = typer.Option(None), clear: bool = False
) -> None:
    payload: Dict[str, Any] = {}
    if clear:
        payload = {"op": "clear"}
    elif client_id:
        payload = {"op": "set", "client_id": client_id}
    _post("/v1/spotify/client-id", payload)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
