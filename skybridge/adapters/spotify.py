"""
Spotify Web API adapter (bearer auth + JSON mapping)

Goals
- One place that talks to https://api.spotify.com/v1 with the session's access token.
- Pre-flight refresh when the token is about to expire; on a 401, refresh once and retry once.
- Map Spotify's JSON into our pydantic models (tracks, devices, playback, profile).
- Never log tokens.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import httpx
from loguru import logger

from skybridge.auth.helpers import now_ms
from skybridge.auth.oauth import TokenEngine
from skybridge.errors import (NotConnectedError, SpotifyApiError,
                              SpotifyUnavailableError, UnauthorizedError)
from skybridge.models.schemas import (AccountProfile, DeviceInfo,
                                      PlaybackSnapshot, TrackInfo)
from skybridge.models.state import SessionState

API_BASE = "https://api.spotify.com/v1"


def error_message(r: httpx.Response) -> str:
    """
    Best human-readable reason from a failed response: error.message, raw body, or status text.
    """
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return str(body.get("error_description") or err)
    return r.text or r.reason_phrase or f"HTTP {r.status_code}"


def json_body(r: httpx.Response) -> Any:
    """Decoded body of a 2xx answer; a body that is not JSON is a SpotifyApiError."""
    try:
        return r.json()
    except ValueError as exc:
        logger.warning("Spotify returned a non-JSON body for {} ({})", r.request.url.path, r.status_code)
        raise SpotifyApiError("Spotify returned an unreadable response", status=r.status_code) from exc


class SpotifyApi:
    def __init__(self, engine: TokenEngine, http: httpx.AsyncClient, base_url: str = API_BASE) -> None:
        self.engine = engine
        self.http = http
        self.base_url = base_url.rstrip("/")

    async def request(
        self,
        state: SessionState,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        allow_retry: bool = True,
    ) -> httpx.Response:
        """
        Authenticated call. Returns the response whatever its status, except:
        a second 401 disconnects and raises UnauthorizedError.
        """
        if state.tokens is None:
            raise NotConnectedError("Spotify account is not connected")
        if self.engine.needs_refresh(state.tokens):
            await self.engine.refresh(state)
        tokens = state.tokens
        if tokens is None:
            raise NotConnectedError("Spotify access token is not available")

        headers = {"Authorization": f"Bearer {tokens.access_token}"}
        try:
            r = await self.http.request(
                method, f"{self.base_url}{path}", params=params, json=json, headers=headers
            )
        except httpx.TransportError as exc:
            raise SpotifyUnavailableError(f"Could not reach Spotify: {exc}") from exc

        if r.status_code == 401:
            if allow_retry:
                logger.info("Spotify returned 401 for {} {}; refreshing and retrying once", method, path)
                await self.engine.refresh(state)
                return await self.request(state, method, path, params=params, json=json, allow_retry=False)
            logger.warning("Spotify still returned 401 after refresh; disconnecting")
            self.engine.disconnect(state)
            raise UnauthorizedError("Spotify rejected the session; connect again")
        return r

    async def request_json(self, state: SessionState, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """request() for endpoints we read: 204 -> {}, non-2xx -> SpotifyApiError."""
        r = await self.request(state, method, path, **kwargs)
        if r.status_code == 204:
            return {}
        if not r.is_success:
            raise SpotifyApiError(error_message(r) or "Spotify request failed", status=r.status_code)
        if not r.content:
            return {}
        data = json_body(r)
        return data if isinstance(data, dict) else {}

    # ---------- reads used by the session ----------

    async def get_profile(self, state: SessionState) -> Optional[AccountProfile]:
        """Profile is nice-to-have: a non-2xx answer just means we keep the old one."""
        r = await self.request(state, "GET", "/me")
        if not r.is_success:
            logger.info("Spotify profile fetch returned {}", r.status_code)
            return None
        if not r.content:
            return None
        return map_profile(json_body(r) or {})

    async def get_playback(self, state: SessionState) -> Optional[PlaybackSnapshot]:
        """None when nothing is playing anywhere (204) or there is no player (404)."""
        r = await self.request(state, "GET", "/me/player")
        if r.status_code in (204, 404):
            return None
        if not r.is_success:
            raise SpotifyApiError(f"Playback fetch failed: {error_message(r)}", status=r.status_code)
        if not r.content:
            return None
        return map_playback(json_body(r) or {})

    async def list_devices(self, state: SessionState) -> List[DeviceInfo]:
        r = await self.request(state, "GET", "/me/player/devices")
        if not r.is_success:
            message = error_message(r)
            logger.error("Failed to get Spotify devices: {}", message)
            raise SpotifyApiError(f"Failed to load Spotify devices: {message}", status=r.status_code)
        devices = (json_body(r) or {}).get("devices") or []
        out = [map_device(d) for d in devices if isinstance(d, dict)]
        logger.debug(
            "Available devices: {}",
            [{"name": d.name, "type": d.type, "is_active": d.is_active} for d in out],
        )
        return out


# ---------- JSON -> models ----------


def pick_image(images: Any, preferred: int = 0) -> Optional[str]:
    if not isinstance(images, list) or not images:
        return None
    pick = images[preferred] if len(images) > preferred else images[0]
    return (pick or {}).get("url")


def names_of(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    return [str(i.get("name")) for i in items if isinstance(i, dict) and i.get("name")]


def map_track(d: Any) -> Optional[TrackInfo]:
    if not isinstance(d, dict):
        return None
    album = d.get("album") or {}
    return TrackInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        album=album.get("name"),
        album_id=album.get("id"),
        artists=names_of(d.get("artists")),
        image_url=pick_image(album.get("images"), 1),
        duration_ms=d.get("duration_ms"),
        explicit=d.get("explicit"),
        preview_url=d.get("preview_url"),
    )


def map_device(d: Mapping[str, Any]) -> DeviceInfo:
    return DeviceInfo(
        id=d.get("id"),
        name=d.get("name"),
        type=d.get("type"),
        volume_percent=d.get("volume_percent"),
        is_active=bool(d.get("is_active")),
    )


def map_profile(d: Mapping[str, Any]) -> AccountProfile:
    return AccountProfile(
        id=d.get("id"),
        display_name=d.get("display_name"),
        product=d.get("product"),
        country=d.get("country"),
    )


def map_playback(d: Mapping[str, Any]) -> PlaybackSnapshot:
    device = d.get("device")
    repeat = d.get("repeat_state")
    return PlaybackSnapshot(
        is_playing=bool(d.get("is_playing")),
        progress_ms=int(d.get("progress_ms") or 0),
        track=map_track(d.get("item")),
        device=map_device(device) if isinstance(device, dict) else None,
        shuffle_state=d.get("shuffle_state"),
        repeat_state=repeat if repeat in ("off", "track", "context") else None,
        updated_at=now_ms(),
    )
