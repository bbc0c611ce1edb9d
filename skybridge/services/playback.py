"""
Goal: Turn a PlaybackCommand into Web API calls.
Activation first, then the call, then a fresh snapshot of what Spotify reports.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from loguru import logger

from skybridge.adapters.spotify import SpotifyApi, error_message
from skybridge.errors import NoActiveDeviceError, PlaybackCommandError
from skybridge.models.schemas import (NextCommand, PauseCommand, PlayCommand,
                                      PlaybackCommand, PlaybackSnapshot,
                                      PreviousCommand, RefreshCommand,
                                      SetShuffleCommand, SetVolumeCommand,
                                      TogglePlayCommand)
from skybridge.models.state import SessionState
from skybridge.services.devices import DeviceActivator

SnapshotFetcher = Callable[[SessionState], Awaitable[Optional[PlaybackSnapshot]]]

# (method, path, verb used in error messages)
_PLAY = ("PUT", "/me/player/play", "play")
_PAUSE = ("PUT", "/me/player/pause", "pause")
_NEXT = ("POST", "/me/player/next", "skip")
_PREVIOUS = ("POST", "/me/player/previous", "go back")

NO_ACTIVE_DEVICE = (
    "No active Spotify device found. Make sure Spotify is open and playing on at least one device."
)


def clamp_volume(value: float) -> int:
    return int(min(100, max(0, round(value))))


class PlaybackDispatcher:
    def __init__(self, api: SpotifyApi, devices: DeviceActivator, fetch_snapshot: SnapshotFetcher) -> None:
        self.api = api
        self.devices = devices
        self.fetch_snapshot = fetch_snapshot

    async def dispatch(self, session: SessionState, command: PlaybackCommand) -> Optional[PlaybackSnapshot]:
        if isinstance(command, RefreshCommand):
            return await self.fetch_snapshot(session)

        if isinstance(command, PlayCommand):
            await self._activate_and_call(session, True, _PLAY)
        elif isinstance(command, PauseCommand):
            await self._activate_and_call(session, False, _PAUSE)
        elif isinstance(command, TogglePlayCommand):
            playing = bool(session.playback and session.playback.is_playing)
            if playing:
                await self._activate_and_call(session, False, _PAUSE)
            else:
                await self._activate_and_call(session, True, _PLAY)
        elif isinstance(command, NextCommand):
            await self._activate_and_call(session, True, _NEXT)
        elif isinstance(command, PreviousCommand):
            await self._activate_and_call(session, True, _PREVIOUS)
        elif isinstance(command, SetVolumeCommand):
            value = clamp_volume(command.value)
            await self._activate_and_call(
                session, False, ("PUT", "/me/player/volume", "set volume"), params={"volume_percent": value}
            )
        elif isinstance(command, SetShuffleCommand):
            await self._activate_and_call(
                session,
                False,
                ("PUT", "/me/player/shuffle", "set shuffle"),
                params={"state": "true" if command.value else "false"},
            )
        else:
            raise ValueError(f"unsupported playback command: {command!r}")

        return await self.fetch_snapshot(session)

    async def _activate_and_call(
        self,
        session: SessionState,
        auto_play: bool,
        call: Tuple[str, str, str],
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        method, path, verb = call
        await self.devices.ensure_active_device(session, auto_play_on_transfer=auto_play)
        logger.info("Sending Spotify {} command", verb)
        r = await self.api.request(session, method, path, params=params)
        check_playback_response(r, verb)
        return r


def check_playback_response(r: httpx.Response, verb: str) -> None:
    """204/2xx are fine; 404 means no active device; anything else is a failed command."""
    if r.status_code == 404:
        logger.error("Spotify {} failed: 404 - no active device", verb)
        raise NoActiveDeviceError(NO_ACTIVE_DEVICE, status=404)
    if not r.is_success:
        message = error_message(r)
        logger.error("Spotify {} failed: {} - {}", verb, r.status_code, message)
        raise PlaybackCommandError(f"Failed to {verb}: {message}", status=r.status_code)
