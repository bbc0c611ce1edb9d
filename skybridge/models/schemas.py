"""
Goal: Pydantic models for the Spotify session: tokens, playback, status, commands and catalog items.
They double as the JSON contract of the local agent, so keep them boring.
"""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ---- auth ---------------------------------------------------------------------


class TokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    # epoch ms, already reduced by the 60s safety margin
    expires_at: int
    scope: Optional[str] = None


class PendingAuthTransaction(BaseModel):
    verifier: str
    state: str
    created_at: int


class AccountProfile(BaseModel):
    id: Optional[str] = None
    display_name: Optional[str] = None
    product: Optional[str] = None
    country: Optional[str] = None


class StartAuthResult(BaseModel):
    state: str
    url: str


# ---- playback -----------------------------------------------------------------


class TrackInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    album: Optional[str] = None
    album_id: Optional[str] = None
    artists: List[str] = []
    image_url: Optional[str] = None
    duration_ms: Optional[int] = None
    explicit: Optional[bool] = None
    preview_url: Optional[str] = None


class DeviceInfo(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    volume_percent: Optional[int] = None
    is_active: bool = False


class PlaybackSnapshot(BaseModel):
    is_playing: bool = False
    progress_ms: int = 0
    track: Optional[TrackInfo] = None
    device: Optional[DeviceInfo] = None
    shuffle_state: Optional[bool] = None
    repeat_state: Optional[Literal["off", "track", "context"]] = None
    updated_at: int


class SessionStatus(BaseModel):
    connected: bool
    scopes: List[str] = []
    expires_at: Optional[int] = None
    account: Optional[AccountProfile] = None
    playback: Optional[PlaybackSnapshot] = None


# ---- commands -----------------------------------------------------------------


class PlayCommand(BaseModel):
    type: Literal["play"] = "play"


class PauseCommand(BaseModel):
    type: Literal["pause"] = "pause"


class TogglePlayCommand(BaseModel):
    type: Literal["toggle-play"] = "toggle-play"


class NextCommand(BaseModel):
    type: Literal["next"] = "next"


class PreviousCommand(BaseModel):
    type: Literal["previous"] = "previous"


class SetVolumeCommand(BaseModel):
    type: Literal["set-volume"] = "set-volume"
    # clamped to 0..100 by the dispatcher, not here
    value: float


class SetShuffleCommand(BaseModel):
    type: Literal["set-shuffle"] = "set-shuffle"
    value: bool


class RefreshCommand(BaseModel):
    type: Literal["refresh"] = "refresh"


PlaybackCommand = Annotated[
    Union[
        PlayCommand,
        PauseCommand,
        TogglePlayCommand,
        NextCommand,
        PreviousCommand,
        SetVolumeCommand,
        SetShuffleCommand,
        RefreshCommand,
    ],
    Field(discriminator="type"),
]


# ---- catalog ------------------------------------------------------------------


class AlbumInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    artists: List[str] = []
    image_url: Optional[str] = None
    release_date: Optional[str] = None
    total_tracks: Optional[int] = None


class ArtistInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    image_url: Optional[str] = None
    followers: Optional[int] = None
    genres: Optional[List[str]] = None


class PlaylistInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    owner: Optional[str] = None
    image_url: Optional[str] = None
    track_count: Optional[int] = None
    description: Optional[str] = None


class ShowInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    publisher: Optional[str] = None
    image_url: Optional[str] = None
    media_type: Optional[str] = None


class EpisodeInfo(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    show_name: Optional[str] = None
    image_url: Optional[str] = None
    duration_ms: Optional[int] = None
    release_date: Optional[str] = None


class SearchResults(BaseModel):
    tracks: List[TrackInfo] = []
    albums: List[AlbumInfo] = []
    artists: List[ArtistInfo] = []
    playlists: List[PlaylistInfo] = []
    shows: List[ShowInfo] = []
    episodes: List[EpisodeInfo] = []


class LibraryState(BaseModel):
    recently_played: List[TrackInfo] = []
    saved_tracks: List[TrackInfo] = []
    saved_albums: List[AlbumInfo] = []
    playlists: List[PlaylistInfo] = []
    shows: List[ShowInfo] = []
    saved_episodes: List[EpisodeInfo] = []
    artists: List[ArtistInfo] = []


class PlaybackRequest(BaseModel):
    uri: str
    type: Literal["track", "context"] = "track"
    offset_uri: Optional[str] = None
    position_ms: Optional[int] = None


class QueueRequest(BaseModel):
    uri: str
