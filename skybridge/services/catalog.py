"""
Goal: Catalog and library helpers on top of the authenticated client:
search, library overview, play a URI, queue, like/unlike, device and queue listings.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from skybridge.adapters.spotify import (SpotifyApi, map_track, names_of,
                                       pick_image)
from skybridge.models.schemas import (AlbumInfo, ArtistInfo, DeviceInfo,
                                      EpisodeInfo, LibraryState,
                                      PlaybackRequest, PlaylistInfo,
                                      SearchResults, ShowInfo, TrackInfo)
from skybridge.models.state import SessionState
from skybridge.services.devices import DeviceActivator
from skybridge.services.playback import check_playback_response

T = TypeVar("T")

# category name the UI uses -> Spotify search "type"
SEARCH_TYPES = {
    "tracks": "track",
    "albums": "album",
    "artists": "artist",
    "playlists": "playlist",
    "shows": "show",
    "episodes": "episode",
}
SEARCH_LIMIT = 8
LIBRARY_LIMIT = 20


def map_album(d: Any) -> Optional[AlbumInfo]:
    if not isinstance(d, dict):
        return None
    return AlbumInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        artists=names_of(d.get("artists")),
        image_url=pick_image(d.get("images"), 1),
        release_date=d.get("release_date"),
        total_tracks=d.get("total_tracks"),
    )


def map_artist(d: Any) -> Optional[ArtistInfo]:
    if not isinstance(d, dict):
        return None
    genres = d.get("genres")
    return ArtistInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        image_url=pick_image(d.get("images"), 1),
        followers=(d.get("followers") or {}).get("total"),
        genres=list(genres[:3]) if isinstance(genres, list) else None,
    )


def map_playlist(d: Any) -> Optional[PlaylistInfo]:
    if not isinstance(d, dict):
        return None
    return PlaylistInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        owner=(d.get("owner") or {}).get("display_name"),
        image_url=pick_image(d.get("images")),
        track_count=(d.get("tracks") or {}).get("total"),
        description=d.get("description"),
    )


def map_show(d: Any) -> Optional[ShowInfo]:
    if not isinstance(d, dict):
        return None
    return ShowInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        publisher=d.get("publisher"),
        image_url=pick_image(d.get("images")),
        media_type=d.get("media_type"),
    )


def map_episode(d: Any) -> Optional[EpisodeInfo]:
    if not isinstance(d, dict):
        return None
    show = d.get("show") or {}
    return EpisodeInfo(
        id=d.get("id"),
        uri=d.get("uri"),
        name=d.get("name"),
        description=d.get("description"),
        show_name=show.get("name"),
        image_url=pick_image(d.get("images")) or pick_image(show.get("images")),
        duration_ms=d.get("duration_ms"),
        release_date=d.get("release_date"),
    )


def _collect(items: Iterable[Any], mapper: Callable[[Any], Optional[T]]) -> List[T]:
    out = []
    for item in items or []:
        mapped = mapper(item)
        if mapped is not None:
            out.append(mapped)
    return out


def _items(data: Dict[str, Any], key: Optional[str] = None) -> List[Any]:
    container = data.get(key) if key else data
    return list((container or {}).get("items") or [])


class SpotifyCatalog:
    def __init__(
        self,
        api: SpotifyApi,
        devices: DeviceActivator,
        preferred_market: Callable[[], Optional[str]],
    ) -> None:
        self.api = api
        self.devices = devices
        self.preferred_market = preferred_market

    @staticmethod
    def resolve_search_types(categories: Optional[Sequence[str]] = None) -> List[str]:
        wanted = [c for c in (categories or []) if c != "all"]
        selected = wanted or list(SEARCH_TYPES)
        return [SEARCH_TYPES[c] for c in selected if c in SEARCH_TYPES]

    async def search(
        self, session: SessionState, query: str, categories: Optional[Sequence[str]] = None
    ) -> SearchResults:
        trimmed = (query or "").strip()
        types = self.resolve_search_types(categories)
        if not trimmed or not types:
            return SearchResults()

        params = {
            "q": trimmed,
            "type": ",".join(types),
            "limit": str(SEARCH_LIMIT),
            "market": self.preferred_market() or "from_token",
        }
        data = await self.api.request_json(session, "GET", "/search", params=params)
        return SearchResults(
            tracks=_collect(_items(data, "tracks"), map_track),
            albums=_collect(_items(data, "albums"), map_album),
            artists=_collect(_items(data, "artists"), map_artist),
            playlists=_collect(_items(data, "playlists"), map_playlist),
            shows=_collect(_items(data, "shows"), map_show),
            episodes=_collect(_items(data, "episodes"), map_episode),
        )

    async def library(self, session: SessionState) -> LibraryState:
        limit = {"limit": str(LIBRARY_LIMIT)}
        (
            saved_tracks,
            saved_albums,
            playlists,
            shows,
            episodes,
            recent,
            following,
        ) = await asyncio.gather(
            self.api.request_json(session, "GET", "/me/tracks", params=limit),
            self.api.request_json(session, "GET", "/me/albums", params=limit),
            self.api.request_json(session, "GET", "/me/playlists", params=limit),
            self.api.request_json(session, "GET", "/me/shows", params=limit),
            self.api.request_json(session, "GET", "/me/episodes", params=limit),
            self.api.request_json(session, "GET", "/me/player/recently-played", params=limit),
            self.api.request_json(session, "GET", "/me/following", params={"type": "artist", **limit}),
        )
        return LibraryState(
            saved_tracks=_collect(_items(saved_tracks), lambda i: map_track((i or {}).get("track"))),
            saved_albums=_collect(_items(saved_albums), lambda i: map_album((i or {}).get("album"))),
            playlists=_collect(_items(playlists), map_playlist),
            shows=_collect(_items(shows), lambda i: map_show((i or {}).get("show") or i)),
            saved_episodes=_collect(_items(episodes), lambda i: map_episode((i or {}).get("episode") or i)),
            recently_played=_collect(_items(recent), lambda i: map_track((i or {}).get("track"))),
            artists=_collect(_items(following, "artists"), map_artist),
        )

    async def play(self, session: SessionState, request: PlaybackRequest) -> None:
        """
        Start a track or a context (album/playlist/show). Contexts are transferred with
        play=True; a single track waits for the play call to pick what starts.
        """
        await self.devices.ensure_active_device(session, auto_play_on_transfer=request.type != "track")
        body: Dict[str, Any]
        if request.type == "track":
            body = {"uris": [request.uri]}
        else:
            body = {"context_uri": request.uri}
            if request.offset_uri:
                body["offset"] = {"uri": request.offset_uri}
        if request.position_ms is not None:
            body["position_ms"] = request.position_ms
        r = await self.api.request(session, "PUT", "/me/player/play", json=body)
        check_playback_response(r, "play")

    async def queue(self, session: SessionState, uri: str) -> None:
        await self.api.request_json(session, "POST", "/me/player/queue", params={"uri": uri})

    async def set_track_saved(self, session: SessionState, track_id: str, saved: bool) -> None:
        await self.api.request_json(session, "PUT" if saved else "DELETE", "/me/tracks", params={"ids": track_id})

    async def set_album_saved(self, session: SessionState, album_id: str, saved: bool) -> None:
        await self.api.request_json(session, "PUT" if saved else "DELETE", "/me/albums", params={"ids": album_id})

    async def devices_list(self, session: SessionState) -> List[DeviceInfo]:
        return await self.api.list_devices(session)

    async def my_playlists(self, session: SessionState, limit: int = 50) -> List[PlaylistInfo]:
        data = await self.api.request_json(session, "GET", "/me/playlists", params={"limit": str(limit)})
        return _collect(_items(data), map_playlist)

    async def upcoming(self, session: SessionState) -> List[TrackInfo]:
        data = await self.api.request_json(session, "GET", "/me/player/queue")
        return _collect(data.get("queue") or [], map_track)
