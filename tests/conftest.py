"""
Goal: Shared fixtures. A throwaway app dir is set before anything imports settings,
and Spotify is faked with httpx.MockTransport so no test touches the network.
"""

import os
import tempfile

os.environ.setdefault("SKY_APP_DIR", tempfile.mkdtemp(prefix="sky-tests-"))

from typing import Any, Callable, Dict, List, Optional, Tuple  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from skybridge.auth.helpers import now_ms  # noqa: E402
from skybridge.auth.spotify_config import SpotifyAuthOptions  # noqa: E402
from skybridge.auth.token_store import TokenStore  # noqa: E402
from skybridge.models.schemas import TokenSet  # noqa: E402
from skybridge.services.devices import DeviceActivationPolicy  # noqa: E402
from skybridge.services.session import SpotifySession  # noqa: E402

CLIENT_ID = "client-123"
REDIRECT_URI = "http://127.0.0.1:0/callback"

Reply = Tuple[int, Any]


class FakeSpotify:
    """
    Routes (method, path) to queued replies. A reply is (status, body) or a callable
    taking the request and returning one. The last queued reply repeats.
    Paths are the raw URL paths: "/v1/me/player", "/api/token", ...
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, path: str, *replies: Any) -> "FakeSpotify":
        self.routes[(method.upper(), path)] = list(replies)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"status": 404, "message": "no such route"}})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            reply = reply(request)
        status, body = reply
        if body is None:
            return httpx.Response(status)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def calls_to(self, method: str, path: str) -> List[httpx.Request]:
        return [c for c in self.calls if c.method == method and c.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeListener:
    """Stands in for CallbackListener so session tests never open sockets."""

    instances: List["FakeListener"] = []

    def __init__(self, redirect_uri: str, on_callback, on_timeout) -> None:
        self.redirect_uri = redirect_uri
        self.on_callback = on_callback
        self.on_timeout = on_timeout
        self.started = False
        self.stopped = False
        FakeListener.instances.append(self)

    async def ensure_listening(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


def token_json(access: str = "access-1", refresh: Optional[str] = "refresh-1", expires_in: int = 3600, scope: str = "user-read-private") -> Dict[str, Any]:
    data: Dict[str, Any] = {"access_token": access, "token_type": "Bearer", "expires_in": expires_in, "scope": scope}
    if refresh:
        data["refresh_token"] = refresh
    return data


def playback_json(is_playing: bool = True, active: bool = True, device_id: str = "dev-1") -> Dict[str, Any]:
    return {
        "is_playing": is_playing,
        "progress_ms": 1200,
        "shuffle_state": False,
        "repeat_state": "off",
        "device": {"id": device_id, "name": "MacBook", "type": "Computer", "volume_percent": 50, "is_active": active},
        "item": {
            "id": "track-1",
            "uri": "spotify:track:track-1",
            "name": "Song",
            "duration_ms": 200000,
            "explicit": False,
            "artists": [{"name": "Band"}],
            "album": {"id": "album-1", "name": "Record", "images": [{"url": "big"}, {"url": "medium"}]},
        },
    }


def devices_json(*devices: Dict[str, Any]) -> Dict[str, Any]:
    return {"devices": list(devices)}


def device(dev_id: Optional[str] = "dev-1", name: str = "MacBook", active: bool = False) -> Dict[str, Any]:
    return {"id": dev_id, "name": name, "type": "Computer", "volume_percent": 40, "is_active": active}


def make_tokens(expires_in_ms: int = 3_600_000, refresh: Optional[str] = "refresh-1") -> TokenSet:
    return TokenSet(
        access_token="access-1",
        refresh_token=refresh,
        expires_at=now_ms() + expires_in_ms,
        scope="user-read-private user-modify-playback-state",
    )


ZERO_POLICY = DeviceActivationPolicy(0, 0, 0, 0)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake() -> FakeSpotify:
    return FakeSpotify()


@pytest.fixture
def options() -> SpotifyAuthOptions:
    return SpotifyAuthOptions(client_id=CLIENT_ID, redirect_uri=REDIRECT_URI)


@pytest.fixture
def store(tmp_path) -> TokenStore:
    return TokenStore(tmp_path / "spotify-token.v1", CLIENT_ID)


@pytest.fixture
def opened_urls() -> List[str]:
    return []


@pytest.fixture
def make_session(fake, options, store, opened_urls) -> Callable[..., SpotifySession]:
    FakeListener.instances.clear()

    def _open(url: str) -> bool:
        opened_urls.append(url)
        return True

    def factory(session_options: Optional[SpotifyAuthOptions] = None, **overrides: Any) -> SpotifySession:
        kwargs: Dict[str, Any] = dict(
            store=store,
            http=fake.client(),
            policy=ZERO_POLICY,
            browser_opener=_open,
            listener_factory=FakeListener,
        )
        kwargs.update(overrides)
        return SpotifySession(session_options or options, **kwargs)

    return factory
