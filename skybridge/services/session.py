"""
Goal: The one object the rest of Sky talks to for Spotify.

It owns the SessionState and wires the pieces together:
  begin_auth -> PKCE transaction + loopback listener + browser
  handle_callback -> token exchange -> profile + playback refresh
  dispatch -> device activation + playback call + fresh snapshot
and reports everything through the EventBus (AuthUpdated / PlaybackUpdated / AuthError).
Errors always reach both the event bus and the caller.
"""

from __future__ import annotations

import webbrowser
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

import httpx
from anyio import to_thread
from loguru import logger

from skybridge import settings
from skybridge.adapters.spotify import SpotifyApi
from skybridge.auth.listener import (CallbackHandler, CallbackListener,
                                     TimeoutHandler)
from skybridge.auth.oauth import (TokenEngine, build_authorization_url,
                                  new_transaction, validate_options)
from skybridge.auth.spotify_config import SpotifyAuthOptions
from skybridge.auth.token_store import TokenStore
from skybridge.errors import (AuthorizationError, NotConnectedError,
                              SkyBridgeError)
from skybridge.models.schemas import (DeviceInfo, LibraryState,
                                      PlaybackCommand, PlaybackRequest,
                                      PlaybackSnapshot, SearchResults,
                                      SessionStatus, StartAuthResult)
from skybridge.models.state import SessionState
from skybridge.services.catalog import SpotifyCatalog
from skybridge.services.devices import (ActiveDevice, DeviceActivationPolicy,
                                        DeviceActivator)
from skybridge.services.events import (AuthError, AuthUpdated, EventBus,
                                       PlaybackUpdated)
from skybridge.services.playback import PlaybackDispatcher

T = TypeVar("T")

ListenerFactory = Callable[[str, CallbackHandler, TimeoutHandler], CallbackListener]


class SpotifySession:
    def __init__(
        self,
        options: SpotifyAuthOptions,
        *,
        store: Optional[TokenStore] = None,
        http: Optional[httpx.AsyncClient] = None,
        events: Optional[EventBus] = None,
        policy: Optional[DeviceActivationPolicy] = None,
        browser_opener: Callable[[str], bool] = webbrowser.open,
        listener_factory: Optional[ListenerFactory] = None,
        token_path: Path = settings.TOKEN_PATH,
        http_timeout: float = settings.HTTP_TIMEOUT,
        auth_timeout: float = settings.AUTH_TIMEOUT,
    ) -> None:
        self.options = options
        self.state = SessionState()
        self.events = events or EventBus()
        if store is None and options.key_seed:
            store = TokenStore(token_path, options.key_seed)
        self.store = store

        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=http_timeout)
        self.tokens = TokenEngine(options, self.http, store, on_disconnect=self._publish_status)
        self.api = SpotifyApi(self.tokens, self.http)
        self.devices = DeviceActivator(self.api, self._fetch_snapshot, policy)
        self.player = PlaybackDispatcher(self.api, self.devices, self._fetch_snapshot)
        self.catalog = SpotifyCatalog(self.api, self.devices, self.preferred_market)

        self._browser_opener = browser_opener
        self._listener_factory = listener_factory or self._default_listener
        self._auth_timeout = auth_timeout
        self._listener: Optional[CallbackListener] = None
        self._loaded = False

    # ---------- lifecycle ----------

    async def initialize(self) -> SessionStatus:
        """Load the stored session and, if there is one, bring profile/playback up to date."""
        self._ensure_loaded()
        if self.state.connected:
            await self._refresh_connected_state()
            self._publish_status()
        return self.status()

    async def aclose(self) -> None:
        await self._stop_listener()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "SpotifySession":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.tokens.load(self.state)
            self._loaded = True

    # ---------- auth ----------

    async def begin_auth(self) -> StartAuthResult:
        try:
            validate_options(self.options)
            pending, challenge = new_transaction()
            # supersedes any earlier transaction and its listener
            self.state.pending = pending
            await self._stop_listener()
            listener = self._listener_factory(
                self.options.redirect_uri, self.handle_callback, self._on_auth_timeout
            )
            self._listener = listener
            await listener.ensure_listening()
        except SkyBridgeError as exc:
            self.state.pending = None
            self._report(exc)
            raise

        url = build_authorization_url(self.options, pending.state, challenge)
        await self._open_browser(url)
        logger.info("Spotify authorization started")
        return StartAuthResult(state=pending.state, url=url)

    async def handle_callback(self, code: Optional[str], state: Optional[str], error: Optional[str] = None) -> None:
        """Entry point for the loopback listener. Raises after reporting on any failure."""
        try:
            if error:
                raise AuthorizationError(f"Spotify authorization failed: {error}")
            if not code:
                raise AuthorizationError("Missing authorization code")
            await self.complete_auth(code, state)
        except Exception as exc:
            self._report(exc)
            raise

    async def complete_auth(self, code: str, state: Optional[str]) -> SessionStatus:
        self._loaded = True
        await self.tokens.exchange(self.state, code, state)
        await self._refresh_connected_state()
        status = self.status()
        self.events.publish(AuthUpdated(status))
        return status

    async def disconnect(self) -> SessionStatus:
        self._loaded = True
        self.tokens.disconnect(self.state)
        logger.info("Spotify account disconnected")
        return self.status()

    def _on_auth_timeout(self) -> None:
        self.state.pending = None
        self.events.publish(AuthError("Timed out waiting for Spotify authorization. Try connecting again."))

    def _default_listener(
        self, redirect_uri: str, on_callback: CallbackHandler, on_timeout: TimeoutHandler
    ) -> CallbackListener:
        return CallbackListener(redirect_uri, on_callback, on_timeout, timeout=self._auth_timeout)

    async def _stop_listener(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            await listener.stop()

    async def _open_browser(self, url: str) -> None:
        try:
            opened = await to_thread.run_sync(self._browser_opener, url)
        except Exception:  # noqa: BLE001
            # caller still has the URL
            logger.exception("Could not open the browser for Spotify login")
            return
        if not opened:
            logger.warning("Browser did not confirm opening the Spotify login page")

    # ---------- status ----------

    def status(self) -> SessionStatus:
        return self.state.status(self.options.scopes)

    async def get_status(self, refresh: bool = True) -> SessionStatus:
        """
        Projection of the current session. With refresh=True a connected session also
        re-reads profile and playback first; a disconnected one never touches the network.
        """
        self._ensure_loaded()
        if refresh and self.state.connected:
            await self._refresh_connected_state()
        return self.status()

    def preferred_market(self) -> Optional[str]:
        profile = self.state.profile
        return profile.country if profile and profile.country else None

    async def refresh_profile(self) -> None:
        profile = await self.api.get_profile(self.state)
        if profile is not None:
            self.state.profile = profile

    async def _refresh_connected_state(self) -> None:
        """Profile + playback after token acquisition; failures are reported, not fatal."""
        try:
            await self.refresh_profile()
            await self._fetch_snapshot(self.state)
        except SkyBridgeError as exc:
            logger.warning("Spotify session refresh failed: {}", exc)
            self._report(exc)

    # ---------- playback ----------

    async def fetch_playback(self) -> Optional[PlaybackSnapshot]:
        self._ensure_loaded()
        if not self.state.connected:
            return None
        try:
            return await self._fetch_snapshot(self.state)
        except SkyBridgeError as exc:
            self._report(exc)
            raise

    async def dispatch(self, command: PlaybackCommand) -> Optional[PlaybackSnapshot]:
        self._ensure_loaded()
        try:
            if not self.state.connected:
                raise NotConnectedError("Spotify account is not connected")
            return await self.player.dispatch(self.state, command)
        except Exception as exc:
            self._report(exc)
            raise

    async def ensure_playback_device(self, auto_play: bool = False) -> ActiveDevice:
        self._ensure_loaded()
        try:
            return await self.devices.ensure_active_device(self.state, auto_play_on_transfer=auto_play)
        except SkyBridgeError as exc:
            self._report(exc)
            raise

    # ---------- catalog ----------

    async def list_devices(self) -> List[DeviceInfo]:
        return await self._catalog_call(lambda: self.catalog.devices_list(self.state))

    async def search(self, query: str, categories: Optional[Sequence[str]] = None) -> SearchResults:
        return await self._catalog_call(lambda: self.catalog.search(self.state, query, categories))

    async def library(self) -> LibraryState:
        return await self._catalog_call(lambda: self.catalog.library(self.state))

    async def play_uri(self, request: PlaybackRequest) -> Optional[PlaybackSnapshot]:
        """Start a track or context, then return the snapshot Spotify reports afterwards."""
        await self._catalog_call(lambda: self.catalog.play(self.state, request))
        return await self.fetch_playback()

    async def queue(self, uri: str) -> None:
        await self._catalog_call(lambda: self.catalog.queue(self.state, uri))

    async def _catalog_call(self, call: Callable[[], Awaitable[T]]) -> T:
        self._ensure_loaded()
        try:
            return await call()
        except SkyBridgeError as exc:
            self._report(exc)
            raise

    async def _fetch_snapshot(self, state: SessionState) -> Optional[PlaybackSnapshot]:
        snapshot = await self.api.get_playback(state)
        state.playback = snapshot
        self.events.publish(PlaybackUpdated(snapshot))
        if snapshot is not None:
            self._publish_status()
        return snapshot

    # ---------- events ----------

    def _publish_status(self) -> None:
        self.events.publish(AuthUpdated(self.status()))

    def _report(self, exc: BaseException) -> None:
        self.events.publish(AuthError(str(exc) or type(exc).__name__))
