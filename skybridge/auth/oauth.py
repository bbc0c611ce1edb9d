"""
Goal: Spotify OAuth (PKCE) for a desktop app.
- begin: validate config, mint verifier/challenge/state, build the authorize URL.
- exchange: authorization code -> TokenSet (state must match the pending transaction).
- refresh: refresh token -> new access token; any rejection ends the session.
Tokens never hit the logs.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse

import httpx
from loguru import logger

from skybridge.auth.helpers import (is_http_redirect, new_state,
                                    new_verifier_and_challenge, now_ms)
from skybridge.auth.spotify_config import SpotifyAuthOptions
from skybridge.auth.token_store import TokenStore
from skybridge.errors import (ConfigurationError, SpotifyUnavailableError,
                              StateMismatchError, TokenExchangeError,
                              TokenRefreshError)
from skybridge.models.schemas import PendingAuthTransaction, TokenSet
from skybridge.models.state import SessionState

# Spotify OAuth endpoints (per Spotify docs)
AUTH_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

# Stored expiry is pulled in by this much so refresh happens before Spotify rejects us
EXPIRY_MARGIN_MS = 60_000
# Pre-flight refresh window on top of the stored margin
REFRESH_LEEWAY_MS = 30_000


def validate_options(options: SpotifyAuthOptions) -> None:
    """
    Raise ConfigurationError unless client id and an http:// loopback redirect are set.
    """
    if not options.client_id or not options.redirect_uri:
        raise ConfigurationError("Spotify credentials are not configured")
    if not is_http_redirect(options.redirect_uri):
        raise ConfigurationError("SPOTIFY_REDIRECT_URI must be a valid HTTP/S URL")
    if urlparse(options.redirect_uri).scheme != "http":
        raise ConfigurationError(
            "SPOTIFY_REDIRECT_URI must use http:// for the local callback server"
        )


def new_transaction() -> Tuple[PendingAuthTransaction, str]:
    """Fresh pending transaction plus the S256 challenge that goes in the URL."""
    verifier, challenge = new_verifier_and_challenge(32)
    pending = PendingAuthTransaction(
        verifier=verifier, state=new_state(16), created_at=now_ms()
    )
    return pending, challenge


def build_authorization_url(options: SpotifyAuthOptions, state: str, challenge: str) -> str:
    params = {
        "response_type": "code",
        "client_id": options.client_id,
        "redirect_uri": options.redirect_uri,
        "state": state,
        "code_challenge_method": "S256",
        "code_challenge": challenge,
        "scope": " ".join(options.scopes),
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _tokens_from_response(data: Dict[str, Any], previous: Optional[TokenSet] = None) -> TokenSet:
    expires_in = int(data.get("expires_in") or 3600)
    refresh = data.get("refresh_token") or (previous.refresh_token if previous else None)
    scope = data.get("scope") or (previous.scope if previous else None)
    return TokenSet(
        access_token=str(data["access_token"]),
        refresh_token=str(refresh) if refresh else None,
        scope=str(scope) if scope else None,
        expires_at=now_ms() + expires_in * 1000 - EXPIRY_MARGIN_MS,
    )


class TokenEngine:
    """
    Owns every TokenSet mutation. Works on a SessionState handed in by the caller
    and persists after each change.
    """

    def __init__(
        self,
        options: SpotifyAuthOptions,
        http: httpx.AsyncClient,
        store: Optional[TokenStore],
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> None:
        self.options = options
        self.http = http
        self.store = store
        self._on_disconnect = on_disconnect

    @staticmethod
    def needs_refresh(tokens: TokenSet) -> bool:
        return now_ms() >= tokens.expires_at - REFRESH_LEEWAY_MS

    def load(self, state: SessionState) -> Optional[TokenSet]:
        state.tokens = self.store.load() if self.store else None
        return state.tokens

    async def exchange(self, state: SessionState, code: str, callback_state: Optional[str]) -> TokenSet:
        pending = state.pending
        if pending is None:
            raise StateMismatchError("No pending OAuth transaction")
        if not callback_state or callback_state != pending.state:
            # pending stays until a callback with the matching state arrives
            raise StateMismatchError("State mismatch")
        state.pending = None

        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.options.redirect_uri,
            "client_id": self.options.client_id,
            "code_verifier": pending.verifier,
        }
        r = await self._post(payload)
        if not r.is_success:
            raise TokenExchangeError(
                f"Spotify token exchange failed: {r.text}", detail=r.text
            )
        try:
            data = r.json() or {}
        except ValueError as exc:
            raise TokenExchangeError(
                "Spotify token exchange returned an unreadable response", detail=r.text
            ) from exc
        if not data.get("access_token"):
            raise TokenExchangeError("Spotify token exchange returned no access token", detail=r.text)

        state.tokens = _tokens_from_response(data)
        self._persist(state)
        logger.info("Spotify account linked (scope count={})", len((state.tokens.scope or "").split()))
        return state.tokens

    async def refresh(self, state: SessionState) -> TokenSet:
        current = state.tokens
        if current is None or not current.refresh_token:
            self.disconnect(state)
            raise TokenRefreshError("Spotify session expired; connect again")

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": self.options.client_id,
        }
        r = await self._post(payload)
        if not r.is_success:
            logger.warning("Spotify token refresh rejected ({}); disconnecting", r.status_code)
            self.disconnect(state)
            raise TokenRefreshError(f"Failed to refresh Spotify token: {r.reason_phrase or r.status_code}")
        try:
            data = r.json() or {}
        except ValueError as exc:
            logger.warning("Spotify token refresh returned a non-JSON body; disconnecting")
            self.disconnect(state)
            raise TokenRefreshError("Spotify token refresh returned an unreadable response") from exc
        if not data.get("access_token"):
            self.disconnect(state)
            raise TokenRefreshError("Spotify token refresh returned no access token")

        state.tokens = _tokens_from_response(data, previous=current)
        self._persist(state)
        logger.debug("Spotify access token refreshed")
        return state.tokens

    def disconnect(self, state: SessionState) -> None:
        state.clear_session()
        if self.store:
            self.store.save(None)
        if self._on_disconnect:
            self._on_disconnect()

    def _persist(self, state: SessionState) -> None:
        if self.store:
            self.store.save(state.tokens)

    async def _post(self, payload: Dict[str, str]) -> httpx.Response:
        if self.options.client_secret:
            payload["client_secret"] = self.options.client_secret
        try:
            return await self.http.post(
                TOKEN_URL,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TransportError as exc:
            raise SpotifyUnavailableError(f"Could not reach Spotify accounts service: {exc}") from exc
