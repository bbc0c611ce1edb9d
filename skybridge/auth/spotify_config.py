"""
Goal: Store the Spotify Client ID per-user in the macOS Keychain (via keyring) and
assemble the options the session needs. Env vars win over the keychain so CI/dev can override.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from loguru import logger

from skybridge import settings

# One service bucket for all Spotify-related secrets for this app
_SERVICE = "SkyBridgeSpotify"
_K_CLIENT_ID = "client_id"

DEFAULT_SCOPES = [
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "user-read-private",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-public",
    "playlist-modify-private",
    "user-library-read",
    "user-library-modify",
    "user-follow-read",
    "user-read-recently-played",
    "user-read-playback-position",
    "user-top-read",
]


@dataclass(frozen=True)
class SpotifyAuthOptions:
    client_id: str
    redirect_uri: str
    client_secret: Optional[str] = None
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    # key source for the token file; falls back to secret, then client id
    token_secret: Optional[str] = None

    @property
    def key_seed(self) -> str:
        return self.token_secret or self.client_secret or self.client_id


def set_client_id(value: str) -> None:
    """
    Save the Spotify Client ID in the keychain.
    """
    if not value or not isinstance(value, str):
        raise ValueError("Client ID must be a non-empty string.")
    keyring.set_password(_SERVICE, _K_CLIENT_ID, value)


def get_client_id() -> Optional[str]:
    """
    Read the Spotify Client ID if previously saved. No keychain backend means "not saved".
    """
    try:
        return keyring.get_password(_SERVICE, _K_CLIENT_ID) or None
    except KeyringError:
        logger.warning("No usable keyring backend; Spotify Client ID must come from SPOTIFY_CLIENT_ID")
        return None


def clear_client_id() -> None:
    """
    Remove the saved Spotify Client ID. Clearing an absent entry is fine.
    """
    try:
        keyring.delete_password(_SERVICE, _K_CLIENT_ID)
    except PasswordDeleteError:
        pass


def load_options() -> SpotifyAuthOptions:
    """
    Build options from settings, preferring env over keychain for the Client ID.
    Missing values are left empty; begin_auth reports them as a ConfigurationError.
    """
    client_id = settings.SPOTIFY_CLIENT_ID or get_client_id() or ""
    return SpotifyAuthOptions(
        client_id=client_id,
        redirect_uri=settings.SPOTIFY_REDIRECT_URI,
        client_secret=settings.SPOTIFY_CLIENT_SECRET or None,
        scopes=list(settings.SPOTIFY_SCOPES or DEFAULT_SCOPES),
        token_secret=settings.TOKEN_SECRET or None,
    )
