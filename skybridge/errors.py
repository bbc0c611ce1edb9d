"""
Goal: One exception family for the Spotify session so callers can catch SkyBridgeError
and the agent can turn any of them into a friendly JSON error.
"""

from __future__ import annotations

from typing import Optional


class SkyBridgeError(Exception):
    """Base class; `code` is the short machine-readable name the agent returns."""

    code = "spotify_error"
    http_status = 500


class ConfigurationError(SkyBridgeError):
    """Client id or redirect URI missing/invalid. Never retried."""

    code = "configuration_error"
    http_status = 500


class StateMismatchError(SkyBridgeError):
    """Callback state did not match the pending auth transaction."""

    code = "state_mismatch"
    http_status = 400


class TokenExchangeError(SkyBridgeError):
    code = "token_exchange_failed"
    http_status = 502

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class TokenRefreshError(SkyBridgeError):
    """Refresh grant failed or was impossible; the session is already disconnected."""

    code = "token_refresh_failed"
    http_status = 401


class NotConnectedError(SkyBridgeError):
    code = "not_connected"
    http_status = 401


class UnauthorizedError(SkyBridgeError):
    """A second 401 after one refresh-and-retry."""

    code = "unauthorized"
    http_status = 401


class ListenerError(SkyBridgeError):
    """The loopback redirect listener could not bind or start."""

    code = "listener_failed"
    http_status = 500


class SpotifyApiError(SkyBridgeError):
    """Non-success response from the Web API; keeps the remote status and message."""

    code = "spotify_api_error"
    http_status = 502

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class NoDeviceError(SpotifyApiError):
    """No device to play on; the user has to open Spotify somewhere."""

    code = "no_device"
    http_status = 409


class TransferError(SpotifyApiError):
    code = "transfer_failed"
    http_status = 502


class NoActiveDeviceError(SpotifyApiError):
    """A playback call got 404 even though activation looked fine."""

    code = "no_active_device"
    http_status = 409


class PlaybackCommandError(SpotifyApiError):
    code = "playback_failed"
    http_status = 502


class SpotifyUnavailableError(SkyBridgeError):
    """Network-level failure talking to Spotify. The session is left as it was."""

    code = "spotify_unavailable"
    http_status = 503


class AuthorizationError(SkyBridgeError):
    """Spotify redirected back with ?error=... or without a code."""

    code = "authorization_failed"
    http_status = 400
