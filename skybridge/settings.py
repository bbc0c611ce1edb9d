"""
Goal: Centralized configuration for SkyBridge (paths, ports, Spotify OAuth inputs).
Everything is read from the environment once at import; helpers clamp bad values to defaults.
"""

import os
import re
from pathlib import Path


def _validate_port(port_str: str, default: int) -> int:
    """Validate port number is in valid range."""
    try:
        port = int(port_str)
        if 1024 <= port <= 65535:
            return port
    except ValueError:
        pass
    return default


def _validate_host(host_str: str, default: str) -> str:
    """Validate host is localhost or a private IP."""
    if not host_str:
        return default

    allowed_hosts = {"127.0.0.1", "localhost", "::1"}
    if host_str in allowed_hosts:
        return host_str

    if re.match(r"^192\.168\.\d{1,3}\.\d{1,3}$", host_str) or \
       re.match(r"^10\.\d{1,3}\.\d{1,3}\.\d{1,3}$", host_str) or \
       re.match(r"^172\.(1[6-9]|2[0-9]|3[0-1])\.\d{1,3}\.\d{1,3}$", host_str):
        return host_str

    return default


def _positive_float(value: str, default: float) -> float:
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


# macOS keeps per-user app state under Application Support
APP_DIR = Path(
    os.getenv("SKY_APP_DIR")
    or str(Path.home() / "Library" / "Application Support" / "Sky")
)
LOG_DIR = APP_DIR / "logs"
TOKEN_PATH = APP_DIR / "spotify-token.v1"
AGENT_TOKEN_PATH = APP_DIR / "agent-token.txt"

# Local agent the overlay talks to
SKY_HOST = _validate_host(os.getenv("SKY_HOST", "127.0.0.1"), "127.0.0.1")
SKY_PORT = _validate_port(os.getenv("SKY_PORT", "5035"), 5035)

# Spotify OAuth. Secret is optional: PKCE public clients leave it empty.
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_REDIRECT_URI = os.getenv(
    "SPOTIFY_REDIRECT_URI", "http://127.0.0.1:5036/callback"
)
SPOTIFY_SCOPES = os.getenv("SPOTIFY_SCOPES", "").split()

# Overrides the key source for the encrypted token file
TOKEN_SECRET = os.getenv("SKY_TOKEN_SECRET", "")

HTTP_TIMEOUT = _positive_float(os.getenv("SKY_HTTP_TIMEOUT", "10"), 10.0)
AUTH_TIMEOUT = _positive_float(os.getenv("SKY_AUTH_TIMEOUT", "300"), 300.0)

# Make sure folders exist
APP_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)
