"""
Goal: The one mutable record of a Spotify session. The facade owns it; the token engine,
request client and device machine get it passed in and mutate only their own fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from skybridge.models.schemas import (AccountProfile, PendingAuthTransaction,
                                      PlaybackSnapshot, SessionStatus,
                                      TokenSet)


@dataclass
class SessionState:
    tokens: Optional[TokenSet] = None
    profile: Optional[AccountProfile] = None
    playback: Optional[PlaybackSnapshot] = None
    pending: Optional[PendingAuthTransaction] = None

    @property
    def connected(self) -> bool:
        return bool(self.tokens and self.tokens.access_token)

    def clear_session(self) -> None:
        """Forget tokens and everything derived from them. A pending auth survives."""
        self.tokens = None
        self.profile = None
        self.playback = None

    def status(self, default_scopes: List[str]) -> SessionStatus:
        tokens = self.tokens
        scopes = tokens.scope.split() if tokens and tokens.scope else list(default_scopes)
        return SessionStatus(
            connected=self.connected,
            scopes=scopes,
            expires_at=tokens.expires_at if tokens else None,
            account=self.profile,
            playback=self.playback,
        )
