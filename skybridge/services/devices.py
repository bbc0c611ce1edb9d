"""
Goal: Make sure Spotify has an active device before we send playback commands.

Spotify only accepts play/next/volume/... when one of the account's devices is "active",
and it forgets which one that is at random. The flow:
  1. poll /me/player; an active device there wins, nothing else to do
  2. list devices; none at all means the user has to open Spotify somewhere
  3. pick the reported active device, else the first one, and transfer playback to it
  4. settle, re-poll; if it still is not active, go ahead anyway and count it
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from loguru import logger

from skybridge.adapters.spotify import SpotifyApi, error_message
from skybridge.auth.helpers import now_ms, sleep_ms
from skybridge.errors import NoDeviceError, TransferError
from skybridge.models.schemas import DeviceInfo, PlaybackSnapshot
from skybridge.models.state import SessionState

SnapshotFetcher = Callable[[SessionState], Awaitable[Optional[PlaybackSnapshot]]]

# Remote-side settle windows never exceed this
MAX_SETTLE_MS = 1000


class DeviceState(str, enum.Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    DEVICE_ACTIVE = "device_active"
    NO_DEVICES = "no_devices"
    TRANSFER_PENDING = "transfer_pending"
    TRANSFER_FAILED = "transfer_failed"


@dataclass(frozen=True)
class DeviceActivationPolicy:
    """
    How long to wait for Spotify to report the transferred device as active.
    The first re-poll happens after the settle delay; later ones every poll_interval_ms
    until max_settle_ms. After that we proceed unconfirmed.
    """

    settle_ms_with_play: int = 800
    settle_ms_without_play: int = 400
    poll_interval_ms: int = 200
    max_settle_ms: int = MAX_SETTLE_MS

    def settle_ms(self, auto_play: bool) -> int:
        wanted = self.settle_ms_with_play if auto_play else self.settle_ms_without_play
        return min(wanted, self.budget_ms)

    @property
    def budget_ms(self) -> int:
        return max(0, min(self.max_settle_ms, MAX_SETTLE_MS))


@dataclass(frozen=True)
class ActiveDevice:
    device: DeviceInfo
    state: DeviceState
    transferred: bool = False
    # False when the post-transfer poll never showed the device as active
    confirmed: bool = True


class DeviceActivator:
    def __init__(
        self,
        api: SpotifyApi,
        fetch_snapshot: SnapshotFetcher,
        policy: Optional[DeviceActivationPolicy] = None,
    ) -> None:
        self.api = api
        self.fetch_snapshot = fetch_snapshot
        self.policy = policy or DeviceActivationPolicy()
        self.state = DeviceState.UNKNOWN
        self.unconfirmed_transfers = 0

    async def ensure_active_device(self, session: SessionState, auto_play_on_transfer: bool = False) -> ActiveDevice:
        self.state = DeviceState.CHECKING
        snapshot = await self.fetch_snapshot(session)
        if snapshot and snapshot.device and snapshot.device.is_active and snapshot.device.id:
            self.state = DeviceState.DEVICE_ACTIVE
            return ActiveDevice(device=snapshot.device, state=self.state)

        devices = await self.api.list_devices(session)
        if not devices:
            self.state = DeviceState.NO_DEVICES
            raise NoDeviceError(
                "No Spotify devices found. Please open Spotify on your computer, phone, "
                "or web player and try again."
            )

        target = next((d for d in devices if d.is_active), devices[0])
        if not target.id:
            self.state = DeviceState.NO_DEVICES
            raise NoDeviceError(
                "No available Spotify devices. Open Spotify on one of your devices and try again."
            )

        label = target.name or target.id
        self.state = DeviceState.TRANSFER_PENDING
        logger.info("Transferring playback to device {} (play={})", label, auto_play_on_transfer)
        r = await self.api.request(
            session,
            "PUT",
            "/me/player",
            json={"device_ids": [target.id], "play": auto_play_on_transfer},
        )
        if r.status_code == 404:
            self.state = DeviceState.TRANSFER_FAILED
            logger.error("Device transfer failed: 404 for {}", label)
            raise NoDeviceError(
                f'No active Spotify device found. The device "{label}" is not available. '
                "Make sure Spotify is open and try again.",
                status=404,
            )
        if not r.is_success:
            self.state = DeviceState.TRANSFER_FAILED
            message = error_message(r)
            logger.error("Device transfer failed: {} - {}", r.status_code, message)
            raise TransferError(
                f'Failed to transfer playback to device "{label}": {message}',
                status=r.status_code,
            )

        confirmed = await self._wait_until_active(session, auto_play_on_transfer)
        self.state = DeviceState.DEVICE_ACTIVE
        if not confirmed:
            self.unconfirmed_transfers += 1
            logger.warning(
                "Device {} transferred but not showing as active yet (unconfirmed transfers: {})",
                label,
                self.unconfirmed_transfers,
            )
        return ActiveDevice(device=target, state=self.state, transferred=True, confirmed=confirmed)

    async def _wait_until_active(self, session: SessionState, auto_play: bool) -> bool:
        policy = self.policy
        started = now_ms()
        await sleep_ms(policy.settle_ms(auto_play))
        while True:
            snapshot = await self.fetch_snapshot(session)
            if snapshot and snapshot.device and snapshot.device.is_active:
                return True
            remaining = policy.budget_ms - (now_ms() - started)
            if policy.poll_interval_ms <= 0 or remaining < policy.poll_interval_ms:
                return False
            await sleep_ms(policy.poll_interval_ms)
