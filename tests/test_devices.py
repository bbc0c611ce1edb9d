"""
Goal: Device activation: happy path, no devices, transfer failures, unconfirmed transfers.
"""
import json

import pytest

from conftest import ZERO_POLICY, device, devices_json, make_tokens, playback_json
from skybridge.adapters.spotify import SpotifyApi
from skybridge.auth.oauth import TokenEngine
from skybridge.errors import NoDeviceError, TransferError
from skybridge.models.state import SessionState
from skybridge.services.devices import (MAX_SETTLE_MS, DeviceActivationPolicy,
                                        DeviceActivator, DeviceState)


@pytest.fixture
def activator(fake, options, store):
    http = fake.client()
    api = SpotifyApi(TokenEngine(options, http, store), http)
    return DeviceActivator(api, api.get_playback, ZERO_POLICY)


@pytest.fixture
def state():
    return SessionState(tokens=make_tokens())


@pytest.mark.anyio
async def test_active_device_needs_no_transfer(fake, activator, state):
    fake.on("GET", "/v1/me/player", (200, playback_json(active=True)))
    result = await activator.ensure_active_device(state)
    assert result.device.id == "dev-1"
    assert not result.transferred
    assert activator.state is DeviceState.DEVICE_ACTIVE
    assert fake.calls_to("GET", "/v1/me/player/devices") == []
    assert fake.calls_to("PUT", "/v1/me/player") == []


@pytest.mark.anyio
async def test_no_devices(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json()))
    with pytest.raises(NoDeviceError, match="No Spotify devices found"):
        await activator.ensure_active_device(state)
    assert activator.state is DeviceState.NO_DEVICES


@pytest.mark.anyio
async def test_device_without_id(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device(dev_id=None))))
    with pytest.raises(NoDeviceError):
        await activator.ensure_active_device(state)
    assert fake.calls_to("PUT", "/v1/me/player") == []


@pytest.mark.anyio
async def test_transfers_to_first_device_and_confirms(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None), (200, playback_json(active=True, device_id="dev-2")))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device("dev-2", "Phone"), device("dev-3"))))
    fake.on("PUT", "/v1/me/player", (204, None))

    result = await activator.ensure_active_device(state, auto_play_on_transfer=True)

    assert result.transferred and result.confirmed
    assert result.device.id == "dev-2"
    body = json.loads(fake.calls_to("PUT", "/v1/me/player")[0].content)
    assert body == {"device_ids": ["dev-2"], "play": True}
    assert activator.unconfirmed_transfers == 0


@pytest.mark.anyio
async def test_prefers_device_reported_active(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device("dev-2"), device("dev-3", active=True))))
    fake.on("PUT", "/v1/me/player", (204, None))
    result = await activator.ensure_active_device(state)
    assert result.device.id == "dev-3"
    body = json.loads(fake.calls_to("PUT", "/v1/me/player")[0].content)
    assert body["play"] is False


@pytest.mark.anyio
async def test_unconfirmed_transfer_proceeds_and_is_counted(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device())))
    fake.on("PUT", "/v1/me/player", (204, None))
    result = await activator.ensure_active_device(state)
    assert result.transferred and not result.confirmed
    assert activator.state is DeviceState.DEVICE_ACTIVE
    assert activator.unconfirmed_transfers == 1


@pytest.mark.anyio
async def test_transfer_404_is_no_device(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device(name="Kitchen"))))
    fake.on("PUT", "/v1/me/player", (404, {"error": {"status": 404, "message": "Device not found"}}))
    with pytest.raises(NoDeviceError, match="Kitchen") as exc:
        await activator.ensure_active_device(state)
    assert exc.value.status == 404
    assert activator.state is DeviceState.TRANSFER_FAILED


@pytest.mark.anyio
async def test_transfer_other_failure_carries_remote_message(fake, activator, state):
    fake.on("GET", "/v1/me/player", (204, None))
    fake.on("GET", "/v1/me/player/devices", (200, devices_json(device())))
    fake.on("PUT", "/v1/me/player", (403, {"error": {"status": 403, "message": "Premium required"}}))
    with pytest.raises(TransferError, match="Premium required") as exc:
        await activator.ensure_active_device(state)
    assert exc.value.status == 403


def test_policy_never_exceeds_one_second():
    policy = DeviceActivationPolicy(settle_ms_with_play=5000, max_settle_ms=9000)
    assert policy.budget_ms == MAX_SETTLE_MS
    assert policy.settle_ms(True) == MAX_SETTLE_MS


def test_default_policy_settles_longer_when_playing():
    policy = DeviceActivationPolicy()
    assert policy.settle_ms(True) == 800
    assert policy.settle_ms(False) == 400
