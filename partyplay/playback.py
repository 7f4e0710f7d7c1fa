"""Device selection and queueing on top of :class:`SpotifyAPIClient`."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass

from .constants import LOGGER
from .spotify_client import ApiResult, SpotifyAPIClient

DEFAULT_TRANSFER_DELAY_SECONDS = 0.5
DEFAULT_BATCH_DELAY_SECONDS = 0.5


def _is_computer(device: dict) -> bool:
    device_type = str(device.get("type") or "").lower()
    name = str(device.get("name") or "").lower()
    return device_type == "computer" or "computer" in name


def pick_best_device(devices: list[dict]) -> dict | None:
    """Active device first, then anything computer-like, then Spotify's first."""
    if not devices:
        return None
    for device in devices:
        if device.get("is_active"):
            return device
    for device in devices:
        if _is_computer(device):
            return device
    return devices[0]


class PlaybackManager:
    def __init__(
        self,
        client: SpotifyAPIClient,
        *,
        transfer_delay: float = DEFAULT_TRANSFER_DELAY_SECONDS,
        sleep=asyncio.sleep,
    ) -> None:
        self.client = client
        self.transfer_delay = transfer_delay
        self._sleep = sleep

    async def list_devices(self) -> list[dict]:
        result = await self.client.get_devices()
        if not result.ok or not isinstance(result.data, dict):
            if result.error is not None:
                LOGGER.warning("Could not list Spotify devices: %s", result.error.message)
            return []
        devices = result.data.get("devices") or []
        return [device for device in devices if isinstance(device, dict)]

    async def get_best_device(self) -> dict | None:
        return pick_best_device(await self.list_devices())

    async def ensure_active_device(self) -> str | None:
        device = await self.get_best_device()
        if device is None:
            return None

        device_id = device.get("id")
        if not device.get("is_active"):
            result = await self.client.transfer_playback(device_id, play=False)
            if not result.ok:
                LOGGER.warning(
                    "Transfer to device %s failed: %s",
                    device_id,
                    result.error.message if result.error else result.status,
                )
                return None
            # Spotify applies transfers asynchronously.
            await self._sleep(self.transfer_delay)

        return device_id

    async def resolve_playback_state(self) -> ApiResult:
        """Current playback state, telling "idle device" apart from "no device".

        A 204 from ``/me/player`` only asks for device activation when the
        device list has no active entry either.
        """
        result = await self.client.get_playback_state()
        if not result.ok or result.data is not None:
            return result

        devices = await self.list_devices()
        active = next((device for device in devices if device.get("is_active")), None)
        if active is not None:
            return ApiResult.success(200, {"is_playing": False, "device": active})
        return ApiResult.success(
            200, {"is_playing": False, "device": None, "needs_device": True}
        )


@dataclass
class QueueSummary:
    successful: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class QueueManager:
    def __init__(
        self,
        client: SpotifyAPIClient,
        *,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep=asyncio.sleep,
    ) -> None:
        self.client = client
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def queue_track(self, uri: str, device_id: str | None = None) -> bool:
        result = await self.client.add_to_queue(uri, device_id)
        if not result.ok:
            LOGGER.warning(
                "Failed to queue track %s: %s",
                uri,
                result.error.message if result.error else result.status,
            )
        return result.ok

    async def queue_tracks(self, uris: list[str], device_id: str | None = None) -> QueueSummary:
        summary = QueueSummary()
        for index, uri in enumerate(uris):
            if index > 0:
                await self._sleep(self.batch_delay)
            if await self.queue_track(uri, device_id):
                summary.successful += 1
            else:
                summary.failed += 1
        return summary
