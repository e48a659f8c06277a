"""One live connection to the target peripheral.

A session subscribes to the notify characteristic and then multiplexes two
channels in a single task:

- the notification queue, fed by bleak's notify callback with raw frames
  (``None`` marks the end of the stream);
- the adapter lifecycle queue, fed by the disconnect callbacks of every
  client opened on the adapter during the current discovery attempt.

Whichever channel has an item first is served first. The session ends when
the bound peripheral disconnects or the notification stream closes, and it
always disconnects the client on the way out.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from bleak.backends.characteristic import BleakGATTCharacteristic

from .config import SUBSCRIBE_TIMEOUT
from .emitter import Emitter
from .errors import SubscribeFailure
from .reading import Reading, decode_notification
from .scanner import BACKEND_ERRORS, LifecycleKind, SessionTarget, release_client


class SessionEnd(Enum):
    DISCONNECTED = "disconnected"
    STREAM_CLOSED = "stream_closed"


class ConnectionSession:
    """Drives one (adapter, peripheral, characteristic) triple to completion.

    Attributes:
        frames: Raw notifications received, including ones that did not decode.
        readings: Readings handed to the emitter.
    """

    def __init__(
        self,
        target: SessionTarget,
        emitter: Emitter,
        *,
        subscribe_timeout: Optional[float] = SUBSCRIBE_TIMEOUT,
        decoder: Callable[[bytes], Optional[Reading]] = decode_notification,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._target = target
        self._emitter = emitter
        self._subscribe_timeout = subscribe_timeout
        self._decoder = decoder
        self._log = logger or logging.getLogger(__name__)
        self._notifications: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self.frames = 0
        self.readings = 0

    @property
    def label(self) -> str:
        return self._target.candidate.label

    def close(self) -> None:
        """Mark the notification stream as exhausted."""
        self._notifications.put_nowait(None)

    def _on_notify(self, _sender: BleakGATTCharacteristic, data: bytearray) -> None:
        self._notifications.put_nowait(bytes(data))

    async def subscribe(self) -> None:
        target = self._target
        self._log.info(
            "Subscribing to %s on %r", target.characteristic.uuid, self.label
        )
        try:
            await asyncio.wait_for(
                target.client.start_notify(target.characteristic, self._on_notify),
                timeout=self._subscribe_timeout,
            )
        except BACKEND_ERRORS as e:
            raise SubscribeFailure(
                f"Subscribing to notifications failed: {e!r}",
                adapter=target.adapter.label,
                peripheral=self.label,
                address=target.candidate.address,
            ) from e

    async def run(self) -> SessionEnd:
        """Subscribe and process events until the session ends.

        Raises:
            SubscribeFailure: Notifications could not be enabled. The client
                is disconnected before the error propagates.
        """
        try:
            await self.subscribe()
            return await self._pump()
        finally:
            self._log.info("Disconnecting from peripheral %r...", self.label)
            await release_client(self._target.client, self.label, self._log)
            self._target.candidate.connected = False

    async def _pump(self) -> SessionEnd:
        events = self._target.events
        address = self._target.candidate.address

        notification = asyncio.ensure_future(self._notifications.get())
        event = asyncio.ensure_future(events.get())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {notification, event}, return_when=asyncio.FIRST_COMPLETED
                )

                if notification in done:
                    frame = notification.result()
                    if frame is None:
                        self._log.info("Notification stream from %r closed", self.label)
                        return SessionEnd.STREAM_CLOSED
                    self._handle_frame(frame)
                    notification = asyncio.ensure_future(self._notifications.get())

                if event in done:
                    lifecycle = event.result()
                    if (
                        lifecycle.kind is LifecycleKind.DISCONNECTED
                        and lifecycle.address == address
                    ):
                        self._log.info("Disconnected from peripheral %r", self.label)
                        return SessionEnd.DISCONNECTED
                    self._log.debug(
                        "Ignoring %s event for %s", lifecycle.kind.value, lifecycle.address
                    )
                    event = asyncio.ensure_future(events.get())
        finally:
            notification.cancel()
            event.cancel()

    def _handle_frame(self, frame: bytes) -> None:
        self.frames += 1
        self._log.debug("Got raw data: %s", frame.hex(" "))
        reading = self._decoder(frame)
        if reading is None:
            return
        self.readings += 1
        self._emitter.emit(reading)
