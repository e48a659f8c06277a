"""Reconnect loop that keeps the acquisition pipeline alive.

The loop is an explicit state machine::

    IDLE -> DISCOVERING -> STREAMING -> DISCONNECTED -> DISCOVERING ...
                      \\-> DISCOVERY_FAILED -> DISCOVERING ...

Every discovery or session failure, including a failed subscription, is
logged and answered with a fresh discovery attempt. The loop only leaves
through ``stop()`` or by being cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from enum import Enum
from typing import Callable, Optional, Sequence, TextIO

from .config import ReceiverConfig
from .emitter import CsvEmitter, Emitter
from .errors import AcquisitionError, SubscribeFailure
from .scanner import Adapter, PeripheralScanner, SessionTarget, list_adapters
from .session import ConnectionSession

logger = logging.getLogger(__name__)


class AcquisitionState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    STREAMING = "streaming"
    DISCONNECTED = "disconnected"
    DISCOVERY_FAILED = "discovery_failed"


_RESTART_STATES = (
    AcquisitionState.IDLE,
    AcquisitionState.DISCONNECTED,
    AcquisitionState.DISCOVERY_FAILED,
)


class AcquisitionLoop:
    """Repeats discovery and streaming forever.

    Attributes:
        state: Current state. Each call to ``step()`` performs exactly one
            transition out of it.
        last_error: The most recent failure, cleared on a successful discovery.
        sessions: Number of sessions that reached STREAMING.
    """

    def __init__(
        self,
        scanner: PeripheralScanner,
        emitter: Emitter,
        *,
        adapters: Callable[[], Sequence[Adapter]] = list_adapters,
        session_factory: Callable[..., ConnectionSession] = ConnectionSession,
        subscribe_timeout: Optional[float] = None,
        retry_delay: float = 0.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._scanner = scanner
        self._emitter = emitter
        self._adapters = adapters
        self._session_factory = session_factory
        self._subscribe_timeout = subscribe_timeout
        self._retry_delay = retry_delay
        self._log = logger or logging.getLogger(__name__)
        self._stop = asyncio.Event()
        self._target: Optional[SessionTarget] = None

        self.state = AcquisitionState.IDLE
        self.last_error: Optional[Exception] = None
        self.sessions = 0

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def step(self) -> AcquisitionState:
        """Perform one state transition and return the new state."""
        if self.state in _RESTART_STATES:
            if self.state is not AcquisitionState.IDLE and self._retry_delay > 0:
                await self._pause()
            else:
                # yield so stop() and cancellation get a chance between attempts
                await asyncio.sleep(0)
            self.state = AcquisitionState.DISCOVERING
        elif self.state is AcquisitionState.DISCOVERING:
            await self._discover()
        elif self.state is AcquisitionState.STREAMING:
            await self._stream()
        return self.state

    async def run(self) -> None:
        """Step until ``stop()`` is called."""
        while not self._stop.is_set():
            await self.step()
        self._log.info("Acquisition loop stopped")

    async def _discover(self) -> None:
        try:
            self._target = await self._scanner.resolve(self._adapters())
        except AcquisitionError as e:
            self.last_error = e
            self._log.error("Failed to connect: %s", e)
            self.state = AcquisitionState.DISCOVERY_FAILED
            return
        self.last_error = None
        self.state = AcquisitionState.STREAMING

    async def _stream(self) -> None:
        target = self._target
        if target is None:
            raise RuntimeError("Streaming state reached without a resolved target")
        self._target = None
        self.sessions += 1

        session = self._session_factory(
            target,
            self._emitter,
            subscribe_timeout=self._subscribe_timeout,
        )
        try:
            end = await session.run()
        except SubscribeFailure as e:
            self.last_error = e
            self._log.error("Session failed: %s", e)
        else:
            self._log.info(
                "Session with %r ended (%s); restarting discovery",
                target.candidate.label,
                end.value,
            )
        self.state = AcquisitionState.DISCONNECTED

    async def _pause(self) -> None:
        self._log.info("Retrying discovery in %.1fs", self._retry_delay)
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._retry_delay)
        except asyncio.TimeoutError:
            pass


async def receive(config: ReceiverConfig, stream: Optional[TextIO] = None) -> None:
    """Write the CSV header and stream readings until cancelled."""
    emitter = CsvEmitter(stream if stream is not None else sys.stdout)
    if config.show_header:
        emitter.write_header()

    scanner = PeripheralScanner(
        scan_dwell=config.scan_dwell, connect_timeout=config.connect_timeout
    )
    loop = AcquisitionLoop(
        scanner,
        emitter,
        adapters=lambda: list_adapters(config.adapters),
        subscribe_timeout=config.subscribe_timeout,
        retry_delay=config.retry_delay,
    )
    await loop.run()


def run(config: Optional[ReceiverConfig] = None) -> int:
    """Blocking entry point for the command line.

    Returns:
        int: Exit code following Unix conventions:
            0: the loop was stopped normally
            1: unexpected fatal error
            130: keyboard interrupt (SIGINT/Ctrl+C)
    """
    try:
        asyncio.run(receive(config or ReceiverConfig()))
        return 0
    except KeyboardInterrupt:
        # SIGINT: Return 130 by convention
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
