"""Adapter enumeration, peripheral discovery and target resolution.

Discovery walks every host radio in enumeration order. On each one it
collects advertisements for a fixed dwell period, then tries the
name-matching peripherals one by one: connect, resolve GATT services and
look for the notify characteristic. The first peripheral that passes every
check is returned together with an open client; candidates rejected after
connecting are disconnected before the next one is tried.

The adapter-wide lifecycle stream is modelled as one queue per adapter per
discovery attempt. Every client opened on that adapter reports into it, so a
session bound to one peripheral also sees events for its rejected siblings
and has to filter by address.
"""

from __future__ import annotations

import asyncio
import logging
import platform
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError

from .config import CONNECT_TIMEOUT, DEVICE_NAME_FILTER, NOTIFY_CHAR_UUID, SCAN_DWELL
from .errors import (
    CharacteristicNotFound,
    ConnectFailure,
    NoAdapterError,
    NoMatchingPeripheralError,
    NoPeripheralsFoundError,
    ScanFailure,
    ServiceDiscoveryFailure,
)

logger = logging.getLogger(__name__)

SYSFS_BLUETOOTH = Path("/sys/class/bluetooth")
_HCI_NAME = re.compile(r"^hci(\d+)$")

# Errors a BLE backend raises for radio or link trouble
BACKEND_ERRORS = (BleakError, asyncio.TimeoutError, OSError)


class LifecycleKind(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class LifecycleEvent:
    """Connection state change for one peripheral on an adapter."""

    kind: LifecycleKind
    address: str


@dataclass(frozen=True)
class Adapter:
    """Handle to a host Bluetooth radio.

    ``name`` is the backend adapter identifier (``hci0`` on BlueZ). None
    selects the platform default, which is the only option on macOS and
    Windows.
    """

    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or "default"

    def backend_kwargs(self) -> dict[str, Any]:
        return {"adapter": self.name} if self.name else {}


@dataclass
class PeripheralCandidate:
    """A peripheral seen during one scan.

    Attributes:
        address: Backend address (MAC on Linux/Windows, UUID on macOS).
        name: Advertised local name, falling back to the device name.
        device: Backend device object handed to the client on connect.
        connected: Set once a client for this candidate is connected.
    """

    address: str
    name: Optional[str]
    device: Any = None
    connected: bool = False

    @property
    def label(self) -> str:
        return self.name or self.address


@dataclass
class SessionTarget:
    """A fully resolved (adapter, peripheral, characteristic) triple.

    Ownership of ``client`` passes to whoever receives the target; the
    scanner never touches it again.
    """

    adapter: Adapter
    candidate: PeripheralCandidate
    client: BleakClient
    characteristic: BleakGATTCharacteristic
    events: asyncio.Queue[LifecycleEvent]


def list_adapters(
    names: Sequence[str] = (),
    *,
    sysfs: Path = SYSFS_BLUETOOTH,
    system: Optional[str] = None,
) -> list[Adapter]:
    """Enumerate host radios.

    Explicit names win. Otherwise Linux radios are read from sysfs in
    index order, and every other platform gets its single default adapter.
    """
    if names:
        return [Adapter(name) for name in names]

    system = (system or platform.system()).lower()
    if system != "linux":
        return [Adapter()]

    if not sysfs.is_dir():
        return []
    found = []
    for entry in sysfs.iterdir():
        match = _HCI_NAME.match(entry.name)
        if match:
            found.append((int(match.group(1)), entry.name))
    return [Adapter(name) for _, name in sorted(found)]


def matches_name(name: Optional[str], name_filter: str = DEVICE_NAME_FILTER) -> bool:
    """Case-sensitive substring test on the advertised name (or address when unnamed)."""
    return name is not None and name_filter in name


def find_characteristic(
    services: Iterable[Any], char_uuid: str = NOTIFY_CHAR_UUID
) -> Optional[BleakGATTCharacteristic]:
    """Return the first characteristic with ``char_uuid`` that supports notify."""
    target = char_uuid.lower()
    for service in services:
        for char in service.characteristics:
            if char.uuid.lower() == target and "notify" in char.properties:
                return char
    return None


async def release_client(
    client: BleakClient, label: str, log: logging.Logger = logger
) -> None:
    """Disconnect without letting a failure escape."""
    try:
        await client.disconnect()
    except BACKEND_ERRORS as e:
        log.warning("Disconnect from %s failed: %s", label, e)


class PeripheralScanner:
    """Finds the target peripheral and hands back an open, resolved client.

    The bleak entry points are injectable so tests can script scans and
    connections without a radio.
    """

    def __init__(
        self,
        *,
        name_filter: str = DEVICE_NAME_FILTER,
        char_uuid: str = NOTIFY_CHAR_UUID,
        scan_dwell: float = SCAN_DWELL,
        connect_timeout: float = CONNECT_TIMEOUT,
        discover: Callable[..., Awaitable[dict[str, tuple[Any, Any]]]] = BleakScanner.discover,
        client_factory: Callable[..., BleakClient] = BleakClient,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._name_filter = name_filter
        self._char_uuid = char_uuid
        self._scan_dwell = scan_dwell
        self._connect_timeout = connect_timeout
        self._discover = discover
        self._client_factory = client_factory
        self._log = logger or logging.getLogger(__name__)

    async def scan_adapter(self, adapter: Adapter) -> list[PeripheralCandidate]:
        """Collect advertisements on one adapter for the dwell period.

        Raises:
            ScanFailure: The backend could not start or complete the scan.
        """
        try:
            devices_adv = await self._discover(
                timeout=self._scan_dwell, return_adv=True, **adapter.backend_kwargs()
            )
        except BACKEND_ERRORS as e:
            raise ScanFailure(f"BLE scan failed: {e}", adapter=adapter.label) from e

        candidates = []
        for device, adv in devices_adv.values():
            name = getattr(adv, "local_name", None) or device.name
            self._log.debug(
                "Device discovered: addr=%s name=%s rssi=%s",
                device.address,
                name,
                getattr(adv, "rssi", None),
            )
            candidates.append(
                PeripheralCandidate(address=device.address, name=name, device=device)
            )
        self._log.debug(
            "Scan on adapter %s completed: %d devices found",
            adapter.label,
            len(candidates),
        )
        return candidates

    async def resolve(self, adapters: Sequence[Adapter]) -> SessionTarget:
        """Return the first peripheral across all adapters that passes every check.

        Raises:
            NoAdapterError: ``adapters`` is empty.
            NoPeripheralsFoundError: No adapter reported any peripheral.
            NoMatchingPeripheralError: Peripherals were seen, none qualified.
            ServiceDiscoveryFailure: A connected candidate's services could
                not be resolved. This aborts the whole attempt.
        """
        if not adapters:
            raise NoAdapterError("No Bluetooth adapters found")

        seen_any = False
        for adapter in adapters:
            self._log.info(
                "Starting scan on adapter %s (dwell %.1fs)...",
                adapter.label,
                self._scan_dwell,
            )
            try:
                candidates = await self.scan_adapter(adapter)
            except ScanFailure as e:
                self._log.error("%s; trying next adapter", e)
                continue

            if not candidates:
                self._log.warning(
                    "No BLE peripherals found on adapter %s", adapter.label
                )
                continue
            seen_any = True

            events: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
            for candidate in candidates:
                if not matches_name(candidate.label, self._name_filter):
                    continue
                self._log.info(
                    "Found matching peripheral %r (%s)",
                    candidate.label,
                    candidate.address,
                )
                try:
                    return await self._open(adapter, candidate, events)
                except (ConnectFailure, CharacteristicNotFound) as e:
                    self._log.error("%s; skipping", e)

        if not seen_any:
            raise NoPeripheralsFoundError("BLE peripheral devices were not found")
        raise NoMatchingPeripheralError(
            f"No peripheral named like {self._name_filter!r} "
            f"exposes notify characteristic {self._char_uuid}"
        )

    async def _open(
        self,
        adapter: Adapter,
        candidate: PeripheralCandidate,
        events: asyncio.Queue[LifecycleEvent],
    ) -> SessionTarget:
        context = dict(
            adapter=adapter.label, peripheral=candidate.label, address=candidate.address
        )

        def on_disconnect(_: BleakClient) -> None:
            events.put_nowait(
                LifecycleEvent(LifecycleKind.DISCONNECTED, candidate.address)
            )

        client = self._client_factory(
            candidate.device if candidate.device is not None else candidate.address,
            disconnected_callback=on_disconnect,
            timeout=self._connect_timeout,
            **adapter.backend_kwargs(),
        )
        try:
            await client.connect()
        except BACKEND_ERRORS as e:
            raise ConnectFailure(
                f"Error connecting to peripheral: {e}", **context
            ) from e
        if not client.is_connected:
            raise ConnectFailure("Couldn't connect to peripheral", **context)

        candidate.connected = True
        events.put_nowait(LifecycleEvent(LifecycleKind.CONNECTED, candidate.address))
        self._log.info("Now connected to peripheral %r.", candidate.label)

        self._log.debug("Resolving services of %r...", candidate.label)
        try:
            services = client.services
        except BleakError as e:
            await release_client(client, candidate.label, self._log)
            candidate.connected = False
            raise ServiceDiscoveryFailure(
                f"Service discovery failed: {e}", **context
            ) from e

        characteristic = find_characteristic(services, self._char_uuid)
        if characteristic is None:
            await release_client(client, candidate.label, self._log)
            candidate.connected = False
            raise CharacteristicNotFound(
                f"Couldn't find characteristic {self._char_uuid}", **context
            )

        return SessionTarget(
            adapter=adapter,
            candidate=candidate,
            client=client,
            characteristic=characteristic,
            events=events,
        )
