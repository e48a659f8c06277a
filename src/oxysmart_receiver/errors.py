"""Failure taxonomy for the acquisition pipeline."""

from __future__ import annotations

from typing import Optional


class AcquisitionError(RuntimeError):
    """Base class for every discovery or session failure.

    The context attributes are optional because not every stage knows all of
    them (``NoAdapterError`` has neither an adapter nor a peripheral).
    """

    def __init__(
        self,
        message: str,
        *,
        adapter: Optional[str] = None,
        peripheral: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.adapter = adapter
        self.peripheral = peripheral
        self.address = address

    def __str__(self) -> str:
        context = [
            f"{key}={value}"
            for key, value in (
                ("adapter", self.adapter),
                ("peripheral", self.peripheral),
                ("address", self.address),
            )
            if value is not None
        ]
        base = super().__str__()
        return f"{base} ({', '.join(context)})" if context else base


class NoAdapterError(AcquisitionError):
    """No Bluetooth radio is present on the host."""


class ScanFailure(AcquisitionError):
    """Peripheral enumeration failed on one adapter."""


class NoPeripheralsFoundError(AcquisitionError):
    """Scans completed but no adapter reported any peripheral."""


class NoMatchingPeripheralError(AcquisitionError):
    """Peripherals were seen but none passed both the name and characteristic checks."""


class ConnectFailure(AcquisitionError):
    """Connecting to one candidate failed."""


class ServiceDiscoveryFailure(AcquisitionError):
    """GATT services could not be resolved on a connected candidate."""


class CharacteristicNotFound(AcquisitionError):
    """The connected candidate does not expose the notify characteristic."""


class SubscribeFailure(AcquisitionError):
    """Enabling notifications on the target characteristic failed."""
