"""Fixed target identity and runtime settings for the OxySmart receiver."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Only peripherals whose advertised name contains this string are tried.
DEVICE_NAME_FILTER = "OxySmart"

# Nordic UART Service TX characteristic (device to client, notify)
NOTIFY_CHAR_UUID = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"

# Seconds to collect advertisements before listing discovered peripherals
SCAN_DWELL = 2.0

CONNECT_TIMEOUT = 20.0
SUBSCRIBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ReceiverConfig:
    """Runtime knobs for one receiver process.

    Attributes:
        adapters: Explicit adapter names (e.g. ``hci1``). Empty means
            enumerate the host radios.
        scan_dwell: Advertisement collection time per adapter, in seconds.
        connect_timeout: Upper bound for a single connect attempt.
        subscribe_timeout: Upper bound for enabling notifications.
        retry_delay: Pause between the end of a cycle and the next discovery.
            Zero restarts discovery immediately.
        show_header: Whether the CSV header line is written at startup.
    """

    adapters: tuple[str, ...] = ()
    scan_dwell: float = SCAN_DWELL
    connect_timeout: float = CONNECT_TIMEOUT
    subscribe_timeout: Optional[float] = SUBSCRIBE_TIMEOUT
    retry_delay: float = 0.0
    show_header: bool = True
