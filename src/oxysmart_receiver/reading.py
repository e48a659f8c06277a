"""Pulse-oximeter notification frames and the readings decoded from them.

The OxySmart family pushes a short binary frame on the Nordic UART TX
characteristic for every measurement cycle. Only one frame layout carries
live SpO2 and pulse values::

    byte 0-4  AA 55 0F 08 01   fixed header
    byte 5    SpO2 (%)
    byte 6    pulse rate (bpm)
    byte 7..  ignored

Other payloads share the same characteristic (waveform packets, status
packets) and are dropped without complaint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

FRAME_HEADER = bytes([0xAA, 0x55, 0x0F, 0x08, 0x01])
FRAME_MIN_LENGTH = len(FRAME_HEADER) + 2

CSV_HEADER = "time,spo2,heartrate"


@dataclass(frozen=True)
class Reading:
    """One accepted SpO2 / heart-rate sample.

    Attributes:
        timestamp: UTC instant at which the frame was decoded. The device
            does not send its own clock, so capture time is host time.
        spo2: Blood-oxygen saturation, 0-255 on the wire, 0-100 in practice.
        heart_rate: Pulse rate in beats per minute, 0-255.
    """

    timestamp: datetime
    spo2: int
    heart_rate: int

    def to_csv(self) -> str:
        """Render as ``<RFC3339 UTC>,<spo2>,<heartrate>``."""
        return f"{self.timestamp.isoformat()},{self.spo2},{self.heart_rate}"


def decode_notification(
    data: bytes | bytearray, now: Optional[datetime] = None
) -> Optional[Reading]:
    """Decode one raw notification payload.

    Args:
        data: Bytes exactly as delivered by the notification callback.
        now: Capture instant to stamp the reading with. Defaults to the
            current UTC time; tests pass a fixed value.

    Returns:
        A Reading for a well-formed measurement frame, or None when the
        payload is too short, carries a different header, or reports the
        all-zero idle state (finger not inserted).
    """
    if len(data) < FRAME_MIN_LENGTH or bytes(data[:5]) != FRAME_HEADER:
        return None

    spo2, heart_rate = data[5], data[6]
    if spo2 == 0 and heart_rate == 0:
        logger.debug("Suppressing idle frame (spo2=0, heartrate=0)")
        return None

    return Reading(
        timestamp=now if now is not None else datetime.now(timezone.utc),
        spo2=spo2,
        heart_rate=heart_rate,
    )
