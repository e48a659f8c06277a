#!/usr/bin/env python3
"""
BLE diagnostics for the OxySmart receiver: radio state, adapters, nearby oximeters.
"""

import asyncio
import logging
import platform
import subprocess
import sys

# Configure logging for diagnostics tool
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",  # Simple format for user-friendly output
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

try:
    from oxysmart_receiver.config import DEVICE_NAME_FILTER
    from oxysmart_receiver.errors import ScanFailure
    from oxysmart_receiver.scanner import PeripheralScanner, list_adapters, matches_name
except ImportError:
    logger.error("❌ oxysmart_receiver not installed. Run 'pip install -e .' first.")
    sys.exit(1)


def check_bluetooth_status() -> bool:
    """Check if Bluetooth is available and powered."""
    logger.info("🔵 Checking Bluetooth status...")

    system = platform.system().lower()
    if system == "darwin":
        command, marker = ["system_profiler", "SPBluetoothDataType"], "State: On"
    elif system == "linux":
        command, marker = ["bluetoothctl", "show"], "Powered: yes"
    else:
        logger.warning(f"⚠️ Bluetooth status check not implemented for {system}")
        return True

    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"⚠️ Could not check Bluetooth status: {e}")
        return True

    if marker in result.stdout:
        logger.info("✅ Bluetooth is powered on")
        return True
    logger.error("❌ Bluetooth appears to be powered off")
    return False


async def scan_adapters(dwell: float) -> int:
    """Scan every adapter once and report name-matching peripherals."""
    adapters = list_adapters()
    if not adapters:
        logger.error("❌ No Bluetooth adapters found")
        return 0

    scanner = PeripheralScanner(scan_dwell=dwell)
    matches = 0
    for adapter in adapters:
        logger.info(f"📡 Scanning on adapter {adapter.label} for {dwell}s...")
        try:
            candidates = await scanner.scan_adapter(adapter)
        except ScanFailure as e:
            logger.error(f"❌ {e}")
            continue

        logger.info(f"✅ Found {len(candidates)} BLE device(s)")
        for candidate in candidates:
            logger.info(f"   📱 {candidate.label} ({candidate.address})")
            if matches_name(candidate.name):
                matches += 1
                logger.info("      🎯 Name matches the receiver filter")

    if not matches:
        logger.warning(f"\n⚠️ No devices with {DEVICE_NAME_FILTER!r} in their name found")
        logger.info("💡 Switch the oximeter on and insert a finger so it starts advertising")
    return matches


async def main() -> None:
    """Run BLE diagnostics."""
    logger.info("🔧 OxySmart BLE Diagnostics")
    logger.info("=" * 40)

    if not check_bluetooth_status():
        logger.error(
            "\n❌ Bluetooth issues detected. Please enable Bluetooth and try again."
        )
        return

    await scan_adapters(dwell=10.0)
    logger.info("\n🏁 Diagnostics complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("\n👋 Diagnostics cancelled by user")
