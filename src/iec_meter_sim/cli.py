"""
Command line entry point: list serial ports, or open one and answer as the
emulated meter until interrupted.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional, Tuple

import serial
import serial.tools.list_ports
from pydantic import ValidationError

from iec_meter_sim.config import EmulatorSettings, MeterSettings, SerialSettings
from iec_meter_sim.core import DEFAULT_ENERGY_READING, DEFAULT_IDENTIFICATION
from iec_meter_sim.driver import MeterEmulator, TransportOpenError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iec-meter-sim",
        description="Emulate an IEC 62056-21 meter on a serial port",
    )
    parser.add_argument(
        "--port", "-p",
        help="Serial port device (e.g., '/dev/ttyUSB0' or 'COM3')",
    )
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List available serial ports and exit",
    )
    parser.add_argument(
        "--identification",
        default=DEFAULT_IDENTIFICATION.decode("ascii").strip(),
        help="Identification string sent in reply to '/?!' (CR LF is appended)",
    )
    parser.add_argument(
        "--reading",
        default=DEFAULT_ENERGY_READING,
        help="Value reported for OBIS 1.8.0 (default: %(default)s)",
    )
    parser.add_argument(
        "--settle-delay",
        type=float,
        default=0.2,
        help="Seconds between ACK and the baud switch (default: %(default)s)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Also log every received line",
    )
    return parser


def port_available(device: str) -> bool:
    try:
        serial.Serial(device).close()
    except (serial.SerialException, OSError, ValueError):
        return False
    return True


def list_ports() -> List[Tuple[str, str, bool]]:
    """Every enumerated port, with whether it can be opened right now."""
    return [
        (port.device, port.description, port_available(port.device))
        for port in serial.tools.list_ports.comports()
    ]


def build_settings(args: argparse.Namespace) -> EmulatorSettings:
    return EmulatorSettings(
        serial=SerialSettings(port=args.port),
        meter=MeterSettings(
            identification=args.identification.encode("ascii") + b"\r\n",
            energy_reading=args.reading,
            settle_delay=args.settle_delay,
        ),
    )


async def run(settings: EmulatorSettings) -> None:
    emulator = MeterEmulator(settings)
    await emulator.start()
    try:
        await emulator.serve_forever()
    finally:
        await emulator.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.list_ports:
        ports = list_ports()
        for device, description, available in ports:
            print(f"{device}: {description}" + ("" if available else " (busy)"))
        active = sum(1 for _, _, available in ports if available)
        logger.info("Port list refreshed (%d active ports found)", active)
        return 0

    if not args.port:
        parser.error("--port is required unless --list-ports is given")

    try:
        settings = build_settings(args)
    except (ValidationError, UnicodeEncodeError) as e:
        logger.error("Invalid settings: %s", e)
        return 2

    try:
        asyncio.run(run(settings))
    except TransportOpenError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
