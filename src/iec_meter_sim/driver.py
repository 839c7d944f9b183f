import asyncio
import logging
from typing import List, Optional

import serial_asyncio

from iec_meter_sim.config import EmulatorSettings, MeterSettings
from iec_meter_sim.core import Reply
from iec_meter_sim.protocol import ProtocolInterpreter, TraceSink, log_trace

logger = logging.getLogger(__name__)

DRAIN_POLL_INTERVAL = 0.005


class MeterError(Exception):
    """Base Meter Emulator Exception"""


class TransportOpenError(MeterError):
    """The serial port could not be opened"""


class MeterProtocol(asyncio.Protocol):
    """
    asyncio side of the emulated meter.

    Owns one ``ProtocolInterpreter`` per connection and carries out the replies
    it returns. The baud switch after an ACK runs as a background task (drain,
    settle delay, reconfigure) so inbound data keeps flowing meanwhile.
    """

    def __init__(self, settings: Optional[MeterSettings] = None, trace: TraceSink = log_trace) -> None:
        self._settings = settings or MeterSettings()
        self._trace = trace
        self._transport: Optional[asyncio.Transport] = None
        self._settle_task: Optional[asyncio.Task] = None
        self.interpreter: Optional[ProtocolInterpreter] = None
        self.closed: asyncio.Future = asyncio.get_running_loop().create_future()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        self.interpreter = ProtocolInterpreter(self._settings, self._trace)
        logger.info("Connection established (%d bps)", self.baudrate or 0)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.cancel_settle()
        self._transport = None
        self.interpreter = None
        if exc is not None:
            logger.error("Connection lost: %s", exc)
        else:
            logger.info("Connection closed")
        if not self.closed.done():
            self.closed.set_result(None)

    def data_received(self, data: bytes) -> None:
        if self.interpreter is None:
            return
        self.send(self.interpreter.feed(data))

    def _ensure_connected(self) -> asyncio.Transport:
        if self._transport is None:
            raise RuntimeError("Not connected. Call await start() first.")
        return self._transport

    @property
    def baudrate(self) -> Optional[int]:
        if self._transport is None:
            return None
        return self._transport.serial.baudrate  # type: ignore[attr-defined]

    @property
    def settle_pending(self) -> bool:
        return self._settle_task is not None

    def send(self, replies: List[Reply]) -> None:
        transport = self._ensure_connected()
        for reply in replies:
            transport.write(reply.payload)
            if reply.baudrate is not None:
                self.cancel_settle()
                loop = asyncio.get_running_loop()
                self._settle_task = loop.create_task(self._switch_baudrate(reply.baudrate))

    async def drain(self) -> None:
        """
        Wait until every queued byte has left the UART.

        The transport's own write buffer is polled first; the blocking
        ``tcdrain`` behind ``Serial.flush()`` then runs in the default executor
        so the event loop keeps servicing inbound data.
        """
        transport = self._ensure_connected()
        while transport.get_write_buffer_size():
            await asyncio.sleep(DRAIN_POLL_INTERVAL)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._flush_serial, transport.serial)  # type: ignore[attr-defined]

    @staticmethod
    def _flush_serial(port) -> None:
        try:
            port.flush()
        except (serial_asyncio.serial.SerialException, OSError) as e:
            logger.warning("Flush failed: %s", e)

    def cancel_settle(self) -> None:
        if self._settle_task is not None:
            self._settle_task.cancel()
            self._settle_task = None

    async def _switch_baudrate(self, baudrate: int) -> None:
        await self.drain()
        await asyncio.sleep(self._settings.settle_delay)
        self._settle_task = None
        self.set_baudrate(baudrate)

    def set_baudrate(self, baudrate: int) -> bool:
        if self._transport is None:
            return False
        try:
            self._transport.serial.baudrate = baudrate  # type: ignore[attr-defined]
        except (serial_asyncio.serial.SerialException, ValueError, OSError) as e:
            logger.warning("Baud rate could not be changed to %d: %s", baudrate, e)
            return False
        self._trace(f"Baud rate set to {baudrate}", True)
        return True


class MeterEmulator:

    def __init__(self, settings: EmulatorSettings, trace: TraceSink = log_trace) -> None:
        self._settings = settings
        self._trace = trace
        self._transport: Optional[asyncio.Transport] = None
        self._protocol: Optional[MeterProtocol] = None

    @property
    def protocol(self) -> Optional[MeterProtocol]:
        return self._protocol

    def _ensure_connected(self) -> MeterProtocol:
        if self._transport is None or self._protocol is None:
            raise RuntimeError("Not connected. Call await start() first.")
        return self._protocol

    async def start(self) -> None:
        cfg = self._settings.serial
        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await serial_asyncio.create_serial_connection(
                loop,
                lambda: MeterProtocol(self._settings.meter, self._trace),
                url=cfg.port,
                baudrate=cfg.baudrate,
                bytesize=cfg.bytesize,
                parity=cfg.parity,
                stopbits=cfg.stopbits,
                rtscts=cfg.rtscts,
                xonxoff=cfg.xonxoff,
            )
        except (serial_asyncio.serial.SerialException, OSError, ValueError) as e:
            raise TransportOpenError(f"Could not open {cfg.port}: {e}") from e
        self._transport = transport
        self._protocol = protocol

    async def serve_forever(self) -> None:
        protocol = self._ensure_connected()
        await protocol.closed

    async def close(self) -> None:
        if self._protocol is not None:
            self._protocol.cancel_settle()
        if self._transport is not None and self._protocol is not None:
            self._transport.close()
            await self._protocol.closed
        self._transport = None
        self._protocol = None
