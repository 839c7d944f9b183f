import logging
from typing import Callable, Iterator, List, Optional

from iec_meter_sim.config import MeterSettings
from iec_meter_sim.core import (
    ACK_ASCII_TRIGGER,
    ACK_HEX_PREFIX,
    IDENTIFICATION_TRIGGER,
    ControlByte,
    Line,
    Reply,
    ReplyKind,
    SessionState,
)
from iec_meter_sim.frame import FrameScanner, ObisResponse

logger = logging.getLogger(__name__)

TraceSink = Callable[[str, bool], None]


def log_trace(message: str, highlighted: bool = False) -> None:
    logger.log(logging.INFO if highlighted else logging.DEBUG, message)


class LineFramer:
    """
    Splits an inbound byte stream into LF-terminated lines.

    Each byte is recorded twice: as an uppercase hex pair and as its printable
    character (``.`` for anything outside 0x20-0x7E). The terminator itself is
    part of the line it closes.
    """

    def __init__(self) -> None:
        self.line_hex = bytearray()
        self.line_ascii = bytearray()

    def push(self, byte: int) -> Optional[Line]:
        self.line_hex += b"%02X " % byte
        self.line_ascii.append(byte if 0x20 <= byte <= 0x7E else 0x2E)
        if byte != ControlByte.LF:
            return None
        line = Line(
            hex=self.line_hex.decode("ascii").strip(),
            ascii=self.line_ascii.decode("ascii").strip(),
        )
        self.clear()
        return line

    def feed(self, data: bytes) -> Iterator[Line]:
        for byte in data:
            line = self.push(byte)
            if line is not None:
                yield line

    def clear(self) -> None:
        self.line_hex.clear()
        self.line_ascii.clear()


class Session:
    """Per-connection interpreter state; nothing here outlives the transport."""

    def __init__(self) -> None:
        self.bauded9600 = False
        self.raw_buffer = bytearray()
        self.framer = LineFramer()
        self.scanner = FrameScanner()

    @property
    def state(self) -> SessionState:
        if self.bauded9600:
            return SessionState.SWITCHED_9600
        return SessionState.AWAITING_HANDSHAKE


class ProtocolInterpreter:

    def __init__(self, settings: Optional[MeterSettings] = None, trace: TraceSink = log_trace) -> None:
        self._settings = settings or MeterSettings()
        self._trace = trace
        self._obis = ObisResponse(value=self._settings.energy_reading)
        self.session = Session()

    @property
    def state(self) -> SessionState:
        return self.session.state

    def feed(self, data: bytes) -> List[Reply]:
        """
        Consume one inbound chunk and return the replies to send, in order.

        Processing of the chunk stops right after an OBIS request is answered;
        bytes that followed the frame in the same chunk are dropped.
        """
        session = self.session
        replies: List[Reply] = []
        for byte in data:
            session.raw_buffer.append(byte)
            line = session.framer.push(byte)
            if line is not None:
                replies.extend(self._on_line(line))
            if session.scanner.push(byte):
                if session.bauded9600:
                    replies.append(self._obis_reply())
                    session.raw_buffer.clear()
                    return replies
                self._trace("OBIS request ignored before baud switch", False)
        if len(session.raw_buffer) > self._settings.buffer_limit:
            del session.raw_buffer[:len(session.raw_buffer) - self._settings.buffer_keep]
        return replies

    def _on_line(self, line: Line) -> List[Reply]:
        self._trace(f"RX (HEX): {line.hex}", False)
        self._trace(f"RX (ASCII): {line.ascii}", False)
        replies = []
        if IDENTIFICATION_TRIGGER in line.ascii:
            self._trace("-> identification request received", True)
            replies.append(self._identification_reply())
        if (
            not self.session.bauded9600
            and ACK_ASCII_TRIGGER in line.ascii
            and line.hex.startswith(ACK_HEX_PREFIX)
        ):
            self._trace("-> ACK050 received, switching baud rate", True)
            replies.append(self._ack_reply())
            self.session.bauded9600 = True
        return replies

    def _identification_reply(self) -> Reply:
        ident = self._settings.identification
        self._trace(f"<- identification sent: {ident.decode('ascii', errors='replace').strip()}", True)
        return Reply(kind=ReplyKind.IDENTIFICATION, payload=ident)

    def _ack_reply(self) -> Reply:
        self._trace(f"<- ACK sent, baud rate -> {self._settings.switch_baudrate}", True)
        return Reply(
            kind=ReplyKind.ACK,
            payload=bytes([ControlByte.ACK]),
            baudrate=self._settings.switch_baudrate,
        )

    def _obis_reply(self) -> Reply:
        self._trace(f"-> OBIS {self._obis.code} request received", True)
        packet = self._obis.to_packet()
        self._trace(f"<- OBIS reading sent: {self._obis.code}({self._obis.value})", True)
        return Reply(kind=ReplyKind.OBIS, payload=packet)
