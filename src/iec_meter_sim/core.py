from enum import Enum, IntEnum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ControlByte(IntEnum):
    SOH = 0x01
    STX = 0x02
    ETX = 0x03
    ACK = 0x06
    LF = 0x0A
    CR = 0x0D


class BaudRate(IntEnum):
    BAUD_300 = 300
    BAUD_9600 = 9600


class SessionState(Enum):
    AWAITING_HANDSHAKE = "awaiting_handshake"
    SWITCHED_9600 = "switched_9600"


class ReplyKind(Enum):
    IDENTIFICATION = "identification"
    ACK = "ack"
    OBIS = "obis"


IDENTIFICATION_TRIGGER = "/?!"
ACK_ASCII_TRIGGER = "050"
ACK_HEX_PREFIX = "06"

DEFAULT_IDENTIFICATION = b"/SAT6EM72000656621\r\n"
OBIS_CODE = "1.8.0"
DEFAULT_ENERGY_READING = "000123.456*kWh"


class Line(BaseModel):
    """One LF-terminated line, as hex and printable projections."""
    model_config = ConfigDict(frozen=True)

    hex: str
    ascii: str


class Reply(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ReplyKind
    payload: bytes = Field(..., min_length=1)
    baudrate: Optional[int] = None  # switch after the settle delay
