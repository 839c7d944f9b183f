from pydantic import BaseModel
from typing import List

from iec_meter_sim.core import ControlByte, OBIS_CODE, DEFAULT_ENERGY_READING


def bcc(data: bytes) -> int:
    chk = 0
    for b in data:
        chk ^= b
    return chk


class ObisRequest(BaseModel):
    command: bytes = b"R2"
    code: str = OBIS_CODE

    def to_packet(self) -> bytes:
        body = f"{self.code}()".encode("ascii")
        return (
            bytes([ControlByte.SOH]) + self.command
            + bytes([ControlByte.STX]) + body + bytes([ControlByte.ETX])
        )


class ObisResponse(BaseModel):
    code: str = OBIS_CODE
    value: str = DEFAULT_ENERGY_READING

    def payload(self) -> bytes:
        """STX..ETX span the BCC is computed over, delimiters included."""
        body = f"{self.code}({self.value})".encode("ascii")
        return bytes([ControlByte.STX]) + body + bytes([ControlByte.ETX])

    def to_packet(self) -> bytes:
        payload = self.payload()
        return payload + bytes([bcc(payload)])


OBIS_REQUEST_FRAME = ObisRequest().to_packet()


def contains_obis_frame(buffer: bytes) -> bool:
    return OBIS_REQUEST_FRAME in buffer


class FrameScanner:
    """
    Incremental matcher for a fixed byte pattern that is not line delimited.

    Keeps a partial-match cursor between calls, so a frame split across
    several inbound chunks is still found and no byte is scanned twice.
    """

    def __init__(self, pattern: bytes = OBIS_REQUEST_FRAME) -> None:
        if not pattern:
            raise ValueError("pattern must not be empty")
        self._pattern = pattern
        self._fallback = self._failure_table(pattern)
        self._matched = 0

    @staticmethod
    def _failure_table(pattern: bytes) -> List[int]:
        table = [0] * len(pattern)
        k = 0
        for i in range(1, len(pattern)):
            while k and pattern[i] != pattern[k]:
                k = table[k - 1]
            if pattern[i] == pattern[k]:
                k += 1
            table[i] = k
        return table

    @property
    def matched(self) -> int:
        return self._matched

    def reset(self) -> None:
        self._matched = 0

    def push(self, byte: int) -> bool:
        """Advance by one byte; True when that byte completed the pattern."""
        k = self._matched
        while k and byte != self._pattern[k]:
            k = self._fallback[k - 1]
        if byte == self._pattern[k]:
            k += 1
        if k == len(self._pattern):
            self._matched = self._fallback[k - 1]
            return True
        self._matched = k
        return False
