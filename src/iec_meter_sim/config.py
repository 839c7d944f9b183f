from pydantic import BaseModel, Field, field_validator, model_validator

from iec_meter_sim.core import BaudRate, DEFAULT_IDENTIFICATION, DEFAULT_ENERGY_READING


class SerialSettings(BaseModel):
    port: str
    baudrate: int = BaudRate.BAUD_300.value
    bytesize: int = Field(7, ge=5, le=8)
    parity: str = "E"
    stopbits: float = 1
    rtscts: bool = False
    xonxoff: bool = False

    @field_validator("parity")
    @classmethod
    def check_parity(cls, v: str) -> str:
        v = v.upper()
        if v not in ("N", "E", "O", "M", "S"):
            raise ValueError(f"Unknown parity {v!r}")
        return v

    @field_validator("stopbits")
    @classmethod
    def check_stopbits(cls, v: float) -> float:
        if v not in (1, 1.5, 2):
            raise ValueError("stopbits must be 1, 1.5 or 2")
        return v


class MeterSettings(BaseModel):
    identification: bytes = DEFAULT_IDENTIFICATION
    energy_reading: str = DEFAULT_ENERGY_READING
    switch_baudrate: int = BaudRate.BAUD_9600.value
    settle_delay: float = Field(0.2, ge=0.0)
    buffer_limit: int = Field(1024, gt=0)
    buffer_keep: int = Field(512, ge=0)

    @field_validator("identification")
    @classmethod
    def check_identification(cls, v: bytes) -> bytes:
        if not v.startswith(b"/") or not v.endswith(b"\r\n"):
            raise ValueError("identification must start with '/' and end with CR LF")
        return v

    @model_validator(mode="after")
    def check_buffer(self):
        if self.buffer_keep >= self.buffer_limit:
            raise ValueError("buffer_keep must be smaller than buffer_limit")
        return self


class EmulatorSettings(BaseModel):
    serial: SerialSettings
    meter: MeterSettings = Field(default_factory=MeterSettings)
