import pytest
from pydantic import ValidationError

from iec_meter_sim.config import EmulatorSettings, MeterSettings, SerialSettings


def test_serial_defaults_are_mode_c_start_profile():
    cfg = SerialSettings(port="COM3")
    assert (cfg.baudrate, cfg.bytesize, cfg.parity, cfg.stopbits) == (300, 7, "E", 1)
    assert not cfg.rtscts and not cfg.xonxoff


def test_parity_is_normalised():
    assert SerialSettings(port="x", parity="o").parity == "O"


@pytest.mark.parametrize("kwargs", [{"parity": "X"}, {"stopbits": 3}, {"bytesize": 9}])
def test_invalid_serial_settings(kwargs):
    with pytest.raises(ValidationError):
        SerialSettings(port="x", **kwargs)


def test_meter_defaults():
    meter = MeterSettings()
    assert meter.identification == b"/SAT6EM72000656621\r\n"
    assert meter.energy_reading == "000123.456*kWh"
    assert meter.switch_baudrate == 9600
    assert meter.settle_delay == 0.2
    assert (meter.buffer_limit, meter.buffer_keep) == (1024, 512)


def test_identification_needs_framing():
    with pytest.raises(ValidationError):
        MeterSettings(identification=b"SAT6EM72000656621\r\n")
    with pytest.raises(ValidationError):
        MeterSettings(identification=b"/SAT6EM72000656621")


def test_buffer_keep_below_limit():
    with pytest.raises(ValidationError):
        MeterSettings(buffer_limit=100, buffer_keep=100)


def test_negative_settle_delay_rejected():
    with pytest.raises(ValidationError):
        MeterSettings(settle_delay=-0.1)


def test_emulator_settings_default_meter():
    settings = EmulatorSettings(serial=SerialSettings(port="x"))
    assert settings.meter == MeterSettings()
