from types import SimpleNamespace

import pytest

from iec_meter_sim import cli
from iec_meter_sim.driver import MeterEmulator, TransportOpenError


def test_build_settings_from_args():
    args = cli.build_parser().parse_args(
        ["--port", "/dev/ttyUSB0", "--identification", "/ABC5X", "--reading", "000001.000*kWh", "--settle-delay", "0.5"]
    )
    settings = cli.build_settings(args)
    assert settings.serial.port == "/dev/ttyUSB0"
    assert settings.serial.baudrate == 300
    assert settings.meter.identification == b"/ABC5X\r\n"
    assert settings.meter.energy_reading == "000001.000*kWh"
    assert settings.meter.settle_delay == 0.5


def test_default_args_match_meter_defaults():
    settings = cli.build_settings(cli.build_parser().parse_args(["-p", "COM1"]))
    assert settings.meter.identification == b"/SAT6EM72000656621\r\n"


class FakePort:
    busy = {"/dev/ttyS0"}

    def __init__(self, device):
        if device in self.busy:
            raise cli.serial.SerialException(f"could not open port {device}")

    def close(self):
        pass


@pytest.fixture
def ports(monkeypatch):
    found = [
        SimpleNamespace(device="/dev/ttyUSB0", description="USB Serial"),
        SimpleNamespace(device="/dev/ttyS0", description="Onboard UART"),
    ]
    monkeypatch.setattr(cli.serial.tools.list_ports, "comports", lambda: found)
    monkeypatch.setattr(cli.serial, "Serial", FakePort)
    return found


def test_list_ports_checks_each_port(ports):
    assert cli.list_ports() == [
        ("/dev/ttyUSB0", "USB Serial", True),
        ("/dev/ttyS0", "Onboard UART", False),
    ]


def test_list_ports_output_marks_busy(ports, capsys, caplog):
    with caplog.at_level("INFO", logger="iec_meter_sim.cli"):
        assert cli.main(["--list-ports"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["/dev/ttyUSB0: USB Serial", "/dev/ttyS0: Onboard UART (busy)"]
    assert any("1 active ports" in r.message for r in caplog.records)


def test_port_required():
    with pytest.raises(SystemExit) as info:
        cli.main([])
    assert info.value.code == 2


def test_invalid_identification_is_reported():
    assert cli.main(["-p", "COM1", "--identification", "SAT6"]) == 2


def test_open_failure_exit_status(monkeypatch):
    async def fail(self):
        raise TransportOpenError("Could not open COM9: busy")

    monkeypatch.setattr(MeterEmulator, "start", fail)
    assert cli.main(["-p", "COM9"]) == 1
