"""Unit tests for the scout-gps command line."""

import argparse

import pytest

from scout_gps import cli
from scout_gps.api import GPSTestEngine
from scout_gps.config import EngineConfig
from tests.infrastructure.helpers import gga, gsa, gsv_cycle, nmea_stream, satellites_with_snr
from tests.infrastructure.mocks import FakeSerialBus


@pytest.fixture
def bus():
    bus = FakeSerialBus()
    stream = nmea_stream(
        gga(), gsa(),
        *gsv_cycle("GP", satellites_with_snr([35, 32, 30, 31])),
        *gsv_cycle("GL", satellites_with_snr([28, 26, 22, 30], first_prn=65)),
    )
    bus.add_receiver("/dev/ttyACM0", 9600, [stream])
    return bus


@pytest.fixture
def engine(bus, tmp_path):
    config = EngineConfig(baud_rates=(9600,), probe_timeout_s=0.1, sample_interval_s=0.01,
                          ublox_auto_config=False, results_dir=tmp_path)
    return GPSTestEngine(config, transport_factory=bus.factory, port_lister=bus.list_ports)


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "install_signal_handlers", lambda loop, stop: None)


def parse(*argv):
    return cli.build_parser().parse_args(list(argv))


class TestParser:

    def test_global_options(self):
        args = parse("--log-level", "debug", "--probe-timeout", "1.5", "--no-ubx", "scan")
        assert args.command == "scan"
        assert args.log_level == "debug"
        assert args.probe_timeout == 1.5
        assert args.no_ubx is True

    def test_no_ubx_defaults_to_none(self):
        assert parse("ports").no_ubx is None

    def test_no_ublox_config(self):
        assert parse("--no-ublox-config", "scan").no_ublox_config is True
        assert parse("scan").no_ublox_config is None

    def test_probe_requires_port(self):
        with pytest.raises(SystemExit):
            parse("probe")

    def test_test_criteria(self):
        args = parse("test", "/dev/ttyACM0", "--criterion", "min_satellites=8",
                     "--criterion", "max_hdop = 1.5", "--save")
        assert args.port == "/dev/ttyACM0"
        assert args.baud == 9600
        assert args.criteria == [("min_satellites", "8"), ("max_hdop", "1.5")]
        assert args.save

    def test_monitor_port_optional(self):
        args = parse("monitor", "--duration", "5")
        assert args.port is None
        assert args.duration == 5.0

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse()


class TestArgumentTypes:

    def test_positive_float(self):
        assert cli.positive_float("0.5") == 0.5
        with pytest.raises(argparse.ArgumentTypeError):
            cli.positive_float("0")
        with pytest.raises(argparse.ArgumentTypeError):
            cli.positive_float("soon")

    def test_criterion_assignment(self):
        assert cli.criterion_assignment("min_avg_snr=30") == ("min_avg_snr", "30")
        with pytest.raises(argparse.ArgumentTypeError):
            cli.criterion_assignment("min_avg_snr")


class TestFormatting:

    def test_ports(self):
        text = cli._format_ports([
            {"name": "/dev/ttyACM0", "port_type": "USB", "is_likely_gps": True,
             "product": "u-blox GNSS receiver", "description": None},
        ])
        assert text.startswith("* /dev/ttyACM0")
        assert "u-blox GNSS receiver" in text
        assert cli._format_ports([]) == "No serial ports found."

    def test_state(self):
        text = cli._format_state({
            "fix_quality_label": "GPS", "latitude": 48.1173, "longitude": 11.516667,
            "satellites_in_use": 8, "satellites": [{}] * 10, "hdop": 0.9, "speed_kmh": None,
        })
        assert text == "GPS | 48.117300, 11.516667 | sats 8/10 | HDOP 0.9"

    def test_state_without_fix(self):
        assert cli._format_state({}) == "No fix | sats 0/0"

    def test_test_result(self):
        text = cli._format_test({
            "verdict": "fail",
            "ttff_seconds": None,
            "criteria_results": [
                {"name": "Min satellites", "passed": False, "expected": "≥6", "actual": "5"},
            ],
        })
        assert text.splitlines()[0] == "Verdict: FAIL"
        assert "Time to first fix: -" in text
        assert "[FAIL] Min satellites" in text

    def test_optimization_error(self):
        status = {"phase": "error", "error": "Unsupported hardware: no MON-VER response"}
        assert cli._format_optimization(status) == (
            "Optimization failed: Unsupported hardware: no MON-VER response"
        )


class TestCommands:

    @pytest.mark.asyncio
    async def test_ports(self, engine, capsys):
        code = await cli.run(parse("ports"), engine)

        assert code == cli.EXIT_OK
        assert "/dev/ttyACM0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_probe_detects(self, engine, capsys):
        code = await cli.run(parse("probe", "/dev/ttyACM0", "--baud", "9600"), engine)

        assert code == cli.EXIT_OK
        assert "NMEA detected" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_probe_wrong_baud(self, engine):
        assert await cli.run(parse("probe", "/dev/ttyACM0", "--baud", "4800"), engine) == cli.EXIT_FAILED

    @pytest.mark.asyncio
    async def test_scan_nothing_found(self, tmp_path, capsys):
        empty = FakeSerialBus()
        empty.add_port("/dev/ttyS0")
        engine = GPSTestEngine(
            EngineConfig(baud_rates=(9600,), probe_timeout_s=0.05, results_dir=tmp_path),
            transport_factory=empty.factory, port_lister=empty.list_ports,
        )

        assert await cli.run(parse("scan"), engine) == cli.EXIT_FAILED
        assert "No GPS receiver found." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_invalid_criterion(self, engine, capsys):
        code = await cli.run(parse("test", "/dev/ttyACM0", "--criterion", "max_hdop=-1"), engine)

        assert code == cli.EXIT_ERROR
        assert "set_criteria failed" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_run_auto_detects_and_saves(self, engine, tmp_path, capsys):
        args = parse("test", "--criterion", "stability_duration_seconds=0", "--save")

        code = await cli.run(args, engine)

        out = capsys.readouterr().out
        assert "Using /dev/ttyACM0 at 9600 baud" in out
        assert "Verdict:" in out
        assert code in (cli.EXIT_OK, cli.EXIT_FAILED)
        assert list(tmp_path.glob("gps-test_*.json"))
        assert engine.connection.owned_port is None
