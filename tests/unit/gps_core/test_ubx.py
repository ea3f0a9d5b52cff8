"""Unit tests for UBX helpers built on pyubx2."""

import pytest
from pyubx2 import SET, UBXMessage

from scout_gps.gps_core.parsers.ubx import (
    ReceiverIdentity,
    UbloxSeries,
    ack_from_message,
    build_mon_ver_poll,
    classify_series,
    frame_checksum_ok,
    identity_from_mon_ver,
    parse_frame,
)
from tests.infrastructure.helpers import ack_frame, mon_ver_frame


class TestFrames:

    def test_mon_ver_poll_bytes(self):
        assert build_mon_ver_poll() == bytes.fromhex("b5620a0400000e34")

    def test_checksum_of_library_frame(self):
        frame = UBXMessage("CFG", "CFG-RATE", SET, measRate=1000, navRate=1, timeRef=1).serialize()
        assert frame[:6] == bytes([0xB5, 0x62, 0x06, 0x08, 0x06, 0x00])
        assert frame[-2:] == bytes([0x01, 0x39])
        assert frame_checksum_ok(frame)

    def test_checksum_mismatch_detected(self):
        frame = bytearray(UBXMessage("CFG", "CFG-RATE", SET, measRate=1000).serialize())
        frame[-2] ^= 0x01
        assert not frame_checksum_ok(bytes(frame))

    def test_short_frame_rejected(self):
        assert not frame_checksum_ok(b"\xb5\x62\x06")

    def test_parse_ack(self):
        ack = ack_from_message(parse_frame(ack_frame(0x06, 0x24)))
        assert (ack.class_id, ack.msg_id, ack.accepted) == (0x06, 0x24, True)

    def test_non_ack_message_has_no_ack(self):
        assert ack_from_message(parse_frame(mon_ver_frame())) is None


class TestIdentity:

    def test_identity_from_mon_ver(self):
        identity = identity_from_mon_ver(parse_frame(mon_ver_frame()))

        assert identity.sw_version == "ROM CORE 3.01 (107888)"
        assert identity.hw_version == "00080000"
        assert identity.extensions == ("FWVER=SPG 3.01", "PROTVER=18.00", "MOD=NEO-M8N")
        assert identity.firmware_version == "SPG 3.01"
        assert identity.is_recognized

    def test_to_dict(self):
        identity = ReceiverIdentity("1.00 (59842)", "00070000", (), UbloxSeries.SERIES_7, "u-blox 7")
        data = identity.to_dict()
        assert data["series"] == "series_7"
        assert data["firmware_version"] is None

    @pytest.mark.parametrize("hw,extensions,series,chip", [
        ("00070000", (), UbloxSeries.SERIES_7, "u-blox 7"),
        ("G70xx", (), UbloxSeries.SERIES_7, "u-blox 7"),
        ("00080000", ("MOD=NEO-M8N",), UbloxSeries.SERIES_8, "NEO-M8N"),
        ("00080000", ("FWVER=TIM 1.10",), UbloxSeries.SERIES_8, "NEO-M8T"),
        ("00080000", ("FWVER=HPG 1.40",), UbloxSeries.SERIES_8, "NEO-M8P"),
        ("00080000", ("FWVER=ADR 4.21",), UbloxSeries.SERIES_8, "NEO-M8U"),
        ("00080000", ("FWVER=SPG 3.01",), UbloxSeries.SERIES_8, "u-blox M8"),
        ("00190000", (), UbloxSeries.UNKNOWN, "u-blox (HW: 00190000)"),
    ])
    def test_classify_series(self, hw, extensions, series, chip):
        assert classify_series(hw, extensions) == (series, chip)

    def test_unknown_series_not_recognized(self):
        identity = ReceiverIdentity("x", "00190000", (), UbloxSeries.UNKNOWN, "u-blox (HW: 00190000)")
        assert not identity.is_recognized

    def test_series_display_name(self):
        assert str(UbloxSeries.SERIES_8) == "Series 8"
