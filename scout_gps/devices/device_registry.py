"""Static lookup tables for identifying GPS receivers on serial ports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

UBLOX_VID = 0x1546


@dataclass(frozen=True)
class VendorSpec:
    """Known USB vendor."""
    vid: int
    name: str
    gps_vendor: bool  # False for generic USB-serial bridges


VENDORS: Dict[int, VendorSpec] = {
    UBLOX_VID: VendorSpec(UBLOX_VID, "u-blox AG", gps_vendor=True),
    0x091E: VendorSpec(0x091E, "Garmin International", gps_vendor=True),
    0x1199: VendorSpec(0x1199, "Sierra Wireless", gps_vendor=False),
    0x067B: VendorSpec(0x067B, "Prolific Technology", gps_vendor=False),
    0x10C4: VendorSpec(0x10C4, "Silicon Labs", gps_vendor=False),
    0x0403: VendorSpec(0x0403, "FTDI", gps_vendor=False),
    0x1A86: VendorSpec(0x1A86, "QinHeng Electronics", gps_vendor=False),
}

PRODUCTS: Dict[Tuple[int, int], str] = {
    (UBLOX_VID, 0x01A5): "u-blox 5 GPS receiver",
    (UBLOX_VID, 0x01A6): "u-blox 6 GPS receiver",
    (UBLOX_VID, 0x01A7): "u-blox 7 GNSS receiver",
    (UBLOX_VID, 0x01A8): "u-blox M8 GNSS receiver",
    (UBLOX_VID, 0x01A9): "u-blox F9 GNSS receiver",
    (0x067B, 0x2303): "PL2303 serial bridge (GlobalSat BU-353 and similar)",
    (0x10C4, 0xEA60): "CP210x serial bridge",
    (0x0403, 0x6001): "FT232R serial bridge",
    (0x0403, 0x6015): "FT231X serial bridge",
    (0x1A86, 0x7523): "CH340 serial bridge",
    (0x091E, 0x0003): "Garmin GPS (USB)",
}

GPS_KEYWORDS = (
    "gps", "gnss", "u-blox", "ublox", "sirf", "nmea", "garmin", "globalsat",
    "bu-353", "vk-162", "g-mouse", "receiver", "navigation",
)


def describe_usb_device(vid: Optional[int], pid: Optional[int]) -> Optional[str]:
    """Human-readable description from VID/PID, falling back to the vendor."""
    if vid is None:
        return None
    if pid is not None and (vid, pid) in PRODUCTS:
        return PRODUCTS[(vid, pid)]
    vendor = VENDORS.get(vid)
    return vendor.name if vendor else None


def matches_gps_keywords(*texts: Optional[str]) -> bool:
    for text in texts:
        if not text:
            continue
        lower = text.lower()
        if any(keyword in lower for keyword in GPS_KEYWORDS):
            return True
    return False


def is_gps_vendor(vid: Optional[int]) -> bool:
    vendor = VENDORS.get(vid) if vid is not None else None
    return bool(vendor and vendor.gps_vendor)


def is_ublox(vid: Optional[int], *texts: Optional[str]) -> bool:
    """u-blox by vendor ID, or by name in manufacturer/product strings."""
    if vid == UBLOX_VID:
        return True
    return any(text and ("u-blox" in text.lower() or "ublox" in text.lower()) for text in texts)
