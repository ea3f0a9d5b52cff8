"""Serial port enumeration with GPS heuristics."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import serial.tools.list_ports
from serial.tools.list_ports_common import ListPortInfo

from ..core.errors import PortIOError
from ..core.logging_utils import get_module_logger
from .device_registry import describe_usb_device, is_gps_vendor, is_ublox, matches_gps_keywords

logger = get_module_logger("PortEnumerator")


@dataclass(frozen=True)
class PortDescriptor:
    """Serial interface as seen at enumeration time."""
    name: str                          # e.g. "/dev/ttyACM0" or "COM3"
    port_type: str = "Unknown"         # USB, Bluetooth, PCI, Unknown
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    serial_number: Optional[str] = None
    vid: Optional[int] = None
    pid: Optional[int] = None
    description: Optional[str] = None
    is_likely_gps: bool = False
    is_ublox: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _port_type(info: ListPortInfo) -> str:
    if info.vid is not None:
        return "USB"
    hwid = (info.hwid or "").upper()
    text = f"{info.device} {info.description or ''}".lower()
    if "bluetooth" in text or "rfcomm" in text or "BTHENUM" in hwid:
        return "Bluetooth"
    if "PCI" in hwid:
        return "PCI"
    return "Unknown"


def describe_port(info: ListPortInfo) -> PortDescriptor:
    """Build a PortDescriptor from a pyserial ListPortInfo."""
    port_type = _port_type(info)
    usb = port_type == "USB"
    manufacturer = info.manufacturer if usb else None
    product = info.product if usb else None

    likely = usb and (
        is_gps_vendor(info.vid) or matches_gps_keywords(manufacturer, product)
    )

    return PortDescriptor(
        name=info.device,
        port_type=port_type,
        manufacturer=manufacturer,
        product=product,
        serial_number=info.serial_number if usb else None,
        vid=info.vid,
        pid=info.pid,
        description=describe_usb_device(info.vid, info.pid),
        is_likely_gps=likely,
        is_ublox=usb and is_ublox(info.vid, manufacturer, product),
    )


def likely_gps_first(ports: Sequence[PortDescriptor]) -> List[PortDescriptor]:
    """Stable sort: likely-GPS ports first, original order otherwise kept."""
    return sorted(ports, key=lambda port: not port.is_likely_gps)


async def list_ports() -> List[PortDescriptor]:
    """Enumerate serial interfaces.

    Raises:
        PortIOError: the operating system refused enumeration.
    """
    try:
        infos = await asyncio.to_thread(serial.tools.list_ports.comports)
    except OSError as exc:
        raise PortIOError(str(exc), operation="list_ports") from exc

    ports = [describe_port(info) for info in infos]
    logger.debug(
        "Found %d serial ports (%d likely GPS)",
        len(ports), sum(1 for port in ports if port.is_likely_gps),
    )
    return ports


__all__ = ["PortDescriptor", "describe_port", "likely_gps_first", "list_ports"]
