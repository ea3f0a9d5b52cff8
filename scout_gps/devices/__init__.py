"""Serial port enumeration and GPS receiver discovery."""

from .port_enumerator import PortDescriptor, describe_port, likely_gps_first, list_ports
from .scanner import DeviceScanner, ScanResult, ScanState, ScanStatus
from .ublox_setup import UbloxAutoConfigurator

__all__ = [
    "DeviceScanner",
    "PortDescriptor",
    "ScanResult",
    "ScanState",
    "ScanStatus",
    "UbloxAutoConfigurator",
    "describe_port",
    "likely_gps_first",
    "list_ports",
]
