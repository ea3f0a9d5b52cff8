"""Multi-constellation output for freshly connected u-blox receivers.

Out of the box many u-blox modules report GPS only. Right after connecting,
``UbloxAutoConfigurator`` enables GLONASS and SBAS tracking, extended NMEA
talker ids and GSV output so the satellite view covers every constellation
the receiver can hear. Nothing is saved to the receiver, and failures are
logged and ignored: a receiver that refuses is still usable as it is.
"""

from __future__ import annotations

from typing import Optional

from ..core.errors import GPSEngineError
from ..core.logging_utils import get_module_logger
from ..gps_core.connection_manager import ConnectionManager
from ..gps_core.constants import DEFAULT_ACK_TIMEOUT
from ..optimization.profiles import multi_constellation_commands
from .port_enumerator import PortDescriptor, list_ports
from .scanner import PortLister

logger = get_module_logger("UbloxSetup")


class UbloxAutoConfigurator:
    """ConnectionManager ``on_connect`` hook for u-blox receivers."""

    def __init__(
        self, port_lister: PortLister = list_ports, *, ack_timeout: float = DEFAULT_ACK_TIMEOUT
    ):
        self._port_lister = port_lister
        self._ack_timeout = ack_timeout

    async def __call__(self, connection: ConnectionManager, port_name: str, baud_rate: int) -> bool:
        """Configure the receiver on ``port_name``.

        Returns True when every command was acknowledged, False when the
        device is not a u-blox or the setup was skipped or partly rejected.
        """
        descriptor = await self._describe(port_name)
        if descriptor is None or not descriptor.is_ublox:
            logger.info("No u-blox device on %s, skipping UBX configuration", port_name)
            return False

        logger.info("u-blox device on %s, enabling multi-constellation output", port_name)
        applied = True
        for command in multi_constellation_commands():
            try:
                ack = await connection.send_ubx_and_wait_ack(command.frame, self._ack_timeout)
            except GPSEngineError as exc:
                logger.warning("Multi-constellation setup aborted (non-fatal): %s", exc.message)
                return False

            if ack is None:
                logger.warning("%s not acknowledged (non-fatal)", command.name)
                applied = False
            elif not ack.accepted:
                logger.warning("%s rejected by receiver (non-fatal)", command.name)
                applied = False
            else:
                logger.debug("%s acknowledged", command.name)

        if applied:
            logger.info("Multi-constellation output enabled on %s", port_name)
        return applied

    async def _describe(self, port_name: str) -> Optional[PortDescriptor]:
        try:
            ports = await self._port_lister()
        except GPSEngineError as exc:
            logger.warning("Cannot identify device on %s: %s", port_name, exc.message)
            return None
        for port in ports:
            if port.name == port_name:
                return port
        return None


__all__ = ["UbloxAutoConfigurator"]
