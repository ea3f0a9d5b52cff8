"""Byte-stream decoder for mixed NMEA / UBX receiver output.

``ProtocolDecoder.feed`` accepts arbitrary chunks as they come off the wire,
frames complete NMEA sentences and UBX frames, and merges them into the
parser's NavigationState. Incomplete tails are kept for the next call.
Anything unusable is dropped and counted; the stream is never aborted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.errors import DecodeError
from ..core.logging_utils import get_module_logger
from .constants import (
    MAX_SENTENCE_LENGTH,
    NMEA_END,
    NMEA_START,
    UBX_HEADER_LENGTH,
    UBX_MAX_PAYLOAD,
    UBX_SYNC,
)
from .parsers.nmea_parser import NMEAParser, split_header
from .parsers.nmea_types import NavigationState
from .parsers import ubx

logger = get_module_logger("Decoder")


@dataclass(slots=True)
class DecodedItem:
    """One complete NMEA sentence or UBX frame pulled from the stream."""

    kind: str  # "nmea" or "ubx"
    sentence_type: str
    raw: str = ""
    data: Optional[Dict[str, Any]] = None
    message: Any = None
    ack: Optional[ubx.UbxAck] = None
    identity: Optional[ubx.ReceiverIdentity] = None
    frame: bytes = field(default=b"", repr=False)

    @property
    def is_nmea(self) -> bool:
        return self.kind == "nmea"


class ProtocolDecoder:
    """Frames NMEA and UBX traffic and maintains the navigation state."""

    def __init__(self, parser: Optional[NMEAParser] = None, *, ubx_enabled: bool = True):
        self._parser = parser or NMEAParser()
        self._ubx_enabled = ubx_enabled
        self._buffer = bytearray()
        self.sentences_decoded = 0
        self.ubx_frames_decoded = 0
        self.decode_errors = 0

    @property
    def parser(self) -> NMEAParser:
        return self._parser

    @property
    def state(self) -> NavigationState:
        return self._parser.state

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._parser.reset()
        self._buffer.clear()
        self.sentences_decoded = 0
        self.ubx_frames_decoded = 0
        self.decode_errors = 0

    def feed(self, data: bytes) -> List[DecodedItem]:
        """Consume ``data`` and return every item completed by it."""
        if data:
            self._buffer.extend(data)

        items: List[DecodedItem] = []
        buf = self._buffer

        while buf:
            start = self._next_frame_start(buf)
            if start < 0:
                keep = 1 if self._ubx_enabled and buf.endswith(UBX_SYNC[:1]) else 0
                self._discard_garbage(len(buf) - keep)
                break
            if start > 0:
                self._discard_garbage(start)
                continue

            if buf.startswith(NMEA_START):
                progressed = self._take_sentence(items)
            else:
                progressed = self._take_ubx_frame(items)
            if not progressed:
                break

        return items

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    def _next_frame_start(self, buf: bytearray) -> int:
        nmea_at = buf.find(NMEA_START)
        ubx_at = buf.find(UBX_SYNC) if self._ubx_enabled else -1
        candidates = [pos for pos in (nmea_at, ubx_at) if pos >= 0]
        return min(candidates) if candidates else -1

    def _discard_garbage(self, count: int) -> None:
        if count <= 0:
            return
        junk = bytes(self._buffer[:count])
        del self._buffer[:count]
        if junk.strip():
            self.decode_errors += 1
            logger.debug("Discarded %d bytes between frames", len(junk))

    def _reject(self, count: int, reason: str) -> None:
        del self._buffer[:count]
        self.decode_errors += 1
        logger.debug("Dropped fragment: %s", reason)

    def _take_sentence(self, items: List[DecodedItem]) -> bool:
        buf = self._buffer
        end = buf.find(NMEA_END)
        limit = end if end >= 0 else len(buf)

        # A new frame starting before the terminator means this one was cut short
        interrupted = buf.find(NMEA_START, 1, limit)
        if self._ubx_enabled:
            sync_at = buf.find(UBX_SYNC, 1, limit)
            if sync_at >= 0 and (interrupted < 0 or sync_at < interrupted):
                interrupted = sync_at
        if interrupted > 0:
            self._reject(interrupted, "truncated sentence")
            return True

        if end < 0:
            if len(buf) > MAX_SENTENCE_LENGTH:
                self._reject(len(buf), "unterminated sentence exceeds maximum length")
                return True
            return False

        raw_bytes = bytes(buf[:end + 1])
        del buf[:end + 1]
        if len(raw_bytes) > MAX_SENTENCE_LENGTH:
            self.decode_errors += 1
            return True

        try:
            sentence = raw_bytes.decode("ascii").strip()
            data = self._parser.parse_sentence(sentence)
        except UnicodeDecodeError:
            self.decode_errors += 1
            return True
        except DecodeError as exc:
            self.decode_errors += 1
            logger.debug("Rejected sentence: %s", exc)
            return True

        self.sentences_decoded += 1
        _, sentence_type = split_header(sentence)
        items.append(DecodedItem(
            kind="nmea",
            sentence_type=sentence_type,
            raw=sentence,
            data=data,
        ))
        return True

    def _take_ubx_frame(self, items: List[DecodedItem]) -> bool:
        buf = self._buffer
        if len(buf) < UBX_HEADER_LENGTH:
            return False

        length = int.from_bytes(buf[4:6], "little")
        if length > UBX_MAX_PAYLOAD:
            self._reject(len(UBX_SYNC), f"UBX length {length} out of range")
            return True

        total = UBX_HEADER_LENGTH + length + 2
        if len(buf) < total:
            return False

        frame = bytes(buf[:total])
        if not ubx.frame_checksum_ok(frame):
            # Resync past the sync bytes only; a real frame may start inside
            self._reject(len(UBX_SYNC), "UBX checksum mismatch")
            return True

        del buf[:total]
        try:
            message = ubx.parse_frame(frame)
        except ubx.UBX_ERRORS as exc:
            self.decode_errors += 1
            logger.debug("Unparseable UBX frame %02X-%02X: %s", frame[2], frame[3], exc)
            return True

        self.ubx_frames_decoded += 1
        item = DecodedItem(
            kind="ubx",
            sentence_type=message.identity,
            message=message,
            frame=frame,
        )
        if message.identity == "MON-VER":
            item.identity = ubx.identity_from_mon_ver(message)
            self._parser.set_receiver(item.identity)
            logger.info(
                "Receiver identified: %s (%s)", item.identity.chip_name, item.identity.hw_version
            )
        else:
            item.ack = ubx.ack_from_message(message)
        items.append(item)
        return True


__all__ = ["DecodedItem", "ProtocolDecoder"]
