"""TDMA frame format: construction, wire encoding, validation and the global slot clock."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

FRAME_HEADER = bytes([0xAA, 0x55, 0xAA, 0x55, 0xAA, 0x55, 0xAA, 0x55])
FRAME_FOOTER = bytes([0x55, 0xAA, 0x55, 0xAA, 0x55, 0xAA, 0x55, 0xAA])

NODE_ID_SIZE = 32
MIN_FRAME_SIZE = 60

TDMA_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

_PREFIX = struct.Struct(">8sI32sIIHHH")
_SUFFIX = struct.Struct(">I8s")

_U32 = 0xFFFFFFFF
_U16 = 0xFFFF


class FrameFlag(enum.IntFlag):
    """Bits of the frame's flags field."""

    FRAGMENT = 0x0001
    FIRST_FRAG = 0x0002
    LAST_FRAG = 0x0004
    NEED_ACK = 0x0008


class FrameError(ValueError):
    """Raised when a frame cannot be encoded, decoded or validated."""


def _truncating_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _truncating_mod(a: int, b: int) -> int:
    r = abs(a) % abs(b)
    return r if a >= 0 else -r


def _as_timedelta(duration: timedelta | float) -> timedelta:
    if isinstance(duration, timedelta):
        return duration
    return timedelta(seconds=duration)


def global_slot_id(
    slot_duration: timedelta | float,
    total_slots: int,
    now: datetime | None = None,
) -> int:
    """Return the slot number that the shared clock is in at ``now``.

    ``slot_duration`` is a timedelta or a number of seconds.
    """
    step = _as_timedelta(slot_duration)
    if step <= timedelta(0):
        raise ValueError("slot duration must be positive")
    if total_slots <= 0:
        raise ValueError("total slots must be positive")
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    micro = timedelta(microseconds=1)
    elapsed_us = (now - TDMA_EPOCH) // micro
    step_us = step // micro
    return _truncating_mod(_truncating_div(elapsed_us, step_us), total_slots)


def _pack_node_id(node_id: str) -> bytes:
    return node_id.encode("utf-8")[:NODE_ID_SIZE].ljust(NODE_ID_SIZE, b"\x00")


@dataclass
class TDMAFrame:
    """One frame on the wire."""

    header: bytes = FRAME_HEADER
    slot_id: int = 0
    node_id: bytes = b"\x00" * NODE_ID_SIZE
    length: int = 0
    fragment_id: int = 0
    total_frags: int = 1
    frag_index: int = 0
    flags: int = 0
    data: bytes = b""
    crc: int = 0
    footer: bytes = FRAME_FOOTER

    def serialize(self) -> bytes:
        """Encode the frame in its big-endian wire form."""
        try:
            prefix = _PREFIX.pack(
                self.header,
                self.slot_id,
                self.node_id,
                self.length,
                self.fragment_id,
                self.total_frags,
                self.frag_index,
                self.flags,
            )
            suffix = _SUFFIX.pack(self.crc, self.footer)
        except struct.error as exc:
            raise FrameError(f"cannot encode frame: {exc}") from exc
        return prefix + bytes(self.data) + suffix

    def validate(self) -> None:
        """Raise FrameError unless header, footer, CRC and length are consistent."""
        if self.header != FRAME_HEADER:
            raise FrameError("invalid frame header")
        if self.footer != FRAME_FOOTER:
            raise FrameError("invalid frame footer")
        if self.compute_crc() != self.crc:
            raise FrameError("CRC check failed")
        if len(self.data) != self.length:
            raise FrameError("data length mismatch")

    def compute_crc(self) -> int:
        """Return the checksum over header, slot, fragment fields and data."""
        crc = _U32

        def mix(value: int) -> None:
            nonlocal crc
            crc = ((crc << 1) ^ value) & _U32

        for byte in self.header:
            mix(byte)
        mix(self.slot_id & _U32)
        mix(self.total_frags & _U16)
        mix(self.frag_index & _U16)
        mix(self.flags & _U16)
        for byte in self.data:
            mix(byte)
        return crc

    def is_fragment(self) -> bool:
        return bool(self.flags & FrameFlag.FRAGMENT)

    def is_first_fragment(self) -> bool:
        return bool(self.flags & FrameFlag.FIRST_FRAG)

    def is_last_fragment(self) -> bool:
        return bool(self.flags & FrameFlag.LAST_FRAG)

    def node_name(self) -> str:
        """The node identifier with trailing NUL padding removed."""
        return self.node_id.decode("utf-8", errors="replace").rstrip("\x00")

    def __str__(self) -> str:
        return (
            f"TDMAFrame{{SlotID:{self.slot_id}, NodeID:{self.node_name()}, "
            f"Length:{self.length}, FragmentID:{self.fragment_id}, "
            f"TotalFrags:{self.total_frags}, FragIndex:{self.frag_index}, "
            f"Flags:0x{self.flags:04X}, DataLen:{len(self.data)}}}"
        )


def new_frame(slot_id: int, node_id: str, data: bytes) -> TDMAFrame:
    """Build a single, unfragmented frame with its CRC filled in."""
    payload = bytes(data)
    frame = TDMAFrame(
        slot_id=slot_id & _U32,
        node_id=_pack_node_id(node_id),
        length=len(payload) & _U32,
        data=payload,
    )
    frame.crc = frame.compute_crc()
    return frame


def new_fragment_frame(
    slot_id: int,
    node_id: str,
    fragment_id: int,
    total_frags: int,
    frag_index: int,
    data: bytes,
    is_first: bool,
    is_last: bool,
) -> TDMAFrame:
    """Build one fragment of a larger message with its CRC filled in."""
    flags = FrameFlag.FRAGMENT
    if is_first:
        flags |= FrameFlag.FIRST_FRAG
    if is_last:
        flags |= FrameFlag.LAST_FRAG
    payload = bytes(data)
    frame = TDMAFrame(
        slot_id=slot_id & _U32,
        node_id=_pack_node_id(node_id),
        length=len(payload) & _U32,
        fragment_id=fragment_id & _U32,
        total_frags=total_frags & _U16,
        frag_index=frag_index & _U16,
        flags=int(flags),
        data=payload,
    )
    frame.crc = frame.compute_crc()
    return frame


def deserialize_frame(data: bytes) -> TDMAFrame:
    """Decode a frame from its wire form; the result is not validated."""
    raw = bytes(data)
    if len(raw) < MIN_FRAME_SIZE:
        raise FrameError("data too short")
    (
        header,
        slot_id,
        node_id,
        length,
        fragment_id,
        total_frags,
        frag_index,
        flags,
    ) = _PREFIX.unpack_from(raw, 0)
    offset = _PREFIX.size
    if offset + length + _SUFFIX.size > len(raw):
        raise FrameError("data length mismatch")
    payload = raw[offset : offset + length]
    offset += length
    crc, footer = _SUFFIX.unpack_from(raw, offset)
    return TDMAFrame(
        header=header,
        slot_id=slot_id,
        node_id=node_id,
        length=length,
        fragment_id=fragment_id,
        total_frags=total_frags,
        frag_index=frag_index,
        flags=flags,
        data=payload,
        crc=crc,
        footer=footer,
    )