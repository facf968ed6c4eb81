"""
Packet types delivered by the transport

The type values follow the classification used by SeedLink/DataLink
clients (Data through KeepAlive). The transport is expected to emit only
these values, but type names are looked up through a total mapping so an
out-of-range value can never break dispatch.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union


class PacketType(IntEnum):
    DATA = 0
    DETECTION = 1
    CALIBRATION = 2
    TIMING = 3
    MESSAGE = 4
    GENERAL = 5
    REQUEST = 6
    INFO = 7
    INFO_TERMINATED = 8
    KEEPALIVE = 9


_TYPE_NAMES = {
    PacketType.DATA: "Data",
    PacketType.DETECTION: "Detection",
    PacketType.CALIBRATION: "Calibration",
    PacketType.TIMING: "Timing",
    PacketType.MESSAGE: "Message",
    PacketType.GENERAL: "General",
    PacketType.REQUEST: "Request",
    PacketType.INFO: "Info",
    PacketType.INFO_TERMINATED: "Info (terminated)",
    PacketType.KEEPALIVE: "KeepAlive",
}

UNKNOWN_TYPE_NAME = "Unknown"


def packet_type_name(value: Union[PacketType, int]) -> str:
    """Human-readable name for a packet type, "Unknown" if unrecognized"""
    try:
        return _TYPE_NAMES[PacketType(value)]
    except (ValueError, TypeError):
        return UNKNOWN_TYPE_NAME


def as_packet_type(value: Union[PacketType, int]) -> Optional[PacketType]:
    try:
        return PacketType(value)
    except (ValueError, TypeError):
        return None


@dataclass
class Packet:
    """
    One unit delivered by the transport.

    Attributes:
        packet_type: Classification (normally a PacketType)
        packet_id: Server packet ID, -1 for packets without one
            (keepalive and info replies)
        payload: Raw packet payload
        packet_time: Server packet time, microseconds since the epoch
        stream_id: Server stream identifier, e.g. "IU_ANMO_00_BHZ/MSEED"
    """
    packet_type: Union[PacketType, int]
    packet_id: int
    payload: bytes
    packet_time: int = 0
    stream_id: str = ""

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def type_name(self) -> str:
        return packet_type_name(self.packet_type)

    @property
    def carries_position(self) -> bool:
        """True when the packet has a server ID that can be resumed after"""
        return self.packet_id >= 0
