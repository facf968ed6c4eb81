"""
Session Descriptor

In-memory connection configuration plus the live resumption position for
one client session. The controller owns the descriptor; the checkpoint
store reads and writes its position fields, and the transport reads its
address, timing values and termination flag.
"""

from dataclasses import dataclass, field
from typing import Tuple

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Defaults match the reference DataLink client
DEFAULT_NET_TIMEOUT = 600
DEFAULT_RECONNECT_DELAY = 30
DEFAULT_KEEPALIVE = 600


def fits_int64(value: int) -> bool:
    return INT64_MIN <= value <= INT64_MAX


@dataclass
class SessionDescriptor:
    """
    Connection descriptor for a single streaming session.

    Attributes:
        address: Server address as configured ("host:port"), also the
            checkpoint key. Fixed once the session has started.
        packet_id: ID of the last packet safe to resume after (-1 = unset)
        packet_time: Time of that packet, microseconds since the epoch
        net_timeout: Seconds without traffic before reconnecting
        reconnect_delay: Seconds to wait between connection attempts
        keepalive_interval: Idle seconds between keepalives (0 disables)
        terminate_requested: Set asynchronously to stop the session
    """
    address: str
    packet_id: int = -1
    packet_time: int = 0
    net_timeout: int = DEFAULT_NET_TIMEOUT
    reconnect_delay: int = DEFAULT_RECONNECT_DELAY
    keepalive_interval: int = DEFAULT_KEEPALIVE
    terminate_requested: bool = False
    _started: bool = field(default=False, repr=False, compare=False)

    def __post_init__(self):
        for name in ('net_timeout', 'reconnect_delay', 'keepalive_interval'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if not fits_int64(self.packet_id) or not fits_int64(self.packet_time):
            raise ValueError("packet position must fit in a signed 64-bit integer")

    def __setattr__(self, name, value):
        if name == 'address' and getattr(self, '_started', False):
            raise AttributeError("address cannot change once the session has started")
        super().__setattr__(name, value)

    def mark_started(self):
        """Lock the address for the rest of the session"""
        self._started = True

    @property
    def position(self) -> Tuple[int, int]:
        return self.packet_id, self.packet_time

    @property
    def has_position(self) -> bool:
        return self.packet_id >= 0

    def update_position(self, packet_id: int, packet_time: int):
        """Advance the resumption position to a processed packet"""
        if not fits_int64(packet_id) or not fits_int64(packet_time):
            raise ValueError(
                f"packet position out of 64-bit range: {packet_id} {packet_time}"
            )
        self.packet_id = packet_id
        self.packet_time = packet_time

    def request_termination(self):
        """
        Ask the session to stop after the packet currently in flight.

        Safe to call from a signal handler: a single attribute store, no
        I/O, no logging, no locks.
        """
        self.terminate_requested = True
