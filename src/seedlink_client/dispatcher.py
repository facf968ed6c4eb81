"""
Packet Dispatcher

Classifies each received packet, logs it with a local wall-clock
timestamp and hands data packets to the record parser. Dispatch never
raises for a bad packet: parse failures and unrecognized types are
logged and the session carries on.
"""

import logging
import time
from collections import Counter
from typing import Callable, Optional

from .errors import RecordParseError
from .mseed import MSRecord, parse_record, render_record
from .packets import Packet, PacketType, as_packet_type, packet_type_name

logger = logging.getLogger(__name__)


def format_timestamp(epoch_seconds: Optional[float] = None) -> str:
    """
    Local time as YYYY.DDD.HH:MM:SS.F (day of year, tenths of a second).

    Used for log context only.
    """
    if epoch_seconds is None:
        epoch_seconds = time.time()
    whole = int(epoch_seconds)
    tenths = min(int((epoch_seconds - whole) * 10), 9)
    t = time.localtime(whole)
    return (f"{t.tm_year:04d}.{t.tm_yday:03d}."
            f"{t.tm_hour:02d}:{t.tm_min:02d}:{t.tm_sec:02d}.{tenths:d}")


class PacketDispatcher:
    """
    Route packets by type.

    Args:
        verbose: Verbosity level; detailed records are rendered when > 0
        print_packets: Render details of every data packet
        parser: Callable decoding a data payload into an MSRecord
        renderer: Callable(record, detail) producing printable text
        clock: Source of wall-clock time for log timestamps
    """

    def __init__(
        self,
        verbose: int = 0,
        print_packets: bool = False,
        parser: Callable[[bytes], MSRecord] = parse_record,
        renderer: Callable[[MSRecord, int], str] = render_record,
        clock: Callable[[], float] = time.time,
    ):
        self.verbose = verbose
        self.print_packets = print_packets
        self.parser = parser
        self.renderer = renderer
        self.clock = clock
        self.counts: Counter = Counter()

    def dispatch(self, packet: Packet) -> Optional[MSRecord]:
        """
        Handle one packet.

        Returns:
            The parsed record for data packets that decoded, else None
        """
        timestamp = format_timestamp(self.clock())
        packet_type = as_packet_type(packet.packet_type)

        if packet_type is None:
            self.counts['unknown'] += 1
            logger.warning(f"{timestamp}, seq {packet.packet_id}, "
                           f"received packet of unrecognized type {packet.packet_type!r}")
            return None

        self.counts[packet_type.name] += 1

        if packet_type is PacketType.DATA:
            return self._handle_data(packet, timestamp)

        if packet_type is PacketType.KEEPALIVE:
            logger.debug("Keep alive packet received")
            return None

        logger.info(f"{timestamp}, seq {packet.packet_id}, "
                    f"Received {packet_type_name(packet_type)} blockette")
        return None

    def _handle_data(self, packet: Packet, timestamp: str) -> Optional[MSRecord]:
        logger.info(f"{timestamp}, seq {packet.packet_id}, Received Data blockette:")

        try:
            record = self.parser(packet.payload)
        except RecordParseError as e:
            logger.warning(f"seq {packet.packet_id}: cannot parse data record "
                           f"({packet.size} bytes): {e}")
            return None

        if self.verbose or self.print_packets:
            detail = 2 if self.print_packets else 0
            try:
                logger.info(self.renderer(record, detail))
            except (OverflowError, ValueError) as e:
                logger.warning(f"seq {packet.packet_id}: cannot render data record: {e}")

        return record

    def summary(self) -> str:
        if not self.counts:
            return "no packets received"
        return ", ".join(f"{name.lower()}={count}" for name, count in sorted(self.counts.items()))
