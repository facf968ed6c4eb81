#!/usr/bin/env python3
"""
DataLink Transport

Collects packets from a DataLink server over TCP. Handles the handshake,
resuming from the session's packet position, stream matching, keepalives,
network timeouts and reconnection.

The connection reads its address, timing values, resume position and
termination flag from the shared SessionDescriptor. Between packets it
waits on the socket in short slices so a termination request is noticed
promptly; a packet that has started arriving is always read completely.
"""

import socket
import logging
import time
from typing import Callable, Optional, Protocol, Tuple

from .errors import TransportError
from .mseed import classify_payload
from .packets import Packet, PacketType
from .session_state import SessionDescriptor

logger = logging.getLogger(__name__)

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 16000
PREAMBLE = b'DL'
MAX_HEADER_LENGTH = 255
POLL_INTERVAL = 0.5       # seconds between termination checks while idle
CONNECT_TIMEOUT = 30      # seconds, used when the network timeout is disabled
RECV_SIZE = 16384

_END_OF_STREAM = object()


class PacketSource(Protocol):
    """
    Collection capability consumed by the session controller.

    collect() blocks until a packet is available and returns None at end
    of stream; fatal failures raise TransportError.
    """

    @property
    def connected(self) -> bool:
        ...

    def collect(self) -> Optional[Packet]:
        ...

    def terminate(self) -> None:
        ...

    def disconnect(self) -> None:
        ...


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split '[host][:port]' into host and port.

    ':16000' means localhost, 'host' means the default port.
    """
    if ':' in address:
        host, _, port_text = address.rpartition(':')
        if not port_text:
            port = DEFAULT_PORT
        else:
            try:
                port = int(port_text)
            except ValueError:
                raise ValueError(f"invalid port in address {address!r}")
            if not 0 < port < 65536:
                raise ValueError(f"port out of range in address {address!r}")
    else:
        host, port = address, DEFAULT_PORT
    return host or DEFAULT_HOST, port


class ConnectionLost(Exception):
    """The current connection failed; a reconnect may fix it"""


class DataLinkConnection:
    """
    DataLink client connection.

    Example:
        descriptor = SessionDescriptor(address='localhost:16000')
        connection = DataLinkConnection(descriptor, match='^IU_ANMO_.*')
        while (packet := connection.collect()) is not None:
            ...
        connection.disconnect()
    """

    def __init__(
        self,
        descriptor: SessionDescriptor,
        client_id: str = 'seedlink-client',
        match: Optional[str] = None,
        socket_factory: Callable = socket.create_connection,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.descriptor = descriptor
        self.client_id = client_id
        self.match = match
        self.host, self.port = parse_address(descriptor.address)
        self._socket_factory = socket_factory
        self._clock = clock
        self._sleep = sleep

        self.sock = None
        self.streaming = False
        self.server_id: Optional[str] = None
        self._buffer = b''
        self._last_received = 0.0
        self._last_sent = 0.0
        self._keepalive_pending = False
        self._attempts = 0

        # Statistics
        self.packets_received = 0
        self.reconnects = 0

    @property
    def connected(self) -> bool:
        return self.sock is not None

    # ------------------------------------------------------------------
    # Connection management

    def connect(self):
        """
        Open the connection and start streaming.

        Raises:
            ConnectionLost: if the server cannot be reached
            TransportError: if the server rejects the session configuration
        """
        logger.info(f"connecting to DataLink server {self.host}:{self.port}")
        connect_timeout = self.descriptor.net_timeout or CONNECT_TIMEOUT
        try:
            self.sock = self._socket_factory((self.host, self.port), connect_timeout)
        except OSError as e:
            self.sock = None
            raise ConnectionLost(f"cannot connect to {self.host}:{self.port}: {e}")

        self._buffer = b''
        self._keepalive_pending = False
        try:
            self._handshake()
        except (OSError, ConnectionLost) as e:
            self._close_socket()
            raise ConnectionLost(f"handshake with {self.host}:{self.port} failed: {e}")
        except TransportError:
            self._close_socket()
            raise

        now = self._clock()
        self._last_received = now
        self._last_sent = now

    def _handshake(self):
        self._send_command(f"ID {self.client_id}")
        header, _ = self._read_message(self.descriptor.net_timeout or None)
        if not header.startswith('ID'):
            raise TransportError("unexpected reply to ID", header)
        self.server_id = header[3:].strip()
        logger.info(f"connected to {self.server_id or 'DataLink server'}")

        if self.descriptor.has_position:
            packet_id, packet_time = self.descriptor.position
            self._send_command(f"POSITION SET {packet_id} {packet_time}")
            self._expect_ok("POSITION SET")
            logger.info(f"resuming after packet {packet_id}")

        if self.match:
            pattern = self.match.encode('utf-8')
            self._send_command(f"MATCH {len(pattern)}", pattern)
            self._expect_ok("MATCH")
            logger.info(f"matching streams: {self.match}")

        self._send_command("STREAM")
        self.streaming = True

    def _expect_ok(self, command: str):
        header, data = self._read_message(self.descriptor.net_timeout or None)
        reply = header.split()
        if reply and reply[0] == 'OK':
            return
        message = data.decode('utf-8', errors='replace').strip()
        if reply and reply[0] == 'ERROR':
            raise TransportError(f"server rejected {command}", message or header)
        raise TransportError(f"unexpected reply to {command}", header)

    def _connect_with_retry(self) -> bool:
        """
        Connect, retrying after the reconnect delay.

        Returns:
            False if termination was requested while waiting
        """
        while not self.descriptor.terminate_requested:
            if self._attempts and not self._wait(self.descriptor.reconnect_delay):
                return False
            self._attempts += 1
            try:
                self.connect()
            except ConnectionLost as e:
                logger.warning(f"{e}; retrying in {self.descriptor.reconnect_delay} s")
                continue
            if self._attempts > 1:
                self.reconnects += 1
            self._attempts = 1
            return True
        return False

    def _wait(self, seconds: float) -> bool:
        """Sleep in short slices; False if termination was requested"""
        deadline = self._clock() + seconds
        while not self.descriptor.terminate_requested:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return True
            self._sleep(min(POLL_INTERVAL, remaining))
        return False

    def _drop(self, reason: str):
        logger.warning(f"{reason}; dropping connection to {self.host}:{self.port}")
        self._close_socket()

    def _close_socket(self):
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError as e:
                logger.debug(f"error closing socket: {e}")
        self.sock = None
        self.streaming = False
        self._buffer = b''

    def terminate(self):
        """Ask the server to stop streaming (best effort)"""
        if self.sock is None or not self.streaming:
            return
        try:
            self._send_command("ENDSTREAM")
        except OSError as e:
            logger.warning(f"could not send ENDSTREAM: {e}")
        self.streaming = False

    def disconnect(self):
        if self.sock is not None:
            logger.info(f"disconnecting from {self.host}:{self.port}")
        self._close_socket()

    # ------------------------------------------------------------------
    # Packet collection

    def collect(self) -> Optional[Packet]:
        """
        Wait for the next packet.

        Returns:
            The next packet, or None at end of stream or when termination
            was requested while idle

        Raises:
            TransportError: if the server rejects the session configuration
        """
        while not self.descriptor.terminate_requested:
            if self.sock is None and not self._connect_with_retry():
                return None

            try:
                message = self._poll_message()
            except (OSError, ConnectionLost) as e:
                self._drop(f"connection error: {e}")
                continue

            now = self._clock()
            if message is None:
                self._idle(now)
                continue

            self._last_received = now
            header, data = message
            packet = self._to_packet(header, data)
            if packet is _END_OF_STREAM:
                logger.info("server ended the stream")
                self._close_socket()
                return None
            if packet is not None:
                self.packets_received += 1
                return packet

        return None

    def _idle(self, now: float):
        net_timeout = self.descriptor.net_timeout
        if net_timeout and now - self._last_received > net_timeout:
            self._drop(f"no data received for {net_timeout} s")
            return

        keepalive = self.descriptor.keepalive_interval
        if (keepalive and not self._keepalive_pending
                and now - max(self._last_received, self._last_sent) >= keepalive):
            try:
                self._send_command(f"ID {self.client_id}")
            except OSError as e:
                self._drop(f"cannot send keepalive: {e}")
                return
            self._keepalive_pending = True
            logger.debug("keepalive sent")

    def _to_packet(self, header: str, data: bytes):
        fields = header.split()
        if not fields:
            logger.warning("empty message header from server")
            return None
        kind = fields[0]

        if kind == 'PACKET':
            if len(fields) < 7:
                logger.warning(f"malformed PACKET header: {header!r}")
                return None
            stream_id = fields[1]
            try:
                packet_id, packet_time = int(fields[2]), int(fields[3])
            except ValueError:
                logger.warning(f"malformed PACKET header: {header!r}")
                return None
            if stream_id.endswith('/MSEED'):
                packet_type = classify_payload(data)
            else:
                packet_type = PacketType.GENERAL
            return Packet(packet_type, packet_id, data, packet_time, stream_id)

        if kind == 'ID':
            self._keepalive_pending = False
            return Packet(PacketType.KEEPALIVE, -1, header.encode('ascii', errors='replace'))

        if kind == 'INFO':
            return Packet(PacketType.INFO_TERMINATED, -1, data)

        if kind == 'ENDSTREAM':
            return _END_OF_STREAM

        if kind == 'ERROR':
            message = data.decode('utf-8', errors='replace').strip()
            logger.warning(f"server error: {message or header}")
            return None

        logger.debug(f"ignoring server message: {header!r}")
        return None

    # ------------------------------------------------------------------
    # Framing

    def _send_command(self, header: str, data: bytes = b''):
        encoded = header.encode('ascii')
        if len(encoded) > MAX_HEADER_LENGTH:
            raise TransportError("command header too long", header[:40])
        self.sock.sendall(PREAMBLE + bytes([len(encoded)]) + encoded + data)
        self._last_sent = self._clock()

    def _poll_message(self) -> Optional[Tuple[str, bytes]]:
        """Read a message if one starts arriving within the poll interval"""
        if not self._buffer:
            self.sock.settimeout(POLL_INTERVAL)
            try:
                chunk = self.sock.recv(RECV_SIZE)
            except socket.timeout:
                return None
            if not chunk:
                raise ConnectionLost("server closed the connection")
            self._buffer += chunk
        return self._read_message(self.descriptor.net_timeout or None)

    def _read_message(self, timeout: Optional[float]) -> Tuple[str, bytes]:
        """Read one complete message: preamble, header and payload"""
        start = self._recv_exact(3, timeout)
        if start[:2] != PREAMBLE:
            raise ConnectionLost(f"bad message preamble {start[:2]!r}")
        header = self._recv_exact(start[2], timeout).decode('ascii', errors='replace')

        size = 0
        fields = header.split()
        if fields and fields[0] in ('PACKET', 'OK', 'ERROR', 'INFO'):
            try:
                size = int(fields[-1])
            except ValueError:
                raise ConnectionLost(f"bad size in header {header!r}")
            if size < 0:
                raise ConnectionLost(f"bad size in header {header!r}")

        data = self._recv_exact(size, timeout) if size else b''
        return header, data

    def _recv_exact(self, count: int, timeout: Optional[float]) -> bytes:
        if len(self._buffer) < count:
            self.sock.settimeout(timeout)
            while len(self._buffer) < count:
                try:
                    chunk = self.sock.recv(max(RECV_SIZE, count - len(self._buffer)))
                except socket.timeout:
                    raise ConnectionLost("timed out in the middle of a message")
                if not chunk:
                    raise ConnectionLost("server closed the connection")
                self._buffer += chunk
        result, self._buffer = self._buffer[:count], self._buffer[count:]
        return result

