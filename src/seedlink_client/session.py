#!/usr/bin/env python3
"""
Session Controller

Runs one streaming session:

    CONFIGURING  recover the resume position from the state file
    STREAMING    collect a packet, dispatch it, advance the position
    DRAINING     stop the server stream and disconnect
    TERMINATED   save the position to the state file

Termination is cooperative. A signal handler only sets the descriptor's
terminate flag; the loop checks it between packets, so the saved position
always falls on a packet boundary.
"""

import logging
import signal
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .datalink import PacketSource
from .dispatcher import PacketDispatcher
from .errors import TransportError
from .session_state import SessionDescriptor
from .statefile import CheckpointStore, RecoveryResult

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states"""
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    DRAINING = "draining"
    TERMINATED = "terminated"


class SessionController:
    """
    Owns the session descriptor and drives the collect/dispatch loop.

    Example:
        descriptor = SessionDescriptor(address='localhost:16000')
        controller = SessionController(
            descriptor,
            connection=DataLinkConnection(descriptor),
            dispatcher=PacketDispatcher(verbose=1),
            state_file='/var/lib/seedlink-client/state',
        )
        controller.install_signal_handlers()
        controller.run()
    """

    def __init__(
        self,
        descriptor: SessionDescriptor,
        connection: PacketSource,
        dispatcher: PacketDispatcher,
        state_file: Optional[Union[str, Path]] = None,
    ):
        self.descriptor = descriptor
        self.connection = connection
        self.dispatcher = dispatcher
        self.store = CheckpointStore(state_file) if state_file else None

        self.state = SessionState.CONFIGURING
        self.recovery: Optional[RecoveryResult] = None
        self.saved: Optional[bool] = None
        self.packets_dispatched = 0

    def request_termination(self):
        """Stop after the current packet. Safe to call from a signal handler."""
        self.descriptor.request_termination()

    def install_signal_handlers(self):
        """Route SIGINT/SIGTERM/SIGQUIT to termination; ignore SIGHUP/SIGPIPE"""
        for name in ('SIGINT', 'SIGTERM', 'SIGQUIT'):
            signum = getattr(signal, name, None)
            if signum is not None:
                signal.signal(signum, self._signal_handler)
        for name in ('SIGHUP', 'SIGPIPE'):
            signum = getattr(signal, name, None)
            if signum is not None:
                signal.signal(signum, signal.SIG_IGN)

    def _signal_handler(self, signum, frame):
        self.descriptor.request_termination()

    def configure(self) -> Optional[RecoveryResult]:
        """Recover the resume position; failures are logged, never fatal"""
        self.state = SessionState.CONFIGURING
        self.descriptor.mark_started()

        if self.store is None:
            return None

        self.recovery = self.store.recover(self.descriptor)
        if self.recovery is RecoveryResult.ERROR:
            logger.error("state recovery failed, starting without a saved position")
        return self.recovery

    def run(self) -> int:
        """
        Run the session until end of stream or termination.

        Returns:
            Process exit status (0)
        """
        self.configure()
        try:
            self._stream()
        finally:
            try:
                self._drain()
            finally:
                self._finish()
        return 0

    def _stream(self):
        self.state = SessionState.STREAMING
        logger.info(f"streaming from {self.descriptor.address}")

        while not self.descriptor.terminate_requested:
            try:
                packet = self.connection.collect()
            except TransportError as e:
                logger.error(f"transport failure: {e}")
                break

            if packet is None:
                break

            self.dispatcher.dispatch(packet)
            self.packets_dispatched += 1

            if packet.carries_position:
                self.descriptor.update_position(packet.packet_id, packet.packet_time)

        if self.descriptor.terminate_requested:
            logger.info("termination requested")

    def _drain(self):
        self.state = SessionState.DRAINING
        if not self.connection.connected:
            return
        try:
            self.connection.terminate()
        except (OSError, TransportError) as e:
            logger.warning(f"error ending stream: {e}")
        try:
            self.connection.disconnect()
        except (OSError, TransportError) as e:
            logger.warning(f"error disconnecting: {e}")

    def _finish(self):
        self.state = SessionState.TERMINATED
        logger.info(f"session ended after {self.packets_dispatched} packets "
                    f"({self.dispatcher.summary()})")

        if self.store is None:
            return

        self.saved = self.store.save(self.descriptor)
        if not self.saved:
            logger.error(f"could not save state to {self.store.state_file}")
