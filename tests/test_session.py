#!/usr/bin/env python3
"""
Tests for the session controller lifecycle and termination handling
"""

import signal
import tempfile
from pathlib import Path
from typing import List, Optional
from unittest.mock import MagicMock, patch

import pytest

from seedlink_client.dispatcher import PacketDispatcher
from seedlink_client.errors import TransportError
from seedlink_client.packets import Packet, PacketType
from seedlink_client.session import SessionController, SessionState
from seedlink_client.session_state import SessionDescriptor
from seedlink_client.statefile import RecoveryResult


class FakeConnection:
    """Packet source replaying a fixed list of packets"""

    def __init__(self, packets: List[Optional[Packet]], on_collect=None):
        self.packets = list(packets)
        self.on_collect = on_collect
        self.collect_calls = 0
        self.connected = True
        self.terminated = False
        self.disconnected = False

    def collect(self):
        self.collect_calls += 1
        if self.on_collect:
            self.on_collect(self.collect_calls)
        if not self.packets:
            return None
        item = self.packets.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def terminate(self):
        self.terminated = True

    def disconnect(self):
        self.disconnected = True
        self.connected = False


def data_packet(packet_id: int, packet_time: int) -> Packet:
    return Packet(PacketType.DATA, packet_id, b'', packet_time, 'IU_ANMO_00_BHZ/MSEED')


@pytest.fixture
def state_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / 'state'


@pytest.fixture
def dispatcher():
    return PacketDispatcher(parser=MagicMock(), renderer=MagicMock())


class TestSessionController:

    def test_termination_during_collect_keeps_in_flight_packet(self, state_file, dispatcher):
        """The packet being collected when termination arrives is dispatched and saved"""
        descriptor = SessionDescriptor(address='host:16000')

        def terminate_on_second(call):
            if call == 2:
                descriptor.request_termination()

        connection = FakeConnection(
            [data_packet(1, 100), data_packet(2, 200), data_packet(3, 300)],
            on_collect=terminate_on_second,
        )
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        assert controller.run() == 0

        assert connection.collect_calls == 2
        assert controller.packets_dispatched == 2
        assert descriptor.position == (2, 200)
        assert state_file.read_text() == "host:16000 2 200\n"

    def test_end_of_stream_saves_last_position(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([data_packet(10, 1000), data_packet(11, 1100)])
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        controller.run()

        assert controller.state is SessionState.TERMINATED
        assert controller.saved is True
        assert state_file.read_text() == "host:16000 11 1100\n"

    def test_recovered_position_used_for_streaming(self, state_file, dispatcher):
        state_file.write_text("other:1 1 1\nhost:16000 41 4100\n")
        descriptor = SessionDescriptor(address='host:16000')
        seen = []
        connection = FakeConnection([], on_collect=lambda call: seen.append(descriptor.position))
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        controller.run()

        assert controller.recovery is RecoveryResult.FOUND
        assert seen == [(41, 4100)]
        # Position survives a session with no new packets
        assert state_file.read_text() == "host:16000 41 4100\n"

    def test_recovery_error_is_not_fatal(self, dispatcher):
        with tempfile.TemporaryDirectory() as tmpdir:
            # A directory cannot be read or written as a state file
            descriptor = SessionDescriptor(address='host:16000')
            connection = FakeConnection([data_packet(5, 50)])
            controller = SessionController(descriptor, connection, dispatcher, tmpdir)

            assert controller.run() == 0

        assert controller.recovery is RecoveryResult.ERROR
        assert controller.packets_dispatched == 1
        assert controller.saved is False

    def test_save_attempted_exactly_once(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        controller = SessionController(descriptor, FakeConnection([data_packet(1, 1)]),
                                       dispatcher, state_file)
        controller.store.save = MagicMock(return_value=False)

        assert controller.run() == 0
        controller.store.save.assert_called_once_with(descriptor)

    def test_no_state_file_configured(self, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        controller = SessionController(descriptor, FakeConnection([data_packet(1, 1)]), dispatcher)

        assert controller.run() == 0
        assert controller.recovery is None
        assert controller.saved is None

    def test_transport_error_ends_stream_and_saves(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([data_packet(7, 70), TransportError("server rejected MATCH")])
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        assert controller.run() == 0
        assert state_file.read_text() == "host:16000 7 70\n"

    def test_keepalive_does_not_move_position(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([
            data_packet(3, 30),
            Packet(PacketType.KEEPALIVE, -1, b'ID DataLink'),
            Packet(PacketType.INFO_TERMINATED, -1, b'<DataLink/>'),
        ])
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        controller.run()

        assert controller.packets_dispatched == 3
        assert descriptor.position == (3, 30)

    def test_drain_when_connected(self, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([])
        SessionController(descriptor, connection, dispatcher).run()

        assert connection.terminated
        assert connection.disconnected

    def test_no_drain_when_disconnected(self, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([])
        connection.connected = False
        SessionController(descriptor, connection, dispatcher).run()

        assert not connection.terminated
        assert not connection.disconnected

    def test_dispatch_failure_still_saves(self, state_file):
        descriptor = SessionDescriptor(address='host:16000')
        dispatcher = MagicMock()
        dispatcher.dispatch.side_effect = [None, RuntimeError("boom")]
        dispatcher.summary.return_value = ""
        connection = FakeConnection([data_packet(1, 10), data_packet(2, 20)])
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        with pytest.raises(RuntimeError):
            controller.run()

        assert connection.disconnected
        assert state_file.read_text() == "host:16000 1 10\n"

    def test_disconnect_failure_still_saves(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([data_packet(5, 50)])
        connection.disconnect = MagicMock(side_effect=OSError("reset by peer"))
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        assert controller.run() == 0

        connection.disconnect.assert_called_once()
        assert controller.saved is True
        assert state_file.read_text() == "host:16000 5 50\n"

    def test_unexpected_terminate_failure_still_saves(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([data_packet(6, 60)])
        connection.terminate = MagicMock(side_effect=RuntimeError("broken source"))
        controller = SessionController(descriptor, connection, dispatcher, state_file)

        with pytest.raises(RuntimeError):
            controller.run()

        assert controller.state is SessionState.TERMINATED
        assert state_file.read_text() == "host:16000 6 60\n"

    def test_termination_before_start(self, state_file, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = FakeConnection([data_packet(1, 1)])
        controller = SessionController(descriptor, connection, dispatcher, state_file)
        controller.request_termination()

        controller.run()

        assert connection.collect_calls == 0
        assert state_file.read_text() == "host:16000 -1 0\n"

    def test_address_locked_once_started(self, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        SessionController(descriptor, FakeConnection([]), dispatcher).run()

        with pytest.raises(AttributeError):
            descriptor.address = 'other:16000'


class TestSignalHandling:

    def test_handler_only_sets_flag(self, dispatcher):
        descriptor = SessionDescriptor(address='host:16000')
        connection = MagicMock()
        controller = SessionController(descriptor, connection, dispatcher)

        controller._signal_handler(signal.SIGTERM, None)

        assert descriptor.terminate_requested is True
        assert connection.method_calls == []

    def test_install_signal_handlers(self, dispatcher):
        controller = SessionController(SessionDescriptor(address='h'), FakeConnection([]), dispatcher)

        with patch('seedlink_client.session.signal.signal') as mock_signal:
            controller.install_signal_handlers()

        installed = {call.args[0]: call.args[1] for call in mock_signal.call_args_list}
        assert installed[signal.SIGINT] == controller._signal_handler
        assert installed[signal.SIGTERM] == controller._signal_handler
        assert installed[signal.SIGPIPE] == signal.SIG_IGN


class TestSessionDescriptor:

    def test_defaults(self):
        descriptor = SessionDescriptor(address='host:16000')
        assert descriptor.position == (-1, 0)
        assert not descriptor.has_position
        assert descriptor.net_timeout == 600
        assert descriptor.reconnect_delay == 30

    def test_negative_timing_rejected(self):
        with pytest.raises(ValueError):
            SessionDescriptor(address='h', net_timeout=-1)

    def test_position_range_checked(self):
        descriptor = SessionDescriptor(address='h')
        with pytest.raises(ValueError):
            descriptor.update_position(2 ** 63, 0)
        assert descriptor.position == (-1, 0)
