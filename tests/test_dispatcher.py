#!/usr/bin/env python3
"""
Tests for packet dispatch and type naming
"""

import logging
import re
from unittest.mock import MagicMock

from seedlink_client.dispatcher import PacketDispatcher, format_timestamp
from seedlink_client.errors import RecordParseError
from seedlink_client.packets import Packet, PacketType, packet_type_name

TIMESTAMP_FORMAT = re.compile(r'^\d{4}\.\d{3}\.\d{2}:\d{2}:\d{2}\.\d$')


class TestTypeNames:

    def test_known_types(self):
        assert packet_type_name(PacketType.DATA) == "Data"
        assert packet_type_name(8) == "Info (terminated)"
        assert packet_type_name(PacketType.KEEPALIVE) == "KeepAlive"

    def test_out_of_range_is_unknown(self):
        assert packet_type_name(10) == "Unknown"
        assert packet_type_name(-1) == "Unknown"
        assert packet_type_name(None) == "Unknown"


class TestFormatTimestamp:

    def test_format(self):
        assert TIMESTAMP_FORMAT.match(format_timestamp(1700000000.25))

    def test_tenths_truncated(self):
        assert format_timestamp(1700000000.99).endswith('.9')
        assert format_timestamp(1700000000.0).endswith('.0')

    def test_defaults_to_now(self):
        assert TIMESTAMP_FORMAT.match(format_timestamp())


class TestPacketDispatcher:

    def make_dispatcher(self, **kwargs):
        parser = MagicMock(return_value='parsed-record')
        renderer = MagicMock(return_value='rendered record')
        dispatcher = PacketDispatcher(parser=parser, renderer=renderer,
                                      clock=lambda: 1700000000.5, **kwargs)
        return dispatcher, parser, renderer

    def test_data_packet_parsed(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher()
        packet = Packet(PacketType.DATA, 12, b'payload')

        with caplog.at_level(logging.INFO):
            result = dispatcher.dispatch(packet)

        assert result == 'parsed-record'
        parser.assert_called_once_with(b'payload')
        renderer.assert_not_called()
        assert "seq 12, Received Data blockette:" in caplog.text

    def test_data_packet_rendered_when_verbose(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher(verbose=1)

        with caplog.at_level(logging.INFO):
            dispatcher.dispatch(Packet(PacketType.DATA, 1, b'x'))

        renderer.assert_called_once_with('parsed-record', 0)
        assert "rendered record" in caplog.text

    def test_print_packets_renders_details(self):
        dispatcher, parser, renderer = self.make_dispatcher(print_packets=True)
        dispatcher.dispatch(Packet(PacketType.DATA, 1, b'x'))
        renderer.assert_called_once_with('parsed-record', 2)

    def test_render_error_is_not_fatal(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher(print_packets=True)
        renderer.side_effect = OverflowError("date value out of range")

        with caplog.at_level(logging.INFO):
            result = dispatcher.dispatch(Packet(PacketType.DATA, 8, b'x'))

        assert result == 'parsed-record'
        assert "seq 8: cannot render data record" in caplog.text

    def test_extreme_sample_rate_record_dispatched(self, make_record):
        payload = make_record(samples=(), encoding=10, num_samples=60000,
                              rate_factor=-32768, rate_mult=-32767)
        record = PacketDispatcher(print_packets=True).dispatch(Packet(PacketType.DATA, 9, payload))
        assert record.num_samples == 60000

    def test_parse_error_is_not_fatal(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher(verbose=1)
        parser.side_effect = RecordParseError("record too short", "3 bytes")

        with caplog.at_level(logging.WARNING):
            assert dispatcher.dispatch(Packet(PacketType.DATA, 4, b'abc')) is None
        assert "cannot parse data record" in caplog.text
        renderer.assert_not_called()

    def test_keepalive_only_logged(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher()

        with caplog.at_level(logging.DEBUG):
            assert dispatcher.dispatch(Packet(PacketType.KEEPALIVE, -1, b'')) is None
        parser.assert_not_called()
        assert "Keep alive packet received" in caplog.text

    def test_other_types_logged_by_name(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher()

        with caplog.at_level(logging.INFO):
            dispatcher.dispatch(Packet(PacketType.TIMING, 33, b''))
            dispatcher.dispatch(Packet(PacketType.INFO_TERMINATED, -1, b'<xml/>'))

        parser.assert_not_called()
        assert "seq 33, Received Timing blockette" in caplog.text
        assert "Received Info (terminated) blockette" in caplog.text

    def test_unknown_type_logged_not_raised(self, caplog):
        dispatcher, parser, renderer = self.make_dispatcher()

        with caplog.at_level(logging.WARNING):
            assert dispatcher.dispatch(Packet(42, 5, b'')) is None
        assert "unrecognized type 42" in caplog.text
        assert dispatcher.counts['unknown'] == 1

    def test_counts_and_summary(self):
        dispatcher, parser, renderer = self.make_dispatcher()
        for packet_type in (PacketType.DATA, PacketType.DATA, PacketType.KEEPALIVE):
            dispatcher.dispatch(Packet(packet_type, 1, b''))

        assert dispatcher.counts['DATA'] == 2
        assert dispatcher.summary() == "data=2, keepalive=1"

    def test_summary_empty(self):
        assert PacketDispatcher().summary() == "no packets received"
