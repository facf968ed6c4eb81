#!/usr/bin/env python3
"""
Command Line Interface for the streaming client
"""

import sys
import logging
import argparse
from typing import List, Optional

from . import __version__
from .config import SessionConfig, load_config
from .datalink import DataLinkConnection
from .dispatcher import PacketDispatcher
from .errors import ConfigurationError
from .session import SessionController
from .streams import StreamSelection, build_match_expression, parse_multiselect, read_streamlist

PACKAGE = 'seedlink-client'

logger = logging.getLogger(__name__)

EPILOG = """\
Stream selection:
  'streams' = 'stream1[:selectors1],stream2[:selectors2],...'
       'stream' is in NET_STA format, for example:
       -S "IU_KONO:BHE BHN,GE_WLF,MN_AQU:HH?.D"

  [host][:port]  Address of the DataLink server in host:port format
                   if host is omitted (i.e. ':16000'), localhost is assumed
                   if :port is omitted (i.e. 'localhost'), 16000 is assumed
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PACKAGE,
        description='Collect packets from a DataLink server, resuming from a state file',
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-V', '--version', action='version',
                        version=f'{PACKAGE} version: {__version__}')
    parser.add_argument('-c', '--config', help='Configuration file (TOML)')
    parser.add_argument('-v', '--verbose', action='count', default=None,
                        help='Be more verbose, multiple flags can be used')
    parser.add_argument('-p', '--print-packets', dest='print_packets', action='store_true',
                        default=None, help='Print details of data packets')
    parser.add_argument('-nd', '--reconnect-delay', dest='reconnect_delay', type=int,
                        metavar='DELAY', help='Network re-connect delay (seconds), default 30')
    parser.add_argument('-nt', '--net-timeout', dest='net_timeout', type=int, metavar='TIMEOUT',
                        help='Network timeout (seconds), re-establish connection if no '
                             'data/keepalives are received in this time, default 600')
    parser.add_argument('-k', '--keepalive', type=int, metavar='INTERVAL',
                        help='Send keepalive (heartbeat) packets this often (seconds)')
    parser.add_argument('-x', '--state-file', dest='state_file', metavar='STATEFILE',
                        help='Save/restore stream state information to this file')
    parser.add_argument('-l', '--streamlist', metavar='LISTFILE',
                        help='Read a stream list from this file for multi-station mode')
    parser.add_argument('-s', '--selectors', metavar='SELECTORS',
                        help='Selectors for uni-station or default for multi-station')
    parser.add_argument('-S', '--multiselect', metavar='STREAMS',
                        help='Select streams for multi-station mode')
    parser.add_argument('address', nargs='?', metavar='[host][:port]',
                        help='Address of the DataLink server')
    return parser


def configure_logging(verbose: int, level_name: Optional[str] = None):
    """Root logger setup: verbosity 0 = WARNING, 1 = INFO, 2+ = DEBUG"""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    elif level_name:
        level = logging.getLevelName(level_name.upper())
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add handler if none exists
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            handler.setLevel(level)


def resolve_match(config: SessionConfig) -> Optional[str]:
    """Match expression from the stream list, multiselect string or selectors"""
    selections: List[StreamSelection] = []
    if config.streamlist:
        selections.extend(read_streamlist(config.streamlist, config.selectors))
    if config.multiselect:
        selections.extend(parse_multiselect(config.multiselect, config.selectors))
    return build_match_expression(selections, config.selectors)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the seedlink-client command"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config) if args.config else SessionConfig()
        config.merge_args(args)
        config.validate()
        configure_logging(config.verbose, config.log_level)
        logger.info(f"{PACKAGE} version: {__version__}")

        match = resolve_match(config)
        descriptor = config.to_descriptor()
        connection = DataLinkConnection(descriptor, client_id=config.client_id, match=match)
    except (ConfigurationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print(f"Usage: {PACKAGE} [options] [host][:port]", file=sys.stderr)
        print("Try '-h' for detailed help", file=sys.stderr)
        return 1

    dispatcher = PacketDispatcher(verbose=config.verbose, print_packets=config.print_packets)
    controller = SessionController(descriptor, connection, dispatcher, state_file=config.state_file)
    controller.install_signal_handlers()
    return controller.run()


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
