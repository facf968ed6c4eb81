"""
seedlink-client - resumable DataLink streaming client

Maintains a streaming session against a DataLink server and records, per
server address, the last packet it processed so a restart resumes exactly
where the previous run stopped.

Key Features:
- Flat text state file shared by several servers, first match wins
- Graceful termination on SIGINT/SIGTERM at a packet boundary
- miniSEED record decoding and packet classification
- SeedLink-style stream selection translated to DataLink matching

Quick Start:
    from seedlink_client import (
        SessionDescriptor, DataLinkConnection, PacketDispatcher, SessionController
    )

    descriptor = SessionDescriptor(address="localhost:16000")
    controller = SessionController(
        descriptor,
        connection=DataLinkConnection(descriptor),
        dispatcher=PacketDispatcher(verbose=1),
        state_file="client.state",
    )
    controller.install_signal_handlers()
    controller.run()
"""

__version__ = "1.0.0"

from .errors import SeedLinkClientError, ConfigurationError, TransportError, RecordParseError
from .session_state import SessionDescriptor
from .statefile import (
    CheckpointStore, RecoveryResult, StateRecord, MalformedLine,
    save_state, recover_state, iter_state_records,
)
from .packets import Packet, PacketType, packet_type_name
from .mseed import MSRecord, parse_record, render_record, classify_payload
from .dispatcher import PacketDispatcher, format_timestamp
from .session import SessionController, SessionState
from .datalink import DataLinkConnection, PacketSource, parse_address
from .streams import StreamSelection, parse_multiselect, read_streamlist, build_match_expression
from .config import SessionConfig, load_config

__all__ = [
    # Session
    "SessionDescriptor",
    "SessionController",
    "SessionState",
    # State file
    "CheckpointStore",
    "RecoveryResult",
    "StateRecord",
    "MalformedLine",
    "save_state",
    "recover_state",
    "iter_state_records",
    # Packets
    "Packet",
    "PacketType",
    "packet_type_name",
    "PacketDispatcher",
    "format_timestamp",
    "MSRecord",
    "parse_record",
    "render_record",
    "classify_payload",
    # Transport
    "DataLinkConnection",
    "PacketSource",
    "parse_address",
    # Configuration
    "StreamSelection",
    "parse_multiselect",
    "read_streamlist",
    "build_match_expression",
    "SessionConfig",
    "load_config",
    # Errors
    "SeedLinkClientError",
    "ConfigurationError",
    "TransportError",
    "RecordParseError",
]
