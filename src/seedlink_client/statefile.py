"""
Checkpoint Store - save and recover connection state

The state file is a flat text ledger, one record per line:

    <server address> <packet ID> <packet time>

Writes happen once per session at shutdown and replace the file contents.
Recovery scans lazily for the first line matching the session address;
a damaged line is reported and skipped without losing the others.
"""

import errno
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, TextIO, Union

from .session_state import SessionDescriptor, fits_int64

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r'^[+-]?[0-9]+$')


class RecoveryResult(Enum):
    """Outcome of a state recovery attempt"""
    FOUND = "found"                          # Matching record applied
    ADDRESS_NOT_FOUND = "address_not_found"  # File read, no record for address
    FILE_NOT_FOUND = "file_not_found"        # No state file yet (first run)
    ERROR = "error"                          # I/O failure


@dataclass(frozen=True)
class StateRecord:
    """A well-formed state file line"""
    line_number: int
    address: str
    packet_id: int
    packet_time: int


@dataclass(frozen=True)
class MalformedLine:
    """A state file line that could not be parsed"""
    line_number: int
    text: str
    reason: str


def format_state_line(descriptor: SessionDescriptor) -> str:
    return f"{descriptor.address} {descriptor.packet_id} {descriptor.packet_time}\n"


def parse_state_line(line: str, line_number: int) -> Union[StateRecord, MalformedLine, None]:
    """
    Parse one state file line.

    Returns None for blank lines. Fields beyond the third are ignored.
    """
    fields = line.split()
    if not fields:
        return None

    text = line.rstrip('\n')
    if len(fields) < 3:
        return MalformedLine(line_number, text, f"expected 3 fields, found {len(fields)}")

    address, id_text, time_text = fields[:3]
    for value in (id_text, time_text):
        if not _INTEGER.match(value):
            return MalformedLine(line_number, text, f"not an integer: {value!r}")

    packet_id = int(id_text)
    packet_time = int(time_text)
    if not fits_int64(packet_id) or not fits_int64(packet_time):
        return MalformedLine(line_number, text, "value out of 64-bit range")

    return StateRecord(line_number, address, packet_id, packet_time)


def iter_state_records(handle: TextIO) -> Iterator[Union[StateRecord, MalformedLine]]:
    """Yield parsed records from an open state file, one line at a time"""
    for line_number, line in enumerate(handle, start=1):
        parsed = parse_state_line(line, line_number)
        if parsed is not None:
            yield parsed


def save_state(descriptor: SessionDescriptor, state_file: Union[str, Path]) -> bool:
    """
    Save the current packet ID and time to the state file.

    The file is truncated and receives exactly one line for this session's
    address. Nothing is retried on failure.

    Args:
        descriptor: Session whose position is saved
        state_file: Path of the state file

    Returns:
        True on success, False if the file could not be opened, fully
        written or closed (the OS error is logged)
    """
    line = format_state_line(descriptor)

    try:
        handle = open(state_file, 'w', encoding='utf-8')
    except OSError as e:
        logger.error(f"cannot open state file {state_file} for writing: {e.strerror or e}")
        return False

    logger.info(f"saving connection state to state file {state_file}")

    try:
        written = handle.write(line)
        handle.flush()
    except OSError as e:
        logger.error(f"cannot write to state file: {e.strerror or e}")
        _close_quietly(handle)
        return False

    if written != len(line):
        logger.error(f"cannot write to state file: short write ({written} of {len(line)})")
        _close_quietly(handle)
        return False

    try:
        handle.close()
    except OSError as e:
        logger.error(f"cannot close state file: {e.strerror or e}")
        return False

    return True


def recover_state(descriptor: SessionDescriptor, state_file: Union[str, Path]) -> RecoveryResult:
    """
    Recover the packet position for this session's address.

    The first well-formed line whose address equals the descriptor's
    address wins; later lines are not read. Malformed lines are logged
    and never matched. The descriptor is only modified on FOUND.

    Args:
        descriptor: Session to restore; its address is the lookup key
        state_file: Path of the state file

    Returns:
        RecoveryResult describing the outcome
    """
    try:
        handle = open(state_file, 'r', encoding='utf-8', errors='replace')
    except OSError as e:
        if e.errno == errno.ENOENT:
            logger.info(f"could not find state file: {state_file}")
            return RecoveryResult.FILE_NOT_FOUND
        logger.error(f"could not open state file {state_file}: {e.strerror or e}")
        return RecoveryResult.ERROR

    logger.info(f"recovering connection state from state file {state_file}")

    result = RecoveryResult.ADDRESS_NOT_FOUND
    try:
        for record in iter_state_records(handle):
            if isinstance(record, MalformedLine):
                logger.warning(
                    f"could not parse line {record.line_number} of state file: {record.reason}"
                )
                continue

            if record.address == descriptor.address:
                descriptor.update_position(record.packet_id, record.packet_time)
                logger.info(
                    f"recovered position for {descriptor.address}: "
                    f"packet {record.packet_id}, time {record.packet_time}"
                )
                result = RecoveryResult.FOUND
                break
    except OSError as e:
        logger.error(f"could not read state file: {e.strerror or e}")
        _close_quietly(handle)
        return RecoveryResult.ERROR

    if result is RecoveryResult.ADDRESS_NOT_FOUND:
        logger.info(f"server address not found in state file: {descriptor.address}")

    try:
        handle.close()
    except OSError as e:
        logger.error(f"could not close state file: {e.strerror or e}")
        return RecoveryResult.ERROR

    return result


def _close_quietly(handle: TextIO):
    try:
        handle.close()
    except OSError as e:
        logger.debug(f"error closing state file after failure: {e}")


class CheckpointStore:
    """
    State file bound to one path.

    Example:
        store = CheckpointStore('/var/lib/seedlink-client/state')
        store.recover(descriptor)
        ...
        store.save(descriptor)
    """

    def __init__(self, state_file: Union[str, Path]):
        self.state_file = Path(state_file)

    def save(self, descriptor: SessionDescriptor) -> bool:
        return save_state(descriptor, self.state_file)

    def recover(self, descriptor: SessionDescriptor) -> RecoveryResult:
        return recover_state(descriptor, self.state_file)

    def __repr__(self):
        return f"CheckpointStore({str(self.state_file)!r})"
