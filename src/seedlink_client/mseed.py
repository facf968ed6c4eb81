#!/usr/bin/env python3
"""
miniSEED Record Parser

Decodes the miniSEED 2 records carried in data packets: the 48-byte fixed
section of data header, the blockette chain, and - for uncompressed
encodings - the sample values. Steim-compressed data is left undecoded;
the header and blockettes are still reported.

Also classifies a record into a packet type from its blockettes, the same
way SeedLink clients do.
"""

import struct
import logging
import numpy as np
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .errors import RecordParseError
from .packets import PacketType

logger = logging.getLogger(__name__)

FIXED_HEADER_SIZE = 48

# Data encodings (blockette 1000)
ENCODING_ASCII = 0
ENCODING_INT16 = 1
ENCODING_INT32 = 3
ENCODING_FLOAT32 = 4
ENCODING_FLOAT64 = 5
ENCODING_STEIM1 = 10
ENCODING_STEIM2 = 11

ENCODING_NAMES = {
    ENCODING_ASCII: "ASCII",
    ENCODING_INT16: "INT16",
    ENCODING_INT32: "INT32",
    ENCODING_FLOAT32: "FLOAT32",
    ENCODING_FLOAT64: "FLOAT64",
    ENCODING_STEIM1: "STEIM1",
    ENCODING_STEIM2: "STEIM2",
}

# numpy dtype (without byte order) per uncompressed encoding
_SAMPLE_DTYPES = {
    ENCODING_INT16: 'i2',
    ENCODING_INT32: 'i4',
    ENCODING_FLOAT32: 'f4',
    ENCODING_FLOAT64: 'f8',
}

DETECTION_BLOCKETTES = {200, 201}
CALIBRATION_BLOCKETTES = {300, 310, 320, 390}
TIMING_BLOCKETTES = {500}


@dataclass
class MSRecord:
    """Decoded miniSEED record"""
    sequence_number: str
    quality: str
    network: str
    station: str
    location: str
    channel: str
    start_time: datetime
    sample_rate: float
    num_samples: int
    encoding: Optional[int]
    byte_order: str                       # '>' or '<'
    record_length: int
    activity_flags: int = 0
    io_flags: int = 0
    dq_flags: int = 0
    blockettes: List[int] = field(default_factory=list)
    samples: Optional[np.ndarray] = None
    text: Optional[str] = None            # ASCII-encoded payload (log records)

    @property
    def source_name(self) -> str:
        return f"{self.network}_{self.station}_{self.location}_{self.channel}"

    @property
    def end_time(self) -> datetime:
        if self.sample_rate > 0 and self.num_samples > 0:
            try:
                return self.start_time + timedelta(seconds=(self.num_samples - 1) / self.sample_rate)
            except (OverflowError, ValueError):
                # Span not representable as a datetime
                return self.start_time
        return self.start_time

    @property
    def encoding_name(self) -> str:
        if self.encoding is None:
            return "unknown"
        return ENCODING_NAMES.get(self.encoding, f"encoding {self.encoding}")


def _sample_rate(factor: int, multiplier: int) -> float:
    """Nominal sample rate from the SEED factor/multiplier pair"""
    if factor == 0 or multiplier == 0:
        return 0.0
    if factor > 0 and multiplier > 0:
        return float(factor * multiplier)
    if factor > 0 and multiplier < 0:
        return -float(factor) / multiplier
    if factor < 0 and multiplier > 0:
        return -float(multiplier) / factor
    return 1.0 / (factor * multiplier)


def _detect_byte_order(header: bytes) -> str:
    """SEED has no byte order flag in the fixed header; a sane year/day decides"""
    for order in ('>', '<'):
        year, day = struct.unpack(order + 'HH', header[20:24])
        if 1900 <= year <= 2100 and 1 <= day <= 366:
            return order
    raise RecordParseError("not a miniSEED record", "start time year/day out of range")


def parse_record(payload: bytes, decode_samples: bool = True) -> MSRecord:
    """
    Parse a miniSEED 2 record.

    Args:
        payload: Raw record bytes
        decode_samples: Decode sample values for uncompressed encodings

    Returns:
        MSRecord

    Raises:
        RecordParseError: if the payload is not a usable miniSEED record
    """
    if len(payload) < FIXED_HEADER_SIZE:
        raise RecordParseError("record too short", f"{len(payload)} bytes")

    quality = chr(payload[6])
    if quality not in 'DRQM':
        raise RecordParseError("not a miniSEED record", f"data quality indicator {quality!r}")

    order = _detect_byte_order(payload)
    (year, day, hour, minute, second, _unused, fract,
     num_samples, rate_factor, rate_mult,
     activity, io_flags, dq_flags, num_blockettes,
     time_correction, data_offset, blockette_offset) = struct.unpack(
        order + 'HHBBBBHHhhBBBBiHH', payload[20:48])

    try:
        start_time = (datetime(year, 1, 1, tzinfo=timezone.utc)
                      + timedelta(days=day - 1, hours=hour, minutes=minute,
                                  seconds=second, microseconds=fract * 100))
    except (ValueError, OverflowError) as e:
        raise RecordParseError("invalid record start time", str(e))

    # Apply the time correction unless the header says it is already applied
    if time_correction and not (activity & 0x02):
        start_time += timedelta(microseconds=time_correction * 100)

    def text_field(start: int, end: int) -> str:
        return payload[start:end].decode('ascii', errors='replace').strip()

    record = MSRecord(
        sequence_number=text_field(0, 6),
        quality=quality,
        network=text_field(18, 20),
        station=text_field(8, 13),
        location=text_field(13, 15),
        channel=text_field(15, 18),
        start_time=start_time,
        sample_rate=_sample_rate(rate_factor, rate_mult),
        num_samples=num_samples,
        encoding=None,
        byte_order=order,
        record_length=len(payload),
        activity_flags=activity,
        io_flags=io_flags,
        dq_flags=dq_flags,
    )

    _read_blockettes(record, payload, blockette_offset, num_blockettes)

    if decode_samples and data_offset and num_samples:
        _decode_data(record, payload, data_offset)

    return record


def _read_blockettes(record: MSRecord, payload: bytes, offset: int, expected: int):
    """Walk the blockette chain, reading blockettes 100 and 1000"""
    visited = set()
    data_order = record.byte_order

    while offset:
        if offset in visited or offset < FIXED_HEADER_SIZE or offset + 4 > len(payload):
            raise RecordParseError("corrupt blockette chain", f"offset {offset}")
        visited.add(offset)

        btype, next_offset = struct.unpack(record.byte_order + 'HH', payload[offset:offset + 4])
        record.blockettes.append(btype)

        if btype == 1000 and offset + 8 <= len(payload):
            encoding, word_order, reclen_exp = struct.unpack('BBB', payload[offset + 4:offset + 7])
            record.encoding = encoding
            data_order = '>' if word_order == 1 else '<'
            if 7 <= reclen_exp <= 20:
                record.record_length = 2 ** reclen_exp
        elif btype == 100 and offset + 8 <= len(payload):
            (actual_rate,) = struct.unpack(record.byte_order + 'f', payload[offset + 4:offset + 8])
            if actual_rate > 0:
                record.sample_rate = float(actual_rate)

        offset = next_offset

    if len(record.blockettes) != expected:
        logger.debug(f"{record.source_name}: header lists {expected} blockettes, "
                     f"found {len(record.blockettes)}")

    record.byte_order = data_order


def _decode_data(record: MSRecord, payload: bytes, data_offset: int):
    if data_offset >= len(payload):
        raise RecordParseError("data offset beyond end of record", f"offset {data_offset}")

    data = payload[data_offset:]

    if record.encoding == ENCODING_ASCII:
        record.text = data[:record.num_samples].decode('ascii', errors='replace')
        return

    dtype = _SAMPLE_DTYPES.get(record.encoding)
    if dtype is None:
        # Steim or unknown: header information only
        return

    sample_dtype = np.dtype(record.byte_order + dtype)
    needed = record.num_samples * sample_dtype.itemsize
    if needed > len(data):
        raise RecordParseError(
            "record truncated",
            f"{record.num_samples} samples need {needed} bytes, {len(data)} present",
        )
    record.samples = np.frombuffer(data[:needed], dtype=sample_dtype)


def classify_payload(payload: bytes) -> PacketType:
    """
    Packet type of a miniSEED record, judged by its blockettes.

    Unparseable payloads are classified as GENERAL.
    """
    try:
        record = parse_record(payload, decode_samples=False)
    except RecordParseError:
        return PacketType.GENERAL

    blockettes = set(record.blockettes)
    if blockettes & DETECTION_BLOCKETTES:
        return PacketType.DETECTION
    if blockettes & CALIBRATION_BLOCKETTES:
        return PacketType.CALIBRATION
    if blockettes & TIMING_BLOCKETTES:
        return PacketType.TIMING
    if record.num_samples > 0:
        if record.sample_rate == 0:
            return PacketType.MESSAGE
        return PacketType.DATA
    return PacketType.GENERAL


def _format_time(value: datetime) -> str:
    day_of_year = value.timetuple().tm_yday
    return (f"{value.year:04d},{day_of_year:03d},"
            f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}."
            f"{value.microsecond // 100:04d}")


def render_record(record: MSRecord, detail: int = 0) -> str:
    """
    Printable summary of a record.

    Args:
        record: Parsed record
        detail: 0 = one line, 1 = header fields and blockettes,
            2 = also the first decoded samples
    """
    lines = [
        f"{record.source_name}, {record.sequence_number}, {record.num_samples} samples, "
        f"{record.sample_rate:g} Hz, {_format_time(record.start_time)}"
    ]
    if detail < 1:
        return lines[0]

    lines.extend([
        f"  quality indicator: {record.quality}",
        f"   record length: {record.record_length} bytes",
        f"   encoding: {record.encoding_name}",
        f"   byte order: {'big' if record.byte_order == '>' else 'little'} endian",
        f"   end time: {_format_time(record.end_time)}",
        f"   activity flags: [{record.activity_flags:08b}]",
        f"   I/O flags: [{record.io_flags:08b}]",
        f"   data quality flags: [{record.dq_flags:08b}]",
        f"   blockettes: {', '.join(str(b) for b in record.blockettes) or 'none'}",
    ])

    if detail >= 2:
        if record.samples is not None:
            shown = record.samples[:6]
            more = " ..." if len(record.samples) > len(shown) else ""
            lines.append(f"   samples: {' '.join(str(s) for s in shown.tolist())}{more}")
        elif record.text is not None:
            lines.append(f"   text: {record.text.strip()}")

    return "\n".join(lines)
