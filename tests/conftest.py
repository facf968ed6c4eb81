"""
Shared test helpers: source path setup and a miniSEED record builder
"""

import sys
import struct
from pathlib import Path

import numpy as np
import pytest

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

_DTYPES = {1: 'i2', 3: 'i4', 4: 'f4', 5: 'f8'}


def build_record(
    network='IU', station='ANMO', location='00', channel='BHZ',
    samples=(1, 2, 3, 4), encoding=3, rate_factor=20, rate_mult=1,
    extra_blockettes=(), byte_order='>', start=(2024, 32, 12, 30, 15, 5000),
    num_samples=None, record_length=512,
):
    """Build a miniSEED 2 record with blockette 1000 plus optional stub blockettes"""
    header = bytearray(48)
    header[0:6] = b'000001'
    header[6:8] = b'D '
    header[8:13] = station.ljust(5).encode('ascii')
    header[13:15] = location.ljust(2).encode('ascii')
    header[15:18] = channel.ljust(3).encode('ascii')
    header[18:20] = network.ljust(2).encode('ascii')

    blockette_types = [1000] + list(extra_blockettes)
    data_offset = 64 if len(blockette_types) <= 2 else 48 + 8 * len(blockette_types)
    if num_samples is None:
        num_samples = len(samples)

    year, day, hour, minute, second, fract = start
    struct.pack_into(byte_order + 'HHBBBBHHhhBBBBiHH', header, 20,
                     year, day, hour, minute, second, 0, fract,
                     num_samples, rate_factor, rate_mult,
                     0, 0, 0, len(blockette_types), 0, data_offset, 48)

    blockettes = bytearray()
    for i, btype in enumerate(blockette_types):
        offset = 48 + 8 * i
        next_offset = offset + 8 if i + 1 < len(blockette_types) else 0
        if btype == 1000:
            word_order = 1 if byte_order == '>' else 0
            blockettes += struct.pack(byte_order + 'HHBBBB', 1000, next_offset, encoding, word_order, 9, 0)
        else:
            blockettes += struct.pack(byte_order + 'HH4x', btype, next_offset)

    record = bytes(header) + bytes(blockettes)
    record += b'\x00' * (data_offset - len(record))

    if encoding == 0:
        record += bytes(samples)
    elif encoding in _DTYPES:
        record += np.asarray(samples, dtype=byte_order + _DTYPES[encoding]).tobytes()

    return record + b'\x00' * max(0, record_length - len(record))


@pytest.fixture
def make_record():
    return build_record
