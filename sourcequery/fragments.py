"""Reassembly of answers split across several datagrams"""

import bz2
import logging
import zlib

from sourcequery.options import EngineGeneration
from sourcequery.packet import SPLIT, PacketReader, ProtocolMismatchError


# Most significant bit of the request id marks a bzip2 compressed answer (Source only)
COMPRESSED_FLAG = 0x80000000

MAX_DECOMPRESSED_SIZE = 1024 * 1024

# Source games whose split header has no split size field
NO_SPLIT_SIZE_APP_IDS = frozenset((215, 17550, 17700))

"""
Split packet header layouts, all little-endian:

GoldSource
    - int32   marker                # Always SPLIT
    - uint32  request id
    - uint8   packet number         # Low 4 bits: total packets, high 4 bits: index of this packet

Source
    - int32   marker                # Always SPLIT
    - uint32  request id            # Most significant bit set when the answer is compressed
    - uint8   total packets
    - uint8   index of this packet
    - uint16  split size            # Absent for the app ids in NO_SPLIT_SIZE_APP_IDS

Everything after the header is payload. On a compressed answer the payload of
packet 0 starts with the uint32 decompressed size and the uint32 CRC32 of the
decompressed data.
"""


class Fragment(object):
    """One datagram of a split answer"""

    def __init__(self, request_id, total, index, payload, split_size=None, compressed=False):
        self.request_id = request_id
        self.total = total
        self.index = index
        self.payload = payload
        self.split_size = split_size
        self.compressed = compressed

    def __repr__(self):
        return (f'Fragment(id={self.request_id:#x}, index={self.index}/{self.total}, '
                f'split_size={self.split_size}, compressed={self.compressed}, {len(self.payload)} bytes)')


def parse_fragment(data, engine_generation=EngineGeneration.SOURCE, app_id=0):
    """Decode the split header of one datagram.

    Raises:
        ProtocolMismatchError if the datagram is not marked as split
        MalformedDataError if the header is truncated
    """
    reader = PacketReader(data)
    if reader.read_int32() != SPLIT:
        raise ProtocolMismatchError('Expected a split packet header')
    request_id = reader.read_uint32()

    if engine_generation is EngineGeneration.GOLDSOURCE:
        packed = reader.read_uint8()
        return Fragment(request_id, total=packed & 0x0F, index=packed >> 4,
                        payload=reader.read_remaining())

    total = reader.read_uint8()
    index = reader.read_uint8()
    split_size = None if app_id in NO_SPLIT_SIZE_APP_IDS else reader.read_uint16()
    return Fragment(request_id, total=total, index=index, split_size=split_size,
                    compressed=bool(request_id & COMPRESSED_FLAG),
                    payload=reader.read_remaining())


def decompress_payload(payload):
    """Unpack a bzip2 compressed answer and verify its size and checksum."""
    reader = PacketReader(payload)
    size = reader.read_uint32()
    checksum = reader.read_uint32()
    if size > MAX_DECOMPRESSED_SIZE:
        raise ProtocolMismatchError('Declared decompressed size %s exceeds %s bytes' % (size, MAX_DECOMPRESSED_SIZE))

    decompressor = bz2.BZ2Decompressor()
    try:
        data = decompressor.decompress(reader.read_remaining(), max_length=size + 1)
    except OSError as e:
        raise ProtocolMismatchError('Invalid bzip2 data: %s' % e) from e
    if len(data) != size:
        raise ProtocolMismatchError('Decompressed %s bytes, expected %s' % (len(data), size))
    if zlib.crc32(data) != checksum:
        raise ProtocolMismatchError('Checksum mismatch on decompressed answer')
    return data


class FragmentReassembler(object):
    """Collects the datagrams of a split answer into one payload.

    Parameters:
        receive (callable) returns the next datagram, used for every packet after the first
        engine_generation (EngineGeneration) split header layout used by the server
        app_id (int) game app id, some Source games omit the split size field
    """

    def __init__(self, receive, engine_generation=EngineGeneration.SOURCE, app_id=0):
        self.receive = receive
        self.engine_generation = engine_generation
        self.app_id = app_id

    def parse(self, data):
        return parse_fragment(data, self.engine_generation, self.app_id)

    def collect(self, first):
        """Return the reassembled answer, starting from the first datagram received.

        The result has the same shape as the body of an unsplit answer.

        Raises:
            ProtocolMismatchError on an out of range or duplicate packet index,
                a foreign request id or a failed decompression check
            TransportError if receiving a further packet fails
        """
        fragment = self.parse(first)
        request_id = fragment.request_id
        slots = [None] * fragment.total
        received = 0

        while True:
            logging.debug('Received %s', fragment)
            if fragment.request_id != request_id:
                raise ProtocolMismatchError('Split packet for request %#x while collecting %#x'
                                            % (fragment.request_id, request_id))
            if not 0 <= fragment.index < len(slots):
                raise ProtocolMismatchError('Split packet index %s out of range for %s packets'
                                            % (fragment.index, len(slots)))
            if slots[fragment.index] is not None:
                raise ProtocolMismatchError('Received split packet %s twice' % fragment.index)

            slots[fragment.index] = fragment
            received += 1
            if received == len(slots):
                break
            fragment = self.parse(self.receive())

        payload = b''.join(f.payload for f in slots)
        if slots[0].compressed:
            payload = decompress_payload(payload)
        return payload
