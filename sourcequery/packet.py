"""Byte level encoding and decoding of Source query packets"""

import socket
import struct


# Is the response split among many packets or just one?
WHOLE = -1
SPLIT = -2


class PacketReader(object):
    """Cursor over a received datagram.

    Payload integers are little-endian. IPv4 addresses and ports are read in
    network order. Every read checks the remaining length first and raises
    MalformedDataError instead of running off the end of the buffer.
    """

    def __init__(self, data):
        self._data = bytes(data)
        self._position = 0

    @property
    def data(self):
        return self._data

    @property
    def position(self):
        return self._position

    def remaining(self):
        return len(self._data) - self._position

    def remaining_bytes_insufficient(self, size):
        """Return True if fewer than `size` bytes are left to read."""
        return self._position + size > len(self._data)

    def more(self):
        return self._position < len(self._data)

    def _unpack(self, fmt):
        size = struct.calcsize(fmt)
        if self.remaining_bytes_insufficient(size):
            raise MalformedDataError('Read of %s bytes at offset %s out of bounds (%s bytes total)'
                                     % (size, self._position, len(self._data)))
        value = struct.unpack_from(fmt, self._data, self._position)[0]
        self._position += size
        return value

    def read_uint8(self):
        return self._unpack('<B')

    def read_uint16(self):
        return self._unpack('<H')

    def read_int16(self):
        return self._unpack('<h')

    def read_uint32(self):
        return self._unpack('<I')

    def read_int32(self):
        return self._unpack('<i')

    def read_uint64(self):
        return self._unpack('<Q')

    def read_float32(self):
        return self._unpack('<f')

    def read_port(self):
        """Read a big-endian port number."""
        return self._unpack('>H')

    def read_ipv4(self):
        """Read four address bytes and return them in dotted notation."""
        return socket.inet_ntoa(self.read_bytes(4))

    def read_bytes(self, size):
        """Return the next `size` raw bytes untouched."""
        if self.remaining_bytes_insufficient(size):
            raise MalformedDataError('Read of %s raw bytes at offset %s out of bounds (%s bytes total)'
                                     % (size, self._position, len(self._data)))
        chunk = self._data[self._position:self._position + size]
        self._position += size
        return chunk

    def read_remaining(self):
        chunk = self._data[self._position:]
        self._position = len(self._data)
        return chunk

    def try_read_string(self):
        """Read a null terminated string.

        Returns a (value, ok) tuple. If no terminator is found before the end
        of the buffer, ok is False and the cursor is left where it was.
        """
        end = self._data.find(b'\x00', self._position)
        if end == -1:
            return '', False
        value = self._data[self._position:end].decode('utf-8', errors='replace')
        self._position = end + 1
        return value, True

    def read_string(self):
        """Read a null terminated string, raising MalformedDataError if it is unterminated."""
        value, ok = self.try_read_string()
        if not ok:
            raise MalformedDataError('Unterminated string at offset %s' % self._position)
        return value


class PacketBuilder(object):
    """Append-only encoder for request packets"""

    def __init__(self, data=b''):
        self.buffer = bytearray(data)

    def write_bytes(self, data):
        self.buffer.extend(data)
        return self

    def write_byte(self, value):
        self.buffer.extend(struct.pack('<B', value))
        return self

    def write_long(self, value):
        self.buffer.extend(struct.pack('<i', value))
        return self

    def write_cstring(self, value):
        if isinstance(value, str):
            value = value.encode('utf-8')
        self.buffer.extend(value)
        self.buffer.append(0)
        return self

    def __len__(self):
        return len(self.buffer)

    def getvalue(self):
        return bytes(self.buffer)


class QueryError(Exception):
    """Generic query error."""
    pass
class ProtocolMismatchError(QueryError):
    """Raised when a response does not follow the query protocol."""
    pass
class MalformedDataError(QueryError):
    """Raised when a response is truncated or a string is unterminated."""
    pass
