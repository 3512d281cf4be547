import contextlib
import logging

from sourcequery.connection import UdpConnection
from sourcequery.fragments import FragmentReassembler
from sourcequery.options import ConfigurationError, QueryOptions, parse_address
from sourcequery.packet import WHOLE, SPLIT, PacketBuilder, PacketReader, ProtocolMismatchError
from sourcequery import responses


# Every request starts with this
QUERY_HEADER = b'\xFF\xFF\xFF\xFF'

# Challenge
CHALLENGE = b'\xFF\xFF\xFF\xFF'
S2C_CHALLENGE = 0x41 # 'A'

# Details Query
A2S_INFO = 0x54 # 'T'
A2S_INFO_STRING = b'Source Engine Query'

# Players Query
A2S_PLAYER = 0x55 # 'U'

# Rules Query
A2S_RULES = 0x56 # 'V'

# Ping
A2A_PING = 0x69 # 'i'


def build_request(typ, payload=None, challenge=None):
    """Return the bytes of a request for the given query type."""
    b = PacketBuilder(QUERY_HEADER).write_byte(typ)
    if payload is not None:
        b.write_cstring(payload)
    if challenge is not None:
        b.write_bytes(challenge)
    return b.getvalue()


@contextlib.contextmanager
def get_managed_query(*args, **kwargs):
    """ Yields a managed SourceQuery (closes its socket when leaving context). """
    query = SourceQuery(*args, **kwargs)
    try:
        yield query
    finally:
        query.close()


class SourceQuery(object):
    """Client for the Source server query protocol.

    Parameters:
        address (str or tuple) "host:port", "host" or (host, port) of the query port
        options (QueryOptions) timeouts, packet layout and rate limit, defaults if omitted
        connection (UdpConnection) transport to use instead of opening a new socket

    The options are validated before any socket is opened. A client handles
    one query at a time and is not thread-safe.
    """

    def __init__(self, address, options=None, connection=None):
        self.options = options if options is not None else QueryOptions()
        if not isinstance(self.options, QueryOptions):
            raise ConfigurationError('Expected QueryOptions type for options')
        self.host, self.port = parse_address(address)
        self.address = f'{self.host}:{self.port}'

        if connection is None:
            connection = UdpConnection(self.host, self.port, self.options.timeout,
                                       self.options.max_datagram_size, self.options.min_query_interval)
        self.connection = connection
        self.reassembler = FragmentReassembler(self.connection.receive, self.options.engine_generation,
                                               self.options.app_id)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.connection.close()

    def _send(self, data):
        logging.debug('Query %s: Sending %s', self.address, data.hex())
        self.connection.send(data)

    def _receive_raw(self):
        data = self.connection.receive()
        logging.debug('Query %s: Received %s bytes', self.address, len(data))
        return data

    def _resolve(self, raw):
        """Return the body of a whole answer, collecting the other packets of a split one."""
        typ = PacketReader(raw).read_int32()
        if typ == WHOLE:
            return raw
        elif typ == SPLIT:
            return self.reassembler.collect(raw)
        raise ProtocolMismatchError('Query %s: packet header mismatch' % self.address)

    def _get_challenge(self, typ, full_result):
        """Ask for a challenge number.

        Returns a (data, immediate) tuple. When immediate is True the server
        skipped the challenge and data is its raw answer, otherwise data is the
        4 byte challenge to append to the real request.
        """
        self._send(build_request(typ, challenge=CHALLENGE))
        raw = self._receive_raw()

        reader = PacketReader(raw)
        header = reader.read_int32()
        if header == SPLIT: # We received an unexpected full reply
            return raw, True
        elif header != WHOLE:
            raise ProtocolMismatchError('Query %s: packet header mismatch' % self.address)

        reply = reader.read_uint8()
        if reply == S2C_CHALLENGE:
            return reader.read_bytes(4), False
        elif reply == full_result:
            return raw, True
        raise ProtocolMismatchError('Query %s: bad challenge response %#04x' % (self.address, reply))

    def _challenged_query(self, typ, full_result):
        data, immediate = self._get_challenge(typ, full_result)
        if not immediate:
            logging.debug('Query %s: Got challenge %s', self.address, data.hex())
            self._send(build_request(typ, challenge=data))
            data = self._receive_raw()
        return self._resolve(data)

    def info(self):
        """Return a ServerInfo describing the server."""
        request = build_request(A2S_INFO, A2S_INFO_STRING)
        self._send(request)
        raw = self._resolve(self._receive_raw())

        # Servers updated after December 2020 want the info request repeated with a challenge
        reader = PacketReader(raw)
        reader.read_int32()
        if reader.read_uint8() == S2C_CHALLENGE:
            challenge = reader.read_bytes(4)
            logging.debug('Query %s: Info asked for challenge %s', self.address, challenge.hex())
            self._send(request + challenge)
            raw = self._resolve(self._receive_raw())

        return responses.parse_info(raw, self.address)

    def players(self):
        """Return the list of connected players in the order the server sent them."""
        raw = self._challenged_query(A2S_PLAYER, responses.S2A_PLAYER)
        return responses.parse_players(raw, self.options.app_id)

    def rules(self):
        """Return the server rules as a Rules dict, see Rules.truncated."""
        raw = self._challenged_query(A2S_RULES, responses.S2A_RULES)
        return responses.parse_rules(raw)

    def ping(self):
        """Return a PingResponse, truthy if the server acknowledged the ping."""
        self._send(build_request(A2A_PING))
        return responses.PingResponse(self.address, responses.parse_ping(self._receive_raw()))
