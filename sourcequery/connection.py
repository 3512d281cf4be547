"""UDP transport for Source server queries"""

import logging
import socket
import time

from sourcequery.packet import QueryError


class UdpConnection(object):
    """Connected UDP socket that sends and receives single datagrams.

    Each send and each receive is bounded by `timeout` on its own. When
    `min_query_interval` is set, a send blocks until that many seconds have
    passed since the previous send or receive.
    """

    def __init__(self, host, port, timeout, max_datagram_size, min_query_interval=0.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.max_datagram_size = max_datagram_size
        self.min_query_interval = min_query_interval
        self._next_query = 0.0
        self._sock = None
        self._connect_sock()

    def _connect_sock(self):
        try:
            family, socktype, proto, _, sockaddr = socket.getaddrinfo(
                self.host, self.port, type=socket.SOCK_DGRAM)[0]
        except socket.gaierror as e:
            raise TransportError('Unknown host %s: %s' % (self.host, e)) from e
        sock = socket.socket(family, socktype, proto)
        try:
            sock.settimeout(self.timeout)
            sock.connect(sockaddr)
        except OSError as e:
            sock.close()
            raise TransportError('Could not connect to %s:%s: %s' % (self.host, self.port, e)) from e
        self._sock = sock
        logging.debug('Query %s:%s: Opened UDP socket to %s', self.host, self.port, sockaddr)

    @property
    def closed(self):
        return self._sock is None

    def _enforce_rate_limit(self):
        if not self.min_query_interval:
            return
        wait = self._next_query - time.monotonic()
        if wait > 0:
            logging.debug('Query %s:%s: Rate limited, waiting %.3fs', self.host, self.port, wait)
            time.sleep(wait)

    def _set_next_query_time(self):
        if self.min_query_interval:
            self._next_query = time.monotonic() + self.min_query_interval

    def send(self, data):
        """Send one datagram.

            Raises:
                TransportError if the socket is closed, the send failed or timed out
        """
        if self.closed:
            raise TransportError('Connection to %s:%s is closed' % (self.host, self.port))
        self._enforce_rate_limit()
        try:
            self._sock.send(data)
        except socket.timeout as e:
            raise TransportError('Timed out sending to %s:%s' % (self.host, self.port)) from e
        except OSError as e:
            raise TransportError('Failed to send to %s:%s: %s' % (self.host, self.port, e)) from e
        finally:
            self._set_next_query_time()

    def receive(self):
        """Receive one datagram of at most max_datagram_size bytes.

            Raises:
                TransportError if the socket is closed, the receive failed or timed out
        """
        if self.closed:
            raise TransportError('Connection to %s:%s is closed' % (self.host, self.port))
        try:
            return self._sock.recv(self.max_datagram_size)
        except socket.timeout as e:
            raise TransportError('Timed out waiting for %s:%s' % (self.host, self.port)) from e
        except OSError as e: # ICMP port unreachable shows up here as ConnectionRefusedError
            raise TransportError('Failed to receive from %s:%s: %s' % (self.host, self.port, e)) from e
        finally:
            self._set_next_query_time()

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logging.debug('Query %s:%s: Closed UDP socket', self.host, self.port)


class TransportError(QueryError):
    """Raised when sending or receiving a datagram fails or times out."""
    pass
