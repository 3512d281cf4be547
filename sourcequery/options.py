from enum import Enum
import numbers

from sourcequery.packet import QueryError


DEFAULT_PORT = 27015
DEFAULT_TIMEOUT = 3.0
DEFAULT_MAX_DATAGRAM_SIZE = 1400
MAX_UDP_PAYLOAD = 65507


class EngineGeneration(Enum):
    """Selects the split packet header layout used by the server"""
    GOLDSOURCE = 'goldsource' # Total and index packed into one byte
    SOURCE = 'source' # Separate total and index bytes plus a split size


class QueryOptions(object):
    """Settings for a SourceQuery client.

    Parameters:
        timeout (float) seconds allowed for each individual send or receive
        max_datagram_size (int) receive buffer size. Some games such as Squad
            send larger than standard datagrams.
        engine_generation (EngineGeneration or str) split packet header layout
        app_id (int) Steam app id of the game, 2400 enables The Ship player fields
        min_query_interval (float) minimum seconds between consecutive sends, 0 to disable

    Raises ConfigurationError on the first invalid value.
    """

    def __init__(self, timeout=DEFAULT_TIMEOUT, max_datagram_size=DEFAULT_MAX_DATAGRAM_SIZE,
                 engine_generation=EngineGeneration.SOURCE, app_id=0, min_query_interval=0.0):
        self.timeout = _positive_number('timeout', timeout)
        self.max_datagram_size = _int_in_range('max_datagram_size', max_datagram_size, 16, MAX_UDP_PAYLOAD)
        self.engine_generation = _engine_generation(engine_generation)
        self.app_id = _int_in_range('app_id', app_id, 0, 2**31 - 1)
        self.min_query_interval = _non_negative_number('min_query_interval', min_query_interval)

    @classmethod
    def from_config(cls, config):
        """Build options from a Config, falling back to the defaults for missing keys."""
        kwargs = {}
        try:
            for key, convert in (('timeout', float), ('max_datagram_size', int),
                                 ('engine_generation', str), ('app_id', int),
                                 ('min_query_interval', float)):
                value = config.get(key)
                if value is not None:
                    kwargs[key] = convert(value.strip())
        except ValueError as e:
            raise ConfigurationError('Invalid value in %s: %s' % (config.path, e)) from e
        return cls(**kwargs)

    def __repr__(self):
        return ('QueryOptions(timeout=%r, max_datagram_size=%r, engine_generation=%s, app_id=%r, min_query_interval=%r)'
                % (self.timeout, self.max_datagram_size, self.engine_generation.value,
                   self.app_id, self.min_query_interval))


def _is_number(value):
    return isinstance(value, numbers.Real) and not isinstance(value, bool)

def _positive_number(name, value):
    if not _is_number(value) or value <= 0:
        raise ConfigurationError('%s must be a positive number, got %r' % (name, value))
    return float(value)

def _non_negative_number(name, value):
    if not _is_number(value) or value < 0:
        raise ConfigurationError('%s must be zero or a positive number, got %r' % (name, value))
    return float(value)

def _int_in_range(name, value, low, high):
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ConfigurationError('%s must be an integer between %s and %s, got %r' % (name, low, high, value))
    return value

def _engine_generation(value):
    if isinstance(value, EngineGeneration):
        return value
    try:
        return EngineGeneration(str(value).lower())
    except ValueError:
        raise ConfigurationError('engine_generation must be one of %s, got %r'
                                 % (', '.join(e.value for e in EngineGeneration), value))


def parse_address(address):
    """Split an address into a (host, port) tuple.

    Accepts "host:port", a bare "host" (the default query port is used) or a
    (host, port) tuple.
    """
    if isinstance(address, (tuple, list)):
        if len(address) != 2:
            raise ConfigurationError('Address tuple must be (host, port), got %r' % (address,))
        host, port = address
    elif isinstance(address, str):
        address = address.strip()
        host, sep, port = address.rpartition(':')
        if address.startswith('[') and address.endswith(']'): # [IPv6] without a port
            host, port = address, DEFAULT_PORT
        elif not sep:
            host, port = port, DEFAULT_PORT
        else:
            try: port = int(port)
            except ValueError:
                raise ConfigurationError('Invalid port in address %r' % address)
        if ':' in host and not (host.startswith('[') and host.endswith(']')):
            raise ConfigurationError('IPv6 addresses must be written as [host]:port, got %r' % address)
    else:
        raise ConfigurationError('Address must be a string or a (host, port) tuple, got %r' % (address,))

    if not isinstance(host, str) or not host:
        raise ConfigurationError('Missing host in address %r' % (address,))
    if host.startswith('[') and host.endswith(']'): # [IPv6]:port
        host = host[1:-1]
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigurationError('Port must be between 1 and 65535, got %r' % (port,))
    return host, port


class Config:

    def __init__(self, path: str = "config.txt"):
        self.path = path
        self.update()

    def update(self):
        self.config = {}
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f.readlines():
                line = line.strip("\n")
                if not line.strip() or line.lstrip().startswith("#"):
                    continue
                line = line.split("=", 1)
                if len(line) == 2:
                    self.config[line[0].strip()] = line[1]

    def get(self, key: str, alternative_value=None, update_config=False):
        if update_config:
            self.update()
        return self.config.get(key, alternative_value)


class ConfigurationError(QueryError):
    """Raised when a client is constructed with invalid options."""
    pass
