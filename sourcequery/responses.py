"""Decoders for A2S_INFO, A2S_PLAYER, A2S_RULES and A2A_PING answers"""

from enum import Enum
import logging

from sourcequery.packet import WHOLE, PacketReader, ProtocolMismatchError


# Info answers
S2A_INFO_SOURCE = 0x49 # 'I'
S2A_INFO_SOURCE_LEGACY = 0x6C # 'l', sent by some older Source builds
S2A_INFO_GOLDSRC = 0x6D # 'm'

# Players answer
S2A_PLAYER = 0x44 # 'D'

# Rules answer
S2A_RULES = 0x45 # 'E'

# Ping answer
A2A_ACK = 0x6A # 'j'

THE_SHIP_APP_ID = 2400

# Extra data flags, consumed in this order
EDF_PORT = 0x80
EDF_STEAMID = 0x10
EDF_SOURCETV = 0x40
EDF_KEYWORDS = 0x20
EDF_GAMEID = 0x01


class ServerType(Enum):
    DEDICATED = 'Dedicated'
    NON_DEDICATED = 'NonDedicated'
    SOURCE_TV = 'SourceTV'
    UNKNOWN = 'Unknown'

class ServerOS(Enum):
    LINUX = 'Linux'
    WINDOWS = 'Windows'
    MAC = 'Mac'
    UNKNOWN = 'Unknown'

SERVER_TYPES = {
    ord('d'): ServerType.DEDICATED,
    ord('D'): ServerType.DEDICATED,
    ord('l'): ServerType.NON_DEDICATED,
    ord('L'): ServerType.NON_DEDICATED,
    ord('p'): ServerType.SOURCE_TV,
    ord('P'): ServerType.SOURCE_TV,
}

SERVER_OSES = {
    ord('L'): ServerOS.LINUX,
    ord('l'): ServerOS.LINUX,
    ord('W'): ServerOS.WINDOWS,
    ord('w'): ServerOS.WINDOWS,
    ord('m'): ServerOS.MAC,
}

def get_server_type(code):
    return SERVER_TYPES.get(code, ServerType.UNKNOWN)

def get_server_os(code):
    return SERVER_OSES.get(code, ServerOS.UNKNOWN)


class TheShip(object):
    def __init__(self, mode: int, witnesses: int = None, duration: int = None):
        self.mode = mode
        self.witnesses = witnesses
        self.duration = duration

    def __repr__(self):
        return f'TheShip(mode={self.mode}, witnesses={self.witnesses}, duration={self.duration})'

class Mod(object):
    """Half-Life mod details from an obsolete GoldSource answer"""

    def __init__(self, link: str, download_link: str, version: int = 0, size: int = 0, type: int = 0, dll: int = 0):
        self.link = link
        self.download_link = download_link
        self.version = version
        self.size = size
        self.type = type
        self.dll = dll

    def __repr__(self):
        return (f'Mod(link={self.link!r}, download_link={self.download_link!r}, version={self.version}, '
                f'size={self.size}, type={self.type}, dll={self.dll})')

class ServerExtend(object):
    def __init__(self):
        self.port = None
        self.steam_id = None
        self.keywords = None
        self.game_id = None

    def __repr__(self):
        return (f'ServerExtend(port={self.port}, steam_id={self.steam_id}, '
                f'keywords={self.keywords!r}, game_id={self.game_id})')

class SourceTV(object):
    def __init__(self, port: int, name: str):
        self.port = port
        self.name = name

    def __repr__(self):
        return f'SourceTV(port={self.port}, name={self.name!r})'


class ServerInfo(object):
    """Answer to an info query.

    `ship` is only set for The Ship, `mod` only on obsolete GoldSource answers,
    `extend` and `source_tv` only when the matching extra data flags are set.
    """

    def __init__(self, address=None):
        self.address = address
        self.protocol = None
        self.name = ''
        self.map = ''
        self.folder = ''
        self.game = ''
        self.id = 0
        self.players = 0
        self.max_players = 0
        self.bots = 0
        self.server_type = ServerType.UNKNOWN
        self.os = ServerOS.UNKNOWN
        self.visibility = False
        self.vac = False
        self.version = None
        self.edf = None
        self.ship = None
        self.mod = None
        self.extend = None
        self.source_tv = None

    @property
    def private(self):
        return self.visibility

    def __repr__(self):
        return (f'ServerInfo(name={self.name!r}, map={self.map!r}, game={self.game!r}, id={self.id}, '
                f'players={self.players}/{self.max_players}, bots={self.bots}, '
                f'type={self.server_type.value}, os={self.os.value}, version={self.version!r})')


class ShipPlayer(object):
    def __init__(self, deaths: int, money: int):
        self.deaths = deaths
        self.money = money

    def __repr__(self):
        return f'ShipPlayer(deaths={self.deaths}, money={self.money})'

class Player(object):
    """Represents one entry of a player list"""

    def __init__(self, index: int, name: str, score: int, duration: float, ship: ShipPlayer = None):
        self.index = index
        self.name = name
        self.score = score
        self.duration = duration
        self.ship = ship

    def __repr__(self):
        return f'Player(index={self.index}, name={self.name!r}, score={self.score}, duration={self.duration:.1f})'


class Players(list):
    """Player list in wire order, `count` is the number the server announced"""

    def __init__(self, count: int):
        super().__init__()
        self.count = count


class Rules(dict):
    """Rules by name.

    `count` is the number of rules the server announced and `decoded` the
    number of pairs actually read. They differ when the answer was truncated.
    """

    def __init__(self, count: int):
        super().__init__()
        self.count = count
        self.decoded = 0

    @property
    def truncated(self):
        return self.decoded < self.count


class PingResponse(object):
    """Answer to a ping, truthy when the server acknowledged it"""

    def __init__(self, address, status: bool):
        self.address = address
        self.status = status

    def __bool__(self):
        return self.status

    def __repr__(self):
        return f'PingResponse(address={self.address!r}, status={self.status})'


def _check_header(reader, what):
    if reader.read_int32() != WHOLE:
        raise ProtocolMismatchError('%s: packet header mismatch' % what)


def parse_info(data, address=None):
    """Decode an info answer.

    Raises:
        ProtocolMismatchError if the header or the answer type is unexpected
        MalformedDataError if a field is truncated
    """
    reader = PacketReader(data)
    _check_header(reader, 'Info')

    typ = reader.read_uint8()
    srv = ServerInfo(address)
    if typ in (S2A_INFO_SOURCE, S2A_INFO_SOURCE_LEGACY):
        _parse_source_info(reader, srv)
    elif typ == S2A_INFO_GOLDSRC:
        _parse_goldsource_info(reader, srv)
    else:
        raise ProtocolMismatchError('Info: unsupported answer type %#04x' % typ)
    return srv


def _parse_source_info(reader, srv):
    srv.name = reader.read_string()
    srv.map = reader.read_string()
    srv.folder = reader.read_string()
    srv.game = reader.read_string()
    srv.id = reader.read_int32()
    srv.players = reader.read_uint8()
    srv.max_players = reader.read_uint8()
    srv.bots = reader.read_uint8()
    srv.server_type = get_server_type(reader.read_uint8())
    srv.os = get_server_os(reader.read_uint8())
    srv.visibility = reader.read_uint8() == 1
    srv.vac = reader.read_uint8() == 1

    # The Ship sends its game mode where everyone else sends a version string
    if srv.id == THE_SHIP_APP_ID:
        srv.ship = TheShip(mode=reader.read_uint8())
    else:
        srv.version = reader.read_string()

    # NOTE: Nothing left means no extra data, a truncated datagram looks the same.
    if not reader.more():
        return

    srv.edf = edf = reader.read_uint8()
    if edf & (EDF_PORT | EDF_STEAMID | EDF_KEYWORDS | EDF_GAMEID):
        srv.extend = ServerExtend()
    if edf & EDF_PORT:
        srv.extend.port = reader.read_uint16()
    if edf & EDF_STEAMID:
        srv.extend.steam_id = reader.read_uint64()
    if edf & EDF_SOURCETV:
        port = reader.read_uint16()
        srv.source_tv = SourceTV(port, reader.read_string())
    if edf & EDF_KEYWORDS:
        srv.extend.keywords = reader.read_string()
    if edf & EDF_GAMEID:
        srv.extend.game_id = reader.read_uint64()


def _parse_goldsource_info(reader, srv):
    reader.read_string() # Server address, we already know it
    srv.name = reader.read_string()
    srv.map = reader.read_string()
    srv.folder = reader.read_string()
    srv.game = reader.read_string()
    srv.players = reader.read_uint8()
    srv.max_players = reader.read_uint8()
    srv.protocol = reader.read_uint8()
    srv.server_type = get_server_type(reader.read_uint8())
    srv.os = get_server_os(reader.read_uint8())
    srv.visibility = reader.read_uint8() == 1

    if reader.read_uint8() == 1:
        srv.mod = Mod(reader.read_string(), reader.read_string())
        reader.read_uint8() # Reserved
        srv.mod.version = reader.read_int32()
        srv.mod.size = reader.read_int32()
        srv.mod.type = reader.read_uint8()
        srv.mod.dll = reader.read_uint8()
    else:
        srv.vac = reader.read_uint8() == 1
        srv.bots = reader.read_uint8()


def parse_players(data, app_id=0):
    """Decode a player list answer, keeping the order the server sent."""
    reader = PacketReader(data)
    _check_header(reader, 'Players')
    if reader.read_uint8() != S2A_PLAYER:
        raise ProtocolMismatchError('Players: bad players reply')

    players = Players(reader.read_uint8())
    for _ in range(players.count):
        player = Player(index=reader.read_uint8(),
                        name=reader.read_string(),
                        score=reader.read_int32(),
                        duration=reader.read_float32())
        if app_id == THE_SHIP_APP_ID:
            player.ship = ShipPlayer(deaths=reader.read_uint32(), money=reader.read_uint32())
        players.append(player)
    return players


def parse_rules(data):
    """Decode a rules answer into a dict.

    Some servers send truncated rule lists (TF2 is known to), so decoding stops
    at the first unterminated string and returns the rules read so far.
    """
    reader = PacketReader(data)
    _check_header(reader, 'Rules')
    if reader.read_uint8() != S2A_RULES:
        raise ProtocolMismatchError('Rules: bad rules reply')

    rules = Rules(reader.read_uint16())
    for _ in range(rules.count):
        key, ok = reader.try_read_string()
        if ok:
            value, ok = reader.try_read_string()
        if not ok:
            logging.warning('Rules answer truncated after %s of %s rules', rules.decoded, rules.count)
            break
        rules[key] = value
        rules.decoded += 1
    return rules


def parse_ping(data):
    """Return True if the server acknowledged the ping."""
    reader = PacketReader(data)
    _check_header(reader, 'Ping')
    return reader.read_uint8() == A2A_ACK
