import struct
import unittest
from unittest import mock

from sourcequery.connection import TransportError
from sourcequery.options import ConfigurationError, EngineGeneration, QueryOptions
from sourcequery.packet import ProtocolMismatchError
from sourcequery.query import SourceQuery, build_request, get_managed_query


HEADER = b'\xFF\xFF\xFF\xFF'
PLAYERS = HEADER + b'D\x01' + b'\x00Alice\x00' + struct.pack('<if', 10, 120.5)
RULES = HEADER + b'E' + struct.pack('<H', 1) + b'sv_cheats\x000\x00'
INFO = (HEADER + b'I' + b'My Server\x00de_dust2\x00csgo\x00CS\x00' + struct.pack('<i', 730)
        + bytes([1, 24, 0, ord('d'), ord('w'), 0, 1]) + b'1.0\x00')


def challenge(token=b'\x0A\x0B\x0C\x0D'):
    return HEADER + b'A' + token

def source_fragments(answer, request_id=0x11, count=2):
    size = -(-len(answer) // count)
    return [struct.pack('<iIBBH', -2, request_id, count, i, 1248) + answer[i * size:(i + 1) * size]
            for i in range(count)]


class FakeConnection(object):
    """Scripted stand-in for UdpConnection"""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.sent = []
        self.close_calls = 0

    def send(self, data):
        self.sent.append(data)

    def receive(self):
        if not self.replies:
            raise TransportError('Timed out')
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self):
        self.close_calls += 1


def make_query(*replies, **options):
    conn = FakeConnection(*replies)
    return SourceQuery('10.0.0.1:27015', QueryOptions(**options), connection=conn), conn


class TestBuildRequest(unittest.TestCase):

    def test_info_request(self):
        self.assertEqual(build_request(0x54, b'Source Engine Query'),
                         b'\xFF\xFF\xFF\xFFTSource Engine Query\x00')

    def test_challenge_request(self):
        self.assertEqual(build_request(0x55, challenge=b'\xFF\xFF\xFF\xFF'),
                         b'\xFF\xFF\xFF\xFFU\xFF\xFF\xFF\xFF')

    def test_ping_request(self):
        self.assertEqual(build_request(0x69), b'\xFF\xFF\xFF\xFFi')


class TestChallenge(unittest.TestCase):

    def test_players_after_challenge(self):
        query, conn = make_query(challenge(), PLAYERS)
        players = query.players()
        self.assertEqual(conn.sent, [HEADER + b'U' + b'\xFF\xFF\xFF\xFF',
                                     HEADER + b'U' + b'\x0A\x0B\x0C\x0D'])
        self.assertEqual([(p.name, p.score, p.duration) for p in players], [('Alice', 10, 120.5)])

    def test_token_echoed_verbatim(self):
        token = b'\x00\xFF\x80\x01'
        query, conn = make_query(challenge(token), RULES)
        query.rules()
        self.assertEqual(conn.sent[1], HEADER + b'V' + token)

    def test_immediate_whole_answer(self):
        query, conn = make_query(RULES)
        self.assertEqual(query.rules(), {'sv_cheats': '0'})
        self.assertEqual(len(conn.sent), 1)

    def test_immediate_split_answer(self):
        query, conn = make_query(*source_fragments(PLAYERS))
        self.assertEqual(query.players()[0].name, 'Alice')
        self.assertEqual(len(conn.sent), 1)

    def test_split_answer_after_challenge(self):
        query, conn = make_query(challenge(), *source_fragments(RULES, count=3))
        self.assertEqual(query.rules(), {'sv_cheats': '0'})

    def test_wrong_full_result_type(self):
        query, conn = make_query(RULES)
        with self.assertRaises(ProtocolMismatchError):
            query.players()

    def test_bad_marker(self):
        query, conn = make_query(b'\x00\x00\x00\x00A\x01\x02\x03\x04')
        with self.assertRaises(ProtocolMismatchError):
            query.players()

    def test_timeout_is_not_retried(self):
        query, conn = make_query(TransportError('Timed out'))
        with self.assertRaises(TransportError):
            query.rules()
        self.assertEqual(len(conn.sent), 1)

    def test_timeout_after_challenge(self):
        query, conn = make_query(challenge())
        with self.assertRaises(TransportError):
            query.players()
        self.assertEqual(len(conn.sent), 2)


class TestQueries(unittest.TestCase):

    def test_info(self):
        query, conn = make_query(INFO)
        srv = query.info()
        self.assertEqual(conn.sent, [HEADER + b'TSource Engine Query\x00'])
        self.assertEqual(srv.name, 'My Server')
        self.assertEqual(srv.address, '10.0.0.1:27015')

    def test_info_with_challenge(self):
        query, conn = make_query(challenge(b'\x01\x02\x03\x04'), INFO)
        self.assertEqual(query.info().map, 'de_dust2')
        self.assertEqual(conn.sent[1], HEADER + b'TSource Engine Query\x00\x01\x02\x03\x04')

    def test_split_info(self):
        query, conn = make_query(*source_fragments(INFO, count=3))
        self.assertEqual(query.info().id, 730)

    def test_goldsource_split_layout(self):
        first = struct.pack('<iIB', -2, 1, 0x02) + PLAYERS[:10]
        second = struct.pack('<iIB', -2, 1, 0x12) + PLAYERS[10:]
        query, conn = make_query(second, first, engine_generation=EngineGeneration.GOLDSOURCE)
        self.assertEqual(query.players()[0].name, 'Alice')

    def test_the_ship_players(self):
        reply = PLAYERS + struct.pack('<II', 1, 900)
        query, conn = make_query(reply, app_id=2400)
        player = query.players()[0]
        self.assertEqual((player.ship.deaths, player.ship.money), (1, 900))

    def test_ping_reports_address(self):
        query, conn = make_query(HEADER + b'j')
        response = query.ping()
        self.assertTrue(response.status)
        self.assertEqual(response.address, '10.0.0.1:27015')

    def test_ping_status(self):
        query, conn = make_query(HEADER + b'j00000000000000\x00', HEADER + b'k')
        self.assertTrue(query.ping())
        self.assertFalse(query.ping())
        self.assertEqual(conn.sent, [HEADER + b'i', HEADER + b'i'])

    def test_ping_timeout_is_an_error(self):
        query, conn = make_query()
        with self.assertRaises(TransportError):
            query.ping()

    def test_unknown_answer_header(self):
        query, conn = make_query(b'\x01\x00\x00\x00I')
        with self.assertRaises(ProtocolMismatchError):
            query.info()


class TestLifecycle(unittest.TestCase):

    def test_context_manager_closes(self):
        conn = FakeConnection()
        with SourceQuery('10.0.0.1', connection=conn) as query:
            self.assertEqual((query.host, query.port), ('10.0.0.1', 27015))
        self.assertEqual(conn.close_calls, 1)

    def test_managed_query_closes_on_error(self):
        conn = FakeConnection()
        with self.assertRaises(TransportError):
            with get_managed_query(('10.0.0.1', 27016), connection=conn) as query:
                query.ping()
        self.assertEqual(conn.close_calls, 1)

    def test_invalid_address_before_io(self):
        with mock.patch('sourcequery.query.UdpConnection') as udp:
            with self.assertRaises(ConfigurationError):
                SourceQuery('10.0.0.1:notaport')
            with self.assertRaises(ConfigurationError):
                SourceQuery(':27015')
            udp.assert_not_called()

    def test_options_type(self):
        with self.assertRaises(ConfigurationError):
            SourceQuery('10.0.0.1', options={'timeout': 1}, connection=FakeConnection())

    def test_opens_connection_from_options(self):
        with mock.patch('sourcequery.query.UdpConnection') as udp:
            SourceQuery('example.org:27020', QueryOptions(timeout=1.5, max_datagram_size=4096,
                                                          min_query_interval=0.5))
        udp.assert_called_once_with('example.org', 27020, 1.5, 4096, 0.5)


if __name__ == '__main__':
    unittest.main()
