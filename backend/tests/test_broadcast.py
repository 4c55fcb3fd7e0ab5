import logging

import pytest

from trivia.broadcast import Audience, BroadcastChannel
from trivia.events import AnswerSubmitted, Event, PlayerLeft

logger = logging.getLogger('test-broadcast')


class FakeTransport:
    """Tracks room membership like a Socket.IO server and records deliveries."""

    def __init__(self):
        self.rooms = {}
        self.sent = []

    def enter(self, sid, room):
        self.rooms.setdefault(room, set()).add(sid)

    def exit(self, sid, room):
        members = self.rooms.get(room, set())
        members.discard(sid)
        if not members:
            self.rooms.pop(room, None)

    def emit(self, event, to, skip_sid=None):
        targets = self.rooms.get(to, {to})
        for sid in sorted(targets):
            if sid != skip_sid:
                self.sent.append((sid, event.type))


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def channel(transport):
    return BroadcastChannel(transport, logger)


def _event(code='ROOM01'):
    return Event(code, PlayerLeft(player_id=1, nickname='Alice', total_players=1))


def _fill(channel):
    channel.connect('host')
    channel.join('host', 'room01', device_id='host-123', is_host=True)
    for sid in ('p1', 'p2'):
        channel.connect(sid)
        channel.join(sid, 'ROOM01', device_id=f'device-{sid}')


def test_join_enters_session_and_role_rooms(channel, transport):
    _fill(channel)
    assert transport.rooms['ROOM01'] == {'host', 'p1', 'p2'}
    assert transport.rooms['ROOM01:host'] == {'host'}
    assert transport.rooms['ROOM01:players'] == {'p1', 'p2'}


def test_broadcast_reaches_whole_room(channel, transport):
    _fill(channel)
    channel.join('other', 'ROOM99')
    assert channel.broadcast_to_room('room01', _event()) == 3
    assert [sid for sid, _ in transport.sent] == ['host', 'p1', 'p2']
    assert {t for _, t in transport.sent} == {'player_left'}


def test_audience_filters(channel, transport):
    _fill(channel)
    assert channel.broadcast_to_host('ROOM01', _event()) == 1
    assert transport.sent == [('host', 'player_left')]
    transport.sent.clear()
    assert channel.broadcast_to_players('ROOM01', _event()) == 2
    assert [sid for sid, _ in transport.sent] == ['p1', 'p2']


def test_exclude_sender(channel, transport):
    _fill(channel)
    event = Event('ROOM01', AnswerSubmitted(player_id=1, nickname='A', answered_count=1,
                                            total_players=2, all_answered=False))
    assert channel.broadcast('ROOM01', event, Audience.ALL, exclude='p1') == 2
    assert [sid for sid, _ in transport.sent] == ['host', 'p2']


def test_missing_room_is_skipped(channel, transport):
    assert channel.broadcast('NOPE00', _event('NOPE00')) == 0
    assert transport.sent == []


def test_direct_send(channel, transport):
    channel.connect('p1')
    channel.send('p1', _event())
    assert transport.sent == [('p1', 'player_left')]


def test_join_moves_between_rooms(channel, transport):
    channel.join('p1', 'ROOM01')
    channel.join('p1', 'ROOM02', is_host=True)
    assert channel.room_info('ROOM01') == {'client_count': 0, 'has_host': False}
    assert channel.room_info('ROOM02') == {'client_count': 1, 'has_host': True}
    assert 'ROOM01' not in transport.rooms
    assert 'ROOM01:players' not in transport.rooms
    assert transport.rooms['ROOM02:host'] == {'p1'}


def test_leave_and_disconnect(channel, transport):
    _fill(channel)
    assert channel.leave('host') == 'ROOM01'
    assert channel.room_info('ROOM01') == {'client_count': 2, 'has_host': False}
    assert 'ROOM01:host' not in transport.rooms
    assert channel.leave('host') is None
    channel.disconnect('p1')
    channel.disconnect('p2')
    assert channel.room_info('ROOM01')['client_count'] == 0
    assert 'ROOM01' not in transport.rooms
    assert 'p1' not in channel._connections


def test_stop_forgets_connections(channel):
    _fill(channel)
    channel.stop()
    assert channel.room_info('ROOM01') == {'client_count': 0, 'has_host': False}
