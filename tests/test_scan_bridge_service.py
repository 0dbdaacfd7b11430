from __future__ import annotations

import asyncio
import json
import queue
import unittest
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from partsledger.errors import InvalidToken, NotFound, SessionExpired
from partsledger.routers.scan_bridge import event_stream
from partsledger.services.scan_bridge_service import (
    END_OF_STREAM,
    ScanBridgeManager,
    SessionState,
    format_sse,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def drain(q: queue.Queue) -> list:
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


class ScanBridgeManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.manager = ScanBridgeManager(ttl=timedelta(minutes=30), clock=self.clock)
        self.ticket = self.manager.create_session(base_url='https://parts.example.test/')
        query = parse_qs(urlparse(self.ticket.mobile_url).query)
        self.write_token = query['writeToken'][0]

    def test_ticket_points_phone_at_mobile_page(self) -> None:
        url = urlparse(self.ticket.mobile_url)
        self.assertEqual((url.scheme, url.netloc, url.path), ('https', 'parts.example.test', '/api/scan-bridge/mobile'))
        self.assertEqual(parse_qs(url.query)['session'], [self.ticket.session_id])
        self.assertNotEqual(self.write_token, self.ticket.read_token)
        self.assertEqual(self.ticket.expires_at, self.clock.now + timedelta(minutes=30))
        self.assertEqual(self.manager.get_state(self.ticket.session_id), SessionState.CREATED)

    def test_ready_then_scans_in_order(self) -> None:
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        self.assertEqual(self.manager.get_state(self.ticket.session_id), SessionState.CONNECTED)

        first = self.manager.post_scan(self.ticket.session_id, self.write_token, '  0012345678905 ')
        second = self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')
        self.assertEqual(self.manager.get_state(self.ticket.session_id), SessionState.ACTIVE)

        frames = drain(q)
        self.assertEqual([frame.event for frame in frames], ['ready', 'scan', 'scan'])
        self.assertEqual(frames[0].data, {'ok': True, 'sessionId': self.ticket.session_id})
        self.assertEqual(frames[1], first)
        self.assertEqual(first.data['barcode'], '0012345678905')
        self.assertEqual([first.data['sequence'], second.data['sequence']], [1, 2])
        self.assertEqual(first.data['timestamp'], '2026-03-02T09:30:00.000Z')

    def test_scan_without_subscriber_is_dropped(self) -> None:
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'LOST-1')
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        self.assertEqual([frame.event for frame in drain(q)], ['ready'])

    def test_scan_validation(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.post_scan(self.ticket.session_id, self.write_token, '   ')
        with self.assertRaises(ValueError):
            self.manager.post_scan(self.ticket.session_id, self.write_token, 'X' * 257)
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'X' * 256)

    def test_tokens_are_not_interchangeable(self) -> None:
        with self.assertRaises(InvalidToken):
            self.manager.subscribe(self.ticket.session_id, self.write_token)
        with self.assertRaises(InvalidToken):
            self.manager.post_scan(self.ticket.session_id, self.ticket.read_token, 'ABC-1')
        with self.assertRaises(InvalidToken):
            self.manager.close(self.ticket.session_id, 'nope')
        with self.assertRaises(NotFound):
            self.manager.subscribe('missing', self.ticket.read_token)
        with self.assertRaises(NotFound):
            self.manager.post_scan('missing', self.write_token, 'ABC-1')

    def test_expiry_closes_the_stream(self) -> None:
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        drain(q)
        self.clock.advance(minutes=30)

        with self.assertRaises(SessionExpired):
            self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')
        frames = drain(q)
        self.assertEqual(frames[0].event, 'closed')
        self.assertEqual(frames[0].data, {'reason': 'expired'})
        self.assertIs(frames[1], END_OF_STREAM)
        self.assertFalse(self.manager.is_open(self.ticket.session_id))
        with self.assertRaises(SessionExpired):
            self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)

    def test_close_is_idempotent_and_accepts_either_token(self) -> None:
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        drain(q)
        self.manager.close(self.ticket.session_id, self.write_token)
        self.manager.close(self.ticket.session_id, self.ticket.read_token)

        frames = drain(q)
        self.assertEqual([getattr(frame, 'event', None) for frame in frames], ['closed', None])
        self.assertEqual(frames[0].data, {'reason': 'closed'})
        with self.assertRaises(SessionExpired):
            self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')
        self.assertEqual(drain(q), [])

    def test_new_subscriber_replaces_old(self) -> None:
        old = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        new = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')

        self.assertEqual([getattr(frame, 'event', None) for frame in drain(old)], ['ready', None])
        self.assertEqual([frame.event for frame in drain(new)], ['ready', 'scan'])

        self.manager.unsubscribe(self.ticket.session_id, old)
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-2')
        self.assertEqual([frame.data['sequence'] for frame in drain(new)], [2])

    def test_closed_sessions_are_purged_after_a_grace_period(self) -> None:
        self.clock.advance(minutes=31)
        self.manager.create_session(base_url='https://parts.example.test')
        with self.assertRaises(SessionExpired):
            self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)

        self.clock.advance(minutes=30)
        self.manager.create_session(base_url='https://parts.example.test')
        with self.assertRaises(NotFound):
            self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)


class SseFormatTests(unittest.TestCase):
    def test_named_event(self) -> None:
        self.assertEqual(format_sse('{"a": 1}', event='scan'), 'event: scan\ndata: {"a": 1}\n\n')

    def test_multiline_data_and_id(self) -> None:
        self.assertEqual(format_sse('one\ntwo', event_id='7'), 'id: 7\ndata: one\ndata: two\n\n')


class EventStreamTests(unittest.TestCase):
    def setUp(self) -> None:
        self.manager = ScanBridgeManager(ttl=timedelta(minutes=30))
        self.ticket = self.manager.create_session(base_url='http://testserver')
        self.write_token = parse_qs(urlparse(self.ticket.mobile_url).query)['writeToken'][0]

    def _collect(self, q: queue.Queue, *, disconnect_after: int | None = None, keepalive: float = 0.01) -> list[str]:
        calls = {'n': 0}

        async def is_disconnected() -> bool:
            calls['n'] += 1
            return disconnect_after is not None and calls['n'] > disconnect_after

        async def run() -> list[str]:
            return [frame async for frame in event_stream(self.manager, self.ticket.session_id, q, is_disconnected, keepalive)]

        return asyncio.run(run())

    def test_stream_ends_after_close(self) -> None:
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')
        self.manager.close(self.ticket.session_id, self.ticket.read_token)

        frames = self._collect(q)
        self.assertEqual(len(frames), 3)
        self.assertTrue(frames[0].startswith('event: ready\n'))
        scan = json.loads(frames[1].split('data: ', 1)[1])
        self.assertEqual((scan['barcode'], scan['sequence']), ('ABC-1', 1))
        self.assertEqual(frames[2], 'event: closed\ndata: {"reason": "closed"}\n\n')

    def test_idle_stream_sends_ping_until_client_leaves(self) -> None:
        q = self.manager.subscribe(self.ticket.session_id, self.ticket.read_token)
        frames = self._collect(q, disconnect_after=2)
        self.assertEqual(len(frames), 2)
        self.assertTrue(frames[0].startswith('event: ready\n'))
        self.assertTrue(frames[1].startswith('event: ping\ndata: {"t": '))

        # The departed stream no longer receives scans.
        self.manager.post_scan(self.ticket.session_id, self.write_token, 'ABC-1')
        self.assertEqual(drain(q), [])


if __name__ == '__main__':
    unittest.main()
