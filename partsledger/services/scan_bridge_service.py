"""Short-lived pairing between a phone used as a barcode scanner and a desktop page.

The desktop creates a session and subscribes to its event stream with the
read token; the phone posts scans with the write token embedded in the
pairing URL. Sessions live in process memory only and expire lazily: every
access checks the TTL, there is no background sweeper. Delivery is
at-most-once, nothing is buffered for a subscriber that is not attached.
"""

from __future__ import annotations

import json
import logging
import queue
import secrets
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from urllib.parse import urlencode

from partsledger.config import settings
from partsledger.errors import InvalidToken, NotFound, SessionExpired

logger = logging.getLogger(__name__)

MAX_BARCODE_LENGTH = 256
SUBSCRIBER_QUEUE_SIZE = 100

# Pushed after the final event to end a subscriber's stream.
END_OF_STREAM = None


class SessionState(str, Enum):
    CREATED = 'CREATED'
    CONNECTED = 'CONNECTED'
    ACTIVE = 'ACTIVE'
    CLOSED = 'CLOSED'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass(frozen=True)
class ScanBridgeEvent:
    event: str
    data: dict

    def to_sse(self) -> str:
        return format_sse(json.dumps(self.data), event=self.event)


@dataclass(frozen=True)
class ScanBridgeTicket:
    session_id: str
    read_token: str
    mobile_url: str
    expires_at: datetime


@dataclass
class ScanBridgeSession:
    session_id: str
    read_token: str
    write_token: str
    created_at: datetime
    expires_at: datetime
    state: SessionState = SessionState.CREATED
    closed_reason: str | None = None
    sequence: int = 0
    subscriber: queue.Queue | None = field(default=None, repr=False)


def format_sse(data: str, event: str | None = None, event_id: str | None = None) -> str:
    lines = []
    if event_id:
        lines.append(f'id: {event_id}')
    if event:
        lines.append(f'event: {event}')
    for chunk in data.splitlines():
        lines.append(f'data: {chunk}')
    lines.append('')
    return '\n'.join(lines) + '\n'


def ping_event(now: datetime | None = None) -> ScanBridgeEvent:
    return ScanBridgeEvent('ping', {'t': _to_iso(now or _now())})


def _push(q: queue.Queue, item: ScanBridgeEvent | None) -> None:
    try:
        q.put_nowait(item)
    except queue.Full:
        # Slow reader: drop the oldest frame rather than block the poster.
        try:
            q.get_nowait()
            q.put_nowait(item)
        except queue.Empty:
            pass


class ScanBridgeManager:
    def __init__(self, *, ttl: timedelta | None = None, clock: Callable[[], datetime] = _now) -> None:
        self.ttl = ttl if ttl is not None else timedelta(minutes=settings.scan_bridge_ttl_minutes)
        self._clock = clock
        self._sessions: dict[str, ScanBridgeSession] = {}
        self._lock = threading.Lock()

    def create_session(self, *, base_url: str) -> ScanBridgeTicket:
        now = self._clock()
        session = ScanBridgeSession(
            session_id=str(uuid.uuid4()),
            read_token=secrets.token_urlsafe(24),
            write_token=secrets.token_urlsafe(24),
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._purge_tombstones(now)
            self._sessions[session.session_id] = session

        query = urlencode({'session': session.session_id, 'writeToken': session.write_token})
        mobile_url = f'{base_url.rstrip("/")}/api/scan-bridge/mobile?{query}'
        logger.info('scan-bridge session %s created, expires %s', session.session_id, _to_iso(session.expires_at))
        return ScanBridgeTicket(
            session_id=session.session_id,
            read_token=session.read_token,
            mobile_url=mobile_url,
            expires_at=session.expires_at,
        )

    def subscribe(self, session_id: str, read_token: str) -> queue.Queue:
        """Attach the desktop stream; ``ready`` is always the first frame."""
        q: queue.Queue = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            session = self._open_session(session_id, read_token, token_attr='read_token')
            if session.subscriber is not None:
                _push(session.subscriber, END_OF_STREAM)
                logger.info('scan-bridge session %s subscriber replaced', session_id)
            session.subscriber = q
            if session.state == SessionState.CREATED:
                session.state = SessionState.CONNECTED
            _push(q, ScanBridgeEvent('ready', {'ok': True, 'sessionId': session_id}))
        logger.info('scan-bridge session %s connected', session_id)
        return q

    def unsubscribe(self, session_id: str, q: queue.Queue) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.subscriber is q:
                session.subscriber = None

    def post_scan(self, session_id: str, write_token: str, barcode: str | None) -> ScanBridgeEvent:
        value = (barcode or '').strip()
        if not value:
            raise ValueError('barcode is required')
        if len(value) > MAX_BARCODE_LENGTH:
            raise ValueError(f'barcode cannot exceed {MAX_BARCODE_LENGTH} characters')

        with self._lock:
            session = self._open_session(session_id, write_token, token_attr='write_token')
            session.sequence += 1
            event = ScanBridgeEvent(
                'scan',
                {'barcode': value, 'timestamp': _to_iso(self._clock()), 'sequence': session.sequence},
            )
            session.state = SessionState.ACTIVE
            delivered = session.subscriber is not None
            if delivered:
                _push(session.subscriber, event)

        if not delivered:
            logger.info('scan-bridge session %s scan %s dropped, no subscriber', session_id, event.data['sequence'])
        return event

    def close(self, session_id: str, token: str) -> None:
        """Close a session; either of its tokens may do so. Closing twice is harmless."""
        with self._lock:
            session = self._get(session_id)
            if not (
                secrets.compare_digest(token or '', session.read_token)
                or secrets.compare_digest(token or '', session.write_token)
            ):
                raise InvalidToken('Invalid scan-bridge token')
            if session.state != SessionState.CLOSED:
                self._close(session, reason='closed')

    def is_open(self, session_id: str) -> bool:
        """Re-evaluate expiry for a live stream; False once the session is closed."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self._expire_if_due(session, self._clock())
            return session.state != SessionState.CLOSED

    def get_state(self, session_id: str) -> SessionState:
        with self._lock:
            session = self._get(session_id)
            self._expire_if_due(session, self._clock())
            return session.state

    def _get(self, session_id: str) -> ScanBridgeSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound('Scan-bridge session not found')
        return session

    def _open_session(self, session_id: str, token: str, *, token_attr: str) -> ScanBridgeSession:
        session = self._get(session_id)
        if not secrets.compare_digest(token or '', getattr(session, token_attr)):
            raise InvalidToken('Invalid scan-bridge token')
        self._expire_if_due(session, self._clock())
        if session.state == SessionState.CLOSED:
            raise SessionExpired(f'Scan-bridge session {session.closed_reason}')
        return session

    def _expire_if_due(self, session: ScanBridgeSession, now: datetime) -> None:
        if session.state != SessionState.CLOSED and now >= session.expires_at:
            self._close(session, reason='expired')

    def _close(self, session: ScanBridgeSession, *, reason: str) -> None:
        session.state = SessionState.CLOSED
        session.closed_reason = reason
        if session.subscriber is not None:
            _push(session.subscriber, ScanBridgeEvent('closed', {'reason': reason}))
            _push(session.subscriber, END_OF_STREAM)
            session.subscriber = None
        logger.info('scan-bridge session %s %s', session.session_id, reason)

    def _purge_tombstones(self, now: datetime) -> None:
        for session_id, session in list(self._sessions.items()):
            self._expire_if_due(session, now)
            if now >= session.expires_at + self.ttl:
                del self._sessions[session_id]


scan_bridge = ScanBridgeManager()
