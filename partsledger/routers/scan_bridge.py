from __future__ import annotations

import asyncio
import queue
from collections.abc import AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse
from fastapi.templating import Jinja2Templates

from partsledger.auth import WORK_ORDER_ROLES, Principal, require_role
from partsledger.config import settings
from partsledger.dependencies import get_public_base_url, get_scan_bridge, get_templates
from partsledger.schemas import ScanAccepted, ScanClose, ScanPost, ScanSessionOut
from partsledger.services.scan_bridge_service import END_OF_STREAM, ScanBridgeManager, ping_event

router = APIRouter(prefix='/api/scan-bridge', tags=['scan-bridge'])


async def event_stream(
    manager: ScanBridgeManager,
    session_id: str,
    q: queue.Queue,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float,
) -> AsyncGenerator[str, None]:
    try:
        while True:
            if await is_disconnected():
                break
            try:
                item = await asyncio.to_thread(q.get, True, keepalive_seconds)
            except queue.Empty:
                # Expiry is only noticed on access; a closed session leaves its final frames in the queue.
                if manager.is_open(session_id):
                    yield ping_event().to_sse()
                continue
            if item is END_OF_STREAM:
                break
            yield item.to_sse()
    finally:
        manager.unsubscribe(session_id, q)


@router.post('/session', response_model=ScanSessionOut, status_code=status.HTTP_201_CREATED)
def create_session(
    request: Request,
    manager: ScanBridgeManager = Depends(get_scan_bridge),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return manager.create_session(base_url=get_public_base_url(request))


@router.get('/session/{session_id}/events')
async def session_events(
    request: Request,
    session_id: str,
    read_token: str = Query(default='', alias='readToken'),
    manager: ScanBridgeManager = Depends(get_scan_bridge),
) -> StreamingResponse:
    q = manager.subscribe(session_id, read_token)
    return StreamingResponse(
        event_stream(manager, session_id, q, request.is_disconnected, settings.scan_bridge_keepalive_seconds),
        media_type='text/event-stream',
        headers={
            'Cache-Control': 'no-cache, no-transform',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        },
    )


@router.post('/session/{session_id}/scan', response_model=ScanAccepted, status_code=status.HTTP_201_CREATED)
def post_scan(
    session_id: str,
    payload: ScanPost,
    manager: ScanBridgeManager = Depends(get_scan_bridge),
):
    event = manager.post_scan(session_id, payload.write_token, payload.barcode)
    return ScanAccepted(ok=True, sequence=event.data['sequence'])


@router.post('/session/{session_id}/close', status_code=status.HTTP_204_NO_CONTENT)
def close_session(
    session_id: str,
    payload: ScanClose,
    manager: ScanBridgeManager = Depends(get_scan_bridge),
) -> None:
    manager.close(session_id, payload.token)


@router.get('/mobile', response_class=HTMLResponse)
def mobile_page(
    request: Request,
    session_id: str = Query(default='', alias='session'),
    write_token: str = Query(default='', alias='writeToken'),
    templates: Jinja2Templates = Depends(get_templates),
):
    if not session_id or not write_token:
        return PlainTextResponse('Missing session or token', status_code=status.HTTP_400_BAD_REQUEST)
    return templates.TemplateResponse(
        request,
        'scan_bridge_mobile.html',
        {'session_id': session_id, 'write_token': write_token},
    )
