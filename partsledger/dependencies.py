from fastapi import Request
from fastapi.templating import Jinja2Templates

from partsledger.config import settings
from partsledger.services.scan_bridge_service import ScanBridgeManager


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_scan_bridge(request: Request) -> ScanBridgeManager:
    return request.app.state.scan_bridge


def get_public_base_url(request: Request) -> str:
    if settings.scan_bridge_public_base_url:
        return settings.scan_bridge_public_base_url.rstrip('/')
    forwarded_proto = request.headers.get('x-forwarded-proto')
    forwarded_host = request.headers.get('x-forwarded-host')
    if forwarded_proto and forwarded_host:
        return f'{forwarded_proto.split(",")[0].strip()}://{forwarded_host.split(",")[0].strip()}'
    return str(request.base_url).rstrip('/')
