from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates

from partsledger.auth import install_principal_middleware
from partsledger.exception_handlers import install_exception_handlers
from partsledger.logging_config import configure_logging
from partsledger.routers import (
    adjustments,
    barcodes,
    catalog,
    cycle_counts,
    inventory,
    receiving,
    scan_bridge,
    transfers,
    work_orders,
)
from partsledger.security.headers import install_security_headers
from partsledger.services.scan_bridge_service import scan_bridge as scan_bridge_manager

configure_logging()

app = FastAPI(title='Parts Ledger')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
app.state.scan_bridge = scan_bridge_manager

install_exception_handlers(app)
install_security_headers(app)
install_principal_middleware(app)

app.include_router(catalog.router)
app.include_router(inventory.router)
app.include_router(work_orders.router)
app.include_router(transfers.router)
app.include_router(receiving.router)
app.include_router(adjustments.router)
app.include_router(cycle_counts.router)
app.include_router(barcodes.router)
app.include_router(scan_bridge.router)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok'
