import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from partsledger.errors import InventoryError

logger = logging.getLogger(__name__)


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        logger.info('%s %s -> %s %s: %s', request.method, request.url.path, exc.status_code, exc.code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Services raise plain ValueError for malformed input.
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.info('%s %s -> 400: %s', request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={'error': 'BAD_REQUEST', 'detail': str(exc)})
