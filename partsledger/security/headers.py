from fastapi import FastAPI, Request
from starlette.responses import Response

ROBOTS_HEADER = "noindex, nofollow, noarchive"

# The scan-bridge pairing URL carries a write token in its query string.
REFERRER_POLICY = "no-referrer"


def install_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Robots-Tag"] = ROBOTS_HEADER
        response.headers["Referrer-Policy"] = REFERRER_POLICY
        response.headers["X-Content-Type-Options"] = "nosniff"
        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response
