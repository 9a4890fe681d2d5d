"""Request context middleware: request id plus the room a request targets."""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"

_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9._\-]{1,64}")
_ROOM_PATH = re.compile(r"^/(?:api/v1|ws)/rooms/(\d{5})(?:/|$)")


def resolve_request_id(header: str | None) -> str:
    """Keep a well-formed incoming id, otherwise mint a new one."""
    if header and _VALID_REQUEST_ID.fullmatch(header):
        return header
    return uuid.uuid4().hex


def room_code_from_path(path: str) -> str | None:
    match = _ROOM_PATH.match(path)
    return match.group(1) if match else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind request id, method and room code into the structlog context."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        context: dict[str, str] = {"request_id": request_id, "method": request.method}
        room_code = room_code_from_path(request.url.path)
        if room_code is not None:
            context["room_code"] = room_code

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
