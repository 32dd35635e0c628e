import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from nexusdash.core.observability import request_id_var

REQUEST_ID_HEADER = "x-request-id"
REQUEST_ID_MAX_LENGTH = 128
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def is_valid_request_id(value: str) -> bool:
    return (
        0 < len(value) <= REQUEST_ID_MAX_LENGTH
        and REQUEST_ID_PATTERN.match(value) is not None
    )


def resolve_request_id(incoming: str | None) -> str:
    candidate = (incoming or "").strip()
    if candidate and is_valid_request_id(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate or mint a correlation id for every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
