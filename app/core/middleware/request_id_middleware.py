import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable, Awaitable

from app.core.logging_config import reset_request_id, set_request_id

REQUEST_ID_TOKEN_HEADER = "x-request-id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate x-request-id into request.state, the logging context and the response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_TOKEN_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        token = set_request_id(request_id)
        try:
            response: Response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers[REQUEST_ID_TOKEN_HEADER] = request_id
        return response
