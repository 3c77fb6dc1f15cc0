"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import current_request_id, error_response, ErrorCodes
from utils.user_context import reset_current_user_id, set_current_user_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, exposed on request.state, the envelope and X-Request-ID.

    An ID forwarded by the gateway is kept; a missing or malformed one
    (over MAX_LENGTH, non-printable) is replaced with a fresh UUID.
    """

    HEADER = "X-Request-ID"
    MAX_LENGTH = 128

    def _request_id(self, request: Request) -> str:
        forwarded = request.headers.get(self.HEADER, "")
        if forwarded and len(forwarded) <= self.MAX_LENGTH and forwarded.isprintable():
            return forwarded
        return str(uuid4())

    async def dispatch(self, request: Request, call_next):
        request_id = self._request_id(request)
        request.state.request_id = request_id
        token = current_request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            current_request_id.reset(token)
        response.headers[self.HEADER] = request_id
        return response


class UserContextMiddleware(BaseHTTPMiddleware):
    """Sets the acting user from the gateway's X-User-ID header.

    Authentication happens upstream; the gateway forwards the verified
    user ID. Requests without one (or with a malformed one) get a 401.
    The user context is always cleared when the request completes.
    """

    HEADER = "X-User-ID"
    PUBLIC_PATHS = ["/health", "/docs", "/openapi.json"]

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        raw_user_id = request.headers.get(self.HEADER)
        try:
            user_id = UUID(raw_user_id) if raw_user_id else None
        except ValueError:
            user_id = None

        if user_id is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        token = set_current_user_id(user_id)
        request.state.user_id = user_id

        try:
            return await call_next(request)
        finally:
            reset_current_user_id(token)
