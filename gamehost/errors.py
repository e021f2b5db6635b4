"""HTTP error values and helpers for request handlers."""

from __future__ import annotations

import logging
from http import HTTPStatus

from werkzeug.exceptions import HTTPException as WerkzeugHTTPException
from werkzeug.wrappers import Request, Response

logger = logging.getLogger(__name__)

_TEXT_PLAIN = "text/plain; charset=utf-8"


class HTTPError(Exception):
    """An error carrying an HTTP status, a client-facing message and an optional cause."""

    def __init__(self, status: int, message: str, err: BaseException | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.err = err

    def __str__(self) -> str:
        if self.err is not None:
            return f"{self.message}: {self.err}"
        return self.message

    def __repr__(self) -> str:
        return f"HTTPError(status={self.status!r}, message={self.message!r}, err={self.err!r})"


ERR_NOT_FOUND = HTTPError(HTTPStatus.NOT_FOUND, "Resource not found")
ERR_BAD_REQUEST = HTTPError(HTTPStatus.BAD_REQUEST, "Bad request")
ERR_INTERNAL_SERVER = HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error")
ERR_METHOD_NOT_ALLOWED = HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")


def error_response(err: BaseException | None, context: str) -> Response | None:
    """Log ``err`` and build the plain-text response for it; ``None`` when there is no error."""
    if err is None:
        return None
    if isinstance(err, HTTPError):
        http_err = err
    else:
        http_err = HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error", err)

    logger.error(
        "%s (context=%s, status=%d, error=%s)",
        http_err.message,
        context,
        int(http_err.status),
        http_err.err,
    )
    response = Response(
        http_err.message + "\n",
        status=int(http_err.status),
        content_type=_TEXT_PLAIN,
    )
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def wrap_error(err: BaseException | None, status: int, message: str) -> HTTPError | None:
    """Wrap ``err`` with an HTTP status and message; ``None`` stays ``None``."""
    if err is None:
        return None
    return HTTPError(status, message, err)


def bad_request(fmt: str, *args: object) -> HTTPError:
    """A 400 error with a %-formatted message."""
    return HTTPError(HTTPStatus.BAD_REQUEST, fmt % args if args else fmt)


def not_found(resource: str) -> HTTPError:
    """A 404 error naming the missing resource."""
    return HTTPError(HTTPStatus.NOT_FOUND, f"{resource} not found")


def internal_error(err: BaseException | None, message: str) -> HTTPError:
    """A 500 error wrapping ``err``."""
    return HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, message, err)


def require_method(request: Request, method: str) -> None:
    """Raise a 405 error unless the request uses ``method``."""
    if request.method != method:
        raise HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, f"Method {request.method} not allowed")


def parse_form(request: Request):
    """Return the request's parsed form data, raising a 400 error if it cannot be parsed."""
    try:
        return request.form
    except (WerkzeugHTTPException, ValueError) as exc:
        raise HTTPError(HTTPStatus.BAD_REQUEST, "Failed to parse form data", exc) from exc


def log_and_respond(status: int, message: str, *args: object) -> Response:
    """Log an informational message and return it as the response body."""
    msg = message % args if args else message
    logger.info("%s (status=%d)", msg, int(status))
    return Response(msg, status=int(status), content_type=_TEXT_PLAIN)