"""Error kinds raised by the session and subscription cores.

The cores never raise ``HTTPException`` themselves; ``main.py`` maps every
``ServiceError`` onto a JSON response using ``status_code``.
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class ServiceError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def headers(self) -> dict[str, str] | None:
        return None


class Unauthorized(ServiceError):
    status_code = 401
    default_detail = "Not authenticated"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class NotFound(ServiceError):
    status_code = 404
    default_detail = "Not found"


class Conflict(ServiceError):
    status_code = 409
    default_detail = "Conflict"


class BadRequest(ServiceError):
    status_code = 400
    default_detail = "Bad request"


class Internal(ServiceError):
    status_code = 500
    default_detail = "Internal server error"


def service_boundary(operation: str) -> Callable[[F], F]:
    """Wrap a manager method so only ``ServiceError`` kinds escape it.

    Anything else is logged with the operation name and call arguments, the
    manager's store session (``self.db``) is rolled back, and an opaque
    ``Internal`` is raised in its place.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except ServiceError:
                raise
            except Exception as exc:
                db = getattr(self, "db", None)
                if db is not None:
                    db.rollback()
                logger.exception(
                    "operation_failed",
                    operation=operation,
                    ids=[a for a in args if isinstance(a, int)],
                    **{k: v for k, v in kwargs.items() if k in _LOGGABLE_KWARGS},
                )
                raise Internal() from exc

        return wrapper  # type: ignore[return-value]

    return decorator


# Never log passwords or tokens.
_LOGGABLE_KWARGS = frozenset(
    {"principal_id", "product_id", "subscription_id", "email", "plan_type", "status"}
)
