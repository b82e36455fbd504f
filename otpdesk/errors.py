"""Error taxonomy shared by the ledger, rental and admin services.

Every error carries a stable machine-readable ``kind`` plus a human message,
and is rendered by ``service_error_handler`` as::

    {"error": {"kind": "...", "message": "...", "context": {...}}}
"""
import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for every error surfaced to API callers."""
    kind = 'internal_error'
    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'message': self.message, 'context': self.context}


class Unauthorized(ServiceError):
    kind = 'unauthorized'
    status_code = 401


class Forbidden(ServiceError):
    kind = 'forbidden'
    status_code = 403


class NotFound(ServiceError):
    kind = 'not_found'
    status_code = 404


class BadRequest(ServiceError):
    kind = 'bad_request'
    status_code = 400


class InsufficientBalance(ServiceError):
    """Balance below the requested price, detected before any upstream call."""
    kind = 'insufficient_balance'
    status_code = 400

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        self.shortfall = required - balance
        super().__init__(
            f'Need {required} credits but only have {balance}',
            {'balance': balance, 'required': required, 'shortfall': self.shortfall},
        )


class InsufficientBalanceAtCommit(InsufficientBalance):
    """Balance dropped between the pre-check and the debit."""
    kind = 'insufficient_balance_at_commit'
    status_code = 409


class ServiceUnavailable(ServiceError):
    kind = 'service_unavailable'
    status_code = 503


class RateLimited(ServiceError):
    kind = 'rate_limited'
    status_code = 429


class ConfigurationError(ServiceError):
    kind = 'configuration_error'
    status_code = 500


class UnknownUpstreamError(ServiceError):
    """Unparseable or unmapped provider response. ``raw`` keeps the payload."""
    kind = 'unknown_upstream_error'
    status_code = 502

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(message, {'raw': raw} if raw is not None else None)


class IllegalTransition(ServiceError):
    kind = 'illegal_transition'
    status_code = 409


# Operator-facing kinds, not resolvable by the end user
_OPERATOR_ERRORS = (ConfigurationError, UnknownUpstreamError)


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError as a JSON response with its mapped status."""
    if isinstance(exc, _OPERATOR_ERRORS):
        logger.error(
            f'{exc.kind} on {request.method} {request.url.path}: {exc.message}',
            extra={'context': exc.context},
        )
    else:
        logger.info(f'{exc.kind} on {request.method} {request.url.path}: {exc.message}')
    return JSONResponse(status_code=exc.status_code, content={'error': exc.to_dict()})
