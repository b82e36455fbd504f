"""Client for the upstream SMS-activation API (``handler_api.php`` protocol).

The upstream speaks plain text. Each operation has one parse function that
turns the body (plus side-channel headers) into a tagged result, so nothing
outside this module looks at the wire format:

    reserve  -> ReserveSuccess | ReserveFailure | ReserveUnknown
    status   -> StatusCode | StatusWaiting | StatusCancelled | StatusNoActivation | StatusUnknown
    balance  -> BalanceOk | BalanceFailure | BalanceUnknown
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

import httpx

from otpdesk.config import settings
from otpdesk.errors import ConfigurationError, UnknownUpstreamError

logger = logging.getLogger(__name__)


class ReserveFailureReason(str, Enum):
    NO_NUMBERS = 'NO_NUMBERS'
    NO_MONEY = 'NO_MONEY'
    MAX_PRICE_EXCEEDED = 'MAX_PRICE_EXCEEDED'
    TOO_MANY_ACTIVE_RENTALS = 'TOO_MANY_ACTIVE_RENTALS'
    BAD_SERVICE = 'BAD_SERVICE'
    BAD_KEY = 'BAD_KEY'


@dataclass(frozen=True)
class ReserveSuccess:
    rental_id: str
    phone_number: str
    price: float | None = None


@dataclass(frozen=True)
class ReserveFailure:
    reason: ReserveFailureReason


@dataclass(frozen=True)
class ReserveUnknown:
    raw: str


@dataclass(frozen=True)
class StatusCode:
    code: str
    text: str = ''


@dataclass(frozen=True)
class StatusWaiting:
    pass


@dataclass(frozen=True)
class StatusCancelled:
    pass


@dataclass(frozen=True)
class StatusNoActivation:
    pass


@dataclass(frozen=True)
class StatusUnknown:
    raw: str


@dataclass(frozen=True)
class BalanceOk:
    balance: Decimal


@dataclass(frozen=True)
class BalanceFailure:
    reason: str


@dataclass(frozen=True)
class BalanceUnknown:
    raw: str


ReserveResult = ReserveSuccess | ReserveFailure | ReserveUnknown
StatusResult = StatusCode | StatusWaiting | StatusCancelled | StatusNoActivation | StatusUnknown
BalanceResult = BalanceOk | BalanceFailure | BalanceUnknown


def parse_reserve_response(body: str, price_header: str | None = None) -> ReserveResult:
    """Parse `ACCESS_NUMBER:<id>:<phone>` or a failure token."""
    body = body.strip()
    if body.startswith('ACCESS_NUMBER:'):
        parts = body.split(':')
        if len(parts) != 3 or not parts[1] or not parts[2]:
            return ReserveUnknown(raw=body)
        price = None
        if price_header:
            try:
                price = float(price_header)
            except ValueError:
                logger.warning(f'Ignoring unparseable X-Price header: {price_header!r}')
        return ReserveSuccess(rental_id=parts[1], phone_number=parts[2], price=price)

    try:
        return ReserveFailure(reason=ReserveFailureReason(body))
    except ValueError:
        return ReserveUnknown(raw=body)


def parse_status_response(body: str, text_header: str | None = None) -> StatusResult:
    """Parse `STATUS_OK:<code>`, `STATUS_WAIT_CODE`, `STATUS_CANCEL` or `NO_ACTIVATION`."""
    body = body.strip()
    if body.startswith('STATUS_OK:'):
        code = body.split(':', 1)[1]
        if not code:
            return StatusUnknown(raw=body)
        return StatusCode(code=code, text=text_header or '')
    if body == 'STATUS_WAIT_CODE':
        return StatusWaiting()
    if body == 'STATUS_CANCEL':
        return StatusCancelled()
    if body == 'NO_ACTIVATION':
        return StatusNoActivation()
    return StatusUnknown(raw=body)


def parse_balance_response(body: str) -> BalanceResult:
    """Parse `ACCESS_BALANCE:<decimal>` or `BAD_KEY`."""
    body = body.strip()
    if body.startswith('ACCESS_BALANCE:'):
        try:
            return BalanceOk(balance=Decimal(body.split(':', 1)[1]))
        except InvalidOperation:
            return BalanceUnknown(raw=body)
    if body == 'BAD_KEY':
        return BalanceFailure(reason=body)
    return BalanceUnknown(raw=body)


class ProviderGateway:
    """Thin async client for the upstream provider.

    Transport problems (timeouts, connection errors, 5xx) never look like a
    success or a mapped failure; they raise UnknownUpstreamError.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def reserve_number(self, service: str, max_price: Decimal) -> ReserveResult:
        response = await self._call('getNumber', service=service, max_price=f'{max_price:.2f}')
        return parse_reserve_response(response.text, response.headers.get('X-Price'))

    async def get_status(self, rental_id: str) -> StatusResult:
        response = await self._call('getStatus', id=rental_id, text='1')
        return parse_status_response(response.text, response.headers.get('X-Text'))

    async def get_balance(self) -> BalanceResult:
        response = await self._call('getBalance')
        return parse_balance_response(response.text)

    async def _call(self, action: str, **params: str) -> httpx.Response:
        if not self.api_key:
            raise ConfigurationError('Provider API key not configured')

        logger.info(f'Provider call action={action} params={params}')
        query = {'api_key': self.api_key, 'action': action, **params}
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(self.api_url, params=query)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UnknownUpstreamError(f'Provider {action} timed out', raw=self._redact(e)) from e
        except httpx.HTTPError as e:
            raise UnknownUpstreamError(
                f'Provider {action} failed: {e.__class__.__name__}', raw=self._redact(e),
            ) from e

        logger.info(f'Provider response action={action}: {response.text[:200]!r}')
        return response

    def _redact(self, error: Exception) -> str:
        # httpx error messages can embed the request URL
        return str(error).replace(self.api_key, '***HIDDEN***')


def get_provider() -> ProviderGateway:
    """FastAPI dependency: gateway configured from settings."""
    return ProviderGateway(
        api_url=settings.provider_api_url,
        api_key=settings.provider_api_key,
        timeout=settings.provider_timeout_seconds,
    )
