from decimal import Decimal

import httpx
import pytest

from otpdesk.errors import ConfigurationError, UnknownUpstreamError
from otpdesk.services.provider_gateway import (
    ProviderGateway, ReserveSuccess, ReserveFailure, ReserveFailureReason, ReserveUnknown,
    StatusCode, StatusWaiting, StatusCancelled, StatusNoActivation, StatusUnknown,
    BalanceOk, BalanceFailure, BalanceUnknown,
    parse_reserve_response, parse_status_response, parse_balance_response,
)

API_URL = 'https://provider.test/stubs/handler_api.php'


def make_gateway(handler, api_key='secret-key'):
    return ProviderGateway(API_URL, api_key, timeout=1.0, transport=httpx.MockTransport(handler))


class TestParsing:
    def test_reserve_success(self):
        result = parse_reserve_response('ACCESS_NUMBER:RID1:+8801234567', '0.35')
        assert result == ReserveSuccess(rental_id='RID1', phone_number='+8801234567', price=0.35)

    def test_reserve_success_without_price_header(self):
        result = parse_reserve_response('ACCESS_NUMBER:RID1:+8801234567\n')
        assert result == ReserveSuccess(rental_id='RID1', phone_number='+8801234567', price=None)

    @pytest.mark.parametrize('token', [r.value for r in ReserveFailureReason])
    def test_reserve_failure_tokens(self, token):
        assert parse_reserve_response(token) == ReserveFailure(reason=ReserveFailureReason(token))

    def test_reserve_malformed_success_is_unknown(self):
        assert parse_reserve_response('ACCESS_NUMBER:RID1') == ReserveUnknown(raw='ACCESS_NUMBER:RID1')

    def test_reserve_unrecognized_text_keeps_payload(self):
        assert parse_reserve_response('BANNED:12') == ReserveUnknown(raw='BANNED:12')

    def test_status_variants(self):
        assert parse_status_response('STATUS_OK:482913', 'Your code is 482913') == StatusCode(
            code='482913', text='Your code is 482913',
        )
        assert parse_status_response('STATUS_WAIT_CODE') == StatusWaiting()
        assert parse_status_response('STATUS_CANCEL') == StatusCancelled()
        assert parse_status_response('NO_ACTIVATION') == StatusNoActivation()
        assert parse_status_response('STATUS_OK:') == StatusUnknown(raw='STATUS_OK:')
        assert parse_status_response('WHATEVER') == StatusUnknown(raw='WHATEVER')

    def test_balance_variants(self):
        assert parse_balance_response('ACCESS_BALANCE:50.30') == BalanceOk(balance=Decimal('50.30'))
        assert parse_balance_response('BAD_KEY') == BalanceFailure(reason='BAD_KEY')
        assert parse_balance_response('ACCESS_BALANCE:abc') == BalanceUnknown(raw='ACCESS_BALANCE:abc')


class TestGateway:
    async def test_reserve_sends_service_and_max_price(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, text='ACCESS_NUMBER:RID1:+8801234567', headers={'X-Price': '0.5'})

        result = await make_gateway(handler).reserve_number('wa', Decimal('3'))

        assert result == ReserveSuccess('RID1', '+8801234567', 0.5)
        assert seen['action'] == 'getNumber'
        assert seen['service'] == 'wa'
        assert seen['max_price'] == '3.00'
        assert seen['api_key'] == 'secret-key'

    async def test_status_reads_full_text_header(self):
        def handler(request):
            assert request.url.params['action'] == 'getStatus'
            assert request.url.params['id'] == 'RID1'
            return httpx.Response(200, text='STATUS_OK:482913', headers={'X-Text': 'Code 482913'})

        result = await make_gateway(handler).get_status('RID1')
        assert result == StatusCode('482913', 'Code 482913')

    async def test_balance(self):
        gateway = make_gateway(lambda request: httpx.Response(200, text='ACCESS_BALANCE:12.5'))
        assert await gateway.get_balance() == BalanceOk(Decimal('12.5'))

    async def test_missing_api_key_is_configuration_error(self):
        def handler(request):
            raise AssertionError('must not call upstream without a key')

        with pytest.raises(ConfigurationError):
            await make_gateway(handler, api_key='').reserve_number('wa', Decimal('1'))

    async def test_timeout_is_unknown_upstream_error(self):
        def handler(request):
            raise httpx.ReadTimeout('slow', request=request)

        with pytest.raises(UnknownUpstreamError):
            await make_gateway(handler).reserve_number('wa', Decimal('1'))

    async def test_http_error_does_not_leak_key(self):
        gateway = make_gateway(lambda request: httpx.Response(500, text='oops'))

        with pytest.raises(UnknownUpstreamError) as exc_info:
            await gateway.get_status('RID1')
        assert 'secret-key' not in (exc_info.value.raw or '')
