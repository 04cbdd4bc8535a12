"""
Tests for the payment coordinator: initiation and callback handling.
"""
import httpx
import pytest

from stkpay.exceptions import (
    AmountExceedsLimitError,
    CredentialsUnavailableError,
    GatewaySubmissionError,
    InvalidAmountError,
    InvalidCallbackError,
    InvalidPhoneError,
    UpstreamAuthFailureError,
)
from stkpay.mocks.daraja_gateway import build_callback
from stkpay.models.transactions import ReconcileResult, TransactionState
from stkpay.services.daraja_client import DarajaClient
from stkpay.services.payment_service import PaymentService
from stkpay.services.token_cache import TokenCache


@pytest.fixture
def payments(test_settings, daraja_client, token_cache, builder, ledger) -> PaymentService:
    return PaymentService(test_settings, daraja_client, token_cache, builder, ledger)


class TestInitiate:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_records_pending_under_checkout_id(self, payments: PaymentService, simulator, ledger) -> None:
        result = await payments.initiate("0712345678", 20, {"event": "derby-day"})

        assert result.correlation_id.startswith("ws_CO_SIM")
        assert result.gateway_response["ResponseCode"] == "0"
        record = ledger.find_by_correlation_id(result.correlation_id)
        assert record.state is TransactionState.PENDING
        assert record.phone == "254712345678"
        assert record.amount == 20
        assert record.metadata == {"event": "derby-day"}
        assert record.merchant_request_id == result.gateway_response["MerchantRequestID"]

        sent = simulator.stk_requests[0]
        assert sent["PartyA"] == "254712345678"
        assert sent["PhoneNumber"] == "254712345678"
        assert sent["Amount"] == 20

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reuses_token_across_payments(self, payments: PaymentService, simulator) -> None:
        await payments.initiate("0712345678", 20)
        await payments.initiate("0798765432", 10)

        assert simulator.token_requests == 1
        assert len(simulator.stk_requests) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone, amount, error", [
        ("07123", 20, InvalidPhoneError),
        (None, 20, InvalidPhoneError),
        ("0712345678", 31, AmountExceedsLimitError),
        ("0712345678", "abc", InvalidAmountError),
        ("0712345678", None, InvalidAmountError),
    ])
    async def test_validation_runs_before_any_outbound_call(
        self, payments: PaymentService, simulator, ledger, phone, amount, error
    ) -> None:
        with pytest.raises(error):
            await payments.initiate(phone, amount)

        assert simulator.token_requests == 0
        assert simulator.stk_requests == []
        assert len(ledger) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_credentials(self, test_settings, daraja_client, builder, ledger, simulator) -> None:
        cache = TokenCache(daraja_client, None, None)
        payments = PaymentService(test_settings, daraja_client, cache, builder, ledger)

        with pytest.raises(CredentialsUnavailableError):
            await payments.initiate("0712345678", 20)
        assert simulator.stk_requests == []
        assert len(ledger) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auth_failure_leaves_no_trace(self, payments: PaymentService, simulator, ledger) -> None:
        simulator.fail_auth = True

        with pytest.raises(UpstreamAuthFailureError):
            await payments.initiate("0712345678", 20)
        assert simulator.stk_requests == []
        assert len(ledger) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_error_status_leaves_no_trace(self, payments: PaymentService, simulator, ledger) -> None:
        simulator.fail_stk_status = 500

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await payments.initiate("0712345678", 20)
        assert exc_info.value.status_code == 502
        assert exc_info.value.details["upstream_status"] == 500
        assert len(ledger) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_response_code(self, payments: PaymentService, simulator, ledger) -> None:
        simulator.stk_response_code = "1"

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await payments.initiate("0712345678", 20)
        assert exc_info.value.details["gateway_response"]["ResponseCode"] == "1"
        assert len(ledger) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_revoked_token_is_invalidated(self, payments: PaymentService, simulator, token_cache) -> None:
        await payments.initiate("0712345678", 20)
        simulator.issued_tokens.clear()

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await payments.initiate("0712345678", 20)
        assert exc_info.value.details["upstream_status"] == 401
        assert token_cache.current is None

        await payments.initiate("0712345678", 20)
        assert simulator.token_requests == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_submission_timeout(self, test_settings, token_cache, builder, ledger, simulator) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/mpesa/stkpush"):
                raise httpx.ConnectTimeout("timed out", request=request)
            return simulator(request)

        client = DarajaClient(
            test_settings.daraja_base_url,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        cache = TokenCache(client, "demo_key", "demo_secret")
        payments = PaymentService(test_settings, client, cache, builder, ledger)

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await payments.initiate("0712345678", 20)
        assert exc_info.value.status_code == 504
        assert len(ledger) == 0
        await client.aclose()


class TestCallback:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_callback(self, payments: PaymentService, ledger) -> None:
        initiated = await payments.initiate("0712345678", 20)
        payload = build_callback(initiated.correlation_id, receipt="ABC123", amount=20, phone="254712345678")

        result, record = await payments.handle_callback(payload)

        assert result is ReconcileResult.APPLIED
        assert record.state is TransactionState.SUCCEEDED
        assert record.receipt_reference == "ABC123"
        assert record.paid_amount == 20
        assert record.callback_payload == payload

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_callback(self, payments: PaymentService) -> None:
        initiated = await payments.initiate("0712345678", 20)

        result, record = await payments.handle_callback(
            build_callback(initiated.correlation_id, result_code=1032)
        )

        assert result is ReconcileResult.APPLIED
        assert record.state is TransactionState.FAILED
        assert record.result_code == 1032
        assert record.receipt_reference is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retried_callback_is_duplicate(self, payments: PaymentService) -> None:
        initiated = await payments.initiate("0712345678", 20)
        payload = build_callback(initiated.correlation_id, receipt="ABC123", amount=20)

        _, first = await payments.handle_callback(payload)
        result, second = await payments.handle_callback(payload)

        assert result is ReconcileResult.DUPLICATE
        assert second == first

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_orphan_takes_phone_from_metadata(self, payments: PaymentService, ledger) -> None:
        result, record = await payments.handle_callback(
            build_callback("ZZZ999", receipt="QWE789", amount=20, phone="254712345678")
        )

        assert result is ReconcileResult.ORPHANED
        assert record.phone == "254712345678"
        assert ledger.find_by_phone("254712345678") == [record]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unusable_callback_phone_is_dropped(self, payments: PaymentService) -> None:
        _, record = await payments.handle_callback(
            build_callback("ZZZ999", receipt="QWE789", amount=20, phone="12345")
        )
        assert record.phone is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reconcile_parsed_callback(self, payments: PaymentService) -> None:
        initiated = await payments.initiate("0712345678", 20)
        payload = build_callback(initiated.correlation_id, receipt="ABC123", amount=20)
        callback = PaymentService.parse_callback(payload)

        result, record = await payments.reconcile_callback(callback, payload)

        assert result is ReconcileResult.APPLIED
        assert record.receipt_reference == "ABC123"
        assert record.callback_payload == payload
        assert record.status_query_response is None

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [
        None,
        [],
        {},
        {"Body": {}},
        {"Body": {"stkCallback": {"ResultCode": 0}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": "", "ResultCode": 0}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": "done"}}},
    ])
    def test_parse_rejects_invalid_structure(self, payload) -> None:
        with pytest.raises(InvalidCallbackError) as exc_info:
            PaymentService.parse_callback(payload)
        assert exc_info.value.status_code == 400

    @pytest.mark.unit
    def test_parse_accepts_string_result_code(self) -> None:
        callback = PaymentService.parse_callback(
            {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": "1037"}}}
        )
        assert callback.result_code == 1037
