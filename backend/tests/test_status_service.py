"""
Unit tests for status projections.
"""
from datetime import timedelta

import pytest

from stkpay.exceptions import InvalidPhoneError, NoTransactionsError, TransactionNotFoundError
from stkpay.models.transactions import FailedOutcome, SucceededOutcome, TransactionState
from stkpay.services.ledger import TransactionLedger
from stkpay.services.status_service import StatusQueryService


@pytest.fixture
def status_service(ledger: TransactionLedger, clock) -> StatusQueryService:
    return StatusQueryService(ledger, clock=clock)


class TestStatusByCorrelationId:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pending(self, ledger: TransactionLedger, status_service: StatusQueryService) -> None:
        await ledger.create_pending("ws_CO_1", "254712345678", 20, {"event": "derby-day"})

        status = status_service.status_by_correlation_id("ws_CO_1")

        assert status.state is TransactionState.PENDING
        assert status.metadata == {"event": "derby-day"}
        assert status.receipt_reference is None
        assert status.stale is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_becomes_stale_after_validity(
        self, ledger: TransactionLedger, status_service: StatusQueryService, clock
    ) -> None:
        await ledger.create_pending("ws_CO_1", "254712345678", 20)
        await ledger.reconcile("ws_CO_1", SucceededOutcome(receipt_reference="ABC123", result_code=0))

        clock.advance(hours=11, minutes=59)
        fresh = status_service.status_by_correlation_id("ws_CO_1")
        clock.advance(minutes=1)
        expired = status_service.status_by_correlation_id("ws_CO_1")

        assert fresh.stale is False
        assert expired.stale is True
        assert expired.state is TransactionState.SUCCEEDED
        assert expired.receipt_reference == "ABC123"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_is_never_stale(
        self, ledger: TransactionLedger, status_service: StatusQueryService, clock
    ) -> None:
        await ledger.create_pending("ws_CO_1", "254712345678", 20)
        await ledger.reconcile("ws_CO_1", FailedOutcome(result_code=1032, detail="Request cancelled by user"))
        clock.advance(days=2)

        status = status_service.status_by_correlation_id("ws_CO_1")

        assert status.state is TransactionState.FAILED
        assert status.stale is False
        assert status.result_detail == "Request cancelled by user"

    @pytest.mark.unit
    def test_unknown_id(self, status_service: StatusQueryService) -> None:
        with pytest.raises(TransactionNotFoundError) as exc_info:
            status_service.status_by_correlation_id("ws_CO_missing")
        assert exc_info.value.status_code == 404
        assert "ws_CO_missing" in exc_info.value.message


class TestStatusByPhone:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_most_recent_for_any_phone_shape(
        self, ledger: TransactionLedger, status_service: StatusQueryService, clock
    ) -> None:
        await ledger.create_pending("ws_CO_1", "254712345678", 10)
        clock.advance(seconds=30)
        await ledger.create_pending("ws_CO_2", "254712345678", 20)

        for raw in ["0712345678", "712345678", "+254 712 345 678"]:
            assert status_service.status_by_phone(raw).correlation_id == "ws_CO_2"

    @pytest.mark.unit
    def test_no_transactions(self, status_service: StatusQueryService) -> None:
        with pytest.raises(NoTransactionsError) as exc_info:
            status_service.status_by_phone("0712345678")
        assert exc_info.value.status_code == 404

    @pytest.mark.unit
    def test_invalid_phone(self, status_service: StatusQueryService) -> None:
        with pytest.raises(InvalidPhoneError):
            status_service.status_by_phone("12345")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_by_unusable_phone_is_empty(
        self, ledger: TransactionLedger, status_service: StatusQueryService
    ) -> None:
        await ledger.create_pending("ws_CO_1", "254712345678", 20)

        assert status_service.list_by_phone("abc") == []
        assert [r.correlation_id for r in status_service.list_by_phone("0712345678")] == ["ws_CO_1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reads_do_not_mutate(self, ledger: TransactionLedger, status_service: StatusQueryService) -> None:
        record = await ledger.create_pending("ws_CO_1", "254712345678", 20)

        status_service.status_by_correlation_id("ws_CO_1")
        status_service.status_by_phone("0712345678")
        status_service.list_by_phone("0712345678")

        assert ledger.list_all() == [record]
        assert ledger.list_pending(older_than=timedelta(0)) == [record]
