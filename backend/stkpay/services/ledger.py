"""
Transaction Ledger

In-process store of STK push transactions keyed by CheckoutRequestID, and the
reconciliation logic that merges Daraja callbacks into it.

State machine:
    Pending -> Succeeded | Failed, exactly once.
    A terminal record is never changed again; repeated callbacks are no-ops.
    A callback for an unknown id creates a terminal orphan record. If the
    initiation path then records the same id, its data is merged into the orphan.
"""
import asyncio
import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import DuplicateCorrelationIdError
from ..models.transactions import (
    Outcome,
    ReconcileResult,
    SucceededOutcome,
    TransactionRecord,
    TransactionState,
)
from .token_cache import utc_now

logger = logging.getLogger(__name__)


def _snapshot(record: TransactionRecord) -> TransactionRecord:
    """Deep copy handed to callers; stored dicts never leave the ledger."""
    return record.model_copy(deep=True)


class TransactionLedger:
    """
    Append/update store of TransactionRecord snapshots.

    All writes run under a single asyncio.Lock, so create_pending and
    reconcile on the same id are serialized. Records are immutable pydantic
    models; an update swaps in a new snapshot. Every record handed out is a
    deep copy, so callers cannot reach the stored metadata or payloads.
    """

    def __init__(
        self,
        success_validity: timedelta = timedelta(hours=12),
        clock: Callable[[], datetime] = utc_now
    ):
        # {correlation_id: TransactionRecord}, insertion ordered
        self._records: Dict[str, TransactionRecord] = {}

        # {phone: [correlation_id, ...]} in the order records gained that phone
        self._by_phone: Dict[str, List[str]] = {}

        self._success_validity = success_validity
        self._clock = clock
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    # ========================================================================
    # Writes
    # ========================================================================

    async def create_pending(
        self,
        correlation_id: str,
        phone: str,
        amount: float,
        metadata: Optional[Dict[str, Any]] = None,
        merchant_request_id: Optional[str] = None,
        gateway_response: Optional[Dict[str, Any]] = None
    ) -> TransactionRecord:
        """
        Record a Pending transaction once the gateway has issued its id.

        If a callback already created an orphan under this id, the initiation
        data is merged into it; the orphan keeps its terminal outcome.

        Raises:
            DuplicateCorrelationIdError: A non-orphan record already holds the id
        """
        async with self._lock:
            existing = self._records.get(correlation_id)

            if existing is not None and not existing.orphan:
                logger.error(f"Gateway reissued CheckoutRequestID {correlation_id}")
                raise DuplicateCorrelationIdError(
                    "Correlation id already recorded",
                    {"correlation_id": correlation_id}
                )

            if existing is not None:
                record = existing.model_copy(update={
                    "phone": phone,
                    "amount": amount,
                    "metadata": copy.deepcopy(metadata or {}),
                    "merchant_request_id": existing.merchant_request_id or merchant_request_id,
                    "gateway_response": gateway_response,
                    "orphan": False,
                })
                logger.info(
                    f"Merged initiation into orphan {correlation_id} "
                    f"(already {record.state.value})"
                )
            else:
                record = TransactionRecord(
                    correlation_id=correlation_id,
                    merchant_request_id=merchant_request_id,
                    phone=phone,
                    amount=amount,
                    state=TransactionState.PENDING,
                    metadata=copy.deepcopy(metadata or {}),
                    gateway_response=gateway_response,
                    created_at=self._clock(),
                )
                logger.info(f"Recorded pending transaction {correlation_id} for {phone}, amount={amount}")

            self._store(record, previous=existing)
            return _snapshot(record)

    async def reconcile(
        self,
        correlation_id: str,
        outcome: Outcome
    ) -> Tuple[ReconcileResult, TransactionRecord]:
        """
        Merge a callback outcome into the ledger.

        Returns:
            (ReconcileResult, resulting record)
            - APPLIED: Pending record moved to the outcome's terminal state
            - DUPLICATE: record already terminal, left untouched
            - ORPHANED: unknown id, terminal orphan record created
        """
        async with self._lock:
            now = self._clock()
            existing = self._records.get(correlation_id)

            if existing is None:
                record = self._orphan_record(correlation_id, outcome, now)
                self._store(record)
                logger.warning(
                    f"Callback for unknown CheckoutRequestID {correlation_id}; "
                    f"stored orphan record ({record.state.value})"
                )
                return ReconcileResult.ORPHANED, _snapshot(record)

            if existing.state.is_terminal:
                if existing.state is not outcome.state:
                    logger.warning(
                        f"Ignoring conflicting outcome for {correlation_id}: "
                        f"record is {existing.state.value}, callback says {outcome.state.value}"
                    )
                else:
                    logger.info(f"Duplicate callback for {correlation_id}; already {existing.state.value}")
                return ReconcileResult.DUPLICATE, _snapshot(existing)

            record = existing.model_copy(update=self._terminal_fields(outcome, now))
            self._store(record, previous=existing)
            logger.info(
                f"Reconciled {correlation_id}: {record.state.value}"
                + (f", receipt={record.receipt_reference}" if record.receipt_reference else "")
            )
            return ReconcileResult.APPLIED, _snapshot(record)

    # ========================================================================
    # Reads
    # ========================================================================

    def find_by_correlation_id(self, correlation_id: str) -> Optional[TransactionRecord]:
        record = self._records.get(correlation_id)
        return _snapshot(record) if record is not None else None

    def find_by_phone(self, phone: str) -> List[TransactionRecord]:
        """Records for a canonical phone, oldest first."""
        return [_snapshot(self._records[cid]) for cid in self._by_phone.get(phone, [])]

    def list_all(self) -> List[TransactionRecord]:
        return [_snapshot(record) for record in self._records.values()]

    def list_pending(self, older_than: Optional[timedelta] = None) -> List[TransactionRecord]:
        """Pending records, optionally only those created more than older_than ago."""
        cutoff = self._clock() - older_than if older_than is not None else None
        return [
            _snapshot(record) for record in self._records.values()
            if record.state is TransactionState.PENDING
            and (cutoff is None or record.created_at <= cutoff)
        ]

    # ========================================================================
    # Internals
    # ========================================================================

    def _store(self, record: TransactionRecord, previous: Optional[TransactionRecord] = None) -> None:
        self._records[record.correlation_id] = record

        if record.phone and (previous is None or previous.phone != record.phone):
            if previous is not None and previous.phone:
                ids = self._by_phone.get(previous.phone, [])
                if record.correlation_id in ids:
                    ids.remove(record.correlation_id)
            self._by_phone.setdefault(record.phone, []).append(record.correlation_id)

    def _terminal_fields(self, outcome: Outcome, now: datetime) -> Dict[str, Any]:
        raw = copy.deepcopy(outcome.raw)
        fields: Dict[str, Any] = {
            "state": outcome.state,
            "result_code": outcome.result_code,
            "result_detail": outcome.detail,
            "paid_amount": outcome.paid_amount,
            "callback_payload": raw if outcome.source == "callback" else None,
            "status_query_response": raw if outcome.source == "status_query" else None,
            "reconciled_at": now,
        }
        if isinstance(outcome, SucceededOutcome):
            fields["receipt_reference"] = outcome.receipt_reference
            fields["valid_until"] = now + self._success_validity
        return fields

    def _orphan_record(self, correlation_id: str, outcome: Outcome, now: datetime) -> TransactionRecord:
        amount = outcome.paid_amount if outcome.paid_amount and outcome.paid_amount > 0 else None
        return TransactionRecord(
            correlation_id=correlation_id,
            merchant_request_id=outcome.merchant_request_id,
            phone=outcome.phone,
            amount=amount,
            orphan=True,
            created_at=now,
            **self._terminal_fields(outcome, now),
        )
