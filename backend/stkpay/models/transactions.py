"""
Pydantic Transaction Models

Ledger records, reconciliation outcomes and the read-side status projection.
Records are replaced on every transition, never mutated in place, so a
reader always holds a consistent snapshot.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Literal, Dict, Any, Union
from pydantic import BaseModel, ConfigDict, Field


class TransactionState(str, Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionState.PENDING


class ReconcileResult(str, Enum):
    """What reconcile() did with an outcome."""
    APPLIED = "applied"  # Pending record moved to a terminal state
    DUPLICATE = "duplicate"  # record already terminal, nothing changed
    ORPHANED = "orphaned"  # no record existed, orphan created


class TransactionRecord(BaseModel):
    """
    One STK push request and its outcome, keyed by the gateway CheckoutRequestID.

    Orphans are created directly in a terminal state by a callback that had no
    pending antecedent; their phone and amount come from the callback metadata
    when present.
    """
    correlation_id: str = Field(min_length=1)
    merchant_request_id: Optional[str] = None
    phone: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)
    state: TransactionState = TransactionState.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    receipt_reference: Optional[str] = None  # Succeeded only
    result_code: Optional[int] = None
    result_detail: Optional[str] = None
    paid_amount: Optional[float] = None
    valid_until: Optional[datetime] = None  # Succeeded only
    orphan: bool = False
    gateway_response: Optional[Dict[str, Any]] = None
    callback_payload: Optional[Dict[str, Any]] = None
    status_query_response: Optional[Dict[str, Any]] = None  # set when a status query failed the record
    created_at: datetime
    reconciled_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def is_stale(self, now: datetime) -> bool:
        """True once a successful record has passed its validity window."""
        return self.valid_until is not None and now >= self.valid_until


# ==================== Reconciliation Outcomes ====================

class _OutcomeBase(BaseModel):
    """Fields every callback outcome may carry."""
    detail: Optional[str] = None
    result_code: Optional[int] = None
    merchant_request_id: Optional[str] = None
    paid_amount: Optional[float] = None
    phone: Optional[str] = None  # canonical phone reported by the gateway
    raw: Optional[Dict[str, Any]] = None
    source: Literal["callback", "status_query"] = "callback"  # which gateway message raw came from

    model_config = ConfigDict(frozen=True)


class SucceededOutcome(_OutcomeBase):
    kind: Literal["succeeded"] = "succeeded"
    receipt_reference: Optional[str] = None

    @property
    def state(self) -> TransactionState:
        return TransactionState.SUCCEEDED


class FailedOutcome(_OutcomeBase):
    kind: Literal["failed"] = "failed"

    @property
    def state(self) -> TransactionState:
        return TransactionState.FAILED


Outcome = Union[SucceededOutcome, FailedOutcome]


# ==================== Read Projection ====================

class ProjectedStatus(BaseModel):
    """Status returned to pollers for a single correlation id."""
    correlation_id: str
    state: TransactionState
    phone: Optional[str] = None
    amount: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    receipt_reference: Optional[str] = None
    result_detail: Optional[str] = None
    valid_until: Optional[datetime] = None
    stale: bool = False
    orphan: bool = False
    created_at: datetime
    reconciled_at: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "correlation_id": "ws_CO_191220191020363925",
                "state": "Succeeded",
                "phone": "254712345678",
                "amount": 20,
                "metadata": {"event": "derby-day", "template": "flier-a"},
                "receipt_reference": "ABC123",
                "result_detail": "The service request is processed successfully.",
                "valid_until": "2025-10-18T02:35:00Z",
                "stale": False,
                "orphan": False,
                "created_at": "2025-10-17T14:35:00Z",
                "reconciled_at": "2025-10-17T14:35:40Z"
            }
        }
    }

    @classmethod
    def from_record(cls, record: TransactionRecord, now: datetime) -> "ProjectedStatus":
        return cls(
            correlation_id=record.correlation_id,
            state=record.state,
            phone=record.phone,
            amount=record.amount,
            metadata=dict(record.metadata),
            receipt_reference=record.receipt_reference,
            result_detail=record.result_detail,
            valid_until=record.valid_until,
            stale=record.is_stale(now),
            orphan=record.orphan,
            created_at=record.created_at,
            reconciled_at=record.reconciled_at,
        )
