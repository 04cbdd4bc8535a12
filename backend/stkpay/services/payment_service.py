"""
Payment Service

Coordinates the two write paths of the payment lifecycle:

Initiation (POST /pay):
    validate phone and amount -> acquire token -> build signed request ->
    submit STK push -> record Pending under the returned CheckoutRequestID.
    Validation runs before any outbound call, and a failed submission leaves
    no ledger trace.

Callback (POST /callback):
    parse the Daraja envelope -> map ResultCode to an outcome -> reconcile.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from ..config import Settings
from ..exceptions import GatewaySubmissionError, InvalidCallbackError, InvalidPhoneError
from ..models.payments import CallbackEnvelope, StkCallback
from ..models.transactions import (
    FailedOutcome,
    Outcome,
    ReconcileResult,
    SucceededOutcome,
    TransactionRecord,
)
from .daraja_client import DarajaClient
from .ledger import TransactionLedger
from .phone import normalize_phone
from .request_builder import PaymentRequestBuilder
from .token_cache import TokenCache

logger = logging.getLogger(__name__)

RESULT_CODE_SUCCESS = 0


@dataclass(frozen=True)
class InitiationResult:
    correlation_id: str
    record: TransactionRecord
    gateway_response: Dict[str, Any]


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def outcome_from_callback(callback: StkCallback, raw: Dict[str, Any], country_code: str = "254") -> Outcome:
    """
    Translate a Daraja stkCallback into a reconciliation outcome.

    ResultCode 0 is success; every other code (1032 cancelled by user,
    1037 timeout, 2001 wrong PIN, ...) is a failure.
    """
    phone = None
    reported_phone = callback.metadata_value("PhoneNumber")
    if reported_phone is not None:
        try:
            phone = normalize_phone(str(reported_phone), country_code)
        except InvalidPhoneError:
            logger.warning(f"Callback {callback.checkout_request_id} carried unusable phone {reported_phone!r}")

    common = {
        "detail": callback.result_desc,
        "result_code": callback.result_code,
        "merchant_request_id": callback.merchant_request_id,
        "paid_amount": _as_float(callback.metadata_value("Amount")),
        "phone": phone,
        "raw": raw,
    }

    if callback.result_code == RESULT_CODE_SUCCESS:
        receipt = callback.metadata_value("MpesaReceiptNumber")
        return SucceededOutcome(
            receipt_reference=str(receipt) if receipt is not None else None,
            **common
        )
    return FailedOutcome(**common)


class PaymentService:
    """
    Payment lifecycle coordinator.

    Holds references to the process-wide token cache and ledger; built once
    at startup and shared by every request.
    """

    def __init__(
        self,
        settings: Settings,
        client: DarajaClient,
        token_cache: TokenCache,
        builder: PaymentRequestBuilder,
        ledger: TransactionLedger
    ):
        self.settings = settings
        self.client = client
        self.token_cache = token_cache
        self.builder = builder
        self.ledger = ledger

    # ========================================================================
    # Initiation
    # ========================================================================

    async def initiate(
        self,
        raw_phone: Any,
        requested_amount: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> InitiationResult:
        """
        Initiate an STK push and record it as Pending.

        Raises:
            InvalidPhoneError, InvalidAmountError, AmountExceedsLimitError: rejected locally
            CredentialsUnavailableError, UpstreamAuthFailureError: token unavailable
            GatewaySubmissionError: gateway unreachable, timed out or refused the request
            DuplicateCorrelationIdError: gateway reissued a known CheckoutRequestID
        """
        phone = normalize_phone(raw_phone, self.settings.phone_country_code)
        amount = self.builder.resolve_amount(requested_amount)
        metadata = dict(metadata or {})

        token = await self.token_cache.acquire()
        stk_request = self.builder.build(phone, amount, metadata)

        logger.info(f"Initiating STK push for {phone}, amount={stk_request.amount}")
        try:
            response = await self.client.submit_stk_push(token.value, stk_request.to_payload())
        except GatewaySubmissionError as e:
            if e.details.get("upstream_status") == 401:
                # Token revoked upstream before its advertised expiry
                self.token_cache.invalidate()
            raise

        checkout_id = response.get("CheckoutRequestID")
        response_code = str(response.get("ResponseCode", ""))
        if response_code != "0" or not checkout_id:
            logger.error(f"STK push not accepted: {response}")
            raise GatewaySubmissionError(
                response.get("ResponseDescription") or "Payment initiation failed",
                {"gateway_response": response}
            )

        record = await self.ledger.create_pending(
            correlation_id=checkout_id,
            phone=phone,
            amount=amount,
            metadata=metadata,
            merchant_request_id=response.get("MerchantRequestID"),
            gateway_response=response,
        )
        return InitiationResult(correlation_id=checkout_id, record=record, gateway_response=response)

    # ========================================================================
    # Callback
    # ========================================================================

    @staticmethod
    def parse_callback(payload: Any) -> StkCallback:
        """
        Validate the callback envelope structure.

        Raises:
            InvalidCallbackError: Body.stkCallback missing or malformed
        """
        if not isinstance(payload, dict):
            raise InvalidCallbackError("Invalid callback payload")
        try:
            return CallbackEnvelope.model_validate(payload).body.stk_callback
        except ValidationError as e:
            raise InvalidCallbackError(
                "Invalid callback payload",
                {"errors": e.errors(include_url=False, include_input=False, include_context=False)}
            ) from e

    async def handle_callback(self, payload: Any) -> Tuple[ReconcileResult, TransactionRecord]:
        """
        Reconcile a Daraja callback into the ledger.

        Raises:
            InvalidCallbackError: Payload is structurally invalid
        """
        return await self.reconcile_callback(self.parse_callback(payload), payload)

    async def reconcile_callback(
        self,
        callback: StkCallback,
        raw: Dict[str, Any]
    ) -> Tuple[ReconcileResult, TransactionRecord]:
        """Reconcile an already parsed callback; raw is kept on the record for audit."""
        outcome = outcome_from_callback(callback, raw, self.settings.phone_country_code)
        logger.info(
            f"Callback received for {callback.checkout_request_id}: "
            f"ResultCode={callback.result_code} ({callback.result_desc})"
        )
        return await self.ledger.reconcile(callback.checkout_request_id, outcome)
