"""
Payment Request Builder

Assembles the signed Lipa na M-Pesa Online (STK push) payload. Pure: reads
the clock, never the network.

Password = base64(BusinessShortCode + Passkey + Timestamp). It embeds the
timestamp, so it is recomputed for every request and never cached.
"""
import base64
import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union
from zoneinfo import ZoneInfo

from ..config import Settings
from ..exceptions import AmountExceedsLimitError, InvalidAmountError
from ..models.payments import StkPushRequest

logger = logging.getLogger(__name__)


def format_timestamp(moment: datetime) -> str:
    """Daraja timestamp: YYYYMMDDHHmmss."""
    return moment.strftime("%Y%m%d%H%M%S")


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


def _wire_amount(amount: float) -> Union[int, float]:
    """Send whole amounts as integers; Daraja rejects "20.0"."""
    return int(amount) if float(amount).is_integer() else amount


class PaymentRequestBuilder:
    """
    Builds StkPushRequest objects from validated inputs and configuration.

    Amount policy:
    - bounded: caller supplies 0 < amount <= max_amount
    - fixed: fixed_amount is always charged; caller input is ignored
    """

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self._tz = ZoneInfo(settings.gateway_timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def timestamp(self) -> str:
        """Current time in the gateway timezone, second granularity."""
        return format_timestamp(self._clock().astimezone(self._tz))

    def resolve_amount(self, requested: Any) -> float:
        """
        Apply the configured amount policy to a caller-supplied amount.

        Raises:
            InvalidAmountError: Missing, non-numeric, non-finite or <= 0 (bounded mode)
            AmountExceedsLimitError: Above max_amount (bounded mode)
        """
        if self.settings.amount_mode == "fixed":
            if requested is not None:
                logger.debug(f"Fixed-amount mode: ignoring requested amount {requested!r}")
            return float(self.settings.fixed_amount)

        if requested is None or (isinstance(requested, str) and not requested.strip()):
            raise InvalidAmountError("Amount is required")
        if isinstance(requested, bool):
            raise InvalidAmountError("Invalid amount", {"amount": requested})

        try:
            amount = float(Decimal(str(requested).strip()))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError("Invalid amount", {"amount": requested})

        if not math.isfinite(amount) or amount <= 0:
            raise InvalidAmountError("Invalid amount", {"amount": requested})

        limit = self.settings.max_amount
        if amount > limit:
            raise AmountExceedsLimitError(
                f"Amount exceeds maximum allowed (KES {_wire_amount(limit)})",
                {"amount": amount, "max_amount": limit}
            )
        return amount

    def build(
        self,
        phone: str,
        amount: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> StkPushRequest:
        """
        Build the signed STK push request.

        Args:
            phone: Canonical phone (PartyA and PhoneNumber)
            amount: Amount already passed through resolve_amount()
            metadata: Caller tags; recorded in the ledger, not sent to the gateway

        Raises:
            InvalidAmountError, AmountExceedsLimitError: amount violates the policy
        """
        amount = self.resolve_amount(amount)
        settings = self.settings
        timestamp = self.timestamp()
        shortcode = settings.business_shortcode or ""

        return StkPushRequest(
            BusinessShortCode=shortcode,
            Password=generate_password(shortcode, settings.passkey or "", timestamp),
            Timestamp=timestamp,
            TransactionType=settings.transaction_type,
            Amount=_wire_amount(amount),
            PartyA=phone,
            PartyB=settings.till_number or shortcode,
            PhoneNumber=phone,
            CallBackURL=settings.callback_url or "",
            AccountReference=settings.account_reference,
            TransactionDesc=settings.transaction_desc,
        )

    def build_query(self, checkout_request_id: str) -> Dict[str, Any]:
        """Signed STK push query payload for one CheckoutRequestID."""
        timestamp = self.timestamp()
        shortcode = self.settings.business_shortcode or ""
        return {
            "BusinessShortCode": shortcode,
            "Password": generate_password(shortcode, self.settings.passkey or "", timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
