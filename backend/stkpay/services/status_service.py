"""
Status Query Service

Read-side projections over the ledger for callers that cannot receive the
Daraja callback themselves. Never mutates the ledger.
"""
import logging
from datetime import datetime
from typing import Callable, List

from ..exceptions import InvalidPhoneError, NoTransactionsError, TransactionNotFoundError
from ..models.transactions import ProjectedStatus, TransactionRecord
from .ledger import TransactionLedger
from .phone import normalize_phone
from .token_cache import utc_now

logger = logging.getLogger(__name__)


class StatusQueryService:

    def __init__(
        self,
        ledger: TransactionLedger,
        country_code: str = "254",
        clock: Callable[[], datetime] = utc_now
    ):
        self._ledger = ledger
        self._country_code = country_code
        self._clock = clock

    def status_by_correlation_id(self, correlation_id: str) -> ProjectedStatus:
        """
        Projected status of one transaction.

        Raises:
            TransactionNotFoundError: No record for this CheckoutRequestID
        """
        record = self._ledger.find_by_correlation_id(correlation_id)
        if record is None:
            raise TransactionNotFoundError(
                f"No transaction found with id: {correlation_id}",
                {"correlation_id": correlation_id}
            )
        return ProjectedStatus.from_record(record, self._clock())

    def status_by_phone(self, raw_phone: str) -> TransactionRecord:
        """
        Most recently created record for a phone (legacy polling mode).

        Raises:
            InvalidPhoneError: raw_phone is not a valid phone number
            NoTransactionsError: The phone has no transactions
        """
        phone = normalize_phone(raw_phone, self._country_code)
        records = self._ledger.find_by_phone(phone)
        if not records:
            raise NoTransactionsError(
                "No transactions found for this phone",
                {"phone": phone}
            )
        return records[-1]

    def list_by_phone(self, raw_phone: str) -> List[TransactionRecord]:
        """Records for a phone, oldest first; an unusable phone matches nothing."""
        try:
            phone = normalize_phone(raw_phone, self._country_code)
        except InvalidPhoneError:
            logger.debug(f"Log filter {raw_phone!r} is not a valid phone; no records match")
            return []
        return self._ledger.find_by_phone(phone)

    def list_all(self) -> List[TransactionRecord]:
        return self._ledger.list_all()
