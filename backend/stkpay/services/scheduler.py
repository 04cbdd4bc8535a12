"""
Pending Status Poller

APScheduler job that asks Daraja about STK pushes still Pending after a grace
period, for the cases where the callback never arrives.

Only definitive failures (non-zero ResultCode) are reconciled from a query.
A successful query is left for the callback, which is the only message that
carries the M-Pesa receipt; reconciling success early would make the later
callback a no-op and lose the receipt.
"""
import logging
from datetime import timedelta
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..exceptions import StkPayError
from ..models.transactions import FailedOutcome, ReconcileResult, TransactionRecord
from .daraja_client import DarajaClient
from .ledger import TransactionLedger
from .request_builder import PaymentRequestBuilder
from .token_cache import TokenCache

logger = logging.getLogger(__name__)

JOB_ID = "pending_status_query"


class PendingStatusPoller:
    """
    Periodically queries the gateway for stale Pending transactions.

    Jobs live in APScheduler's default in-memory job store; nothing survives
    a restart, matching the ledger.
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        client: DarajaClient,
        token_cache: TokenCache,
        builder: PaymentRequestBuilder,
        interval_seconds: int = 30,
        query_after_seconds: int = 60
    ):
        self.ledger = ledger
        self.client = client
        self.token_cache = token_cache
        self.builder = builder
        self.interval_seconds = interval_seconds
        self.query_after = timedelta(seconds=query_after_seconds)
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """
        Start the scheduler with the polling job.

        Must be called from inside the running event loop (FastAPI lifespan).
        """
        if self.running:
            logger.warning("Pending status poller already running")
            return

        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Never overlap two sweeps
                "misfire_grace_time": self.interval_seconds,
            },
            timezone="UTC",
        )
        self._scheduler.add_job(
            self.poll_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Query stale pending STK pushes",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"Pending status poller started: every {self.interval_seconds}s, "
            f"querying records pending > {int(self.query_after.total_seconds())}s"
        )

    def shutdown(self, wait: bool = False) -> None:
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Pending status poller shut down")
        self._scheduler = None

    async def poll_once(self) -> int:
        """
        Run one sweep over stale Pending records.

        Returns:
            Number of records moved to Failed during this sweep
        """
        stale = self.ledger.list_pending(older_than=self.query_after)
        if not stale:
            return 0

        logger.debug(f"Querying {len(stale)} stale pending transaction(s)")
        try:
            token = await self.token_cache.acquire()
        except StkPayError as e:
            logger.warning(f"Skipping pending sweep, no access token: {e.message}")
            return 0

        failed = 0
        for record in stale:
            if await self._query_one(token.value, record):
                failed += 1
        return failed

    async def _query_one(self, token: str, record: TransactionRecord) -> bool:
        payload = self.builder.build_query(record.correlation_id)
        try:
            body = await self.client.query_stk_status(token, payload)
        except StkPayError as e:
            # Daraja answers 500.001.1001 while the customer is still deciding
            logger.debug(f"Status query for {record.correlation_id} inconclusive: {e.details}")
            return False

        try:
            result_code = int(body.get("ResultCode"))
        except (TypeError, ValueError):
            logger.debug(f"Status query for {record.correlation_id} without ResultCode: {body}")
            return False

        if result_code == 0:
            logger.info(f"Gateway reports {record.correlation_id} paid; awaiting callback for receipt")
            return False

        outcome = FailedOutcome(
            detail=body.get("ResultDesc"),
            result_code=result_code,
            merchant_request_id=body.get("MerchantRequestID"),
            raw=body,
            source="status_query",
        )
        result, _ = await self.ledger.reconcile(record.correlation_id, outcome)
        logger.info(f"Status query for {record.correlation_id}: ResultCode={result_code}, {result.value}")
        return result is ReconcileResult.APPLIED
