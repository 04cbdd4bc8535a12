"""
Service wiring and FastAPI dependencies.

The token cache and ledger are process-wide singletons: built once by
build_services() at app creation, stored on app.state, and handed to route
handlers through Depends().
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from fastapi import Request

from .config import Settings
from .mocks.daraja_gateway import SimulatedDaraja
from .services.daraja_client import DarajaClient
from .services.ledger import TransactionLedger
from .services.payment_service import PaymentService
from .services.request_builder import PaymentRequestBuilder
from .services.scheduler import PendingStatusPoller
from .services.status_service import StatusQueryService
from .services.token_cache import TokenCache

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    client: DarajaClient
    token_cache: TokenCache
    builder: PaymentRequestBuilder
    ledger: TransactionLedger
    payments: PaymentService
    status: StatusQueryService
    poller: Optional[PendingStatusPoller] = None
    simulator: Optional[SimulatedDaraja] = None

    async def aclose(self) -> None:
        if self.poller is not None:
            self.poller.shutdown(wait=False)
        await self.client.aclose()


def use_simulator(settings: Settings, simulator: SimulatedDaraja) -> Settings:
    """
    Demo-mode settings carrying the simulated gateway's credentials.

    Only applies when no real consumer credentials are configured.
    """
    return settings.model_copy(update={
        "daraja_base_url": "https://sandbox.safaricom.co.ke",
        "daraja_consumer_key": simulator.consumer_key,
        "daraja_consumer_secret": simulator.consumer_secret,
        "business_shortcode": simulator.shortcode,
        "passkey": simulator.passkey,
        "callback_url": settings.callback_url or "https://example.invalid/callback",
    })


def build_services(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> ServiceContainer:
    """
    Construct every singleton service for one application instance.

    Args:
        settings: Loaded application settings
        transport: Optional httpx transport for the gateway client
            (tests pass httpx.MockTransport(SimulatedDaraja()))
    """
    simulator = None
    if transport is None and settings.demo_mode and not settings.has_gateway_credentials:
        simulator = SimulatedDaraja()
        settings = use_simulator(settings, simulator)
        transport = simulator.transport()
        logger.warning("Demo mode: using simulated Daraja gateway")

    client = DarajaClient(
        base_url=settings.daraja_base_url,
        http_client=httpx.AsyncClient(transport=transport),
        auth_timeout=settings.auth_timeout_seconds,
        stk_timeout=settings.stk_timeout_seconds,
    )
    token_cache = TokenCache(
        client,
        settings.daraja_consumer_key,
        settings.daraja_consumer_secret,
        default_ttl_seconds=settings.token_ttl_seconds,
        expiry_margin_seconds=settings.token_expiry_margin_seconds,
    )
    builder = PaymentRequestBuilder(settings)
    ledger = TransactionLedger(success_validity=timedelta(hours=settings.success_validity_hours))

    poller = None
    if settings.pending_query_enabled:
        poller = PendingStatusPoller(
            ledger,
            client,
            token_cache,
            builder,
            interval_seconds=settings.pending_query_interval_seconds,
            query_after_seconds=settings.pending_query_after_seconds,
        )

    return ServiceContainer(
        settings=settings,
        client=client,
        token_cache=token_cache,
        builder=builder,
        ledger=ledger,
        payments=PaymentService(settings, client, token_cache, builder, ledger),
        status=StatusQueryService(ledger, settings.phone_country_code),
        poller=poller,
        simulator=simulator,
    )


# ============================================================================
# FastAPI dependencies
# ============================================================================

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_payment_service(request: Request) -> PaymentService:
    return get_services(request).payments


def get_status_service(request: Request) -> StatusQueryService:
    return get_services(request).status
