"""
Transactions API Endpoints

Status polling and audit listing over the in-process ledger.
"""
from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, List, Optional
import logging

from ..dependencies import get_status_service
from ..exceptions import InvalidInputError
from ..services.status_service import StatusQueryService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status")
async def get_status_endpoint(
    correlation_id: Optional[str] = Query(None, alias="correlationId", description="Daraja CheckoutRequestID"),
    phone: Optional[str] = Query(None, description="Payer phone (legacy polling)"),
    status_service: StatusQueryService = Depends(get_status_service)
) -> Dict[str, Any]:
    """
    Get transaction status.

    Query Parameters:
        correlationId: CheckoutRequestID returned by POST /pay (preferred)
        phone: Payer phone; returns that phone's most recent transaction

    Returns:
        - correlationId: projected status (state, receipt_reference, valid_until, stale, ...)
        - phone: the latest full transaction record

    Errors:
        400 when neither parameter is given or the phone is malformed
        404 not_found / no_transactions

    Example:
        GET /status?correlationId=ws_CO_191220191020363925
        GET /status?phone=0712345678
    """
    if correlation_id:
        logger.debug(f"Status lookup by correlation id: {correlation_id}")
        return status_service.status_by_correlation_id(correlation_id).model_dump(mode="json")

    if phone:
        logger.debug(f"Status lookup by phone: {phone}")
        return status_service.status_by_phone(phone).model_dump(mode="json")

    raise InvalidInputError("Phone or correlationId is required")


@router.get("/logs")
async def list_logs_endpoint(
    phone: Optional[str] = Query(None, description="Only this payer's transactions"),
    status_service: StatusQueryService = Depends(get_status_service)
) -> List[Dict[str, Any]]:
    """
    List recorded transactions, oldest first.

    Query Parameters:
        phone: Optional payer phone filter

    Example:
        GET /logs?phone=254712345678
    """
    records = status_service.list_by_phone(phone) if phone else status_service.list_all()
    return [record.model_dump(mode="json") for record in records]
