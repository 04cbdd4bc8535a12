"""
Payments API Endpoints

STK push initiation and the Daraja callback receiver.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from typing import Dict, Any
import json
import logging

from ..dependencies import get_payment_service
from ..exceptions import InvalidCallbackError
from ..models.payments import PayRequest
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Received"}


@router.post("/pay")
async def pay_endpoint(
    request: PayRequest,
    payments: PaymentService = Depends(get_payment_service)
) -> Dict[str, Any]:
    """
    Initiate an STK push to the payer's phone.

    Request Body:
        {
            "phone": str,  # 0712345678, 712345678 or 254712345678
            "amount": number,  # Ignored in fixed-amount mode
            "metadata": Dict  # Optional event/template tags
        }

    Returns:
        {
            "message": "STK push initiated",
            "correlationId": str,  # Daraja CheckoutRequestID, poll /status with it
            "gatewayRawResponse": Dict
        }

    Errors:
        400 invalid_phone / invalid_amount / amount_exceeds_limit
        502 upstream_auth_failure / gateway_submission_failed
        503 credentials_unavailable
        504 gateway_submission_failed (timeout)
    """
    result = await payments.initiate(request.phone, request.amount, request.metadata)

    return {
        "message": "STK push initiated",
        "correlationId": result.correlation_id,
        "gatewayRawResponse": result.gateway_response
    }


@router.post("/callback")
async def callback_endpoint(
    request: Request,
    payments: PaymentService = Depends(get_payment_service)
) -> JSONResponse:
    """
    Receive the asynchronous STK push result from Safaricom.

    Acknowledges with {"ResultCode": 0, "ResultDesc": "Received"} even when
    processing fails. Only a structurally invalid payload gets a 400.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Callback body is not valid JSON")
        raise InvalidCallbackError("Invalid callback payload")

    logger.debug(f"Callback received: {json.dumps(payload)}")

    # Raises InvalidCallbackError -> 400
    callback = payments.parse_callback(payload)

    try:
        result, record = await payments.reconcile_callback(callback, payload)
        logger.info(f"Callback for {record.correlation_id} {result.value}: {record.state.value}")
    except Exception as e:
        logger.error(f"Callback processing error: {e}", exc_info=True)

    return JSONResponse(content=CALLBACK_ACK)
