"""
Daraja Gateway Client

Thin async wrapper over the three Safaricom endpoints the service uses:

    GET  /oauth/v1/generate?grant_type=client_credentials   (Basic auth)
    POST /mpesa/stkpush/v1/processrequest                    (Bearer)
    POST /mpesa/stkpushquery/v1/query                        (Bearer)

Every call is bounded by an explicit timeout. Transport failures are
translated into the service exception taxonomy; nothing here touches the ledger.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import GatewaySubmissionError, UpstreamAuthFailureError

logger = logging.getLogger(__name__)

EP_AUTH = "/oauth/v1/generate"
EP_STK_PUSH = "/mpesa/stkpush/v1/processrequest"
EP_STK_QUERY = "/mpesa/stkpushquery/v1/query"


def _response_body(response: httpx.Response) -> Any:
    """Decoded JSON body, or the raw text when the gateway did not send JSON."""
    try:
        return response.json()
    except ValueError:
        return response.text


class DarajaClient:
    """
    Async client for the Daraja API.

    Args:
        base_url: https://api.safaricom.co.ke or https://sandbox.safaricom.co.ke
        http_client: Shared httpx.AsyncClient; created here when not supplied
        auth_timeout: Timeout for the OAuth exchange (seconds)
        stk_timeout: Timeout for STK push submission and query (seconds)
    """

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        auth_timeout: float = 10.0,
        stk_timeout: float = 15.0
    ):
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient()
        self.auth_timeout = auth_timeout
        self.stk_timeout = stk_timeout

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def fetch_access_token(self, consumer_key: str, consumer_secret: str) -> Dict[str, Any]:
        """
        Exchange consumer credentials for a bearer token.

        Returns:
            Gateway body, e.g. {"access_token": "...", "expires_in": "3599"}

        Raises:
            UpstreamAuthFailureError: Network error, timeout, non-2xx status or
                a body without access_token
        """
        try:
            response = await self._http.get(
                f"{self.base_url}{EP_AUTH}",
                params={"grant_type": "client_credentials"},
                auth=(consumer_key, consumer_secret),
                timeout=self.auth_timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"Daraja token request timed out after {self.auth_timeout}s: {e}")
            raise UpstreamAuthFailureError(
                "Unable to fetch access token",
                {"reason": "timeout", "timeout_seconds": self.auth_timeout}
            ) from e
        except httpx.HTTPStatusError as e:
            body = _response_body(e.response)
            logger.error(f"Daraja token request rejected: {e.response.status_code} - {body}")
            raise UpstreamAuthFailureError(
                "Unable to fetch access token",
                {"upstream_status": e.response.status_code, "gateway_response": body}
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Daraja token request failed: {e}")
            raise UpstreamAuthFailureError(
                "Unable to fetch access token",
                {"reason": type(e).__name__}
            ) from e

        body = _response_body(response)
        if not isinstance(body, dict) or not body.get("access_token"):
            logger.error(f"Daraja token response without access_token: {body}")
            raise UpstreamAuthFailureError(
                "Unable to fetch access token",
                {"reason": "malformed_response"}
            )
        return body

    # ------------------------------------------------------------------
    # STK Push
    # ------------------------------------------------------------------

    async def submit_stk_push(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a signed STK push request.

        Returns:
            Gateway body on HTTP success, e.g.
            {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": "ws_CO_191220191020363925",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing"
            }

        Raises:
            GatewaySubmissionError: Network error (502), timeout (504) or
                4xx/5xx from the gateway (502, with upstream status and body)
        """
        try:
            response = await self._http.post(
                f"{self.base_url}{EP_STK_PUSH}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.stk_timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"STK push timed out after {self.stk_timeout}s: {e}")
            raise GatewaySubmissionError(
                "Payment initiation failed",
                {"reason": "timeout", "timeout_seconds": self.stk_timeout},
                status_code=504
            ) from e
        except httpx.HTTPStatusError as e:
            body = _response_body(e.response)
            logger.error(f"STK push rejected: {e.response.status_code} - {body}")
            raise GatewaySubmissionError(
                "Payment initiation failed",
                {"upstream_status": e.response.status_code, "gateway_response": body}
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"STK push failed: {e}")
            raise GatewaySubmissionError(
                "Payment initiation failed",
                {"reason": type(e).__name__}
            ) from e

        body = _response_body(response)
        if not isinstance(body, dict):
            raise GatewaySubmissionError(
                "Payment initiation failed",
                {"reason": "malformed_response", "gateway_response": body}
            )
        return body

    async def query_stk_status(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Query the outcome of an STK push by CheckoutRequestID.

        Daraja answers with HTTP 500 and errorCode 500.001.1001 while the
        customer has not yet responded; that surfaces here as
        GatewaySubmissionError and callers treat it as "still pending".
        """
        try:
            response = await self._http.post(
                f"{self.base_url}{EP_STK_QUERY}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.stk_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewaySubmissionError(
                "STK status query failed",
                {"upstream_status": e.response.status_code, "gateway_response": _response_body(e.response)}
            ) from e
        except httpx.HTTPError as e:
            raise GatewaySubmissionError(
                "STK status query failed",
                {"reason": type(e).__name__}
            ) from e

        body = _response_body(response)
        if not isinstance(body, dict):
            raise GatewaySubmissionError(
                "STK status query failed",
                {"reason": "malformed_response", "gateway_response": body}
            )
        return body
