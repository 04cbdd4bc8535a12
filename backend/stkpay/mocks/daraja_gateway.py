"""
Simulated Daraja Gateway

In-process stand-in for Safaricom's OAuth, STK push and STK query endpoints,
served through httpx.MockTransport. Used in demo mode when no gateway
credentials are configured, and by the test suite.

It verifies what the real gateway verifies (Basic credentials, bearer token,
password = base64(shortcode + passkey + timestamp)) and can be switched into
failure modes for error-path testing.
"""
import base64
import itertools
import json
import secrets
from typing import Any, Dict, List, Optional

import httpx

from ..services.daraja_client import EP_AUTH, EP_STK_PUSH, EP_STK_QUERY
from ..services.request_builder import generate_password

# Result codes that trigger specific behaviours, keyed by the phone number (PartyA)
DECLINE_PHONES = {
    "254700000001": (1032, "Request cancelled by user"),
    "254700000002": (1, "The balance is insufficient for the transaction"),
    "254700000003": (1037, "DS timeout user cannot be reached"),
}


def build_callback(
    checkout_request_id: str,
    result_code: int = 0,
    result_desc: Optional[str] = None,
    receipt: Optional[str] = None,
    amount: Optional[float] = None,
    phone: Optional[str] = None,
    merchant_request_id: str = "29115-34620561-1"
) -> Dict[str, Any]:
    """
    Build a Daraja callback envelope as Safaricom would POST it.

    CallbackMetadata is only present on success, as with the real gateway.
    """
    callback: Dict[str, Any] = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc or (
            "The service request is processed successfully."
            if result_code == 0 else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        items: List[Dict[str, Any]] = []
        if amount is not None:
            items.append({"Name": "Amount", "Value": amount})
        if receipt is not None:
            items.append({"Name": "MpesaReceiptNumber", "Value": receipt})
        items.append({"Name": "TransactionDate", "Value": 20251017143540})
        if phone is not None:
            items.append({"Name": "PhoneNumber", "Value": int(phone)})
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}


class SimulatedDaraja:
    """
    Callable httpx.MockTransport handler emulating the Daraja API.

    Attributes:
        token_requests: Number of OAuth exchanges served
        stk_requests: STK push payloads received (in order)
        checkouts: Accepted STK push payloads by CheckoutRequestID
        query_requests: STK query payloads received (in order)
        fail_auth: Respond 400 to OAuth requests
        fail_stk_status: Respond to STK push with this HTTP status
        stk_response_code: ResponseCode returned for accepted STK pushes
        query_result_code: ResultCode returned by STK query (None = still processing)
    """

    def __init__(
        self,
        consumer_key: str = "demo_key",
        consumer_secret: str = "demo_secret",
        shortcode: str = "174379",
        passkey: str = "demo_passkey",
        expires_in: int = 3599
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.expires_in = expires_in

        self.token_requests = 0
        self.stk_requests: List[Dict[str, Any]] = []
        self.query_requests: List[Dict[str, Any]] = []
        self.issued_tokens: List[str] = []
        self.checkouts: Dict[str, Dict[str, Any]] = {}

        self.fail_auth = False
        self.fail_stk_status: Optional[int] = None
        self.stk_response_code = "0"
        self.query_result_code: Optional[int] = None

        self._sequence = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == EP_AUTH and request.method == "GET":
            return self._oauth(request)
        if path == EP_STK_PUSH and request.method == "POST":
            return self._stk_push(request)
        if path == EP_STK_QUERY and request.method == "POST":
            return self._stk_query(request)
        return httpx.Response(404, json={"errorCode": "404.001.01", "errorMessage": "Resource not found"})

    # ------------------------------------------------------------------

    def _oauth(self, request: httpx.Request) -> httpx.Response:
        self.token_requests += 1
        expected = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode()).decode()
        if self.fail_auth or request.headers.get("Authorization") != f"Basic {expected}":
            return httpx.Response(400, json={
                "errorCode": "400.008.01",
                "errorMessage": "Invalid Authentication passed"
            })

        token = secrets.token_urlsafe(24)
        self.issued_tokens.append(token)
        return httpx.Response(200, json={"access_token": token, "expires_in": str(self.expires_in)})

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        return header.startswith("Bearer ") and header[len("Bearer "):] in self.issued_tokens

    def _stk_push(self, request: httpx.Request) -> httpx.Response:
        if not self._authorized(request):
            return httpx.Response(401, json={"errorCode": "404.001.03", "errorMessage": "Invalid Access Token"})

        payload = json.loads(request.content)
        self.stk_requests.append(payload)

        if self.fail_stk_status is not None:
            return httpx.Response(self.fail_stk_status, json={
                "requestId": f"{next(self._sequence)}-sim",
                "errorCode": "500.001.1001",
                "errorMessage": "Simulated gateway failure"
            })

        expected_password = generate_password(self.shortcode, self.passkey, payload.get("Timestamp", ""))
        if payload.get("BusinessShortCode") != self.shortcode or payload.get("Password") != expected_password:
            return httpx.Response(400, json={
                "requestId": f"{next(self._sequence)}-sim",
                "errorCode": "400.002.02",
                "errorMessage": "Bad Request - Invalid Password"
            })

        n = next(self._sequence)
        checkout_id = f"ws_CO_SIM{n:012d}"
        self.checkouts[checkout_id] = payload
        return httpx.Response(200, json={
            "MerchantRequestID": f"29115-{n:08d}-1",
            "CheckoutRequestID": checkout_id,
            "ResponseCode": self.stk_response_code,
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing"
        })

    def _stk_query(self, request: httpx.Request) -> httpx.Response:
        if not self._authorized(request):
            return httpx.Response(401, json={"errorCode": "404.001.03", "errorMessage": "Invalid Access Token"})

        payload = json.loads(request.content)
        self.query_requests.append(payload)
        checkout_id = payload.get("CheckoutRequestID")

        result = self._query_result(checkout_id)
        if result is None:
            return httpx.Response(500, json={
                "errorCode": "500.001.1001",
                "errorMessage": "The transaction is being processed"
            })

        code, desc = result
        return httpx.Response(200, json={
            "ResponseCode": "0",
            "ResponseDescription": "The service request has been accepted successfully",
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_id,
            "ResultCode": str(code),
            "ResultDesc": desc
        })

    def _query_result(self, checkout_id: Optional[str]):
        payload = self.checkouts.get(checkout_id)
        if payload and payload.get("PartyA") in DECLINE_PHONES:
            return DECLINE_PHONES[payload["PartyA"]]
        if self.query_result_code is None:
            return None
        if self.query_result_code == 0:
            return 0, "The service request is processed successfully."
        return self.query_result_code, "Request cancelled by user"
