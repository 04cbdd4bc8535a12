"""
Pydantic Payment Models

Inbound payment intent, the signed Daraja STK push payload and the
asynchronous callback envelope Safaricom posts to CallBackURL.
"""
from typing import Optional, Dict, Any, List, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ==================== Inbound API ====================

class PayRequest(BaseModel):
    """
    Body of POST /pay.

    amount is optional: in fixed-amount mode it is ignored, in bounded mode a
    missing amount is rejected by the builder with invalid_amount.
    """
    phone: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("phone", mode="before")
    @classmethod
    def coerce_numeric_phone(cls, v: Any) -> Any:
        """Forms often post the phone as a JSON number (712345678)."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "phone": "0712345678",
                "amount": 20,
                "metadata": {"event": "derby-day", "template": "flier-a"}
            }
        }
    }


# ==================== Daraja STK Push ====================

class StkPushRequest(BaseModel):
    """
    Signed Lipa na M-Pesa Online request.

    Serialised with by_alias=True to get the PascalCase field names Daraja expects.
    """
    business_short_code: str = Field(alias="BusinessShortCode")
    password: str = Field(alias="Password")
    timestamp: str = Field(alias="Timestamp", pattern=r"^\d{14}$")
    transaction_type: str = Field(alias="TransactionType")
    amount: Union[int, float] = Field(alias="Amount", gt=0)
    party_a: str = Field(alias="PartyA")
    party_b: str = Field(alias="PartyB")
    phone_number: str = Field(alias="PhoneNumber")
    callback_url: str = Field(alias="CallBackURL")
    account_reference: str = Field(alias="AccountReference")
    transaction_desc: str = Field(alias="TransactionDesc")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ==================== Daraja Callback Envelope ====================

class CallbackItem(BaseModel):
    name: str = Field(alias="Name")
    value: Optional[Any] = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    items: List[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    """
    Body.stkCallback as delivered by Safaricom.

    Example (success):
        {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
            "CallbackMetadata": {"Item": [
                {"Name": "Amount", "Value": 20},
                {"Name": "MpesaReceiptNumber", "Value": "ABC123"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": 254712345678}
            ]}
        }
    """
    merchant_request_id: Optional[str] = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID", min_length=1)
    result_code: int = Field(alias="ResultCode")
    result_desc: Optional[str] = Field(default=None, alias="ResultDesc")
    callback_metadata: Optional[CallbackMetadata] = Field(default=None, alias="CallbackMetadata")

    def metadata_value(self, name: str) -> Optional[Any]:
        """Value of the named CallbackMetadata item, or None."""
        if not self.callback_metadata:
            return None
        for item in self.callback_metadata.items:
            if item.name == name:
                return item.value
        return None


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")


class CallbackEnvelope(BaseModel):
    body: CallbackBody = Field(alias="Body")
