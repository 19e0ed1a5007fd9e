"""
Typed records at the boundary between the gateway and the outside world.

Rows from the store and payloads from webhooks arrive as loose dicts; they are
coerced here so that the rest of the code never deals with missing keys.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _to_str(value):
    if value is None or value == "":
        return None
    return str(value)


class OrderRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    public_id: Optional[str] = None
    display_code: Optional[str] = None
    status: Optional[str] = None
    user_id: Optional[str] = None
    driver_id: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    estimated_time: Optional[int] = None
    admin_notes: Optional[str] = None
    payment_proof_url: Optional[str] = None
    delivery_location: Optional[Dict[str, Any]] = None

    @field_validator("public_id", "display_code", "user_id", "driver_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value):
        return _to_str(value)

    @field_validator("total_amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        if value is None or value == "":
            return Decimal("0")
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")

    @field_validator("delivery_location", mode="before")
    @classmethod
    def _coerce_location(cls, value):
        return value if isinstance(value, dict) else None

    @property
    def display_id(self) -> str:
        return self.display_code or str(self.id)

    @property
    def location(self) -> Optional[tuple]:
        loc = self.delivery_location or {}
        if loc.get("lat") is None or loc.get("lng") is None:
            return None
        return loc["lat"], loc["lng"]


class OrderItemRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: Optional[int] = None
    order_id: Optional[str] = None
    quantity: int = 1
    title: Optional[str] = None


class ProfileRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    role: str = "customer"
    fcm_token: Optional[str] = None
    phone_number: Optional[str] = None
    full_name: Optional[str] = None
    address: Optional[str] = None
    last_location_json: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return str(value)

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value):
        return value or "customer"


class CrashLogRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    app_version: Optional[str] = None
    app_type: str = "CLIENT"
    log_hash: Optional[str] = None
    count: int = 1
    last_seen: Optional[datetime] = None


class ReviewRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    rating: int = 0
    comment: Optional[str] = None
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------
# Webhook ingress
# ---------------------------------------------------------
class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    table: str
    type: str
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None


class ChatMessageRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sender_id: Optional[str] = None
    receiver_id: str
    message: str = ""
    order_id: Optional[str] = None

    @field_validator("sender_id", "receiver_id", "order_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value):
        return _to_str(value)


# ---------------------------------------------------------
# Operator intents (Admin Interaction Surface -> core)
# ---------------------------------------------------------
class AcceptIntent(BaseModel):
    type: Literal["accept"] = "accept"
    orderId: int
    etaMinutes: int


class RejectIntent(BaseModel):
    type: Literal["reject"] = "reject"
    orderId: int
    reason: str


class PrepareIntent(BaseModel):
    type: Literal["prepare"] = "prepare"
    orderId: int


class ReadyForPickupIntent(BaseModel):
    type: Literal["readyForPickup"] = "readyForPickup"
    orderId: int


OperatorIntent = Annotated[
    Union[AcceptIntent, RejectIntent, PrepareIntent, ReadyForPickupIntent],
    Field(discriminator="type"),
]


class ConversationState(BaseModel):
    """Multi-step operator form, persisted between Telegram turns."""
    scene: Optional[str] = None
    order_id: Optional[int] = None
    draft: Dict[str, Any] = {}  # answers collected so far by multi-step forms


# ---------------------------------------------------------
# REST payloads
# ---------------------------------------------------------
class PlaceOrderIn(BaseModel):
    orderData: Dict[str, Any]
    itemsData: List[Dict[str, Any]] = []


class CancelOrderIn(BaseModel):
    userId: str


class ReviewIn(BaseModel):
    userId: Optional[str] = None
    orderId: Optional[Union[int, str]] = None
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    fullName: Optional[str] = None


class RemindIn(BaseModel):
    orderId: Union[int, str]
    status: Optional[str] = None


class CrashLogIn(BaseModel):
    userId: Optional[str] = None
    log: Optional[str] = ""
    type: Optional[str] = None
    device: Optional[Union[Dict[str, Any], str]] = None
    app_type: Optional[str] = None
    log_hash: Optional[str] = None


class FinalizePodIn(BaseModel):
    orderId: Union[int, str]
    podUrl: Optional[str] = None
    signatureUrl: Optional[str] = None
