from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt


def utc_now() -> datetime:
    return datetime.utcnow()


class ShareKind(str, Enum):
    friend = "friend"
    group = "group"


class PaymentStatus(str, Enum):
    pending = "pending"
    success = "success"
    failed = "failed"


class ShareRequest(BaseModel):
    phone: Optional[str] = None
    type: Optional[str] = None


class ShareStatusResponse(BaseModel):
    friends: int
    groups: int


class EligibilityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    can_access_form: bool = Field(alias="canAccessForm")
    paid: bool
    shares: ShareStatusResponse


class ApplicationSubmitResponse(BaseModel):
    success: bool = True


class ApplicationItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: str
    upgraded: bool
    fields: dict[str, Any]
    created_at_utc: datetime = Field(alias="createdAt")
    updated_at_utc: datetime = Field(alias="updatedAt")


class PaymentInitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: Optional[str] = None
    amount: Optional[Union[StrictInt, StrictFloat]] = None
    email: Optional[str] = None
    is_upgrade: bool = Field(default=False, alias="isUpgrade")


class PaymentInitResponse(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class PaymentVerifyRequest(BaseModel):
    reference: Optional[str] = None
    phone: Optional[str] = None


class PaymentVerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    amount: Optional[float] = None
    is_upgrade: Optional[bool] = Field(default=None, alias="isUpgrade")
    message: Optional[str] = None


class PaystackWebhookEvent(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookAckResponse(BaseModel):
    status: str


class ShareRecord(BaseModel):
    phone: str
    friends: int = Field(default=0, ge=0)
    groups: int = Field(default=0, ge=0)
    updated_at_utc: Optional[datetime] = None


class PaymentRecord(BaseModel):
    reference: str
    phone: str
    email: Optional[str] = None
    amount: float
    upgrade: bool = False
    status: PaymentStatus = PaymentStatus.pending
    verified_at_utc: Optional[datetime] = None
    created_at_utc: datetime
    updated_at_utc: datetime


class ApplicationRecord(BaseModel):
    phone: str
    fields: dict[str, Any] = Field(default_factory=dict)
    upgraded: bool = False
    created_at_utc: datetime
    updated_at_utc: datetime
