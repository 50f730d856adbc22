"""Request and response models.

Principal responses never carry ``password_hash`` or ``refresh_token_hash``;
``PrincipalOut`` simply has no such fields.
"""

from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

SubscriptionStatus = Literal["active", "paused", "cancelled", "expired"]
PlanType = Literal["monthly", "yearly", "trial"]


class SignupIn(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshIn(BaseModel):
    refresh_token: str


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=1)


class PrincipalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class TokensOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthOut(TokensOut):
    user: PrincipalOut


class ProductIn(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(ge=0)


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: float


class SubscriptionIn(BaseModel):
    product_id: int
    plan_type: PlanType
    auto_renew: Optional[bool] = None
    price: float = Field(ge=0)


class SubscriptionPatch(BaseModel):
    plan_type: Optional[PlanType] = None
    auto_renew: Optional[bool] = None
    price: Optional[float] = Field(default=None, ge=0)
    status: Optional[SubscriptionStatus] = None


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user: PrincipalOut
    product: ProductOut
    status: SubscriptionStatus
    plan_type: PlanType
    start_date: dt.datetime
    end_date: dt.datetime
    next_billing_date: dt.datetime
    auto_renew: bool
    price: float

    @field_validator("start_date", "end_date", "next_billing_date")
    @classmethod
    def dates_as_utc(cls, v: dt.datetime) -> dt.datetime:
        # SQLite hands back naive values; everything is stored as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=dt.timezone.utc)
        return v.astimezone(dt.timezone.utc)
