from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.rental_models import CustomerTier, FulfillmentStatus, InvoiceStatus, PaymentMethod, RentalType


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ReservationItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    rentalType: RentalType = RentalType.DAILY
    quantity: int = Field(1, ge=1)
    startDate: datetime
    endDate: datetime

    @field_validator("startDate", "endDate")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class CreateReservationDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: int
    pricelistID: Optional[int] = None
    customerTier: CustomerTier = CustomerTier.REGULAR
    status: Literal["QUOTATION", "RESERVED"] = "RESERVED"
    notes: Optional[str] = None
    rentalItems: List[ReservationItemDto] = Field(..., min_length=1)


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    pricelistID: int
    rentalType: RentalType
    quantity: int = Field(1, ge=1)
    startDate: datetime
    endDate: datetime

    @field_validator("startDate", "endDate")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class StatusTransitionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: FulfillmentStatus
    operatorUserID: Optional[int] = None


class InvoiceStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    invoiceStatus: InvoiceStatus
    operatorUserID: Optional[int] = None


class IssueInvoiceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalItemIDs: Optional[List[int]] = None
    operatorUserID: Optional[int] = None


class RecordPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    transactionRef: Optional[str] = None
    operatorUserID: Optional[int] = None
