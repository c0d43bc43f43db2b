"""Shopping cart carried by the client between requests.

The cart is a plain value: every change returns a new cart, and what goes
into local storage is exactly ``to_storage()``. Prices are never stored in
it; estimates are recomputed server-side from the lines on demand.
"""

from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.rental_models import CustomerTier, RentalType, ReservationLine
from schemas.rentals import to_naive_utc


class CartLine(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    productID: int
    rentalType: RentalType = RentalType.DAILY
    quantity: int = Field(1, ge=1)
    startDate: datetime
    endDate: datetime

    @field_validator("startDate", "endDate")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    def same_slot(self, other: "CartLine") -> bool:
        return (
            self.productID == other.productID
            and self.rentalType == other.rentalType
            and self.startDate == other.startDate
            and self.endDate == other.endDate
        )


class Cart(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    customerID: Optional[int] = None
    pricelistID: Optional[int] = None
    customerTier: CustomerTier = CustomerTier.REGULAR
    lines: Tuple[CartLine, ...] = ()

    def add_line(self, line: CartLine) -> "Cart":
        merged = []
        added = False
        for existing in self.lines:
            if not added and existing.same_slot(line):
                merged.append(existing.model_copy(update={"quantity": existing.quantity + line.quantity}))
                added = True
            else:
                merged.append(existing)
        if not added:
            merged.append(line)
        return self.model_copy(update={"lines": tuple(merged)})

    def remove_line(self, line: CartLine) -> "Cart":
        return self.model_copy(update={"lines": tuple(item for item in self.lines if not item.same_slot(line))})

    def clear(self) -> "Cart":
        return self.model_copy(update={"lines": ()})

    def reservation_items(self) -> list[ReservationLine]:
        return [
            ReservationLine(
                product_id=line.productID,
                rental_type=line.rentalType,
                quantity=line.quantity,
                start=line.startDate,
                end=line.endDate,
            )
            for line in self.lines
        ]

    def to_storage(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_storage(cls, raw: str | None) -> "Cart":
        if not raw:
            return cls()
        return cls.model_validate_json(raw)
