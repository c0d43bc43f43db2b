from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.rental_models import FulfillmentStatus, Product, Rental, RentalItem
from services.booking_errors import InsufficientAvailability, InvalidReservation, ProductNotFound
from services.duration_service import validate_window

AVAILABILITY_LOGGER = logging.getLogger("rental_platform.availability")

# Only these states hold physical units. Quotations are non-binding and
# returned/cancelled rentals have already released theirs.
COMMITTING_STATES = (FulfillmentStatus.RESERVED, FulfillmentStatus.PICKED_UP)


@dataclass(frozen=True)
class AvailabilityResult:
    product_id: int
    requested: int
    free_units: int

    @property
    def available(self) -> bool:
        return self.requested <= self.free_units

    def to_dict(self) -> dict:
        return {
            "productID": self.product_id,
            "requestedQuantity": self.requested,
            "available": self.available,
            "freeUnits": self.free_units,
        }


def _overlapping_items_stmt(product_id: int, start: datetime, end: datetime, exclude_rental_id: int | None):
    # Half-open intervals: an item ending exactly at `start` does not overlap.
    stmt = (
        select(RentalItem)
        .join(Rental, Rental.RentalID == RentalItem.RentalID)
        .where(RentalItem.ProductID == product_id)
        .where(Rental.FulfillmentStatus.in_(COMMITTING_STATES))
        .where(RentalItem.StartDate < end)
        .where(RentalItem.EndDate > start)
    )
    if exclude_rental_id:
        stmt = stmt.where(Rental.RentalID != exclude_rental_id)
    return stmt


def committed_quantity(
    db: Session,
    product_id: int,
    start: datetime,
    end: datetime,
    exclude_rental_id: int | None = None,
) -> int:
    validate_window(start, end)
    overlapping = _overlapping_items_stmt(product_id, start, end, exclude_rental_id).subquery()
    total = db.execute(select(func.coalesce(func.sum(overlapping.c.Quantity), 0))).scalar()
    return int(total or 0)


def available_units(
    db: Session,
    product_id: int,
    start: datetime,
    end: datetime,
    exclude_rental_id: int | None = None,
) -> int:
    product = db.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found.")
    committed = committed_quantity(db, product_id, start, end, exclude_rental_id)
    return max(0, int(product.TotalQuantity or 0) - committed)


def check_availability(
    db: Session,
    product_id: int,
    start: datetime,
    end: datetime,
    quantity: int,
) -> AvailabilityResult:
    if quantity < 1:
        raise InvalidReservation("quantity must be a positive integer.")
    free_units = available_units(db, product_id, start, end)
    result = AvailabilityResult(product_id=product_id, requested=quantity, free_units=free_units)
    AVAILABILITY_LOGGER.debug(
        "availability product=%s window=[%s, %s) requested=%s free=%s",
        product_id,
        start,
        end,
        quantity,
        free_units,
    )
    return result


def peak_committed(db: Session, product_id: int, start: datetime, end: datetime) -> int:
    """Largest number of units held at any single instant inside the window.

    ``committed_quantity`` sums every overlapping item, which is what booking
    decisions use. This sweep is the finer measure the integrity report uses
    to verify that no instant is ever oversold.
    """
    validate_window(start, end)
    items = db.execute(_overlapping_items_stmt(product_id, start, end, None)).scalars().all()

    events: list[tuple[datetime, int]] = []
    for item in items:
        events.append((max(item.StartDate, start), int(item.Quantity)))
        events.append((min(item.EndDate, end), -int(item.Quantity)))
    # Releases sort before pickups at the same instant (same-day turnaround).
    events.sort(key=lambda event: (event[0], event[1]))

    peak = 0
    running = 0
    for _, delta in events:
        running += delta
        peak = max(peak, running)
    return peak


@dataclass(frozen=True)
class CapacityRequest:
    product_id: int
    quantity: int
    start: datetime
    end: datetime


def ensure_capacity(
    db: Session,
    requests: list[CapacityRequest],
    exclude_rental_id: int | None = None,
) -> None:
    """Raise InsufficientAvailability unless every request fits alongside the others.

    Requests for the same product whose windows overlap are counted against
    each other as well as against what is already committed.
    """
    for index, request in enumerate(requests):
        validate_window(request.start, request.end)
        same_batch = sum(
            other.quantity
            for other_index, other in enumerate(requests)
            if other_index != index
            and other.product_id == request.product_id
            and other.start < request.end
            and other.end > request.start
        )
        free_units = available_units(db, request.product_id, request.start, request.end, exclude_rental_id)
        if request.quantity + same_batch > free_units:
            AVAILABILITY_LOGGER.warning(
                "insufficient availability product=%s window=[%s, %s) requested=%s batch=%s free=%s",
                request.product_id,
                request.start,
                request.end,
                request.quantity,
                same_batch,
                free_units,
            )
            raise InsufficientAvailability(request.product_id, request.quantity + same_batch, free_units)
