from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from config import PRICING_POLICY, PricingPolicy
from models.rental_models import AuditLog, FulfillmentStatus, Rental, RentalItem
from services.availability_service import COMMITTING_STATES, CapacityRequest, ensure_capacity
from services.booking_errors import IllegalTransition
from services.pricing_service import compute_totals

BOOKING_LOGGER = logging.getLogger("rental_platform.booking")

TERMINAL_STATES = {FulfillmentStatus.RETURNED, FulfillmentStatus.CANCELLED}
QUOTATION_STATES = {FulfillmentStatus.QUOTATION, FulfillmentStatus.QUOTATION_SENT}
STATE_TRANSITIONS = {
    FulfillmentStatus.QUOTATION: {
        FulfillmentStatus.QUOTATION_SENT,
        FulfillmentStatus.RESERVED,
        FulfillmentStatus.CANCELLED,
    },
    FulfillmentStatus.QUOTATION_SENT: {FulfillmentStatus.RESERVED, FulfillmentStatus.CANCELLED},
    FulfillmentStatus.RESERVED: {FulfillmentStatus.PICKED_UP, FulfillmentStatus.CANCELLED},
    FulfillmentStatus.PICKED_UP: {FulfillmentStatus.RETURNED, FulfillmentStatus.CANCELLED},
    FulfillmentStatus.RETURNED: set(),
    FulfillmentStatus.CANCELLED: set(),
}


def log_audit(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    details: str | None = None,
    user_id: int | None = None,
) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def assign_rental_number(rental: Rental) -> None:
    # Needs the primary key, so call after flush.
    prefix = "QUO" if rental.FulfillmentStatus in QUOTATION_STATES else "RNT"
    rental.RentalNumber = f"{prefix}-{rental.RentalID:05d}"


def recalc_totals(rental: Rental, policy: PricingPolicy = PRICING_POLICY) -> None:
    totals = compute_totals((item.TotalPrice for item in rental.RentalItems), policy)
    rental.Subtotal = totals.subtotal
    rental.SecurityDeposit = totals.security_deposit
    rental.Tax = totals.tax
    rental.Total = totals.grand_total


def capacity_requests(items: list[RentalItem]) -> list[CapacityRequest]:
    return [
        CapacityRequest(
            product_id=item.ProductID,
            quantity=int(item.Quantity),
            start=item.StartDate,
            end=item.EndDate,
        )
        for item in items
    ]


def allowed_transitions(current: FulfillmentStatus | str) -> set[FulfillmentStatus]:
    return set(STATE_TRANSITIONS.get(FulfillmentStatus(current), set()))


def apply_status_transition(
    db: Session,
    rental: Rental,
    target_state: FulfillmentStatus | str,
    user_id: int | None = None,
    now: datetime | None = None,
) -> FulfillmentStatus:
    """Move a rental to ``target_state`` inside the caller's transaction.

    Committing or releasing inventory is nothing more than this status write:
    the ledger only counts RESERVED and PICKED_UP rentals, so the status and
    the held units always change in the same commit.
    """
    current = FulfillmentStatus(rental.FulfillmentStatus)
    target = FulfillmentStatus(target_state)
    if target not in STATE_TRANSITIONS[current]:
        BOOKING_LOGGER.warning("rejected transition for %s: %s -> %s", rental.RentalNumber, current.value, target.value)
        raise IllegalTransition(f"Invalid state transition: {current.value} -> {target.value}")

    if target == FulfillmentStatus.RESERVED:
        # Availability may have been taken since the quote was issued.
        ensure_capacity(db, capacity_requests(rental.RentalItems), exclude_rental_id=rental.RentalID)

    timestamp = now or datetime.now()
    if target == FulfillmentStatus.PICKED_UP:
        rental.PickedUpAt = timestamp
    elif target == FulfillmentStatus.RETURNED:
        rental.ReturnedAt = timestamp
    elif target == FulfillmentStatus.CANCELLED:
        rental.CancelledAt = timestamp

    if current in QUOTATION_STATES and target == FulfillmentStatus.RESERVED:
        assign_rental_number(rental)

    rental.FulfillmentStatus = target
    rental.UpdatedDate = timestamp

    released = current in COMMITTING_STATES and target not in COMMITTING_STATES
    details = f"{current.value} -> {target.value}"
    if released:
        details += "; inventory released"
    log_audit(db, "Rental", rental.RentalID, "TransitionStatus", details, user_id=user_id)
    BOOKING_LOGGER.info("rental %s %s", rental.RentalNumber, details)
    return target


def serialize_rental_item(item: RentalItem) -> dict:
    return {
        "rentalItemID": item.RentalItemID,
        "rentalID": item.RentalID,
        "productID": item.ProductID,
        "invoiceID": item.InvoiceID,
        "quantity": item.Quantity,
        "rentalType": item.RentalType.value if item.RentalType else None,
        "startDate": item.StartDate,
        "endDate": item.EndDate,
        "billableUnits": item.BillableUnits,
        "unitPrice": item.UnitPrice,
        "totalPrice": item.TotalPrice,
        "currency": item.Currency,
        "invoiceStatus": item.InvoiceStatus.value if item.InvoiceStatus else None,
        "product": {
            "productID": item.Product.ProductID,
            "productName": item.Product.ProductName,
            "sku": item.Product.SKU,
        } if item.Product else None,
    }


def serialize_rental(rental: Rental) -> dict:
    return {
        "rentalID": rental.RentalID,
        "rentalNumber": rental.RentalNumber,
        "customerID": rental.CustomerID,
        "pricelistID": rental.PricelistID,
        "fulfillmentStatus": rental.FulfillmentStatus.value,
        "invoiceStatus": rental.InvoiceStatus.value,
        "allowedTransitions": sorted(state.value for state in allowed_transitions(rental.FulfillmentStatus)),
        "currency": rental.Currency,
        "subtotal": rental.Subtotal,
        "securityDeposit": rental.SecurityDeposit,
        "tax": rental.Tax,
        "total": rental.Total,
        "notes": rental.Notes,
        "pickedUpAt": rental.PickedUpAt,
        "returnedAt": rental.ReturnedAt,
        "cancelledAt": rental.CancelledAt,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "rentalItems": [serialize_rental_item(item) for item in rental.RentalItems],
    }
