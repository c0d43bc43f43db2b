"""Check-and-commit entry points for creating and moving bookings.

Every write here runs while the per-product locks for the affected products
are held, inside one database transaction that also takes row locks on the
product rows. A failed attempt is rolled back in full. Transaction conflicts
are retried a bounded number of times before ``Conflict`` is raised.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from config import BOOKING_MAX_ATTEMPTS, BOOKING_RETRY_BACKOFF_SECONDS, PRICING_POLICY, PricingPolicy
from models.rental_models import (
    CustomerTier,
    FulfillmentStatus,
    Product,
    Rental,
    RentalItem,
    RentalType,
    ReservationLine,
)
from services.availability_service import CapacityRequest, ensure_capacity
from services.booking_errors import (
    Conflict,
    IllegalTransition,
    InsufficientAvailability,
    InvalidReservation,
    MixedCurrency,
    ProductNotFound,
    RentalNotFound,
)
from services.duration_service import validate_window
from services.pricing_service import (
    PriceQuote,
    RentalTotals,
    compute_totals,
    price_line,
    quote,
    resolve_pricelist,
    resolve_rate,
)
from services.rental_service import (
    BOOKING_LOGGER,
    apply_status_transition,
    assign_rental_number,
    log_audit,
    recalc_totals,
)

T = TypeVar("T")

INITIAL_STATES = {FulfillmentStatus.QUOTATION, FulfillmentStatus.RESERVED}

_PRODUCT_LOCKS_GUARD = threading.Lock()
_PRODUCT_LOCKS: dict[int, threading.Lock] = {}


def _product_lock(product_id: int) -> threading.Lock:
    with _PRODUCT_LOCKS_GUARD:
        lock = _PRODUCT_LOCKS.get(product_id)
        if lock is None:
            lock = threading.Lock()
            _PRODUCT_LOCKS[product_id] = lock
        return lock


@contextmanager
def product_locks(product_ids: Iterable[int]) -> Iterator[None]:
    # Sorted acquisition keeps two carts sharing products from deadlocking.
    acquired: list[threading.Lock] = []
    try:
        for product_id in sorted(set(product_ids)):
            lock = _product_lock(product_id)
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


def _lock_product_rows(db: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    wanted = sorted(set(product_ids))
    rows = db.execute(
        select(Product)
        .where(Product.ProductID.in_(wanted))
        .order_by(Product.ProductID)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    products = {product.ProductID: product for product in rows}
    missing = [product_id for product_id in wanted if product_id not in products]
    if missing:
        raise ProductNotFound(f"Product(s) {missing} not found.")
    return products


def _run_in_transaction(db: Session, operation: str, attempt: Callable[[], T]) -> T:
    for attempt_number in range(1, BOOKING_MAX_ATTEMPTS + 1):
        # A fresh transaction per attempt, begun after the locks are held,
        # so the ledger read is never served from an older snapshot.
        db.rollback()
        try:
            return attempt()
        except OperationalError as exc:
            db.rollback()
            if attempt_number >= BOOKING_MAX_ATTEMPTS:
                BOOKING_LOGGER.error("%s gave up after %s attempt(s): %s", operation, attempt_number, exc)
                raise Conflict(f"{operation} could not be committed; please retry the request.") from exc
            BOOKING_LOGGER.warning("%s conflicted on attempt %s, retrying: %s", operation, attempt_number, exc)
            time.sleep(BOOKING_RETRY_BACKOFF_SECONDS * attempt_number)
        except Exception:
            db.rollback()
            raise
    raise Conflict(f"{operation} could not be committed; please retry the request.")


def _normalize_lines(items: Iterable[ReservationLine]) -> list[ReservationLine]:
    lines = list(items)
    if not lines:
        raise InvalidReservation("A reservation needs at least one item.")
    for line in lines:
        validate_window(line.start, line.end)
        if line.quantity < 1:
            raise InvalidReservation("quantity must be a positive integer.")
    return lines


def estimate_reservation(
    db: Session,
    items: Iterable[ReservationLine],
    pricelist_id: int | None = None,
    customer_tier: CustomerTier | str = CustomerTier.REGULAR,
    policy: PricingPolicy = PRICING_POLICY,
) -> tuple[list[PriceQuote], RentalTotals]:
    """Price a cart the way ``create_reservation`` would, without holding anything."""
    lines = _normalize_lines(items)
    pricelist = resolve_pricelist(db, pricelist_id, customer_tier)
    quotes = [
        quote(db, line.product_id, pricelist.PricelistID, line.rental_type, line.quantity, line.start, line.end)
        for line in lines
    ]
    currencies = {item.currency for item in quotes}
    if len(currencies) > 1:
        raise MixedCurrency(f"Cart mixes currencies {sorted(currencies)}; book them separately.")
    return quotes, compute_totals((item.total_price for item in quotes), policy)


def create_reservation(
    db: Session,
    customer_id: int,
    items: Iterable[ReservationLine],
    pricelist_id: int | None = None,
    customer_tier: CustomerTier | str = CustomerTier.REGULAR,
    status: FulfillmentStatus | str = FulfillmentStatus.RESERVED,
    notes: str | None = None,
    user_id: int | None = None,
    policy: PricingPolicy = PRICING_POLICY,
) -> Rental:
    """Price and persist a whole cart as one Rental, all lines or none.

    A RESERVED booking must fit the ledger at commit time. A QUOTATION is
    priced the same way but holds nothing, so it skips the availability check.
    """
    initial_status = FulfillmentStatus(status)
    if initial_status not in INITIAL_STATES:
        raise IllegalTransition(f"A new rental must start as QUOTATION or RESERVED, not {initial_status.value}.")
    lines = _normalize_lines(items)
    product_ids = [line.product_id for line in lines]

    def attempt() -> Rental:
        pricelist = resolve_pricelist(db, pricelist_id, customer_tier)
        products = _lock_product_rows(db, product_ids)

        priced = []
        for line in lines:
            product = products[line.product_id]
            if line.quantity > int(product.TotalQuantity or 0):
                raise InsufficientAvailability(product.ProductID, line.quantity, int(product.TotalQuantity or 0))
            rate = resolve_rate(db, product, pricelist.PricelistID, line.rental_type)
            priced.append((line, price_line(rate, line.quantity, line.start, line.end)))

        currencies = {quote.currency for _, quote in priced}
        if len(currencies) > 1:
            raise MixedCurrency(f"Cart mixes currencies {sorted(currencies)}; book them separately.")

        if initial_status == FulfillmentStatus.RESERVED:
            ensure_capacity(
                db,
                [CapacityRequest(line.product_id, line.quantity, line.start, line.end) for line in lines],
            )

        now = datetime.now()
        rental = Rental(
            RentalNumber="TEMP",
            CustomerID=customer_id,
            PricelistID=pricelist.PricelistID,
            FulfillmentStatus=initial_status,
            Currency=currencies.pop(),
            Notes=notes,
            CreatedDate=now,
            UpdatedDate=now,
        )
        for line, quote in priced:
            rental.RentalItems.append(
                RentalItem(
                    ProductID=line.product_id,
                    Quantity=line.quantity,
                    RentalType=quote.rental_type,
                    StartDate=line.start,
                    EndDate=line.end,
                    BillableUnits=quote.billable_units,
                    UnitPrice=quote.unit_price,
                    TotalPrice=quote.total_price,
                    Currency=quote.currency,
                )
            )
        recalc_totals(rental, policy)
        db.add(rental)
        db.flush()
        assign_rental_number(rental)
        log_audit(
            db,
            "Rental",
            rental.RentalID,
            "CreateRental",
            f"Created {rental.RentalNumber} as {initial_status.value} with {len(priced)} item(s), total {rental.Total}",
            user_id=user_id,
        )
        db.commit()
        return rental

    with product_locks(product_ids):
        rental = _run_in_transaction(db, "create_reservation", attempt)
    BOOKING_LOGGER.info(
        "created %s for customer %s status=%s total=%s %s",
        rental.RentalNumber,
        customer_id,
        initial_status.value,
        rental.Total,
        rental.Currency,
    )
    return rental


def _load_rental_for_update(db: Session, rental_id: int) -> Rental:
    rental = db.execute(
        select(Rental)
        .options(selectinload(Rental.RentalItems))
        .where(Rental.RentalID == rental_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if not rental:
        raise RentalNotFound(f"Rental {rental_id} not found.")
    return rental


def transition_rental(
    db: Session,
    rental_id: int,
    new_status: FulfillmentStatus | str,
    user_id: int | None = None,
) -> Rental:
    target = FulfillmentStatus(new_status)
    product_ids = db.execute(
        select(RentalItem.ProductID).where(RentalItem.RentalID == rental_id)
    ).scalars().all()

    def attempt() -> Rental:
        if target == FulfillmentStatus.RESERVED:
            # Same row locks as create_reservation, taken before the ledger re-check.
            _lock_product_rows(db, product_ids)
        rental = _load_rental_for_update(db, rental_id)
        apply_status_transition(db, rental, target, user_id=user_id)
        db.commit()
        return rental

    # Holding the product locks also serialises concurrent moves of one rental.
    with product_locks(product_ids):
        return _run_in_transaction(db, "transition_rental", attempt)


def get_rental(db: Session, rental_id: int) -> Rental:
    rental = db.execute(
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.Product))
        .where(Rental.RentalID == rental_id)
    ).scalars().first()
    if not rental:
        raise RentalNotFound(f"Rental {rental_id} not found.")
    return rental


def list_rentals(
    db: Session,
    status: FulfillmentStatus | str | None = None,
    customer_id: int | None = None,
) -> list[Rental]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.Product))
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    )
    if status is not None:
        stmt = stmt.where(Rental.FulfillmentStatus == FulfillmentStatus(status))
    if customer_id is not None:
        stmt = stmt.where(Rental.CustomerID == customer_id)
    return list(db.execute(stmt).scalars().all())
