"""Pricelist resolution and the single server-side price computation.

Every amount shown to a customer (quote, cart estimate, booking, invoice)
comes out of the functions in this module. Anything a client computes on its
own is a display estimate and is re-derived here before it is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from config import DEFAULT_CURRENCY, PRICING_POLICY, PricingPolicy
from models.rental_models import (
    CustomerTier,
    DiscountType,
    Pricelist,
    PricelistItem,
    Product,
    RentalType,
)
from services.booking_errors import DurationOutOfBounds, InvalidReservation, ProductNotFound, RateNotFound
from services.duration_service import billable_units, rental_days

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ResolvedRate:
    pricelist_id: int
    product_id: int
    rental_type: RentalType
    price: Decimal
    discount: Decimal
    discount_type: DiscountType
    seasonal_multiplier: Optional[Decimal]
    currency: str
    minimum_days: Optional[int]
    maximum_days: Optional[int]


@dataclass(frozen=True)
class PriceQuote:
    product_id: int
    pricelist_id: int
    rental_type: RentalType
    quantity: int
    billable_units: int
    unit_price: Decimal
    total_price: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {
            "productID": self.product_id,
            "pricelistID": self.pricelist_id,
            "rentalType": self.rental_type.value,
            "quantity": self.quantity,
            "billableUnits": self.billable_units,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class RentalTotals:
    subtotal: Decimal
    security_deposit: Decimal
    tax: Decimal
    grand_total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "securityDeposit": self.security_deposit,
            "tax": self.tax,
            "total": self.grand_total,
        }


def resolve_pricelist(
    db: Session,
    pricelist_id: int | None = None,
    customer_tier: CustomerTier | str = CustomerTier.REGULAR,
    on: date | None = None,
) -> Pricelist:
    if pricelist_id is not None:
        pricelist = db.get(Pricelist, pricelist_id)
        if not pricelist or not pricelist.IsActive:
            raise RateNotFound(f"Pricelist {pricelist_id} does not exist or is not active.")
        return pricelist

    tier = CustomerTier(customer_tier)
    day = on or date.today()
    stmt = (
        select(Pricelist)
        .where(Pricelist.CustomerTier == tier)
        .where(Pricelist.IsActive.is_(True))
        .where(or_(Pricelist.ValidFrom.is_(None), Pricelist.ValidFrom <= day))
        .where(or_(Pricelist.ValidTo.is_(None), Pricelist.ValidTo >= day))
        .order_by(Pricelist.ValidFrom.desc(), Pricelist.PricelistID.desc())
    )
    pricelist = db.execute(stmt).scalars().first()
    if not pricelist:
        raise RateNotFound(f"No active pricelist for customer tier {tier.value}.")
    return pricelist


def resolve_rate(db: Session, product: Product, pricelist_id: int, rental_type: RentalType | str) -> ResolvedRate:
    rental_type = RentalType(rental_type)
    item = db.execute(
        select(PricelistItem)
        .where(PricelistItem.PricelistID == pricelist_id)
        .where(PricelistItem.ProductID == product.ProductID)
        .where(PricelistItem.RentalType == rental_type)
    ).scalars().first()
    if not item:
        raise RateNotFound(
            f"No {rental_type.value} rate for product {product.ProductID} in pricelist {pricelist_id}."
        )

    minimum_days = item.MinimumDays if item.MinimumDays is not None else product.MinimumRentalDays
    maximum_days = item.MaximumDays if item.MaximumDays is not None else product.MaximumRentalDays
    return ResolvedRate(
        pricelist_id=pricelist_id,
        product_id=product.ProductID,
        rental_type=rental_type,
        price=Decimal(str(item.Price)),
        discount=Decimal(str(item.Discount or 0)),
        discount_type=DiscountType(item.DiscountType or DiscountType.FIXED),
        seasonal_multiplier=Decimal(str(item.SeasonalMultiplier)) if item.SeasonalMultiplier is not None else None,
        currency=(item.Currency or DEFAULT_CURRENCY).upper(),
        minimum_days=minimum_days,
        maximum_days=maximum_days,
    )


def per_unit_price(rate: ResolvedRate) -> Decimal:
    base = rate.price
    if rate.seasonal_multiplier is not None:
        base = base * rate.seasonal_multiplier
    if rate.discount_type == DiscountType.PERCENTAGE:
        discounted = base * (_HUNDRED - rate.discount) / _HUNDRED
    else:
        discounted = base - rate.discount
    return money(max(_ZERO, discounted))


def check_duration_bounds(rate: ResolvedRate, start: datetime, end: datetime) -> int:
    days = rental_days(start, end)
    if rate.minimum_days is not None and days < rate.minimum_days:
        raise DurationOutOfBounds(
            f"Rental of {days} day(s) is shorter than the minimum of {rate.minimum_days} day(s)."
        )
    if rate.maximum_days is not None and days > rate.maximum_days:
        raise DurationOutOfBounds(
            f"Rental of {days} day(s) exceeds the maximum of {rate.maximum_days} day(s)."
        )
    return days


def price_line(rate: ResolvedRate, quantity: int, start: datetime, end: datetime) -> PriceQuote:
    if quantity < 1:
        raise InvalidReservation("quantity must be a positive integer.")
    check_duration_bounds(rate, start, end)
    units = billable_units(start, end, rate.rental_type)
    unit_price = per_unit_price(rate)
    return PriceQuote(
        product_id=rate.product_id,
        pricelist_id=rate.pricelist_id,
        rental_type=rate.rental_type,
        quantity=quantity,
        billable_units=units,
        unit_price=unit_price,
        total_price=money(unit_price * units * quantity),
        currency=rate.currency,
    )


def quote(
    db: Session,
    product_id: int,
    pricelist_id: int,
    rental_type: RentalType | str,
    quantity: int,
    start: datetime,
    end: datetime,
) -> PriceQuote:
    """Price one candidate line. Reads only; nothing is added to the session."""
    product = db.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found.")
    pricelist = resolve_pricelist(db, pricelist_id)
    rate = resolve_rate(db, product, pricelist.PricelistID, rental_type)
    return price_line(rate, quantity, start, end)


def compute_totals(item_totals: Iterable, policy: PricingPolicy = PRICING_POLICY) -> RentalTotals:
    subtotal = money(sum((Decimal(str(value or 0)) for value in item_totals), _ZERO))
    security_deposit = money(subtotal * policy.deposit_rate)
    tax = money(subtotal * policy.tax_rate)
    return RentalTotals(
        subtotal=subtotal,
        security_deposit=security_deposit,
        tax=tax,
        grand_total=money(subtotal + security_deposit + tax),
    )
