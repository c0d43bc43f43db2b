#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from config import DEFAULT_CURRENCY  # noqa: E402
from db.base import Base  # noqa: E402
from models.rental_models import CustomerTier, DiscountType, Pricelist, PricelistItem, Product, RentalType  # noqa: E402


def _decimal_arg(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a decimal number: {raw!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create tables and create/update one product with a pricelist rate.",
    )
    parser.add_argument("--sku", required=True, help="Product SKU; the upsert key")
    parser.add_argument("--name", required=True, help="ProductName")
    parser.add_argument("--total-quantity", type=int, required=True, help="Units owned (TotalQuantity)")
    parser.add_argument("--min-days", type=int, default=None, help="Product MinimumRentalDays")
    parser.add_argument("--max-days", type=int, default=None, help="Product MaximumRentalDays")
    parser.add_argument("--pricelist", default="Standard", help="Pricelist name; created when missing")
    parser.add_argument("--tier", choices=[tier.value for tier in CustomerTier], default=CustomerTier.REGULAR.value)
    parser.add_argument("--rental-type", choices=[kind.value for kind in RentalType], default=RentalType.DAILY.value)
    parser.add_argument("--price", type=_decimal_arg, required=True, help="Base price per billable unit")
    parser.add_argument("--currency", default=DEFAULT_CURRENCY)
    parser.add_argument("--discount", type=_decimal_arg, default=Decimal("0"))
    parser.add_argument(
        "--discount-type",
        choices=[kind.value for kind in DiscountType],
        default=DiscountType.FIXED.value,
    )
    parser.add_argument("--seasonal-multiplier", type=_decimal_arg, default=None)
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_PLATFORM_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_PLATFORM_DB_URL env var.",
    )
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_PLATFORM_DB_URL or pass --db-url.")
    if args.total_quantity < 0:
        parser.error("--total-quantity must be >= 0")
    if len(args.currency.strip()) != 3:
        parser.error("--currency must be a 3-letter code.")
    if args.discount_type == DiscountType.PERCENTAGE.value and args.discount > 100:
        parser.error("--discount must be <= 100 for PERCENTAGE discounts.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    Base.metadata.create_all(bind=engine)

    with Session(engine) as db:
        product = db.execute(select(Product).where(Product.SKU == args.sku)).scalars().first()
        if not product:
            product = Product(SKU=args.sku, ProductName=args.name, TotalQuantity=args.total_quantity)
            db.add(product)
        product.ProductName = args.name
        product.TotalQuantity = args.total_quantity
        product.MinimumRentalDays = args.min_days
        product.MaximumRentalDays = args.max_days
        product.IsRentable = True

        pricelist = db.execute(select(Pricelist).where(Pricelist.Name == args.pricelist)).scalars().first()
        if not pricelist:
            pricelist = Pricelist(Name=args.pricelist, CustomerTier=CustomerTier(args.tier), IsActive=True)
            db.add(pricelist)
        db.flush()

        rental_type = RentalType(args.rental_type)
        rate = db.execute(
            select(PricelistItem)
            .where(PricelistItem.PricelistID == pricelist.PricelistID)
            .where(PricelistItem.ProductID == product.ProductID)
            .where(PricelistItem.RentalType == rental_type)
        ).scalars().first()
        if not rate:
            rate = PricelistItem(PricelistID=pricelist.PricelistID, ProductID=product.ProductID, RentalType=rental_type)
            db.add(rate)
        rate.Price = args.price
        rate.Currency = args.currency.strip().upper()
        rate.Discount = args.discount
        rate.DiscountType = DiscountType(args.discount_type)
        rate.SeasonalMultiplier = args.seasonal_multiplier
        db.commit()

        print(
            f"OK product_id={product.ProductID} sku={product.SKU} total_quantity={product.TotalQuantity} "
            f"pricelist_id={pricelist.PricelistID} rate={rate.RentalType.value}:{rate.Price} {rate.Currency}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
