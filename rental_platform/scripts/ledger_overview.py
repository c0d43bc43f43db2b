#!/usr/bin/env python3
"""Row counts and ledger integrity checks for the rental platform database."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, selectinload

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from config import PRICING_POLICY  # noqa: E402
from models.rental_models import Product, Rental, RentalItem  # noqa: E402
from services.availability_service import COMMITTING_STATES, peak_committed  # noqa: E402
from services.pricing_service import compute_totals  # noqa: E402

EXPECTED_TABLES = [
    "Products",
    "Pricelists",
    "PricelistItems",
    "Rentals",
    "RentalItems",
    "Invoices",
    "Payments",
    "AuditLogs",
]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


def check_capacity(db: Session) -> list[CheckResult]:
    """Peak held quantity per product over the span of its committing items."""
    results: list[CheckResult] = []
    spans = db.execute(
        select(RentalItem.ProductID, func.min(RentalItem.StartDate), func.max(RentalItem.EndDate))
        .join(Rental, Rental.RentalID == RentalItem.RentalID)
        .where(Rental.FulfillmentStatus.in_(COMMITTING_STATES))
        .group_by(RentalItem.ProductID)
    ).all()
    for product_id, first_start, last_end in spans:
        product = db.get(Product, product_id)
        total = int(product.TotalQuantity or 0) if product else 0
        peak = peak_committed(db, product_id, first_start, last_end)
        results.append(
            CheckResult(
                f"capacity:product:{product_id}",
                peak <= total,
                f"peak={peak} total={total}",
            )
        )
    return results


def check_totals(db: Session) -> list[CheckResult]:
    results: list[CheckResult] = []
    rentals = db.execute(select(Rental).options(selectinload(Rental.RentalItems))).scalars().all()
    for rental in rentals:
        expected = compute_totals((item.TotalPrice for item in rental.RentalItems), PRICING_POLICY)
        stored = Decimal(str(rental.Total or 0))
        results.append(
            CheckResult(
                f"totals:{rental.RentalNumber}",
                stored == expected.grand_total,
                f"stored={stored} expected={expected.grand_total}",
            )
        )
    return results


def _print_row_counts(engine: Engine, db: Session) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = db.execute(select(func.count()).select_from(Rental.metadata.tables[table])).scalar()
        print(f"{table}: {int(count or 0)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Rental platform ledger overview")
    parser.add_argument("--db-url", default=os.environ.get("RENTAL_PLATFORM_DB_URL", ""))
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("RENTAL_PLATFORM_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = create_engine(db_url, pool_pre_ping=True, future=True)
        with engine.connect():
            pass
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    existence = _run_existence_checks(engine)
    _print_results("Table Existence", existence)
    if not all(row.ok for row in existence):
        return 1

    with Session(engine) as db:
        capacity = check_capacity(db)
        totals = check_totals(db)
        _print_results("Capacity Checks", capacity)
        _print_results("Totals Checks", totals)
        _print_row_counts(engine, db)
    return 0 if all(row.ok for row in capacity + totals) else 1


if __name__ == "__main__":
    sys.exit(main())
