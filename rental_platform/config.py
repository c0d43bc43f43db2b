from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


def _env_decimal(name: str, default: str) -> Decimal:
    raw = (os.environ.get(name) or default).strip()
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise RuntimeError(f"{name} must be a decimal number, got {raw!r}") from exc
    if value < 0:
        raise RuntimeError(f"{name} must not be negative")
    return value


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name) or default)


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name) or default)


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


@dataclass(frozen=True)
class PricingPolicy:
    deposit_rate: Decimal
    tax_rate: Decimal


PRICING_POLICY = PricingPolicy(
    deposit_rate=_env_decimal("RENTAL_DEPOSIT_RATE", "0.20"),
    tax_rate=_env_decimal("RENTAL_TAX_RATE", "0.08"),
)

BOOKING_MAX_ATTEMPTS = max(1, _env_int("RENTAL_BOOKING_MAX_ATTEMPTS", "3"))
BOOKING_RETRY_BACKOFF_SECONDS = max(0.0, _env_float("RENTAL_BOOKING_RETRY_BACKOFF_SECONDS", "0.05"))
DEFAULT_CURRENCY = (os.environ.get("RENTAL_DEFAULT_CURRENCY") or "USD").strip().upper()
INVOICE_DUE_DAYS = _env_int("RENTAL_INVOICE_DUE_DAYS", "14")
LOG_LEVEL = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
