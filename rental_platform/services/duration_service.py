from __future__ import annotations

import math
from datetime import datetime, timedelta

from models.rental_models import RentalType
from services.booking_errors import InvalidRentalWindow

_ONE_DAY = timedelta(days=1)

# Whole days per billing period. Partial periods always round up to a full one.
_DAYS_PER_PERIOD = {
    RentalType.DAILY: 1,
    RentalType.WEEKLY: 7,
    RentalType.MONTHLY: 30,
    RentalType.YEARLY: 365,
}


def validate_window(start: datetime, end: datetime) -> None:
    if start is None or end is None:
        raise InvalidRentalWindow("startDate and endDate are required.")
    if end <= start:
        raise InvalidRentalWindow("endDate must be strictly after startDate.")


def rental_days(start: datetime, end: datetime) -> int:
    validate_window(start, end)
    return max(1, math.ceil((end - start) / _ONE_DAY))


def billable_units(start: datetime, end: datetime, rental_type: RentalType | str) -> int:
    rental_type = RentalType(rental_type)
    days = rental_days(start, end)
    if rental_type == RentalType.HOURLY:
        return days * 24
    return math.ceil(days / _DAYS_PER_PERIOD[rental_type])
