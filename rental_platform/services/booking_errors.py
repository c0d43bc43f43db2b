from __future__ import annotations


class BookingError(Exception):
    """Base class for every failure the reservation core reports to callers."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"detail": self.message, "code": self.code}


class InvalidReservation(BookingError):
    code = "invalid_reservation"
    status_code = 400


class InvalidRentalWindow(InvalidReservation):
    code = "invalid_window"


class InvalidPayment(BookingError):
    code = "invalid_payment"
    status_code = 400


class ProductNotFound(BookingError):
    code = "product_not_found"
    status_code = 404


class RentalNotFound(BookingError):
    code = "rental_not_found"
    status_code = 404


class InvoiceNotFound(BookingError):
    code = "invoice_not_found"
    status_code = 404


class InsufficientAvailability(BookingError):
    code = "insufficient_availability"
    status_code = 409

    def __init__(self, product_id: int, requested: int, free_units: int):
        super().__init__(
            f"Product {product_id}: requested {requested} unit(s) but only {free_units} free for the window."
        )
        self.product_id = product_id
        self.requested = requested
        self.free_units = free_units

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload.update(
            {
                "productID": self.product_id,
                "requested": self.requested,
                "freeUnits": self.free_units,
            }
        )
        return payload


class IllegalTransition(BookingError):
    code = "illegal_transition"
    status_code = 409


class RateNotFound(BookingError):
    code = "rate_not_found"
    status_code = 422


class DurationOutOfBounds(BookingError):
    code = "duration_out_of_bounds"
    status_code = 422


class MixedCurrency(BookingError):
    code = "mixed_currency"
    status_code = 422


class Conflict(BookingError):
    code = "conflict"
    status_code = 503
