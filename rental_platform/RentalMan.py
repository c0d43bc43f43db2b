import logging
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass

from config import LOG_LEVEL, parse_csv_env
from db.deps import get_rental_db
from models.rental_models import FulfillmentStatus
from schemas.cart import Cart
from schemas.rentals import (
    CreateReservationDto,
    InvoiceStatusRequest,
    IssueInvoiceRequest,
    QuoteRequest,
    RecordPaymentRequest,
    StatusTransitionRequest,
    to_naive_utc,
)
from services.availability_service import check_availability
from services.booking_errors import BookingError
from services.booking_service import (
    ReservationLine,
    create_reservation,
    estimate_reservation,
    get_rental as load_rental,
    list_rentals,
    transition_rental,
)
from services.invoice_service import issue_invoice, record_payment, serialize_invoice, set_item_invoice_status
from services.pricing_service import quote
from services.rental_service import serialize_rental

logging.getLogger("rental_platform").setLevel(LOG_LEVEL)
API_LOGGER = logging.getLogger("rental_platform.api")

app = FastAPI()

_CORS_ALLOW_ORIGINS = parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in _CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(BookingError)
def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        API_LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        API_LOGGER.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def _lines_from_dto(payload: CreateReservationDto) -> list[ReservationLine]:
    return [
        ReservationLine(
            product_id=item.productID,
            rental_type=item.rentalType,
            quantity=item.quantity,
            start=item.startDate,
            end=item.endDate,
        )
        for item in payload.rentalItems
    ]


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/products/{product_id}/availability")
def get_product_availability(
    product_id: int,
    start_date: datetime = Query(..., alias="startDate"),
    end_date: datetime = Query(..., alias="endDate"),
    quantity: int = Query(1, alias="quantity", ge=1),
    db: Session = Depends(get_rental_db),
):
    start_date = to_naive_utc(start_date)
    end_date = to_naive_utc(end_date)
    result = check_availability(db, product_id, start_date, end_date, quantity)
    payload = result.to_dict()
    payload.update({"startDate": start_date, "endDate": end_date})
    return payload


@app.post("/api/quote")
def post_quote(payload: QuoteRequest, db: Session = Depends(get_rental_db)):
    result = quote(
        db,
        payload.productID,
        payload.pricelistID,
        payload.rentalType,
        payload.quantity,
        payload.startDate,
        payload.endDate,
    )
    return result.to_dict()


@app.get("/api/rentals")
def get_rentals(
    status: FulfillmentStatus | None = Query(None),
    customer_id: int | None = Query(None, alias="customerID"),
    db: Session = Depends(get_rental_db),
):
    return [serialize_rental(rental) for rental in list_rentals(db, status=status, customer_id=customer_id)]


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: int, db: Session = Depends(get_rental_db)):
    return serialize_rental(load_rental(db, rental_id))


@app.post("/api/rentals", status_code=201)
def create_rental(payload: CreateReservationDto, db: Session = Depends(get_rental_db)):
    rental = create_reservation(
        db,
        customer_id=payload.customerID,
        items=_lines_from_dto(payload),
        pricelist_id=payload.pricelistID,
        customer_tier=payload.customerTier,
        status=payload.status,
        notes=payload.notes,
        user_id=payload.customerID,
    )
    return serialize_rental(load_rental(db, rental.RentalID))


@app.post("/api/rentals/{rental_id}/status")
def change_rental_status(rental_id: int, payload: StatusTransitionRequest, db: Session = Depends(get_rental_db)):
    transition_rental(db, rental_id, payload.status, user_id=payload.operatorUserID)
    return serialize_rental(load_rental(db, rental_id))


@app.post("/api/rentals/{rental_id}/items/{rental_item_id}/invoice-status")
def change_item_invoice_status(
    rental_id: int,
    rental_item_id: int,
    payload: InvoiceStatusRequest,
    db: Session = Depends(get_rental_db),
):
    set_item_invoice_status(db, rental_id, rental_item_id, payload.invoiceStatus, user_id=payload.operatorUserID)
    return serialize_rental(load_rental(db, rental_id))


@app.post("/api/rentals/{rental_id}/invoices", status_code=201)
def create_invoice(rental_id: int, payload: IssueInvoiceRequest, db: Session = Depends(get_rental_db)):
    invoice = issue_invoice(db, rental_id, item_ids=payload.rentalItemIDs, user_id=payload.operatorUserID)
    return serialize_invoice(invoice)


@app.post("/api/invoices/{invoice_id}/payments")
def add_invoice_payment(invoice_id: int, payload: RecordPaymentRequest, db: Session = Depends(get_rental_db)):
    invoice = record_payment(
        db,
        invoice_id,
        payload.amount,
        payload.method,
        transaction_ref=payload.transactionRef,
        user_id=payload.operatorUserID,
    )
    return serialize_invoice(invoice)


@app.post("/api/cart/estimate")
def estimate_cart(cart: Cart, db: Session = Depends(get_rental_db)):
    quotes, totals = estimate_reservation(
        db,
        cart.reservation_items(),
        pricelist_id=cart.pricelistID,
        customer_tier=cart.customerTier,
    )
    payload = totals.to_dict()
    payload["currency"] = quotes[0].currency
    payload["lines"] = [line.to_dict() for line in quotes]
    return payload


@app.post("/api/cart/checkout", status_code=201)
def checkout_cart(cart: Cart, db: Session = Depends(get_rental_db)):
    if cart.customerID is None:
        raise HTTPException(status_code=400, detail="customerID is required to check out a cart.")
    rental = create_reservation(
        db,
        customer_id=cart.customerID,
        items=cart.reservation_items(),
        pricelist_id=cart.pricelistID,
        customer_tier=cart.customerTier,
        status=FulfillmentStatus.RESERVED,
        user_id=cart.customerID,
    )
    API_LOGGER.info("cart checked out as %s", rental.RentalNumber)
    return serialize_rental(load_rental(db, rental.RentalID))
