from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from config import INVOICE_DUE_DAYS, PRICING_POLICY, PricingPolicy
from models.rental_models import (
    FulfillmentStatus,
    Invoice,
    InvoiceDocumentStatus,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    Rental,
    RentalItem,
)
from services.booking_errors import IllegalTransition, InvalidPayment, InvoiceNotFound, RentalNotFound
from services.pricing_service import compute_totals, money
from services.rental_service import QUOTATION_STATES, log_audit

INVOICING_LOGGER = logging.getLogger("rental_platform.invoicing")

INVOICE_STATUS_TRANSITIONS = {
    InvoiceStatus.NOTHING_TO_INVOICE: {InvoiceStatus.TO_INVOICE},
    InvoiceStatus.TO_INVOICE: {InvoiceStatus.FULLY_INVOICED, InvoiceStatus.NOTHING_TO_INVOICE},
    InvoiceStatus.FULLY_INVOICED: {InvoiceStatus.TO_INVOICE, InvoiceStatus.NOTHING_TO_INVOICE},
}


def _load_rental(db: Session, rental_id: int) -> Rental:
    rental = db.execute(
        select(Rental)
        .options(selectinload(Rental.RentalItems))
        .where(Rental.RentalID == rental_id)
    ).scalars().first()
    if not rental:
        raise RentalNotFound(f"Rental {rental_id} not found.")
    return rental


def _move_item(item: RentalItem, target: InvoiceStatus) -> None:
    current = InvoiceStatus(item.InvoiceStatus)
    if target not in INVOICE_STATUS_TRANSITIONS[current]:
        raise IllegalTransition(f"Invalid invoice status transition: {current.value} -> {target.value}")
    item.InvoiceStatus = target


def set_item_invoice_status(
    db: Session,
    rental_id: int,
    rental_item_id: int,
    new_status: InvoiceStatus | str,
    user_id: int | None = None,
) -> Rental:
    target = InvoiceStatus(new_status)
    rental = _load_rental(db, rental_id)
    item = next((line for line in rental.RentalItems if line.RentalItemID == rental_item_id), None)
    if not item:
        raise RentalNotFound(f"Rental item {rental_item_id} not found on rental {rental_id}.")

    previous = InvoiceStatus(item.InvoiceStatus)
    try:
        _move_item(item, target)
        log_audit(
            db,
            "RentalItem",
            item.RentalItemID,
            "InvoiceStatus",
            f"{previous.value} -> {target.value}",
            user_id=user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    INVOICING_LOGGER.info("rental item %s invoice status %s -> %s", item.RentalItemID, previous.value, target.value)
    return rental


def issue_invoice(
    db: Session,
    rental_id: int,
    item_ids: list[int] | None = None,
    user_id: int | None = None,
    policy: PricingPolicy = PRICING_POLICY,
    now: datetime | None = None,
) -> Invoice:
    """Bill rental items and move them from NOTHING_TO_INVOICE to TO_INVOICE."""
    try:
        rental = _load_rental(db, rental_id)
        status = FulfillmentStatus(rental.FulfillmentStatus)
        if status in QUOTATION_STATES or status == FulfillmentStatus.CANCELLED:
            raise IllegalTransition(f"Rental {rental.RentalNumber} is {status.value} and cannot be invoiced.")

        if item_ids is None:
            items = [item for item in rental.RentalItems if item.InvoiceStatus == InvoiceStatus.NOTHING_TO_INVOICE]
        else:
            wanted = set(item_ids)
            items = [item for item in rental.RentalItems if item.RentalItemID in wanted]
            missing = wanted - {item.RentalItemID for item in items}
            if missing:
                raise RentalNotFound(f"Rental items {sorted(missing)} not found on rental {rental_id}.")
        if not items:
            raise IllegalTransition(f"Rental {rental.RentalNumber} has nothing left to invoice.")

        for item in items:
            _move_item(item, InvoiceStatus.TO_INVOICE)

        issued_at = now or datetime.now()
        totals = compute_totals((item.TotalPrice for item in items), policy)
        invoice = Invoice(
            RentalID=rental.RentalID,
            Amount=totals.subtotal,
            Tax=totals.tax,
            Total=money(totals.subtotal + totals.tax),
            Currency=rental.Currency or items[0].Currency,
            Status=InvoiceDocumentStatus.SENT,
            DueDate=(issued_at + timedelta(days=INVOICE_DUE_DAYS)).date(),
            IssuedAt=issued_at,
        )
        invoice.RentalItems.extend(items)
        db.add(invoice)
        db.flush()
        invoice.InvoiceNumber = f"INV-{issued_at.year}-{invoice.InvoiceID:05d}"
        db.flush()
        log_audit(
            db,
            "Invoice",
            invoice.InvoiceID,
            "IssueInvoice",
            f"{invoice.InvoiceNumber} for rental {rental.RentalNumber}: items={[item.RentalItemID for item in items]}",
            user_id=user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    INVOICING_LOGGER.info("issued %s total=%s %s", invoice.InvoiceNumber, invoice.Total, invoice.Currency)
    return invoice


def record_payment(
    db: Session,
    invoice_id: int,
    amount,
    method: PaymentMethod | str,
    transaction_ref: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Store a successful payment; a fully paid invoice marks its items FULLY_INVOICED."""
    amount = money(amount)
    if amount <= 0:
        raise InvalidPayment("Payment amount must be positive.")
    try:
        invoice = db.execute(
            select(Invoice)
            .options(selectinload(Invoice.RentalItems), selectinload(Invoice.Payments))
            .where(Invoice.InvoiceID == invoice_id)
        ).scalars().first()
        if not invoice:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found.")
        if invoice.Status == InvoiceDocumentStatus.PAID:
            raise IllegalTransition(f"Invoice {invoice.InvoiceNumber} is already paid.")

        payment = Payment(
            InvoiceID=invoice.InvoiceID,
            RentalID=invoice.RentalID,
            Amount=amount,
            Method=PaymentMethod(method),
            TransactionRef=transaction_ref,
            CreatedAt=now or datetime.now(),
        )
        invoice.Payments.append(payment)

        paid = sum((Decimal(str(entry.Amount)) for entry in invoice.Payments), Decimal("0"))
        if paid >= Decimal(str(invoice.Total)):
            invoice.Status = InvoiceDocumentStatus.PAID
            invoice.PaidAt = payment.CreatedAt
            for item in invoice.RentalItems:
                if item.InvoiceStatus == InvoiceStatus.TO_INVOICE:
                    _move_item(item, InvoiceStatus.FULLY_INVOICED)

        log_audit(
            db,
            "Invoice",
            invoice.InvoiceID,
            "RecordPayment",
            f"{amount} via {PaymentMethod(method).value}; paid={paid} of {invoice.Total}",
            user_id=user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    INVOICING_LOGGER.info("payment on %s amount=%s status=%s", invoice.InvoiceNumber, amount, invoice.Status.value)
    return invoice


def serialize_invoice(invoice: Invoice) -> dict:
    paid = sum((Decimal(str(entry.Amount)) for entry in invoice.Payments), Decimal("0"))
    return {
        "invoiceID": invoice.InvoiceID,
        "invoiceNumber": invoice.InvoiceNumber,
        "rentalID": invoice.RentalID,
        "amount": invoice.Amount,
        "tax": invoice.Tax,
        "total": invoice.Total,
        "currency": invoice.Currency,
        "status": invoice.Status.value,
        "dueDate": invoice.DueDate,
        "issuedAt": invoice.IssuedAt,
        "paidAt": invoice.PaidAt,
        "paidAmount": money(paid),
        "rentalItemIDs": [item.RentalItemID for item in invoice.RentalItems],
    }
