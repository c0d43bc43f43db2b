from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class RentalType(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class FulfillmentStatus(str, Enum):
    QUOTATION = "QUOTATION"
    QUOTATION_SENT = "QUOTATION_SENT"
    RESERVED = "RESERVED"
    PICKED_UP = "PICKED_UP"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    NOTHING_TO_INVOICE = "NOTHING_TO_INVOICE"
    TO_INVOICE = "TO_INVOICE"
    FULLY_INVOICED = "FULLY_INVOICED"


class CustomerTier(str, Enum):
    REGULAR = "REGULAR"
    VIP = "VIP"
    CORPORATE = "CORPORATE"


class DiscountType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class InvoiceDocumentStatus(str, Enum):
    SENT = "SENT"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    CHECK = "CHECK"
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"


@dataclass(frozen=True)
class ReservationLine:
    product_id: int
    rental_type: RentalType
    quantity: int
    start: datetime
    end: datetime


def rollup_invoice_status(statuses) -> InvoiceStatus:
    values = [InvoiceStatus(status) for status in statuses]
    if values and all(value == InvoiceStatus.FULLY_INVOICED for value in values):
        return InvoiceStatus.FULLY_INVOICED
    if all(value == InvoiceStatus.NOTHING_TO_INVOICE for value in values):
        return InvoiceStatus.NOTHING_TO_INVOICE
    return InvoiceStatus.TO_INVOICE


def _enum_column(enum_cls, **kwargs) -> Column:
    return Column(SAEnum(enum_cls, native_enum=False, length=30, validate_strings=True), **kwargs)


class Product(Base):
    __tablename__ = "Products"
    __table_args__ = (CheckConstraint("TotalQuantity >= 0", name="ck_products_total_quantity"),)

    ProductID = Column(Integer, primary_key=True)
    ProductName = Column(String(255), nullable=False)
    SKU = Column(String(100))
    TotalQuantity = Column(Integer, nullable=False, default=0)
    MinimumRentalDays = Column(Integer)
    MaximumRentalDays = Column(Integer)
    IsRentable = Column(Boolean, default=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    PricelistItems = relationship("PricelistItem", back_populates="Product")
    RentalItems = relationship("RentalItem", back_populates="Product")


class Pricelist(Base):
    __tablename__ = "Pricelists"

    PricelistID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    CustomerTier = _enum_column(CustomerTier, nullable=False, default=CustomerTier.REGULAR)
    IsActive = Column(Boolean, default=True)
    ValidFrom = Column(Date)
    ValidTo = Column(Date)
    CreatedDate = Column(DateTime, server_default=func.now())

    Items = relationship("PricelistItem", back_populates="Pricelist", cascade="all, delete-orphan")


class PricelistItem(Base):
    __tablename__ = "PricelistItems"
    __table_args__ = (
        UniqueConstraint("PricelistID", "ProductID", "RentalType", name="uq_pricelist_product_type"),
    )

    PricelistItemID = Column(Integer, primary_key=True)
    PricelistID = Column(Integer, ForeignKey("Pricelists.PricelistID"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    RentalType = _enum_column(RentalType, nullable=False)
    Price = Column(Numeric(12, 2), nullable=False)
    Currency = Column(String(3), nullable=False, default="USD")
    Discount = Column(Numeric(12, 2), default=0)
    DiscountType = _enum_column(DiscountType, nullable=False, default=DiscountType.FIXED)
    SeasonalMultiplier = Column(Numeric(6, 3))
    MinimumDays = Column(Integer)
    MaximumDays = Column(Integer)

    Pricelist = relationship("Pricelist", back_populates="Items")
    Product = relationship("Product", back_populates="PricelistItems")


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    RentalNumber = Column(String(50), nullable=False)
    CustomerID = Column(Integer, nullable=False)
    PricelistID = Column(Integer, ForeignKey("Pricelists.PricelistID"))
    FulfillmentStatus = _enum_column(FulfillmentStatus, nullable=False, default=FulfillmentStatus.QUOTATION)
    Currency = Column(String(3))
    Subtotal = Column(Numeric(12, 2), default=0)
    Tax = Column(Numeric(12, 2), default=0)
    SecurityDeposit = Column(Numeric(12, 2), default=0)
    Total = Column(Numeric(12, 2), default=0)
    Notes = Column(String(1000))
    PickedUpAt = Column(DateTime)
    ReturnedAt = Column(DateTime)
    CancelledAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    RentalItems = relationship(
        "RentalItem",
        back_populates="Rental",
        cascade="all, delete-orphan",
        order_by="RentalItem.RentalItemID",
    )
    Invoices = relationship("Invoice", back_populates="Rental", cascade="all, delete-orphan")

    @property
    def InvoiceStatus(self) -> InvoiceStatus:
        # Derived from the items on every read; there is no column behind it.
        return rollup_invoice_status(item.InvoiceStatus for item in self.RentalItems)


class RentalItem(Base):
    __tablename__ = "RentalItems"
    __table_args__ = (
        CheckConstraint("Quantity > 0", name="ck_rental_items_quantity"),
        CheckConstraint("EndDate > StartDate", name="ck_rental_items_window"),
        Index("ix_rental_items_product_window", "ProductID", "StartDate", "EndDate"),
    )

    RentalItemID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID", ondelete="CASCADE"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    InvoiceID = Column(Integer, ForeignKey("Invoices.InvoiceID"))
    Quantity = Column(Integer, nullable=False)
    RentalType = _enum_column(RentalType, nullable=False)
    StartDate = Column(DateTime, nullable=False)
    EndDate = Column(DateTime, nullable=False)
    BillableUnits = Column(Integer, nullable=False)
    UnitPrice = Column(Numeric(12, 2), nullable=False)
    TotalPrice = Column(Numeric(12, 2), nullable=False)
    Currency = Column(String(3), nullable=False)
    InvoiceStatus = _enum_column(InvoiceStatus, nullable=False, default=InvoiceStatus.NOTHING_TO_INVOICE)

    Rental = relationship("Rental", back_populates="RentalItems")
    Product = relationship("Product", back_populates="RentalItems")
    Invoice = relationship("Invoice", back_populates="RentalItems")


class Invoice(Base):
    __tablename__ = "Invoices"

    InvoiceID = Column(Integer, primary_key=True)
    InvoiceNumber = Column(String(50), unique=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID", ondelete="CASCADE"), nullable=False)
    Amount = Column(Numeric(12, 2), nullable=False)
    Tax = Column(Numeric(12, 2), nullable=False)
    Total = Column(Numeric(12, 2), nullable=False)
    Currency = Column(String(3), nullable=False)
    Status = _enum_column(InvoiceDocumentStatus, nullable=False, default=InvoiceDocumentStatus.SENT)
    DueDate = Column(Date)
    IssuedAt = Column(DateTime)
    PaidAt = Column(DateTime)

    Rental = relationship("Rental", back_populates="Invoices")
    RentalItems = relationship("RentalItem", back_populates="Invoice")
    Payments = relationship("Payment", back_populates="Invoice", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "Payments"

    PaymentID = Column(Integer, primary_key=True)
    InvoiceID = Column(Integer, ForeignKey("Invoices.InvoiceID", ondelete="CASCADE"), nullable=False)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    Amount = Column(Numeric(12, 2), nullable=False)
    Method = _enum_column(PaymentMethod, nullable=False)
    TransactionRef = Column(String(200))
    CreatedAt = Column(DateTime, server_default=func.now())

    Invoice = relationship("Invoice", back_populates="Payments")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
