from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')
Quantity = Numeric(14, 3)
Money = Numeric(14, 2)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    RECEIVED = 'RECEIVED'
    CANCELLED = 'CANCELLED'


class SalesOrderStatus(str, Enum):
    DRAFT = 'DRAFT'
    CONFIRMED = 'CONFIRMED'
    SHIPPED = 'SHIPPED'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'
    IN_PAYMENT = 'IN_PAYMENT'
    PAID = 'PAID'


class OrderProgress(IntEnum):
    NEW = 0
    APPROVED = 1
    IN_TRANSIT = 2
    COMPLETE = 3
    CANCELLED = 4
    DECLINED = 5


class DeliveryNoteStatus(str, Enum):
    PENDING = 'PENDING'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'


class DeliveryProgress(IntEnum):
    DRAFT = 0
    PREPARED = 1
    IN_TRANSIT = 2
    DELIVERED = 3
    CANCELLED = 4


class InvoiceStatus(str, Enum):
    OPEN = 'OPEN'
    PARTIALLY_PAID = 'PARTIALLY_PAID'
    PAID = 'PAID'


class TaxType(str, Enum):
    VAT_16 = 'VAT_16'
    ZERO_RATED = 'ZERO_RATED'
    EXEMPTED = 'EXEMPTED'


class PricingMode(str, Enum):
    EXCLUSIVE = 'EXCLUSIVE'
    INCLUSIVE = 'INCLUSIVE'


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit_of_measure: Mapped[str] = mapped_column(String(32), nullable=False, default='each', server_default='each')
    cost_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    selling_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    reorder_level: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Rider(Base):
    __tablename__ = 'riders'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact: Mapped[str] = mapped_column(Text, nullable=False)
    id_number: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryLine(Base):
    __tablename__ = 'inventory_lines'

    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), primary_key=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())

    __mapper_args__ = {'version_id_col': version}


class InventoryTransaction(Base):
    __tablename__ = 'inventory_transactions'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False, index=True)
    delta: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    quantity_after: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(64))
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    actor_id: Mapped[int | None] = mapped_column(BigInteger)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryOpeningBalance(Base):
    __tablename__ = 'inventory_opening_balances'
    __table_args__ = (
        UniqueConstraint('store_id', 'product_id', name='inventory_opening_balances_store_product_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    opening_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    actor_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('suppliers.id'), nullable=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    pricing_mode: Mapped[PricingMode] = mapped_column(SQLEnum(PricingMode, name='pricing_mode'), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrderItem(Base):
    __tablename__ = 'purchase_order_items'
    __table_args__ = (
        UniqueConstraint('purchase_order_id', 'product_id', name='purchase_order_items_order_product_uniq'),
        CheckConstraint(
            'received_quantity >= 0 AND received_quantity <= quantity',
            name='purchase_order_items_received_within_ordered',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_type: Mapped[TaxType] = mapped_column(SQLEnum(TaxType, name='tax_type'), nullable=False, default=TaxType.VAT_16)
    net_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    received_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')


class InventoryReceipt(Base):
    __tablename__ = 'inventory_receipts'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'), nullable=False, index=True)
    purchase_order_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_order_items.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    received_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    notes: Mapped[str | None] = mapped_column(Text)


class SalesOrder(Base):
    __tablename__ = 'sales_orders'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    so_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[SalesOrderStatus] = mapped_column(
        SQLEnum(SalesOrderStatus, name='sales_order_status'),
        nullable=False,
        default=SalesOrderStatus.DRAFT,
        server_default='DRAFT',
    )
    my_status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(OrderProgress.NEW), server_default='0')
    pricing_mode: Mapped[PricingMode] = mapped_column(SQLEnum(PricingMode, name='pricing_mode'), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    rider_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('riders.id'))
    partially_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    stock_reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesOrderItem(Base):
    __tablename__ = 'sales_order_items'
    __table_args__ = (
        CheckConstraint(
            'shipped_quantity >= 0 AND shipped_quantity <= quantity',
            name='sales_order_items_shipped_within_ordered',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sales_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_type: Mapped[TaxType] = mapped_column(SQLEnum(TaxType, name='tax_type'), nullable=False, default=TaxType.VAT_16)
    net_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    shipped_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')


class DeliveryNote(Base):
    __tablename__ = 'delivery_notes'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    dn_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    sales_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sales_orders.id'), nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[DeliveryNoteStatus] = mapped_column(
        SQLEnum(DeliveryNoteStatus, name='delivery_note_status'),
        nullable=False,
        default=DeliveryNoteStatus.PENDING,
        server_default='PENDING',
    )
    my_status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(DeliveryProgress.PREPARED), server_default='1')
    rider_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('riders.id'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DeliveryNoteItem(Base):
    __tablename__ = 'delivery_note_items'
    __table_args__ = (
        CheckConstraint(
            'delivered_quantity >= 0 AND delivered_quantity <= quantity',
            name='delivery_note_items_delivered_within_planned',
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    delivery_note_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('delivery_notes.id', ondelete='CASCADE'), nullable=False)
    sales_order_item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sales_order_items.id'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    delivered_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')


class Invoice(Base):
    __tablename__ = 'invoices'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    sales_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sales_orders.id'), nullable=False, unique=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name='invoice_status'),
        nullable=False,
        default=InvoiceStatus.OPEN,
        server_default='OPEN',
    )
    pricing_mode: Mapped[PricingMode] = mapped_column(SQLEnum(PricingMode, name='pricing_mode'), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InvoiceItem(Base):
    __tablename__ = 'invoice_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_type: Mapped[TaxType] = mapped_column(SQLEnum(TaxType, name='tax_type'), nullable=False)
    net_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)


class InvoicePayment(Base):
    __tablename__ = 'invoice_payments'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)


class CreditNote(Base):
    __tablename__ = 'credit_notes'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    credit_note_number: Mapped[str | None] = mapped_column(String(32), unique=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    original_invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id'), nullable=False)
    credit_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'))
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CreditNoteItem(Base):
    __tablename__ = 'credit_note_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    credit_note_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('credit_notes.id', ondelete='CASCADE'), nullable=False)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)


class StockTake(Base):
    __tablename__ = 'stock_takes'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False, index=True)
    staff_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class StockTakeItem(Base):
    __tablename__ = 'stock_take_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    stock_take_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stock_takes.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    system_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    counted_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    diff: Mapped[Decimal] = mapped_column(Quantity, nullable=False)


class StockTransfer(Base):
    __tablename__ = 'stock_transfers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    reference: Mapped[str | None] = mapped_column(Text)
    from_store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    to_store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    staff_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockTransferItem(Base):
    __tablename__ = 'stock_transfer_items'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    stock_transfer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stock_transfers.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
