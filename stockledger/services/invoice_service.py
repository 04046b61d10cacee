from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.errors import InvalidStateTransition, NotFound, ValidationError
from stockledger.models import (
    Invoice,
    InvoiceItem,
    InvoicePayment,
    InvoiceStatus,
    OrderProgress,
    SalesOrderStatus,
)
from stockledger.services import sales_order_service
from stockledger.services.inventory_service import parse_quantity, to_quantity

logger = logging.getLogger(__name__)

INVOICEABLE_STATUSES = {
    SalesOrderStatus.DRAFT,
    SalesOrderStatus.CONFIRMED,
    SalesOrderStatus.SHIPPED,
    SalesOrderStatus.DELIVERED,
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _get_invoice(db: Session, invoice_id: int, *, for_update: bool = False) -> Invoice:
    query = select(Invoice).where(Invoice.id == invoice_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    invoice = db.execute(query).scalar_one_or_none()
    if invoice is None:
        raise NotFound('Invoice not found', invoice_id=invoice_id)
    return invoice


def convert_to_invoice(
    db: Session,
    *,
    sales_order_id: int,
    actor_id: int,
    invoice_date: date,
    due_date: date | None = None,
) -> Invoice:
    """Bill a sales order. Financial only; inventory is never touched here."""
    order = sales_order_service.get_order(db, sales_order_id, for_update=True)
    if order.status not in INVOICEABLE_STATUSES or order.my_status in (OrderProgress.CANCELLED, OrderProgress.DECLINED):
        raise InvalidStateTransition(
            'This sales order cannot be invoiced',
            sales_order_id=order.id,
            status=order.status.value,
            my_status=order.my_status,
        )
    existing = db.execute(select(Invoice.id).where(Invoice.sales_order_id == order.id)).scalar_one_or_none()
    if existing is not None:
        raise InvalidStateTransition('Sales order is already invoiced', sales_order_id=order.id, invoice_id=existing)
    if due_date is not None and due_date < invoice_date:
        raise ValidationError('Due date cannot be before the invoice date')

    invoice = Invoice(
        sales_order_id=order.id,
        customer_id=order.customer_id,
        invoice_date=invoice_date,
        due_date=due_date,
        status=InvoiceStatus.OPEN,
        pricing_mode=order.pricing_mode,
        subtotal=order.subtotal,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
        amount_paid=Decimal('0.00'),
        created_by=actor_id,
    )
    db.add(invoice)
    db.flush()
    invoice.invoice_number = f'INV-{invoice.id:06d}'
    for item in sales_order_service.get_order_items(db, order.id):
        db.add(
            InvoiceItem(
                invoice_id=invoice.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                tax_type=item.tax_type,
                net_price=item.net_price,
                tax_amount=item.tax_amount,
                total_price=item.total_price,
            )
        )

    order.status = SalesOrderStatus.IN_PAYMENT
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s converted to invoice %s', order.id, invoice.invoice_number)
    return invoice


def record_invoice_payment(
    db: Session,
    *,
    invoice_id: int,
    amount,
    actor_id: int,
    paid_at: datetime | None = None,
) -> Invoice:
    invoice = _get_invoice(db, invoice_id, for_update=True)
    if invoice.status == InvoiceStatus.PAID:
        raise InvalidStateTransition('Invoice is already paid', invoice_id=invoice.id)
    amount = parse_quantity(amount, field='amount', places=2)
    outstanding = to_quantity(invoice.total_amount) - to_quantity(invoice.amount_paid)
    if amount <= 0:
        raise ValidationError('Payment amount must be greater than zero', invoice_id=invoice.id)
    if amount > outstanding:
        raise ValidationError(
            'Payment exceeds the outstanding balance',
            invoice_id=invoice.id,
            outstanding=str(outstanding),
        )

    db.add(InvoicePayment(invoice_id=invoice.id, amount=amount, paid_at=paid_at or _now(), actor_id=actor_id))
    invoice.amount_paid = to_quantity(invoice.amount_paid) + amount
    if invoice.amount_paid >= to_quantity(invoice.total_amount):
        invoice.status = InvoiceStatus.PAID
        order = sales_order_service.get_order(db, invoice.sales_order_id, for_update=True)
        order.status = SalesOrderStatus.PAID
        order.updated_at = _now()
    else:
        invoice.status = InvoiceStatus.PARTIALLY_PAID
    db.flush()
    logger.info('Payment of %s recorded on invoice %s (%s)', amount, invoice.id, invoice.status.value)
    return invoice


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'sales_order_id': invoice.sales_order_id,
        'customer_id': invoice.customer_id,
        'invoice_date': invoice.invoice_date,
        'due_date': invoice.due_date,
        'status': invoice.status.value,
        'pricing_mode': invoice.pricing_mode.value,
        'subtotal': invoice.subtotal,
        'tax_amount': invoice.tax_amount,
        'total_amount': invoice.total_amount,
        'amount_paid': invoice.amount_paid,
    }


def get_invoice_detail(db: Session, *, invoice_id: int) -> dict:
    invoice = _get_invoice(db, invoice_id)
    items = db.execute(
        select(InvoiceItem).where(InvoiceItem.invoice_id == invoice.id).order_by(InvoiceItem.id.asc())
    ).scalars().all()
    return {
        **serialize_invoice(invoice),
        'items': [
            {
                'product_id': item.product_id,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'tax_type': item.tax_type.value,
                'net_price': item.net_price,
                'tax_amount': item.tax_amount,
                'total_price': item.total_price,
            }
            for item in items
        ],
    }


def list_invoices(db: Session, *, customer_id: int | None = None, limit: int = 200) -> list[dict]:
    query = select(Invoice).order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).limit(limit)
    if customer_id is not None:
        query = query.where(Invoice.customer_id == customer_id)
    return [serialize_invoice(invoice) for invoice in db.execute(query).scalars().all()]
