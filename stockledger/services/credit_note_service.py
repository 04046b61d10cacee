from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.errors import NotFound, QuantityExceeded, ValidationError
from stockledger.models import CreditNote, CreditNoteItem, Customer, Invoice, InvoiceItem
from stockledger.services.inventory_service import ZERO, parse_quantity, to_quantity

logger = logging.getLogger(__name__)


def create_credit_note(
    db: Session,
    *,
    customer_id: int,
    original_invoice_id: int,
    credit_date: date,
    reason: str,
    items: list[dict],
    actor_id: int,
) -> CreditNote:
    """Credit a customer against invoiced lines. No stock moves.

    Items default their ``invoice_id`` to the original invoice. The credited
    quantity per (invoice, product) can never exceed what was invoiced less
    earlier credits.
    """
    if db.execute(select(Customer.id).where(Customer.id == customer_id)).scalar_one_or_none() is None:
        raise ValidationError('Customer not found', customer_id=customer_id)
    if not (reason or '').strip():
        raise ValidationError('A reason is required for a credit note')
    if not items:
        raise ValidationError('Select at least one item to credit')

    requested: dict[tuple[int, int], Decimal] = {}
    prices: dict[tuple[int, int], Decimal] = {}
    for item in items:
        key = (int(item.get('invoice_id') or original_invoice_id), int(item['product_id']))
        quantity = parse_quantity(item.get('quantity'))
        unit_price = to_quantity(item.get('unit_price'), field='unit_price')
        if quantity <= 0:
            raise ValidationError('Credit quantity must be greater than zero', invoice_id=key[0], product_id=key[1])
        if unit_price < 0:
            raise ValidationError('Unit price cannot be negative', invoice_id=key[0], product_id=key[1])
        requested[key] = requested.get(key, ZERO) + quantity
        prices[key] = unit_price

    invoice_ids = sorted({original_invoice_id, *(invoice_id for invoice_id, _ in requested)})
    invoices = {
        invoice.id: invoice
        for invoice in db.execute(select(Invoice).where(Invoice.id.in_(invoice_ids)).with_for_update()).scalars()
    }
    for invoice_id in invoice_ids:
        invoice = invoices.get(invoice_id)
        if invoice is None:
            raise NotFound('Invoice not found', invoice_id=invoice_id)
        if invoice.customer_id != customer_id:
            raise ValidationError('Invoice does not belong to this customer', invoice_id=invoice_id, customer_id=customer_id)

    invoiced = {
        (invoice_id, product_id): to_quantity(total)
        for invoice_id, product_id, total in db.execute(
            select(InvoiceItem.invoice_id, InvoiceItem.product_id, func.sum(InvoiceItem.quantity))
            .where(InvoiceItem.invoice_id.in_(invoice_ids))
            .group_by(InvoiceItem.invoice_id, InvoiceItem.product_id)
        ).all()
    }
    credited = {
        (invoice_id, product_id): to_quantity(total)
        for invoice_id, product_id, total in db.execute(
            select(CreditNoteItem.invoice_id, CreditNoteItem.product_id, func.sum(CreditNoteItem.quantity))
            .where(CreditNoteItem.invoice_id.in_(invoice_ids))
            .group_by(CreditNoteItem.invoice_id, CreditNoteItem.product_id)
        ).all()
    }

    for key, quantity in sorted(requested.items()):
        if key not in invoiced:
            raise ValidationError('Product is not on the referenced invoice', invoice_id=key[0], product_id=key[1])
        available = invoiced[key] - credited.get(key, ZERO)
        if quantity > available:
            raise QuantityExceeded(
                'Credit quantity exceeds the invoiced quantity still open for credit',
                invoice_id=key[0],
                product_id=key[1],
                requested_quantity=str(quantity),
                remaining_quantity=str(available),
            )

    note = CreditNote(
        customer_id=customer_id,
        original_invoice_id=original_invoice_id,
        credit_date=credit_date,
        reason=reason.strip(),
        created_by=actor_id,
    )
    db.add(note)
    db.flush()
    note.credit_note_number = f'CN-{note.id:06d}'

    total = Decimal('0.00')
    for (invoice_id, product_id), quantity in sorted(requested.items()):
        line_total = (quantity * prices[(invoice_id, product_id)]).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        total += line_total
        db.add(
            CreditNoteItem(
                credit_note_id=note.id,
                invoice_id=invoice_id,
                product_id=product_id,
                quantity=quantity,
                unit_price=prices[(invoice_id, product_id)],
                total_price=line_total,
            )
        )
    note.total_amount = total
    db.flush()
    logger.info('Credit note %s issued to customer %s for %s', note.credit_note_number, customer_id, total)
    return note


def list_credit_notes(db: Session, *, customer_id: int | None = None, limit: int = 200) -> list[dict]:
    query = select(CreditNote).order_by(CreditNote.credit_date.desc(), CreditNote.id.desc()).limit(limit)
    if customer_id is not None:
        query = query.where(CreditNote.customer_id == customer_id)
    notes = db.execute(query).scalars().all()
    ids = [note.id for note in notes]
    items_by_note: dict[int, list[dict]] = {}
    if ids:
        for item in db.execute(select(CreditNoteItem).where(CreditNoteItem.credit_note_id.in_(ids))).scalars():
            items_by_note.setdefault(item.credit_note_id, []).append(
                {
                    'invoice_id': item.invoice_id,
                    'product_id': item.product_id,
                    'quantity': item.quantity,
                    'unit_price': item.unit_price,
                    'total_price': item.total_price,
                }
            )
    return [
        {
            'id': note.id,
            'credit_note_number': note.credit_note_number,
            'customer_id': note.customer_id,
            'original_invoice_id': note.original_invoice_id,
            'credit_date': note.credit_date,
            'reason': note.reason,
            'total_amount': note.total_amount,
            'items': items_by_note.get(note.id, []),
        }
        for note in notes
    ]
