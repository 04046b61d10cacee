from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.errors import InvalidStateTransition, NotFound, QuantityExceeded, ValidationError
from stockledger.models import (
    Customer,
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteStatus,
    DeliveryProgress,
    OrderProgress,
    Product,
    Rider,
    SalesOrderItem,
)
from stockledger.services import inventory_service, sales_order_service
from stockledger.services.inventory_service import ZERO, parse_quantity, to_quantity

logger = logging.getLogger(__name__)

# Order progress values under which delivery notes may be raised and delivered.
DELIVERABLE_ORDER_PROGRESS = {OrderProgress.APPROVED, OrderProgress.IN_TRANSIT, OrderProgress.COMPLETE}
OPEN_NOTE_PROGRESS = [int(DeliveryProgress.DRAFT), int(DeliveryProgress.PREPARED), int(DeliveryProgress.IN_TRANSIT)]


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _get_note(db: Session, delivery_note_id: int, *, for_update: bool = False) -> DeliveryNote:
    query = select(DeliveryNote).where(DeliveryNote.id == delivery_note_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    note = db.execute(query).scalar_one_or_none()
    if note is None:
        raise NotFound('Delivery note not found', delivery_note_id=delivery_note_id)
    return note


def _note_items(db: Session, delivery_note_id: int) -> list[DeliveryNoteItem]:
    return db.execute(
        select(DeliveryNoteItem)
        .where(DeliveryNoteItem.delivery_note_id == delivery_note_id)
        .order_by(DeliveryNoteItem.id.asc())
    ).scalars().all()


def _reserved_by_open_notes(db: Session, sales_order_id: int) -> dict[int, Decimal]:
    rows = db.execute(
        select(DeliveryNoteItem.sales_order_item_id, func.sum(DeliveryNoteItem.quantity))
        .join(DeliveryNote, DeliveryNote.id == DeliveryNoteItem.delivery_note_id)
        .where(
            DeliveryNote.sales_order_id == sales_order_id,
            DeliveryNote.my_status.in_(OPEN_NOTE_PROGRESS),
        )
        .group_by(DeliveryNoteItem.sales_order_item_id)
    ).all()
    return {item_id: to_quantity(total) for item_id, total in rows}


def create_delivery_note(
    db: Session,
    *,
    sales_order_id: int,
    delivery_date: date,
    items: list[dict],
    actor_id: int,
    notes: str | None = None,
) -> DeliveryNote:
    """Plan a shipment against an approved sales order.

    Each line may plan at most quantity - shipped - already planned on open
    notes; the stock itself moves when the note is marked delivered.
    """
    order = sales_order_service.get_order(db, sales_order_id, for_update=True)
    if OrderProgress(order.my_status) not in DELIVERABLE_ORDER_PROGRESS:
        raise InvalidStateTransition(
            'Delivery notes can only be created for approved orders',
            sales_order_id=order.id,
            my_status=order.my_status,
        )
    if not items:
        raise ValidationError('Select at least one item to deliver')

    planned: dict[int, Decimal] = {}
    for item in items:
        item_id = int(item['sales_order_item_id'])
        quantity = parse_quantity(item.get('quantity'))
        if quantity <= 0:
            raise ValidationError('Delivery quantity must be greater than zero', sales_order_item_id=item_id)
        planned[item_id] = planned.get(item_id, ZERO) + quantity

    order_items = {item.id: item for item in sales_order_service.get_order_items(db, order.id, for_update=True)}
    reserved = _reserved_by_open_notes(db, order.id)
    for item_id, quantity in sorted(planned.items()):
        order_item = order_items.get(item_id)
        if order_item is None:
            raise ValidationError('Item is not on this sales order', sales_order_item_id=item_id)
        remaining = to_quantity(order_item.quantity) - to_quantity(order_item.shipped_quantity) - reserved.get(item_id, ZERO)
        if quantity > remaining:
            raise QuantityExceeded(
                'Delivery quantity exceeds what remains to be shipped',
                sales_order_item_id=item_id,
                requested_quantity=str(quantity),
                remaining_quantity=str(max(remaining, ZERO)),
            )

    note = DeliveryNote(
        sales_order_id=order.id,
        customer_id=order.customer_id,
        delivery_date=delivery_date,
        status=DeliveryNoteStatus.PENDING,
        my_status=DeliveryProgress.PREPARED,
        notes=notes,
        created_by=actor_id,
    )
    db.add(note)
    db.flush()
    note.dn_number = f'DN-{note.id:06d}'
    for item_id, quantity in sorted(planned.items()):
        db.add(
            DeliveryNoteItem(
                delivery_note_id=note.id,
                sales_order_item_id=item_id,
                product_id=order_items[item_id].product_id,
                quantity=quantity,
                delivered_quantity=ZERO,
            )
        )
    db.flush()
    logger.info('Delivery note %s created for sales order %s', note.dn_number, order.id)
    return note


def assign_rider_to_delivery_note(db: Session, *, delivery_note_id: int, rider_id: int, actor_id: int) -> DeliveryNote:
    note = _get_note(db, delivery_note_id, for_update=True)
    if DeliveryProgress(note.my_status) != DeliveryProgress.PREPARED:
        raise InvalidStateTransition(
            'A rider can only be assigned to a prepared delivery note',
            delivery_note_id=note.id,
            my_status=note.my_status,
        )
    sales_order_service.get_active_rider(db, rider_id)
    note.rider_id = rider_id
    note.my_status = DeliveryProgress.IN_TRANSIT
    note.updated_at = _now()
    db.flush()
    logger.info('Rider %s assigned to delivery note %s by actor %s', rider_id, note.id, actor_id)
    return note


def mark_delivered(db: Session, *, delivery_note_id: int, actor_id: int) -> DeliveryNote:
    note = _get_note(db, delivery_note_id, for_update=True)
    if DeliveryProgress(note.my_status) != DeliveryProgress.IN_TRANSIT:
        raise InvalidStateTransition(
            'Only in-transit delivery notes can be marked delivered',
            delivery_note_id=note.id,
            my_status=note.my_status,
        )
    order = sales_order_service.get_order(db, note.sales_order_id, for_update=True)
    if OrderProgress(order.my_status) not in DELIVERABLE_ORDER_PROGRESS:
        raise InvalidStateTransition(
            'The sales order is no longer open for delivery',
            sales_order_id=order.id,
            my_status=order.my_status,
        )

    order_items = sales_order_service.get_order_items(db, order.id, for_update=True)
    by_id = {item.id: item for item in order_items}
    note_items = _note_items(db, note.id)
    for note_item in note_items:
        order_item = by_id[note_item.sales_order_item_id]
        remaining = to_quantity(order_item.quantity) - to_quantity(order_item.shipped_quantity)
        if to_quantity(note_item.quantity) > remaining:
            raise QuantityExceeded(
                'Delivery quantity exceeds what remains to be shipped',
                sales_order_item_id=order_item.id,
                requested_quantity=str(note_item.quantity),
                remaining_quantity=str(remaining),
            )

    inventory_service.lock_lines(db, [(order.store_id, item.product_id) for item in note_items])
    for note_item in note_items:
        quantity = to_quantity(note_item.quantity)
        inventory_service.adjust(
            db,
            store_id=order.store_id,
            product_id=note_item.product_id,
            delta=-quantity,
            reason='sales delivery',
            actor_id=actor_id,
            reference_type='delivery_note',
            reference_id=note.id,
        )
        order_item = by_id[note_item.sales_order_item_id]
        order_item.shipped_quantity = to_quantity(order_item.shipped_quantity) + quantity
        note_item.delivered_quantity = quantity

    note.my_status = DeliveryProgress.DELIVERED
    note.status = DeliveryNoteStatus.DELIVERED
    note.delivered_at = _now()
    note.updated_at = _now()
    sales_order_service.apply_shipment_progress(order, order_items)
    db.flush()
    logger.info('Delivery note %s delivered; sales order %s now %s', note.id, order.id, order.status.value)
    return note


def cancel_delivery_note(db: Session, *, delivery_note_id: int, actor_id: int) -> DeliveryNote:
    note = _get_note(db, delivery_note_id, for_update=True)
    if note.my_status not in OPEN_NOTE_PROGRESS:
        raise InvalidStateTransition(
            'Only open delivery notes can be cancelled',
            delivery_note_id=note.id,
            my_status=note.my_status,
        )
    note.my_status = DeliveryProgress.CANCELLED
    note.status = DeliveryNoteStatus.CANCELLED
    note.updated_at = _now()
    db.flush()
    logger.info('Delivery note %s cancelled by actor %s', note.id, actor_id)
    return note


def serialize_note(note: DeliveryNote) -> dict:
    return {
        'id': note.id,
        'dn_number': note.dn_number,
        'sales_order_id': note.sales_order_id,
        'customer_id': note.customer_id,
        'delivery_date': note.delivery_date,
        'status': note.status.value,
        'my_status': note.my_status,
        'rider_id': note.rider_id,
        'delivered_at': note.delivered_at,
    }


def get_delivery_note_detail(db: Session, *, delivery_note_id: int) -> dict:
    note = _get_note(db, delivery_note_id)
    customer_name = db.execute(select(Customer.name).where(Customer.id == note.customer_id)).scalar_one()
    rider_name = db.execute(select(Rider.name).where(Rider.id == note.rider_id)).scalar_one_or_none() if note.rider_id else None
    rows = db.execute(
        select(DeliveryNoteItem, SalesOrderItem.quantity, Product.code, Product.name)
        .join(SalesOrderItem, SalesOrderItem.id == DeliveryNoteItem.sales_order_item_id)
        .join(Product, Product.id == DeliveryNoteItem.product_id)
        .where(DeliveryNoteItem.delivery_note_id == note.id)
        .order_by(DeliveryNoteItem.id.asc())
    ).all()
    return {
        **serialize_note(note),
        'customer_name': customer_name,
        'rider_name': rider_name,
        'notes': note.notes,
        'items': [
            {
                'id': item.id,
                'sales_order_item_id': item.sales_order_item_id,
                'product_id': item.product_id,
                'product_code': code,
                'product_name': name,
                'ordered_quantity': ordered,
                'quantity': item.quantity,
                'delivered_quantity': item.delivered_quantity,
            }
            for item, ordered, code, name in rows
        ],
    }


def list_delivery_notes(db: Session, *, sales_order_id: int | None = None, limit: int = 200) -> list[dict]:
    query = select(DeliveryNote).order_by(DeliveryNote.delivery_date.desc(), DeliveryNote.id.desc()).limit(limit)
    if sales_order_id is not None:
        query = query.where(DeliveryNote.sales_order_id == sales_order_id)
    return [serialize_note(note) for note in db.execute(query).scalars().all()]
