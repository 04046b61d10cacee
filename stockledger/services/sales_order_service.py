from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import InvalidStateTransition, NotFound, ValidationError
from stockledger.models import (
    Customer,
    DeliveryNote,
    DeliveryNoteStatus,
    DeliveryProgress,
    OrderProgress,
    Product,
    Rider,
    SalesOrder,
    SalesOrderItem,
    SalesOrderStatus,
)
from stockledger.services import inventory_service
from stockledger.services.inventory_service import parse_quantity, to_quantity
from stockledger.services.tax_service import compute_line_tax, parse_pricing_mode, parse_tax_type, summarize

logger = logging.getLogger(__name__)

# Accounting statuses a shipment may still move forward; the invoice branch is left alone.
FULFILMENT_STATUSES = {SalesOrderStatus.CONFIRMED, SalesOrderStatus.SHIPPED}
INVOICE_BRANCH_STATUSES = {SalesOrderStatus.IN_PAYMENT, SalesOrderStatus.PAID}
CANCELLABLE_PROGRESS = {OrderProgress.NEW, OrderProgress.APPROVED, OrderProgress.IN_TRANSIT, OrderProgress.COMPLETE}
PARTIAL_CLOSE_PROGRESS = {OrderProgress.APPROVED, OrderProgress.IN_TRANSIT}
OPEN_DELIVERY_PROGRESS = {DeliveryProgress.DRAFT, DeliveryProgress.PREPARED, DeliveryProgress.IN_TRANSIT}

PROGRESS_LABELS = {
    OrderProgress.NEW: 'New',
    OrderProgress.APPROVED: 'Approved',
    OrderProgress.IN_TRANSIT: 'In Transit',
    OrderProgress.COMPLETE: 'Complete',
    OrderProgress.CANCELLED: 'Cancelled',
    OrderProgress.DECLINED: 'Declined',
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_order(db: Session, sales_order_id: int, *, for_update: bool = False) -> SalesOrder:
    query = select(SalesOrder).where(SalesOrder.id == sales_order_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    order = db.execute(query).scalar_one_or_none()
    if order is None:
        raise NotFound('Sales order not found', sales_order_id=sales_order_id)
    return order


def get_order_items(db: Session, sales_order_id: int, *, for_update: bool = False) -> list[SalesOrderItem]:
    query = (
        select(SalesOrderItem)
        .where(SalesOrderItem.sales_order_id == sales_order_id)
        .order_by(SalesOrderItem.id.asc())
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    return db.execute(query).scalars().all()


def get_active_rider(db: Session, rider_id: int) -> Rider:
    rider = db.execute(select(Rider).where(Rider.id == rider_id, Rider.active.is_(True))).scalar_one_or_none()
    if rider is None:
        raise ValidationError('Rider not found', rider_id=rider_id)
    return rider


def _progress(order: SalesOrder) -> OrderProgress:
    return OrderProgress(order.my_status)


def _build_items(db: Session, order: SalesOrder, items: list[dict]) -> None:
    if not items:
        raise ValidationError('A sales order needs at least one item')
    lines = []
    for item in items:
        product_id = int(item['product_id'])
        inventory_service.ensure_product(db, product_id)
        quantity = parse_quantity(item.get('quantity'))
        unit_price = to_quantity(item.get('unit_price'), field='unit_price')
        tax_type = parse_tax_type(item.get('tax_type'))
        line_tax = compute_line_tax(quantity, unit_price, tax_type, order.pricing_mode)
        lines.append(line_tax)
        db.add(
            SalesOrderItem(
                sales_order_id=order.id,
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                tax_type=tax_type,
                net_price=line_tax.net_price,
                tax_amount=line_tax.tax_amount,
                total_price=line_tax.total_price,
                shipped_quantity=Decimal('0'),
            )
        )
    totals = summarize(lines)
    order.subtotal = totals.subtotal
    order.tax_amount = totals.tax_amount
    order.total_amount = totals.total_amount


def create_sales_order(
    db: Session,
    *,
    customer_id: int,
    store_id: int,
    order_date: date,
    items: list[dict],
    actor_id: int,
    expected_delivery_date: date | None = None,
    notes: str | None = None,
) -> SalesOrder:
    customer = db.execute(select(Customer.id).where(Customer.id == customer_id)).scalar_one_or_none()
    if customer is None:
        raise ValidationError('Customer not found', customer_id=customer_id)
    inventory_service.ensure_store(db, store_id)

    order = SalesOrder(
        customer_id=customer_id,
        store_id=store_id,
        order_date=order_date,
        expected_delivery_date=expected_delivery_date,
        status=SalesOrderStatus.DRAFT,
        my_status=OrderProgress.NEW,
        pricing_mode=parse_pricing_mode(settings.sales_pricing_mode),
        notes=notes,
        created_by=actor_id,
    )
    db.add(order)
    db.flush()
    order.so_number = f'SO-{order.id:06d}'
    _build_items(db, order, items)
    db.flush()
    return order


def update_sales_order_items(db: Session, *, sales_order_id: int, items: list[dict], actor_id: int) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if order.status != SalesOrderStatus.DRAFT or _progress(order) != OrderProgress.NEW:
        raise InvalidStateTransition('Only new draft sales orders can be edited', sales_order_id=order.id)
    for item in get_order_items(db, order.id):
        db.delete(item)
    db.flush()
    _build_items(db, order, items)
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s items replaced by actor %s', order.id, actor_id)
    return order


def approve_sales_order(db: Session, *, sales_order_id: int, actor_id: int) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) != OrderProgress.NEW or order.status != SalesOrderStatus.DRAFT:
        raise InvalidStateTransition(
            'Only new draft sales orders can be approved',
            sales_order_id=order.id,
            my_status=order.my_status,
        )
    order.my_status = OrderProgress.APPROVED
    order.status = SalesOrderStatus.CONFIRMED
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s approved by actor %s', order.id, actor_id)
    return order


def decline_sales_order(db: Session, *, sales_order_id: int, actor_id: int) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) != OrderProgress.NEW:
        raise InvalidStateTransition('Only new sales orders can be declined', sales_order_id=order.id, my_status=order.my_status)
    order.my_status = OrderProgress.DECLINED
    order.status = SalesOrderStatus.CANCELLED
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s declined by actor %s', order.id, actor_id)
    return order


def assign_rider_to_order(db: Session, *, sales_order_id: int, rider_id: int, actor_id: int) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) != OrderProgress.APPROVED:
        raise InvalidStateTransition(
            'A rider can only be assigned to an approved order',
            sales_order_id=order.id,
            my_status=order.my_status,
        )
    get_active_rider(db, rider_id)
    order.rider_id = rider_id
    order.my_status = OrderProgress.IN_TRANSIT
    order.updated_at = _now()
    db.flush()
    logger.info('Rider %s assigned to sales order %s by actor %s', rider_id, order.id, actor_id)
    return order


def _cancel_open_delivery_notes(db: Session, sales_order_id: int) -> int:
    notes = db.execute(
        select(DeliveryNote)
        .where(
            DeliveryNote.sales_order_id == sales_order_id,
            DeliveryNote.my_status.in_([int(progress) for progress in OPEN_DELIVERY_PROGRESS]),
        )
        .with_for_update()
    ).scalars().all()
    for note in notes:
        note.my_status = DeliveryProgress.CANCELLED
        note.status = DeliveryNoteStatus.CANCELLED
        note.updated_at = _now()
    return len(notes)


def cancel_sales_order(db: Session, *, sales_order_id: int, actor_id: int) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) not in CANCELLABLE_PROGRESS or order.status in INVOICE_BRANCH_STATUSES:
        raise InvalidStateTransition(
            'This sales order can no longer be cancelled',
            sales_order_id=order.id,
            status=order.status.value,
            my_status=order.my_status,
        )
    cancelled_notes = _cancel_open_delivery_notes(db, order.id)
    order.my_status = OrderProgress.CANCELLED
    order.status = SalesOrderStatus.CANCELLED
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s cancelled by actor %s (%s open delivery notes cancelled)', order.id, actor_id, cancelled_notes)
    return order


def receive_back_to_stock(db: Session, *, sales_order_id: int, actor_id: int) -> list[dict]:
    """Return every shipped unit of a cancelled order to its store.

    Restores shipped_quantity (not the ordered quantity) and zeroes it; the
    order is stamped so a repeated call moves nothing and returns [].
    """
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) != OrderProgress.CANCELLED:
        raise InvalidStateTransition(
            'Stock can only be received back for a cancelled order',
            sales_order_id=order.id,
            my_status=order.my_status,
        )
    if order.stock_reversed_at is not None:
        return []

    items = [item for item in get_order_items(db, order.id, for_update=True) if to_quantity(item.shipped_quantity) > 0]
    inventory_service.lock_lines(db, [(order.store_id, item.product_id) for item in items])

    movements = []
    for item in items:
        quantity = to_quantity(item.shipped_quantity)
        new_quantity = inventory_service.adjust(
            db,
            store_id=order.store_id,
            product_id=item.product_id,
            delta=quantity,
            reason='sales order cancellation',
            actor_id=actor_id,
            reference_type='sales_order',
            reference_id=order.id,
        )
        item.shipped_quantity = Decimal('0')
        movements.append(
            {
                'sales_order_item_id': item.id,
                'product_id': item.product_id,
                'store_id': order.store_id,
                'quantity': quantity,
                'new_store_quantity': new_quantity,
            }
        )

    order.stock_reversed_at = _now()
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s: %s line(s) received back to store %s', order.id, len(movements), order.store_id)
    return movements


def apply_shipment_progress(order: SalesOrder, items: list[SalesOrderItem]) -> None:
    if all(to_quantity(item.shipped_quantity) >= to_quantity(item.quantity) for item in items):
        order.my_status = OrderProgress.COMPLETE
        if order.status in FULFILMENT_STATUSES:
            order.status = SalesOrderStatus.DELIVERED
    elif order.status == SalesOrderStatus.CONFIRMED:
        order.status = SalesOrderStatus.SHIPPED
    order.updated_at = _now()


def close_partial_delivery(db: Session, *, sales_order_id: int, actor_id: int, reason: str) -> SalesOrder:
    order = get_order(db, sales_order_id, for_update=True)
    if _progress(order) not in PARTIAL_CLOSE_PROGRESS:
        raise InvalidStateTransition(
            'Only approved or in-transit orders can be closed as partially delivered',
            sales_order_id=order.id,
            my_status=order.my_status,
        )
    if not (reason or '').strip():
        raise ValidationError('A reason is required to close a partial delivery')
    items = get_order_items(db, order.id, for_update=True)
    if not any(to_quantity(item.shipped_quantity) > 0 for item in items):
        raise InvalidStateTransition('Nothing has been shipped on this order yet', sales_order_id=order.id)

    _cancel_open_delivery_notes(db, order.id)
    order.my_status = OrderProgress.COMPLETE
    order.partially_closed = True
    if order.status in FULFILMENT_STATUSES:
        order.status = SalesOrderStatus.DELIVERED
    order.notes = '\n'.join(part for part in [order.notes, f'Partial delivery closed: {reason.strip()}'] if part)
    order.updated_at = _now()
    db.flush()
    logger.info('Sales order %s closed with partial delivery by actor %s', order.id, actor_id)
    return order


def serialize_order(order: SalesOrder) -> dict:
    return {
        'id': order.id,
        'so_number': order.so_number,
        'customer_id': order.customer_id,
        'store_id': order.store_id,
        'order_date': order.order_date,
        'status': order.status.value,
        'my_status': order.my_status,
        'my_status_label': PROGRESS_LABELS[_progress(order)],
        'pricing_mode': order.pricing_mode.value,
        'subtotal': order.subtotal,
        'tax_amount': order.tax_amount,
        'total_amount': order.total_amount,
        'rider_id': order.rider_id,
        'partially_closed': order.partially_closed,
        'stock_reversed': order.stock_reversed_at is not None,
    }


def get_sales_order_detail(db: Session, *, sales_order_id: int) -> dict:
    order = get_order(db, sales_order_id)
    customer_name = db.execute(select(Customer.name).where(Customer.id == order.customer_id)).scalar_one()
    rider = db.execute(select(Rider).where(Rider.id == order.rider_id)).scalar_one_or_none() if order.rider_id else None
    item_rows = db.execute(
        select(SalesOrderItem, Product.code, Product.name)
        .join(Product, Product.id == SalesOrderItem.product_id)
        .where(SalesOrderItem.sales_order_id == order.id)
        .order_by(SalesOrderItem.id.asc())
    ).all()
    return {
        **serialize_order(order),
        'customer_name': customer_name,
        'rider_name': rider.name if rider else None,
        'rider_contact': rider.contact if rider else None,
        'notes': order.notes,
        'items': [
            {
                'id': item.id,
                'product_id': item.product_id,
                'product_code': code,
                'product_name': name,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'tax_type': item.tax_type.value,
                'net_price': item.net_price,
                'tax_amount': item.tax_amount,
                'total_price': item.total_price,
                'shipped_quantity': item.shipped_quantity,
            }
            for item, code, name in item_rows
        ],
    }


def list_sales_orders(
    db: Session,
    *,
    status: SalesOrderStatus | None = None,
    my_status: int | None = None,
    limit: int = 200,
) -> list[dict]:
    query = select(SalesOrder).order_by(SalesOrder.order_date.desc(), SalesOrder.id.desc()).limit(limit)
    if status is not None:
        query = query.where(SalesOrder.status == status)
    if my_status is not None:
        query = query.where(SalesOrder.my_status == my_status)
    return [serialize_order(order) for order in db.execute(query).scalars().all()]
