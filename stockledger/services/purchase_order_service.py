from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import InvalidReceivingQuantity, InvalidStateTransition, NotFound, ValidationError
from stockledger.models import (
    InventoryReceipt,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    Store,
    Supplier,
)
from stockledger.services import inventory_service
from stockledger.services.inventory_service import parse_quantity, to_quantity
from stockledger.services.tax_service import compute_line_tax, parse_pricing_mode, parse_tax_type, summarize

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {PurchaseOrderStatus.DRAFT}
CANCELLABLE_STATUSES = {PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SENT}


@dataclass
class ReceiveResult:
    purchase_order: PurchaseOrder
    receipts: list[InventoryReceipt] = field(default_factory=list)

    @property
    def po_status(self) -> str:
        return self.purchase_order.status.value


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _get_order(db: Session, purchase_order_id: int, *, for_update: bool = False) -> PurchaseOrder:
    query = select(PurchaseOrder).where(PurchaseOrder.id == purchase_order_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    po = db.execute(query).scalar_one_or_none()
    if po is None:
        raise NotFound('Purchase order not found', purchase_order_id=purchase_order_id)
    return po


def _order_items(db: Session, purchase_order_id: int, *, for_update: bool = False) -> list[PurchaseOrderItem]:
    query = (
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.purchase_order_id == purchase_order_id)
        .order_by(PurchaseOrderItem.id.asc())
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    return db.execute(query).scalars().all()


def _build_items(db: Session, po: PurchaseOrder, items: list[dict]) -> None:
    if not items:
        raise ValidationError('A purchase order needs at least one item')

    seen: set[int] = set()
    lines = []
    for item in items:
        product_id = int(item['product_id'])
        if product_id in seen:
            raise ValidationError('Each product may appear only once per purchase order', product_id=product_id)
        seen.add(product_id)
        inventory_service.ensure_product(db, product_id)

        quantity = parse_quantity(item.get('quantity'))
        unit_price = to_quantity(item.get('unit_price'), field='unit_price')
        tax_type = parse_tax_type(item.get('tax_type'))
        line_tax = compute_line_tax(quantity, unit_price, tax_type, po.pricing_mode)
        lines.append(line_tax)
        db.add(
            PurchaseOrderItem(
                purchase_order_id=po.id,
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                tax_type=tax_type,
                net_price=line_tax.net_price,
                tax_amount=line_tax.tax_amount,
                total_price=line_tax.total_price,
                received_quantity=Decimal('0'),
            )
        )

    totals = summarize(lines)
    po.subtotal = totals.subtotal
    po.tax_amount = totals.tax_amount
    po.total_amount = totals.total_amount


def create_purchase_order(
    db: Session,
    *,
    supplier_id: int,
    order_date: date,
    items: list[dict],
    actor_id: int,
    expected_delivery_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    supplier = db.execute(select(Supplier.id).where(Supplier.id == supplier_id)).scalar_one_or_none()
    if supplier is None:
        raise ValidationError('Supplier not found', supplier_id=supplier_id)

    po = PurchaseOrder(
        supplier_id=supplier_id,
        order_date=order_date,
        expected_delivery_date=expected_delivery_date,
        status=PurchaseOrderStatus.DRAFT,
        pricing_mode=parse_pricing_mode(settings.purchase_pricing_mode),
        notes=notes,
        created_by=actor_id,
    )
    db.add(po)
    db.flush()
    po.po_number = f'PO-{po.id:06d}'
    _build_items(db, po, items)
    db.flush()
    return po


def update_purchase_order_items(db: Session, *, purchase_order_id: int, items: list[dict], actor_id: int) -> PurchaseOrder:
    po = _get_order(db, purchase_order_id, for_update=True)
    if po.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(
            'Only draft purchase orders can be edited',
            purchase_order_id=po.id,
            status=po.status.value,
        )
    for item in _order_items(db, po.id):
        db.delete(item)
    db.flush()
    _build_items(db, po, items)
    po.updated_at = _now()
    db.flush()
    logger.info('Purchase order %s items replaced by actor %s', po.id, actor_id)
    return po


def send_purchase_order(db: Session, *, purchase_order_id: int, actor_id: int) -> PurchaseOrder:
    po = _get_order(db, purchase_order_id, for_update=True)
    if po.status != PurchaseOrderStatus.DRAFT:
        raise InvalidStateTransition('Only draft purchase orders can be sent', purchase_order_id=po.id, status=po.status.value)
    if not _order_items(db, po.id):
        raise ValidationError('Cannot send an empty purchase order', purchase_order_id=po.id)
    po.status = PurchaseOrderStatus.SENT
    po.sent_at = _now()
    po.updated_at = _now()
    db.flush()
    logger.info('Purchase order %s sent by actor %s', po.id, actor_id)
    return po


def cancel_purchase_order(db: Session, *, purchase_order_id: int, actor_id: int) -> PurchaseOrder:
    po = _get_order(db, purchase_order_id, for_update=True)
    if po.status not in CANCELLABLE_STATUSES:
        raise InvalidStateTransition(
            'Only draft or sent purchase orders can be cancelled',
            purchase_order_id=po.id,
            status=po.status.value,
        )
    po.status = PurchaseOrderStatus.CANCELLED
    po.cancelled_at = _now()
    po.updated_at = _now()
    db.flush()
    logger.info('Purchase order %s cancelled by actor %s', po.id, actor_id)
    return po


def receive_items(
    db: Session,
    *,
    purchase_order_id: int,
    store_id: int,
    items: list[dict],
    actor_id: int,
    notes: str | None = None,
) -> ReceiveResult:
    po = _get_order(db, purchase_order_id, for_update=True)
    if po.status != PurchaseOrderStatus.SENT:
        raise InvalidStateTransition(
            'Items can only be received against a sent purchase order',
            purchase_order_id=po.id,
            status=po.status.value,
        )
    inventory_service.ensure_store(db, store_id)
    if not items:
        raise ValidationError('Select at least one item to receive')

    lines: list[tuple[int, Decimal, Decimal | None]] = []
    requested: dict[int, Decimal] = {}
    for item in items:
        product_id = int(item['product_id'])
        quantity = parse_quantity(item.get('received_quantity'), field='received_quantity')
        if quantity <= 0:
            raise InvalidReceivingQuantity(
                'Received quantity must be greater than zero',
                product_id=product_id,
                received_quantity=str(quantity),
            )
        unit_cost = item.get('unit_cost')
        if unit_cost is not None:
            unit_cost = to_quantity(unit_cost, field='unit_cost')
            if unit_cost < 0:
                raise ValidationError('Unit cost cannot be negative', product_id=product_id)
        lines.append((product_id, quantity, unit_cost))
        requested[product_id] = requested.get(product_id, Decimal('0')) + quantity

    # Outstanding quantity is checked against the sum of every line for a product.
    order_items = {item.product_id: item for item in _order_items(db, po.id, for_update=True)}
    for product_id, quantity in requested.items():
        order_item = order_items.get(product_id)
        if order_item is None:
            raise ValidationError('Product is not on this purchase order', product_id=product_id, purchase_order_id=po.id)
        remaining = to_quantity(order_item.quantity) - to_quantity(order_item.received_quantity)
        if quantity > remaining:
            raise InvalidReceivingQuantity(
                'Received quantity exceeds the quantity still outstanding',
                product_id=product_id,
                received_quantity=str(quantity),
                remaining_quantity=str(remaining),
            )

    inventory_service.lock_lines(db, [(store_id, product_id) for product_id in requested])

    received_at = _now()
    result = ReceiveResult(purchase_order=po)
    for product_id, quantity, unit_cost in lines:
        order_item = order_items[product_id]
        if unit_cost is None:
            unit_cost = to_quantity(order_item.unit_price)
        receipt = InventoryReceipt(
            purchase_order_id=po.id,
            purchase_order_item_id=order_item.id,
            product_id=product_id,
            store_id=store_id,
            received_quantity=quantity,
            unit_cost=unit_cost,
            total_cost=(quantity * unit_cost).quantize(Decimal('0.01')),
            received_by=actor_id,
            received_at=received_at,
            notes=notes,
        )
        db.add(receipt)
        db.flush()
        inventory_service.adjust(
            db,
            store_id=store_id,
            product_id=product_id,
            delta=quantity,
            reason='purchase receipt',
            actor_id=actor_id,
            reference_type='purchase_order',
            reference_id=po.id,
            unit_cost=unit_cost,
            occurred_at=received_at,
        )
        order_item.received_quantity = to_quantity(order_item.received_quantity) + quantity
        result.receipts.append(receipt)

    if all(to_quantity(item.received_quantity) >= to_quantity(item.quantity) for item in order_items.values()):
        po.status = PurchaseOrderStatus.RECEIVED
        po.received_at = received_at
    po.updated_at = received_at
    db.flush()
    logger.info(
        'Purchase order %s received %s line(s) into store %s; status=%s',
        po.id,
        len(result.receipts),
        store_id,
        po.status.value,
    )
    return result


def serialize_receipt(receipt: InventoryReceipt) -> dict:
    return {
        'id': receipt.id,
        'purchase_order_id': receipt.purchase_order_id,
        'product_id': receipt.product_id,
        'store_id': receipt.store_id,
        'received_quantity': receipt.received_quantity,
        'unit_cost': receipt.unit_cost,
        'total_cost': receipt.total_cost,
        'received_at': receipt.received_at,
        'received_by': receipt.received_by,
        'notes': receipt.notes,
    }


def get_purchase_order_with_receipts(db: Session, *, purchase_order_id: int) -> dict:
    po_row = db.execute(
        select(PurchaseOrder, Supplier.name)
        .join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
        .where(PurchaseOrder.id == purchase_order_id)
    ).one_or_none()
    if not po_row:
        raise NotFound('Purchase order not found', purchase_order_id=purchase_order_id)
    po, supplier_name = po_row

    item_rows = db.execute(
        select(PurchaseOrderItem, Product.code, Product.name)
        .join(Product, Product.id == PurchaseOrderItem.product_id)
        .where(PurchaseOrderItem.purchase_order_id == po.id)
        .order_by(PurchaseOrderItem.id.asc())
    ).all()
    receipt_rows = db.execute(
        select(InventoryReceipt, Store.name)
        .join(Store, Store.id == InventoryReceipt.store_id)
        .where(InventoryReceipt.purchase_order_id == po.id)
        .order_by(InventoryReceipt.received_at.asc(), InventoryReceipt.id.asc())
    ).all()

    return {
        'id': po.id,
        'po_number': po.po_number,
        'supplier_id': po.supplier_id,
        'supplier_name': supplier_name,
        'order_date': po.order_date,
        'expected_delivery_date': po.expected_delivery_date,
        'status': po.status.value,
        'pricing_mode': po.pricing_mode.value,
        'subtotal': po.subtotal,
        'tax_amount': po.tax_amount,
        'total_amount': po.total_amount,
        'notes': po.notes,
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
                'received_quantity': item.received_quantity,
                'remaining_quantity': to_quantity(item.quantity) - to_quantity(item.received_quantity),
            }
            for item, code, name in item_rows
        ],
        'receipts': [{**serialize_receipt(receipt), 'store_name': store_name} for receipt, store_name in receipt_rows],
    }


def list_purchase_orders(db: Session, *, status: PurchaseOrderStatus | None = None, limit: int = 100) -> list[dict]:
    query = (
        select(PurchaseOrder, Supplier.name)
        .join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
        .order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(PurchaseOrder.status == status)
    return [
        {
            'id': po.id,
            'po_number': po.po_number,
            'supplier_id': po.supplier_id,
            'supplier_name': supplier_name,
            'order_date': po.order_date,
            'status': po.status.value,
            'total_amount': po.total_amount,
        }
        for po, supplier_name in db.execute(query).all()
    ]
