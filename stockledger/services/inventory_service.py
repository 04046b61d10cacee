from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import NegativeInventory, ValidationError
from stockledger.models import (
    InventoryLine,
    InventoryTransaction,
    Product,
    Store,
    StockTransfer,
    StockTransferItem,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_quantity(value, *, field: str = 'quantity') -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ValidationError(f'Invalid {field}', value=str(value)) from exc


def parse_quantity(value, *, field: str = 'quantity', places: int = 3) -> Decimal:
    """Parse caller input, rejecting values the Numeric columns would round."""
    parsed = to_quantity(value, field=field)
    if not parsed.is_finite():
        raise ValidationError(f'Invalid {field}', value=str(value))
    try:
        rounded = parsed.quantize(Decimal(1).scaleb(-places))
    except ArithmeticError as exc:
        raise ValidationError(f'Invalid {field}', value=str(value)) from exc
    if parsed != rounded:
        raise ValidationError(f'{field} allows at most {places} decimal places', value=str(value))
    return parsed


def ensure_store(db: Session, store_id: int) -> Store:
    store = db.execute(select(Store).where(Store.id == store_id, Store.active.is_(True))).scalar_one_or_none()
    if store is None:
        raise ValidationError('Store not found', store_id=store_id)
    return store


def ensure_product(db: Session, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if product is None:
        raise ValidationError('Product not found', product_id=product_id)
    return product


def _set_lock_timeout(db: Session) -> None:
    if db.get_bind().dialect.name == 'postgresql':
        db.execute(text(f'SET LOCAL lock_timeout = {int(settings.lock_timeout_ms)}'))


def _lock_line(db: Session, store_id: int, product_id: int) -> InventoryLine:
    stmt = (
        select(InventoryLine)
        .where(InventoryLine.store_id == store_id, InventoryLine.product_id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    line = db.execute(stmt).scalar_one_or_none()
    if line is not None:
        return line

    try:
        with db.begin_nested():
            line = InventoryLine(store_id=store_id, product_id=product_id, quantity=ZERO)
            db.add(line)
    except IntegrityError:
        # Another transaction created the line first; lock theirs.
        line = db.execute(stmt).scalar_one()
    return line


def lock_lines(db: Session, keys: Iterable[tuple[int, int]]) -> dict[tuple[int, int], InventoryLine]:
    """Lock (creating where missing) every (store_id, product_id) line in sorted key order.

    Callers lock order headers and order items before inventory lines, so two
    operations sharing a key always queue on the same first row.
    """
    ordered = sorted(set(keys))
    if not ordered:
        return {}
    _set_lock_timeout(db)
    return {key: _lock_line(db, *key) for key in ordered}


def adjust(
    db: Session,
    *,
    store_id: int,
    product_id: int,
    delta,
    reason: str,
    actor_id: int | None,
    allow_negative: bool = False,
    reference_type: str | None = None,
    reference_id: int | None = None,
    unit_cost: Decimal | None = None,
    occurred_at: datetime | None = None,
) -> Decimal:
    delta = parse_quantity(delta, field='delta')
    if delta == 0:
        raise ValidationError('Adjustment delta cannot be zero', store_id=store_id, product_id=product_id)
    clean_reason = (reason or '').strip()
    if not clean_reason:
        raise ValidationError('Adjustment reason is required')
    ensure_store(db, store_id)
    ensure_product(db, product_id)

    line = lock_lines(db, [(store_id, product_id)])[(store_id, product_id)]
    current = to_quantity(line.quantity)
    new_quantity = current + delta
    if new_quantity < 0 and not allow_negative:
        raise NegativeInventory(
            'Insufficient stock',
            shortages=[
                {
                    'store_id': store_id,
                    'product_id': product_id,
                    'requested': str(-delta),
                    'available': str(current),
                }
            ],
        )

    line.quantity = new_quantity
    line.updated_at = _now()
    db.add(
        InventoryTransaction(
            store_id=store_id,
            product_id=product_id,
            delta=delta,
            quantity_after=new_quantity,
            reason=clean_reason,
            reference_type=reference_type,
            reference_id=reference_id,
            unit_cost=unit_cost,
            actor_id=actor_id,
            occurred_at=occurred_at or _now(),
        )
    )
    db.flush()
    logger.info(
        'Ledger adjust store=%s product=%s delta=%s quantity=%s reason=%s',
        store_id,
        product_id,
        delta,
        new_quantity,
        clean_reason,
    )
    return new_quantity


def read(db: Session, *, store_id: int, product_id: int) -> Decimal:
    quantity = db.execute(
        select(InventoryLine.quantity).where(
            InventoryLine.store_id == store_id,
            InventoryLine.product_id == product_id,
        )
    ).scalar_one_or_none()
    return to_quantity(quantity)


def set_quantity(
    db: Session,
    *,
    store_id: int,
    product_id: int,
    new_quantity,
    actor_id: int,
    reason: str = 'Manual Stock Update',
    allow_negative: bool = False,
) -> Decimal:
    target = parse_quantity(new_quantity, field='new_quantity')
    if target < 0 and not allow_negative:
        raise ValidationError('New quantity cannot be negative', store_id=store_id, product_id=product_id)
    ensure_store(db, store_id)
    ensure_product(db, product_id)

    line = lock_lines(db, [(store_id, product_id)])[(store_id, product_id)]
    delta = target - to_quantity(line.quantity)
    if delta == 0:
        raise ValidationError('New quantity must be different from current quantity', store_id=store_id, product_id=product_id)
    return adjust(
        db,
        store_id=store_id,
        product_id=product_id,
        delta=delta,
        reason=reason,
        actor_id=actor_id,
        allow_negative=allow_negative,
        reference_type='manual_correction',
    )


def snapshot_as_of(db: Session, *, as_of: date, store_id: int | None = None) -> list[dict]:
    cutoff = datetime.combine(as_of + timedelta(days=1), time.min, tzinfo=timezone.utc)
    query = (
        select(
            InventoryTransaction.store_id,
            InventoryTransaction.product_id,
            func.sum(InventoryTransaction.delta).label('quantity'),
        )
        .where(InventoryTransaction.occurred_at < cutoff)
        .group_by(InventoryTransaction.store_id, InventoryTransaction.product_id)
    )
    if store_id is not None:
        query = query.where(InventoryTransaction.store_id == store_id)

    totals = db.execute(query).all()
    products = {
        product.id: product
        for product in db.execute(select(Product).where(Product.id.in_({row.product_id for row in totals}))).scalars()
    } if totals else {}
    stores = {store.id: store for store in db.execute(select(Store)).scalars()}

    rows: list[dict] = []
    for row in totals:
        quantity = to_quantity(row.quantity)
        if quantity == 0:
            continue
        product = products[row.product_id]
        store = stores[row.store_id]
        rows.append(
            {
                'store_id': row.store_id,
                'store_name': store.name,
                'product_id': row.product_id,
                'product_code': product.code,
                'product_name': product.name,
                'quantity': quantity,
                'inventory_value': (quantity * to_quantity(product.cost_price)).quantize(Decimal('0.01')),
            }
        )
    rows.sort(key=lambda item: (item['store_name'], item['product_name']))
    return rows


def transfer_stock(
    db: Session,
    *,
    from_store_id: int,
    to_store_id: int,
    transfer_date: date,
    items: list[dict],
    actor_id: int,
    reference: str | None = None,
    notes: str | None = None,
) -> StockTransfer:
    if from_store_id == to_store_id:
        raise ValidationError('Source and destination stores must differ')
    ensure_store(db, from_store_id)
    ensure_store(db, to_store_id)
    if not items:
        raise ValidationError('Select at least one product to transfer')

    quantity_by_product: dict[int, Decimal] = {}
    for item in items:
        product_id = int(item['product_id'])
        quantity = parse_quantity(item.get('quantity'))
        if quantity <= 0:
            raise ValidationError('Transfer quantity must be greater than zero', product_id=product_id)
        ensure_product(db, product_id)
        quantity_by_product[product_id] = quantity_by_product.get(product_id, ZERO) + quantity

    keys = [(store_id, product_id) for product_id in quantity_by_product for store_id in (from_store_id, to_store_id)]
    lines = lock_lines(db, keys)

    shortages = []
    for product_id, quantity in sorted(quantity_by_product.items()):
        available = to_quantity(lines[(from_store_id, product_id)].quantity)
        if available < quantity:
            shortages.append(
                {
                    'store_id': from_store_id,
                    'product_id': product_id,
                    'requested': str(quantity),
                    'available': str(available),
                }
            )
    if shortages:
        raise NegativeInventory('Insufficient quantity for transfer', shortages=shortages)

    transfer = StockTransfer(
        reference=(reference or '').strip() or None,
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        transfer_date=transfer_date,
        staff_id=actor_id,
        notes=notes,
    )
    db.add(transfer)
    db.flush()

    occurred_at = datetime.combine(transfer_date, _now().time(), tzinfo=timezone.utc)
    for product_id, quantity in sorted(quantity_by_product.items()):
        db.add(StockTransferItem(stock_transfer_id=transfer.id, product_id=product_id, quantity=quantity))
        adjust(
            db,
            store_id=from_store_id,
            product_id=product_id,
            delta=-quantity,
            reason='stock transfer out',
            actor_id=actor_id,
            reference_type='stock_transfer',
            reference_id=transfer.id,
            occurred_at=occurred_at,
        )
        adjust(
            db,
            store_id=to_store_id,
            product_id=product_id,
            delta=quantity,
            reason='stock transfer in',
            actor_id=actor_id,
            reference_type='stock_transfer',
            reference_id=transfer.id,
            occurred_at=occurred_at,
        )
    db.flush()
    return transfer


def list_transfers(db: Session, *, store_id: int | None = None, limit: int = 200) -> list[dict]:
    query = select(StockTransfer)
    if store_id is not None:
        query = query.where((StockTransfer.from_store_id == store_id) | (StockTransfer.to_store_id == store_id))
    transfers = db.execute(
        query.order_by(StockTransfer.transfer_date.desc(), StockTransfer.id.desc()).limit(limit)
    ).scalars().all()
    transfer_ids = [transfer.id for transfer in transfers]
    items_by_transfer: dict[int, list[dict]] = {}
    if transfer_ids:
        for item in db.execute(
            select(StockTransferItem).where(StockTransferItem.stock_transfer_id.in_(transfer_ids))
        ).scalars():
            items_by_transfer.setdefault(item.stock_transfer_id, []).append(
                {'product_id': item.product_id, 'quantity': item.quantity}
            )
    return [
        {
            'id': transfer.id,
            'reference': transfer.reference,
            'from_store_id': transfer.from_store_id,
            'to_store_id': transfer.to_store_id,
            'transfer_date': transfer.transfer_date,
            'staff_id': transfer.staff_id,
            'notes': transfer.notes,
            'items': items_by_transfer.get(transfer.id, []),
        }
        for transfer in transfers
    ]


def list_transactions(
    db: Session,
    *,
    store_id: int | None = None,
    product_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 500,
) -> list[dict]:
    query = select(InventoryTransaction).order_by(InventoryTransaction.occurred_at.desc(), InventoryTransaction.id.desc())
    if store_id is not None:
        query = query.where(InventoryTransaction.store_id == store_id)
    if product_id is not None:
        query = query.where(InventoryTransaction.product_id == product_id)
    if date_from is not None:
        query = query.where(InventoryTransaction.occurred_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to is not None:
        query = query.where(
            InventoryTransaction.occurred_at < datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )
    return [
        {
            'id': row.id,
            'store_id': row.store_id,
            'product_id': row.product_id,
            'delta': row.delta,
            'quantity_after': row.quantity_after,
            'reason': row.reason,
            'reference_type': row.reference_type,
            'reference_id': row.reference_id,
            'unit_cost': row.unit_cost,
            'actor_id': row.actor_id,
            'occurred_at': row.occurred_at,
        }
        for row in db.execute(query.limit(limit)).scalars().all()
    ]


def store_inventory(db: Session, *, store_id: int) -> list[dict]:
    ensure_store(db, store_id)
    rows = db.execute(
        select(InventoryLine, Product)
        .join(Product, Product.id == InventoryLine.product_id)
        .where(InventoryLine.store_id == store_id)
        .order_by(Product.name.asc())
    ).all()
    return [
        {
            'store_id': line.store_id,
            'product_id': product.id,
            'product_code': product.code,
            'product_name': product.name,
            'unit_of_measure': product.unit_of_measure,
            'quantity': line.quantity,
            'inventory_value': (to_quantity(line.quantity) * to_quantity(product.cost_price)).quantize(Decimal('0.01')),
            'last_updated': line.updated_at,
        }
        for line, product in rows
    ]


def stock_summary(db: Session) -> dict:
    """Per-product quantities across every active store; a read-only projection of the ledger."""
    stores = db.execute(select(Store).where(Store.active.is_(True)).order_by(Store.name.asc())).scalars().all()
    products = db.execute(select(Product).where(Product.active.is_(True)).order_by(Product.name.asc())).scalars().all()
    quantities: dict[tuple[int, int], Decimal] = {
        (line.product_id, line.store_id): to_quantity(line.quantity)
        for line in db.execute(select(InventoryLine)).scalars()
    }

    rows = []
    for product in products:
        by_store = {store.id: quantities.get((product.id, store.id), ZERO) for store in stores}
        total = sum(by_store.values(), ZERO)
        rows.append(
            {
                'product_id': product.id,
                'product_code': product.code,
                'product_name': product.name,
                'reorder_level': product.reorder_level,
                'quantities_by_store': by_store,
                'total_quantity': total,
                'below_reorder_level': total < to_quantity(product.reorder_level),
            }
        )
    return {
        'stores': [{'id': store.id, 'code': store.code, 'name': store.name} for store in stores],
        'products': rows,
    }
