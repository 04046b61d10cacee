from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import NotFound, ValidationError
from stockledger.models import Product, StockTake, StockTakeItem, Store
from stockledger.services import inventory_service
from stockledger.services.inventory_service import ZERO, parse_quantity, to_quantity

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class StockTakeResult:
    stock_take: StockTake
    adjustments: list[dict] = field(default_factory=list)


def _counted_quantity(raw, *, product_id: int) -> Decimal:
    counted = parse_quantity(raw, field='counted_quantity')
    if counted >= 0:
        return counted
    if settings.stock_take_negative_counts == 'clamp':
        logger.warning('Negative count %s for product %s clamped to zero', counted, product_id)
        return ZERO
    raise ValidationError('Counted quantity cannot be negative', product_id=product_id, counted_quantity=str(counted))


def post_stock_take(
    db: Session,
    *,
    store_id: int,
    counts: list[dict],
    staff_id: int,
    notes: str | None = None,
) -> StockTakeResult:
    """Reconcile a store's ledger to a physical count.

    Every product in ``counts`` is evaluated and recorded; only rows where the
    count differs from the ledger are adjusted and returned. Running the same
    counts again returns no adjustments.
    """
    inventory_service.ensure_store(db, store_id)
    if not counts:
        raise ValidationError('Enter at least one counted product')

    counted_by_product: dict[int, Decimal] = {}
    for row in counts:
        product_id = int(row['product_id'])
        if product_id in counted_by_product:
            raise ValidationError('Product counted more than once', product_id=product_id)
        inventory_service.ensure_product(db, product_id)
        counted_by_product[product_id] = _counted_quantity(row.get('counted_quantity'), product_id=product_id)

    lines = inventory_service.lock_lines(db, [(store_id, product_id) for product_id in counted_by_product])

    take = StockTake(store_id=store_id, staff_id=staff_id, notes=notes, taken_at=_now())
    db.add(take)
    db.flush()

    adjustments = []
    for product_id, counted in sorted(counted_by_product.items()):
        system_quantity = to_quantity(lines[(store_id, product_id)].quantity)
        diff = counted - system_quantity
        db.add(
            StockTakeItem(
                stock_take_id=take.id,
                product_id=product_id,
                system_quantity=system_quantity,
                counted_quantity=counted,
                diff=diff,
            )
        )
        if diff == 0:
            continue
        inventory_service.adjust(
            db,
            store_id=store_id,
            product_id=product_id,
            delta=diff,
            reason='stock take',
            actor_id=staff_id,
            reference_type='stock_take',
            reference_id=take.id,
        )
        adjustments.append(
            {
                'product_id': product_id,
                'system_quantity': system_quantity,
                'counted_quantity': counted,
                'diff': diff,
            }
        )
    db.flush()
    logger.info('Stock take %s at store %s: %s of %s products adjusted', take.id, store_id, len(adjustments), len(counted_by_product))
    return StockTakeResult(stock_take=take, adjustments=adjustments)


def list_stock_takes(db: Session, *, store_id: int | None = None, limit: int = 100) -> list[dict]:
    adjusted_count = (
        select(StockTakeItem.stock_take_id, func.count(StockTakeItem.id).label('adjusted'))
        .where(StockTakeItem.diff != 0)
        .group_by(StockTakeItem.stock_take_id)
        .subquery()
    )
    query = (
        select(StockTake, Store.name, adjusted_count.c.adjusted)
        .join(Store, Store.id == StockTake.store_id)
        .outerjoin(adjusted_count, adjusted_count.c.stock_take_id == StockTake.id)
        .order_by(StockTake.taken_at.desc(), StockTake.id.desc())
        .limit(limit)
    )
    if store_id is not None:
        query = query.where(StockTake.store_id == store_id)
    return [
        {
            'id': take.id,
            'store_id': take.store_id,
            'store_name': store_name,
            'staff_id': take.staff_id,
            'notes': take.notes,
            'taken_at': take.taken_at,
            'adjusted_products': adjusted or 0,
        }
        for take, store_name, adjusted in db.execute(query).all()
    ]


def get_stock_take_items(db: Session, *, stock_take_id: int) -> list[dict]:
    if db.execute(select(StockTake.id).where(StockTake.id == stock_take_id)).scalar_one_or_none() is None:
        raise NotFound('Stock take not found', stock_take_id=stock_take_id)
    rows = db.execute(
        select(StockTakeItem, Product.code, Product.name)
        .join(Product, Product.id == StockTakeItem.product_id)
        .where(StockTakeItem.stock_take_id == stock_take_id)
        .order_by(Product.name.asc())
    ).all()
    return [
        {
            'product_id': item.product_id,
            'product_code': code,
            'product_name': name,
            'system_quantity': item.system_quantity,
            'counted_quantity': item.counted_quantity,
            'diff': item.diff,
        }
        for item, code, name in rows
    ]
