from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, tuple_
from sqlalchemy.orm import Session

from stockledger.errors import DuplicateOpeningBalance, ValidationError
from stockledger.models import InventoryOpeningBalance, Product, Store
from stockledger.services import inventory_service
from stockledger.services.inventory_service import parse_quantity, to_quantity

logger = logging.getLogger(__name__)


def _describe(store: Store, product: Product) -> dict:
    return {
        'store_id': store.id,
        'store_code': store.code,
        'store_name': store.name,
        'product_id': product.id,
        'product_code': product.code,
        'product_name': product.name,
    }


def save_opening_quantities(db: Session, *, items: list[dict], actor_id: int) -> list[InventoryOpeningBalance]:
    """Seed opening stock once per (store, product).

    Pairs already seeded, or repeated in the same request, are rejected as a
    set and nothing is written.
    """
    if not items:
        raise ValidationError('Enter at least one opening quantity')

    parsed: list[tuple[Store, Product, Decimal]] = []
    seen: set[tuple[int, int]] = set()
    duplicates: list[dict] = []
    for item in items:
        store = inventory_service.ensure_store(db, int(item['store_id']))
        product = inventory_service.ensure_product(db, int(item['product_id']))
        quantity = parse_quantity(item.get('opening_quantity'), field='opening_quantity')
        if quantity < 0:
            raise ValidationError('Opening quantity cannot be negative', store_id=store.id, product_id=product.id)
        key = (store.id, product.id)
        if key in seen:
            duplicates.append(_describe(store, product))
            continue
        seen.add(key)
        parsed.append((store, product, quantity))

    # Lock the inventory lines first so two concurrent seeds of one pair serialize here.
    inventory_service.lock_lines(db, seen)
    existing = set(
        db.execute(
            select(InventoryOpeningBalance.store_id, InventoryOpeningBalance.product_id).where(
                tuple_(InventoryOpeningBalance.store_id, InventoryOpeningBalance.product_id).in_(sorted(seen))
            )
        ).all()
    )
    for store, product, _ in parsed:
        if (store.id, product.id) in existing:
            duplicates.append(_describe(store, product))
    if duplicates:
        raise DuplicateOpeningBalance('Opening quantities already exist for some items', duplicate_items=duplicates)

    balances = []
    for store, product, quantity in parsed:
        balance = InventoryOpeningBalance(
            store_id=store.id,
            product_id=product.id,
            opening_quantity=quantity,
            actor_id=actor_id,
        )
        db.add(balance)
        balances.append(balance)
        if quantity > 0:
            inventory_service.adjust(
                db,
                store_id=store.id,
                product_id=product.id,
                delta=quantity,
                reason='opening balance',
                actor_id=actor_id,
                reference_type='opening_balance',
            )
    db.flush()
    logger.info('Saved %s opening balances by actor %s', len(balances), actor_id)
    return balances


def list_opening_balances(db: Session, *, store_id: int | None = None) -> list[dict]:
    query = (
        select(InventoryOpeningBalance, Store, Product)
        .join(Store, Store.id == InventoryOpeningBalance.store_id)
        .join(Product, Product.id == InventoryOpeningBalance.product_id)
        .order_by(Store.name.asc(), Product.name.asc())
    )
    if store_id is not None:
        query = query.where(InventoryOpeningBalance.store_id == store_id)
    return [
        {
            **_describe(store, product),
            'opening_quantity': balance.opening_quantity,
            'created_at': balance.created_at,
        }
        for balance, store, product in db.execute(query).all()
    ]
