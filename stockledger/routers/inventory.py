from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.services.inventory_service import (
    list_transactions,
    list_transfers,
    set_quantity,
    snapshot_as_of,
    stock_summary,
    store_inventory,
    transfer_stock,
)
from stockledger.services.opening_balance_service import list_opening_balances, save_opening_quantities
from stockledger.services.stock_take_service import get_stock_take_items, list_stock_takes, post_stock_take
from stockledger.web import read_or_404, run_audited

router = APIRouter(prefix='/api', tags=['inventory'])


class CountLine(BaseModel):
    product_id: int
    counted_quantity: Decimal


class StockTakeBody(BaseModel):
    store_id: int
    staff_id: int = Field(gt=0)
    notes: str | None = None
    items: list[CountLine] = Field(min_length=1)


class OpeningLine(BaseModel):
    store_id: int
    product_id: int
    opening_quantity: Decimal


class OpeningQuantitiesBody(BaseModel):
    actor_id: int = Field(gt=0)
    items: list[OpeningLine] = Field(min_length=1)


class UpdateStockQuantityBody(BaseModel):
    actor_id: int = Field(gt=0)
    store_id: int
    product_id: int
    new_quantity: Decimal
    reason: str = 'Manual Stock Update'


class TransferLine(BaseModel):
    product_id: int
    quantity: Decimal


class StockTransferBody(BaseModel):
    actor_id: int = Field(gt=0)
    from_store_id: int
    to_store_id: int
    transfer_date: date
    reference: str | None = None
    notes: str | None = None
    items: list[TransferLine] = Field(min_length=1)


@router.post('/stock-take')
def stock_take_route(body: StockTakeBody, request: Request, db: Session = Depends(get_db)) -> dict:
    result = run_audited(
        db,
        request,
        actor_id=body.staff_id,
        action='STOCK_TAKE_POSTED',
        operation=lambda: post_stock_take(
            db,
            store_id=body.store_id,
            counts=[line.model_dump() for line in body.items],
            staff_id=body.staff_id,
            notes=body.notes,
        ),
        metadata=lambda result: {
            'stock_take_id': result.stock_take.id,
            'store_id': body.store_id,
            'adjusted_products': len(result.adjustments),
        },
    )
    return {'success': True, 'stock_take_id': result.stock_take.id, 'adjustments': result.adjustments}


@router.get('/stock-take-history')
def stock_take_history_route(store_id: int | None = None, limit: int = 100, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'stock_takes': list_stock_takes(db, store_id=store_id, limit=limit)}


@router.get('/stock-take-history/{stock_take_id}/items')
def stock_take_items_route(stock_take_id: int, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'items': read_or_404(lambda: get_stock_take_items(db, stock_take_id=stock_take_id))}


@router.post('/opening-quantities')
def save_opening_quantities_route(body: OpeningQuantitiesBody, request: Request, db: Session = Depends(get_db)) -> dict:
    balances = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='OPENING_QUANTITIES_SAVED',
        operation=lambda: save_opening_quantities(
            db,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
        ),
        metadata=lambda balances: {'pairs': [[balance.store_id, balance.product_id] for balance in balances]},
    )
    return {'success': True, 'saved': len(balances)}


@router.get('/opening-quantities')
def list_opening_quantities_route(store_id: int | None = None, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'opening_quantities': list_opening_balances(db, store_id=store_id)}


@router.get('/stock-summary')
def stock_summary_route(db: Session = Depends(get_db)) -> dict:
    return {'success': True, **stock_summary(db)}


@router.get('/stores/{store_id}/inventory')
def store_inventory_route(store_id: int, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'inventory': read_or_404(lambda: store_inventory(db, store_id=store_id))}


@router.post('/update-stock-quantity')
def update_stock_quantity_route(body: UpdateStockQuantityBody, request: Request, db: Session = Depends(get_db)) -> dict:
    quantity = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='STOCK_QUANTITY_UPDATED',
        operation=lambda: set_quantity(
            db,
            store_id=body.store_id,
            product_id=body.product_id,
            new_quantity=body.new_quantity,
            actor_id=body.actor_id,
            reason=body.reason,
        ),
        metadata=lambda quantity: {'store_id': body.store_id, 'product_id': body.product_id, 'quantity': quantity},
    )
    return {'success': True, 'quantity': quantity}


@router.post('/stock-transfers')
def stock_transfer_route(body: StockTransferBody, request: Request, db: Session = Depends(get_db)) -> dict:
    transfer = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='STOCK_TRANSFERRED',
        operation=lambda: transfer_stock(
            db,
            from_store_id=body.from_store_id,
            to_store_id=body.to_store_id,
            transfer_date=body.transfer_date,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
            reference=body.reference,
            notes=body.notes,
        ),
        metadata=lambda transfer: {
            'stock_transfer_id': transfer.id,
            'from_store_id': body.from_store_id,
            'to_store_id': body.to_store_id,
        },
    )
    return {'success': True, 'stock_transfer_id': transfer.id}


@router.get('/stock-transfers')
def list_stock_transfers_route(store_id: int | None = None, limit: int = 200, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'stock_transfers': list_transfers(db, store_id=store_id, limit=limit)}


@router.get('/inventory-transactions')
def inventory_transactions_route(
    store_id: int | None = None,
    product_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 500,
    db: Session = Depends(get_db),
) -> dict:
    rows = list_transactions(
        db,
        store_id=store_id,
        product_id=product_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )
    return {'success': True, 'transactions': rows}


@router.get('/inventory-as-of')
def inventory_as_of_route(as_of: date, store_id: int | None = None, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'as_of': as_of, 'inventory': snapshot_as_of(db, as_of=as_of, store_id=store_id)}
