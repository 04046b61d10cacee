from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.models import PurchaseOrderStatus
from stockledger.services.purchase_order_service import (
    cancel_purchase_order,
    create_purchase_order,
    get_purchase_order_with_receipts,
    list_purchase_orders,
    receive_items,
    send_purchase_order,
    serialize_receipt,
    update_purchase_order_items,
)
from stockledger.web import read_or_404, run_audited

router = APIRouter(prefix='/api', tags=['purchasing'])


class OrderLine(BaseModel):
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    tax_type: str | None = None


class ActorBody(BaseModel):
    actor_id: int = Field(gt=0)


class PurchaseOrderCreate(ActorBody):
    supplier_id: int
    order_date: date
    expected_delivery_date: date | None = None
    notes: str | None = None
    items: list[OrderLine] = Field(min_length=1)


class PurchaseOrderItemsUpdate(ActorBody):
    items: list[OrderLine] = Field(min_length=1)


class ReceiveLine(BaseModel):
    product_id: int
    received_quantity: Decimal
    unit_cost: Decimal | None = None


class ReceiveBody(ActorBody):
    store_id: int
    items: list[ReceiveLine]
    notes: str | None = None


class ReceiveItemsBody(ReceiveBody):
    po_id: int


def _summary(po) -> dict:
    return {'success': True, 'purchase_order_id': po.id, 'po_number': po.po_number, 'status': po.status.value}


def _receive(db: Session, request: Request, purchase_order_id: int, body: ReceiveBody) -> dict:
    result = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='PURCHASE_ORDER_RECEIVED',
        operation=lambda: receive_items(
            db,
            purchase_order_id=purchase_order_id,
            store_id=body.store_id,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
            notes=body.notes,
        ),
        metadata=lambda result: {
            'purchase_order_id': purchase_order_id,
            'store_id': body.store_id,
            'receipt_ids': [receipt.id for receipt in result.receipts],
            'po_status': result.po_status,
        },
    )
    return {
        'success': True,
        'receipts': [serialize_receipt(receipt) for receipt in result.receipts],
        'po_status': result.po_status,
    }


@router.post('/purchase-orders')
def create_purchase_order_route(body: PurchaseOrderCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    po = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='PURCHASE_ORDER_CREATED',
        operation=lambda: create_purchase_order(
            db,
            supplier_id=body.supplier_id,
            order_date=body.order_date,
            expected_delivery_date=body.expected_delivery_date,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
            notes=body.notes,
        ),
        metadata=lambda po: {'purchase_order_id': po.id, 'supplier_id': po.supplier_id},
    )
    return _summary(po)


@router.put('/purchase-orders/{purchase_order_id}/items')
def update_purchase_order_items_route(
    purchase_order_id: int,
    body: PurchaseOrderItemsUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    po = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='PURCHASE_ORDER_ITEMS_UPDATED',
        operation=lambda: update_purchase_order_items(
            db,
            purchase_order_id=purchase_order_id,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
        ),
        metadata=lambda po: {'purchase_order_id': po.id, 'item_count': len(body.items)},
    )
    return _summary(po)


@router.post('/purchase-orders/{purchase_order_id}/send')
def send_purchase_order_route(purchase_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    po = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='PURCHASE_ORDER_SENT',
        operation=lambda: send_purchase_order(db, purchase_order_id=purchase_order_id, actor_id=body.actor_id),
        metadata=lambda po: {'purchase_order_id': po.id},
    )
    return _summary(po)


@router.post('/purchase-orders/{purchase_order_id}/cancel')
def cancel_purchase_order_route(purchase_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    po = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='PURCHASE_ORDER_CANCELLED',
        operation=lambda: cancel_purchase_order(db, purchase_order_id=purchase_order_id, actor_id=body.actor_id),
        metadata=lambda po: {'purchase_order_id': po.id},
    )
    return _summary(po)


@router.get('/purchase-orders')
def list_purchase_orders_route(status: str | None = None, limit: int = 100, db: Session = Depends(get_db)) -> dict:
    status_filter = None
    if status:
        try:
            status_filter = PurchaseOrderStatus(status.strip().upper())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    return {'success': True, 'purchase_orders': list_purchase_orders(db, status=status_filter, limit=limit)}


@router.get('/purchase-orders/{purchase_order_id}/with-receipts')
def purchase_order_with_receipts_route(purchase_order_id: int, db: Session = Depends(get_db)) -> dict:
    detail = read_or_404(lambda: get_purchase_order_with_receipts(db, purchase_order_id=purchase_order_id))
    return {'success': True, 'purchase_order': detail}


@router.post('/purchase-orders/{purchase_order_id}/receive')
def receive_purchase_order_route(
    purchase_order_id: int,
    body: ReceiveBody,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    return _receive(db, request, purchase_order_id, body)


@router.post('/receive-items')
def receive_items_route(body: ReceiveItemsBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _receive(db, request, body.po_id, body)
