from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.models import SalesOrderStatus
from stockledger.services.credit_note_service import create_credit_note, list_credit_notes
from stockledger.services.delivery_note_service import (
    assign_rider_to_delivery_note,
    cancel_delivery_note,
    create_delivery_note,
    get_delivery_note_detail,
    list_delivery_notes,
    mark_delivered,
)
from stockledger.services.invoice_service import (
    convert_to_invoice,
    get_invoice_detail,
    list_invoices,
    record_invoice_payment,
    serialize_invoice,
)
from stockledger.services.sales_order_service import (
    approve_sales_order,
    assign_rider_to_order,
    cancel_sales_order,
    close_partial_delivery,
    create_sales_order,
    decline_sales_order,
    get_sales_order_detail,
    list_sales_orders,
    receive_back_to_stock,
    serialize_order,
    update_sales_order_items,
)
from stockledger.web import read_or_404, run_audited

router = APIRouter(prefix='/api', tags=['sales'])


class ActorBody(BaseModel):
    actor_id: int = Field(gt=0)


class OrderLine(BaseModel):
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    tax_type: str | None = None


class SalesOrderCreate(ActorBody):
    customer_id: int
    store_id: int
    order_date: date
    expected_delivery_date: date | None = None
    notes: str | None = None
    items: list[OrderLine] = Field(min_length=1)


class SalesOrderItemsUpdate(ActorBody):
    items: list[OrderLine] = Field(min_length=1)


class RiderBody(ActorBody):
    rider_id: int


class AssignRiderBody(RiderBody):
    order_id: int | None = None
    delivery_note_id: int | None = None

    @model_validator(mode='after')
    def _one_target(self):
        if (self.order_id is None) == (self.delivery_note_id is None):
            raise ValueError('Provide exactly one of order_id or delivery_note_id')
        return self


class ClosePartialBody(ActorBody):
    reason: str = Field(min_length=1)


class InvoiceBody(ActorBody):
    invoice_date: date
    due_date: date | None = None


class DeliveryLine(BaseModel):
    sales_order_item_id: int
    quantity: Decimal


class DeliveryNoteCreate(ActorBody):
    sales_order_id: int
    delivery_date: date
    notes: str | None = None
    items: list[DeliveryLine] = Field(min_length=1)


class MarkDeliveredBody(ActorBody):
    delivery_note_id: int


class ReceiveBackBody(ActorBody):
    order_id: int


class PaymentBody(ActorBody):
    amount: Decimal
    paid_at: datetime | None = None


class CreditLine(BaseModel):
    invoice_id: int | None = None
    product_id: int
    quantity: Decimal
    unit_price: Decimal


class CreditNoteCreate(ActorBody):
    customer_id: int
    original_invoice_id: int
    credit_date: date
    reason: str = Field(min_length=1)
    items: list[CreditLine] = Field(min_length=1)


def _order_response(order) -> dict:
    return {'success': True, 'sales_order': serialize_order(order)}


def _order_action(db: Session, request: Request, *, actor_id: int, action: str, operation) -> dict:
    order = run_audited(
        db,
        request,
        actor_id=actor_id,
        action=action,
        operation=operation,
        metadata=lambda order: {'sales_order_id': order.id, 'status': order.status.value, 'my_status': order.my_status},
    )
    return _order_response(order)


def _receive_back(db: Session, request: Request, sales_order_id: int, actor_id: int) -> dict:
    movements = run_audited(
        db,
        request,
        actor_id=actor_id,
        action='SALES_ORDER_RECEIVED_BACK_TO_STOCK',
        operation=lambda: receive_back_to_stock(db, sales_order_id=sales_order_id, actor_id=actor_id),
        metadata=lambda movements: {'sales_order_id': sales_order_id, 'lines': len(movements)},
    )
    return {'success': True, 'movements': movements}


@router.post('/sales-orders')
def create_sales_order_route(body: SalesOrderCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_CREATED',
        operation=lambda: create_sales_order(
            db,
            customer_id=body.customer_id,
            store_id=body.store_id,
            order_date=body.order_date,
            expected_delivery_date=body.expected_delivery_date,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
            notes=body.notes,
        ),
    )


@router.put('/sales-orders/{sales_order_id}/items')
def update_sales_order_items_route(
    sales_order_id: int,
    body: SalesOrderItemsUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_ITEMS_UPDATED',
        operation=lambda: update_sales_order_items(
            db,
            sales_order_id=sales_order_id,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
        ),
    )


@router.post('/sales-orders/{sales_order_id}/approve')
def approve_sales_order_route(sales_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_APPROVED',
        operation=lambda: approve_sales_order(db, sales_order_id=sales_order_id, actor_id=body.actor_id),
    )


@router.post('/sales-orders/{sales_order_id}/decline')
def decline_sales_order_route(sales_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_DECLINED',
        operation=lambda: decline_sales_order(db, sales_order_id=sales_order_id, actor_id=body.actor_id),
    )


@router.post('/sales-orders/{sales_order_id}/cancel')
def cancel_sales_order_route(sales_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_CANCELLED',
        operation=lambda: cancel_sales_order(db, sales_order_id=sales_order_id, actor_id=body.actor_id),
    )


@router.post('/sales-orders/{sales_order_id}/assign-rider')
def assign_rider_to_order_route(sales_order_id: int, body: RiderBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_RIDER_ASSIGNED',
        operation=lambda: assign_rider_to_order(
            db,
            sales_order_id=sales_order_id,
            rider_id=body.rider_id,
            actor_id=body.actor_id,
        ),
    )


@router.post('/sales-orders/{sales_order_id}/receive-back-to-stock')
def receive_back_to_stock_route(sales_order_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _receive_back(db, request, sales_order_id, body.actor_id)


@router.post('/sales-orders/{sales_order_id}/close-partial')
def close_partial_delivery_route(
    sales_order_id: int,
    body: ClosePartialBody,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    return _order_action(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_PARTIAL_CLOSED',
        operation=lambda: close_partial_delivery(
            db,
            sales_order_id=sales_order_id,
            actor_id=body.actor_id,
            reason=body.reason,
        ),
    )


@router.post('/sales-orders/{sales_order_id}/convert-to-invoice')
def convert_to_invoice_route(sales_order_id: int, body: InvoiceBody, request: Request, db: Session = Depends(get_db)) -> dict:
    invoice = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='SALES_ORDER_INVOICED',
        operation=lambda: convert_to_invoice(
            db,
            sales_order_id=sales_order_id,
            actor_id=body.actor_id,
            invoice_date=body.invoice_date,
            due_date=body.due_date,
        ),
        metadata=lambda invoice: {'sales_order_id': sales_order_id, 'invoice_id': invoice.id},
    )
    return {'success': True, 'invoice': serialize_invoice(invoice)}


@router.get('/sales-orders')
def list_sales_orders_route(
    status: str | None = None,
    my_status: int | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
) -> dict:
    status_filter = None
    if status:
        try:
            status_filter = SalesOrderStatus(status.strip().upper())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail='Invalid status filter') from exc
    return {'success': True, 'sales_orders': list_sales_orders(db, status=status_filter, my_status=my_status, limit=limit)}


@router.get('/sales-orders/{sales_order_id}')
def sales_order_detail_route(sales_order_id: int, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'sales_order': read_or_404(lambda: get_sales_order_detail(db, sales_order_id=sales_order_id))}


@router.post('/assign-rider')
def assign_rider_route(body: AssignRiderBody, request: Request, db: Session = Depends(get_db)) -> dict:
    if body.order_id is not None:
        run_audited(
            db,
            request,
            actor_id=body.actor_id,
            action='SALES_ORDER_RIDER_ASSIGNED',
            operation=lambda: assign_rider_to_order(db, sales_order_id=body.order_id, rider_id=body.rider_id, actor_id=body.actor_id),
            metadata=lambda order: {'sales_order_id': order.id, 'rider_id': body.rider_id},
        )
    else:
        run_audited(
            db,
            request,
            actor_id=body.actor_id,
            action='DELIVERY_NOTE_RIDER_ASSIGNED',
            operation=lambda: assign_rider_to_delivery_note(
                db,
                delivery_note_id=body.delivery_note_id,
                rider_id=body.rider_id,
                actor_id=body.actor_id,
            ),
            metadata=lambda note: {'delivery_note_id': note.id, 'rider_id': body.rider_id},
        )
    return {'success': True}


@router.post('/delivery-notes')
def create_delivery_note_route(body: DeliveryNoteCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    note = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='DELIVERY_NOTE_CREATED',
        operation=lambda: create_delivery_note(
            db,
            sales_order_id=body.sales_order_id,
            delivery_date=body.delivery_date,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
            notes=body.notes,
        ),
        metadata=lambda note: {'delivery_note_id': note.id, 'sales_order_id': note.sales_order_id},
    )
    return {'success': True, 'delivery_note_id': note.id, 'dn_number': note.dn_number}


@router.post('/delivery-notes/{delivery_note_id}/assign-rider')
def assign_rider_to_delivery_note_route(
    delivery_note_id: int,
    body: RiderBody,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='DELIVERY_NOTE_RIDER_ASSIGNED',
        operation=lambda: assign_rider_to_delivery_note(
            db,
            delivery_note_id=delivery_note_id,
            rider_id=body.rider_id,
            actor_id=body.actor_id,
        ),
        metadata=lambda note: {'delivery_note_id': note.id, 'rider_id': body.rider_id},
    )
    return {'success': True}


@router.post('/mark-delivered')
def mark_delivered_route(body: MarkDeliveredBody, request: Request, db: Session = Depends(get_db)) -> dict:
    run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='DELIVERY_NOTE_DELIVERED',
        operation=lambda: mark_delivered(db, delivery_note_id=body.delivery_note_id, actor_id=body.actor_id),
        metadata=lambda note: {'delivery_note_id': note.id, 'sales_order_id': note.sales_order_id},
    )
    return {'success': True}


@router.post('/delivery-notes/{delivery_note_id}/cancel')
def cancel_delivery_note_route(delivery_note_id: int, body: ActorBody, request: Request, db: Session = Depends(get_db)) -> dict:
    run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='DELIVERY_NOTE_CANCELLED',
        operation=lambda: cancel_delivery_note(db, delivery_note_id=delivery_note_id, actor_id=body.actor_id),
        metadata=lambda note: {'delivery_note_id': note.id},
    )
    return {'success': True}


@router.get('/delivery-notes')
def list_delivery_notes_route(sales_order_id: int | None = None, limit: int = 200, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'delivery_notes': list_delivery_notes(db, sales_order_id=sales_order_id, limit=limit)}


@router.get('/delivery-notes/{delivery_note_id}')
def delivery_note_detail_route(delivery_note_id: int, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'delivery_note': read_or_404(lambda: get_delivery_note_detail(db, delivery_note_id=delivery_note_id))}


@router.post('/receive-back-to-stock')
def receive_back_to_stock_by_body_route(body: ReceiveBackBody, request: Request, db: Session = Depends(get_db)) -> dict:
    return _receive_back(db, request, body.order_id, body.actor_id)


@router.get('/invoices')
def list_invoices_route(customer_id: int | None = None, limit: int = 200, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'invoices': list_invoices(db, customer_id=customer_id, limit=limit)}


@router.get('/invoices/{invoice_id}')
def invoice_detail_route(invoice_id: int, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'invoice': read_or_404(lambda: get_invoice_detail(db, invoice_id=invoice_id))}


@router.post('/invoices/{invoice_id}/payments')
def record_invoice_payment_route(invoice_id: int, body: PaymentBody, request: Request, db: Session = Depends(get_db)) -> dict:
    invoice = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='INVOICE_PAYMENT_RECORDED',
        operation=lambda: record_invoice_payment(
            db,
            invoice_id=invoice_id,
            amount=body.amount,
            actor_id=body.actor_id,
            paid_at=body.paid_at,
        ),
        metadata=lambda invoice: {'invoice_id': invoice.id, 'amount': body.amount, 'status': invoice.status.value},
    )
    return {'success': True, 'invoice': serialize_invoice(invoice)}


@router.post('/credit-notes')
def create_credit_note_route(body: CreditNoteCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    note = run_audited(
        db,
        request,
        actor_id=body.actor_id,
        action='CREDIT_NOTE_CREATED',
        operation=lambda: create_credit_note(
            db,
            customer_id=body.customer_id,
            original_invoice_id=body.original_invoice_id,
            credit_date=body.credit_date,
            reason=body.reason,
            items=[line.model_dump() for line in body.items],
            actor_id=body.actor_id,
        ),
        metadata=lambda note: {'credit_note_id': note.id, 'original_invoice_id': note.original_invoice_id},
    )
    return {
        'success': True,
        'credit_note_id': note.id,
        'credit_note_number': note.credit_note_number,
        'total_amount': note.total_amount,
    }


@router.get('/credit-notes')
def list_credit_notes_route(customer_id: int | None = None, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'credit_notes': list_credit_notes(db, customer_id=customer_id)}
