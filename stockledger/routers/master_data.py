from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.services.audit_service import list_audit_log
from stockledger.services.master_data_service import (
    create_customer,
    create_product,
    create_rider,
    create_store,
    create_supplier,
    list_customers,
    list_products,
    list_riders,
    list_stores,
    list_suppliers,
)
from stockledger.web import run_audited

router = APIRouter(prefix='/api', tags=['master-data'])


class ActorBody(BaseModel):
    actor_id: int = Field(gt=0)


class StoreCreate(ActorBody):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1)


class ProductCreate(ActorBody):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    unit_of_measure: str = 'each'
    cost_price: Decimal = Decimal('0.00')
    selling_price: Decimal = Decimal('0.00')
    reorder_level: Decimal = Decimal('0')


class PartyCreate(ActorBody):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1)
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None


class RiderCreate(ActorBody):
    name: str = Field(min_length=1)
    contact: str = Field(min_length=1)
    id_number: str | None = None


def _store_row(store) -> dict:
    return {'id': store.id, 'code': store.code, 'name': store.name, 'active': store.active}


def _product_row(product) -> dict:
    return {
        'id': product.id,
        'code': product.code,
        'name': product.name,
        'unit_of_measure': product.unit_of_measure,
        'cost_price': product.cost_price,
        'selling_price': product.selling_price,
        'reorder_level': product.reorder_level,
    }


def _party_row(party) -> dict:
    return {
        'id': party.id,
        'code': party.code,
        'name': party.name,
        'contact_person': party.contact_person,
        'phone': party.phone,
        'email': party.email,
    }


def _rider_row(rider) -> dict:
    return {'id': rider.id, 'name': rider.name, 'contact': rider.contact, 'id_number': rider.id_number}


def _created(db: Session, request: Request, *, actor_id: int, action: str, operation) -> int:
    record = run_audited(
        db,
        request,
        actor_id=actor_id,
        action=action,
        operation=operation,
        metadata=lambda record: {'id': record.id},
    )
    return record.id


@router.post('/stores')
def create_store_route(body: StoreCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    store_id = _created(
        db,
        request,
        actor_id=body.actor_id,
        action='STORE_CREATED',
        operation=lambda: create_store(db, code=body.code, name=body.name),
    )
    return {'success': True, 'id': store_id}


@router.get('/stores')
def list_stores_route(include_inactive: bool = False, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'stores': [_store_row(store) for store in list_stores(db, include_inactive=include_inactive)]}


@router.post('/products')
def create_product_route(body: ProductCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    product_id = _created(
        db,
        request,
        actor_id=body.actor_id,
        action='PRODUCT_CREATED',
        operation=lambda: create_product(
            db,
            code=body.code,
            name=body.name,
            unit_of_measure=body.unit_of_measure,
            cost_price=body.cost_price,
            selling_price=body.selling_price,
            reorder_level=body.reorder_level,
        ),
    )
    return {'success': True, 'id': product_id}


@router.get('/products')
def list_products_route(include_inactive: bool = False, db: Session = Depends(get_db)) -> dict:
    products = list_products(db, include_inactive=include_inactive)
    return {'success': True, 'products': [_product_row(product) for product in products]}


@router.post('/customers')
def create_customer_route(body: PartyCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    customer_id = _created(
        db,
        request,
        actor_id=body.actor_id,
        action='CUSTOMER_CREATED',
        operation=lambda: create_customer(
            db,
            code=body.code,
            name=body.name,
            contact_person=body.contact_person,
            phone=body.phone,
            email=body.email,
        ),
    )
    return {'success': True, 'id': customer_id}


@router.get('/customers')
def list_customers_route(db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'customers': [_party_row(customer) for customer in list_customers(db)]}


@router.post('/suppliers')
def create_supplier_route(body: PartyCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    supplier_id = _created(
        db,
        request,
        actor_id=body.actor_id,
        action='SUPPLIER_CREATED',
        operation=lambda: create_supplier(
            db,
            code=body.code,
            name=body.name,
            contact_person=body.contact_person,
            phone=body.phone,
            email=body.email,
        ),
    )
    return {'success': True, 'id': supplier_id}


@router.get('/suppliers')
def list_suppliers_route(db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'suppliers': [_party_row(supplier) for supplier in list_suppliers(db)]}


@router.post('/riders')
def create_rider_route(body: RiderCreate, request: Request, db: Session = Depends(get_db)) -> dict:
    rider_id = _created(
        db,
        request,
        actor_id=body.actor_id,
        action='RIDER_CREATED',
        operation=lambda: create_rider(db, name=body.name, contact=body.contact, id_number=body.id_number),
    )
    return {'success': True, 'id': rider_id}


@router.get('/riders')
def list_riders_route(include_inactive: bool = False, db: Session = Depends(get_db)) -> dict:
    return {'success': True, 'riders': [_rider_row(rider) for rider in list_riders(db, include_inactive=include_inactive)]}


@router.get('/audit-log')
def audit_log_route(action: str | None = None, limit: int = 200, db: Session = Depends(get_db)) -> dict:
    entries = list_audit_log(db, action=action, limit=min(max(limit, 1), 1000))
    return {
        'success': True,
        'entries': [
            {
                'id': entry.id,
                'actor_id': entry.actor_id,
                'action': entry.action,
                'ip': entry.ip,
                'metadata': entry.meta,
                'created_at': entry.created_at,
            }
            for entry in entries
        ],
    }
