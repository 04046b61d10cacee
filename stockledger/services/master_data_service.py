from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.errors import ValidationError
from stockledger.models import Customer, Product, Rider, Store, Supplier
from stockledger.services.inventory_service import to_quantity


def _clean(value: str | None, *, field: str) -> str:
    clean = (value or '').strip()
    if not clean:
        raise ValidationError(f'{field} is required')
    return clean


def _optional(value: str | None) -> str | None:
    clean = (value or '').strip()
    return clean or None


def _ensure_unique_code(db: Session, model, code: str) -> None:
    if db.execute(select(model.id).where(model.code == code)).scalar_one_or_none() is not None:
        raise ValidationError(f'Code {code!r} is already in use', code=code)


def create_store(db: Session, *, code: str, name: str) -> Store:
    clean_code = _clean(code, field='Code').upper()
    _ensure_unique_code(db, Store, clean_code)
    store = Store(code=clean_code, name=_clean(name, field='Name'), active=True)
    db.add(store)
    db.flush()
    return store


def list_stores(db: Session, *, include_inactive: bool = False) -> list[Store]:
    query = select(Store).order_by(Store.name.asc())
    if not include_inactive:
        query = query.where(Store.active.is_(True))
    return db.execute(query).scalars().all()


def create_product(
    db: Session,
    *,
    code: str,
    name: str,
    unit_of_measure: str = 'each',
    cost_price=Decimal('0.00'),
    selling_price=Decimal('0.00'),
    reorder_level=Decimal('0'),
) -> Product:
    clean_code = _clean(code, field='Code').upper()
    _ensure_unique_code(db, Product, clean_code)
    cost = to_quantity(cost_price, field='cost_price')
    price = to_quantity(selling_price, field='selling_price')
    reorder = to_quantity(reorder_level, field='reorder_level')
    if cost < 0 or price < 0 or reorder < 0:
        raise ValidationError('Prices and reorder level cannot be negative', code=clean_code)
    product = Product(
        code=clean_code,
        name=_clean(name, field='Name'),
        unit_of_measure=_optional(unit_of_measure) or 'each',
        cost_price=cost,
        selling_price=price,
        reorder_level=reorder,
        active=True,
    )
    db.add(product)
    db.flush()
    return product


def list_products(db: Session, *, include_inactive: bool = False) -> list[Product]:
    query = select(Product).order_by(Product.name.asc())
    if not include_inactive:
        query = query.where(Product.active.is_(True))
    return db.execute(query).scalars().all()


def create_customer(
    db: Session,
    *,
    code: str,
    name: str,
    contact_person: str | None = None,
    phone: str | None = None,
    email: str | None = None,
) -> Customer:
    clean_code = _clean(code, field='Code').upper()
    _ensure_unique_code(db, Customer, clean_code)
    customer = Customer(
        code=clean_code,
        name=_clean(name, field='Name'),
        contact_person=_optional(contact_person),
        phone=_optional(phone),
        email=_optional(email),
    )
    db.add(customer)
    db.flush()
    return customer


def list_customers(db: Session) -> list[Customer]:
    return db.execute(select(Customer).order_by(Customer.name.asc())).scalars().all()


def create_supplier(
    db: Session,
    *,
    code: str,
    name: str,
    contact_person: str | None = None,
    phone: str | None = None,
    email: str | None = None,
) -> Supplier:
    clean_code = _clean(code, field='Code').upper()
    _ensure_unique_code(db, Supplier, clean_code)
    supplier = Supplier(
        code=clean_code,
        name=_clean(name, field='Name'),
        contact_person=_optional(contact_person),
        phone=_optional(phone),
        email=_optional(email),
    )
    db.add(supplier)
    db.flush()
    return supplier


def list_suppliers(db: Session) -> list[Supplier]:
    return db.execute(select(Supplier).order_by(Supplier.name.asc())).scalars().all()


def create_rider(db: Session, *, name: str, contact: str, id_number: str | None = None) -> Rider:
    rider = Rider(
        name=_clean(name, field='Name'),
        contact=_clean(contact, field='Contact'),
        id_number=_optional(id_number),
        active=True,
    )
    db.add(rider)
    db.flush()
    return rider


def list_riders(db: Session, *, include_inactive: bool = False) -> list[Rider]:
    query = select(Rider).order_by(Rider.name.asc())
    if not include_inactive:
        query = query.where(Rider.active.is_(True))
    return db.execute(query).scalars().all()
