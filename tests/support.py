from __future__ import annotations

from decimal import Decimal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.models import Base, Customer, Product, Rider, Store, Supplier

ACTOR_ID = 7


def make_engine(url: str = 'sqlite:///:memory:', **connect_args):
    if url == 'sqlite:///:memory:':
        engine = create_engine(
            url,
            connect_args={'check_same_thread': False, **connect_args},
            poolclass=StaticPool,
        )
    else:
        # File databases give each session its own connection, so writers really contend.
        engine = create_engine(url, connect_args={'check_same_thread': False, **connect_args})

    # pysqlite needs to hand transaction control to SQLAlchemy for SAVEPOINT to work.
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(bind=engine)
    return engine


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_session() -> Session:
    return make_session_factory(make_engine())()


def add_store(db: Session, *, code: str = 'MAIN', name: str = 'Main Warehouse', active: bool = True) -> Store:
    store = Store(code=code, name=name, active=active)
    db.add(store)
    db.commit()
    return store


def add_product(
    db: Session,
    *,
    code: str = 'RICE',
    name: str = 'Rice 5kg',
    cost_price: str = '10.00',
    selling_price: str = '15.00',
    reorder_level: str = '0',
) -> Product:
    product = Product(
        code=code,
        name=name,
        cost_price=Decimal(cost_price),
        selling_price=Decimal(selling_price),
        reorder_level=Decimal(reorder_level),
        active=True,
    )
    db.add(product)
    db.commit()
    return product


def add_customer(db: Session, *, code: str = 'CUST1', name: str = 'Acme Retail') -> Customer:
    customer = Customer(code=code, name=name)
    db.add(customer)
    db.commit()
    return customer


def add_supplier(db: Session, *, code: str = 'SUP1', name: str = 'Valley Wholesale') -> Supplier:
    supplier = Supplier(code=code, name=name)
    db.add(supplier)
    db.commit()
    return supplier


def add_rider(db: Session, *, name: str = 'Juma', contact: str = '0711000000') -> Rider:
    rider = Rider(name=name, contact=contact, active=True)
    db.add(rider)
    db.commit()
    return rider
