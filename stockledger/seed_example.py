from decimal import Decimal

from sqlalchemy import select

from stockledger.db import SessionLocal, engine
from stockledger.models import Base, Customer, InventoryOpeningBalance, Product, Rider, Store, Supplier
from stockledger.services.opening_balance_service import save_opening_quantities

SEED_ACTOR_ID = 1

STORES = [('MAIN', 'Main Warehouse'), ('TOWN', 'Town Shop')]
PRODUCTS = [
    ('RICE-5KG', 'Rice 5kg', Decimal('450.00'), Decimal('520.00'), Decimal('20')),
    ('OIL-1L', 'Cooking Oil 1L', Decimal('210.00'), Decimal('260.00'), Decimal('30')),
    ('SUGAR-2KG', 'Sugar 2kg', Decimal('230.00'), Decimal('280.00'), Decimal('25')),
]


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        for code, name in STORES:
            if not db.execute(select(Store).where(Store.code == code)).scalar_one_or_none():
                db.add(Store(code=code, name=name, active=True))
        for code, name, cost, price, reorder in PRODUCTS:
            if not db.execute(select(Product).where(Product.code == code)).scalar_one_or_none():
                db.add(Product(code=code, name=name, cost_price=cost, selling_price=price, reorder_level=reorder, active=True))
        if not db.execute(select(Customer).where(Customer.code == 'WALKIN')).scalar_one_or_none():
            db.add(Customer(code='WALKIN', name='Walk-in Customer'))
        if not db.execute(select(Supplier).where(Supplier.code == 'DEMO-SUP')).scalar_one_or_none():
            db.add(Supplier(code='DEMO-SUP', name='Demo Supplier', contact_person='Supplies Desk'))
        if not db.execute(select(Rider).where(Rider.name == 'Demo Rider')).scalar_one_or_none():
            db.add(Rider(name='Demo Rider', contact='0700000000', active=True))
        db.flush()

        main_store = db.execute(select(Store).where(Store.code == 'MAIN')).scalar_one()
        already_seeded = db.execute(
            select(InventoryOpeningBalance.id).where(InventoryOpeningBalance.store_id == main_store.id)
        ).first()
        if not already_seeded:
            products = db.execute(select(Product).order_by(Product.code.asc())).scalars().all()
            save_opening_quantities(
                db,
                items=[
                    {'store_id': main_store.id, 'product_id': product.id, 'opening_quantity': Decimal('100')}
                    for product in products
                ],
                actor_id=SEED_ACTOR_ID,
            )
        db.commit()


if __name__ == '__main__':
    seed()
