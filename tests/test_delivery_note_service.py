from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from stockledger.errors import InvalidStateTransition, NegativeInventory, QuantityExceeded
from stockledger.models import DeliveryNoteItem, OrderProgress, SalesOrderItem, SalesOrderStatus
from stockledger.services import inventory_service
from stockledger.services.delivery_note_service import (
    assign_rider_to_delivery_note,
    cancel_delivery_note,
    create_delivery_note,
    get_delivery_note_detail,
    mark_delivered,
)
from stockledger.services.sales_order_service import approve_sales_order, create_sales_order
from tests.support import ACTOR_ID, add_customer, add_product, add_rider, add_store, make_session


class DeliveryNoteServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.product = add_product(self.db)
        self.customer = add_customer(self.db)
        self.rider = add_rider(self.db)
        inventory_service.adjust(
            self.db,
            store_id=self.store.id,
            product_id=self.product.id,
            delta=Decimal('50'),
            reason='opening balance',
            actor_id=ACTOR_ID,
        )
        self.order = create_sales_order(
            self.db,
            customer_id=self.customer.id,
            store_id=self.store.id,
            order_date=date(2024, 6, 1),
            items=[{'product_id': self.product.id, 'quantity': '20', 'unit_price': '100'}],
            actor_id=ACTOR_ID,
        )
        approve_sales_order(self.db, sales_order_id=self.order.id, actor_id=ACTOR_ID)
        self.db.commit()
        self.item = self.db.execute(
            select(SalesOrderItem).where(SalesOrderItem.sales_order_id == self.order.id)
        ).scalar_one()

    def tearDown(self) -> None:
        self.db.close()

    def _note(self, quantity: str):
        return create_delivery_note(
            self.db,
            sales_order_id=self.order.id,
            delivery_date=date(2024, 6, 2),
            items=[{'sales_order_item_id': self.item.id, 'quantity': quantity}],
            actor_id=ACTOR_ID,
        )

    def _deliver(self, quantity: str):
        note = self._note(quantity)
        assign_rider_to_delivery_note(self.db, delivery_note_id=note.id, rider_id=self.rider.id, actor_id=ACTOR_ID)
        mark_delivered(self.db, delivery_note_id=note.id, actor_id=ACTOR_ID)
        self.db.commit()
        return note

    def _on_hand(self) -> Decimal:
        return inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id)

    def test_twelve_then_eight_completes_and_blocks_overship(self) -> None:
        self._deliver('12')
        self.assertEqual(self.item.shipped_quantity, Decimal('12'))
        self.assertEqual(self.order.status, SalesOrderStatus.SHIPPED)
        self.assertEqual(self.order.my_status, OrderProgress.APPROVED)
        self.assertEqual(self._on_hand(), Decimal('38'))

        self._deliver('8')
        self.assertEqual(self.item.shipped_quantity, Decimal('20'))
        self.assertEqual(self.order.my_status, OrderProgress.COMPLETE)
        self.assertEqual(self.order.status, SalesOrderStatus.DELIVERED)
        self.assertEqual(self._on_hand(), Decimal('30'))

        delivered = self.db.execute(select(DeliveryNoteItem.delivered_quantity)).scalars().all()
        self.assertEqual(sum(delivered, Decimal('0')), Decimal('20'))

        with self.assertRaises(QuantityExceeded):
            self._note('1')

    def test_open_notes_reserve_remaining_quantity(self) -> None:
        self._note('15')
        with self.assertRaises(QuantityExceeded) as ctx:
            self._note('6')
        self.assertEqual(Decimal(ctx.exception.details['remaining_quantity']), Decimal('5'))

    def test_cancelled_note_releases_its_reservation(self) -> None:
        note = self._note('15')
        cancel_delivery_note(self.db, delivery_note_id=note.id, actor_id=ACTOR_ID)
        self._note('20')
        self.assertEqual(self._on_hand(), Decimal('50'))

    def test_delivery_needs_rider_first(self) -> None:
        note = self._note('5')
        with self.assertRaises(InvalidStateTransition):
            mark_delivered(self.db, delivery_note_id=note.id, actor_id=ACTOR_ID)
        self.assertEqual(self._on_hand(), Decimal('50'))

    def test_rider_only_assignable_to_prepared_note(self) -> None:
        note = self._deliver('5')
        with self.assertRaises(InvalidStateTransition):
            assign_rider_to_delivery_note(self.db, delivery_note_id=note.id, rider_id=self.rider.id, actor_id=ACTOR_ID)

    def test_delivery_without_stock_raises_negative_inventory(self) -> None:
        inventory_service.set_quantity(
            self.db,
            store_id=self.store.id,
            product_id=self.product.id,
            new_quantity=Decimal('3'),
            actor_id=ACTOR_ID,
        )
        note = self._note('5')
        assign_rider_to_delivery_note(self.db, delivery_note_id=note.id, rider_id=self.rider.id, actor_id=ACTOR_ID)
        with self.assertRaises(NegativeInventory):
            mark_delivered(self.db, delivery_note_id=note.id, actor_id=ACTOR_ID)

    def test_note_on_unapproved_order_is_rejected(self) -> None:
        order = create_sales_order(
            self.db,
            customer_id=self.customer.id,
            store_id=self.store.id,
            order_date=date(2024, 6, 1),
            items=[{'product_id': self.product.id, 'quantity': '2', 'unit_price': '100'}],
            actor_id=ACTOR_ID,
        )
        item_id = self.db.execute(select(SalesOrderItem.id).where(SalesOrderItem.sales_order_id == order.id)).scalar_one()
        with self.assertRaises(InvalidStateTransition):
            create_delivery_note(
                self.db,
                sales_order_id=order.id,
                delivery_date=date(2024, 6, 2),
                items=[{'sales_order_item_id': item_id, 'quantity': '1'}],
                actor_id=ACTOR_ID,
            )

    def test_detail_lists_planned_and_delivered(self) -> None:
        note = self._deliver('4')
        detail = get_delivery_note_detail(self.db, delivery_note_id=note.id)
        self.assertEqual(detail['status'], 'DELIVERED')
        self.assertEqual(detail['rider_name'], self.rider.name)
        self.assertEqual(detail['items'][0]['delivered_quantity'], Decimal('4'))
        self.assertEqual(detail['items'][0]['ordered_quantity'], Decimal('20'))


if __name__ == '__main__':
    unittest.main()
