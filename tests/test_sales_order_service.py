from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from stockledger.errors import InvalidStateTransition, ValidationError
from stockledger.models import (
    DeliveryNote,
    DeliveryNoteStatus,
    OrderProgress,
    SalesOrderItem,
    SalesOrderStatus,
)
from stockledger.services import inventory_service
from stockledger.services.delivery_note_service import (
    assign_rider_to_delivery_note,
    create_delivery_note,
    mark_delivered,
)
from stockledger.services.invoice_service import convert_to_invoice
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
)
from tests.support import ACTOR_ID, add_customer, add_product, add_rider, add_store, make_session


class SalesOrderServiceTests(unittest.TestCase):
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
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _order(self, quantity: str = '20', *, approve: bool = True):
        order = create_sales_order(
            self.db,
            customer_id=self.customer.id,
            store_id=self.store.id,
            order_date=date(2024, 6, 1),
            items=[{'product_id': self.product.id, 'quantity': quantity, 'unit_price': '100', 'tax_type': 'VAT_16'}],
            actor_id=ACTOR_ID,
        )
        if approve:
            approve_sales_order(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)
        self.db.commit()
        return order

    def _item(self, order) -> SalesOrderItem:
        return self.db.execute(select(SalesOrderItem).where(SalesOrderItem.sales_order_id == order.id)).scalar_one()

    def _ship(self, order, quantity: str):
        note = create_delivery_note(
            self.db,
            sales_order_id=order.id,
            delivery_date=date(2024, 6, 2),
            items=[{'sales_order_item_id': self._item(order).id, 'quantity': quantity}],
            actor_id=ACTOR_ID,
        )
        assign_rider_to_delivery_note(self.db, delivery_note_id=note.id, rider_id=self.rider.id, actor_id=ACTOR_ID)
        mark_delivered(self.db, delivery_note_id=note.id, actor_id=ACTOR_ID)
        self.db.commit()
        return note

    def _on_hand(self) -> Decimal:
        return inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id)

    def test_create_prices_lines_and_starts_new(self) -> None:
        order = self._order(approve=False)
        self.assertEqual(order.status, SalesOrderStatus.DRAFT)
        self.assertEqual(order.my_status, OrderProgress.NEW)
        self.assertEqual(order.so_number, f'SO-{order.id:06d}')
        self.assertEqual(order.subtotal, Decimal('2000.00'))
        self.assertEqual(order.tax_amount, Decimal('320.00'))
        item = self._item(order)
        self.assertEqual(item.total_price, Decimal('2320.00'))
        self.assertEqual(item.shipped_quantity, Decimal('0'))

    def test_create_with_unknown_customer_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            create_sales_order(
                self.db,
                customer_id=9999,
                store_id=self.store.id,
                order_date=date(2024, 6, 1),
                items=[{'product_id': self.product.id, 'quantity': '1', 'unit_price': '1'}],
                actor_id=ACTOR_ID,
            )

    def test_approve_and_decline_transitions(self) -> None:
        order = self._order()
        self.assertEqual(order.status, SalesOrderStatus.CONFIRMED)
        self.assertEqual(order.my_status, OrderProgress.APPROVED)
        with self.assertRaises(InvalidStateTransition):
            approve_sales_order(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)

        declined = decline_sales_order(self.db, sales_order_id=self._order(approve=False).id, actor_id=ACTOR_ID)
        self.assertEqual(declined.my_status, OrderProgress.DECLINED)
        self.assertEqual(declined.status, SalesOrderStatus.CANCELLED)

    def test_rider_assignment_requires_approved_order(self) -> None:
        new_order = self._order(approve=False)
        with self.assertRaises(InvalidStateTransition):
            assign_rider_to_order(self.db, sales_order_id=new_order.id, rider_id=self.rider.id, actor_id=ACTOR_ID)

        order = self._order()
        assign_rider_to_order(self.db, sales_order_id=order.id, rider_id=self.rider.id, actor_id=ACTOR_ID)
        self.assertEqual(order.my_status, OrderProgress.IN_TRANSIT)
        self.assertEqual(order.rider_id, self.rider.id)
        with self.assertRaises(InvalidStateTransition):
            assign_rider_to_order(self.db, sales_order_id=order.id, rider_id=self.rider.id, actor_id=ACTOR_ID)

    def test_receive_back_restores_stock_once(self) -> None:
        order = self._order()
        self._ship(order, '12')
        self.assertEqual(self._on_hand(), Decimal('38'))

        cancel_sales_order(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)
        movements = receive_back_to_stock(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)
        self.db.commit()
        self.assertEqual(len(movements), 1)
        self.assertEqual(movements[0]['quantity'], Decimal('12'))
        self.assertEqual(self._on_hand(), Decimal('50'))
        self.assertEqual(self._item(order).shipped_quantity, Decimal('0'))

        self.assertEqual(receive_back_to_stock(self.db, sales_order_id=order.id, actor_id=ACTOR_ID), [])
        self.assertEqual(self._on_hand(), Decimal('50'))

    def test_receive_back_requires_cancelled_order(self) -> None:
        order = self._order()
        self._ship(order, '5')
        with self.assertRaises(InvalidStateTransition):
            receive_back_to_stock(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)

    def test_cancel_closes_open_delivery_notes(self) -> None:
        order = self._order()
        create_delivery_note(
            self.db,
            sales_order_id=order.id,
            delivery_date=date(2024, 6, 2),
            items=[{'sales_order_item_id': self._item(order).id, 'quantity': '3'}],
            actor_id=ACTOR_ID,
        )
        cancel_sales_order(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)
        statuses = self.db.execute(
            select(DeliveryNote.status).where(DeliveryNote.sales_order_id == order.id)
        ).scalars().all()
        self.assertEqual(statuses, [DeliveryNoteStatus.CANCELLED])
        self.assertEqual(order.my_status, OrderProgress.CANCELLED)

    def test_invoiced_order_cannot_be_cancelled(self) -> None:
        order = self._order()
        convert_to_invoice(self.db, sales_order_id=order.id, actor_id=ACTOR_ID, invoice_date=date(2024, 6, 3))
        with self.assertRaises(InvalidStateTransition):
            cancel_sales_order(self.db, sales_order_id=order.id, actor_id=ACTOR_ID)

    def test_close_partial_delivery(self) -> None:
        order = self._order()
        assign_rider_to_order(self.db, sales_order_id=order.id, rider_id=self.rider.id, actor_id=ACTOR_ID)
        with self.assertRaises(InvalidStateTransition):
            close_partial_delivery(self.db, sales_order_id=order.id, actor_id=ACTOR_ID, reason='customer closed')

        self._ship(order, '12')
        close_partial_delivery(self.db, sales_order_id=order.id, actor_id=ACTOR_ID, reason='customer closed')
        self.assertEqual(order.my_status, OrderProgress.COMPLETE)
        self.assertEqual(order.status, SalesOrderStatus.DELIVERED)
        self.assertTrue(order.partially_closed)
        self.assertIn('customer closed', order.notes)

    def test_close_partial_after_delivery_note_without_order_rider(self) -> None:
        order = self._order()
        self._ship(order, '12')
        self.assertEqual(order.my_status, OrderProgress.APPROVED)

        close_partial_delivery(self.db, sales_order_id=order.id, actor_id=ACTOR_ID, reason='remaining 8 not needed')
        self.assertEqual(order.my_status, OrderProgress.COMPLETE)
        self.assertEqual(order.status, SalesOrderStatus.DELIVERED)
        self.assertTrue(order.partially_closed)
        self.assertEqual(self._item(order).shipped_quantity, Decimal('12'))

    def test_close_partial_rejects_unapproved_order(self) -> None:
        order = self._order(approve=False)
        with self.assertRaises(InvalidStateTransition):
            close_partial_delivery(self.db, sales_order_id=order.id, actor_id=ACTOR_ID, reason='customer closed')

    def test_detail_and_list(self) -> None:
        order = self._order()
        detail = get_sales_order_detail(self.db, sales_order_id=order.id)
        self.assertEqual(detail['customer_name'], self.customer.name)
        self.assertEqual(detail['my_status_label'], 'Approved')
        self.assertEqual(detail['items'][0]['product_code'], self.product.code)

        rows = list_sales_orders(self.db, my_status=int(OrderProgress.APPROVED))
        self.assertEqual([row['id'] for row in rows], [order.id])


if __name__ == '__main__':
    unittest.main()
