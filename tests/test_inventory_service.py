from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from stockledger.errors import NegativeInventory, ValidationError
from stockledger.models import InventoryTransaction
from stockledger.services import inventory_service
from stockledger.services.ledger_transaction import run_ledger_operation
from tests.support import ACTOR_ID, add_product, add_store, make_session


class InventoryServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.other_store = add_store(self.db, code='TOWN', name='Town Shop')
        self.product = add_product(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _adjust(self, delta: str, **kwargs) -> Decimal:
        return inventory_service.adjust(
            self.db,
            store_id=kwargs.pop('store_id', self.store.id),
            product_id=self.product.id,
            delta=Decimal(delta),
            reason=kwargs.pop('reason', 'test movement'),
            actor_id=ACTOR_ID,
            **kwargs,
        )

    def test_read_without_line_is_zero(self) -> None:
        self.assertEqual(inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id), Decimal('0'))

    def test_adjust_creates_line_and_appends_transaction(self) -> None:
        self.assertEqual(self._adjust('12'), Decimal('12'))
        self.assertEqual(self._adjust('-5'), Decimal('7'))

        self.assertEqual(inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id), Decimal('7'))
        deltas = self.db.execute(select(InventoryTransaction.delta).order_by(InventoryTransaction.id.asc())).scalars().all()
        self.assertEqual(deltas, [Decimal('12'), Decimal('-5')])

    def test_zero_delta_and_blank_reason_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._adjust('0')
        with self.assertRaises(ValidationError):
            self._adjust('3', reason='   ')

    def test_adjust_below_zero_raises_with_shortage(self) -> None:
        self._adjust('2')
        with self.assertRaises(NegativeInventory) as ctx:
            self._adjust('-5')
        self.assertEqual(Decimal(ctx.exception.shortages[0]['available']), Decimal('2'))
        self.assertEqual(Decimal(ctx.exception.shortages[0]['requested']), Decimal('5'))

    def test_allow_negative_overrides_floor(self) -> None:
        self.assertEqual(self._adjust('-3', allow_negative=True), Decimal('-3'))

    def test_set_quantity_posts_difference(self) -> None:
        self._adjust('10')
        self.assertEqual(
            inventory_service.set_quantity(
                self.db,
                store_id=self.store.id,
                product_id=self.product.id,
                new_quantity=Decimal('4'),
                actor_id=ACTOR_ID,
            ),
            Decimal('4'),
        )
        last = self.db.execute(select(InventoryTransaction).order_by(InventoryTransaction.id.desc())).scalars().first()
        self.assertEqual(last.delta, Decimal('-6'))
        self.assertEqual(last.reference_type, 'manual_correction')

        with self.assertRaises(ValidationError):
            inventory_service.set_quantity(
                self.db,
                store_id=self.store.id,
                product_id=self.product.id,
                new_quantity=Decimal('4'),
                actor_id=ACTOR_ID,
            )

    def test_snapshot_as_of_excludes_later_movements(self) -> None:
        self._adjust('10', occurred_at=datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc))
        self._adjust('5', occurred_at=datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc))
        self._adjust('-8', occurred_at=datetime(2024, 1, 20, 9, 0, tzinfo=timezone.utc))

        rows = inventory_service.snapshot_as_of(self.db, as_of=date(2024, 1, 15))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['quantity'], Decimal('15'))
        self.assertEqual(rows[0]['inventory_value'], Decimal('150.00'))

        self.assertEqual(inventory_service.snapshot_as_of(self.db, as_of=date(2024, 1, 9)), [])

    def test_transfer_moves_stock_between_stores(self) -> None:
        self._adjust('10')
        inventory_service.transfer_stock(
            self.db,
            from_store_id=self.store.id,
            to_store_id=self.other_store.id,
            transfer_date=date(2024, 3, 1),
            items=[{'product_id': self.product.id, 'quantity': '4'}],
            actor_id=ACTOR_ID,
        )
        self.assertEqual(inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id), Decimal('6'))
        self.assertEqual(inventory_service.read(self.db, store_id=self.other_store.id, product_id=self.product.id), Decimal('4'))

    def test_transfer_history_and_store_views(self) -> None:
        self._adjust('10')
        transfer = inventory_service.transfer_stock(
            self.db,
            from_store_id=self.store.id,
            to_store_id=self.other_store.id,
            transfer_date=date(2024, 3, 1),
            items=[{'product_id': self.product.id, 'quantity': '4'}],
            actor_id=ACTOR_ID,
            reference=' TR-1 ',
        )

        history = inventory_service.list_transfers(self.db, store_id=self.other_store.id)
        self.assertEqual([row['reference'] for row in history], ['TR-1'])
        self.assertEqual(history[0]['items'][0]['quantity'], Decimal('4'))

        movements = inventory_service.list_transactions(self.db, store_id=self.other_store.id)
        self.assertEqual([row['reason'] for row in movements], ['stock transfer in'])
        self.assertEqual(movements[0]['reference_id'], transfer.id)

        inventory = inventory_service.store_inventory(self.db, store_id=self.other_store.id)
        self.assertEqual(inventory[0]['product_code'], self.product.code)
        self.assertEqual(inventory[0]['quantity'], Decimal('4'))

    def test_transfer_shortage_leaves_both_stores_unchanged(self) -> None:
        self._adjust('3')
        self.db.commit()

        with self.assertRaises(NegativeInventory) as ctx:
            run_ledger_operation(
                self.db,
                lambda: inventory_service.transfer_stock(
                    self.db,
                    from_store_id=self.store.id,
                    to_store_id=self.other_store.id,
                    transfer_date=date(2024, 3, 1),
                    items=[{'product_id': self.product.id, 'quantity': '5'}],
                    actor_id=ACTOR_ID,
                ),
            )
        self.assertEqual(ctx.exception.shortages[0]['product_id'], self.product.id)
        self.assertEqual(inventory_service.read(self.db, store_id=self.store.id, product_id=self.product.id), Decimal('3'))
        self.assertEqual(inventory_service.read(self.db, store_id=self.other_store.id, product_id=self.product.id), Decimal('0'))

    def test_transfer_to_same_store_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            inventory_service.transfer_stock(
                self.db,
                from_store_id=self.store.id,
                to_store_id=self.store.id,
                transfer_date=date(2024, 3, 1),
                items=[{'product_id': self.product.id, 'quantity': '1'}],
                actor_id=ACTOR_ID,
            )

    def test_stock_summary_totals_across_stores(self) -> None:
        self._adjust('4')
        self._adjust('6', store_id=self.other_store.id)
        summary = inventory_service.stock_summary(self.db)
        row = summary['products'][0]
        self.assertEqual(row['total_quantity'], Decimal('10'))
        self.assertEqual(row['quantities_by_store'][self.store.id], Decimal('4'))
        self.assertEqual(len(summary['stores']), 2)


if __name__ == '__main__':
    unittest.main()
