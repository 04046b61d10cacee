from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from stockledger.config import settings
from stockledger.errors import NotFound, ValidationError
from stockledger.services import inventory_service
from stockledger.services.ledger_transaction import run_ledger_operation
from stockledger.services.stock_take_service import get_stock_take_items, list_stock_takes, post_stock_take
from tests.support import ACTOR_ID, add_product, add_store, make_session


class StockTakeServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.product_a = add_product(self.db, code='A', name='Product A')
        self.product_b = add_product(self.db, code='B', name='Product B')
        for product, quantity in ((self.product_a, '10'), (self.product_b, '50')):
            inventory_service.adjust(
                self.db,
                store_id=self.store.id,
                product_id=product.id,
                delta=Decimal(quantity),
                reason='opening balance',
                actor_id=ACTOR_ID,
            )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _post(self, counts: dict[int, str]):
        return post_stock_take(
            self.db,
            store_id=self.store.id,
            counts=[{'product_id': product_id, 'counted_quantity': quantity} for product_id, quantity in counts.items()],
            staff_id=ACTOR_ID,
        )

    def _on_hand(self, product_id: int) -> Decimal:
        return inventory_service.read(self.db, store_id=self.store.id, product_id=product_id)

    def test_count_of_forty_five_against_fifty(self) -> None:
        result = self._post({self.product_a.id: '10', self.product_b.id: '45'})
        self.assertEqual(
            result.adjustments,
            [
                {
                    'product_id': self.product_b.id,
                    'system_quantity': Decimal('50'),
                    'counted_quantity': Decimal('45'),
                    'diff': Decimal('-5'),
                }
            ],
        )
        self.assertEqual(self._on_hand(self.product_b.id), Decimal('45'))
        self.assertEqual(self._on_hand(self.product_a.id), Decimal('10'))

    def test_repeating_the_same_counts_adjusts_nothing(self) -> None:
        counts = {self.product_a.id: '12', self.product_b.id: '45'}
        self.assertEqual(len(self._post(counts).adjustments), 2)
        self.assertEqual(self._post(counts).adjustments, [])

    def test_every_evaluated_product_is_recorded(self) -> None:
        result = self._post({self.product_a.id: '10', self.product_b.id: '49'})
        items = get_stock_take_items(self.db, stock_take_id=result.stock_take.id)
        self.assertEqual(len(items), 2)
        history = list_stock_takes(self.db, store_id=self.store.id)
        self.assertEqual(history[0]['adjusted_products'], 1)

    def test_duplicate_product_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            post_stock_take(
                self.db,
                store_id=self.store.id,
                counts=[
                    {'product_id': self.product_a.id, 'counted_quantity': '1'},
                    {'product_id': self.product_a.id, 'counted_quantity': '2'},
                ],
                staff_id=ACTOR_ID,
            )

    def test_negative_count_is_rejected_by_default(self) -> None:
        with self.assertRaises(ValidationError):
            self._post({self.product_a.id: '-1'})

    def test_negative_count_clamps_when_configured(self) -> None:
        with patch.object(settings, 'stock_take_negative_counts', 'clamp'):
            result = self._post({self.product_a.id: '-1'})
        self.assertEqual(result.adjustments[0]['counted_quantity'], Decimal('0'))
        self.assertEqual(self._on_hand(self.product_a.id), Decimal('0'))

    def test_failure_part_way_posts_nothing(self) -> None:
        real_adjust = inventory_service.adjust

        def adjust_then_fail(db, **kwargs):
            if kwargs['product_id'] == self.product_b.id:
                raise ValidationError('simulated failure')
            return real_adjust(db, **kwargs)

        with patch('stockledger.services.inventory_service.adjust', side_effect=adjust_then_fail):
            with self.assertRaises(ValidationError):
                run_ledger_operation(
                    self.db,
                    lambda: self._post({self.product_a.id: '7', self.product_b.id: '40'}),
                )

        self.assertEqual(self._on_hand(self.product_a.id), Decimal('10'))
        self.assertEqual(self._on_hand(self.product_b.id), Decimal('50'))
        self.assertEqual(list_stock_takes(self.db), [])

    def test_unknown_stock_take(self) -> None:
        with self.assertRaises(NotFound):
            get_stock_take_items(self.db, stock_take_id=404)


if __name__ == '__main__':
    unittest.main()
