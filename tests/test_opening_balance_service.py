from __future__ import annotations

import unittest
from decimal import Decimal

from stockledger.errors import DuplicateOpeningBalance, ValidationError
from stockledger.services import inventory_service
from stockledger.services.ledger_transaction import run_ledger_operation
from stockledger.services.opening_balance_service import list_opening_balances, save_opening_quantities
from tests.support import ACTOR_ID, add_product, add_store, make_session


class OpeningBalanceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.product = add_product(self.db)
        self.other_product = add_product(self.db, code='OIL', name='Cooking Oil')

    def tearDown(self) -> None:
        self.db.close()

    def _save(self, *rows: tuple[int, str]):
        return run_ledger_operation(
            self.db,
            lambda: save_opening_quantities(
                self.db,
                items=[
                    {'store_id': self.store.id, 'product_id': product_id, 'opening_quantity': quantity}
                    for product_id, quantity in rows
                ],
                actor_id=ACTOR_ID,
            ),
        )

    def _on_hand(self, product_id: int) -> Decimal:
        return inventory_service.read(self.db, store_id=self.store.id, product_id=product_id)

    def test_seeds_inventory(self) -> None:
        self._save((self.product.id, '25'), (self.other_product.id, '0'))
        self.assertEqual(self._on_hand(self.product.id), Decimal('25'))
        self.assertEqual(len(list_opening_balances(self.db, store_id=self.store.id)), 2)

    def test_second_seed_is_rejected_with_duplicate_pairs(self) -> None:
        self._save((self.product.id, '25'))

        with self.assertRaises(DuplicateOpeningBalance) as ctx:
            self._save((self.product.id, '40'), (self.other_product.id, '5'))

        duplicates = ctx.exception.duplicate_items
        self.assertEqual(len(duplicates), 1)
        self.assertEqual(duplicates[0]['product_code'], self.product.code)
        self.assertEqual(duplicates[0]['store_name'], self.store.name)
        self.assertEqual(ctx.exception.to_dict()['duplicateItems'], duplicates)
        self.assertEqual(self._on_hand(self.product.id), Decimal('25'))
        self.assertEqual(self._on_hand(self.other_product.id), Decimal('0'))

    def test_repeated_pair_in_one_request_is_rejected(self) -> None:
        with self.assertRaises(DuplicateOpeningBalance):
            self._save((self.product.id, '1'), (self.product.id, '2'))
        self.assertEqual(list_opening_balances(self.db), [])

    def test_negative_opening_quantity_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self._save((self.product.id, '-3'))


if __name__ == '__main__':
    unittest.main()
