from __future__ import annotations

import unittest
from decimal import Decimal

from stockledger.errors import ValidationError
from stockledger.models import PricingMode, TaxType
from stockledger.services.tax_service import (
    compute_line_tax,
    parse_pricing_mode,
    parse_tax_type,
    summarize,
)


class TaxServiceTests(unittest.TestCase):
    def test_exclusive_adds_vat_on_top(self) -> None:
        line = compute_line_tax(Decimal('2'), Decimal('100'), TaxType.VAT_16, PricingMode.EXCLUSIVE, Decimal('0.16'))
        self.assertEqual(line.net_price, Decimal('200.00'))
        self.assertEqual(line.tax_amount, Decimal('32.00'))
        self.assertEqual(line.total_price, Decimal('232.00'))

    def test_inclusive_backs_vat_out_of_total(self) -> None:
        line = compute_line_tax(Decimal('1'), Decimal('116'), TaxType.VAT_16, PricingMode.INCLUSIVE, Decimal('0.16'))
        self.assertEqual(line.total_price, Decimal('116.00'))
        self.assertEqual(line.net_price, Decimal('100.00'))
        self.assertEqual(line.tax_amount, Decimal('16.00'))

    def test_inclusive_rounding_keeps_total_equal_to_net_plus_tax(self) -> None:
        line = compute_line_tax(Decimal('3'), Decimal('10.00'), TaxType.VAT_16, PricingMode.INCLUSIVE, Decimal('0.16'))
        self.assertEqual(line.total_price, Decimal('30.00'))
        self.assertEqual(line.net_price, Decimal('25.86'))
        self.assertEqual(line.tax_amount, Decimal('4.14'))
        self.assertEqual(line.net_price + line.tax_amount, line.total_price)

    def test_zero_rated_and_exempt_carry_no_tax(self) -> None:
        for tax_type in (TaxType.ZERO_RATED, TaxType.EXEMPTED):
            line = compute_line_tax(Decimal('4'), Decimal('2.50'), tax_type, PricingMode.EXCLUSIVE)
            self.assertEqual(line.tax_amount, Decimal('0.00'))
            self.assertEqual(line.total_price, Decimal('10.00'))

    def test_non_positive_quantity_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            compute_line_tax(Decimal('0'), Decimal('10'), TaxType.VAT_16, PricingMode.EXCLUSIVE)

    def test_negative_unit_price_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            compute_line_tax(Decimal('1'), Decimal('-1'), TaxType.VAT_16, PricingMode.EXCLUSIVE)

    def test_summarize_adds_header_totals(self) -> None:
        lines = [
            compute_line_tax(Decimal('1'), Decimal('100'), TaxType.VAT_16, PricingMode.EXCLUSIVE, Decimal('0.16')),
            compute_line_tax(Decimal('2'), Decimal('50'), TaxType.EXEMPTED, PricingMode.EXCLUSIVE, Decimal('0.16')),
        ]
        totals = summarize(lines)
        self.assertEqual(totals.subtotal, Decimal('200.00'))
        self.assertEqual(totals.tax_amount, Decimal('16.00'))
        self.assertEqual(totals.total_amount, Decimal('216.00'))

    def test_parse_tax_type_accepts_aliases(self) -> None:
        self.assertEqual(parse_tax_type(None), TaxType.VAT_16)
        self.assertEqual(parse_tax_type('16%'), TaxType.VAT_16)
        self.assertEqual(parse_tax_type('zero'), TaxType.ZERO_RATED)
        self.assertEqual(parse_tax_type('Exempt'), TaxType.EXEMPTED)
        with self.assertRaises(ValidationError):
            parse_tax_type('GST')

    def test_parse_pricing_mode(self) -> None:
        self.assertEqual(parse_pricing_mode(' inclusive '), PricingMode.INCLUSIVE)
        self.assertEqual(parse_pricing_mode(PricingMode.EXCLUSIVE), PricingMode.EXCLUSIVE)
        with self.assertRaises(ValidationError):
            parse_pricing_mode('gross')


if __name__ == '__main__':
    unittest.main()
