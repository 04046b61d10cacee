from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from stockledger.config import settings
from stockledger.errors import ValidationError
from stockledger.models import PricingMode, TaxType

CENT = Decimal('0.01')


@dataclass(frozen=True)
class LineTax:
    net_price: Decimal
    tax_amount: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def rate_for(tax_type: TaxType, vat_rate: Decimal | None = None) -> Decimal:
    if tax_type == TaxType.VAT_16:
        return settings.vat_rate if vat_rate is None else vat_rate
    return Decimal('0')


def compute_line_tax(
    quantity: Decimal,
    unit_price: Decimal,
    tax_type: TaxType,
    pricing_mode: PricingMode,
    vat_rate: Decimal | None = None,
) -> LineTax:
    """Split a line into net, tax and total.

    EXCLUSIVE treats ``unit_price`` as net: net = quantity x unit_price and tax is added on top.
    INCLUSIVE treats it as gross: total = quantity x unit_price and net = total / (1 + rate).
    Either way total_price == net_price + tax_amount exactly after rounding.
    """
    if quantity <= 0:
        raise ValidationError('Quantity must be greater than zero', quantity=str(quantity))
    if unit_price < 0:
        raise ValidationError('Unit price cannot be negative', unit_price=str(unit_price))

    rate = rate_for(tax_type, vat_rate)
    extended = Decimal(quantity) * Decimal(unit_price)
    if pricing_mode == PricingMode.INCLUSIVE:
        total = _money(extended)
        net = _money(total / (Decimal('1') + rate))
        return LineTax(net_price=net, tax_amount=total - net, total_price=total)

    net = _money(extended)
    tax = _money(net * rate)
    return LineTax(net_price=net, tax_amount=tax, total_price=net + tax)


def summarize(lines: list[LineTax]) -> DocumentTotals:
    subtotal = sum((line.net_price for line in lines), Decimal('0.00'))
    tax_amount = sum((line.tax_amount for line in lines), Decimal('0.00'))
    return DocumentTotals(subtotal=subtotal, tax_amount=tax_amount, total_amount=subtotal + tax_amount)


def parse_pricing_mode(raw: str | PricingMode) -> PricingMode:
    try:
        return PricingMode(str(raw.value if isinstance(raw, PricingMode) else raw).strip().upper())
    except ValueError as exc:
        raise ValidationError(f'Unknown pricing mode {raw!r}') from exc


def parse_tax_type(raw: str | TaxType | None) -> TaxType:
    if raw is None:
        return TaxType.VAT_16
    if isinstance(raw, TaxType):
        return raw
    aliases = {'16%': TaxType.VAT_16, 'VAT': TaxType.VAT_16, 'ZERO': TaxType.ZERO_RATED, 'EXEMPT': TaxType.EXEMPTED}
    key = str(raw).strip().upper()
    if key in aliases:
        return aliases[key]
    try:
        return TaxType(key)
    except ValueError as exc:
        raise ValidationError(f'Unknown tax type {raw!r}') from exc
