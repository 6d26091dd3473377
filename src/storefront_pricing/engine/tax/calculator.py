"""Zone-based tax computation.

Rates for a (zone, category) pair are applied in priority order. Non-compound
rates use the taxable base; compound rates use the base plus every tax
computed so far for that base. GST rates are reported as CGST + SGST for
intra-state supply and IGST otherwise. Amounts stay unrounded; the pipeline
rounds once at the end.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from storefront_pricing.app.models.config import StoreConfig, TaxRate, Zone
from storefront_pricing.engine.canonical.models import PricingContext, TaxLine, TaxRateType
from storefront_pricing.engine.money.money import ZERO, Money

CGST = "CGST"
SGST = "SGST"
IGST = "IGST"

_HALF = Decimal("2")


@dataclass(frozen=True)
class TaxResult:
    total: Money
    breakdown: Tuple[TaxLine, ...] = ()
    line_taxes: Mapping[str, Money] = field(default_factory=dict)
    shipping_tax: Optional[Money] = None


@dataclass
class _Component:
    rate: TaxRate
    amount: Money
    component: Optional[str] = None
    rate_value: Decimal = ZERO


def _rate_amount(rate: TaxRate, base: Money, previous: Money, quantity: int) -> Money:
    if rate.minimum_amount is not None and base.amount < rate.minimum_amount:
        return Money.zero(base.currency)
    if rate.rate_type == TaxRateType.PERCENTAGE:
        taxable = base
        if rate.maximum_amount is not None:
            taxable = taxable.min(Money(rate.maximum_amount, base.currency))
        if rate.is_compound:
            taxable = taxable + previous
        amount = taxable.percent(rate.rate)
    else:
        per_unit = rate.flat_amount if rate.flat_amount is not None else rate.rate
        amount = Money(per_unit, base.currency)
        if rate.rate_type == TaxRateType.PER_UNIT:
            amount = amount * quantity
    if rate.maximum_tax is not None:
        amount = amount.min(Money(rate.maximum_tax, base.currency))
    return amount.clamp_floor()


class TaxCalculator:
    def __init__(self, config: StoreConfig) -> None:
        self.config = config

    def categorize(self, context: PricingContext) -> Dict[str, Optional[str]]:
        """Map each line to its tax category code; ``None`` means exempt or untaxed.

        Lines without a category take the store default. An explicit code that
        is not configured as a category is kept as is, so rates keyed on it
        still apply.
        """
        categories: Dict[str, Optional[str]] = {}
        for line in context.lines:
            category = self.config.tax_category(line.tax_category)
            if line.tax_category and (category is None or category.code != line.tax_category):
                categories[line.line_id] = line.tax_category
            elif category is None:
                categories[line.line_id] = self.config.default_tax_category
            elif category.is_tax_exempt:
                categories[line.line_id] = None
            else:
                categories[line.line_id] = category.code
        return categories

    def rates_for(self, zone: Zone, category: Optional[str], context: PricingContext) -> List[TaxRate]:
        rates = [
            rate
            for rate in self.config.tax_rates
            if rate.zone_id == zone.id
            and (category is None or rate.category == category)
            and rate.is_effective(context.now)
        ]
        return sorted(rates, key=lambda rate: (rate.priority, rate.sort_order, rate.id))

    def is_intra_state(self, context: PricingContext) -> bool:
        address = context.tax_address
        if address is None or not address.state or not self.config.registered_state:
            return False
        if self.config.registered_country and address.country != self.config.registered_country:
            return False
        state = address.state
        if "-" in state:
            state = state.split("-", 1)[1]
        return state == self.config.registered_state

    def _components(
        self, rates: Sequence[TaxRate], base: Money, quantity: int, intra_state: bool
    ) -> List[_Component]:
        components: List[_Component] = []
        so_far = Money.zero(base.currency)
        for rate in rates:
            amount = _rate_amount(rate, base, so_far, quantity)
            if amount.is_zero:
                continue
            so_far = so_far + amount
            if not rate.is_gst:
                components.append(_Component(rate=rate, amount=amount, rate_value=rate.rate))
            elif intra_state:
                half = Money(amount.amount / _HALF, amount.currency)
                components.append(_Component(rate, half, CGST, rate.rate / _HALF))
                components.append(_Component(rate, amount - half, SGST, rate.rate / _HALF))
            else:
                components.append(_Component(rate, amount, IGST, rate.rate))
        return components

    def compute(
        self,
        context: PricingContext,
        tax_zone: Optional[Zone],
        line_categories: Mapping[str, Optional[str]],
        line_amounts: Mapping[str, Money],
        shipping_amount: Money,
        *,
        shipping_taxable: bool = True,
    ) -> TaxResult:
        currency = shipping_amount.currency
        if tax_zone is None or context.customer.is_tax_exempt:
            return TaxResult(total=Money.zero(currency))

        intra_state = self.is_intra_state(context)
        collected: List[_Component] = []
        line_taxes: Dict[str, Money] = {}
        for line in context.lines:
            category = line_categories.get(line.line_id)
            base = line_amounts.get(line.line_id)
            if category is None or base is None or base.amount <= ZERO:
                continue
            components = self._components(self.rates_for(tax_zone, category, context), base, line.quantity, intra_state)
            if components:
                line_taxes[line.line_id] = sum(
                    (component.amount for component in components[1:]), components[0].amount
                )
                collected.extend(components)

        shipping_tax = Money.zero(currency)
        if shipping_taxable and shipping_amount.amount > ZERO:
            shipping_category = self.config.tax_category(self.config.shipping_tax_category)
            if shipping_category is None or not shipping_category.is_tax_exempt:
                code = shipping_category.code if shipping_category else self.config.shipping_tax_category
                rates = [rate for rate in self.rates_for(tax_zone, code, context) if rate.tax_shipping]
                for component in self._components(rates, shipping_amount, 1, intra_state):
                    shipping_tax = shipping_tax + component.amount
                    collected.append(component)

        total = Money.zero(currency)
        for component in collected:
            total = total + component.amount
        return TaxResult(
            total=total,
            breakdown=self._breakdown(tax_zone, collected),
            line_taxes=line_taxes,
            shipping_tax=shipping_tax,
        )

    def _breakdown(self, zone: Zone, components: Sequence[_Component]) -> Tuple[TaxLine, ...]:
        # One invoice line per jurisdiction and component, in first-seen order.
        grouped: Dict[tuple, TaxLine] = {}
        for item in components:
            rate = item.rate
            jurisdiction_type = rate.jurisdiction_type or zone.name or zone.id
            jurisdiction_name = rate.jurisdiction_name or rate.name or rate.id
            key = (jurisdiction_type, jurisdiction_name, rate.jurisdiction_code, item.component, item.rate_value, rate.is_compound)
            existing = grouped.get(key)
            if existing is None:
                grouped[key] = TaxLine(
                    jurisdiction_type=jurisdiction_type,
                    jurisdiction_name=jurisdiction_name,
                    jurisdiction_code=rate.jurisdiction_code,
                    component=item.component,
                    rate=item.rate_value,
                    amount=item.amount.amount,
                    is_compound=rate.is_compound,
                )
            else:
                grouped[key] = existing.model_copy(update={"amount": existing.amount + item.amount.amount})
        return tuple(grouped.values())
