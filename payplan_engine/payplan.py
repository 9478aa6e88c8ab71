"""Pay plan engine.

Applies an ordered list of pay plan rules to a period's deals and reconciles
the result into one payout: commission-based pay, volume bonuses, base salary
or draw, and the minimum commission guarantee.

Usage:
    engine = PayPlanEngine(rules)

    # Full period
    breakdown = engine.evaluate(transactions)

    # Live estimate while a single deal is being entered
    estimate = engine.preview(transaction)

    # "What would I make at 15 units?"
    projected = engine.project_income(15, front_pvr=1500, back_pvr=900)
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from .aggregate import PeriodTotals, addon_totals, gross_totals
from .schemas import (
    AddOnCommission,
    BaseSalaryOrDraw,
    Condition,
    FlatRatePerUnit,
    LineItem,
    MinimumCommissionPerUnit,
    PayBreakdown,
    PercentOfGross,
    Rule,
    TieredPercentOfGross,
    TieredUnitCommission,
    Transaction,
    UnitVolumeBonus,
)
from .utils import ZERO, fmt_number, money, to_decimal, to_money
from .validation import InvalidRuleConfiguration, validate_plan

logger = logging.getLogger("payplan")

HUNDRED = Decimal("100")
HALF = Decimal("0.5")


# ── Running totals for one evaluation ────────────────────────────────────────

@dataclass
class _Ledger:
    items: list[LineItem] = field(default_factory=list)
    commission: Decimal = ZERO
    bonus: Decimal = ZERO
    base_pay: Decimal = ZERO
    is_draw: bool = False
    base_index: int | None = None
    floors: list[Decimal] = field(default_factory=list)

    def emit(self, description: str, amount: Decimal, category: str = "commission") -> Decimal:
        """Append a rounded line item unless it is zero; return what was booked."""
        amount = to_money(amount)
        if amount != 0:
            self.items.append(LineItem(description=description, amount=amount, category=category))
        return amount

    def commission_item(self, description: str, amount: Decimal) -> None:
        self.commission += self.emit(description, amount)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _prefix(rule) -> str:
    scope = getattr(rule, "scope", "All")
    return "" if scope == "All" else f"{scope} - "


def _pct(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * percent / HUNDRED


def _capped(amount: Decimal, cap: Decimal | None) -> Decimal:
    if cap is not None and cap > 0:
        return min(amount, cap)
    return amount


def deal_percent_of_gross(rule: PercentOfGross, deal: Transaction) -> tuple[Decimal, Decimal]:
    """Front and back commission for one deal, each capped on its own."""
    front = _capped(_pct(deal.front_gross, rule.front_percent), rule.front_cap)
    back = _capped(_pct(deal.back_gross, rule.back_percent), rule.back_cap)
    return front, back


def deal_addon(rule: AddOnCommission, accessory: Decimal, spiff: Decimal, trade_spiff: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    return (
        _pct(accessory, rule.accessory_percent),
        _pct(spiff, rule.spiff_percent),
        _pct(trade_spiff, rule.trade_spiff_percent),
    )


def _tier_reached(tiers, units: Decimal):
    """Highest tier whose ``from`` the unit count has reached, or None."""
    reached = None
    for tier in sorted(tiers, key=lambda t: t.from_):
        if units >= tier.from_:
            reached = tier
    return reached


# ── Engine ───────────────────────────────────────────────────────────────────

class PayPlanEngine:
    """Stateless pay plan evaluator.

    Parameters
    ----------
    rules : ordered pay plan (list of Rule models)
    strict_base_salary : reject plans with more than one base salary/draw rule
                         instead of evaluating them last-wins

    The plan is validated once here, so a malformed plan never reaches
    evaluation.
    """

    def __init__(self, rules: Sequence[Rule] | None = None, strict_base_salary: bool = False):
        self.rules: tuple[Rule, ...] = tuple(rules or ())
        self.strict_base_salary = strict_base_salary
        self.warnings = tuple(validate_plan(self.rules, strict_base_salary=strict_base_salary))

    # ── Full period ──────────────────────────────────────────────────────────

    def evaluate(self, transactions: Iterable[Transaction]) -> PayBreakdown:
        period = PeriodTotals.from_transactions(transactions)
        ledger = _Ledger()

        for rule in self.rules:
            self._apply(rule, period, ledger)

        self._apply_guarantee(period, ledger)
        total_pay = self._reconcile(ledger)

        totals = gross_totals(period.delivered)
        logger.debug(
            f"Evaluated {len(self.rules)} rule(s) over {len(period.delivered)} delivered deal(s): "
            f"units={period.units} commission={ledger.commission} bonus={ledger.bonus} total={total_pay}"
        )
        return PayBreakdown(
            line_items=tuple(ledger.items),
            total_pay=total_pay,
            total_units=period.units,
            total_gross=totals.total,
            commission_subtotal=ledger.commission,
            bonus_total=ledger.bonus,
            base_pay=ledger.base_pay,
            is_draw=ledger.is_draw,
            warnings=self.warnings,
        )

    def _apply(self, rule: Rule, period: PeriodTotals, ledger: _Ledger) -> None:
        if isinstance(rule, BaseSalaryOrDraw):
            self._base_salary(rule, ledger)
        elif isinstance(rule, FlatRatePerUnit):
            self._flat_rate(rule, period, ledger)
        elif isinstance(rule, PercentOfGross):
            self._percent_of_gross(rule, period, ledger)
        elif isinstance(rule, TieredUnitCommission):
            self._tiered_unit(rule, period, ledger)
        elif isinstance(rule, TieredPercentOfGross):
            self._tiered_gross(rule, period, ledger)
        elif isinstance(rule, UnitVolumeBonus):
            self._volume_bonus(rule, period, ledger)
        elif isinstance(rule, AddOnCommission):
            self._addon(rule, period, ledger)
        elif isinstance(rule, MinimumCommissionPerUnit):
            # Applied once after every other rule, wherever it sits in the plan.
            ledger.floors.append(rule.amount_per_unit)

    def _base_salary(self, rule: BaseSalaryOrDraw, ledger: _Ledger) -> None:
        amount = to_money(rule.amount)
        ledger.items.append(LineItem(
            description="Draw" if rule.is_draw else "Base Salary",
            amount=amount,
            category="draw" if rule.is_draw else "base",
        ))
        # Last one wins if a plan carries several.
        ledger.base_pay = amount
        ledger.is_draw = rule.is_draw
        ledger.base_index = len(ledger.items) - 1

    def _flat_rate(self, rule: FlatRatePerUnit, period: PeriodTotals, ledger: _Ledger) -> None:
        units = period.scoped_units(rule.scope)
        ledger.commission_item(
            f"{_prefix(rule)}Flat Rate ({fmt_number(units)} units)",
            units * rule.amount_per_unit,
        )

    def _percent_of_gross(self, rule: PercentOfGross, period: PeriodTotals, ledger: _Ledger) -> None:
        front = back = ZERO
        for deal in period.delivered:
            f, b = deal_percent_of_gross(rule, deal)
            front += f
            back += b
        ledger.commission_item(f"{fmt_number(rule.front_percent)}% of Front-End Gross", front)
        ledger.commission_item(f"{fmt_number(rule.back_percent)}% of Back-End Gross", back)

    def _tiered_unit(self, rule: TieredUnitCommission, period: PeriodTotals, ledger: _Ledger) -> None:
        units = period.scoped_units(rule.scope)
        prefix = _prefix(rule)

        if rule.retroactive:
            tier = _tier_reached(rule.tiers, units)
            if tier is not None:
                ledger.commission_item(
                    f"{prefix}Retro Tier ({units:.1f} @ ${fmt_number(tier.amount)}/ea)",
                    units * tier.amount,
                )
            return

        accounted = ZERO
        for tier in sorted(rule.tiers, key=lambda t: t.from_):
            if units <= accounted or units < tier.from_:
                continue
            ceiling = units if tier.upper is None else min(units, tier.upper)
            in_tier = ceiling - accounted
            if in_tier <= 0:
                continue
            ledger.commission_item(
                f"{prefix}Unit Tier ({in_tier:.1f} @ ${fmt_number(tier.amount)}/ea)",
                in_tier * tier.amount,
            )
            accounted += in_tier

    def _tiered_gross(self, rule: TieredPercentOfGross, period: PeriodTotals, ledger: _Ledger) -> None:
        units = period.scoped_units(rule.scope)
        basis = gross_totals(period.scoped(rule.scope)).basis(rule.gross_basis)

        # Both modes pick one tier by unit count and apply it to the whole basis.
        tier = _tier_reached(rule.tiers, units)
        if tier is None:
            return
        pct = fmt_number(tier.percent)
        if rule.retroactive:
            description = f"{_prefix(rule)}Retro {rule.gross_basis} Gross ({pct}%)"
        else:
            description = f"{_prefix(rule)}{rule.gross_basis} Gross Tier ({pct}%)"
        ledger.commission_item(description, _pct(basis, tier.percent))

    def _volume_bonus(self, rule: UnitVolumeBonus, period: PeriodTotals, ledger: _Ledger) -> None:
        units = period.scoped_units(rule.scope)
        for threshold in sorted(rule.thresholds, key=lambda t: t.from_):
            if units >= threshold.from_:
                ledger.bonus += ledger.emit(
                    f"{_prefix(rule)}Unit Bonus (>={fmt_number(threshold.from_)} units)",
                    threshold.amount,
                    category="bonus",
                )

    def _addon(self, rule: AddOnCommission, period: PeriodTotals, ledger: _Ledger) -> None:
        totals = addon_totals(period.delivered)
        accessory, spiff, trade = deal_addon(rule, totals.accessory, totals.spiff, totals.trade_spiff)
        ledger.commission_item("Accessory Commission", accessory)
        ledger.commission_item("Spiff Commission", spiff)
        ledger.commission_item("Trade Spiff Commission", trade)

    # ── Reconciliation ───────────────────────────────────────────────────────

    def _apply_guarantee(self, period: PeriodTotals, ledger: _Ledger) -> None:
        if period.units <= 0:
            return
        for floor in ledger.floors:
            if floor <= 0:
                continue
            required = to_money(period.units * floor)
            if ledger.commission < required:
                ledger.commission += ledger.emit(
                    "Minimum Commission Guarantee",
                    required - ledger.commission,
                    category="guarantee",
                )

    def _reconcile(self, ledger: _Ledger) -> Decimal:
        if not ledger.is_draw:
            return ledger.commission + ledger.bonus + ledger.base_pay

        total = max(ledger.base_pay, ledger.commission) + ledger.bonus
        if ledger.base_pay > ledger.commission:
            # Shows how much commission was earned against the draw.
            ledger.items.insert(ledger.base_index + 1, LineItem(
                description="Commission vs Draw",
                amount=to_money(ZERO - ledger.commission),
                category="draw_offset",
            ))
        return total

    # ── Single deal preview ──────────────────────────────────────────────────

    def preview(self, deal: Transaction) -> Decimal:
        """Commission estimate for one deal being entered.

        Only rules that make sense without the rest of the period are used:
        percent of gross, flat rate, add-ons and the per-unit minimum.
        Tiers, volume bonuses and base salary need the whole period.
        """
        commission = ZERO
        for rule in self.rules:
            scope = getattr(rule, "scope", "All")
            if scope != "All" and scope != deal.condition:
                continue

            if isinstance(rule, PercentOfGross):
                front, back = deal_percent_of_gross(rule, deal)
                commission += front + back
            elif isinstance(rule, FlatRatePerUnit):
                commission += rule.amount_per_unit * deal.count
            elif isinstance(rule, AddOnCommission):
                commission += sum(deal_addon(rule, deal.accessory, deal.spiffs, deal.trade_spiff), ZERO)

        for rule in self.rules:
            if isinstance(rule, MinimumCommissionPerUnit) and rule.amount_per_unit > 0:
                commission = max(commission, rule.amount_per_unit * deal.count)

        return to_money(commission)

    # ── Income projection ────────────────────────────────────────────────────

    def project_income(self, units, front_pvr=0, back_pvr=0, condition: Condition = "New") -> PayBreakdown:
        """Evaluate the plan against ``units`` synthetic deals at the given PVRs.

        A fractional unit count adds one split deal (half count, half gross).
        """
        units = to_decimal(units)
        if not self.rules or units <= 0:
            return PayBreakdown()

        front = to_decimal(front_pvr)
        back = to_decimal(back_pvr)
        whole = int(units)
        deals = [
            Transaction(condition=condition, count=1, front_gross=front, back_gross=back)
            for _ in range(whole)
        ]
        if units != whole:
            deals.append(Transaction(
                condition=condition, count=HALF, front_gross=front * HALF, back_gross=back * HALF,
            ))
        return self.evaluate(deals)

    @staticmethod
    def simple_estimate(units, avg_commission) -> Decimal:
        return to_money(to_decimal(units) * to_decimal(avg_commission))

    # ── Milestones ───────────────────────────────────────────────────────────

    def milestones(self, breakdown: PayBreakdown) -> list[str]:
        """Build milestone strings from the earned volume bonuses."""
        return [
            f"{item.description} unlocked: {money(item.amount)}"
            for item in breakdown.line_items
            if item.category == "bonus" and item.amount > 0
        ]

    # ── Plan sharing payload ─────────────────────────────────────────────────

    def share_payload(self) -> dict[str, Any]:
        """Build a JSON-friendly payload for sharing a pay plan."""
        return {
            "rules": [r.model_dump(mode="json", by_alias=True) for r in self.rules],
            "warnings": list(self.warnings),
        }


# ── Convenience entry points ─────────────────────────────────────────────────

def evaluate(rules: Sequence[Rule], transactions: Iterable[Transaction], strict_base_salary: bool = False) -> PayBreakdown:
    return PayPlanEngine(rules, strict_base_salary=strict_base_salary).evaluate(transactions)


def preview(rules: Sequence[Rule], deal: Transaction) -> Decimal:
    return PayPlanEngine(rules).preview(deal)


def _rollup_engines(
    plans: Mapping[str, tuple[Sequence[Rule], Iterable[Transaction]]],
    strict_base_salary: bool,
) -> dict[str, tuple[PayPlanEngine, list[Transaction]]]:
    """Validate every consultant's plan before any of them is evaluated."""
    engines = {}
    for name, (rules, transactions) in plans.items():
        try:
            engine = PayPlanEngine(rules, strict_base_salary=strict_base_salary)
        except InvalidRuleConfiguration as e:
            raise InvalidRuleConfiguration(e.message, e.index, consultant=name) from e
        engines[name] = (engine, list(transactions))
    return engines


def rollup(
    plans: Mapping[str, tuple[Sequence[Rule], Iterable[Transaction]]],
    strict_base_salary: bool = False,
) -> dict[str, PayBreakdown]:
    """Evaluate each consultant's (rules, transactions) independently."""
    return {
        name: engine.evaluate(transactions)
        for name, (engine, transactions) in _rollup_engines(plans, strict_base_salary).items()
    }


async def rollup_threaded(
    plans: Mapping[str, tuple[Sequence[Rule], Iterable[Transaction]]],
    strict_base_salary: bool = False,
) -> dict[str, PayBreakdown]:
    """Same as ``rollup``, one worker thread per consultant."""
    engines = _rollup_engines(plans, strict_base_salary)
    names = list(engines)
    results = await asyncio.gather(*(
        asyncio.to_thread(engines[n][0].evaluate, engines[n][1]) for n in names
    ))
    return dict(zip(names, results))
