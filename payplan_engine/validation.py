"""Plan validation.

Everything here runs before evaluation: a plan either passes and is evaluated
in full, or is rejected with ``InvalidRuleConfiguration``.
"""

from __future__ import annotations
import logging
from typing import Any, Iterable, Sequence

from pydantic import TypeAdapter, ValidationError

from .schemas import (
    AddOnCommission,
    BaseSalaryOrDraw,
    FlatRatePerUnit,
    MinimumCommissionPerUnit,
    PercentOfGross,
    Rule,
    TieredPercentOfGross,
    TieredUnitCommission,
    UnitVolumeBonus,
)

logger = logging.getLogger("payplan")

_plan_adapter = TypeAdapter(list[Rule])


class InvalidRuleConfiguration(ValueError):
    """A rule (``index``) or the plan as a whole (``index is None``) is malformed.

    ``consultant`` names whose plan it was when several plans are checked together.
    """

    def __init__(self, message: str, index: int | None = None, consultant: str | None = None):
        self.message = message
        self.index = index
        self.consultant = consultant
        where = f"rule {index}: " if index is not None else ""
        who = f"{consultant}: " if consultant is not None else ""
        super().__init__(f"{who}{where}{message}")


def parse_plan(raw: Iterable[dict[str, Any]]) -> list[Rule]:
    """Parse raw rule dicts (e.g. from a settings form or JSON) into rules."""
    try:
        return _plan_adapter.validate_python(list(raw))
    except ValidationError as e:
        err = e.errors()[0]
        loc = err.get("loc", ())
        index = loc[0] if loc and isinstance(loc[0], int) else None
        field = ".".join(str(p) for p in loc[1:])
        msg = f"{field}: {err['msg']}" if field else err["msg"]
        raise InvalidRuleConfiguration(msg, index) from e


def _non_negative(index: int, **values) -> None:
    for name, v in values.items():
        if v is not None and v < 0:
            raise InvalidRuleConfiguration(f"{name} cannot be negative, got: {v}", index)


def _check_tiers(index: int, tiers) -> None:
    for i, tier in enumerate(tiers):
        if tier.from_ < 0:
            raise InvalidRuleConfiguration(f"tier {i} 'from' cannot be negative, got: {tier.from_}", index)
        if tier.upper is not None and tier.upper < tier.from_:
            raise InvalidRuleConfiguration(
                f"tier {i} 'to' ({tier.upper}) is below 'from' ({tier.from_})", index
            )


def validate_rule(index: int, rule: Rule) -> None:
    if isinstance(rule, BaseSalaryOrDraw):
        _non_negative(index, amount=rule.amount)
    elif isinstance(rule, (FlatRatePerUnit, MinimumCommissionPerUnit)):
        _non_negative(index, amount_per_unit=rule.amount_per_unit)
    elif isinstance(rule, TieredUnitCommission):
        _check_tiers(index, rule.tiers)
        for i, tier in enumerate(rule.tiers):
            _non_negative(index, **{f"tier {i} amount": tier.amount})
    elif isinstance(rule, PercentOfGross):
        _non_negative(index, front_percent=rule.front_percent, back_percent=rule.back_percent)
    elif isinstance(rule, TieredPercentOfGross):
        _check_tiers(index, rule.tiers)
        for i, tier in enumerate(rule.tiers):
            _non_negative(index, **{f"tier {i} percent": tier.percent})
    elif isinstance(rule, UnitVolumeBonus):
        for i, t in enumerate(rule.thresholds):
            _non_negative(index, **{f"threshold {i} 'from'": t.from_, f"threshold {i} amount": t.amount})
    elif isinstance(rule, AddOnCommission):
        _non_negative(
            index,
            accessory_percent=rule.accessory_percent,
            spiff_percent=rule.spiff_percent,
            trade_spiff_percent=rule.trade_spiff_percent,
        )
    else:
        raise InvalidRuleConfiguration(f"unknown rule type {type(rule).__name__}", index)


def plan_warnings(rules: Sequence[Rule]) -> list[str]:
    """Notes about configurations that evaluate, but ambiguously."""
    warnings = []
    bases = sum(1 for r in rules if isinstance(r, BaseSalaryOrDraw))
    if bases > 1:
        warnings.append(
            f"{bases} base salary/draw rules configured; the last one sets base pay and draw mode"
        )
    minimums = sum(1 for r in rules if isinstance(r, MinimumCommissionPerUnit))
    if minimums > 1:
        warnings.append(
            f"{minimums} minimum commission rules configured; each guarantee is applied in turn"
        )
    return warnings


def validate_plan(rules: Sequence[Rule], strict_base_salary: bool = False) -> list[str]:
    """Raise on the first malformed rule; return warnings for the plan.

    With ``strict_base_salary`` a plan holding more than one base salary/draw
    rule is rejected outright instead of evaluated last-wins.
    """
    for i, rule in enumerate(rules):
        validate_rule(i, rule)

    if strict_base_salary:
        bases = [i for i, r in enumerate(rules) if isinstance(r, BaseSalaryOrDraw)]
        if len(bases) > 1:
            raise InvalidRuleConfiguration(
                f"only one base salary/draw rule is allowed, found {len(bases)} (rules {bases})"
            )

    warnings = plan_warnings(rules)
    for w in warnings:
        logger.warning(f"Ambiguous pay plan: {w}")
    return warnings
