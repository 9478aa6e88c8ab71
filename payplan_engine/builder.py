"""Plan editing.

The settings screen edits a plan through ``PlanBuilder``; every edit returns
a new builder, and ``build()`` hands the engine an immutable, validated tuple.
The engine never sees a half-edited plan.
"""

from __future__ import annotations
from typing import Any, Iterable

from .schemas import RULE_KINDS, Rule
from .validation import InvalidRuleConfiguration, parse_plan, validate_plan

# Starter values offered when a rule is added to a plan.
DEFAULT_RULES: dict[str, dict[str, Any]] = {
    "base_salary": {"amount": 2000, "is_draw": False},
    "flat_rate": {"amount_per_unit": 250},
    "tiered_unit": {"tiers": [{"from": 1, "to": 8, "amount": 100}], "retroactive": False},
    "percent_of_gross": {"front_percent": 25, "back_percent": 5, "front_cap": 0, "back_cap": 0},
    "tiered_gross": {"tiers": [{"from": 1, "to": 8, "percent": 20}], "retroactive": False, "gross_basis": "Total"},
    "volume_bonus": {"thresholds": [{"from": 15, "amount": 500}]},
    "addon": {"accessory_percent": 10, "spiff_percent": 100, "trade_spiff_percent": 100},
    "minimum_commission": {"amount_per_unit": 150},
}


def default_rule(kind: str) -> Rule:
    if kind not in RULE_KINDS:
        raise InvalidRuleConfiguration(f"unknown rule kind '{kind}' (expected one of {', '.join(RULE_KINDS)})")
    return RULE_KINDS[kind](**DEFAULT_RULES[kind])


class PlanBuilder:
    def __init__(self, rules: Iterable[Rule] = ()):
        self._rules: tuple[Rule, ...] = tuple(rules)

    @classmethod
    def from_raw(cls, raw: Iterable[dict[str, Any]]) -> PlanBuilder:
        return cls(parse_plan(raw))

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._rules):
            raise IndexError(f"no rule at position {index} (plan has {len(self._rules)})")

    def add(self, rule: Rule) -> PlanBuilder:
        return PlanBuilder(self._rules + (rule,))

    def add_default(self, kind: str) -> PlanBuilder:
        return self.add(default_rule(kind))

    def update(self, index: int, rule: Rule) -> PlanBuilder:
        self._check_index(index)
        rules = list(self._rules)
        rules[index] = rule
        return PlanBuilder(rules)

    def edit(self, index: int, **changes) -> PlanBuilder:
        """Change fields of the rule at ``index``, re-validating the result."""
        self._check_index(index)
        current = self._rules[index]
        data = current.model_dump(by_alias=True)
        data.update(changes)
        return self.update(index, parse_plan([data])[0])

    def remove(self, index: int) -> PlanBuilder:
        self._check_index(index)
        return PlanBuilder(self._rules[:index] + self._rules[index + 1:])

    def move(self, index: int, new_index: int) -> PlanBuilder:
        self._check_index(index)
        self._check_index(new_index)
        rules = list(self._rules)
        rules.insert(new_index, rules.pop(index))
        return PlanBuilder(rules)

    def build(self, strict_base_salary: bool = False) -> tuple[Rule, ...]:
        validate_plan(self._rules, strict_base_salary=strict_base_salary)
        return self._rules
