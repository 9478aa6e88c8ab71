"""Transaction filter & aggregator.

Pure helpers the rule evaluators read from.  Nothing here knows about rules
beyond their scope string.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .schemas import Scope, Transaction
from .utils import ZERO


# ── Result containers ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GrossTotals:
    front: Decimal = ZERO
    back: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.front + self.back

    def basis(self, gross_basis: str) -> Decimal:
        if gross_basis == "Front":
            return self.front
        if gross_basis == "Back":
            return self.back
        return self.total


@dataclass(frozen=True)
class AddOnTotals:
    accessory: Decimal = ZERO
    spiff: Decimal = ZERO
    trade_spiff: Decimal = ZERO


@dataclass(frozen=True)
class PeriodTotals:
    """Delivered deals of a period split by condition, with unit counts."""
    delivered: tuple[Transaction, ...] = ()
    new: tuple[Transaction, ...] = ()
    used: tuple[Transaction, ...] = ()
    units: Decimal = ZERO
    new_units: Decimal = ZERO
    used_units: Decimal = ZERO

    @classmethod
    def from_transactions(cls, transactions: Iterable[Transaction]) -> PeriodTotals:
        sold = delivered(transactions)
        new = relevant_set("New", sold)
        used = relevant_set("Used", sold)
        return cls(
            delivered=sold,
            new=new,
            used=used,
            units=unit_count(sold),
            new_units=unit_count(new),
            used_units=unit_count(used),
        )

    def scoped(self, scope: Scope | None) -> tuple[Transaction, ...]:
        if scope == "New":
            return self.new
        if scope == "Used":
            return self.used
        return self.delivered

    def scoped_units(self, scope: Scope | None) -> Decimal:
        if scope == "New":
            return self.new_units
        if scope == "Used":
            return self.used_units
        return self.units


# ── Filters / aggregates ─────────────────────────────────────────────────────

def delivered(transactions: Iterable[Transaction]) -> tuple[Transaction, ...]:
    return tuple(t for t in transactions if t.is_delivered)


def relevant_set(scope: Scope | None, all_delivered: Iterable[Transaction]) -> tuple[Transaction, ...]:
    """Transactions a rule with ``scope`` sees.  None and "All" see everything."""
    if scope in (None, "All"):
        return tuple(all_delivered)
    return tuple(t for t in all_delivered if t.condition == scope)


def unit_count(transactions: Iterable[Transaction]) -> Decimal:
    return sum((t.count for t in transactions), ZERO)


def gross_totals(transactions: Iterable[Transaction]) -> GrossTotals:
    front = back = ZERO
    for t in transactions:
        front += t.front_gross
        back += t.back_gross
    return GrossTotals(front=front, back=back)


def addon_totals(all_delivered: Iterable[Transaction]) -> AddOnTotals:
    # Always over the whole delivered set, never rule-scoped.
    accessory = spiff = trade = ZERO
    for t in all_delivered:
        accessory += t.accessory
        spiff += t.spiffs
        trade += t.trade_spiff
    return AddOnTotals(accessory=accessory, spiff=spiff, trade_spiff=trade)
