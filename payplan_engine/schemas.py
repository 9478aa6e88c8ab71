"""Pay plan data model.

A plan is an ordered list of rules.  Each rule kind is its own model and the
``kind`` field is the tag pydantic dispatches on, so a raw dict like
``{"kind": "flat_rate", "amount_per_unit": 250}`` parses straight into a
``FlatRatePerUnit``.
"""

from datetime import date
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from .utils import ZERO, to_decimal

Scope = Literal["All", "New", "Used"]
Condition = Literal["New", "Used"]
GrossBasis = Literal["Front", "Back", "Total"]
LineCategory = Literal["base", "draw", "commission", "bonus", "guarantee", "draw_offset"]

# Missing / null numbers read as zero.
Amount = Annotated[Decimal, BeforeValidator(to_decimal)]


def _optional_decimal(v):
    return None if v is None or v == "" else to_decimal(v)


OptionalAmount = Annotated[Decimal | None, BeforeValidator(_optional_decimal)]

SPLIT_COUNTS = (Decimal("0.5"), Decimal("1"))


# ── Transactions ─────────────────────────────────────────────────────────────

class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    sold_date: date | None = None
    condition: Condition = "New"
    count: Amount = Decimal("1")
    front_gross: Amount = ZERO
    back_gross: Amount = ZERO
    accessory: Amount = ZERO
    spiffs: Amount = ZERO
    trade_spiff: Amount = ZERO
    status: Literal["delivered", "pending"] = "delivered"

    stock_number: str = ""
    customer: str = ""

    @field_validator("count")
    @classmethod
    def _split_or_whole(cls, v: Decimal) -> Decimal:
        if v not in SPLIT_COUNTS:
            raise ValueError("count must be 1 or 0.5 (split deal)")
        return v

    @property
    def is_delivered(self) -> bool:
        return self.status == "delivered"


# ── Tiers ────────────────────────────────────────────────────────────────────

class _Tier(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: Amount = Field(default=ZERO, alias="from")
    to: OptionalAmount = None

    @property
    def upper(self) -> Decimal | None:
        """Upper bound, or None for an open-ended tier (``to`` null or 0)."""
        if self.to is None or self.to == 0:
            return None
        return self.to


class UnitTier(_Tier):
    amount: Amount = ZERO


class GrossTier(_Tier):
    percent: Amount = ZERO


class BonusThreshold(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: Amount = Field(default=ZERO, alias="from")
    amount: Amount = ZERO


# ── Rules ────────────────────────────────────────────────────────────────────

class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    label: str = ""


class _ScopedRule(_RuleBase):
    scope: Scope = "All"


class BaseSalaryOrDraw(_RuleBase):
    kind: Literal["base_salary"] = "base_salary"
    amount: Amount = ZERO
    is_draw: bool = False


class FlatRatePerUnit(_ScopedRule):
    kind: Literal["flat_rate"] = "flat_rate"
    amount_per_unit: Amount = ZERO


class TieredUnitCommission(_ScopedRule):
    kind: Literal["tiered_unit"] = "tiered_unit"
    tiers: tuple[UnitTier, ...] = ()
    retroactive: bool = False


class PercentOfGross(_RuleBase):
    """Front/back percentages, each optionally capped per deal.

    A cap of None, 0 or below means "no cap".
    """
    kind: Literal["percent_of_gross"] = "percent_of_gross"
    front_percent: Amount = ZERO
    back_percent: Amount = ZERO
    front_cap: OptionalAmount = None
    back_cap: OptionalAmount = None


class TieredPercentOfGross(_ScopedRule):
    kind: Literal["tiered_gross"] = "tiered_gross"
    tiers: tuple[GrossTier, ...] = ()
    retroactive: bool = False
    gross_basis: GrossBasis = "Total"


class UnitVolumeBonus(_ScopedRule):
    kind: Literal["volume_bonus"] = "volume_bonus"
    thresholds: tuple[BonusThreshold, ...] = ()


class AddOnCommission(_ScopedRule):
    kind: Literal["addon"] = "addon"
    accessory_percent: Amount = ZERO
    spiff_percent: Amount = ZERO
    trade_spiff_percent: Amount = ZERO


class MinimumCommissionPerUnit(_RuleBase):
    kind: Literal["minimum_commission"] = "minimum_commission"
    amount_per_unit: Amount = ZERO


Rule = Annotated[
    Union[
        BaseSalaryOrDraw,
        FlatRatePerUnit,
        TieredUnitCommission,
        PercentOfGross,
        TieredPercentOfGross,
        UnitVolumeBonus,
        AddOnCommission,
        MinimumCommissionPerUnit,
    ],
    Field(discriminator="kind"),
]

RULE_KINDS = {
    "base_salary": BaseSalaryOrDraw,
    "flat_rate": FlatRatePerUnit,
    "tiered_unit": TieredUnitCommission,
    "percent_of_gross": PercentOfGross,
    "tiered_gross": TieredPercentOfGross,
    "volume_bonus": UnitVolumeBonus,
    "addon": AddOnCommission,
    "minimum_commission": MinimumCommissionPerUnit,
}


# ── Output ───────────────────────────────────────────────────────────────────

class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    amount: Decimal
    category: LineCategory = "commission"


class PayBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_items: tuple[LineItem, ...] = ()
    total_pay: Decimal = ZERO
    total_units: Decimal = ZERO
    total_gross: Decimal = ZERO
    commission_subtotal: Decimal = ZERO
    bonus_total: Decimal = ZERO
    base_pay: Decimal = ZERO
    is_draw: bool = False
    warnings: tuple[str, ...] = ()


# ── Request bodies (HTTP surface) ────────────────────────────────────────────

class CalculateRequest(BaseModel):
    rules: list[Rule] = []
    transactions: list[Transaction] = []


class PreviewRequest(BaseModel):
    rules: list[Rule] = []
    transaction: Transaction


class ProjectionRequest(BaseModel):
    rules: list[Rule] = []
    units: Amount = ZERO
    front_pvr: Amount = ZERO
    back_pvr: Amount = ZERO
    condition: Condition = "New"
    avg_commission: Amount = ZERO


class ValidateRequest(BaseModel):
    rules: list[Rule] = []


class ConsultantPlan(BaseModel):
    rules: list[Rule] = []
    transactions: list[Transaction] = []


class RollupRequest(BaseModel):
    consultants: dict[str, ConsultantPlan] = {}
