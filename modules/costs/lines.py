"""
Cost line variants accepted by the cost ledger.

Scanned invoices and manual entry both arrive as loose dicts. They are turned
into one of these tagged variants here, at the boundary, so nothing untyped
reaches the ledger or the aggregator.
"""

from dataclasses import dataclass

from core.errors import ValidationError

OTHER_COST_TYPES = ("land_rent", "insurance", "other")


@dataclass(frozen=True)
class FertilizerLine:
    product: str
    amount_used: float
    price_per_unit: float
    unit: str = ""

    @property
    def category(self):
        return "fertilizer"

    def cost(self, acres: float) -> float:
        return self.amount_used * self.price_per_unit


@dataclass(frozen=True)
class ChemicalLine:
    product: str
    amount_used: float
    price_per_unit: float
    unit: str = ""

    @property
    def category(self):
        return "chemical"

    def cost(self, acres: float) -> float:
        return self.amount_used * self.price_per_unit


@dataclass(frozen=True)
class SeedLine:
    hybrid: str
    bags_used: float
    price_per_bag: float
    seeds_per_bag: int | None = None

    @property
    def category(self):
        return "seed"

    def cost(self, acres: float) -> float:
        return self.bags_used * self.price_per_bag


@dataclass(frozen=True)
class OtherCostLine:
    cost_type: str
    amount: float
    is_per_acre: bool = False
    description: str = ""

    @property
    def category(self):
        return self.cost_type

    def cost(self, acres: float) -> float:
        return self.amount * acres if self.is_per_acre else self.amount


CostLine = FertilizerLine | ChemicalLine | SeedLine | OtherCostLine

# kind tag -> (class, required fields, numeric fields)
_VARIANTS = {
    "fertilizer": (FertilizerLine, ("product", "amount_used", "price_per_unit"),
                   ("amount_used", "price_per_unit")),
    "chemical": (ChemicalLine, ("product", "amount_used", "price_per_unit"),
                 ("amount_used", "price_per_unit")),
    "seed": (SeedLine, ("hybrid", "bags_used", "price_per_bag"),
             ("bags_used", "price_per_bag")),
    "other_cost": (OtherCostLine, ("cost_type", "amount"), ("amount",)),
}


def parse_cost_line(data: dict) -> CostLine:
    """Validate a raw cost line dict and return its typed variant.

    The dict must carry a "kind" tag (fertilizer, chemical, seed, other_cost)
    plus that variant's required fields. Amounts must be non-negative numbers.
    """
    if not isinstance(data, dict):
        raise ValidationError(f"Cost line must be a dict, got {type(data).__name__}")

    kind = data.get("kind")
    if kind not in _VARIANTS:
        raise ValidationError(f"Unknown cost line kind: {kind!r}")

    cls, required, numeric = _VARIANTS[kind]
    missing = [name for name in required if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"{kind} line missing: {', '.join(missing)}")

    values = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
    for name in numeric:
        try:
            values[name] = float(values[name])
        except (TypeError, ValueError):
            raise ValidationError(f"{kind} line: {name} must be a number") from None
        if values[name] < 0:
            raise ValidationError(f"{kind} line: {name} must be >= 0")

    if kind == "other_cost":
        cost_type = str(values["cost_type"]).lower()
        if cost_type not in OTHER_COST_TYPES:
            raise ValidationError(f"Unknown other cost type: {values['cost_type']!r}")
        values["cost_type"] = cost_type
        values["is_per_acre"] = bool(values.get("is_per_acre", False))

    return cls(**values)
