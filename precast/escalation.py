"""
Escalation Calculator — polynomial price adjustment.

    P = P0 * (a * S1/S0 + b * L1/L0 + c * C1/C0 + d * F1/F0)

S, L, C, F are the steel, labor, concrete and fuel indices at the base date
(subscript 0) and at the escalation date (subscript 1); a..d are the weights of
the formula in force. Arithmetic is done in Decimal so that escalating between
identical indices returns the base cost exactly.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from .config import settings
from .errors import InvalidFormula, InvalidInput
from .rate_catalog import RateCatalog, as_date

logger = logging.getLogger(__name__)

COMMODITIES = ("steel", "labor", "concrete", "fuel")


@dataclass(frozen=True)
class CommodityIndices:
    steel: float
    labor: float
    concrete: float
    fuel: float

    @classmethod
    def from_record(cls, record) -> "CommodityIndices":
        return cls(
            steel=record.steel_index,
            labor=record.labor_index,
            concrete=record.concrete_index,
            fuel=record.fuel_index,
        )

    @classmethod
    def coerce(cls, value) -> "CommodityIndices":
        """Accept an instance, a MonthlyIndex row, or a {commodity: value} mapping."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            try:
                return cls(**{name: value[name] for name in COMMODITIES})
            except KeyError as e:
                raise InvalidInput(f"Missing commodity index: {e.args[0]}")
        if hasattr(value, "steel_index"):
            return cls.from_record(value)
        raise InvalidInput(f"Cannot read commodity indices from {value!r}")

    def as_dict(self) -> dict:
        return {name: getattr(self, name) for name in COMMODITIES}


def _decimal(value, name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    if not result.is_finite():
        raise InvalidInput(f"{name} must be finite")
    return result


class EscalationCalculator:

    def __init__(self, catalog: RateCatalog, tolerance: float = None):
        self.catalog = catalog
        self.tolerance = settings.FORMULA_SUM_TOLERANCE if tolerance is None else tolerance

    def escalate(self, base_cost, base_indices, current_indices, as_of=None, formula=None) -> float:
        """
        Escalate base_cost from base_indices to current_indices.

        Uses `formula` when given, otherwise the formula in force on as_of.
        Raises InvalidFormula on a missing coefficient or a zero base index.
        """
        cost = _decimal(base_cost, "base_cost")
        if cost < 0:
            raise InvalidInput(f"base_cost must be non-negative, got {base_cost}")
        if formula is None:
            formula = self.catalog.current_formula(as_of)

        factor = self.escalation_factor(formula, base_indices, current_indices)
        return float(cost * factor)

    def escalation_factor(self, formula, base_indices, current_indices) -> Decimal:
        """Weighted sum of the commodity ratios, i.e. P / P0."""
        weights = self._weights(formula)
        base = CommodityIndices.coerce(base_indices)
        current = CommodityIndices.coerce(current_indices)

        factor = Decimal(0)
        for name in COMMODITIES:
            ratio = self._ratio(name, getattr(base, name), getattr(current, name))
            factor += weights[name] * ratio
        return factor

    def adjustment_between(self, base_month: int, base_year: int,
                           target_month: int, target_year: int, as_of=None) -> dict:
        """
        Adjustment breakdown between two recorded index months: per-commodity
        ratio and weighted factor, total factor and percentage.
        """
        base = self.catalog.monthly_index(base_month, base_year)
        target = self.catalog.monthly_index(target_month, target_year)
        formula = self.catalog.current_formula(
            as_date(as_of) if as_of is not None else target.effective_date
        )
        weights = self._weights(formula)

        breakdown = {}
        total = Decimal(0)
        for name in COMMODITIES:
            ratio = self._ratio(
                name, getattr(base, f"{name}_index"), getattr(target, f"{name}_index"),
            )
            weighted = weights[name] * ratio
            total += weighted
            breakdown[name] = {
                "coefficient": float(weights[name]),
                "base_index": getattr(base, f"{name}_index"),
                "target_index": getattr(target, f"{name}_index"),
                "ratio": round(float(ratio), 6),
                "factor": round(float(weighted), 6),
            }

        return {
            "base_period": {"month": base.month, "year": base.year},
            "target_period": {"month": target.month, "year": target.year},
            "formula_id": formula.id,
            "breakdown": breakdown,
            "total_factor": round(float(total), 6),
            "adjustment_percentage": round(float((total - 1) * 100), 4),
        }

    def _weights(self, formula) -> dict:
        weights = {}
        for name in COMMODITIES:
            value = getattr(formula, f"{name}_coefficient", None)
            if value is None:
                raise InvalidFormula(f"Formula {formula.id} has no {name} coefficient")
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)) or value < 0:
                raise InvalidFormula(f"Formula {formula.id} has an invalid {name} coefficient: {value!r}")
            weights[name] = Decimal(str(value))

        total = sum(weights.values())
        if abs(total - 1) > Decimal(str(self.tolerance)):
            logger.warning(
                "Formula %s coefficients sum to %s, expected 1 (tolerance %s)",
                formula.id, total, self.tolerance,
            )
        return weights

    @staticmethod
    def _ratio(name: str, base_value, current_value) -> Decimal:
        base = _decimal(base_value, f"base {name} index")
        current = _decimal(current_value, f"current {name} index")
        if base == 0:
            raise InvalidFormula(f"Base {name} index is zero")
        if base < 0 or current < 0:
            raise InvalidInput(f"{name} index must be non-negative")
        return current / base
