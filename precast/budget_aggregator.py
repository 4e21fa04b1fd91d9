"""
Budget Aggregator — combines piece costs, escalation, assembly and freight
into a priced budget.

Input: Budget with items + the rate catalog as of a date
Output: PricedBudget dict (deterministic: no timestamps, no generated ids)

Any failed lookup fails the whole aggregation. A budget is never returned
with zeroed or missing lines.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from . import models
from .config import settings
from .errors import InvalidInput, NotFound
from .escalation import CommodityIndices, EscalationCalculator
from .freight_resolver import FreightResolver, is_long_haul, plan_truck_loads
from .piece_pricing import PiecePriceLookup
from .rate_catalog import RateCatalog, as_date, require_number

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("piece_id", "description", "zone", "quantity", "unit_weight_tons", "length_m")


class BudgetAggregator:

    # Assembly tonnage tiers: < 100 t, 100-300 t, > 300 t
    TONNAGE_TIERS = (100.0, 300.0)

    def __init__(self, db: Session, piece_pricing=None, catalog: RateCatalog = None):
        self.db = db
        self.catalog = catalog or RateCatalog(db)
        self.piece_pricing = piece_pricing or PiecePriceLookup(db)
        self.escalation = EscalationCalculator(self.catalog)
        self.freight = FreightResolver(self.catalog)

    def price_budget(self, budget: models.Budget, as_of=None) -> dict:
        """
        Price every item, then assembly and freight, as of `as_of` (default today).

        Raises InvalidInput for an empty budget or one without a distance, and
        propagates NoApplicableRate / InvalidFormula from any lookup.
        """
        as_of = as_date(as_of)
        items = list(budget.items)
        if not items:
            raise InvalidInput(f"Budget {budget.id} has no items")
        if budget.distance_km is None:
            raise InvalidInput(f"Budget {budget.id} has no distance")

        # --- Items ---
        formula = self.catalog.current_formula(as_of)
        current_indices = CommodityIndices.from_record(self.catalog.indices_for(as_of))
        lines = [self._price_line(item, as_of, formula, current_indices) for item in items]
        material_subtotal = round(sum(line["line_total"] for line in lines), 2)

        total_tons = round(sum(
            (item.unit_weight_tons or 0.0) * item.quantity for item in items
        ), 3)

        # --- Assembly ---
        assembly = self._price_assembly(budget, total_tons, as_of)

        # --- Freight ---
        freight = self._price_freight(budget, items, as_of)

        grand_total = round(material_subtotal + assembly["total"] + freight["total"], 2)

        return {
            "budget_id": budget.id,
            "as_of": as_of.isoformat(),
            "formula_id": formula.id,
            "current_indices": current_indices.as_dict(),
            "lines": lines,
            "total_tons": total_tons,
            "material_subtotal": material_subtotal,
            "assembly": assembly,
            "freight": freight,
            "grand_total": grand_total,
        }

    def apply_pricing(self, budget: models.Budget, priced: dict) -> models.Budget:
        """Write a price_budget() result back onto the budget and its items."""
        lines = {line["item_id"]: line for line in priced["lines"]}
        for item in budget.items:
            line = lines.get(item.id)
            if line is None:
                raise InvalidInput(f"Priced result has no line for item {item.id} — reprice the budget")
            item.unit_cost = line["unit_cost"]
            item.escalated_unit_cost = line["escalated_unit_cost"]
            item.line_total = line["line_total"]

        budget.total_materials = priced["material_subtotal"]
        budget.total_assembly = priced["assembly"]["total"]
        budget.total_freight = priced["freight"]["total"]
        budget.final_total = priced["grand_total"]
        budget.priced_json = priced
        flag_modified(budget, "priced_json")
        budget.priced_at = datetime.utcnow()
        budget.needs_repricing = False
        return budget

    # --- Item mutations (never reprice eagerly) ---

    def add_item(self, budget: models.Budget, **fields) -> models.BudgetItem:
        self._check_editable(budget)
        if not fields.get("piece_id"):
            raise InvalidInput("piece_id is required")
        fields.setdefault("quantity", 1)
        item = models.BudgetItem(**self._validated(fields))
        budget.items.append(item)
        self._mark_stale(budget)
        return item

    def update_item(self, budget: models.Budget, item_id: int, **fields) -> models.BudgetItem:
        self._check_editable(budget)
        item = self._find_item(budget, item_id)
        for key, value in self._validated(fields).items():
            setattr(item, key, value)
        self._clear_item_pricing(item)
        self._mark_stale(budget)
        return item

    def remove_item(self, budget: models.Budget, item_id: int) -> None:
        self._check_editable(budget)
        item = self._find_item(budget, item_id)
        budget.items.remove(item)
        self._mark_stale(budget)

    # --- Internals ---

    def _price_line(self, item, as_of, formula, current_indices) -> dict:
        cost = self.piece_pricing.unit_cost(item, as_of)
        base_indices = CommodityIndices.from_record(self.catalog.indices_for(cost.base_date))
        factor = self.escalation.escalation_factor(formula, base_indices, current_indices)
        escalated = round(
            self.escalation.escalate(cost.unit_cost, base_indices, current_indices, formula=formula),
            2,
        )
        return {
            "item_id": item.id,
            "piece_id": item.piece_id,
            "zone": item.zone,
            "quantity": item.quantity,
            "unit_cost": cost.unit_cost,
            "base_date": cost.base_date.isoformat(),
            "escalation_factor": round(float(factor), 6),
            "escalated_unit_cost": escalated,
            "line_total": round(escalated * item.quantity, 2),
        }

    def _price_assembly(self, budget, total_tons: float, as_of) -> dict:
        band = self.catalog.assembly_band(budget.distance_km, as_of)
        low, high = self.TONNAGE_TIERS
        if total_tons < low:
            tier, rate = "under_100t", band.rate_under_100t
        elif total_tons <= high:
            tier, rate = "100_300t", band.rate_100_300t
        else:
            tier, rate = "over_300t", band.rate_over_300t

        assembly_days = budget.assembly_days or 0.0
        crane_days = budget.crane_days or 0.0
        days_cost = round(assembly_days * settings.ASSEMBLY_DAY_RATE, 2)
        crane_cost = round(crane_days * settings.CRANE_DAY_RATE, 2)

        return {
            "rate_id": band.id,
            "tier": tier,
            "base": rate,
            "assembly_days": assembly_days,
            "assembly_days_cost": days_cost,
            "crane_days": crane_days,
            "crane_days_cost": crane_cost,
            "total": round(rate + days_cost + crane_cost, 2),
        }

    def _price_freight(self, budget, items, as_of) -> dict:
        planned = budget.truck_loads is None
        truck_loads = len(plan_truck_loads(items)) if planned else budget.truck_loads
        long_haul = is_long_haul(items) if budget.long_haul is None else budget.long_haul

        calculation = self.freight.compute_freight(
            budget.distance_km,
            truck_loads,
            origin_plant=budget.origin_plant,
            destination=budget.destination,
            long_haul=long_haul,
            as_of=as_of,
            budget_id=budget.id,
        )
        return {
            "rate_id": calculation.freight_rate_id,
            "distance_km": calculation.distance_km,
            "truck_loads": truck_loads,
            "trucks_planned": planned,
            "long_haul": long_haul,
            "unit_rate": calculation.unit_rate,
            "total": calculation.total_cost,
        }

    @staticmethod
    def _validated(fields: dict) -> dict:
        unknown = set(fields) - set(ITEM_FIELDS)
        if unknown:
            raise InvalidInput(f"Unknown item fields: {sorted(unknown)}")
        if "quantity" in fields:
            quantity = fields["quantity"]
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise InvalidInput(f"quantity must be a positive integer, got {quantity!r}")
        for key in ("unit_weight_tons", "length_m"):
            if fields.get(key) is not None:
                fields[key] = require_number(fields[key], key)
        return fields

    @staticmethod
    def _find_item(budget, item_id: int) -> models.BudgetItem:
        for item in budget.items:
            if item.id == item_id:
                return item
        raise NotFound(f"Item {item_id} not found in budget {budget.id}")

    @staticmethod
    def _check_editable(budget):
        if not budget.is_draft:
            raise InvalidInput(f"Budget {budget.id} is finalized — its items can no longer change")

    @staticmethod
    def _clear_item_pricing(item):
        item.unit_cost = None
        item.escalated_unit_cost = None
        item.line_total = None

    @staticmethod
    def _mark_stale(budget):
        budget.needs_repricing = True
        budget.last_edited_at = datetime.utcnow()
