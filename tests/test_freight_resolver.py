"""
Freight resolver tests — band pricing, long-haul discriminant, retry safety and
truck planning.
"""

from datetime import date

import pytest

from precast import models
from precast.errors import InvalidInput, NoApplicableRate
from precast.freight_resolver import FreightResolver, is_long_haul, plan_truck_loads

PRICING_DATE = date(2026, 3, 15)


def _resolver(catalog):
    return FreightResolver(catalog)


# --- Pricing ---

def test_standard_trucks_use_rate_under(db, seeded_catalog):
    calc = _resolver(seeded_catalog).compute_freight(250, 3, as_of=PRICING_DATE)
    db.commit()

    assert calc.unit_rate == 8
    assert calc.total_cost == 24
    assert calc.long_haul is False
    assert calc.freight_rate_id is not None


def test_long_haul_uses_rate_over(seeded_catalog):
    calc = _resolver(seeded_catalog).compute_freight(250, 3, long_haul=True, as_of=PRICING_DATE)
    assert calc.unit_rate == 10
    assert calc.total_cost == 30


def test_same_inputs_same_result(seeded_catalog):
    resolver = _resolver(seeded_catalog)
    first = resolver.compute_freight(120, 2, origin_plant="PLANTA-NORTE", as_of=PRICING_DATE)
    second = resolver.compute_freight(120, 2, origin_plant="PLANTA-NORTE", as_of=PRICING_DATE)

    assert (first.unit_rate, first.total_cost) == (second.unit_rate, second.total_cost)
    assert first.id != second.id  # Each call is its own audit record


def test_request_key_deduplicates(db, seeded_catalog):
    resolver = _resolver(seeded_catalog)
    first = resolver.compute_freight(250, 3, as_of=PRICING_DATE, request_key="req-42")
    db.commit()
    retry = resolver.compute_freight(250, 3, as_of=PRICING_DATE, request_key="req-42")

    assert retry.id == first.id
    assert db.query(models.FreightCalculation).count() == 1


def test_calculation_is_audited(db, seeded_catalog):
    calc = _resolver(seeded_catalog).compute_freight(250, 1, as_of=PRICING_DATE)
    db.commit()
    entry = db.query(models.AuditLog).filter(models.AuditLog.resource == "freight").one()
    assert entry.action == "calculate"
    assert entry.resource_id == str(calc.id)


# --- Invalid input ---

@pytest.mark.parametrize("truck_loads", [0, -1, 2.5, True, "3"])
def test_truck_loads_must_be_positive_integer(seeded_catalog, truck_loads):
    with pytest.raises(InvalidInput):
        _resolver(seeded_catalog).compute_freight(250, truck_loads, as_of=PRICING_DATE)


def test_long_haul_must_be_boolean(seeded_catalog):
    with pytest.raises(InvalidInput):
        _resolver(seeded_catalog).compute_freight(250, 1, long_haul="yes", as_of=PRICING_DATE)


def test_negative_distance_rejected(seeded_catalog):
    with pytest.raises(InvalidInput):
        _resolver(seeded_catalog).compute_freight(-5, 1, as_of=PRICING_DATE)


def test_uncovered_distance_records_nothing(db, seeded_catalog):
    with pytest.raises(NoApplicableRate):
        _resolver(seeded_catalog).compute_freight(5000, 1, as_of=PRICING_DATE)
    assert db.query(models.FreightCalculation).count() == 0


# --- Truck planning ---

def test_pieces_share_trucks_up_to_capacity():
    trucks = plan_truck_loads([{"weight": 10, "length": 8, "quantity": 3}])
    assert len(trucks) == 2
    assert [t["real_weight"] for t in trucks] == [20, 10]
    assert trucks[1]["billable_weight"] == 21  # Standard truck minimum


def test_first_fit_decreasing():
    pieces = [
        {"weight": 6, "length": 6, "quantity": 2},
        {"weight": 12, "length": 6, "quantity": 2},
    ]
    # 12+12 | 6+6
    trucks = plan_truck_loads(pieces)
    assert [t["real_weight"] for t in trucks] == [24, 12]


def test_overweight_piece_rides_alone():
    trucks = plan_truck_loads([{"weight": 30, "length": 8, "quantity": 1},
                               {"weight": 2, "length": 8, "quantity": 1}])
    assert len(trucks) == 2
    assert trucks[0]["pieces"] == 1


def test_length_classes_never_share():
    pieces = [
        {"weight": 5, "length": 8, "quantity": 1},
        {"weight": 5, "length": 18, "quantity": 1},
        {"weight": 5, "length": 24, "quantity": 1},
    ]
    trucks = plan_truck_loads(pieces)
    assert [t["truck_class"] for t in trucks] == ["standard", "medium", "extended"]
    assert [t["capacity_tons"] for t in trucks] == [25.0, 27.0, 36.6]


def test_planning_reads_budget_items():
    items = [models.BudgetItem(piece_id="VIGA-01", quantity=2, unit_weight_tons=5.0, length_m=14.0)]
    assert len(plan_truck_loads(items)) == 1
    assert is_long_haul(items)


def test_long_haul_threshold():
    assert not is_long_haul([{"weight": 1, "length": 12, "quantity": 1}])
    assert is_long_haul([{"weight": 1, "length": 12.5, "quantity": 1}])
