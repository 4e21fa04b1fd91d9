"""
Freight Resolver — prices transport of a budget's pieces to the destination.

total = truck_loads * (rate_over if long_haul else rate_under)

where the rate comes from the freight band containing the distance. Each
computation is persisted as a FreightCalculation so the decision can be
audited later.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from . import models
from .audit import write_audit_log
from .errors import InvalidInput
from .rate_catalog import RateCatalog, require_number

logger = logging.getLogger(__name__)

# Pieces longer than this need the long-haul truck configuration
LONG_PIECE_THRESHOLD_M = 12.0

# (class, max piece length m, capacity t, min billable t)
TRUCK_CLASSES = [
    ("standard", 12.0, 25.0, 21.0),
    ("medium", 21.5, 27.0, 24.0),
    ("extended", None, 36.6, 26.0),
]


def _piece_value(piece, key: str, attr: str, default=0.0):
    if isinstance(piece, dict):
        return piece.get(key, default)
    return getattr(piece, attr, default)


def _expand_pieces(pieces) -> list:
    """One (weight, length) tuple per physical piece."""
    expanded = []
    for piece in pieces:
        weight = _piece_value(piece, "weight", "unit_weight_tons") or 0.0
        length = _piece_value(piece, "length", "length_m") or 0.0
        quantity = _piece_value(piece, "quantity", "quantity", 1)
        expanded.extend([(float(weight), float(length))] * int(quantity))
    return expanded


def is_long_haul(pieces) -> bool:
    """True if any piece exceeds the standard truck length."""
    return any(length > LONG_PIECE_THRESHOLD_M for _, length in _expand_pieces(pieces))


def _truck_class(length: float):
    for truck in TRUCK_CLASSES:
        if truck[1] is None or length <= truck[1]:
            return truck
    return TRUCK_CLASSES[-1]


def plan_truck_loads(pieces) -> list:
    """
    Pack pieces onto trucks, first-fit decreasing by weight.

    Pieces only share a truck with pieces of the same length class. A piece
    heavier than its truck's capacity rides alone. Returns one dict per truck.
    """
    by_class = {}
    for weight, length in _expand_pieces(pieces):
        truck = _truck_class(length)
        by_class.setdefault(truck, []).append(weight)

    trucks = []
    for truck in TRUCK_CLASSES:
        weights = sorted(by_class.get(truck, []), reverse=True)
        name, _, capacity, min_billable = truck
        loads = []
        for weight in weights:
            for load in loads:
                if load["real_weight"] + weight <= capacity:
                    load["real_weight"] += weight
                    load["pieces"] += 1
                    break
            else:
                loads.append({"real_weight": weight, "pieces": 1})

        for load in loads:
            real = round(load["real_weight"], 3)
            trucks.append({
                "truck_class": name,
                "capacity_tons": capacity,
                "pieces": load["pieces"],
                "real_weight": real,
                # Under-filled trucks are billed at the class minimum
                "billable_weight": max(real, min_billable),
            })
    return trucks


class FreightResolver:

    def __init__(self, catalog: RateCatalog):
        self.catalog = catalog
        self.db = catalog.db

    def compute_freight(
        self,
        distance_km,
        truck_loads,
        origin_plant: Optional[str] = None,
        destination: Optional[str] = None,
        long_haul: bool = False,
        as_of=None,
        budget_id: Optional[int] = None,
        request_key: Optional[str] = None,
    ) -> models.FreightCalculation:
        """
        Price freight and record the calculation (flushed, not committed).

        A repeated request_key returns the first calculation instead of
        recording a second one.
        """
        distance = require_number(distance_km, "distance_km")
        if isinstance(truck_loads, bool) or not isinstance(truck_loads, int) or truck_loads < 1:
            raise InvalidInput(f"truck_loads must be a positive integer, got {truck_loads!r}")
        if not isinstance(long_haul, bool):
            raise InvalidInput(f"long_haul must be a boolean, got {long_haul!r}")

        if request_key:
            existing = self._by_request_key(request_key)
            if existing is not None:
                logger.info("Freight request %s already calculated (id=%s)", request_key, existing.id)
                return existing

        band = self.catalog.freight_band(distance, as_of, origin_plant)
        unit_rate = band.rate_over if long_haul else band.rate_under
        total = round(unit_rate * truck_loads, 2)

        record = models.FreightCalculation(
            budget_id=budget_id,
            origin_plant=origin_plant,
            destination=destination,
            distance_km=distance,
            truck_loads=truck_loads,
            long_haul=long_haul,
            freight_rate_id=band.id,
            unit_rate=unit_rate,
            total_cost=total,
            request_key=request_key,
        )
        try:
            with self.db.begin_nested():
                self.db.add(record)
        except IntegrityError:
            # Lost a race on the same request_key
            existing = self._by_request_key(request_key)
            if existing is None:
                raise
            return existing

        write_audit_log(
            self.db, "calculate", "freight", record.id,
            f"{distance:g} km x {truck_loads} trucks @ {unit_rate} = {total}",
        )
        logger.info(
            "Freight: %g km, %d trucks, long_haul=%s, band=%s -> %.2f",
            distance, truck_loads, long_haul, band.id, total,
        )
        return record

    def _by_request_key(self, request_key: str):
        return self.db.query(models.FreightCalculation).filter(
            models.FreightCalculation.request_key == request_key,
        ).first()
