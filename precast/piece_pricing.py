"""
Piece/zone pricing lookup — the base (un-escalated) unit cost of a budget item.

Any object with `unit_cost(item, as_of) -> PieceCost` can stand in for
PiecePriceLookup, e.g. a client-specific price list.
"""

from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from . import models
from .errors import NoApplicableRate
from .rate_catalog import as_date


@dataclass(frozen=True)
class PieceCost:
    unit_cost: float
    base_date: date  # Date the cost was set; escalation starts from this month's indices


class PiecePriceLookup:

    def __init__(self, db: Session):
        self.db = db

    def unit_cost(self, item, as_of=None) -> PieceCost:
        """Zone-specific price if one exists for the item's zone, else the list price."""
        as_of = as_date(as_of)
        model = models.PiecePrice

        query = self.db.query(model).filter(
            model.piece_id == item.piece_id,
            model.effective_date <= as_of,
        )
        if item.zone:
            query = query.filter(
                (model.zone == item.zone) | (model.zone.is_(None))
            ).order_by(model.zone.is_(None))
        else:
            query = query.filter(model.zone.is_(None))

        record = query.order_by(model.effective_date.desc(), model.id.desc()).first()
        if record is None:
            raise NoApplicableRate(
                f"No price for piece {item.piece_id}"
                + (f" in zone {item.zone}" if item.zone else "")
                + f" as of {as_of.isoformat()}"
            )
        return PieceCost(unit_cost=record.unit_cost, base_date=record.effective_date)
