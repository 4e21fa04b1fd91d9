"""
Rate Catalog — time-effective lookup over every pricing table.

Rates are append-only: a price that was once true as of some date is never
lost. "Current value" is always a query (the most recent record effective on
or before the query date), never a mutable cell.

Two kinds of tables:
  - banded (freight, assembly): the record's [km_from, km_to) band must contain
    the query distance; the most recently effective band wins.
  - date-only (material prices, monthly indices, polynomial formula): the record
    with the greatest effective_date <= as_of wins.

Ties on effective_date are broken by id, so repeated lookups are stable.
"""

import logging
import math
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .audit import write_audit_log
from .config import settings
from .errors import Conflict, InvalidFormula, InvalidInput, NoApplicableRate

logger = logging.getLogger(__name__)

BANDED_KINDS = {
    models.RateKind.FREIGHT: models.FreightRate,
    models.RateKind.ASSEMBLY: models.AssemblyRate,
}

DATED_KINDS = {
    models.RateKind.MATERIAL_PRICE: models.MaterialPrice,
    models.RateKind.MONTHLY_INDEX: models.MonthlyIndex,
    models.RateKind.POLYNOMIAL_FORMULA: models.PolynomialFormula,
}

# Reference weights: steel, labor, concrete, fuel
DEFAULT_FORMULA = {
    "name": "Default polynomial formula",
    "steel_coefficient": 0.4,
    "labor_coefficient": 0.3,
    "concrete_coefficient": 0.2,
    "fuel_coefficient": 0.1,
}
DEFAULT_FORMULA_KEY = "default"
# The bootstrap formula has to cover historic budgets too
DEFAULT_FORMULA_EFFECTIVE = date(2000, 1, 1)


def as_date(value) -> date:
    """Normalize an as-of value: None = today, datetimes are truncated, ISO strings parsed."""
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise InvalidInput(f"Invalid date: {value!r}")
    raise InvalidInput(f"Invalid date: {value!r}")


def require_number(value, name: str, allow_zero: bool = True) -> float:
    """Reject bools, non-numbers, NaN/inf and negatives."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise InvalidInput(f"{name} must be finite")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidInput(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


class RateCatalog:
    """
    Read-only access to the rate tables, plus the two catalog writes that must
    be atomic (bulk material adjustment, default formula bootstrap).
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Read contract ---

    def resolve(self, kind, as_of=None, selector=None):
        """
        Return the active record of `kind` as of `as_of`.

        Banded kinds take the distance as selector — a number, or for freight a
        mapping {"distance_km": ..., "origin_plant": ...}. Material prices take
        the material code. Raises NoApplicableRate when nothing qualifies.
        """
        kind = self._coerce_kind(kind)
        as_of = as_date(as_of)

        if kind == models.RateKind.FREIGHT:
            if isinstance(selector, dict):
                return self.freight_band(
                    selector.get("distance_km"), as_of, selector.get("origin_plant"),
                )
            return self.freight_band(selector, as_of)
        if kind == models.RateKind.ASSEMBLY:
            return self.assembly_band(selector, as_of)
        if kind == models.RateKind.MATERIAL_PRICE:
            return self.material_price(selector, as_of)
        if kind == models.RateKind.MONTHLY_INDEX:
            return self.indices_for(as_of)
        return self.current_formula(as_of)

    def freight_band(self, distance_km, as_of=None, origin_plant: Optional[str] = None):
        """
        Freight band containing distance_km. A band specific to origin_plant is
        preferred over a generic one; bands for other plants never match.
        """
        distance = require_number(distance_km, "distance_km")
        as_of = as_date(as_of)
        model = models.FreightRate

        query = self._band_query(model, distance, as_of)
        if origin_plant:
            query = query.filter(
                (model.origin_plant == origin_plant) | (model.origin_plant.is_(None))
            ).order_by(model.origin_plant.is_(None))
        band = query.order_by(model.effective_date.desc(), model.id.desc()).first()

        if band is None:
            raise NoApplicableRate(
                f"No freight band covers {distance:g} km as of {as_of.isoformat()}"
                + (f" for plant {origin_plant}" if origin_plant else "")
            )
        return band

    def assembly_band(self, distance_km, as_of=None):
        distance = require_number(distance_km, "distance_km")
        as_of = as_date(as_of)
        model = models.AssemblyRate

        band = self._band_query(model, distance, as_of).order_by(
            model.effective_date.desc(), model.id.desc(),
        ).first()
        if band is None:
            raise NoApplicableRate(
                f"No assembly band covers {distance:g} km as of {as_of.isoformat()}"
            )
        return band

    def material_price(self, material_code: str, as_of=None):
        if not material_code:
            raise InvalidInput("material_code is required to resolve a material price")
        as_of = as_date(as_of)
        model = models.MaterialPrice

        record = self.db.query(model).filter(
            model.material_code == material_code,
            model.effective_date <= as_of,
        ).order_by(model.effective_date.desc(), model.id.desc()).first()
        if record is None:
            raise NoApplicableRate(
                f"No price for material {material_code} as of {as_of.isoformat()}"
            )
        return record

    def indices_for(self, as_of=None):
        """Monthly commodity indices in force on as_of (latest month not after it)."""
        as_of = as_date(as_of)
        model = models.MonthlyIndex

        record = self.db.query(model).filter(
            model.effective_date <= as_of,
        ).order_by(model.effective_date.desc(), model.id.desc()).first()
        if record is None:
            raise NoApplicableRate(f"No monthly indices recorded as of {as_of.isoformat()}")
        return record

    def monthly_index(self, month: int, year: int):
        record = self.db.query(models.MonthlyIndex).filter(
            models.MonthlyIndex.month == month,
            models.MonthlyIndex.year == year,
        ).first()
        if record is None:
            raise NoApplicableRate(f"No monthly indices recorded for {month:02d}/{year}")
        return record

    def current_formula(self, as_of=None):
        as_of = as_date(as_of)
        model = models.PolynomialFormula

        formula = self.db.query(model).filter(
            model.effective_date <= as_of,
        ).order_by(model.effective_date.desc(), model.id.desc()).first()
        if formula is None:
            raise NoApplicableRate(f"No polynomial formula effective as of {as_of.isoformat()}")
        return formula

    def history(self, kind, selector=None) -> list:
        """Every record of a kind, newest first — the historical snapshot view."""
        kind = self._coerce_kind(kind)
        model = BANDED_KINDS.get(kind) or DATED_KINDS[kind]
        query = self.db.query(model)
        if kind == models.RateKind.MATERIAL_PRICE and selector:
            query = query.filter(model.material_code == selector)
        if kind == models.RateKind.FREIGHT and selector:
            query = query.filter(model.origin_plant == selector)
        return query.order_by(model.effective_date.desc(), model.id.desc()).all()

    # --- Append-only writes ---

    def create_freight_rate(self, km_from, km_to, rate_under, rate_over,
                            effective_date=None, origin_plant=None, created_by=None):
        km_from, km_to = self._validate_band(km_from, km_to)
        record = models.FreightRate(
            origin_plant=origin_plant or None,
            km_from=km_from,
            km_to=km_to,
            rate_under=require_number(rate_under, "rate_under"),
            rate_over=require_number(rate_over, "rate_over"),
            effective_date=as_date(effective_date),
            created_by=created_by,
        )
        return self._append(record, "freight_rate", f"{km_from:g}-{km_to:g} km")

    def create_assembly_rate(self, km_from, km_to, rate_under_100t, rate_100_300t,
                             rate_over_300t, effective_date=None, created_by=None):
        km_from, km_to = self._validate_band(km_from, km_to)
        record = models.AssemblyRate(
            km_from=km_from,
            km_to=km_to,
            rate_under_100t=require_number(rate_under_100t, "rate_under_100t"),
            rate_100_300t=require_number(rate_100_300t, "rate_100_300t"),
            rate_over_300t=require_number(rate_over_300t, "rate_over_300t"),
            effective_date=as_date(effective_date),
            created_by=created_by,
        )
        return self._append(record, "assembly_rate", f"{km_from:g}-{km_to:g} km")

    def create_material_price(self, material_code, price, effective_date=None,
                              unit="kg", change_reason=None, created_by=None):
        if not material_code:
            raise InvalidInput("material_code is required")
        record = models.MaterialPrice(
            material_code=material_code,
            price=require_number(price, "price"),
            unit=unit or "kg",
            effective_date=as_date(effective_date),
            change_reason=change_reason,
            created_by=created_by,
        )
        return self._append(record, "material_price", f"{material_code} = {record.price}")

    def create_formula(self, steel_coefficient, labor_coefficient, concrete_coefficient,
                       fuel_coefficient, effective_date=None, name=None, created_by=None):
        coefficients = {
            "steel_coefficient": steel_coefficient,
            "labor_coefficient": labor_coefficient,
            "concrete_coefficient": concrete_coefficient,
            "fuel_coefficient": fuel_coefficient,
        }
        for key, value in coefficients.items():
            if value is None:
                raise InvalidFormula(f"{key} is required")
            try:
                coefficients[key] = require_number(value, key)
            except InvalidInput as exc:
                raise InvalidFormula(str(exc))

        total = sum(coefficients.values())
        if abs(total - 1) > settings.FORMULA_SUM_TOLERANCE:
            logger.warning("Formula %r coefficients sum to %.4f, not 1", name, total)

        record = models.PolynomialFormula(
            name=name,
            effective_date=as_date(effective_date),
            created_by=created_by,
            **coefficients,
        )
        return self._append(record, "polynomial_formula", name)

    def create_monthly_index(self, month: int, year: int, steel_index, labor_index,
                             concrete_index, fuel_index, dollar_rate=None, source="manual"):
        if not (1 <= month <= 12):
            raise InvalidInput(f"month must be between 1 and 12, got {month}")
        record = models.MonthlyIndex(
            month=month,
            year=year,
            steel_index=require_number(steel_index, "steel_index"),
            labor_index=require_number(labor_index, "labor_index"),
            concrete_index=require_number(concrete_index, "concrete_index"),
            fuel_index=require_number(fuel_index, "fuel_index"),
            dollar_rate=require_number(dollar_rate, "dollar_rate") if dollar_rate is not None else None,
            source=source,
            effective_date=date(year, month, 1),
        )
        try:
            return self._append(record, "monthly_index", f"{month:02d}/{year}")
        except IntegrityError:
            self.db.rollback()
            raise Conflict(f"Monthly indices for {month:02d}/{year} are already recorded")

    def steel_index_from_dollar(self, month: int, year: int, dollar_rate):
        """
        Derive a month's indices from the previous month, moving the steel index
        with the dollar. Labor, concrete and fuel carry over unchanged.
        """
        dollar_rate = require_number(dollar_rate, "dollar_rate", allow_zero=False)
        prev_month, prev_year = (12, year - 1) if month == 1 else (month - 1, year)
        previous = self.monthly_index(prev_month, prev_year)
        if not previous.dollar_rate:
            raise InvalidInput(f"Indices for {prev_month:02d}/{prev_year} have no dollar rate")

        variation = dollar_rate / previous.dollar_rate
        return self.create_monthly_index(
            month, year,
            steel_index=round(previous.steel_index * variation, 6),
            labor_index=previous.labor_index,
            concrete_index=previous.concrete_index,
            fuel_index=previous.fuel_index,
            dollar_rate=dollar_rate,
            source="calculated",
        )

    def adjust_material_prices(self, percentage, effective_date=None,
                               material_codes=None, created_by=None) -> list:
        """
        Apply a percentage change to every targeted material as ONE batch.

        Each adjusted price is a new record effective on effective_date. Either
        every target gets its record or, if any target fails, none do.
        """
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            raise InvalidInput(f"percentage must be a number, got {percentage!r}")
        if percentage <= -100:
            raise InvalidInput("percentage must be greater than -100")
        effective = as_date(effective_date)

        # Repeated codes are adjusted once
        codes = list(dict.fromkeys(material_codes)) if material_codes else self._material_codes()
        if not codes:
            raise InvalidInput("No material prices to adjust")

        created = []
        try:
            # Every base price is read before any adjusted record exists
            current_prices = [self.material_price(code, effective) for code in codes]
            for code, current in zip(codes, current_prices):
                record = models.MaterialPrice(
                    material_code=code,
                    price=round(current.price * (1 + percentage / 100.0), 4),
                    unit=current.unit,
                    effective_date=effective,
                    change_reason=f"Bulk adjustment {percentage:+g}%",
                    created_by=created_by,
                )
                self.db.add(record)
                self.db.flush()
                created.append(record)

            write_audit_log(
                self.db, "adjust", "material_price", None,
                f"{percentage:+g}% on {len(created)} materials effective {effective.isoformat()}",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Adjusted %d material prices by %+g%%", len(created), percentage)
        return created

    def ensure_default_formula(self, created_by: str = "system"):
        """
        Return the current formula, creating the default one if the table is empty.

        Safe under concurrent bootstrap: the loser of the unique bootstrap_key race
        rolls back and returns the winner's row.
        """
        existing = self._latest_formula()
        if existing is not None:
            return existing

        formula = models.PolynomialFormula(
            **DEFAULT_FORMULA,
            effective_date=DEFAULT_FORMULA_EFFECTIVE,
            created_by=created_by,
            bootstrap_key=DEFAULT_FORMULA_KEY,
        )
        self.db.add(formula)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Default formula created concurrently — using the existing row")
            return self.db.query(models.PolynomialFormula).filter(
                models.PolynomialFormula.bootstrap_key == DEFAULT_FORMULA_KEY,
            ).one()

        logger.info("Created default polynomial formula (id=%s)", formula.id)
        return formula

    # --- Internals ---

    def _latest_formula(self):
        model = models.PolynomialFormula
        return self.db.query(model).order_by(
            model.effective_date.desc(), model.id.desc(),
        ).first()

    def _material_codes(self) -> list:
        rows = self.db.query(models.MaterialPrice.material_code).distinct().all()
        return sorted(code for (code,) in rows)

    def _band_query(self, model, distance: float, as_of: date):
        # Half-open band: lower bound inclusive, upper bound exclusive
        return self.db.query(model).filter(
            model.km_from <= distance,
            model.km_to > distance,
            model.effective_date <= as_of,
        )

    def _append(self, record, resource: str, detail=None):
        self.db.add(record)
        self.db.flush()
        write_audit_log(self.db, "create", resource, record.id, detail)
        self.db.commit()
        self.db.refresh(record)
        return record

    @staticmethod
    def _validate_band(km_from, km_to):
        km_from = require_number(km_from, "km_from")
        km_to = require_number(km_to, "km_to")
        if km_to <= km_from:
            raise InvalidInput(f"km_to ({km_to:g}) must be greater than km_from ({km_from:g})")
        return km_from, km_to

    @staticmethod
    def _coerce_kind(kind) -> models.RateKind:
        try:
            return models.RateKind(kind)
        except ValueError:
            raise InvalidInput(
                f"Unknown rate kind: {kind}. "
                f"Available: {[k.value for k in models.RateKind]}"
            )
