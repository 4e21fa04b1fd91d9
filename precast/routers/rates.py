"""
Rate catalog API — append-only rate tables and their time-effective lookup.

POST /api/rates/freight               — Add a freight band (GET: history)
POST /api/rates/assembly              — Add an assembly band (GET: history)
POST /api/rates/materials             — Add a material price (GET: history)
POST /api/rates/materials/adjust      — Bulk percentage adjustment, all-or-nothing
POST /api/rates/indices               — Record a month's commodity indices (GET: list)
POST /api/rates/indices/from-dollar   — Derive a month's indices from the dollar rate
POST /api/rates/indices/adjustment    — Adjustment between two recorded months
POST /api/rates/formula               — New polynomial formula (GET: current)
POST /api/rates/formula/bootstrap     — Create the default formula if none exists
GET  /api/rates/resolve/{kind}        — Active record of a kind as of a date
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_permission
from ..database import get_db
from ..escalation import EscalationCalculator
from ..rate_catalog import RateCatalog

router = APIRouter(prefix="/rates", tags=["rates"])


def _row_to_dict(record) -> dict:
    return {c.name: getattr(record, c.name) for c in record.__table__.columns}


# --- Freight bands ---

@router.post("/freight", response_model=schemas.FreightRate, status_code=201)
def create_freight_rate(
    rate: schemas.FreightRateCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).create_freight_rate(created_by=principal.get("sub"), **rate.model_dump())


@router.get("/freight", response_model=List[schemas.FreightRate])
def freight_rate_history(
    origin_plant: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    return RateCatalog(db).history(models.RateKind.FREIGHT, origin_plant)


# --- Assembly bands ---

@router.post("/assembly", response_model=schemas.AssemblyRate, status_code=201)
def create_assembly_rate(
    rate: schemas.AssemblyRateCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).create_assembly_rate(created_by=principal.get("sub"), **rate.model_dump())


@router.get("/assembly", response_model=List[schemas.AssemblyRate])
def assembly_rate_history(
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    return RateCatalog(db).history(models.RateKind.ASSEMBLY)


# --- Material prices ---

@router.post("/materials", response_model=schemas.MaterialPrice, status_code=201)
def create_material_price(
    price: schemas.MaterialPriceCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).create_material_price(created_by=principal.get("sub"), **price.model_dump())


@router.get("/materials", response_model=List[schemas.MaterialPrice])
def material_price_history(
    material_code: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    return RateCatalog(db).history(models.RateKind.MATERIAL_PRICE, material_code)


@router.post("/materials/adjust", response_model=List[schemas.MaterialPrice])
def adjust_material_prices(
    adjustment: schemas.MaterialAdjustment,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "update")),
):
    """Every targeted material gets a new price record, or none does."""
    return RateCatalog(db).adjust_material_prices(
        adjustment.percentage,
        effective_date=adjustment.effective_date,
        material_codes=adjustment.material_codes,
        created_by=principal.get("sub"),
    )


# --- Monthly indices ---

@router.post("/indices", response_model=schemas.MonthlyIndex, status_code=201)
def create_monthly_index(
    index: schemas.MonthlyIndexCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).create_monthly_index(**index.model_dump())


@router.post("/indices/from-dollar", response_model=schemas.MonthlyIndex, status_code=201)
def monthly_index_from_dollar(
    request: schemas.DollarIndexRequest,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).steel_index_from_dollar(request.month, request.year, request.dollar_rate)


@router.get("/indices", response_model=List[schemas.MonthlyIndex])
def list_monthly_indices(
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    return RateCatalog(db).history(models.RateKind.MONTHLY_INDEX)


@router.post("/indices/adjustment")
def index_adjustment(
    request: schemas.IndexAdjustmentRequest,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    calculator = EscalationCalculator(RateCatalog(db))
    return calculator.adjustment_between(
        request.base_month, request.base_year, request.target_month, request.target_year,
    )


# --- Polynomial formula ---

@router.post("/formula", response_model=schemas.Formula, status_code=201)
def create_formula(
    formula: schemas.FormulaCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    return RateCatalog(db).create_formula(created_by=principal.get("sub"), **formula.model_dump())


@router.get("/formula", response_model=schemas.Formula)
def current_formula(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    return RateCatalog(db).current_formula(as_of)


@router.post("/formula/bootstrap", response_model=schemas.Formula)
def bootstrap_formula(
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "create")),
):
    """Safe to call repeatedly and concurrently — never creates a second default."""
    return RateCatalog(db).ensure_default_formula(created_by=principal.get("sub") or "system")


# --- Lookup ---

@router.get("/resolve/{kind}")
def resolve_rate(
    kind: models.RateKind,
    as_of: Optional[date] = None,
    distance_km: Optional[float] = None,
    origin_plant: Optional[str] = None,
    material_code: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("rates", "view")),
):
    if kind == models.RateKind.FREIGHT:
        selector = {"distance_km": distance_km, "origin_plant": origin_plant}
    elif kind == models.RateKind.ASSEMBLY:
        selector = distance_km
    else:
        selector = material_code
    record = RateCatalog(db).resolve(kind, as_of, selector)
    return {"kind": kind.value, "as_of": (as_of or date.today()).isoformat(), "record": _row_to_dict(record)}
