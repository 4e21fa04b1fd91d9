from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_permission
from ..database import get_db
from ..freight_resolver import FreightResolver
from ..rate_catalog import RateCatalog

router = APIRouter(prefix="/freight", tags=["freight"])


@router.post("/calculate", response_model=schemas.FreightCalculation)
def calculate_freight(
    request: schemas.FreightRequest,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "view")),
):
    """Price freight for a distance and truck count. Retries with the same request_key are safe."""
    resolver = FreightResolver(RateCatalog(db))
    try:
        calculation = resolver.compute_freight(**request.model_dump())
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(calculation)
    return calculation
