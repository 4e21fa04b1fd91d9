"""
Budgets API — item editing and pricing.

GET    /api/budgets/{id}                 — Budget with items and stored totals
POST   /api/budgets/{id}/items           — Add an item (marks the budget for repricing)
PATCH  /api/budgets/{id}/items/{item_id} — Change an item
DELETE /api/budgets/{id}/items/{item_id} — Remove an item
POST   /api/budgets/{id}/price           — Price as of a date and store the result
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_permission
from ..budget_aggregator import BudgetAggregator
from ..database import get_db
from ..errors import NotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/budgets", tags=["budgets"])


def _get_budget(db: Session, budget_id: int) -> models.Budget:
    budget = db.query(models.Budget).filter(models.Budget.id == budget_id).first()
    if not budget:
        raise NotFound(f"Budget {budget_id} not found")
    return budget


@router.get("/{budget_id}", response_model=schemas.Budget)
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "view")),
):
    return _get_budget(db, budget_id)


@router.post("/{budget_id}/items", response_model=schemas.BudgetItem, status_code=201)
def add_item(
    budget_id: int,
    item: schemas.BudgetItemCreate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    budget = _get_budget(db, budget_id)
    created = BudgetAggregator(db).add_item(budget, **item.model_dump())
    db.commit()
    db.refresh(created)
    return created


@router.patch("/{budget_id}/items/{item_id}", response_model=schemas.BudgetItem)
def update_item(
    budget_id: int,
    item_id: int,
    update: schemas.BudgetItemUpdate,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    budget = _get_budget(db, budget_id)
    item = BudgetAggregator(db).update_item(budget, item_id, **update.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(item)
    return item


@router.delete("/{budget_id}/items/{item_id}", status_code=204)
def remove_item(
    budget_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    budget = _get_budget(db, budget_id)
    BudgetAggregator(db).remove_item(budget, item_id)
    db.commit()


@router.post("/{budget_id}/price")
def price_budget(
    budget_id: int,
    request: schemas.PriceRequest = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    """Returns the priced budget. Drafts keep the result as their latest preview."""
    budget = _get_budget(db, budget_id)
    aggregator = BudgetAggregator(db)
    try:
        priced = aggregator.price_budget(budget, request.as_of if request else None)
        if budget.is_draft:
            aggregator.apply_pricing(budget, priced)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Budget %s priced — total %.2f", budget_id, priced["grand_total"])
    return priced
