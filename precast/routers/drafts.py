"""
Budget wizard API — resumable drafts.

POST   /api/drafts                     — Start a draft, returns its resume token
GET    /api/drafts/summary             — Open drafts grouped by current step
GET    /api/drafts/{token}             — Resume a draft
PUT    /api/drafts/{token}/steps/{n}   — Submit (or revisit) step n
POST   /api/drafts/{token}/finalize    — Price once and freeze
DELETE /api/drafts/{token}             — Discard the draft with its items and history
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_permission
from ..database import get_db
from ..draft_session import DraftSession

router = APIRouter(prefix="/drafts", tags=["drafts"])


@router.post("", response_model=schemas.DraftState, status_code=201)
def start_draft(
    request: schemas.DraftStart,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "create")),
):
    session = DraftSession(db)
    budget = session.start(
        customer_id=request.customer_id,
        project_id=request.project_id,
        user_id=principal.get("sub"),
    )
    return session.resume(budget.resume_token)


# Declared before /{token} so "summary" is not taken for a token
@router.get("/summary")
def draft_summary(
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "view")),
):
    return DraftSession(db).summarize()


@router.get("/{token}", response_model=schemas.DraftState)
def resume_draft(
    token: str,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "view")),
):
    return DraftSession(db).resume(token)


@router.put("/{token}/steps/{step}", response_model=schemas.DraftState)
def submit_step(
    token: str,
    step: int,
    submission: schemas.StepSubmission,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    session = DraftSession(db)
    session.submit_step(token, step, submission.data)
    return session.resume(token)


@router.post("/{token}/finalize", response_model=schemas.Budget)
def finalize_draft(
    token: str,
    request: schemas.FinalizeRequest = None,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "update")),
):
    as_of = request.as_of if request else None
    return DraftSession(db).finalize(token, as_of)


@router.delete("/{token}", status_code=204)
def discard_draft(
    token: str,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_permission("budgets", "delete")),
):
    DraftSession(db).discard(token)
