"""
Draft Session — the budget wizard as a resumable state machine.

A draft is a Budget with is_draft=True, addressed by an unguessable resume
token. Operators may submit steps 1..6 in any order, revisit any of them, come
back days later and finally finalize (price once and freeze) or discard.

    start -> submit_step* -> finalize | discard

Step payloads are stored verbatim under draft_data["<step>"] (last write wins
per step, no deep merge). Known logistics keys are also copied onto the budget
columns so the aggregator can price without reading draft_data.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from . import models
from .audit import write_audit_log
from .budget_aggregator import BudgetAggregator
from .config import settings
from .errors import Conflict, IncompleteDraft, InvalidInput, NotFound
from .rate_catalog import require_number

logger = logging.getLogger(__name__)

# Payload keys copied onto budget columns, per step
STEP_FIELDS = {
    1: ("customer_id", "project_id"),
    2: ("origin_plant",),
    3: ("distance_km", "destination"),
    4: ("truck_loads", "long_haul"),
    5: ("assembly_days", "crane_days"),
}

# Column value when a resubmitted step omits the key
STEP_FIELD_DEFAULTS = {
    "assembly_days": 0.0,
    "crane_days": 0.0,
}


def _step_value(key: str, value):
    """Validate a logistics value before it lands on a budget column."""
    if value is None:
        return None
    if key in ("distance_km", "assembly_days", "crane_days"):
        return require_number(value, key)
    if key == "truck_loads":
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidInput(f"truck_loads must be a positive integer, got {value!r}")
        return value
    if key == "long_haul":
        if not isinstance(value, bool):
            raise InvalidInput(f"long_haul must be a boolean, got {value!r}")
        return value
    return str(value)


class DraftSession:
    """
    Args:
        db: request-scoped session
        aggregator: prices the draft on finalize (default BudgetAggregator)
        mandatory_steps: steps that must be completed before finalize
    """

    def __init__(
        self,
        db: Session,
        aggregator: Optional[BudgetAggregator] = None,
        mandatory_steps: Optional[Iterable[int]] = None,
    ):
        self.db = db
        self.aggregator = aggregator or BudgetAggregator(db)
        self.steps = settings.WIZARD_STEPS
        self.mandatory_steps = set(
            settings.MANDATORY_STEPS if mandatory_steps is None else mandatory_steps
        )

    def start(self, customer_id=None, project_id=None, user_id=None) -> models.Budget:
        budget = models.Budget(
            customer_id=customer_id,
            project_id=project_id,
            user_id=user_id,
            status=models.BudgetStatus.DRAFT.value,
            is_draft=True,
            draft_step=1,
            completed_steps=[],
            draft_data={},
            resume_token=uuid.uuid4().hex,
            last_edited_at=datetime.utcnow(),
        )
        self.db.add(budget)
        self.db.flush()
        write_audit_log(self.db, "create", "budget", budget.id, "draft started")
        self.db.commit()
        self.db.refresh(budget)
        logger.info("Draft %s started (budget %s)", budget.resume_token[:8], budget.id)
        return budget

    def submit_step(self, token: str, step: int, payload: dict) -> models.Budget:
        """
        Record one wizard step. Resubmitting the same payload is idempotent
        apart from last_edited_at and the history row.
        """
        if isinstance(step, bool) or not isinstance(step, int) or not (1 <= step <= self.steps):
            raise InvalidInput(f"step must be between 1 and {self.steps}, got {step!r}")
        if not isinstance(payload, dict):
            raise InvalidInput("step payload must be an object")

        budget = self._load_draft(token, for_update=True)

        # The latest payload owns every column of its step; omitted keys reset
        column_values = {}
        for key in STEP_FIELDS.get(step, ()):
            value = _step_value(key, payload.get(key))
            column_values[key] = STEP_FIELD_DEFAULTS.get(key) if value is None else value

        draft_data = dict(budget.draft_data or {})
        draft_data[str(step)] = payload
        budget.draft_data = draft_data
        flag_modified(budget, "draft_data")

        budget.completed_steps = sorted(set(budget.completed_steps or []) | {step})
        flag_modified(budget, "completed_steps")
        budget.draft_step = step
        budget.last_edited_at = datetime.utcnow()

        for key, value in column_values.items():
            setattr(budget, key, value)
        if column_values.keys() - {"customer_id", "project_id"}:
            budget.needs_repricing = True

        with self._transaction():
            self.db.add(models.BudgetDraftHistory(budget_id=budget.id, step=step, data=payload))
        self.db.refresh(budget)
        return budget

    def resume(self, token: str) -> dict:
        budget = self._load_draft(token)
        return {
            "budget_id": budget.id,
            "resume_token": budget.resume_token,
            "draft_step": budget.draft_step,
            "draft_data": budget.draft_data or {},
            "completed_steps": sorted(budget.completed_steps or []),
            "last_edited_at": budget.last_edited_at,
        }

    def finalize(self, token: str, as_of=None) -> models.Budget:
        """
        Price the draft once and freeze it. The draft is left untouched if a
        mandatory step is missing or any price lookup fails.
        """
        budget = self._load_draft(token, for_update=True)
        missing = self.mandatory_steps - set(budget.completed_steps or [])
        if missing:
            raise IncompleteDraft(missing)

        with self._transaction():
            priced = self.aggregator.price_budget(budget, as_of)
            self.aggregator.apply_pricing(budget, priced)
            budget.is_draft = False
            budget.status = models.BudgetStatus.FINALIZED.value
            budget.finalized_at = datetime.utcnow()
            budget.last_edited_at = budget.finalized_at
            write_audit_log(
                self.db, "finalize", "budget", budget.id, f"total {priced['grand_total']}",
            )

        self.db.refresh(budget)
        logger.info("Budget %s finalized — total %.2f", budget.id, budget.final_total)
        return budget

    def discard(self, token: str) -> None:
        budget = self._load_draft(token, for_update=True)
        budget_id = budget.id
        with self._transaction():
            self.db.delete(budget)
            write_audit_log(self.db, "discard", "budget", budget_id)
        logger.info("Draft for budget %s discarded", budget_id)

    def summarize(self) -> dict:
        """Open drafts grouped by their current step, most recently edited first."""
        buckets = {step: [] for step in range(1, self.steps + 1)}
        drafts = self.db.query(models.Budget).filter(
            models.Budget.is_draft.is_(True),
        ).order_by(models.Budget.last_edited_at.desc(), models.Budget.id.desc()).all()

        for budget in drafts:
            if budget.draft_step not in buckets:
                logger.warning(
                    "Draft %s has out-of-range step %s — left out of the summary",
                    budget.id, budget.draft_step,
                )
                continue
            completed = [s for s in (budget.completed_steps or []) if s in buckets]
            buckets[budget.draft_step].append({
                "budget_id": budget.id,
                "resume_token": budget.resume_token,
                "customer_id": budget.customer_id,
                "project_id": budget.project_id,
                "step_name": models.WIZARD_STEPS.get(budget.draft_step),
                "completed_steps": sorted(completed),
                "completion_pct": round(len(completed) / self.steps * 100),
                "last_edited_at": budget.last_edited_at,
            })
        return buckets

    # --- Internals ---

    def _load_draft(self, token: str, for_update: bool = False) -> models.Budget:
        if not token:
            raise NotFound("Draft not found")
        query = self.db.query(models.Budget).filter(models.Budget.resume_token == token)
        if for_update:
            query = query.with_for_update()
        budget = query.first()
        if budget is None or not budget.is_draft:
            raise NotFound("Draft not found")
        return budget

    @contextmanager
    def _transaction(self):
        """Commit on success; roll back on any error, reporting lost races as Conflict."""
        try:
            yield
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise Conflict("Draft was changed by another request — reload and resubmit")
        except Exception:
            self.db.rollback()
            raise
