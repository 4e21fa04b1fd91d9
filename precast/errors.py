"""
Error taxonomy for the budgeting core.

Core modules raise these; the HTTP layer (main.py) maps each one to a status
code. Nothing in the core retries on them.
"""


class BudgetingError(Exception):
    """Base class — carries a short machine-readable code for API responses."""

    code = "budgeting_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidInput(BudgetingError):
    """Malformed or out-of-range numeric/shape input. Never retried."""

    code = "invalid_input"


class IncompleteDraft(InvalidInput):
    """Finalize was attempted before every mandatory wizard step was completed."""

    code = "incomplete_draft"

    def __init__(self, missing_steps):
        self.missing_steps = sorted(missing_steps)
        super().__init__(f"Draft is missing mandatory steps: {self.missing_steps}")


class NotFound(BudgetingError):
    """No matching draft, budget, item or formula."""

    code = "not_found"


class NoApplicableRate(BudgetingError):
    """A rate lookup found no covering band or effective date.

    Kept apart from NotFound so callers can prompt for a rate-table fix.
    """

    code = "no_applicable_rate"


class InvalidFormula(BudgetingError):
    """Degenerate escalation formula — missing coefficients or zero base index."""

    code = "invalid_formula"


class Conflict(BudgetingError):
    """A concurrent draft write won the race. Re-fetch and resubmit."""

    code = "conflict"
