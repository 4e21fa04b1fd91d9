"""
Audit sink — one row per externally visible mutation.

Best-effort: the row is written inside a SAVEPOINT so a failing insert never
poisons the caller's transaction, and any error is logged and swallowed.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def write_audit_log(
    db: Session,
    action: str,
    resource: str,
    resource_id=None,
    detail: Optional[str] = None,
) -> None:
    # Pending writes of the primary operation fail the caller, not the audit
    db.flush()
    try:
        with db.begin_nested():
            db.add(models.AuditLog(
                action=action,
                resource=resource,
                resource_id=str(resource_id) if resource_id is not None else None,
                detail=detail,
            ))
    except Exception as e:
        # Audit failures must never fail the primary operation
        logger.warning("Audit log write failed (%s %s %s): %s", action, resource, resource_id, e)
