"""
Reconciliation Jobs

Background reconciliation triggers:
- After a count is saved (fire-and-forget, scheduled by the API)
- Periodic sweep over open references, so a trigger skipped because the
  reference was busy is picked up later
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from app.config import settings
from app.core.errors import ConcurrencyBusyError, ReconciliationError
from app.database import get_db_session
from app.schemas.reconciliation import RoundOutcome

logger = logging.getLogger(__name__)


async def reconcile_in_background(referencia: str, admin_id: UUID) -> Optional[RoundOutcome]:
    """
    Reconcile a reference after a count save.

    Failures are logged, never raised: the transcription flow must not be
    interrupted by reconciliation problems.
    """
    from app.services.round_reconciliation_service import RoundReconciliationService

    try:
        async with get_db_session() as session:
            outcome = await RoundReconciliationService(session).reconcile(referencia, admin_id)
    except ConcurrencyBusyError:
        logger.warning(f"Reference {referencia} busy, leaving it to the next trigger")
        return None
    except ReconciliationError as e:
        logger.error(f"Background reconciliation of {referencia} failed: {e}")
        return None

    logger.debug(f"Background reconciliation of {referencia}: {outcome.action}")
    return outcome


async def sweep_open_references() -> Dict[str, Any]:
    """
    Reconcile every open reference once.

    This job runs every RECONCILE_SWEEP_INTERVAL_MINUTES. References still
    waiting for counts are left untouched.
    """
    from app.services.round_reconciliation_service import RoundReconciliationService

    logger.info("Starting reconciliation sweep...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        references = await RoundReconciliationService(session).list_open_references(
            limit=settings.RECONCILE_SWEEP_BATCH_SIZE
        )

    actions: Dict[str, int] = {}
    failed = 0
    for referencia in references:
        outcome = await reconcile_in_background(referencia, settings.SYSTEM_USER_ID)
        if outcome is None:
            failed += 1
            continue
        actions[outcome.action] = actions.get(outcome.action, 0) + 1

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Reconciliation sweep completed: {len(references)} references, "
        f"{failed} skipped, actions={actions}, duration={duration:.2f}s"
    )
    return {
        "references": len(references),
        "skipped": failed,
        "actions": actions,
    }
