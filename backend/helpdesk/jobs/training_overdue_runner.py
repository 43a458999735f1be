"""Training overdue sweep.

Safe to run from cron: assignments already OVERDUE, completed, waived or
revoked are skipped, so repeated runs only flag newly late assignments.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from helpdesk.database import WriteSessionLocal
from helpdesk.apps.training import services as training_services

logger = logging.getLogger(__name__)


def run() -> dict:
    db = WriteSessionLocal()
    try:
        marked = training_services.mark_overdue_assignments(db, now=datetime.now(timezone.utc))
        db.commit()
        return {"marked_overdue": marked}
    except Exception:
        db.rollback()
        logger.exception("Training overdue sweep failed")
        raise
    finally:
        db.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    result = run()
    print("Training overdue runner completed:", result)


if __name__ == "__main__":
    main()
