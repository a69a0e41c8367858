from celery import shared_task
from sqlalchemy.orm import sessionmaker
import logging

from household_budget.core.database import engine
from household_budget.services.budget_adjustment_service import BudgetAdjustmentService

logger = logging.getLogger(__name__)

@shared_task
def apply_due_adjustments_task():
    """Celery task to fold due scheduled adjustments into household templates"""
    logger.info("Starting scheduled budget adjustment rollover")

    # Create a new database session for the task
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = session_local()

    try:
        stats = BudgetAdjustmentService(db).apply_due()

        logger.info(f"Budget adjustment rollover completed: {stats['applied']} adjustments across {stats['periods']} months")
        return {"status": "success", **stats}

    except Exception as e:
        db.rollback()
        logger.exception(f"Error applying scheduled budget adjustments: {str(e)}")
        return {"status": "error", "error": str(e)}

    finally:
        db.close()
