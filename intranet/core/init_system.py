import logging
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intranet.database import SessionLocal
from intranet.models.leave_rule import LeaveRule

logger = logging.getLogger(__name__)

# (min days, max days or open-ended, days of notice)
DEFAULT_LEAVE_RULES = [
    (Decimal("0.5"), Decimal("4"), 3),
    (Decimal("4"), Decimal("10"), 14),
    (Decimal("10"), None, 30),
]


def seed_reference_data(db: Session) -> int:
    """
    Seeds the advance-notice bands on a fresh database.
    Returns the number of rules created; existing rules are never touched.
    """
    if db.query(LeaveRule).count():
        return 0
    for low, high, notice in DEFAULT_LEAVE_RULES:
        db.add(LeaveRule(
            leave_required_min=low,
            leave_required_max=high,
            prior_information_days=notice,
            is_active=True,
        ))
    db.commit()
    return len(DEFAULT_LEAVE_RULES)


def init_system_data():
    """
    Checks if the system needs initialization.
    Runs once at startup; a failure is logged and does not stop the app.
    """
    db = SessionLocal()
    try:
        created = seed_reference_data(db)
        if created:
            logger.info(f"Seeded {created} default leave rules")
        else:
            logger.info("System initialization check: leave rules present")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
    finally:
        db.close()
