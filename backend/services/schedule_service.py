import logging
from datetime import time

from sqlalchemy.orm import Session

from backend.models.availability import AvailabilityTemplateEntry
from backend.scheduling.availability import get_provider

logger = logging.getLogger(__name__)

DEFAULT_SLOT_DURATION_MINUTES = 30
WEEKDAYS = (1, 2, 3, 4, 5)
DEFAULT_WINDOWS = (
    (time(9, 0), time(12, 0)),
    (time(14, 0), time(18, 0)),
)


def create_default_schedule(db: Session, provider_id: int) -> list[AvailabilityTemplateEntry]:
    """Seed Monday to Friday office hours for a provider with no template yet."""
    get_provider(db, provider_id)

    existing = db.query(AvailabilityTemplateEntry).filter(
        AvailabilityTemplateEntry.provider_id == provider_id,
    ).all()
    if existing:
        return existing

    entries = [
        AvailabilityTemplateEntry(
            provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            slot_duration_minutes=DEFAULT_SLOT_DURATION_MINUTES,
            is_active=True,
        )
        for day_of_week in WEEKDAYS
        for start_time, end_time in DEFAULT_WINDOWS
    ]
    db.add_all(entries)
    db.commit()
    logger.info('Created default schedule for provider %s', provider_id)
    return entries
