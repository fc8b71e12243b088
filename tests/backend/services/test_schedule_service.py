from datetime import time

import pytest

from backend.core.errors import NotFoundError
from backend.models.availability import AvailabilityTemplateEntry
from backend.scheduling.availability import compute_available_slots
from backend.services.schedule_service import create_default_schedule
from conftest import at


def test_create_default_schedule_seeds_weekday_office_hours(db_session, provider, clock) -> None:
    entries = create_default_schedule(db_session, provider.id)

    assert len(entries) == 10
    assert {entry.day_of_week for entry in entries} == {1, 2, 3, 4, 5}

    slots = compute_available_slots(db_session, provider.id, 1, clock)
    assert slots[0].start == at(9, 0)
    assert slots[-1].start == at(17, 30)
    assert at(12, 0) not in [slot.start for slot in slots]
    assert len(slots) == 14


def test_create_default_schedule_keeps_existing_template(db_session, provider, monday_template) -> None:
    entries = create_default_schedule(db_session, provider.id)

    assert [entry.id for entry in entries] == [monday_template.id]
    assert db_session.query(AvailabilityTemplateEntry).count() == 1
    assert entries[0].end_time == time(10, 0)


def test_create_default_schedule_unknown_provider(db_session) -> None:
    with pytest.raises(NotFoundError):
        create_default_schedule(db_session, 321)
