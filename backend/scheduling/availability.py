"""Bookable slot computation from weekly templates minus live appointments.

Everything here is read-only: slots are produced fresh on every call and are
never stored.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from backend.core import config
from backend.core.clock import Clock, get_clock
from backend.core.errors import NotFoundError, SchedulingValidationError
from backend.models.appointment import STATUS_CANCELLED, Appointment
from backend.models.availability import AvailabilityTemplateEntry
from backend.models.user import User

SLOT_LABEL_FORMAT = '%d/%m/%Y at %H:%M'
DEFAULT_APPOINTMENT_TYPE = 'consultation'


@dataclass(frozen=True)
class Slot:
    provider_id: int
    date: date
    time: time
    start: datetime
    duration_minutes: int
    appointment_type: str
    label: str

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)


def day_of_week_for(day: date) -> int:
    """Sunday-based day index (0 = Sunday ... 6 = Saturday)."""
    return (day.weekday() + 1) % 7


def format_slot_label(start: datetime) -> str:
    return start.strftime(SLOT_LABEL_FORMAT)


def iterate_window_starts(day: date, entry: AvailabilityTemplateEntry) -> list[datetime]:
    step = timedelta(minutes=entry.slot_duration_minutes)
    window_end = datetime.combine(day, entry.end_time)
    current = datetime.combine(day, entry.start_time)

    starts: list[datetime] = []
    # A trailing remainder shorter than one slot is dropped.
    while current + step <= window_end:
        starts.append(current)
        current += step

    return starts


def get_provider(db: Session, provider_id: int) -> User:
    provider = db.query(User).filter(User.id == provider_id).first()
    if provider is None:
        raise NotFoundError(f'Provider {provider_id} not found.')
    return provider


def get_active_template_entries(db: Session, provider_id: int) -> list[AvailabilityTemplateEntry]:
    return db.query(AvailabilityTemplateEntry).filter(
        AvailabilityTemplateEntry.provider_id == provider_id,
        AvailabilityTemplateEntry.is_active.is_(True),
    ).order_by(
        AvailabilityTemplateEntry.day_of_week.asc(),
        AvailabilityTemplateEntry.start_time.asc(),
        AvailabilityTemplateEntry.id.asc(),
    ).all()


def get_booked_starts(db: Session, provider_id: int, range_start: datetime, range_end: datetime) -> set[datetime]:
    rows = db.query(Appointment.scheduled_at).filter(
        Appointment.provider_id == provider_id,
        Appointment.status != STATUS_CANCELLED,
        Appointment.scheduled_at >= range_start,
        Appointment.scheduled_at < range_end,
    ).all()
    return {scheduled_at for (scheduled_at,) in rows}


def generate_template_slots(
    provider_id: int,
    entries: list[AvailabilityTemplateEntry],
    first_day: date,
    days: int,
) -> list[Slot]:
    """Every template slot in ``days`` calendar days from ``first_day``, ignoring bookings."""
    entries_by_day: dict[int, list[AvailabilityTemplateEntry]] = {}
    for entry in entries:
        entries_by_day.setdefault(entry.day_of_week, []).append(entry)

    slots: list[Slot] = []
    for offset in range(days):
        current_day = first_day + timedelta(days=offset)
        by_start: dict[datetime, Slot] = {}

        for entry in entries_by_day.get(day_of_week_for(current_day), []):
            for start in iterate_window_starts(current_day, entry):
                if start in by_start:
                    continue
                by_start[start] = Slot(
                    provider_id=provider_id,
                    date=start.date(),
                    time=start.time(),
                    start=start,
                    duration_minutes=entry.slot_duration_minutes,
                    appointment_type=DEFAULT_APPOINTMENT_TYPE,
                    label=format_slot_label(start),
                )

        slots.extend(by_start[start] for start in sorted(by_start))

    return slots


def compute_available_slots(
    db: Session,
    provider_id: int,
    lookahead_days: int = config.DEFAULT_LOOKAHEAD_DAYS,
    clock: Clock | None = None,
) -> list[Slot]:
    """Free slots for a provider over the next ``lookahead_days`` calendar days, oldest first.

    An unknown provider raises NotFoundError; a provider with no active
    template simply has no slots. Slots at or before "now" and slots whose
    start exactly matches a non-cancelled appointment are left out.
    """
    if lookahead_days < 1:
        raise SchedulingValidationError('Lookahead window must be at least 1 day.')

    get_provider(db, provider_id)
    entries = get_active_template_entries(db, provider_id)
    if not entries:
        return []

    now = (clock or get_clock()).now()
    first_day = now.date()
    range_start = datetime.combine(first_day, time.min)
    range_end = range_start + timedelta(days=lookahead_days)
    booked_starts = get_booked_starts(db, provider_id, range_start, range_end)

    return [
        slot
        for slot in generate_template_slots(provider_id, entries, first_day, lookahead_days)
        if slot.start > now and slot.start not in booked_starts
    ]


def find_template_slot(db: Session, provider_id: int, timestamp: datetime) -> Slot | None:
    """The template slot starting exactly at ``timestamp``, whether booked or not."""
    entries = get_active_template_entries(db, provider_id)
    for slot in generate_template_slots(provider_id, entries, timestamp.date(), 1):
        if slot.start == timestamp:
            return slot
    return None


def is_slot_available(db: Session, provider_id: int, timestamp: datetime, clock: Clock | None = None) -> bool:
    get_provider(db, provider_id)
    if timestamp <= (clock or get_clock()).now():
        return False
    if find_template_slot(db, provider_id, timestamp) is None:
        return False
    return timestamp not in get_booked_starts(db, provider_id, timestamp, timestamp + timedelta(seconds=1))
