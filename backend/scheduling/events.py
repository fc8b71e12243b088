"""Fire-and-forget appointment notifications for dashboards and audit logs."""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from backend.models.appointment import Appointment

logger = logging.getLogger(__name__)

APPOINTMENT_CREATED = 'appointment_created'
APPOINTMENT_UPDATED = 'appointment_updated'
APPOINTMENT_CANCELLED = 'appointment_cancelled'
APPOINTMENT_RESCHEDULED = 'appointment_rescheduled'


@dataclass(frozen=True)
class AppointmentEvent:
    event_type: str
    appointment_id: int
    provider_id: int
    patient_id: int
    scheduled_at: datetime
    status: str
    origin: str
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_appointment(cls, event_type: str, appointment: Appointment) -> 'AppointmentEvent':
        return cls(
            event_type=event_type,
            appointment_id=appointment.id,
            provider_id=appointment.provider_id,
            patient_id=appointment.patient_id,
            scheduled_at=appointment.scheduled_at,
            status=appointment.status,
            origin=appointment.origin,
        )


Listener = Callable[[AppointmentEvent], None]


class AppointmentEventBus:
    def __init__(self, history_size: int = 100) -> None:
        self._listeners: list[Listener] = []
        self._recent: deque[AppointmentEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event_type: str, appointment: Appointment) -> None:
        """Deliver an event to every listener; a failing listener never reaches the caller."""
        try:
            event = AppointmentEvent.from_appointment(event_type, appointment)
        except Exception:
            logger.exception('Could not build %s event for appointment %s', event_type, appointment.id)
            return

        self._recent.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception('Appointment listener %r failed on %s', listener, event_type)

    def recent(self, limit: int = 20) -> list[AppointmentEvent]:
        return list(self._recent)[-limit:][::-1]


def log_appointment_event(event: AppointmentEvent) -> None:
    logger.info(
        'audit %s appointment=%s provider=%s patient=%s at=%s status=%s origin=%s',
        event.event_type,
        event.appointment_id,
        event.provider_id,
        event.patient_id,
        event.scheduled_at.isoformat(),
        event.status,
        event.origin,
    )


appointment_events = AppointmentEventBus()
appointment_events.subscribe(log_appointment_event)
