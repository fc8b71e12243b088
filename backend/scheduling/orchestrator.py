"""Manual and message-driven booking on top of the calculator and the reservation.

Races lost at commit time and text-understanding failures come back as a
BookingOutcome instead of an exception. Unknown providers/patients and
malformed requests still raise NotFoundError / SchedulingValidationError.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backend.core import config
from backend.core.clock import Clock, get_clock
from backend.core.errors import (
    ConflictError,
    NotFoundError,
    SchedulingValidationError,
    UpstreamError,
    UpstreamTimeoutError,
)
from backend.models.appointment import ORIGIN_AUTOMATED, ORIGIN_MANUAL, Appointment
from backend.models.patient import Patient
from backend.scheduling.availability import (
    DEFAULT_APPOINTMENT_TYPE,
    Slot,
    compute_available_slots,
    find_template_slot,
    format_slot_label,
    get_provider,
)
from backend.scheduling.events import AppointmentEventBus, appointment_events
from backend.scheduling.reservation import reserve
from backend.services.intent_service import BookingIntent, IntentClient
from backend.services.messaging_service import WhatsAppService

logger = logging.getLogger(__name__)

BOOKED = 'booked'
SLOT_UNAVAILABLE = 'slot_unavailable'
NEEDS_HUMAN = 'needs_human'
NOT_BOOKING = 'not_booking'

APPOINTMENT_TYPES = ('consultation', 'follow_up', 'emergency')
APPOINTMENT_TYPE_ALIASES = {'followup': 'follow_up', 'follow-up': 'follow_up', 'follow up': 'follow_up'}
MAX_ALTERNATIVES = 5

HUMAN_FOLLOW_UP_MESSAGE = 'Thanks for your message. A member of our team will follow up shortly to find a time with you.'
SLOT_TAKEN_MESSAGE = 'Sorry, that time is no longer available. Please choose another.'


@dataclass
class BookingOutcome:
    status: str
    message: str
    appointment: Appointment | None = None
    alternatives: list[Slot] = field(default_factory=list)
    intent: BookingIntent | None = None

    @property
    def is_booked(self) -> bool:
        return self.status == BOOKED


def normalize_appointment_type(value: str | None) -> str:
    normalized = (value or '').strip().lower()
    normalized = APPOINTMENT_TYPE_ALIASES.get(normalized, normalized)
    if normalized not in APPOINTMENT_TYPES:
        raise SchedulingValidationError(f'Invalid appointment type: {value!r}.')
    return normalized


def get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if patient is None:
        raise NotFoundError(f'Patient {patient_id} not found.')
    return patient


class BookingOrchestrator:
    def __init__(
        self,
        db: Session,
        clock: Clock | None = None,
        messenger: WhatsAppService | None = None,
        intent_client: IntentClient | None = None,
        events: AppointmentEventBus = appointment_events,
        lookahead_days: int = config.DEFAULT_LOOKAHEAD_DAYS,
        min_confidence: float = config.INTENT_MIN_CONFIDENCE,
    ) -> None:
        self.db = db
        self.clock = clock or get_clock()
        self.messenger = messenger
        self.intent_client = intent_client
        self.events = events
        self.lookahead_days = lookahead_days
        self.min_confidence = min_confidence

    def available_slots(self, provider_id: int) -> list[Slot]:
        return compute_available_slots(self.db, provider_id, self.lookahead_days, self.clock)

    def book_manual(
        self,
        provider_id: int,
        patient_id: int,
        scheduled_at: datetime,
        appointment_type: str,
        notes: str | None = None,
    ) -> BookingOutcome:
        appointment_type = normalize_appointment_type(appointment_type)
        get_provider(self.db, provider_id)
        patient = get_patient(self.db, patient_id)

        scheduled_at = scheduled_at.replace(second=0, microsecond=0)
        now = self.clock.now()
        if scheduled_at <= now:
            raise SchedulingValidationError('Appointments must be scheduled in the future.')
        if not self._within_lookahead(scheduled_at):
            raise SchedulingValidationError(
                f'Appointments can only be booked within the next {self.lookahead_days} days.'
            )

        template_slot = find_template_slot(self.db, provider_id, scheduled_at)
        if template_slot is None:
            raise SchedulingValidationError('The requested time is not a bookable slot for this provider.')

        available = self.available_slots(provider_id)
        if not any(slot.start == scheduled_at for slot in available):
            return self._slot_unavailable(available)

        try:
            appointment = reserve(
                self.db,
                provider_id,
                patient.id,
                scheduled_at,
                appointment_type,
                ORIGIN_MANUAL,
                duration_minutes=template_slot.duration_minutes,
                notes=notes,
                events=self.events,
            )
        except ConflictError:
            return self._slot_unavailable(self.available_slots(provider_id))

        self._request_confirmation(patient, appointment)
        return BookingOutcome(
            status=BOOKED,
            message=f'Appointment booked for {format_slot_label(appointment.scheduled_at)}.',
            appointment=appointment,
        )

    def book_from_intent(
        self,
        provider_id: int,
        patient_id: int,
        intent: BookingIntent,
        candidates: list[Slot] | None = None,
    ) -> BookingOutcome:
        """Commit the collaborator's suggested slot after confirming it against the store.

        The suggestion is only trusted once the reservation itself succeeds.
        """
        get_provider(self.db, provider_id)
        patient = get_patient(self.db, patient_id)

        if intent.requires_human:
            return self._needs_human(intent, 'collaborator requested handoff')

        if intent.confidence < self.min_confidence:
            return self._needs_human(
                intent, f'confidence {intent.confidence:.2f} is below {self.min_confidence:.2f}'
            )

        if candidates is None:
            candidates = self.available_slots(provider_id)

        requested_at = self._resolve_requested_time(intent, candidates)
        if requested_at is None:
            return self._needs_human(intent, 'no concrete slot in intent')

        template_slot = find_template_slot(self.db, provider_id, requested_at)
        bookable = (
            template_slot is not None
            and requested_at > self.clock.now()
            and self._within_lookahead(requested_at)
        )
        if not bookable:
            return self._needs_human(intent, f'suggested time {requested_at.isoformat()} is not bookable')

        try:
            appointment_type = normalize_appointment_type(intent.appointment_type or DEFAULT_APPOINTMENT_TYPE)
        except SchedulingValidationError:
            appointment_type = DEFAULT_APPOINTMENT_TYPE

        try:
            appointment = reserve(
                self.db,
                provider_id,
                patient.id,
                requested_at,
                appointment_type,
                ORIGIN_AUTOMATED,
                duration_minutes=template_slot.duration_minutes,
                events=self.events,
            )
        except ConflictError:
            alternatives = self.available_slots(provider_id)[:MAX_ALTERNATIVES]
            self._notify(
                'alternative slots',
                self.messenger and self.messenger.send_alternative_slots,
                self._contact_number(patient),
                [slot.label for slot in alternatives],
            )
            return BookingOutcome(
                status=SLOT_UNAVAILABLE,
                message=SLOT_TAKEN_MESSAGE,
                alternatives=alternatives,
                intent=intent,
            )

        self._request_confirmation(patient, appointment)
        return BookingOutcome(
            status=BOOKED,
            message=intent.response or f'Your appointment is booked for {format_slot_label(requested_at)}.',
            appointment=appointment,
            intent=intent,
        )

    def handle_message(
        self,
        provider_id: int,
        patient_id: int,
        text: str,
        context: str | None = None,
    ) -> BookingOutcome:
        candidates = self.available_slots(provider_id)

        if self.intent_client is None:
            return self._needs_human(None, 'no text-understanding collaborator configured')

        try:
            intent = self.intent_client.analyze(text, [slot.label for slot in candidates], context)
        except UpstreamTimeoutError:
            return self._needs_human(None, 'text-understanding collaborator timed out')
        except UpstreamError as exc:
            return self._needs_human(None, exc.message)

        if not intent.is_booking_request and not intent.requires_human:
            return BookingOutcome(status=NOT_BOOKING, message=intent.response, intent=intent)

        return self.book_from_intent(provider_id, patient_id, intent, candidates)

    def _resolve_requested_time(self, intent: BookingIntent, candidates: list[Slot]) -> datetime | None:
        """Map the suggestion onto one of the offered slots, or None."""
        if intent.matched_slot:
            for slot in candidates:
                if slot.label == intent.matched_slot:
                    return slot.start
        if intent.requested_date and intent.requested_time:
            requested_at = datetime.combine(intent.requested_date, intent.requested_time).replace(
                second=0, microsecond=0
            )
            for slot in candidates:
                if slot.start == requested_at:
                    return slot.start
            logger.info('Suggested time %s was not among the offered slots', requested_at.isoformat())
        return None

    def _within_lookahead(self, scheduled_at: datetime) -> bool:
        return scheduled_at.date() < self.clock.now().date() + timedelta(days=self.lookahead_days)

    def _slot_unavailable(self, available: list[Slot]) -> BookingOutcome:
        return BookingOutcome(
            status=SLOT_UNAVAILABLE,
            message=SLOT_TAKEN_MESSAGE,
            alternatives=available[:MAX_ALTERNATIVES],
        )

    def _needs_human(self, intent: BookingIntent | None, reason: str) -> BookingOutcome:
        logger.info('Booking handed to a human: %s', reason)
        return BookingOutcome(status=NEEDS_HUMAN, message=HUMAN_FOLLOW_UP_MESSAGE, intent=intent)

    def _contact_number(self, patient: Patient) -> str | None:
        return patient.whatsapp_number or patient.phone

    def _request_confirmation(self, patient: Patient, appointment: Appointment) -> None:
        self._notify(
            'confirmation',
            self.messenger and self.messenger.send_appointment_confirmation,
            self._contact_number(patient),
            patient.name,
            format_slot_label(appointment.scheduled_at),
            appointment.appointment_type,
        )

    def _notify(self, kind: str, send, to: str | None, *args) -> None:
        if send is None or not to:
            logger.info('Skipping %s message: no messenger or contact number', kind)
            return
        try:
            delivered = send(to, *args)
        except Exception:
            logger.exception('Requesting %s message for %s failed', kind, to)
            return
        if not delivered:
            logger.warning('%s message to %s was not accepted by the messaging service', kind.capitalize(), to)
