"""Message-driven intake: inbound WhatsApp text to booking outcome and reply."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.message import InboundMessage
from backend.models.patient import Patient
from backend.scheduling.orchestrator import BOOKED, NEEDS_HUMAN, NOT_BOOKING, BookingOrchestrator, BookingOutcome
from backend.services.messaging_service import IncomingWhatsAppMessage, WhatsAppService

logger = logging.getLogger(__name__)

CONTEXT_MESSAGE_LIMIT = 6


def find_or_create_patient(db: Session, whatsapp_number: str, display_name: str | None = None) -> Patient:
    patient = db.query(Patient).filter(Patient.whatsapp_number == whatsapp_number).first()
    if patient is not None:
        return patient

    patient = Patient(
        name=display_name or f'Patient {whatsapp_number}',
        phone=whatsapp_number,
        whatsapp_number=whatsapp_number,
    )
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info('Created patient %s for WhatsApp number %s', patient.id, whatsapp_number)
    return patient


def is_duplicate_delivery(db: Session, external_id: str | None) -> bool:
    if not external_id:
        return False
    return db.query(InboundMessage.id).filter(InboundMessage.external_id == external_id).first() is not None


def build_conversation_context(db: Session, patient_id: int, exclude_message_id: int | None = None) -> str | None:
    query = db.query(InboundMessage).filter(InboundMessage.patient_id == patient_id)
    if exclude_message_id is not None:
        query = query.filter(InboundMessage.id != exclude_message_id)
    recent = query.order_by(InboundMessage.id.desc()).limit(CONTEXT_MESSAGE_LIMIT).all()
    if not recent:
        return None

    lines = []
    for message in reversed(recent):
        speaker = 'clinic' if message.is_automated else 'patient'
        lines.append(f'{speaker}: {message.body}')
    return '\n'.join(lines)


def process_inbound_message(
    db: Session,
    orchestrator: BookingOrchestrator,
    messenger: WhatsAppService | None,
    provider_id: int,
    message: IncomingWhatsAppMessage,
) -> BookingOutcome | None:
    """Run one inbound message through the orchestrator.

    Returns None for a message id that was already received, since the
    WhatsApp Cloud API redelivers webhooks it considers unacknowledged.
    """
    if is_duplicate_delivery(db, message.message_id):
        logger.info('Skipping duplicate WhatsApp message %s', message.message_id)
        return None

    patient = find_or_create_patient(db, message.from_number, message.sender_name)

    inbound = InboundMessage(
        patient_id=patient.id,
        external_id=message.message_id or None,
        from_number=message.from_number,
        to_number=message.to_number,
        body=message.text,
        is_automated=False,
    )
    db.add(inbound)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info('Skipping duplicate WhatsApp message %s', message.message_id)
        return None
    db.refresh(inbound)

    context = build_conversation_context(db, patient.id, exclude_message_id=inbound.id)
    outcome = orchestrator.handle_message(provider_id, patient.id, message.text, context)

    inbound.processed = True
    if outcome.intent is not None:
        inbound.booking_intent = outcome.intent.model_dump(mode='json')
    if outcome.status == BOOKED and outcome.appointment is not None:
        inbound.appointment_id = outcome.appointment.id

    reply = outcome.message
    db.add(InboundMessage(
        patient_id=patient.id,
        from_number=message.to_number,
        to_number=message.from_number,
        body=reply or '',
        is_automated=True,
        appointment_id=inbound.appointment_id,
        processed=True,
    ))
    db.commit()

    # Confirmation and alternative-slot messages are requested by the orchestrator itself.
    if messenger is not None:
        if outcome.status in (NEEDS_HUMAN, NOT_BOOKING) and reply:
            messenger.send_text(message.from_number, reply)
        messenger.mark_as_read(message.message_id)

    logger.info(
        'Processed WhatsApp message %s from patient %s: %s',
        message.message_id,
        patient.id,
        outcome.status,
    )
    return outcome
