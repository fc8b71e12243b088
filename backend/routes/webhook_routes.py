import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.errors import SchedulingError
from backend.routes.appointment_routes import get_booking_orchestrator
from backend.routes.common import database_unavailable, ensure_database_ready
from backend.scheduling.orchestrator import BookingOrchestrator
from backend.services.intake_service import process_inbound_message
from backend.services.messaging_service import WhatsAppService, get_messenger, parse_webhook_payload, verify_webhook

router = APIRouter(tags=['whatsapp'])

logger = logging.getLogger(__name__)

DUPLICATE_OUTCOME = 'duplicate'


def get_intake_provider_id() -> int | None:
    return config.DEFAULT_PROVIDER_ID


@router.get('/webhook', response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    hub_mode: str | None = Query(default=None, alias='hub.mode'),
    hub_verify_token: str | None = Query(default=None, alias='hub.verify_token'),
    hub_challenge: str | None = Query(default=None, alias='hub.challenge'),
):
    challenge = verify_webhook(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Verification failed')
    return challenge


@router.post('/webhook')
def receive_whatsapp_webhook(
    payload: dict[str, Any] = Body(...),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
    messenger: WhatsAppService = Depends(get_messenger),
    provider_id: int | None = Depends(get_intake_provider_id),
):
    messages = parse_webhook_payload(payload)
    if not messages:
        return {'status': 'ok', 'processed': 0, 'outcomes': []}

    if provider_id is None:
        logger.error('DEFAULT_PROVIDER_ID is not set; ignoring %s WhatsApp message(s)', len(messages))
        return {'status': 'ignored', 'processed': 0, 'outcomes': []}

    ensure_database_ready()

    db = orchestrator.db
    outcomes = []
    for message in messages:
        try:
            outcome = process_inbound_message(db, orchestrator, messenger, provider_id, message)
        except SchedulingError as exc:
            db.rollback()
            logger.error('Could not process WhatsApp message %s: %s', message.message_id, exc.message)
            outcomes.append('error')
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            raise database_unavailable() from exc
        outcomes.append(DUPLICATE_OUTCOME if outcome is None else outcome.status)

    processed = sum(1 for item in outcomes if item != DUPLICATE_OUTCOME)
    return {'status': 'ok', 'processed': processed, 'outcomes': outcomes}
